"""
Ring Buffer Errors - Exception hierarchy for the byte ring buffer.

Only two conditions are expected at runtime: a buffer that could not get its
backing memory, and a read that asked for more bytes than are queued.
Everything else is a programming error and surfaces as ContractViolation.
"""

from __future__ import annotations


class RingBufferError(Exception):
    """Base class for all ring buffer errors."""


class AllocationFailure(RingBufferError):
    """Construction could not obtain backing memory. No buffer was created."""

    def __init__(self, requested: int, reason: str = ""):
        self.requested = requested
        message = f"Could not allocate {requested} bytes of ring storage"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InsufficientData(RingBufferError):
    """A read-style operation asked for more bytes than are available.

    The buffer is left exactly as it was before the call.
    """

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} bytes but only {available} available"
        )


class ContractViolation(RingBufferError):
    """Misuse of the API: bad sizes, bad cursors, closed buffers, etc."""
