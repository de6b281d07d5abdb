"""
Storage Allocators - Pluggable strategies for obtaining ring buffer memory.

A ring buffer asks its allocator for exactly one region at construction and
hands it back on close. Allocators are passed explicitly to the buffer; the
process default is only consulted when none is given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import numpy as np

from bytering.core.errors import ContractViolation
from bytering.core.logger import get_logger

logger = get_logger("allocator")


def as_byte_array(buffer: Any, writable: bool = False) -> np.ndarray:
    """
    View any C-contiguous bytes-like object as a flat uint8 array.

    No data is copied: writes through the returned array land in ``buffer``.
    """
    if isinstance(buffer, np.ndarray) and buffer.dtype == np.uint8 and buffer.ndim == 1:
        view = buffer
    else:
        try:
            raw = memoryview(buffer).cast("B")
        except TypeError as exc:
            raise ContractViolation(
                f"Expected a contiguous bytes-like object, got {type(buffer).__name__}"
            ) from exc
        if raw.nbytes == 0:
            view = np.empty(0, dtype=np.uint8)
        else:
            view = np.frombuffer(raw, dtype=np.uint8)
            if writable and raw.readonly:
                raise ContractViolation("Buffer is read-only")
    if writable and not view.flags.writeable:
        raise ContractViolation("Buffer is read-only")
    return view


class Allocator(ABC):
    """Interface for ring buffer storage providers."""

    def __init__(self):
        self.allocations = 0
        self.releases = 0

    @abstractmethod
    def allocate(self, nbytes: int) -> Optional[np.ndarray]:
        """Return a writable 1-D uint8 array of ``nbytes``, or None on failure."""

    @abstractmethod
    def release(self, storage: np.ndarray) -> None:
        """Give back a region previously returned by ``allocate``."""

    def stats(self) -> Dict[str, Any]:
        return {
            "allocator": type(self).__name__,
            "allocations": self.allocations,
            "releases": self.releases,
            "live": self.allocations - self.releases,
        }


class NumpyAllocator(Allocator):
    """Heap allocation through NumPy. Memory is reclaimed by the GC."""

    def allocate(self, nbytes: int) -> Optional[np.ndarray]:
        try:
            storage = np.zeros(nbytes, dtype=np.uint8)
        except MemoryError:
            logger.error("Heap allocation failed", nbytes=nbytes)
            return None
        self.allocations += 1
        return storage

    def release(self, storage: np.ndarray) -> None:
        self.releases += 1


class FunctionAllocator(Allocator):
    """
    Adapts a user-supplied pair of allocate/release functions.

    ``allocate_fn(n)`` may return any writable bytes-like object (or None on
    failure). ``release_fn`` receives that same object back.
    """

    def __init__(
        self,
        allocate_fn: Callable[[int], Any],
        release_fn: Callable[[Any], None],
    ):
        if allocate_fn is None or release_fn is None:
            raise ContractViolation("Both allocate and release functions are required")
        super().__init__()
        self._allocate_fn = allocate_fn
        self._release_fn = release_fn
        self._regions: Dict[int, Any] = {}

    def allocate(self, nbytes: int) -> Optional[np.ndarray]:
        region = self._allocate_fn(nbytes)
        if region is None:
            return None
        try:
            storage = as_byte_array(region, writable=True)
        except ContractViolation:
            self._release_fn(region)
            raise
        self._regions[id(storage)] = region
        self.allocations += 1
        return storage

    def release(self, storage: np.ndarray) -> None:
        region = self._regions.pop(id(storage), None)
        if region is None:
            raise ContractViolation("Region was not allocated by this allocator")
        self._release_fn(region)
        self.releases += 1


class BudgetAllocator(Allocator):
    """
    Serves allocations out of a fixed byte budget.

    Useful where all staging buffers must fit inside a known memory envelope:
    once the budget is spent, further allocations fail until buffers are
    closed.
    """

    def __init__(self, budget_bytes: int):
        if budget_bytes <= 0:
            raise ContractViolation("budget_bytes must be positive")
        super().__init__()
        self.budget_bytes = budget_bytes
        self.allocated_bytes = 0
        self._live: Dict[int, np.ndarray] = {}

    @property
    def available_bytes(self) -> int:
        return self.budget_bytes - self.allocated_bytes

    def allocate(self, nbytes: int) -> Optional[np.ndarray]:
        if nbytes > self.available_bytes:
            logger.warning(
                "Allocation exceeds memory budget",
                nbytes=nbytes,
                available=self.available_bytes,
                budget=self.budget_bytes,
            )
            return None
        try:
            storage = np.zeros(nbytes, dtype=np.uint8)
        except MemoryError:
            logger.error("Heap allocation failed", nbytes=nbytes)
            return None
        self._live[id(storage)] = storage
        self.allocated_bytes += nbytes
        self.allocations += 1
        return storage

    def release(self, storage: np.ndarray) -> None:
        if self._live.pop(id(storage), None) is None:
            raise ContractViolation("Storage was not allocated by this allocator")
        self.allocated_bytes -= storage.size
        self.releases += 1

    def stats(self) -> Dict[str, Any]:
        stats = super().stats()
        stats.update(
            budget_bytes=self.budget_bytes,
            allocated_bytes=self.allocated_bytes,
            available_bytes=self.available_bytes,
        )
        return stats


# ---------------------------------------------------------------------------
# Process default
# ---------------------------------------------------------------------------

_default: Optional[Allocator] = None


def default_allocator() -> Allocator:
    """Allocator used when a buffer is created without one."""
    global _default
    if _default is None:
        from bytering.core.config import get_config

        budget = get_config().ring.memory_budget_bytes
        _default = BudgetAllocator(budget) if budget else NumpyAllocator()
    return _default


def reset_default_allocator() -> None:
    """Drop the cached default so the next call rebuilds it from config."""
    global _default
    _default = None
