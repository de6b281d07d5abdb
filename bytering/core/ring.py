"""
Byte Ring Buffer - Fixed-capacity FIFO byte queue over one contiguous region.

The backing region holds ``capacity + 1`` bytes. The spare slot is never
filled, so ``head == tail`` always means empty and the buffer is full when
head sits one slot behind tail. Writes that exceed the free space overwrite
the oldest unread bytes instead of failing; reads that ask for more than is
queued fail without touching the buffer.

Two variants share one implementation:

- ``RingBuffer`` obtains its storage from an Allocator and gives it back on
  close.
- ``StaticRingBuffer`` borrows a caller-owned region and never frees it.

Not thread-safe: one writer advances head, one reader advances tail, and any
other sharing needs external locking.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, Optional, Tuple, Union

import numpy as np

from bytering.core.allocator import Allocator, as_byte_array, default_allocator
from bytering.core.config import get_config
from bytering.core.errors import (
    AllocationFailure,
    ContractViolation,
    InsufficientData,
)
from bytering.core.logger import get_logger

logger = get_logger("ring")

ByteValue = Union[int, bytes, bytearray]


@dataclass(frozen=True)
class RingState:
    """Snapshot of a buffer's cursors."""
    head: int
    tail: int
    bytes_used: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ContractViolation(message)


def _check_capacity(capacity: Any) -> int:
    _require(
        isinstance(capacity, (int, np.integer)) and not isinstance(capacity, bool),
        f"capacity must be an integer, got {type(capacity).__name__}",
    )
    _require(capacity >= 1, f"capacity must be at least 1, got {capacity}")
    return int(capacity)


def _check_count(value: Any, name: str = "count") -> int:
    _require(
        isinstance(value, (int, np.integer)) and not isinstance(value, bool),
        f"{name} must be an integer, got {type(value).__name__}",
    )
    _require(value >= 0, f"{name} must be non-negative, got {value}")
    return int(value)


def _byte_value(value: ByteValue) -> int:
    if isinstance(value, (bytes, bytearray)):
        _require(len(value) == 1, "byte value must be a single byte")
        return value[0]
    _require(
        isinstance(value, (int, np.integer)) and 0 <= value <= 0xFF,
        f"byte value must be in range 0..255, got {value!r}",
    )
    return int(value)


class BaseRingBuffer(ABC):
    """Cursor arithmetic and bulk copies shared by both storage variants."""

    def __init__(self, storage: np.ndarray, strict: Optional[bool] = None):
        self._storage: Optional[np.ndarray] = storage
        self._size = storage.size
        self._head = 0
        self._tail = 0
        self._strict = get_config().ring.strict_checks if strict is None else strict

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    def close(self) -> None:
        """Detach from the backing storage. Safe to call more than once."""

    @property
    def closed(self) -> bool:
        return self._storage is None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _live_storage(self) -> np.ndarray:
        if self._storage is None:
            raise ContractViolation("Ring buffer is closed")
        return self._storage

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def buffer_size(self) -> int:
        """Length of the backing region, including the spare slot."""
        return self._size

    def capacity(self) -> int:
        return self._size - 1

    def bytes_used(self) -> int:
        return (self._head - self._tail) % self._size

    def bytes_free(self) -> int:
        return self.capacity() - self.bytes_used()

    def is_empty(self) -> bool:
        return self.bytes_free() == self.capacity()

    def is_full(self) -> bool:
        return self.bytes_free() == 0

    def peek_head(self) -> int:
        """Index of the next byte to be written. Moves on every write."""
        return self._head

    def peek_tail(self) -> int:
        """Index of the next byte to be read. Moves on every read."""
        return self._tail

    def state(self) -> RingState:
        return RingState(self._head, self._tail, self.bytes_used())

    def storage_view(self) -> np.ndarray:
        """Read-only view of the raw backing region for zero-copy access."""
        view = self._live_storage().view()
        view.flags.writeable = False
        return view

    def __len__(self) -> int:
        return self.bytes_used()

    def __repr__(self) -> str:
        if self.closed:
            return f"{type(self).__name__}(capacity={self.capacity()}, closed)"
        return (
            f"{type(self).__name__}(capacity={self.capacity()}, "
            f"used={self.bytes_used()}, head={self._head}, tail={self._tail})"
        )

    # ------------------------------------------------------------------
    # Cursor helpers
    # ------------------------------------------------------------------

    def _advance(self, index: int, n: int) -> int:
        return (index + n) % self._size

    def _segments(self, start: int, count: int) -> Iterator[Tuple[int, int]]:
        """Split ``count`` bytes from ``start`` into at most two linear runs."""
        first = min(self._size - start, count)
        if first:
            yield start, start + first
        if count > first:
            yield 0, count - first

    def _verify(self) -> None:
        if not self._strict:
            return
        _require(0 <= self._head < self._size, f"head {self._head} outside storage")
        _require(0 <= self._tail < self._size, f"tail {self._tail} outside storage")

    def _finish_write(self, overflow: bool) -> None:
        if overflow:
            # Oldest bytes were overwritten; the buffer is now exactly full.
            self._tail = self._advance(self._head, 1)
            logger.debug("Ring overflow, oldest bytes dropped", capacity=self.capacity())
            if self._strict:
                _require(self.is_full(), "buffer not full after overflowing write")
        self._verify()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Discard all queued bytes. Storage contents are left as they are."""
        self._live_storage()
        self._head = self._tail

    def write(self, data: Any, count: Optional[int] = None) -> int:
        """
        Copy ``count`` bytes (default: all of ``data``) in at head.

        If the write does not fit, the oldest unread bytes are overwritten and
        the buffer ends up exactly full. Returns the new head index.
        """
        storage = self._live_storage()
        source = as_byte_array(data)
        if count is None:
            count = source.size
        count = _check_count(count)
        _require(count <= source.size, f"count {count} outside source of {source.size} bytes")

        overflow = count > self.bytes_free()
        # Bytes that would be overwritten by later bytes of this same write
        skip = max(0, count - self.capacity())
        if skip:
            self._head = self._advance(self._head, skip)

        pos = skip
        for begin, end in self._segments(self._head, count - skip):
            storage[begin:end] = source[pos:pos + end - begin]
            pos += end - begin
        self._head = self._advance(self._head, count - skip)

        self._finish_write(overflow)
        return self._head

    def fill(self, value: ByteValue, count: int) -> int:
        """Write ``count`` copies of a single byte. Returns ``count``."""
        storage = self._live_storage()
        byte = _byte_value(value)
        count = _check_count(count)

        overflow = count > self.bytes_free()
        skip = max(0, count - self.capacity())
        if skip:
            self._head = self._advance(self._head, skip)

        for begin, end in self._segments(self._head, count - skip):
            storage[begin:end] = byte
        self._head = self._advance(self._head, count - skip)

        self._finish_write(overflow)
        return count

    def _copy_out(self, out: np.ndarray, count: int, offset: int) -> None:
        """Copy ``count`` live bytes starting ``offset`` past tail into ``out``."""
        storage = self._live_storage()
        count = _check_count(count)
        offset = _check_count(offset, "offset")
        available = self.bytes_used()
        if offset + count > available:
            raise InsufficientData(offset + count, available)

        pos = 0
        for begin, end in self._segments(self._advance(self._tail, offset), count):
            out[pos:pos + end - begin] = storage[begin:end]
            pos += end - begin

    def read_into(self, destination: Any, count: Optional[int] = None) -> int:
        """
        Move ``count`` bytes (default: len(destination)) out of the buffer.

        Raises InsufficientData, leaving the buffer untouched, when fewer
        than ``count`` bytes are queued. Returns the new tail index.
        """
        out = as_byte_array(destination, writable=True)
        if count is None:
            count = out.size
        count = _check_count(count)
        _require(count <= out.size, f"destination holds {out.size} bytes, {count} requested")

        self._copy_out(out, count, 0)
        self._tail = self._advance(self._tail, count)
        self._verify()
        return self._tail

    def read(self, count: int) -> bytes:
        """Remove and return the ``count`` oldest bytes."""
        count = _check_count(count)
        out = np.empty(count if count <= self.bytes_used() else 0, dtype=np.uint8)
        self._copy_out(out, count, 0)
        self._tail = self._advance(self._tail, count)
        self._verify()
        return out.tobytes()

    def peek(self, count: int, offset: int = 0) -> bytes:
        """Return ``count`` bytes starting ``offset`` past tail without consuming them."""
        count = _check_count(count)
        offset = _check_count(offset, "offset")
        out = np.empty(count if offset + count <= self.bytes_used() else 0, dtype=np.uint8)
        self._copy_out(out, count, offset)
        return out.tobytes()

    def transfer_from(self, source: BaseRingBuffer, count: int) -> int:
        """Move ``count`` bytes from ``source`` into this buffer."""
        return transfer(self, source, count)

    def find_byte(self, value: ByteValue, offset: int = 0) -> int:
        """
        Locate ``value`` among the queued bytes.

        Returns the tail-relative offset of the first match at or after
        ``offset``, or ``bytes_used()`` when there is none.
        """
        storage = self._live_storage()
        byte = _byte_value(value)
        offset = _check_count(offset, "offset")

        used = self.bytes_used()
        if offset >= used:
            return used

        pos = offset
        for begin, end in self._segments(self._advance(self._tail, offset), used - offset):
            hits = np.flatnonzero(storage[begin:end] == byte)
            if hits.size:
                return pos + int(hits[0])
            pos += end - begin
        return used


class RingBuffer(BaseRingBuffer):
    """Ring buffer that owns storage obtained from an Allocator."""

    def __init__(
        self,
        capacity: Optional[int] = None,
        allocator: Optional[Allocator] = None,
        strict: Optional[bool] = None,
    ):
        if capacity is None:
            capacity = get_config().ring.default_capacity
        capacity = _check_capacity(capacity)
        self._allocator = allocator if allocator is not None else default_allocator()

        nbytes = capacity + 1
        try:
            storage = self._allocator.allocate(nbytes)
        except MemoryError as exc:
            logger.error("Ring storage allocation failed", nbytes=nbytes, error=str(exc))
            raise AllocationFailure(nbytes, str(exc)) from exc
        if storage is None:
            logger.error("Ring storage allocation failed", nbytes=nbytes)
            raise AllocationFailure(nbytes)

        if (
            not isinstance(storage, np.ndarray)
            or storage.dtype != np.uint8
            or storage.ndim != 1
            or storage.size != nbytes
            or not storage.flags.writeable
        ):
            self._allocator.release(storage)
            raise ContractViolation(
                f"{type(self._allocator).__name__} returned unusable storage for {nbytes} bytes"
            )

        super().__init__(storage, strict)
        logger.debug("Ring buffer created", capacity=capacity)

    def close(self) -> None:
        if self._storage is None:
            return
        storage, self._storage = self._storage, None
        self._allocator.release(storage)
        logger.debug("Ring buffer released", capacity=self.capacity())


class StaticRingBuffer(BaseRingBuffer):
    """
    Ring buffer over a caller-owned region of exactly ``capacity + 1`` bytes.

    Writes land directly in the caller's memory. Closing only drops the
    buffer's reference; the region itself is never freed.
    """

    def __init__(self, capacity: int, buffer: Any, strict: Optional[bool] = None):
        capacity = _check_capacity(capacity)
        storage = as_byte_array(buffer, writable=True)
        _require(
            storage.size == capacity + 1,
            f"external buffer must be {capacity + 1} bytes, got {storage.size}",
        )
        super().__init__(storage, strict)
        logger.debug("Static ring buffer attached", capacity=capacity)

    def close(self) -> None:
        self._storage = None


# ---------------------------------------------------------------------------
# Module-level operations
# ---------------------------------------------------------------------------

def create(
    capacity: Optional[int] = None,
    allocator: Optional[Allocator] = None,
    strict: Optional[bool] = None,
) -> RingBuffer:
    """Create a ring buffer with its own storage."""
    return RingBuffer(capacity, allocator=allocator, strict=strict)


def create_over(capacity: int, buffer: Any, strict: Optional[bool] = None) -> StaticRingBuffer:
    """Create a ring buffer over caller-owned storage."""
    return StaticRingBuffer(capacity, buffer, strict=strict)


def transfer(dst: BaseRingBuffer, src: BaseRingBuffer, count: int) -> int:
    """
    Move ``count`` bytes from ``src``'s queued data into ``dst``.

    Each side wraps at its own end, so a single transfer may take up to four
    linear copies. Fails with InsufficientData, mutating neither buffer, if
    ``src`` holds fewer than ``count`` bytes. Overflow on ``dst`` follows the
    same overwrite-oldest rule as ``write``. Returns ``dst``'s new head index.
    """
    dst_storage = dst._live_storage()
    src_storage = src._live_storage()
    _require(dst is not src, "cannot transfer a ring buffer into itself")
    count = _check_count(count)

    available = src.bytes_used()
    if count > available:
        raise InsufficientData(count, available)
    overflow = count > dst.bytes_free()

    copied = 0
    skip = max(0, count - dst.capacity())
    if skip:
        src._tail = src._advance(src._tail, skip)
        dst._head = dst._advance(dst._head, skip)
        copied = skip

    while copied != count:
        n = min(src._size - src._tail, dst._size - dst._head, count - copied)
        dst_storage[dst._head:dst._head + n] = src_storage[src._tail:src._tail + n]
        src._tail = src._advance(src._tail, n)
        dst._head = dst._advance(dst._head, n)
        copied += n

    src._verify()
    dst._finish_write(overflow)
    return dst._head
