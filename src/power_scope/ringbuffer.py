# src/power_scope/ringbuffer.py
"""Bounded history buffers.

Every history series in the metrics state (scalars, per-CPU, per-core,
per-process) is a RingBuffer. Old samples fall off the front once the
buffer is full; nothing is persisted.
"""

from collections import deque
from collections.abc import Iterable
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Fixed-capacity FIFO of samples."""

    def __init__(self, max_samples: int = 30, initial: Iterable[T] = ()) -> None:
        if max_samples < 1:
            raise ValueError(f"max_samples must be >= 1, got {max_samples}")
        self._samples: deque[T] = deque(initial, maxlen=max_samples)

    def __len__(self) -> int:
        """Return number of samples in buffer."""
        return len(self._samples)

    def __iter__(self):
        return iter(self._samples)

    def __repr__(self) -> str:
        return f"RingBuffer({list(self._samples)!r}, capacity={self.capacity})"

    @property
    def is_empty(self) -> bool:
        """Return True if buffer has no samples."""
        return len(self._samples) == 0

    @property
    def capacity(self) -> int:
        """Return maximum number of samples the buffer can hold."""
        return self._samples.maxlen or 0

    @property
    def samples(self) -> list[T]:
        """Read-only access to samples (returns a copy)."""
        return list(self._samples)

    @property
    def latest(self) -> T | None:
        """Most recent sample, or None when empty."""
        return self._samples[-1] if self._samples else None

    def push(self, value: T) -> None:
        """Add a sample to the buffer."""
        self._samples.append(value)

    def pad(self, value: T, count: int) -> None:
        """Append ``count`` copies of ``value`` (clamped to capacity)."""
        for _ in range(min(count, self.capacity)):
            self._samples.append(value)

    def clear(self) -> None:
        """Empty the buffer."""
        self._samples.clear()

    def freeze(self) -> tuple[T, ...]:
        """Return immutable copy of buffer contents."""
        return tuple(self._samples)
