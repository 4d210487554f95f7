from __future__ import annotations

import numpy as np


def grown_capacity(current: int, required: int) -> int:
    """Capacity after growing an array of ``current`` slots to fit ``required``.

    Doubles the current capacity, or jumps straight to ``required`` if doubling
    is not enough. Never shrinks.
    """
    if required <= current:
        return current
    return max(2 * current, required)


class PositionCounts:
    """Per-read-position event counter backed by a growable int64 array.

    Indexing past the current capacity grows the array; counts already stored
    are kept.
    """

    def __init__(self, capacity: int = 150) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._counts = np.zeros(capacity, dtype=np.int64)

    def __len__(self) -> int:
        return len(self._counts)

    @property
    def capacity(self) -> int:
        return len(self._counts)

    def reserve(self, size: int) -> None:
        """Make sure positions ``[0, size)`` are addressable."""
        new_cap = grown_capacity(len(self._counts), size)
        if new_cap != len(self._counts):
            grown = np.zeros(new_cap, dtype=np.int64)
            grown[: len(self._counts)] = self._counts
            self._counts = grown

    def increment(self, pos: int, n: int = 1) -> None:
        if pos < 0:
            raise IndexError(f"negative read position {pos}")
        self.reserve(pos + 1)
        self._counts[pos] += n

    def increment_range(self, start: int, stop: int) -> None:
        """Add one to every position in ``[start, stop)``."""
        if start < 0 or stop < start:
            raise IndexError(f"invalid read position range [{start}, {stop})")
        self.reserve(stop)
        self._counts[start:stop] += 1

    def __getitem__(self, pos: int) -> int:
        if pos < 0:
            raise IndexError(f"negative read position {pos}")
        if pos >= len(self._counts):
            return 0
        return int(self._counts[pos])

    def total(self) -> int:
        return int(self._counts.sum())

    def any(self) -> bool:
        return bool(self._counts.any())

    def values(self, length: int | None = None) -> np.ndarray:
        """Return a copy of the counts, zero-padded or truncated to ``length``."""
        if length is None:
            return self._counts.copy()
        out = np.zeros(length, dtype=np.int64)
        n = min(length, len(self._counts))
        out[:n] = self._counts[:n]
        return out

    def set_values(self, values: np.ndarray) -> None:
        """Overwrite the leading counts with ``values``, growing if needed."""
        self.reserve(len(values))
        self._counts[: len(values)] = values
        self._counts[len(values) :] = 0
