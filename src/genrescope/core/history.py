"""
Rolling, timestamped feature history.

Every stateful stage (beat tracking, onset tracking, genre smoothing) keeps
a short window of recent values. The window is bounded both by entry count
and, optionally, by age so that a long pause does not leave stale values
influencing the next frame.
"""

from collections import deque
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class RollingHistory(Generic[T]):
    """
    Fixed-capacity FIFO of ``(timestamp_ms, value)`` pairs.

    The oldest entry is evicted first when capacity is reached. When a
    ``horizon_ms`` is given, entries older than ``now - horizon_ms`` are also
    dropped on every append (and on explicit :meth:`expire` calls).
    """

    def __init__(self, capacity: int, horizon_ms: float | None = None):
        """
        Initialize the history.

        Args:
            capacity: Maximum number of retained entries (>= 1).
            horizon_ms: Maximum entry age in milliseconds, or None for
                count-based eviction only.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.horizon_ms = horizon_ms
        self._entries: deque[tuple[float, T]] = deque(maxlen=capacity)

    def append(self, value: T, timestamp_ms: float) -> None:
        """Add a value stamped with ``timestamp_ms`` and evict expired entries."""
        self._entries.append((timestamp_ms, value))
        self.expire(timestamp_ms)

    def expire(self, now_ms: float) -> None:
        """Drop entries older than the horizon relative to ``now_ms``."""
        if self.horizon_ms is None:
            return
        cutoff = now_ms - self.horizon_ms
        while self._entries and self._entries[0][0] < cutoff:
            self._entries.popleft()

    def values(self) -> list[T]:
        """All retained values, oldest first."""
        return [value for _, value in self._entries]

    def timestamps(self) -> list[float]:
        """All retained timestamps, oldest first."""
        return [ts for ts, _ in self._entries]

    def recent(self, n: int) -> list[T]:
        """The most recent ``n`` values (fewer if the history is shorter)."""
        if n <= 0:
            return []
        return [value for _, value in list(self._entries)[-n:]]

    def latest(self) -> T | None:
        """Most recent value, or None when empty."""
        if not self._entries:
            return None
        return self._entries[-1][1]

    def clear(self) -> None:
        self._entries.clear()

    @property
    def is_full(self) -> bool:
        return len(self._entries) == self.capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[tuple[float, T]]:
        return iter(list(self._entries))

    def __bool__(self) -> bool:
        return bool(self._entries)
