"""Display-only sliding window of local request timestamps.

The server-reported window state is the source of truth for budget
decisions; this history only feeds the status report.
"""

from collections import deque
from typing import Deque


class RequestHistoryTracker:
    """Epoch-ms timestamps of successful requests, oldest first."""

    def __init__(self) -> None:
        self._timestamps: Deque[float] = deque()

    def __len__(self) -> int:
        return len(self._timestamps)

    def record(self, now: float) -> None:
        self._timestamps.append(now)

    def prune(self, now: float, longest_window_seconds: int) -> None:
        """Drop entries older than the longest configured window."""
        cutoff = now - longest_window_seconds * 1000
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()

    def count_since(self, since: float) -> int:
        """Count requests made at or after ``since`` (epoch ms)."""
        return sum(1 for t in self._timestamps if t >= since)

    def clear(self) -> None:
        self._timestamps.clear()
