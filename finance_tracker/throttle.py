"""Per-key sliding-window rate limiting."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Hashable


class SlidingWindowThrottle:
    """Allow at most ``limit`` hits per ``period`` seconds for each key."""

    def __init__(self, limit: int, period: float, clock: Callable[[], float] = time.monotonic):
        if limit <= 0 or period <= 0:
            raise ValueError("limit and period must be positive")
        self.limit = limit
        self.period = period
        self.clock = clock
        self._hits: Dict[Hashable, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _prune(self, key: Hashable, now: float) -> Deque[float]:
        hits = self._hits[key]
        while hits and now - hits[0] >= self.period:
            hits.popleft()
        return hits

    def retry_after(self, key: Hashable) -> float:
        """Seconds until ``key`` may hit again (0 when it may hit now)."""
        with self._lock:
            now = self.clock()
            hits = self._prune(key, now)
            if len(hits) < self.limit:
                return 0.0
            return self.period - (now - hits[0])

    def hit(self, key: Hashable) -> bool:
        """Record a hit for ``key`` if allowed; return whether it was."""
        with self._lock:
            now = self.clock()
            hits = self._prune(key, now)
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True
