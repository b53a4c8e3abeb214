"""In-memory fixed-window counter used to throttle failed logins."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class InMemoryRateLimiter:
    """Fixed-window limiter per key.

    `blocked` only inspects the window; `hit` records one attempt. Login
    records failures only and calls `reset` once the caller succeeds.
    """

    def __init__(self, clock=time.monotonic):
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()
        self._clock = clock

    def _prune(self, key: str, window_seconds: int, now: float) -> deque:
        q = self._hits[key]
        cutoff = now - window_seconds
        while q and q[0] <= cutoff:
            q.popleft()
        return q

    def blocked(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Return `(True, retry_after)` when `key` used up its window."""
        now = self._clock()
        with self._lock:
            q = self._prune(key, window_seconds, now)
            if len(q) >= max_requests:
                return True, max(1, int(window_seconds - (now - q[0])))
        return False, 0

    def hit(self, key: str) -> None:
        with self._lock:
            self._hits[key].append(self._clock())

    def reset(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()
