"""
Sliding-Window Rate Limiter

Counts requests per (user, action class) over a trailing window.

DESIGN DECISION: Expired timestamps are purged lazily, when the key is
next checked. There is no background sweeper task: a key nobody touches
costs a few bytes until the table grows past the prune threshold, at which
point fully expired keys are dropped inline during a check.
"""

import threading
import time
from collections import deque
from typing import Callable


class RateLimiter:
    """
    Check-and-record limiter.

    Safe to call from any number of concurrently running sessions; the
    lock is never held across an await.
    """

    def __init__(
        self,
        prune_threshold: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            prune_threshold: Number of tracked keys above which fully
                expired keys are pruned during a check.
            clock: Seconds source; injectable for tests.
        """
        self._windows: dict[tuple[str, str], deque[float]] = {}
        self._window_lengths: dict[tuple[str, str], float] = {}
        self._prune_threshold = prune_threshold
        self._clock = clock
        self._lock = threading.Lock()

    def allow(self, user_id: str, action_class: str, limit: int, window_ms: int) -> bool:
        """
        Record a request if capacity remains.

        Returns True and records the request when fewer than `limit`
        requests were recorded in the trailing `window_ms`; returns False
        and records nothing otherwise. A non-positive limit always denies.
        """
        if limit <= 0:
            return False

        now = self._clock()
        window = window_ms / 1000.0
        key = (user_id, action_class)

        with self._lock:
            timestamps = self._windows.get(key)
            if timestamps is None:
                if len(self._windows) >= self._prune_threshold:
                    self._prune(now)
                timestamps = deque()
                self._windows[key] = timestamps
            self._window_lengths[key] = window

            cutoff = now - window
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

            if len(timestamps) >= limit:
                return False

            timestamps.append(now)
            return True

    def _prune(self, now: float) -> None:
        """Drop keys whose newest timestamp has left the window."""
        stale = [
            key for key, timestamps in self._windows.items()
            if not timestamps or timestamps[-1] <= now - self._window_lengths[key]
        ]
        for key in stale:
            del self._windows[key]
            del self._window_lengths[key]

    def remaining(self, user_id: str, action_class: str, limit: int, window_ms: int) -> int:
        """How many more requests would currently be allowed (read-only)."""
        now = self._clock()
        with self._lock:
            timestamps = self._windows.get((user_id, action_class), ())
            recent = sum(1 for ts in timestamps if ts > now - window_ms / 1000.0)
        return max(0, limit - recent)

    def reset(self, user_id: str) -> None:
        """Forget every window of one user."""
        with self._lock:
            for key in [k for k in self._windows if k[0] == user_id]:
                del self._windows[key]
                del self._window_lengths[key]

    def __len__(self) -> int:
        return len(self._windows)
