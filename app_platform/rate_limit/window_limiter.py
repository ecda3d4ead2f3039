"""In-process keyed window rate limiter.

Counters live in this process only. Multi-instance deployments would need a
shared backend behind the same ``check_and_record`` signature.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from domains.auth.models import RateLimitWindow


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary string.

    Keys map onto a fixed pool of striped locks, so lock state never grows
    with the number of callers. Every ``prune_every`` recorded hits, windows
    older than the longest window seen so far are dropped.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        *,
        prune_every: int = 1024,
        lock_stripes: int = 64,
    ) -> None:
        """Initialize the RateLimiter."""

        self._clock = clock or time.monotonic # Time source in seconds
        self._windows: Dict[str, RateLimitWindow] = {} # Active windows by key
        self._stripes = tuple(threading.Lock() for _ in range(max(1, lock_stripes)))
        self._counter_lock = threading.Lock() # Guards the hit counter below
        self._prune_every = max(1, prune_every)
        self._hits = 0
        self._max_window_ms = 0

    def _lock_for(self, key: str) -> threading.Lock:
        return self._stripes[hash(key) % len(self._stripes)]

    def check_and_record(self, key: str, max_requests: int, window_ms: int) -> bool:
        """Record one hit for ``key`` and report whether it is allowed."""

        window_s = window_ms / 1000.0
        with self._lock_for(key):
            now = self._clock()
            window = self._windows.get(key)

            if window is None or window.elapsed(now, window_s):
                self._windows[key] = RateLimitWindow(key=key, count=1, window_start=now)
                allowed = True
            elif window.count < max_requests:
                window.count += 1
                allowed = True
            else:
                allowed = False

        self._tick(window_ms)
        return allowed

    def _tick(self, window_ms: int) -> None:
        with self._counter_lock:
            self._hits += 1
            self._max_window_ms = max(self._max_window_ms, window_ms)
            due = self._hits % self._prune_every == 0
            horizon = self._max_window_ms
        if due:
            self.prune(horizon)

    def retry_after(self, key: str, window_ms: int) -> int:
        """Seconds until the current window for ``key`` resets."""

        with self._lock_for(key):
            window = self._windows.get(key)
            if window is None:
                return 0
            remaining = window.window_start + window_ms / 1000.0 - self._clock()
        return max(0, int(remaining + 0.999))

    def window(self, key: str) -> Optional[RateLimitWindow]:
        with self._lock_for(key):
            window = self._windows.get(key)
            if window is None:
                return None
            return RateLimitWindow(key=window.key, count=window.count, window_start=window.window_start)

    def reset(self, key: str) -> None:
        with self._lock_for(key):
            self._windows.pop(key, None)

    def prune(self, max_window_ms: int) -> int:
        """Drop windows older than ``max_window_ms``; returns how many were removed."""

        cutoff = self._clock() - max_window_ms / 1000.0
        removed = 0
        for key in list(self._windows):
            with self._lock_for(key):
                window = self._windows.get(key)
                if window is not None and window.window_start <= cutoff:
                    del self._windows[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._windows)
