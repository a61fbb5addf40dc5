"""Sliding-window rate limiting, per key."""

from __future__ import annotations

import threading
import time
from collections import deque


class Limiter:
    """Allows at most ``max_requests`` requests in any ``window`` seconds."""

    def __init__(self, max_requests: int, window: float) -> None:
        self.max_requests = max_requests
        self.window = window
        self._requests: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, cutoff: float) -> None:
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()

    def allow(self) -> bool:
        """Record a request and return True, or return False if over the limit."""
        with self._lock:
            now = time.monotonic()
            self._prune(now - self.window)
            if len(self._requests) >= self.max_requests:
                return False
            self._requests.append(now)
            return True

    def count(self) -> int:
        """Number of requests recorded within the current window."""
        with self._lock:
            cutoff = time.monotonic() - self.window
            return sum(1 for stamp in self._requests if stamp > cutoff)

    def reset(self) -> None:
        """Forget all recorded requests."""
        with self._lock:
            self._requests.clear()


class Registry:
    """Keeps one limiter per key, all sharing the same settings."""

    def __init__(self, max_requests: int, window: float) -> None:
        self.max_requests = max_requests
        self.window = window
        self._limiters: dict[str, Limiter] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Limiter:
        """Return the limiter for ``key``, creating it on first use."""
        with self._lock:
            limiter = self._limiters.get(key)
            if limiter is None:
                limiter = Limiter(self.max_requests, self.window)
                self._limiters[key] = limiter
            return limiter

    def allow(self, key: str) -> bool:
        """Check and record a request for ``key``."""
        return self.get(key).allow()