# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Per-(account, operation) attempt limiter.

Sliding window held in process memory.  Every attempt counts, whether or
not the password turns out to be right, so the limiter bounds guessing
independently of the lockout counter.
"""

import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Tuple

from fastapi import Request

from core.config import settings
from core.errors import RateLimited


class RateLimiter:
    def __init__(self, limits: Dict[str, int] = None, window_seconds: int = None,
                 clock: Callable[[], float] = time.monotonic):
        self.limits = limits if limits is not None else {
            "download": settings.download_rate_limit,
            "preview": settings.preview_rate_limit,
        }
        self.window = window_seconds or settings.rate_limit_window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: Dict[Tuple[int, str], Deque[float]] = defaultdict(deque)
        self._next_sweep = clock() + self.window

    def __len__(self) -> int:
        """Number of (account, operation) windows currently held."""
        with self._lock:
            return len(self._hits)

    def _prune(self, key: Tuple[int, str], now: float) -> Deque[float]:
        window = self._hits[key]
        while window and now - window[0] >= self.window:
            window.popleft()
        if not window:
            del self._hits[key]
        return window

    def _sweep(self, now: float) -> None:
        """Drop windows whose every hit has aged out.  Runs at most once per window."""
        if now < self._next_sweep:
            return
        for key in list(self._hits):
            self._prune(key, now)
        self._next_sweep = now + self.window

    def hit(self, account_id: int, operation: str) -> None:
        """
        Record one attempt.  Raises :class:`RateLimited` with ``retry_after``
        when the account is already at its cap for *operation*.
        """
        limit = self.limits.get(operation)
        if limit is None:
            return
        now = self._clock()
        with self._lock:
            self._sweep(now)
            key = (account_id, operation)
            window = self._prune(key, now)
            if len(window) >= limit:
                retry_after = self.window - (now - window[0])
                raise RateLimited(retry_after=int(retry_after) + 1)
            window.append(now)
            self._hits[key] = window

    def remaining(self, account_id: int, operation: str) -> int:
        limit = self.limits.get(operation, 0)
        now = self._clock()
        with self._lock:
            window = self._hits.get((account_id, operation), ())
            return max(limit - sum(1 for t in window if now - t < self.window), 0)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


def get_rate_limiter(request: Request) -> RateLimiter:
    """Dependency: the application's attempt limiter."""
    return request.app.state.rate_limiter
