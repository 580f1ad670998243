"""In-process fixed-window rate limiter.

Every orchestrator entry point that calls the LLM is checked here first, before
authentication. Callers are identified by user id when authenticated and by
client address otherwise; guests get the tighter daily windows.

Counters live in memory, so they reset when the process restarts.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from daggergm.errors import RateLimitError, ValidationError

logger = logging.getLogger(__name__)

HOUR = 60 * 60
DAY = 24 * HOUR


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: int


RATE_LIMITS: dict[str, dict[str, RateLimit]] = {
    "adventure_generation": {
        "authenticated": RateLimit(10, HOUR),
        "guest": RateLimit(10, HOUR),
    },
    "movement_expansion": {
        "authenticated": RateLimit(50, HOUR),
        "guest": RateLimit(5, DAY),
    },
    "movement_regeneration": {
        "authenticated": RateLimit(30, HOUR),
        "guest": RateLimit(5, DAY),
    },
    "content_refinement": {
        "authenticated": RateLimit(100, HOUR),
        "guest": RateLimit(10, DAY),
    },
}


@dataclass
class _Window:
    count: int
    reset_time: float


class RateLimiter:
    def __init__(self, enabled: bool = True, clock: Callable[[], float] = time.time) -> None:
        self.enabled = enabled
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _cleanup(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if w.reset_time <= now]
        for key in expired:
            del self._windows[key]

    def enforce(self, identifier: str, operation: str, authenticated: bool = True) -> int:
        """Count one request. Returns requests remaining in the window.

        Raises RateLimitError once the window is full.
        """
        if operation not in RATE_LIMITS:
            raise ValidationError(f"Unknown rate-limited operation: {operation!r}")
        if not self.enabled:
            return -1
        limit = RATE_LIMITS[operation]["authenticated" if authenticated else "guest"]
        key = f"{identifier}:{operation}"

        with self._lock:
            now = self._clock()
            self._cleanup(now)
            window = self._windows.get(key)
            if window is None:
                self._windows[key] = _Window(count=1, reset_time=now + limit.window_seconds)
                return limit.max_requests - 1

            if window.count >= limit.max_requests:
                retry_after = math.ceil(window.reset_time - now)
                logger.warning("rate limit hit identifier=%s operation=%s", identifier, operation)
                raise RateLimitError(
                    f"Rate limit exceeded for {operation}. Try again in {retry_after} seconds.",
                    reset_time=window.reset_time,
                    retry_after_seconds=retry_after,
                )
            window.count += 1
            return limit.max_requests - window.count

    def remaining(self, identifier: str, operation: str, authenticated: bool = True) -> int:
        limit = RATE_LIMITS[operation]["authenticated" if authenticated else "guest"]
        with self._lock:
            window = self._windows.get(f"{identifier}:{operation}")
            if window is None or window.reset_time <= self._clock():
                return limit.max_requests
            return max(0, limit.max_requests - window.count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
