"""
In-memory fixed-window rate limiting.

A RateLimiter instance is created per application (stored on app.state)
and handed to endpoints through a FastAPI dependency, so tests can build
their own limiter instead of sharing process-wide state.
"""

import logging
import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request, status

from core.config import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed-window counter per key.

    Expired windows are purged at most once per window length, keeping the
    map bounded by the number of keys active in the current window.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()
        # key -> (window start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._last_cleanup = clock()

    def hit(self, key: str) -> bool:
        """
        Count one request for ``key``.

        Returns:
            True if the request is allowed, False if the limit is exceeded
        """
        now = self._clock()
        with self._lock:
            self._cleanup(now)
            window_start, count = self._windows.get(key, (now, 0))
            if now - window_start >= self.window_seconds:
                window_start, count = now, 0
            if count >= self.max_requests:
                self._windows[key] = (window_start, count)
                return False
            self._windows[key] = (window_start, count + 1)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until the key's current window resets."""
        now = self._clock()
        with self._lock:
            window_start, _ = self._windows.get(key, (now, 0))
        return max(int(window_start + self.window_seconds - now + 0.999), 0)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self.window_seconds:
            return
        expired = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for key in expired:
            del self._windows[key]
        self._last_cleanup = now


def get_rate_limiter(request: Request) -> RateLimiter:
    """FastAPI dependency: the limiter owned by the running application."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = RateLimiter()
        request.app.state.rate_limiter = limiter
    return limiter


def enforce_rate_limit(request: Request) -> None:
    """
    FastAPI dependency that rejects clients over the limit with 429.

    Keyed by client IP (first X-Forwarded-For hop when behind a proxy).
    """
    limiter = get_rate_limiter(request)
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        client_key = forwarded.split(",")[0].strip()
    else:
        client_key = request.client.host if request.client else "unknown"

    if not limiter.hit(client_key):
        logger.warning(f"Rate limit exceeded for {client_key}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please try again later",
            headers={"Retry-After": str(limiter.retry_after(client_key))},
        )
