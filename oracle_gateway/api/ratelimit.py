# oracle_gateway/api/ratelimit.py
"""
Per-IP rate limiting for the gateway.

Uses a fixed window per client IP: the first request opens a window of
RATE_LIMIT_WINDOW_SECONDS, and at most RATE_LIMIT_REQUESTS requests are
allowed until it resets. Applied to every route, before payment checks.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from oracle_gateway.core.config import settings
from oracle_gateway.x402.middleware import get_client_ip

logger = logging.getLogger(__name__)

# Stale windows are dropped at most this often
CLEANUP_INTERVAL_SECONDS = 300


@dataclass
class RateLimitWindow:
    count: int
    reset_at: float


class RateLimiter:
    """
    In-memory fixed-window rate limiter keyed by client IP.

    Thread-safe: each check is a single update under the limiter's lock.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    @property
    def max_requests(self) -> int:
        if self._max_requests is not None:
            return self._max_requests
        return settings.RATE_LIMIT_REQUESTS

    @property
    def window_seconds(self) -> int:
        if self._window_seconds is not None:
            return self._window_seconds
        return settings.RATE_LIMIT_WINDOW_SECONDS

    def hit(self, client_ip: str) -> Tuple[bool, int, float]:
        """
        Count one request from ``client_ip``.

        Returns:
            Tuple of (allowed, requests_in_window, seconds_until_reset).
        """
        now = self._clock()
        self._maybe_cleanup(now)

        with self._lock:
            window = self._windows.get(client_ip)
            if window is None or now >= window.reset_at:
                window = RateLimitWindow(count=1, reset_at=now + self.window_seconds)
                self._windows[client_ip] = window
                return (True, 1, self.window_seconds)

            retry_after = window.reset_at - now
            if window.count >= self.max_requests:
                return (False, window.count, retry_after)

            window.count += 1
            return (True, window.count, retry_after)

    def reset_all(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return

        with self._lock:
            if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
                return
            self._last_cleanup = now
            stale = [ip for ip, w in self._windows.items() if now >= w.reset_at]
            for ip in stale:
                del self._windows[ip]

        if stale:
            logger.debug(f"Cleaned up {len(stale)} stale rate limit entries")


def get_rate_limit_headers(limit: int, remaining: int, reset_seconds: float) -> Dict[str, str]:
    """Generate rate limit headers for HTTP responses."""
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(max(0, remaining)),
        "X-RateLimit-Reset": str(int(reset_seconds + 0.999)),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Returns 429 once a client IP exceeds its request budget for the window."""

    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self.limiter = limiter or RateLimiter()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        client_ip = get_client_ip(request)
        allowed, count, reset_seconds = self.limiter.hit(client_ip)
        limit = self.limiter.max_requests
        headers = get_rate_limit_headers(limit, limit - count, reset_seconds)

        if not allowed:
            retry_after = int(reset_seconds + 0.999)
            logger.warning(f"Rate limit exceeded for {client_ip}: {count}/{limit} requests")
            headers["Retry-After"] = str(retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too Many Requests",
                    "message": f"Rate limit exceeded. Try again in {retry_after} seconds",
                    "retryAfter": retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        for header, value in headers.items():
            response.headers[header] = value
        return response
