"""
Burst throttling middleware for expensive endpoints.

Caps requests per client IP in a fixed window (10/minute by default)
before any profile lookup or generation work happens. This is separate
from generation quotas, which are enforced by the rate limit interceptor.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, Tuple
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse

from ..core.dependencies import get_client_ip
from ..core.errors import UsageErrorCode

logger = logging.getLogger(__name__)


class FixedWindowCounter:
    """
    Per-key request counts in fixed windows.

    At most ``max_keys`` buckets are tracked: adding a key beyond that first
    drops expired buckets, then the oldest half by window start.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_keys: int = 10000):
        self._clock = clock
        self.max_keys = max_keys
        self._buckets: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int, int]:
        """
        Count one request for ``key``.

        Returns:
            (is_allowed, remaining, reset_in_seconds)
        """
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)

            # Reset bucket if window expired
            if bucket is None or now >= bucket["reset_at"]:
                if bucket is None and len(self._buckets) >= self.max_keys:
                    self._evict(now)
                bucket = {"count": 0, "reset_at": now + window_seconds}
                self._buckets[key] = bucket

            reset_in = max(0, int(bucket["reset_at"] - now))
            if bucket["count"] >= limit:
                return False, 0, reset_in

            bucket["count"] += 1
            return True, limit - int(bucket["count"]), reset_in

    def sweep(self) -> int:
        """Drop buckets whose window has passed."""
        with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, bucket in self._buckets.items() if now >= bucket["reset_at"]]
        for key in expired:
            del self._buckets[key]
        return len(expired)

    def _evict(self, now: float) -> None:
        """Make room for a new key. Caller holds the lock."""
        if self._drop_expired(now) or len(self._buckets) < self.max_keys:
            return
        ordered = sorted(self._buckets.items(), key=lambda item: item[1]["reset_at"])
        for key, _ in ordered[: max(1, len(ordered) // 2)]:
            del self._buckets[key]
        logger.warning(f"Burst throttle tracking {self.max_keys} keys, evicted the oldest half")

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


class BurstThrottleMiddleware(BaseHTTPMiddleware):
    """
    Middleware that throttles bursts on selected path prefixes, keyed by client IP.
    """

    def __init__(
        self,
        app,
        limit: int = 10,
        window_seconds: int = 60,
        path_prefixes: Iterable[str] = (),
        counter: FixedWindowCounter = None,
        max_keys: int = 10000,
    ):
        super().__init__(app)
        self.limit = limit
        self.window_seconds = window_seconds
        self.path_prefixes = tuple(path_prefixes)
        self.counter = counter or FixedWindowCounter(max_keys=max_keys)

    async def dispatch(self, request: Request, call_next) -> Response:
        # Skip OPTIONS requests (CORS preflight) and unthrottled paths
        if request.method == "OPTIONS" or not request.url.path.startswith(self.path_prefixes):
            return await call_next(request)

        key = f"ip:{get_client_ip(request)}"
        is_allowed, remaining, reset_in = self.counter.hit(key, self.limit, self.window_seconds)

        if not is_allowed:
            logger.info(f"Burst limit exceeded for {key} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests. Please wait a minute before trying again.",
                    "code": UsageErrorCode.RATE_LIMITED.value,
                    "retry_after": reset_in,
                },
                headers={
                    "X-RateLimit-Limit": str(self.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_in),
                    "Retry-After": str(reset_in),
                }
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_in)

        return response
