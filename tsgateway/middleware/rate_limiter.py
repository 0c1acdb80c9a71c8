from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable

from tsgateway.errors import StatusCode, StatusError

logger = logging.getLogger(__name__)


class TokenBucket:
    """Token bucket refilled continuously at ``rate`` tokens/second up to ``burst``."""

    def __init__(self, rate: float = 5.0, burst: int = 10, clock: Callable[[], float] = time.monotonic):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last_refill = clock()
        self._lock = Lock()

    def _refill(self, now: float):
        elapsed = max(now - self._last_refill, 0.0)
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._last_refill = now

    def allow(self) -> bool:
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def tokens(self) -> float:
        with self._lock:
            self._refill(self._clock())
            return self._tokens


class RateLimitInterceptor:
    """Rejects calls once the shared bucket is empty."""

    def __init__(self, limiter: TokenBucket):
        self.limiter = limiter

    def __call__(self, ctx, request, info, handler):
        if not self.limiter.allow():
            logger.warning(
                "Rate limit exceeded",
                extra={"method": info.full_method, "request_id": ctx.request_id},
            )
            raise StatusError(StatusCode.RESOURCE_EXHAUSTED, "rate limit exceeded")
        return handler(ctx, request)
