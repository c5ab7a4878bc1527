"""
Rate Limiting.

Token-bucket limiting for the write endpoints, keyed by caller address.
Each application gets its own limiter, stored in ``app.extensions``.
"""

import time
from dataclasses import dataclass
from functools import wraps
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple

from flask import Flask, current_app, jsonify, request

from followup_engine.config import RateLimitSettings
from followup_engine.infrastructure.logging import get_logger


logger = get_logger(__name__)

EXTENSION_KEY = "followup_engine.rate_limiter"


@dataclass
class TokenBucket:
    """Token bucket for one caller."""
    capacity: float
    tokens: float
    last_update: float
    refill_rate: float  # tokens per second

    def consume(self, now: float) -> bool:
        """Take one token. Returns False when the bucket is empty."""
        self.tokens = min(self.capacity, self.tokens + (now - self.last_update) * self.refill_rate)
        self.last_update = now
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    @property
    def retry_after(self) -> int:
        """Seconds until a token is available."""
        if self.tokens >= 1:
            return 0
        return int((1 - self.tokens) / self.refill_rate) + 1


class RateLimiter:
    """Thread-safe per-caller token buckets."""

    def __init__(
        self,
        config: RateLimitSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def _bucket_for(self, caller: str) -> TokenBucket:
        if caller not in self._buckets:
            self._buckets[caller] = TokenBucket(
                capacity=float(self._config.burst_size),
                tokens=float(self._config.burst_size),
                last_update=self._clock(),
                refill_rate=self._config.requests_per_minute / 60.0,
            )
        return self._buckets[caller]

    def is_allowed(self, caller: str) -> Tuple[bool, int]:
        """
        Check whether a caller may make a request now.

        Returns:
            Tuple of (is_allowed, retry_after_seconds)
        """
        with self._lock:
            bucket = self._bucket_for(caller)
            if bucket.consume(self._clock()):
                return True, 0
            return False, bucket.retry_after


def init_rate_limiter(app: Flask, config: RateLimitSettings) -> RateLimiter:
    limiter = RateLimiter(config)
    app.extensions[EXTENSION_KEY] = limiter
    return limiter


def _caller_address() -> str:
    # Cloud Run sits behind a load balancer
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def rate_limit(func: Callable) -> Callable:
    """
    Decorator to apply rate limiting to an endpoint.

    Usage:
        @api_bp.route("/follow-ups/schedule", methods=["POST"])
        @rate_limit
        def schedule_follow_up():
            ...
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        limiter: Optional[RateLimiter] = current_app.extensions.get(EXTENSION_KEY)
        if limiter is None or not limiter.enabled:
            return func(*args, **kwargs)

        caller = _caller_address()
        allowed, retry_after = limiter.is_allowed(caller)
        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"extra_fields": {
                    "caller": caller,
                    "retry_after": retry_after,
                }}
            )
            response = jsonify({
                "success": False,
                "error": "Rate limit exceeded",
                "error_type": "rate_limit_exceeded",
                "retry_after": retry_after,
            })
            response.status_code = 429
            response.headers["Retry-After"] = str(retry_after)
            return response

        return func(*args, **kwargs)

    return wrapper
