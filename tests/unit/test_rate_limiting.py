"""
Tests for Rate Limiting.
"""

import pytest

from followup_engine.api.rate_limiting import RateLimiter, TokenBucket
from followup_engine.config import RateLimitSettings


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> RateLimiter:
    config = RateLimitSettings(enabled=True, requests_per_minute=60, burst_size=2)
    return RateLimiter(config, clock=clock)


class TestTokenBucket:
    """Tests for TokenBucket."""

    def test_refill_is_capped_at_capacity(self):
        bucket = TokenBucket(capacity=2.0, tokens=0.0, last_update=0.0, refill_rate=1.0)

        assert bucket.consume(now=100.0)
        assert bucket.tokens == 1.0

    def test_retry_after_rounds_up(self):
        bucket = TokenBucket(capacity=1.0, tokens=0.5, last_update=0.0, refill_rate=0.5)

        assert bucket.retry_after == 2

    def test_retry_after_is_zero_with_tokens(self):
        bucket = TokenBucket(capacity=1.0, tokens=1.0, last_update=0.0, refill_rate=1.0)

        assert bucket.retry_after == 0


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_allows_burst_then_rejects(self, limiter):
        """The third immediate request exceeds a burst of two."""
        assert limiter.is_allowed("10.0.0.1") == (True, 0)
        assert limiter.is_allowed("10.0.0.1") == (True, 0)

        allowed, retry_after = limiter.is_allowed("10.0.0.1")

        assert not allowed
        assert retry_after == 2

    def test_tokens_refill_over_time(self, limiter, clock):
        limiter.is_allowed("10.0.0.1")
        limiter.is_allowed("10.0.0.1")
        assert not limiter.is_allowed("10.0.0.1")[0]

        clock.now = 1.0

        assert limiter.is_allowed("10.0.0.1")[0]

    def test_callers_have_separate_buckets(self, limiter):
        limiter.is_allowed("10.0.0.1")
        limiter.is_allowed("10.0.0.1")

        assert limiter.is_allowed("10.0.0.2") == (True, 0)

    def test_enabled_follows_settings(self, clock):
        disabled = RateLimiter(RateLimitSettings(enabled=False), clock=clock)

        assert not disabled.enabled
