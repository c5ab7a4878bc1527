"""
Tests for the Store Circuit Breaker and Retry.
"""

import pytest

from followup_engine.core.exceptions import (
    CircuitOpenError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
)
from followup_engine.infrastructure.store import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    call_with_retry,
)


def failing():
    raise StoreUnavailableError("down")


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=2))

        for _ in range(2):
            with pytest.raises(StoreUnavailableError):
                breaker.call(failing)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            breaker.call(lambda: "never")

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=2))

        with pytest.raises(StoreUnavailableError):
            breaker.call(failing)
        breaker.call(lambda: "ok")
        with pytest.raises(StoreUnavailableError):
            breaker.call(failing)

        assert breaker.state == CircuitState.CLOSED

    def test_business_errors_are_excluded(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1))

        def missing():
            raise NotFoundError("Follow-up", "x")

        with pytest.raises(NotFoundError):
            breaker.call(missing)

        assert breaker.state == CircuitState.CLOSED

    def test_half_open_recovery(self, frozen_clock):
        """After the timeout, two successes close the circuit again."""
        breaker = CircuitBreaker(
            "test",
            CircuitBreakerConfig(failure_threshold=1, timeout_seconds=30),
        )
        with pytest.raises(StoreUnavailableError):
            breaker.call(failing)

        frozen_clock.tick(31)

        assert breaker.state == CircuitState.HALF_OPEN
        breaker.call(lambda: "ok")
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.call(lambda: "ok")
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, frozen_clock):
        breaker = CircuitBreaker(
            "test",
            CircuitBreakerConfig(failure_threshold=1, timeout_seconds=30),
        )
        with pytest.raises(StoreUnavailableError):
            breaker.call(failing)
        frozen_clock.tick(31)

        with pytest.raises(StoreUnavailableError):
            breaker.call(failing)

        assert breaker.state == CircuitState.OPEN

    def test_reset(self):
        breaker = CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=1))
        with pytest.raises(StoreUnavailableError):
            breaker.call(failing)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED


class TestCallWithRetry:
    """Tests for call_with_retry."""

    def test_returns_first_success(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise StoreUnavailableError("blip")
            return "done"

        delays = []
        result = call_with_retry(flaky, attempts=3, backoff_seconds=0.1, sleep=delays.append)

        assert result == "done"
        assert delays == [0.1, 0.2]

    def test_gives_up_after_attempts(self):
        delays = []

        with pytest.raises(StoreUnavailableError):
            call_with_retry(failing, attempts=2, backoff_seconds=0, sleep=delays.append)

        assert len(delays) == 1

    def test_non_transient_errors_are_not_retried(self):
        calls = []

        def broken():
            calls.append(1)
            raise StoreError("bad document")

        with pytest.raises(StoreError):
            call_with_retry(broken, attempts=3, sleep=lambda s: None)

        assert len(calls) == 1

    def test_open_circuit_is_not_retried(self):
        calls = []

        def rejected():
            calls.append(1)
            raise CircuitOpenError("open")

        with pytest.raises(CircuitOpenError):
            call_with_retry(rejected, attempts=3, sleep=lambda s: None)

        assert len(calls) == 1
