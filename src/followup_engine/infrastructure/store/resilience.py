"""
Store Resilience.

Circuit breaker and bounded retry around Store calls. Only
``StoreUnavailableError`` counts as a transient failure; business
errors pass straight through and are never retried.
"""

import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from followup_engine.core.exceptions import (
    BusinessError,
    CircuitOpenError,
    StoreUnavailableError,
)
from followup_engine.infrastructure.logging import get_logger
from followup_engine.infrastructure.metrics import get_metrics


logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if the store recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 5       # Failures before opening
    success_threshold: int = 2       # Successes to close from half-open
    timeout_seconds: float = 30.0    # Time before trying again
    excluded_exceptions: Tuple[Type[Exception], ...] = (BusinessError,)


class CircuitBreaker:
    """
    Circuit breaker for Store calls.

    Fails fast with ``CircuitOpenError`` once the Store has failed
    ``failure_threshold`` times in a row, then lets a trial call through
    after ``timeout_seconds``.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ) -> None:
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._lock = Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for timeout."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._should_attempt_reset():
                self._set_state(CircuitState.HALF_OPEN)
                self._success_count = 0
                logger.info(
                    f"Circuit breaker '{self._name}' entering half-open state",
                    extra={"extra_fields": {"circuit": self._name}}
                )
            return self._state

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        get_metrics().circuit_breaker_state.set(_STATE_GAUGE_VALUES[state], circuit=self._name)

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to try again."""
        if self._last_failure_time is None:
            return True
        elapsed = time.monotonic() - self._last_failure_time
        return elapsed >= self._config.timeout_seconds

    def _record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
                    self._failure_count = 0
                    logger.info(
                        f"Circuit breaker '{self._name}' closed after recovery",
                        extra={"extra_fields": {
                            "circuit": self._name,
                            "success_count": self._success_count,
                        }}
                    )
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def _record_failure(self, exception: Exception) -> None:
        if isinstance(exception, self._config.excluded_exceptions):
            self._record_success()
            return

        with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
                logger.warning(
                    f"Circuit breaker '{self._name}' reopened after half-open failure",
                    extra={"extra_fields": {
                        "circuit": self._name,
                        "error": str(exception),
                    }}
                )
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._config.failure_threshold
            ):
                self._set_state(CircuitState.OPEN)
                logger.warning(
                    f"Circuit breaker '{self._name}' opened after {self._failure_count} failures",
                    extra={"extra_fields": {
                        "circuit": self._name,
                        "failure_count": self._failure_count,
                        "error": str(exception),
                    }}
                )

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Execute a function through the circuit breaker.

        Args:
            func: Function to execute.
            *args: Function arguments.
            **kwargs: Function keyword arguments.

        Returns:
            Function result.

        Raises:
            CircuitOpenError: If the circuit is open.
            Exception: Any exception from the function.
        """
        if self.state == CircuitState.OPEN:
            raise CircuitOpenError(
                f"Circuit breaker '{self._name}' is open",
                {"circuit": self._name, "state": CircuitState.OPEN.value},
            )

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._record_failure(e)
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            logger.info(
                f"Circuit breaker '{self._name}' manually reset",
                extra={"extra_fields": {"circuit": self._name}}
            )


def call_with_retry(
    func: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.2,
    operation: str = "store_call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func``, retrying transient Store failures with exponential backoff.

    Args:
        func: Zero-argument callable.
        attempts: Total number of tries, first one included.
        backoff_seconds: Delay before the first retry; doubles each time.
        operation: Name used in logs and metrics.
        sleep: Sleep function.

    Returns:
        The result of ``func``.

    Raises:
        StoreUnavailableError: When every attempt failed or the error is
            not retryable.
    """
    attempt = 1
    while True:
        try:
            return func()
        except StoreUnavailableError as e:
            if not e.retryable or attempt >= attempts:
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            get_metrics().store_retries_total.inc(operation=operation)
            logger.warning(
                f"{operation} failed, retrying in {delay:.2f}s",
                extra={"extra_fields": {
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": str(e),
                }}
            )
            sleep(delay)
            attempt += 1
