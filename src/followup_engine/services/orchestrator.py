"""
Follow-up Orchestrator.

Entry point for every follow-up use case. Each write runs under the
client's lock, inside a single Store transaction, wrapped by the
circuit breaker and the bounded transient-failure retry.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from followup_engine.config import Settings, settings
from followup_engine.core import as_utc, localize, now_utc
from followup_engine.core.exceptions import NotFoundError
from followup_engine.core.models import ACTIVE_STATUSES, FollowUpStatus
from followup_engine.infrastructure.locks import ClientLockRegistry
from followup_engine.infrastructure.logging import get_logger
from followup_engine.infrastructure.store import (
    CircuitBreaker,
    CircuitBreakerConfig,
    FollowUp,
    FollowUpNotification,
    RecurrenceSeries,
    Store,
    StoreHealth,
    call_with_retry,
)
from followup_engine.services.cancellation import CancellationResult, CancellationService
from followup_engine.services.common import load_follow_up
from followup_engine.services.completion import CompletionResult, CompletionService
from followup_engine.services.conflicts import ConflictDetector, ConflictReport
from followup_engine.services.notifications import NotificationPlanner
from followup_engine.services.scheduler import CreateResult, SchedulerService, UpdateResult
from followup_engine.services.validation import FollowUpValidator


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FollowUpDetails:
    """A follow-up with its notifications and, for a series, its occurrences."""
    follow_up: FollowUp
    notifications: Tuple[FollowUpNotification, ...] = ()
    series: Optional[RecurrenceSeries] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "followUp": self.follow_up.to_response(),
            "notifications": [n.to_response() for n in self.notifications],
            "series": self.series.to_response() if self.series else None,
        }


class FollowUpOrchestrator:
    """
    Composes the follow-up services.

    Payloads are validated here, before any lock is taken, so invalid
    requests never touch the Store.
    """

    def __init__(
        self,
        store: Store,
        app_settings: Optional[Settings] = None,
        locks: Optional[ClientLockRegistry] = None,
        breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._settings = app_settings or settings
        scheduling = self._settings.scheduling
        store_settings = self._settings.store

        self._validator = FollowUpValidator(scheduling)
        self._detector = ConflictDetector(store, self._settings.business_hours.hours, scheduling)
        planner = NotificationPlanner(store, self._settings.notifications)
        self._scheduler = SchedulerService(store, self._detector, planner, scheduling=scheduling)
        self._cancellation = CancellationService(store, planner)
        self._completion = CompletionService(store, self._detector, planner, scheduling)

        self._locks = locks or ClientLockRegistry(store_settings.lock_timeout_seconds)
        self._breaker = breaker or CircuitBreaker(
            f"store-{store.backend_name}",
            CircuitBreakerConfig(
                failure_threshold=store_settings.breaker_failure_threshold,
                timeout_seconds=store_settings.breaker_reset_seconds,
            ),
        )
        self._sleep = sleep

    @property
    def store(self) -> Store:
        return self._store

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _call(self, fn: Callable[[], T], operation: str) -> T:
        store_settings = self._settings.store
        return call_with_retry(
            lambda: self._breaker.call(fn),
            attempts=store_settings.retry_attempts,
            backoff_seconds=store_settings.retry_backoff_seconds,
            operation=operation,
            sleep=self._sleep,
        )

    def _execute(self, client_id: str, operation: str, fn: Callable[[], T]) -> T:
        with self._locks.hold(client_id):
            return self._call(lambda: self._store.run_transaction(fn), operation)

    # -------------------------------------------------------------------------
    # Use cases
    # -------------------------------------------------------------------------

    def create_follow_up(self, payload: Any) -> CreateResult:
        """
        Book a follow-up from a create payload.

        Raises:
            ValidationError: If the payload is invalid.
            NotFoundError: If the client doesn't exist.
            ConflictError: If the slot is unavailable.
            StoreUnavailableError: If the Store stays unreachable.
        """
        request = self._validator.parse_schedule_request(payload)
        return self._execute(
            request.client_id,
            "create_follow_up",
            lambda: self._scheduler.create(request),
        )

    def update_follow_up(self, follow_up_id: str, payload: Any) -> UpdateResult:
        request = self._validator.parse_update_request(payload)
        existing = self._call(lambda: load_follow_up(self._store, follow_up_id), "get_follow_up")
        return self._execute(
            existing.client_id,
            "update_follow_up",
            lambda: self._scheduler.update(follow_up_id, request),
        )

    def cancel_follow_up(
        self,
        follow_up_id: str,
        reason: Optional[str] = None,
        cascade: bool = False,
    ) -> CancellationResult:
        existing = self._call(lambda: load_follow_up(self._store, follow_up_id), "get_follow_up")
        return self._execute(
            existing.client_id,
            "cancel_follow_up",
            lambda: self._cancellation.cancel(follow_up_id, reason, cascade),
        )

    def complete_follow_up(self, follow_up_id: str, payload: Any) -> CompletionResult:
        request = self._validator.parse_complete_request(payload)
        existing = self._call(lambda: load_follow_up(self._store, follow_up_id), "get_follow_up")
        return self._execute(
            existing.client_id,
            "complete_follow_up",
            lambda: self._completion.complete(follow_up_id, request),
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_follow_up(self, follow_up_id: str) -> FollowUpDetails:
        """Get a follow-up with its notifications and series."""
        def read() -> FollowUpDetails:
            follow_up = load_follow_up(self._store, follow_up_id)
            series = None
            if follow_up.is_recurring_parent:
                series = self._store.get_series(follow_up.id)
            elif follow_up.parent_follow_up_id:
                series = self._store.get_series(follow_up.parent_follow_up_id)
            return FollowUpDetails(
                follow_up=follow_up,
                notifications=tuple(self._store.list_notifications(follow_up.id)),
                series=series,
            )

        return self._call(read, "get_follow_up")

    def list_client_follow_ups(
        self,
        client_id: str,
        upcoming_only: bool = False,
        overdue_only: bool = False,
        statuses: Sequence[FollowUpStatus] = (),
    ) -> List[FollowUp]:
        """
        List a client's follow-ups by scheduled date.

        Args:
            client_id: Client identifier.
            upcoming_only: Only follow-ups starting now or later.
            overdue_only: Only active follow-ups whose start has passed.
            statuses: Restrict to these statuses. Defaults to the active
                statuses when one of the time filters is set.

        Raises:
            NotFoundError: If the client doesn't exist.
        """
        def read() -> List[FollowUp]:
            if self._store.get_client(client_id) is None:
                raise NotFoundError("Client", client_id)

            wanted = tuple(statuses)
            if not wanted and (upcoming_only or overdue_only):
                wanted = ACTIVE_STATUSES
            follow_ups = self._store.find_follow_ups_by_client_and_range(
                client_id, statuses=wanted,
            )

            now = now_utc()
            if upcoming_only:
                follow_ups = [f for f in follow_ups if f.scheduled_date >= now]
            if overdue_only:
                follow_ups = [f for f in follow_ups if f.scheduled_date < now and f.is_active]
            return follow_ups

        return self._call(read, "list_client_follow_ups")

    def check_conflicts(
        self,
        client_id: str,
        start: datetime,
        duration: Optional[int] = None,
        tz_name: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> ConflictReport:
        """Report conflicts and alternatives for a prospective slot without booking it."""
        tz_name = tz_name or self._settings.scheduling.default_timezone
        duration = duration or self._settings.scheduling.default_duration_minutes
        start = localize(start, tz_name) if start.tzinfo is None else as_utc(start)

        def read() -> ConflictReport:
            if self._store.get_client(client_id) is None:
                raise NotFoundError("Client", client_id)
            return self._detector.check(start, duration, client_id, tz_name, exclude_id)

        return self._call(read, "check_conflicts")

    def health(self) -> Dict[str, Any]:
        """Store diagnostics plus the circuit breaker state."""
        health: StoreHealth = self._store.health_check()
        report = health.to_dict()
        report["circuit_breaker"] = self._breaker.state.value
        return report
