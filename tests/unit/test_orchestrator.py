"""
Tests for the Follow-up Orchestrator.

Covers the read use cases and the retry, circuit breaker and
transaction wrapping around writes.
"""

from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from followup_engine.core.exceptions import (
    CircuitOpenError,
    NotFoundError,
    StoreUnavailableError,
)
from followup_engine.core.models import FollowUpStatus
from followup_engine.infrastructure.locks import ClientLockRegistry
from followup_engine.infrastructure.metrics import get_metrics
from followup_engine.infrastructure.store import CircuitBreaker, CircuitBreakerConfig, CircuitState
from followup_engine.services import FollowUpOrchestrator


TORONTO = ZoneInfo("America/Toronto")


def local(*args) -> datetime:
    return datetime(*args, tzinfo=TORONTO)


SCHEDULE_BODY = {
    "clientId": "C1",
    "scheduledDate": "2025-06-10T10:00:00",
    "timezone": "America/Toronto",
}


class TestGetFollowUp:
    """Tests for get_follow_up."""

    def test_single_follow_up(self, orchestrator):
        created = orchestrator.create_follow_up(SCHEDULE_BODY)

        details = orchestrator.get_follow_up(created.follow_up.id)

        assert details.follow_up == created.follow_up
        assert len(details.notifications) == 4
        assert details.series is None

    def test_parent_and_child_share_series(self, orchestrator):
        created = orchestrator.create_follow_up({
            **SCHEDULE_BODY,
            "recurrencePattern": "WEEKLY",
            "recurrenceData": {"maxOccurrences": 3},
        })
        child_ids = tuple(child.id for child in created.children)

        parent_details = orchestrator.get_follow_up(created.follow_up.id)
        child_details = orchestrator.get_follow_up(child_ids[0])

        assert parent_details.series.occurrence_ids == child_ids
        assert child_details.series == parent_details.series

    def test_missing(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_follow_up("nope")


class TestListClientFollowUps:
    """Tests for list_client_follow_ups."""

    @pytest.fixture
    def history(self, make_follow_up):
        """One overdue, one upcoming, one cancelled upcoming, one done in the past."""
        return {
            "overdue": make_follow_up(local(2025, 5, 28, 10, 0)),
            "upcoming": make_follow_up(local(2025, 6, 10, 10, 0)),
            "cancelled": make_follow_up(local(2025, 6, 11, 10, 0), status=FollowUpStatus.CANCELLED),
            "done": make_follow_up(local(2025, 5, 20, 10, 0), status=FollowUpStatus.COMPLETED),
        }

    def test_all_sorted_by_date(self, orchestrator, history):
        follow_ups = orchestrator.list_client_follow_ups("C1")

        assert [f.id for f in follow_ups] == [
            history["done"].id,
            history["overdue"].id,
            history["upcoming"].id,
            history["cancelled"].id,
        ]

    def test_upcoming_only_defaults_to_active(self, orchestrator, history):
        follow_ups = orchestrator.list_client_follow_ups("C1", upcoming_only=True)

        assert [f.id for f in follow_ups] == [history["upcoming"].id]

    def test_overdue_only(self, orchestrator, history):
        follow_ups = orchestrator.list_client_follow_ups("C1", overdue_only=True)

        assert [f.id for f in follow_ups] == [history["overdue"].id]

    def test_explicit_statuses(self, orchestrator, history):
        follow_ups = orchestrator.list_client_follow_ups(
            "C1", upcoming_only=True, statuses=[FollowUpStatus.CANCELLED],
        )

        assert [f.id for f in follow_ups] == [history["cancelled"].id]

    def test_unknown_client(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.list_client_follow_ups("ghost")

    def test_client_without_follow_ups(self, orchestrator):
        assert orchestrator.list_client_follow_ups("C2") == []


class TestCheckConflicts:
    """Tests for check_conflicts."""

    def test_naive_start_uses_timezone(self, orchestrator, make_follow_up):
        make_follow_up(local(2025, 6, 10, 10, 0))

        report = orchestrator.check_conflicts("C1", datetime(2025, 6, 10, 10, 30), 30, "America/Toronto")

        assert report.has_conflicts
        assert report.alternatives

    def test_does_not_book(self, orchestrator, store):
        orchestrator.check_conflicts("C1", datetime(2025, 6, 10, 14, 0, tzinfo=timezone.utc))

        assert store.find_follow_ups_by_client_and_range("C1") == []

    def test_unknown_client(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.check_conflicts("ghost", datetime(2025, 6, 10, 10, 0))


class TestResilience:
    """Tests for retries, the circuit breaker and transactions."""

    def test_transient_failure_is_retried(self, orchestrator, store):
        original = store.get_client
        calls = []

        def flaky(client_id):
            calls.append(client_id)
            if len(calls) == 1:
                raise StoreUnavailableError("Firestore unavailable")
            return original(client_id)

        before = get_metrics().store_retries_total.value(operation="create_follow_up")
        with patch.object(store, "get_client", side_effect=flaky):
            result = orchestrator.create_follow_up(SCHEDULE_BODY)

        assert result.follow_up.id
        assert len(calls) == 2
        assert get_metrics().store_retries_total.value(operation="create_follow_up") == before + 1

    def test_retries_are_bounded(self, orchestrator, store):
        with patch.object(store, "get_client", side_effect=StoreUnavailableError("down")) as mocked:
            with pytest.raises(StoreUnavailableError):
                orchestrator.create_follow_up(SCHEDULE_BODY)

        assert mocked.call_count == 3

    def test_backoff_doubles(self, store, test_settings):
        delays = []
        slow_settings = replace(
            test_settings,
            store=replace(test_settings.store, retry_backoff_seconds=0.5),
        )
        orchestrator = FollowUpOrchestrator(store, slow_settings, sleep=delays.append)

        with patch.object(store, "get_client", side_effect=StoreUnavailableError("down")):
            with pytest.raises(StoreUnavailableError):
                orchestrator.list_client_follow_ups("C1")

        assert delays == [0.5, 1.0]

    def test_open_circuit_fails_fast(self, store, test_settings):
        breaker = CircuitBreaker("store-test", CircuitBreakerConfig(failure_threshold=2))
        orchestrator = FollowUpOrchestrator(store, test_settings, breaker=breaker, sleep=lambda s: None)

        with patch.object(store, "get_client", side_effect=StoreUnavailableError("down")) as mocked:
            with pytest.raises(StoreUnavailableError):
                orchestrator.list_client_follow_ups("C1")
            assert breaker.state == CircuitState.OPEN

            with pytest.raises(CircuitOpenError):
                orchestrator.list_client_follow_ups("C1")

        assert mocked.call_count == 2
        assert orchestrator.health()["circuit_breaker"] == "open"

    def test_business_errors_do_not_trip_breaker(self, orchestrator):
        for _ in range(6):
            with pytest.raises(NotFoundError):
                orchestrator.get_follow_up("missing")

        assert orchestrator.breaker.state == CircuitState.CLOSED

    def test_failed_write_leaves_nothing_behind(self, orchestrator, store):
        """A failure after the first write rolls back the whole create."""
        with patch.object(store, "create_notification", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                orchestrator.create_follow_up(SCHEDULE_BODY)

        assert store.find_follow_ups_by_client_and_range("C1") == []

    def test_busy_client_lock(self, store, test_settings):
        locks = ClientLockRegistry(timeout_seconds=0.01)
        orchestrator = FollowUpOrchestrator(store, test_settings, locks=locks, sleep=lambda s: None)

        with locks.hold("C1"):
            with pytest.raises(StoreUnavailableError) as exc_info:
                orchestrator.create_follow_up(SCHEDULE_BODY)

        assert "retry later" in exc_info.value.message


class TestHealth:
    """Tests for health."""

    def test_health(self, orchestrator):
        report = orchestrator.health()

        assert report["healthy"] is True
        assert report["backend"] == "memory"
        assert report["circuit_breaker"] == "closed"
