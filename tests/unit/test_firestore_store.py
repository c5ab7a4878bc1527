"""
Tests for the Firestore Store.

The Firestore client is replaced by a MagicMock; only the mapping
between Store calls and Firestore calls is checked.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from followup_engine.config import StoreSettings
from followup_engine.core.exceptions import StoreError, StoreUnavailableError
from followup_engine.core.models import FollowUpStatus, NotificationStatus
from followup_engine.infrastructure.firestore import FirestoreStore
from followup_engine.infrastructure.store import FollowUp, NotificationFilter


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_doc(doc_id: str, data: dict, exists: bool = True) -> MagicMock:
    doc = MagicMock()
    doc.id = doc_id
    doc.exists = exists
    doc.to_dict.return_value = data
    return doc


@pytest.fixture
def mock_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def firestore_store(mock_client) -> FirestoreStore:
    settings = StoreSettings(backend="firestore", project="test-project", timeout_seconds=5)
    return FirestoreStore(settings, client=mock_client)


def follow_up_doc(**overrides) -> dict:
    data = {
        "client_id": "C1",
        "scheduled_date": utc(2025, 6, 10, 14),
        "timezone": "America/Toronto",
        "duration": 60,
        "title": "Check-in",
        "status": "SCHEDULED",
        "priority": "HIGH",
        "category": "SERVICE_CHECK",
        "recurrence_pattern": "NONE",
    }
    data.update(overrides)
    return data


class TestReads:
    """Tests for document reads."""

    def test_get_follow_up(self, firestore_store, mock_client):
        collection = mock_client.collection.return_value
        collection.document.return_value.get.return_value = make_doc("F1", follow_up_doc())

        follow_up = firestore_store.get_follow_up("F1")

        mock_client.collection.assert_called_with("follow_ups")
        collection.document.assert_called_with("F1")
        assert follow_up.id == "F1"
        assert follow_up.scheduled_date == utc(2025, 6, 10, 14)
        assert follow_up.status == FollowUpStatus.SCHEDULED

    def test_get_missing_client(self, firestore_store, mock_client):
        collection = mock_client.collection.return_value
        collection.document.return_value.get.return_value = make_doc("C9", {}, exists=False)

        assert firestore_store.get_client("C9") is None

    def test_iso_string_dates_are_parsed(self, firestore_store, mock_client):
        collection = mock_client.collection.return_value
        collection.document.return_value.get.return_value = make_doc(
            "F1", follow_up_doc(scheduled_date="2025-06-10T10:00:00-04:00"),
        )

        assert firestore_store.get_follow_up("F1").scheduled_date == utc(2025, 6, 10, 14)

    def test_range_query_filters_overlap_locally(self, firestore_store, mock_client):
        """Documents ending at or before the range start are dropped after the query."""
        query = mock_client.collection.return_value.where.return_value
        query.where.return_value = query
        query.stream.return_value = [
            make_doc("early", follow_up_doc(scheduled_date=utc(2025, 6, 10, 13))),
            make_doc("overlap", follow_up_doc(scheduled_date=utc(2025, 6, 10, 14, 30))),
        ]

        found = firestore_store.find_follow_ups_by_client_and_range(
            "C1", utc(2025, 6, 10, 14), utc(2025, 6, 10, 15), (FollowUpStatus.SCHEDULED,),
        )

        assert [f.id for f in found] == ["overlap"]
        query.where.assert_any_call("status", "in", ["SCHEDULED"])

    def test_range_query_looks_back_over_longest_duration(self, mock_client):
        """A follow-up that started 25 hours earlier and still runs is found."""
        settings = StoreSettings(backend="firestore", timeout_seconds=5, overlap_lookback_minutes=2000)
        long_store = FirestoreStore(settings, client=mock_client)
        query = mock_client.collection.return_value.where.return_value
        query.where.return_value = query
        query.stream.return_value = [
            make_doc("long", follow_up_doc(scheduled_date=utc(2025, 6, 9, 13), duration=2000)),
        ]
        start = utc(2025, 6, 10, 14)

        found = long_store.find_follow_ups_by_client_and_range("C1", start, utc(2025, 6, 10, 15))

        query.where.assert_any_call("scheduled_date", ">", utc(2025, 6, 9, 4, 40))
        assert [f.id for f in found] == ["long"]


class TestWrites:
    """Tests for document writes and the unit of work."""

    def test_create_outside_transaction_writes_immediately(self, firestore_store, mock_client):
        ref = mock_client.collection.return_value.document.return_value
        ref.id = "generated"

        created = firestore_store.create_follow_up(
            FollowUp(id="", client_id="C1", scheduled_date=utc(2025, 6, 10, 14))
        )

        assert created.id == "generated"
        ref.set.assert_called_once()
        assert ref.set.call_args.args[0]["status"] == "SCHEDULED"

    def test_transaction_batches_writes(self, firestore_store, mock_client):
        batch = mock_client.batch.return_value
        ref = mock_client.collection.return_value.document.return_value
        ref.id = "generated"

        def work():
            firestore_store.create_follow_up(
                FollowUp(id="", client_id="C1", scheduled_date=utc(2025, 6, 10, 14))
            )
            firestore_store.update_follow_up("F1", {"status": FollowUpStatus.CANCELLED})
            return "done"

        assert firestore_store.run_transaction(work) == "done"

        ref.set.assert_not_called()
        batch.set.assert_called_once()
        batch.update.assert_called_once_with(ref, {"status": "CANCELLED"})
        batch.commit.assert_called_once_with(timeout=5)

    def test_transaction_error_discards_batch(self, firestore_store, mock_client):
        batch = mock_client.batch.return_value

        def work():
            firestore_store.update_follow_up("F1", {"title": "x"})
            raise ValueError("abort")

        with pytest.raises(ValueError):
            firestore_store.run_transaction(work)

        batch.commit.assert_not_called()

    def test_update_notifications_where(self, firestore_store, mock_client):
        pending = make_doc("N1", {
            "follow_up_id": "F1", "type": "REMINDER_7_DAYS", "channel": "EMAIL",
            "recipient": "a@example.com", "scheduled_at": utc(2025, 6, 3, 14), "status": "PENDING",
        })
        sent = make_doc("N2", {
            "follow_up_id": "F1", "type": "REMINDER_24_HOURS", "channel": "EMAIL",
            "recipient": "a@example.com", "scheduled_at": utc(2025, 6, 9, 14), "status": "SENT",
        })
        mock_client.collection.return_value.where.return_value.stream.return_value = [pending, sent]

        count = firestore_store.update_notifications_where(
            NotificationFilter(("F1",), (NotificationStatus.PENDING,)),
            {"status": NotificationStatus.FAILED, "error_message": "Follow-up cancelled"},
        )

        assert count == 1
        pending.reference.update.assert_called_once_with(
            {"status": "FAILED", "error_message": "Follow-up cancelled"}, timeout=5,
        )
        sent.reference.update.assert_not_called()


class TestErrors:
    """Tests for error translation and health."""

    def test_transient_errors_become_unavailable(self, firestore_store, mock_client):
        collection = mock_client.collection.return_value
        collection.document.return_value.get.side_effect = google_exceptions.ServiceUnavailable("down")

        with pytest.raises(StoreUnavailableError):
            firestore_store.get_follow_up("F1")

    def test_other_api_errors_become_store_errors(self, firestore_store, mock_client):
        collection = mock_client.collection.return_value
        collection.document.return_value.get.side_effect = google_exceptions.PermissionDenied("no")

        with pytest.raises(StoreError) as exc_info:
            firestore_store.get_follow_up("F1")

        assert not isinstance(exc_info.value, StoreUnavailableError)

    def test_health_check(self, firestore_store, mock_client):
        assert firestore_store.health_check().healthy

        mock_client.collection.return_value.limit.return_value.get.side_effect = (
            google_exceptions.DeadlineExceeded("slow")
        )

        health = firestore_store.health_check()
        assert not health.healthy
        assert health.backend == "firestore"
        assert health.to_dict()["project"] == "test-project"

    def test_injected_client_is_not_closed(self, firestore_store, mock_client):
        firestore_store.close()

        mock_client.close.assert_not_called()
