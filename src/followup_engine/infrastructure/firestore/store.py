"""
Firestore Store.

Store implementation over google-cloud-firestore collections. A
transaction is a unit of work: writes issued inside ``run_transaction``
are buffered in a ``WriteBatch`` and committed atomically at the end,
while reads see committed state.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from google.api_core import exceptions as google_exceptions
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import firestore

from followup_engine.config import StoreSettings, settings
from followup_engine.core.exceptions import StoreError, StoreUnavailableError
from followup_engine.core.models import FollowUpStatus, NotificationStatus
from followup_engine.infrastructure.logging import get_logger, log_duration
from followup_engine.infrastructure.store.base import Store, T
from followup_engine.infrastructure.store.models import (
    Client,
    FollowUp,
    FollowUpNotification,
    NotificationFilter,
    StoreHealth,
    to_document_value,
)


logger = get_logger(__name__)


# Firestore caps the number of values in an "in" filter
IN_FILTER_LIMIT = 30

TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.TooManyRequests,
    google_exceptions.RetryError,
)


class FirestoreStore(Store):
    """Store backed by Firestore collections."""

    backend_name = "firestore"

    def __init__(
        self,
        store_settings: Optional[StoreSettings] = None,
        client: Optional[firestore.Client] = None,
    ) -> None:
        self._settings = store_settings or settings.store
        self._client = client
        self._owns_client = client is None
        self._local = threading.local()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> None:
        if self._client is not None:
            return
        try:
            self._client = firestore.Client(project=self._settings.project)
        except DefaultCredentialsError as e:
            raise StoreUnavailableError(
                f"Firestore credentials unavailable: {e}",
                {"backend": self.backend_name},
            ) from e
        logger.info(
            "Firestore client opened",
            extra={"extra_fields": {"project": self._settings.project}}
        )

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
            logger.info("Firestore client closed")

    @property
    def client(self) -> firestore.Client:
        if self._client is None:
            self.open()
        return self._client

    @property
    def _timeout(self) -> float:
        return self._settings.timeout_seconds

    def _collection(self, name: str):
        return self.client.collection(name)

    @property
    def _clients(self):
        return self._collection(self._settings.client_collection)

    @property
    def _follow_ups(self):
        return self._collection(self._settings.followup_collection)

    @property
    def _notifications(self):
        return self._collection(self._settings.notification_collection)

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        """Map google-api-core errors onto Store errors."""
        try:
            yield
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailableError(
                f"Firestore unavailable during {operation}: {e}",
                {"backend": self.backend_name, "operation": operation},
            ) from e
        except google_exceptions.GoogleAPICallError as e:
            raise StoreError(
                f"Firestore error during {operation}: {e}",
                {"backend": self.backend_name, "operation": operation},
            ) from e

    def health_check(self) -> StoreHealth:
        start = time.time()
        try:
            with self._translate_errors("health_check"):
                self._follow_ups.limit(1).get(timeout=self._timeout)
        except StoreError as e:
            return StoreHealth(
                healthy=False,
                backend=self.backend_name,
                latency_ms=int((time.time() - start) * 1000),
                error=str(e),
                details={"project": self._settings.project},
            )
        return StoreHealth(
            healthy=True,
            backend=self.backend_name,
            latency_ms=int((time.time() - start) * 1000),
            details={"project": self._settings.project},
        )

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    @property
    def _batch(self) -> Optional[firestore.WriteBatch]:
        return getattr(self._local, "batch", None)

    def _set(self, ref, data: Dict[str, Any]) -> None:
        if self._batch is not None:
            self._batch.set(ref, data)
            return
        with self._translate_errors("set"):
            ref.set(data, timeout=self._timeout)

    def _update(self, ref, data: Dict[str, Any]) -> None:
        if self._batch is not None:
            self._batch.update(ref, data)
            return
        with self._translate_errors("update"):
            ref.update(data, timeout=self._timeout)

    @log_duration("firestore_transaction")
    def run_transaction(self, fn: Callable[[], T]) -> T:
        if self._batch is not None:
            return fn()

        self._local.batch = self.client.batch()
        try:
            result = fn()
            with self._translate_errors("commit"):
                self._local.batch.commit(timeout=self._timeout)
            return result
        finally:
            self._local.batch = None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_client(self, client_id: str) -> Optional[Client]:
        with self._translate_errors("get_client"):
            doc = self._clients.document(client_id).get(timeout=self._timeout)
        if not doc.exists:
            return None
        return Client.from_document(doc.id, doc.to_dict())

    def get_follow_up(self, follow_up_id: str) -> Optional[FollowUp]:
        with self._translate_errors("get_follow_up"):
            doc = self._follow_ups.document(follow_up_id).get(timeout=self._timeout)
        if not doc.exists:
            return None
        return FollowUp.from_document(doc.id, doc.to_dict())

    @log_duration("find_follow_ups_by_client_and_range")
    def find_follow_ups_by_client_and_range(
        self,
        client_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Sequence[FollowUpStatus] = (),
    ) -> List[FollowUp]:
        """
        Find a client's follow-ups overlapping ``[start, end)``.

        Firestore cannot filter on a computed end, so the query bounds the
        start dates (looking back over the longest allowed duration) and
        the exact overlap test runs here.
        """
        query = self._follow_ups.where("client_id", "==", client_id)
        if end is not None:
            query = query.where("scheduled_date", "<", end)
        if start is not None:
            lookback = timedelta(minutes=self._settings.overlap_lookback_minutes)
            query = query.where("scheduled_date", ">", start - lookback)
        if statuses:
            query = query.where("status", "in", [status.value for status in statuses])

        with self._translate_errors("find_follow_ups_by_client_and_range"):
            follow_ups = [
                FollowUp.from_document(doc.id, doc.to_dict())
                for doc in query.stream(timeout=self._timeout)
            ]

        if start is not None:
            follow_ups = [f for f in follow_ups if start < f.end_date]
        return sorted(follow_ups, key=lambda f: f.scheduled_date)

    def find_children(self, parent_id: str) -> List[FollowUp]:
        query = self._follow_ups.where("parent_follow_up_id", "==", parent_id)
        with self._translate_errors("find_children"):
            children = [
                FollowUp.from_document(doc.id, doc.to_dict())
                for doc in query.stream(timeout=self._timeout)
            ]
        return sorted(children, key=lambda f: f.scheduled_date)

    def list_notifications(
        self,
        follow_up_id: str,
        statuses: Sequence[NotificationStatus] = (),
    ) -> List[FollowUpNotification]:
        notification_filter = NotificationFilter((follow_up_id,), tuple(statuses))
        query = self._notifications.where("follow_up_id", "==", follow_up_id)
        with self._translate_errors("list_notifications"):
            notifications = [
                FollowUpNotification.from_document(doc.id, doc.to_dict())
                for doc in query.stream(timeout=self._timeout)
            ]
        matches = [n for n in notifications if notification_filter.matches(n)]
        return sorted(matches, key=lambda n: n.scheduled_at)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_follow_up(self, follow_up: FollowUp) -> FollowUp:
        ref = self._follow_ups.document(follow_up.id) if follow_up.id else self._follow_ups.document()
        created = replace(follow_up, id=ref.id)
        self._set(ref, created.to_document())

        logger.info(
            f"Created follow-up {ref.id}",
            extra={"extra_fields": {
                "follow_up_id": ref.id,
                "client_id": created.client_id,
                "scheduled_date": created.scheduled_date.isoformat(),
                "parent_follow_up_id": created.parent_follow_up_id,
            }}
        )

        return created

    def update_follow_up(self, follow_up_id: str, changes: Dict[str, Any]) -> None:
        self._update(
            self._follow_ups.document(follow_up_id),
            to_document_value(changes),
        )

    def create_notification(self, notification: FollowUpNotification) -> FollowUpNotification:
        ref = self._notifications.document(notification.id) if notification.id else self._notifications.document()
        created = replace(notification, id=ref.id)
        self._set(ref, created.to_document())
        return created

    def update_notifications_where(
        self,
        notification_filter: NotificationFilter,
        changes: Dict[str, Any],
    ) -> int:
        data = to_document_value(changes)
        if "notification_type" in data:
            data["type"] = data.pop("notification_type")

        ids = list(notification_filter.follow_up_ids)
        count = 0
        for offset in range(0, len(ids), IN_FILTER_LIMIT):
            chunk = ids[offset:offset + IN_FILTER_LIMIT]
            query = self._notifications.where("follow_up_id", "in", chunk)
            with self._translate_errors("update_notifications_where"):
                docs = list(query.stream(timeout=self._timeout))
            for doc in docs:
                notification = FollowUpNotification.from_document(doc.id, doc.to_dict())
                if notification_filter.matches(notification):
                    self._update(doc.reference, data)
                    count += 1

        logger.info(
            f"Updated {count} notifications",
            extra={"extra_fields": {
                "follow_up_count": len(ids),
                "updated_count": count,
            }}
        )

        return count
