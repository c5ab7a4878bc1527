"""
In-memory Store.

Thread-safe dictionary backend used for local development and tests.
Transactions snapshot every collection and restore it when the
wrapped function raises.
"""

import copy
import uuid
from dataclasses import replace
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Sequence

from followup_engine.core.exceptions import StoreError
from followup_engine.core.models import FollowUpStatus, NotificationStatus
from followup_engine.infrastructure.logging import get_logger
from followup_engine.infrastructure.store.base import Store, T
from followup_engine.infrastructure.store.models import (
    Client,
    FollowUp,
    FollowUpNotification,
    NotificationFilter,
    StoreHealth,
)


logger = get_logger(__name__)


class InMemoryStore(Store):
    """Store backed by plain dictionaries."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._lock = RLock()
        self._clients: Dict[str, Client] = {}
        self._follow_ups: Dict[str, FollowUp] = {}
        self._notifications: Dict[str, FollowUpNotification] = {}
        self._transaction_depth = 0
        self._closed = False

    def open(self) -> None:
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def health_check(self) -> StoreHealth:
        return StoreHealth(
            healthy=not self._closed,
            backend=self.backend_name,
            latency_ms=0,
            error="store closed" if self._closed else None,
            details={
                "follow_ups": len(self._follow_ups),
                "notifications": len(self._notifications),
            },
        )

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_client(self, client: Client) -> Client:
        """Register a client record."""
        with self._lock:
            self._clients[client.id] = client
        return client

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_client(self, client_id: str) -> Optional[Client]:
        with self._lock:
            return self._clients.get(client_id)

    def get_follow_up(self, follow_up_id: str) -> Optional[FollowUp]:
        with self._lock:
            return self._follow_ups.get(follow_up_id)

    def find_follow_ups_by_client_and_range(
        self,
        client_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Sequence[FollowUpStatus] = (),
    ) -> List[FollowUp]:
        with self._lock:
            matches = [
                follow_up for follow_up in self._follow_ups.values()
                if follow_up.client_id == client_id
                and (not statuses or follow_up.status in statuses)
                and (end is None or follow_up.scheduled_date < end)
                and (start is None or start < follow_up.end_date)
            ]
        return sorted(matches, key=lambda f: f.scheduled_date)

    def find_children(self, parent_id: str) -> List[FollowUp]:
        with self._lock:
            children = [
                follow_up for follow_up in self._follow_ups.values()
                if follow_up.parent_follow_up_id == parent_id
            ]
        return sorted(children, key=lambda f: f.scheduled_date)

    def list_notifications(
        self,
        follow_up_id: str,
        statuses: Sequence[NotificationStatus] = (),
    ) -> List[FollowUpNotification]:
        notification_filter = NotificationFilter((follow_up_id,), tuple(statuses))
        with self._lock:
            matches = [n for n in self._notifications.values() if notification_filter.matches(n)]
        return sorted(matches, key=lambda n: n.scheduled_at)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_follow_up(self, follow_up: FollowUp) -> FollowUp:
        created = replace(follow_up, id=follow_up.id or self._new_id())
        with self._lock:
            self._follow_ups[created.id] = created
        return created

    def update_follow_up(self, follow_up_id: str, changes: Dict[str, Any]) -> None:
        with self._lock:
            existing = self._follow_ups.get(follow_up_id)
            if existing is None:
                raise StoreError(f"Follow-up {follow_up_id} does not exist")
            self._follow_ups[follow_up_id] = replace(existing, **changes)

    def create_notification(self, notification: FollowUpNotification) -> FollowUpNotification:
        created = replace(notification, id=notification.id or self._new_id())
        with self._lock:
            self._notifications[created.id] = created
        return created

    def update_notifications_where(
        self,
        notification_filter: NotificationFilter,
        changes: Dict[str, Any],
    ) -> int:
        count = 0
        with self._lock:
            for notification_id, notification in list(self._notifications.items()):
                if notification_filter.matches(notification):
                    self._notifications[notification_id] = replace(notification, **changes)
                    count += 1
        return count

    def run_transaction(self, fn: Callable[[], T]) -> T:
        with self._lock:
            if self._transaction_depth:
                return fn()

            snapshot = (
                copy.copy(self._follow_ups),
                copy.copy(self._notifications),
            )
            self._transaction_depth += 1
            try:
                return fn()
            except Exception:
                self._follow_ups, self._notifications = snapshot
                logger.warning(
                    "Transaction rolled back",
                    extra={"extra_fields": {"backend": self.backend_name}}
                )
                raise
            finally:
                self._transaction_depth -= 1
