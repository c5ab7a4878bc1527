"""
Store Interface.

Persistence boundary consumed by the scheduling services. Backends
manage their own connection lifecycle through ``open`` / ``close`` and
report failures as typed exceptions: ``StoreUnavailableError`` for
transient connectivity problems, ``StoreError`` for everything else.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from followup_engine.core.models import FollowUpStatus, NotificationStatus
from followup_engine.infrastructure.store.models import (
    Client,
    FollowUp,
    FollowUpNotification,
    NotificationFilter,
    RecurrenceSeries,
    StoreHealth,
)


T = TypeVar("T")


class Store(ABC):
    """Abstract persistence backend for follow-ups and notifications."""

    backend_name = "abstract"

    def open(self) -> None:
        """Acquire connections. Safe to call more than once."""

    def close(self) -> None:
        """Release connections. Safe to call more than once."""

    def __enter__(self) -> "Store":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abstractmethod
    def health_check(self) -> StoreHealth:
        """Probe the backend. Never raises."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[Client]:
        """Get a client by id, or None."""

    @abstractmethod
    def get_follow_up(self, follow_up_id: str) -> Optional[FollowUp]:
        """Get a follow-up by id, or None."""

    @abstractmethod
    def find_follow_ups_by_client_and_range(
        self,
        client_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Sequence[FollowUpStatus] = (),
    ) -> List[FollowUp]:
        """
        Find a client's follow-ups whose interval overlaps ``[start, end)``.

        Args:
            client_id: Client identifier.
            start: Range start, unbounded when None.
            end: Range end (exclusive), unbounded when None.
            statuses: Restrict to these statuses; all statuses when empty.

        Returns:
            Follow-ups ordered by scheduled date.
        """

    @abstractmethod
    def find_children(self, parent_id: str) -> List[FollowUp]:
        """Get the occurrences created from a recurring parent, ordered by date."""

    def get_series(self, parent_id: str) -> RecurrenceSeries:
        """Resolve a recurring series as parent id plus ordered occurrence ids."""
        children = self.find_children(parent_id)
        return RecurrenceSeries(
            parent_id=parent_id,
            occurrence_ids=tuple(child.id for child in children),
        )

    @abstractmethod
    def list_notifications(
        self,
        follow_up_id: str,
        statuses: Sequence[NotificationStatus] = (),
    ) -> List[FollowUpNotification]:
        """List the notifications owned by a follow-up, ordered by scheduled time."""

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_follow_up(self, follow_up: FollowUp) -> FollowUp:
        """Persist a new follow-up and return it with its assigned id."""

    @abstractmethod
    def update_follow_up(self, follow_up_id: str, changes: Dict[str, Any]) -> None:
        """
        Apply field changes to a follow-up.

        Args:
            follow_up_id: Follow-up identifier.
            changes: FollowUp field names mapped to their new values.

        Raises:
            StoreError: If the follow-up does not exist.
        """

    @abstractmethod
    def create_notification(self, notification: FollowUpNotification) -> FollowUpNotification:
        """Persist a new notification and return it with its assigned id."""

    @abstractmethod
    def update_notifications_where(
        self,
        notification_filter: NotificationFilter,
        changes: Dict[str, Any],
    ) -> int:
        """Apply field changes to every matching notification. Returns the count."""

    @abstractmethod
    def run_transaction(self, fn: Callable[[], T]) -> T:
        """
        Run ``fn`` so that its writes commit together or not at all.

        Any exception raised by ``fn`` discards its writes and propagates.
        """
