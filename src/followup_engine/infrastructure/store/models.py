"""
Store Data Models.

Persisted entities exchanged with the Store. Uses frozen dataclasses
for immutability; ``from_document`` / ``to_document`` map to storage
documents (snake_case) and ``to_response`` to API payloads (camelCase).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from dateutil.parser import isoparse

from followup_engine.core.models import (
    ACTIVE_STATUSES,
    ClientImportance,
    FollowUpCategory,
    FollowUpStatus,
    IntervalUnit,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    Priority,
    RecurrencePattern,
    RecurrenceSpec,
)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes (Firestore returns ``DatetimeWithNanoseconds``)
    and ISO-8601 strings.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = isoparse(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return None


def to_document_value(value: Any) -> Any:
    """Convert a Python value into something a document store accepts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (tuple, list)):
        return [to_document_value(item) for item in value]
    if isinstance(value, dict):
        return {key: to_document_value(item) for key, item in value.items()}
    return value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Client:
    """
    Client record, owned by the CRM and read-only here.

    Attributes:
        id: Client identifier.
        name: Display name.
        email: Email address, if any.
        phone: Phone number, if any.
        importance: Account importance used by priority defaulting.
        service_history: Past interaction or service descriptions.
        last_service_at: When the client was last serviced.
    """
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    importance: ClientImportance = ClientImportance.MEDIUM
    service_history: Tuple[str, ...] = ()
    last_service_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Client":
        importance = data.get("importance") or ClientImportance.MEDIUM.value
        return cls(
            id=doc_id,
            name=data.get("name", ""),
            email=data.get("email") or None,
            phone=data.get("phone") or None,
            importance=ClientImportance(str(importance).upper()),
            service_history=tuple(data.get("service_history") or ()),
            last_service_at=parse_datetime(data.get("last_service_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "importance": self.importance.value,
            "service_history": list(self.service_history),
            "last_service_at": self.last_service_at,
        }


@dataclass(frozen=True)
class FollowUp:
    """
    A scheduled client touchpoint.

    ``scheduled_date`` is an aware UTC instant; ``timezone`` is the IANA
    zone the follow-up was booked in. Children of a recurring series
    carry ``recurrence_pattern=NONE`` and the parent's id.
    """
    id: str
    client_id: str
    scheduled_date: datetime
    service_id: Optional[str] = None
    timezone: str = "America/Toronto"
    duration: int = 60
    title: str = ""
    notes: Optional[str] = None
    outcome: Optional[str] = None
    action_items: Tuple[str, ...] = ()
    priority: Priority = Priority.MEDIUM
    category: FollowUpCategory = FollowUpCategory.GENERAL
    status: FollowUpStatus = FollowUpStatus.SCHEDULED
    recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE
    recurrence_data: Optional[Dict[str, Any]] = None
    custom_interval: Optional[int] = None
    custom_interval_unit: Optional[IntervalUnit] = None
    parent_follow_up_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def end_date(self) -> datetime:
        """Exclusive end of the occupied interval."""
        return self.scheduled_date + timedelta(minutes=self.duration)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_recurring_parent(self) -> bool:
        return self.parent_follow_up_id is None and self.recurrence_pattern != RecurrencePattern.NONE

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap; touching boundaries do not overlap."""
        return self.scheduled_date < end and start < self.end_date

    def recurrence_spec(self) -> RecurrenceSpec:
        data = self.recurrence_data or {}
        return RecurrenceSpec(
            pattern=self.recurrence_pattern,
            interval=data.get("interval") or 1,
            end_date=parse_datetime(data.get("end_date")),
            max_occurrences=data.get("max_occurrences"),
        )

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "FollowUp":
        """
        Create a FollowUp from stored document data.

        Args:
            doc_id: Document ID.
            data: Document data dictionary.

        Returns:
            FollowUp instance.
        """
        unit = data.get("custom_interval_unit")
        return cls(
            id=doc_id,
            client_id=data.get("client_id", ""),
            scheduled_date=parse_datetime(data.get("scheduled_date")),
            service_id=data.get("service_id"),
            timezone=data.get("timezone") or "America/Toronto",
            duration=int(data.get("duration") or 60),
            title=data.get("title") or "",
            notes=data.get("notes"),
            outcome=data.get("outcome"),
            action_items=tuple(data.get("action_items") or ()),
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            category=FollowUpCategory(data.get("category", FollowUpCategory.GENERAL.value)),
            status=FollowUpStatus(data.get("status", FollowUpStatus.SCHEDULED.value)),
            recurrence_pattern=RecurrencePattern(
                data.get("recurrence_pattern", RecurrencePattern.NONE.value)
            ),
            recurrence_data=data.get("recurrence_data"),
            custom_interval=data.get("custom_interval"),
            custom_interval_unit=IntervalUnit(unit) if unit else None,
            parent_follow_up_id=data.get("parent_follow_up_id"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        """
        Convert to document data.

        Returns:
            Dictionary suitable for storage, without the id.
        """
        return {
            "client_id": self.client_id,
            "scheduled_date": self.scheduled_date,
            "service_id": self.service_id,
            "timezone": self.timezone,
            "duration": self.duration,
            "title": self.title,
            "notes": self.notes,
            "outcome": self.outcome,
            "action_items": list(self.action_items),
            "priority": self.priority.value,
            "category": self.category.value,
            "status": self.status.value,
            "recurrence_pattern": self.recurrence_pattern.value,
            "recurrence_data": to_document_value(self.recurrence_data),
            "custom_interval": self.custom_interval,
            "custom_interval_unit": to_document_value(self.custom_interval_unit),
            "parent_follow_up_id": self.parent_follow_up_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_response(self) -> Dict[str, Any]:
        recurrence = None
        if self.recurrence_data:
            recurrence = {
                "interval": self.recurrence_data.get("interval"),
                "endDate": _isoformat(parse_datetime(self.recurrence_data.get("end_date"))),
                "maxOccurrences": self.recurrence_data.get("max_occurrences"),
            }
        return {
            "id": self.id,
            "clientId": self.client_id,
            "serviceId": self.service_id,
            "scheduledDate": _isoformat(self.scheduled_date),
            "endDate": _isoformat(self.end_date),
            "timezone": self.timezone,
            "duration": self.duration,
            "title": self.title,
            "notes": self.notes,
            "outcome": self.outcome,
            "actionItems": list(self.action_items),
            "priority": self.priority.value,
            "category": self.category.value,
            "status": self.status.value,
            "recurrencePattern": self.recurrence_pattern.value,
            "recurrenceData": recurrence,
            "customInterval": self.custom_interval,
            "customIntervalUnit": to_document_value(self.custom_interval_unit),
            "parentFollowUpId": self.parent_follow_up_id,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class FollowUpNotification:
    """A notification owned by a follow-up."""
    id: str
    follow_up_id: str
    notification_type: NotificationType
    channel: NotificationChannel
    recipient: str
    scheduled_at: datetime
    content: str = ""
    status: NotificationStatus = NotificationStatus.PENDING
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "FollowUpNotification":
        return cls(
            id=doc_id,
            follow_up_id=data.get("follow_up_id", ""),
            notification_type=NotificationType(data["type"]),
            channel=NotificationChannel(data["channel"]),
            recipient=data.get("recipient", ""),
            scheduled_at=parse_datetime(data.get("scheduled_at")),
            content=data.get("content") or "",
            status=NotificationStatus(data.get("status", NotificationStatus.PENDING.value)),
            error_message=data.get("error_message"),
            created_at=parse_datetime(data.get("created_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "follow_up_id": self.follow_up_id,
            "type": self.notification_type.value,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "scheduled_at": self.scheduled_at,
            "content": self.content,
            "status": self.status.value,
            "error_message": self.error_message,
            "created_at": self.created_at,
        }

    def to_response(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "followUpId": self.follow_up_id,
            "type": self.notification_type.value,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "scheduledAt": _isoformat(self.scheduled_at),
            "content": self.content,
            "status": self.status.value,
            "errorMessage": self.error_message,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass(frozen=True)
class RecurrenceSeries:
    """A recurring parent and its occurrences, resolved by query."""
    parent_id: str
    occurrence_ids: Tuple[str, ...] = ()

    def to_response(self) -> Dict[str, Any]:
        return {
            "parentId": self.parent_id,
            "occurrenceIds": list(self.occurrence_ids),
            "count": len(self.occurrence_ids),
        }


@dataclass(frozen=True)
class NotificationFilter:
    """Selects notifications for bulk updates."""
    follow_up_ids: Tuple[str, ...]
    statuses: Tuple[NotificationStatus, ...] = ()

    def matches(self, notification: FollowUpNotification) -> bool:
        if notification.follow_up_id not in self.follow_up_ids:
            return False
        return not self.statuses or notification.status in self.statuses


@dataclass(frozen=True)
class StoreHealth:
    """Result of a Store health check."""
    healthy: bool
    backend: str
    latency_ms: Optional[int] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "latency_ms": self.latency_ms,
            "error": self.error,
            **self.details,
        }
