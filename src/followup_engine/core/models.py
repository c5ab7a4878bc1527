"""
Core Domain Types.

Enumerations and immutable value objects shared by the scheduling
components. Pure data with no I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple


class Priority(str, Enum):
    """Priority of a follow-up."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ClientImportance(str, Enum):
    """How important a client account is to the business."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class FollowUpCategory(str, Enum):
    """Kind of client touchpoint."""
    SERVICE_CHECK = "SERVICE_CHECK"
    MAINTENANCE_REMINDER = "MAINTENANCE_REMINDER"
    PAYMENT_FOLLOW_UP = "PAYMENT_FOLLOW_UP"
    CONTRACT_RENEWAL = "CONTRACT_RENEWAL"
    COMPLAINT_RESOLUTION = "COMPLAINT_RESOLUTION"
    UPSELL_OPPORTUNITY = "UPSELL_OPPORTUNITY"
    RELATIONSHIP_BUILDING = "RELATIONSHIP_BUILDING"
    PROJECT_UPDATE = "PROJECT_UPDATE"
    SEASONAL_PLANNING = "SEASONAL_PLANNING"
    GENERAL = "GENERAL"


class FollowUpStatus(str, Enum):
    """Lifecycle status of a follow-up."""
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    MISSED = "MISSED"


ACTIVE_STATUSES: Tuple[FollowUpStatus, ...] = (
    FollowUpStatus.SCHEDULED,
    FollowUpStatus.CONFIRMED,
)


class RecurrencePattern(str, Enum):
    """How a follow-up repeats."""
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


class IntervalUnit(str, Enum):
    """Unit of a custom recurrence interval."""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class NotificationType(str, Enum):
    """Purpose of a notification."""
    REMINDER_7_DAYS = "REMINDER_7_DAYS"
    REMINDER_24_HOURS = "REMINDER_24_HOURS"
    OUTCOME_SUMMARY = "OUTCOME_SUMMARY"
    RESCHEDULE_REQUEST = "RESCHEDULE_REQUEST"


class NotificationChannel(str, Enum):
    """Delivery channel of a notification."""
    EMAIL = "EMAIL"
    SMS = "SMS"


class NotificationStatus(str, Enum):
    """Delivery status of a notification."""
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class ConflictType(str, Enum):
    """What a requested slot collides with."""
    FOLLOW_UP = "FOLLOW_UP"
    BUSINESS_HOURS = "BUSINESS_HOURS"


class Severity(str, Enum):
    """Severity of a scheduling conflict."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


WEEKDAY_NAMES: Tuple[str, ...] = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# =============================================================================
# Business hours
# =============================================================================

@dataclass(frozen=True)
class BusinessWindow:
    """
    One open interval within a working day.

    Attributes:
        opens: Local wall-clock opening time.
        closes: Local wall-clock closing time (inclusive for start checks).
    """
    opens: time
    closes: time

    def contains(self, wall_time: time) -> bool:
        """Check whether a local time falls inside the window."""
        return self.opens <= wall_time <= self.closes

    @classmethod
    def parse(cls, opens: str, closes: str) -> "BusinessWindow":
        """
        Build a window from "HH:MM" strings.

        Raises:
            ValueError: If a time is malformed or the window is empty.
        """
        window = cls(opens=time.fromisoformat(opens), closes=time.fromisoformat(closes))
        if window.closes <= window.opens:
            raise ValueError(f"window {opens}-{closes} closes before it opens")
        return window


@dataclass(frozen=True)
class BusinessHours:
    """
    Weekly business-hours calendar.

    Maps a weekday index (Monday=0) to its open windows. A weekday
    with no windows is a non-working day.
    """
    windows: Mapping[int, Tuple[BusinessWindow, ...]] = field(default_factory=dict)

    def windows_for(self, weekday: int) -> Tuple[BusinessWindow, ...]:
        """Get the open windows for a weekday."""
        return tuple(self.windows.get(weekday, ()))

    def is_working_day(self, weekday: int) -> bool:
        return bool(self.windows_for(weekday))

    @classmethod
    def standard(
        cls,
        opens: str = "09:00",
        closes: str = "17:00",
        weekdays: Iterable[int] = range(5),
    ) -> "BusinessHours":
        """Same single window on each of the given weekdays (Monday to Friday by default)."""
        window = BusinessWindow.parse(opens, closes)
        return cls(windows={day: (window,) for day in weekdays})

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Sequence[Sequence[str]]]) -> "BusinessHours":
        """
        Build a calendar from a mapping such as ``{"MONDAY": [["09:00", "17:00"]]}``.

        Args:
            mapping: Weekday name to list of (opens, closes) pairs.

        Returns:
            BusinessHours instance.

        Raises:
            ValueError: If a weekday name or window is invalid.
        """
        windows: Dict[int, Tuple[BusinessWindow, ...]] = {}
        for day_name, pairs in mapping.items():
            day_key = day_name.strip().upper()
            if day_key not in WEEKDAY_NAMES:
                raise ValueError(f"unknown weekday '{day_name}'")
            parsed = []
            for pair in pairs:
                if len(pair) != 2:
                    raise ValueError(f"window for {day_key} must be [opens, closes]")
                parsed.append(BusinessWindow.parse(pair[0], pair[1]))
            windows[WEEKDAY_NAMES.index(day_key)] = tuple(sorted(parsed, key=lambda w: w.opens))
        return cls(windows=windows)

    def to_dict(self) -> Dict[str, List[List[str]]]:
        return {
            WEEKDAY_NAMES[day]: [
                [w.opens.strftime("%H:%M"), w.closes.strftime("%H:%M")]
                for w in self.windows_for(day)
            ]
            for day in range(7)
        }


# =============================================================================
# Recurrence
# =============================================================================

@dataclass(frozen=True)
class RecurrenceSpec:
    """
    Recurrence rule for a follow-up series.

    Attributes:
        pattern: Recurrence pattern.
        interval: Multiplier for DAILY, WEEKLY and MONTHLY steps.
        end_date: Last instant an occurrence may fall on (inclusive).
        max_occurrences: Optional per-series cap, parent included.
    """
    pattern: RecurrencePattern = RecurrencePattern.NONE
    interval: int = 1
    end_date: Optional[datetime] = None
    max_occurrences: Optional[int] = None

    @property
    def is_recurring(self) -> bool:
        return self.pattern != RecurrencePattern.NONE

    def to_document(self) -> Dict[str, Any]:
        return {
            "interval": self.interval,
            "end_date": self.end_date,
            "max_occurrences": self.max_occurrences,
        }


# =============================================================================
# Conflicts
# =============================================================================

@dataclass(frozen=True)
class Conflict:
    """A collision between a requested slot and an existing constraint."""
    conflict_type: ConflictType
    conflict_id: str
    conflict_title: str
    start_time: datetime
    end_time: datetime
    severity: Severity
    suggestions: Tuple[str, ...] = ()

    def to_response(self) -> Dict[str, Any]:
        return {
            "type": self.conflict_type.value,
            "conflictId": self.conflict_id,
            "conflictTitle": self.conflict_title,
            "startTime": _isoformat(self.start_time),
            "endTime": _isoformat(self.end_time),
            "severity": self.severity.value,
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class AlternativeSlot:
    """A conflict-free slot offered instead of the requested one."""
    start_time: datetime
    end_time: datetime
    reason: str
    score: float

    def to_response(self) -> Dict[str, Any]:
        return {
            "startTime": _isoformat(self.start_time),
            "endTime": _isoformat(self.end_time),
            "reason": self.reason,
            "score": self.score,
        }
