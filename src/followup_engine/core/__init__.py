"""Core package - Pure scheduling logic with no I/O."""

from followup_engine.core.business_hours import (
    as_utc,
    fits_business_hours,
    get_next_business_slot,
    is_valid_timezone,
    is_within_business_hours,
    localize,
    now_utc,
    resolve_timezone,
    to_local,
)
from followup_engine.core.exceptions import (
    BusinessError,
    CircuitOpenError,
    ConfigurationError,
    ConflictError,
    FollowupEngineError,
    InfrastructureError,
    InvalidStatusTransitionError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
    ValidationError,
)
from followup_engine.core.recurrence import RecurrenceGenerator
from followup_engine.core.reminders import NotificationScheduler, ReminderTime
from followup_engine.core.status import FollowUpStatusManager

__all__ = [
    # Business hours
    "as_utc",
    "fits_business_hours",
    "get_next_business_slot",
    "is_valid_timezone",
    "is_within_business_hours",
    "localize",
    "now_utc",
    "resolve_timezone",
    "to_local",
    # Scheduling components
    "FollowUpStatusManager",
    "NotificationScheduler",
    "RecurrenceGenerator",
    "ReminderTime",
    # Exceptions
    "BusinessError",
    "CircuitOpenError",
    "ConfigurationError",
    "ConflictError",
    "FollowupEngineError",
    "InfrastructureError",
    "InvalidStatusTransitionError",
    "NotFoundError",
    "StoreError",
    "StoreUnavailableError",
    "ValidationError",
]
