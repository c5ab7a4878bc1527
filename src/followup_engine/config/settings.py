"""
Application configuration.

Centralizes environment variables, constants, and settings
using dataclasses for type safety and immutability.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from followup_engine.core.exceptions import ConfigurationError
from followup_engine.core.models import BusinessHours


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


def _env_days(name: str, default: str) -> Tuple[int, ...]:
    raw = os.environ.get(name, default)
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise ConfigurationError(name, f"{name} must be a comma-separated list of integers") from None


def _load_business_hours() -> BusinessHours:
    """
    Load the weekly calendar from BUSINESS_HOURS.

    The variable holds a JSON object such as
    ``{"MONDAY": [["09:00", "17:00"]], "SATURDAY": []}``. Unset means
    Monday to Friday, 09:00 to 17:00.
    """
    raw = os.environ.get("BUSINESS_HOURS")
    if not raw:
        return BusinessHours.standard()
    try:
        return BusinessHours.from_mapping(json.loads(raw))
    except (ValueError, TypeError, AttributeError) as e:
        raise ConfigurationError("BUSINESS_HOURS", f"Invalid BUSINESS_HOURS: {e}") from e


@dataclass(frozen=True)
class StoreSettings:
    """Persistence backend settings."""

    backend: str = field(
        default_factory=lambda: os.environ.get("STORE_BACKEND", "firestore").lower()
    )
    project: Optional[str] = field(
        default_factory=lambda: os.environ.get("GCP_PROJECT") or None
    )
    client_collection: str = field(
        default_factory=lambda: os.environ.get("CLIENT_COLLECTION", "clients")
    )
    followup_collection: str = field(
        default_factory=lambda: os.environ.get("FOLLOWUP_COLLECTION", "follow_ups")
    )
    notification_collection: str = field(
        default_factory=lambda: os.environ.get("NOTIFICATION_COLLECTION", "follow_up_notifications")
    )
    timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("STORE_TIMEOUT_SECONDS", 10))
    )
    retry_attempts: int = field(
        default_factory=lambda: int(os.environ.get("STORE_RETRY_ATTEMPTS", 3))
    )
    retry_backoff_seconds: float = field(
        default_factory=lambda: float(os.environ.get("STORE_RETRY_BACKOFF_SECONDS", 0.2))
    )
    lock_timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("CLIENT_LOCK_TIMEOUT_SECONDS", 10))
    )
    breaker_failure_threshold: int = 5
    breaker_reset_seconds: float = 30.0

    # Longest stored duration the range query must look back over
    overlap_lookback_minutes: int = field(
        default_factory=lambda: int(os.environ.get("MAX_DURATION_MINUTES", 480))
    )

    @property
    def is_firestore(self) -> bool:
        return self.backend == "firestore"


@dataclass(frozen=True)
class SchedulingSettings:
    """Follow-up scheduling settings."""

    default_timezone: str = field(
        default_factory=lambda: os.environ.get("DEFAULT_TIMEZONE", "America/Toronto")
    )
    default_duration_minutes: int = 60
    max_duration_minutes: int = field(
        default_factory=lambda: int(os.environ.get("MAX_DURATION_MINUTES", 480))
    )
    reminder_days: Tuple[int, ...] = field(
        default_factory=lambda: _env_days("DEFAULT_REMINDER_DAYS", "7,1")
    )
    slot_step_minutes: int = 15
    search_horizon_days: int = 30
    alternative_search_days: int = 14
    max_alternatives: int = 3
    max_recurrence_occurrences: int = field(
        default_factory=lambda: int(os.environ.get("MAX_RECURRENCE_OCCURRENCES", 10))
    )


@dataclass(frozen=True)
class BusinessHoursSettings:
    """Weekly business-hours calendar."""

    hours: BusinessHours = field(default_factory=_load_business_hours)


@dataclass(frozen=True)
class NotificationSettings:
    """Notification channel settings."""

    email_enabled: bool = field(
        default_factory=lambda: _env_bool("ENABLE_EMAIL_NOTIFICATIONS", "true")
    )
    sms_enabled: bool = field(
        default_factory=lambda: _env_bool("ENABLE_SMS_NOTIFICATIONS", "true")
    )
    fallback_recipient: Optional[str] = field(
        default_factory=lambda: os.environ.get("NOTIFICATION_FALLBACK_RECIPIENT") or None
    )
    min_phone_digits: int = 10


@dataclass(frozen=True)
class RateLimitSettings:
    """Token-bucket limits for write endpoints, per caller address."""

    enabled: bool = field(
        default_factory=lambda: _env_bool("RATE_LIMIT_ENABLED", "true")
    )
    requests_per_minute: int = field(
        default_factory=lambda: int(os.environ.get("RATE_LIMIT_PER_MINUTE", 60))
    )
    burst_size: int = field(
        default_factory=lambda: int(os.environ.get("RATE_LIMIT_BURST", 10))
    )


@dataclass(frozen=True)
class Settings:
    """Main application settings."""

    store: StoreSettings = field(default_factory=StoreSettings)
    scheduling: SchedulingSettings = field(default_factory=SchedulingSettings)
    business_hours: BusinessHoursSettings = field(default_factory=BusinessHoursSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    port: int = field(default_factory=lambda: int(os.environ.get("PORT", 8080)))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", "false"))

    def __post_init__(self) -> None:
        if self.scheduling.max_duration_minutes > self.store.overlap_lookback_minutes:
            raise ConfigurationError(
                "MAX_DURATION_MINUTES",
                f"MAX_DURATION_MINUTES ({self.scheduling.max_duration_minutes}) exceeds the "
                f"store overlap lookback ({self.store.overlap_lookback_minutes} minutes)",
            )


# Singleton settings instance
settings = Settings()
