"""Configuration package."""

from followup_engine.config.settings import (
    BusinessHoursSettings,
    NotificationSettings,
    RateLimitSettings,
    SchedulingSettings,
    Settings,
    StoreSettings,
    settings,
)

__all__ = [
    "BusinessHoursSettings",
    "NotificationSettings",
    "RateLimitSettings",
    "SchedulingSettings",
    "Settings",
    "StoreSettings",
    "settings",
]
