"""
Tests for environment-driven settings.
"""

import json

import pytest

from followup_engine.config import (
    BusinessHoursSettings,
    NotificationSettings,
    SchedulingSettings,
    Settings,
    StoreSettings,
)
from followup_engine.core.exceptions import ConfigurationError


class TestBusinessHoursSettings:
    """Tests for the BUSINESS_HOURS variable."""

    def test_defaults_to_weekdays(self, monkeypatch):
        monkeypatch.delenv("BUSINESS_HOURS", raising=False)

        hours = BusinessHoursSettings().hours

        assert hours.is_working_day(0)
        assert not hours.is_working_day(6)

    def test_reads_json_calendar(self, monkeypatch):
        monkeypatch.setenv("BUSINESS_HOURS", json.dumps({
            "SATURDAY": [["10:00", "14:00"]],
        }))

        hours = BusinessHoursSettings().hours

        assert hours.is_working_day(5)
        assert not hours.is_working_day(0)

    def test_invalid_calendar_raises(self, monkeypatch):
        monkeypatch.setenv("BUSINESS_HOURS", "{not json")

        with pytest.raises(ConfigurationError) as exc_info:
            BusinessHoursSettings()

        assert exc_info.value.config_name == "BUSINESS_HOURS"


class TestSchedulingSettings:
    """Tests for scheduling variables."""

    def test_reminder_days(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_REMINDER_DAYS", "3, 1")

        assert SchedulingSettings().reminder_days == (3, 1)

    def test_invalid_reminder_days_raise(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_REMINDER_DAYS", "three")

        with pytest.raises(ConfigurationError):
            SchedulingSettings()

    def test_timezone_override(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_TIMEZONE", "Europe/Paris")

        assert SchedulingSettings().default_timezone == "Europe/Paris"


class TestStoreAndNotificationSettings:
    def test_backend_is_lowercased(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "MEMORY")

        store_settings = StoreSettings()

        assert store_settings.backend == "memory"
        assert not store_settings.is_firestore

    def test_channel_flags(self, monkeypatch):
        monkeypatch.setenv("ENABLE_SMS_NOTIFICATIONS", "false")
        monkeypatch.delenv("NOTIFICATION_FALLBACK_RECIPIENT", raising=False)

        notification_settings = NotificationSettings()

        assert notification_settings.email_enabled
        assert not notification_settings.sms_enabled
        assert notification_settings.fallback_recipient is None


class TestOverlapLookback:
    """Tests for keeping the range-query lookback in step with durations."""

    def test_lookback_follows_max_duration(self, monkeypatch):
        monkeypatch.setenv("MAX_DURATION_MINUTES", "2000")

        app_settings = Settings()

        assert app_settings.scheduling.max_duration_minutes == 2000
        assert app_settings.store.overlap_lookback_minutes == 2000

    def test_lookback_shorter_than_max_duration_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(
                store=StoreSettings(overlap_lookback_minutes=1440),
                scheduling=SchedulingSettings(max_duration_minutes=2000),
            )

        assert exc_info.value.config_name == "MAX_DURATION_MINUTES"
