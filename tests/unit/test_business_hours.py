"""
Tests for Business Hours Logic.

Tests the weekly calendar checks and the next-slot search, evaluated in
America/Toronto (UTC-4 in June).
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from followup_engine.core.business_hours import (
    fits_business_hours,
    get_next_business_slot,
    is_valid_timezone,
    is_within_business_hours,
    localize,
    to_local,
)
from followup_engine.core.exceptions import ValidationError
from followup_engine.core.models import BusinessHours


TORONTO = ZoneInfo("America/Toronto")
TZ = "America/Toronto"


def local(*args) -> datetime:
    return datetime(*args, tzinfo=TORONTO)


@pytest.fixture
def hours() -> BusinessHours:
    return BusinessHours.standard()


class TestIsWithinBusinessHours:
    """Tests for is_within_business_hours."""

    def test_opening_minute_is_inside(self, hours):
        """09:00 on a Tuesday should be accepted."""
        assert is_within_business_hours(local(2025, 6, 10, 9, 0), hours, TZ)

    def test_minute_before_opening_is_outside(self, hours):
        assert not is_within_business_hours(local(2025, 6, 10, 8, 59), hours, TZ)

    def test_closing_minute_is_inside(self, hours):
        """The closing minute is inclusive; only the start is checked."""
        assert is_within_business_hours(local(2025, 6, 10, 17, 0), hours, TZ)

    def test_seconds_are_ignored(self, hours):
        assert is_within_business_hours(local(2025, 6, 10, 17, 0, 45), hours, TZ)

    def test_after_closing_is_outside(self, hours):
        assert not is_within_business_hours(local(2025, 6, 10, 17, 1), hours, TZ)

    def test_weekend_is_outside(self, hours):
        """Saturday is not a working day in the standard calendar."""
        assert not is_within_business_hours(local(2025, 6, 14, 11, 0), hours, TZ)

    def test_utc_input_is_converted(self, hours):
        """13:00 UTC is 09:00 in Toronto during daylight time."""
        start = datetime(2025, 6, 10, 13, 0, tzinfo=timezone.utc)

        assert is_within_business_hours(start, hours, TZ)
        assert not is_within_business_hours(start, hours, "Asia/Tokyo")

    def test_unknown_timezone_raises(self, hours):
        with pytest.raises(ValidationError) as exc_info:
            is_within_business_hours(local(2025, 6, 10, 9, 0), hours, "Mars/Olympus")

        assert "timezone" in exc_info.value.errors[0]

    def test_split_day_windows(self):
        """A lunch break between two windows is outside hours."""
        hours = BusinessHours.from_mapping({
            "MONDAY": [["09:00", "12:00"], ["13:00", "17:00"]],
        })

        assert is_within_business_hours(local(2025, 6, 9, 11, 30), hours, TZ)
        assert not is_within_business_hours(local(2025, 6, 9, 12, 30), hours, TZ)
        assert is_within_business_hours(local(2025, 6, 9, 13, 0), hours, TZ)
        assert not is_within_business_hours(local(2025, 6, 10, 10, 0), hours, TZ)


class TestFitsBusinessHours:
    """Tests for fits_business_hours."""

    def test_slot_ending_at_close_fits(self, hours):
        assert fits_business_hours(local(2025, 6, 10, 16, 0), 60, hours, TZ)

    def test_slot_running_past_close_does_not_fit(self, hours):
        assert not fits_business_hours(local(2025, 6, 10, 16, 30), 60, hours, TZ)


class TestGetNextBusinessSlot:
    """Tests for get_next_business_slot."""

    def test_returns_start_when_it_fits(self, hours):
        start = local(2025, 6, 10, 10, 0)

        assert get_next_business_slot(start, 60, hours, TZ) == start

    def test_moves_to_next_morning_when_slot_runs_past_close(self, hours):
        """16:30 + 60 minutes passes 17:00, so Wednesday 09:00 is next."""
        slot = get_next_business_slot(local(2025, 6, 10, 16, 30), 60, hours, TZ)

        assert slot == local(2025, 6, 11, 9, 0)
        assert slot.tzinfo == timezone.utc

    def test_moves_to_opening_when_before_hours(self, hours):
        slot = get_next_business_slot(local(2025, 6, 10, 7, 15), 30, hours, TZ)

        assert slot == local(2025, 6, 10, 9, 0)

    def test_skips_weekend(self, hours):
        """Saturday morning should yield Monday 09:00."""
        slot = get_next_business_slot(local(2025, 6, 14, 10, 0), 60, hours, TZ)

        assert slot == local(2025, 6, 16, 9, 0)

    def test_uses_later_window_on_same_day(self):
        hours = BusinessHours.from_mapping({
            "MONDAY": [["09:00", "12:00"], ["13:00", "17:00"]],
        })

        slot = get_next_business_slot(local(2025, 6, 9, 11, 30), 60, hours, TZ)

        assert slot == local(2025, 6, 9, 13, 0)

    def test_returns_none_without_working_days(self):
        """An empty calendar exhausts the horizon instead of looping."""
        assert get_next_business_slot(local(2025, 6, 10, 10, 0), 60, BusinessHours(), TZ) is None

    def test_returns_none_when_duration_never_fits(self, hours):
        assert get_next_business_slot(local(2025, 6, 10, 10, 0), 600, hours, TZ, horizon_days=10) is None


class TestTimezoneHelpers:
    """Tests for timezone helpers."""

    def test_localize_reads_naive_values_as_local(self):
        result = localize(datetime(2025, 6, 10, 9, 0), TZ)

        assert result == datetime(2025, 6, 10, 13, 0, tzinfo=timezone.utc)

    def test_localize_keeps_aware_values(self):
        value = datetime(2025, 6, 10, 9, 0, tzinfo=timezone.utc)

        assert localize(value, TZ) == value

    def test_to_local(self):
        value = datetime(2025, 6, 10, 13, 0, tzinfo=timezone.utc)

        assert to_local(value, TZ).hour == 9

    def test_is_valid_timezone(self):
        assert is_valid_timezone("Europe/Paris")
        assert not is_valid_timezone("Not/AZone")


class TestBusinessHoursConfig:
    """Tests for the weekly calendar value type."""

    def test_standard_calendar_closes_weekends(self, hours):
        assert hours.is_working_day(0)
        assert hours.is_working_day(4)
        assert not hours.is_working_day(5)
        assert not hours.is_working_day(6)

    def test_from_mapping_rejects_unknown_weekday(self):
        with pytest.raises(ValueError):
            BusinessHours.from_mapping({"FUNDAY": [["09:00", "17:00"]]})

    def test_from_mapping_rejects_inverted_window(self):
        with pytest.raises(ValueError):
            BusinessHours.from_mapping({"MONDAY": [["17:00", "09:00"]]})

    def test_to_dict_lists_every_weekday(self, hours):
        table = hours.to_dict()

        assert table["MONDAY"] == [["09:00", "17:00"]]
        assert table["SUNDAY"] == []
