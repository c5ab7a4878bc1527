"""
Business hours calculation module.

Checks whether an instant falls inside the configured weekly calendar
and searches forward for the next slot that fits a given duration.
All arithmetic is done on aware datetimes; wall-clock comparisons
happen in the requested IANA timezone.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from followup_engine.core.exceptions import ValidationError
from followup_engine.core.models import BusinessHours, BusinessWindow


def now_utc() -> datetime:
    """Get the current UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=64)
def resolve_timezone(name: str) -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Args:
        name: Timezone name such as "America/Toronto".

    Returns:
        ZoneInfo instance.

    Raises:
        ValidationError: If the name is not a known timezone.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ValidationError(
            f"Unknown timezone: {name}",
            [f"timezone: unknown timezone '{name}'"],
        ) from None


def is_valid_timezone(name: str) -> bool:
    try:
        resolve_timezone(name)
    except ValidationError:
        return False
    return True


def to_local(value: datetime, tz_name: str) -> datetime:
    """Convert an instant into wall-clock time of a timezone."""
    return as_utc(value).astimezone(resolve_timezone(tz_name))


def localize(value: datetime, tz_name: str) -> datetime:
    """
    Interpret a datetime in a timezone and return it as aware UTC.

    Naive values are read as wall-clock time in ``tz_name``; aware
    values are only normalized.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=resolve_timezone(tz_name))
    return value.astimezone(timezone.utc)


def _window_containing(local: datetime, config: BusinessHours) -> Optional[BusinessWindow]:
    wall_time = local.time().replace(second=0, microsecond=0)
    for window in config.windows_for(local.weekday()):
        if window.contains(wall_time):
            return window
    return None


def is_within_business_hours(
    start: datetime,
    config: BusinessHours,
    tz_name: str,
) -> bool:
    """
    Check whether a start instant falls inside business hours.

    Only the start is checked, at minute resolution, with the closing
    minute included. A follow-up starting at 17:00 on a 09:00-17:00 day
    is accepted.

    Args:
        start: Start instant.
        config: Weekly business-hours calendar.
        tz_name: IANA timezone used for the wall-clock comparison.

    Returns:
        True if the start is inside an open window.
    """
    return _window_containing(to_local(start, tz_name), config) is not None


def fits_business_hours(
    start: datetime,
    duration_minutes: int,
    config: BusinessHours,
    tz_name: str,
) -> bool:
    """Check that a slot starts inside a window and ends before it closes."""
    local = to_local(start, tz_name)
    window = _window_containing(local, config)
    if window is None:
        return False
    closes = datetime.combine(local.date(), window.closes, tzinfo=local.tzinfo)
    return as_utc(start) + timedelta(minutes=duration_minutes) <= as_utc(closes)


def get_next_business_slot(
    from_date: datetime,
    duration_minutes: int,
    config: BusinessHours,
    tz_name: str,
    horizon_days: int = 30,
) -> Optional[datetime]:
    """
    Find the first instant at or after ``from_date`` where a slot fits.

    Returns ``from_date`` itself when it is inside a window and the slot
    ends before that window closes. Otherwise moves to the next window
    opening, later the same day or on the next working day.

    Args:
        from_date: Earliest acceptable start.
        duration_minutes: Slot length.
        config: Weekly business-hours calendar.
        tz_name: IANA timezone of the calendar.
        horizon_days: How far ahead to search.

    Returns:
        Aware UTC start of the slot, or None if nothing fits within the horizon.
    """
    tz = resolve_timezone(tz_name)
    earliest = as_utc(from_date)
    limit = earliest + timedelta(days=horizon_days)
    length = timedelta(minutes=duration_minutes)

    day = earliest.astimezone(tz).date()
    while datetime.combine(day, datetime.min.time(), tzinfo=tz) <= limit:
        for window in config.windows_for(day.weekday()):
            opens = as_utc(datetime.combine(day, window.opens, tzinfo=tz))
            closes = as_utc(datetime.combine(day, window.closes, tzinfo=tz))
            candidate = max(opens, earliest)
            if candidate > limit:
                return None
            if candidate + length <= closes:
                return candidate
        day += timedelta(days=1)

    return None
