"""
Reminder scheduling.

Computes when reminder notifications fire relative to a follow-up.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Sequence

from followup_engine.core.business_hours import to_local
from followup_engine.core.models import NotificationType


LABELLED_OFFSETS = frozenset({1, 7})


@dataclass(frozen=True)
class ReminderTime:
    """A reminder instant with the offset it came from."""
    offset_days: int
    scheduled_at: datetime
    notification_type: NotificationType


class NotificationScheduler:
    """Computes reminder instants from day offsets."""

    def calculate_reminder_times(
        self,
        event_start: datetime,
        offsets_in_days: Sequence[int],
        tz_name: str,
    ) -> List[datetime]:
        """
        Compute one reminder instant per offset.

        Each instant is ``event_start - n days`` on the wall clock of
        ``tz_name``, so the local time of day is kept. Instants already
        in the past are kept too.

        Args:
            event_start: Start of the follow-up.
            offsets_in_days: Days before the event, in the order given.
            tz_name: IANA timezone of the follow-up.

        Returns:
            Aware UTC instants, one per offset.
        """
        local_start = to_local(event_start, tz_name)
        return [
            (local_start - timedelta(days=offset)).astimezone(timezone.utc)
            for offset in offsets_in_days
        ]

    @staticmethod
    def reminder_type_for_offset(offset_days: int) -> NotificationType:
        """
        Label a reminder offset.

        Offset 7 is REMINDER_7_DAYS; every other offset is labelled
        REMINDER_24_HOURS, including offsets other than 1.
        """
        if offset_days == 7:
            return NotificationType.REMINDER_7_DAYS
        return NotificationType.REMINDER_24_HOURS

    @staticmethod
    def is_labelled_offset(offset_days: int) -> bool:
        return offset_days in LABELLED_OFFSETS

    def build_reminder_schedule(
        self,
        event_start: datetime,
        offsets_in_days: Sequence[int],
        tz_name: str,
    ) -> List[ReminderTime]:
        """
        Pair each reminder instant with its offset and type label.

        A repeated offset yields a single reminder.
        """
        offsets = list(dict.fromkeys(offsets_in_days))
        instants = self.calculate_reminder_times(event_start, offsets, tz_name)
        return [
            ReminderTime(
                offset_days=offset,
                scheduled_at=instant,
                notification_type=self.reminder_type_for_offset(offset),
            )
            for offset, instant in zip(offsets, instants)
        ]
