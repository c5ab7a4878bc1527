"""
Notification Planning.

Turns reminder instants and status changes into persisted
FollowUpNotification records. Delivery is handled elsewhere; this
module only decides who is notified, on which channel and when.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from followup_engine.config import NotificationSettings, settings
from followup_engine.core import NotificationScheduler, now_utc, to_local
from followup_engine.core.models import (
    NotificationChannel,
    NotificationStatus,
    NotificationType,
)
from followup_engine.infrastructure.logging import get_logger
from followup_engine.infrastructure.metrics import get_metrics
from followup_engine.infrastructure.store import (
    Client,
    FollowUp,
    FollowUpNotification,
    NotificationFilter,
    Store,
)


logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

FOLLOW_UP_CANCELLED = "Follow-up cancelled"
SERIES_CANCELLED = "Recurring series cancelled"


@dataclass(frozen=True)
class Recipient:
    """A reachable address on one channel."""
    channel: NotificationChannel
    address: str


def _format_local(value: datetime, tz_name: str) -> str:
    return to_local(value, tz_name).strftime("%A, %B %d at %H:%M %Z")


class NotificationPlanner:
    """
    Creates the notifications owned by follow-ups.

    Responsible for:
    - Picking enabled channels with a valid recipient
    - Reminder notifications at the computed instants
    - Outcome summaries and cancellation notices
    - Failing pending notifications of cancelled follow-ups
    """

    def __init__(
        self,
        store: Store,
        notification_settings: Optional[NotificationSettings] = None,
        scheduler: Optional[NotificationScheduler] = None,
    ) -> None:
        self._store = store
        self._settings = notification_settings or settings.notifications
        self._scheduler = scheduler or NotificationScheduler()

    # -------------------------------------------------------------------------
    # Recipients
    # -------------------------------------------------------------------------

    def _valid_email(self, client: Client) -> Optional[str]:
        if client.email and EMAIL_PATTERN.match(client.email.strip()):
            return client.email.strip()
        return None

    def _valid_phone(self, client: Client) -> Optional[str]:
        digits = re.sub(r"\D", "", client.phone or "")
        if len(digits) >= self._settings.min_phone_digits:
            return client.phone.strip()
        return None

    def _skip(self, client: Client, channel: NotificationChannel, reason: str) -> None:
        logger.warning(
            f"Skipping {channel.value} notifications: {reason}",
            extra={"extra_fields": {
                "client_id": client.id,
                "channel": channel.value,
            }}
        )

    def channels_for(self, client: Optional[Client]) -> List[Recipient]:
        """
        Get the enabled channels a client can be reached on.

        A channel without a usable recipient is skipped with a warning,
        never raised as an error.
        """
        if client is None:
            return []

        recipients = []
        if self._settings.email_enabled:
            email = self._valid_email(client)
            if email:
                recipients.append(Recipient(NotificationChannel.EMAIL, email))
            else:
                self._skip(client, NotificationChannel.EMAIL, "no valid email address")

        if self._settings.sms_enabled:
            phone = self._valid_phone(client)
            if phone:
                recipients.append(Recipient(NotificationChannel.SMS, phone))
            else:
                self._skip(client, NotificationChannel.SMS, "no valid phone number")

        return recipients

    def _create(
        self,
        follow_up: FollowUp,
        notification_type: NotificationType,
        recipient: Recipient,
        scheduled_at: datetime,
        content: str,
    ) -> FollowUpNotification:
        notification = self._store.create_notification(FollowUpNotification(
            id="",
            follow_up_id=follow_up.id,
            notification_type=notification_type,
            channel=recipient.channel,
            recipient=recipient.address,
            scheduled_at=scheduled_at,
            content=content,
            status=NotificationStatus.PENDING,
            created_at=now_utc(),
        ))
        get_metrics().notifications_scheduled_total.inc(
            channel=recipient.channel.value,
            type=notification_type.value,
        )
        return notification

    # -------------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------------

    def plan_reminders(
        self,
        follow_up: FollowUp,
        client: Optional[Client],
        offsets_in_days: Sequence[int],
    ) -> List[FollowUpNotification]:
        """
        Create one reminder per offset and reachable channel.

        Args:
            follow_up: Persisted follow-up the reminders belong to.
            client: Client to notify.
            offsets_in_days: Days before the follow-up.

        Returns:
            Created notifications, by offset then channel.
        """
        for offset in sorted(set(offsets_in_days)):
            if not self._scheduler.is_labelled_offset(offset):
                logger.warning(
                    f"Reminder offset {offset} has no dedicated type, "
                    f"labelled {self._scheduler.reminder_type_for_offset(offset).value}",
                    extra={"extra_fields": {
                        "follow_up_id": follow_up.id,
                        "offset_days": offset,
                    }}
                )

        recipients = self.channels_for(client)
        if not recipients:
            return []

        schedule = self._scheduler.build_reminder_schedule(
            follow_up.scheduled_date,
            offsets_in_days,
            follow_up.timezone,
        )
        when = _format_local(follow_up.scheduled_date, follow_up.timezone)

        created = []
        for reminder in schedule:
            content = f"Reminder: {follow_up.title} is scheduled for {when}."
            for recipient in recipients:
                created.append(self._create(
                    follow_up,
                    reminder.notification_type,
                    recipient,
                    reminder.scheduled_at,
                    content,
                ))
        return created

    # -------------------------------------------------------------------------
    # Status change notices
    # -------------------------------------------------------------------------

    def outcome_summary(
        self,
        follow_up: FollowUp,
        client: Optional[Client],
    ) -> Optional[FollowUpNotification]:
        """
        Create the OUTCOME_SUMMARY email for a completed follow-up.

        Sent to the client's email, or to the configured fallback
        recipient when the client has none.
        """
        address = self._valid_email(client) if client is not None else None
        address = address or self._settings.fallback_recipient
        if not address:
            logger.warning(
                "Skipping outcome summary: no email recipient",
                extra={"extra_fields": {
                    "follow_up_id": follow_up.id,
                    "client_id": follow_up.client_id,
                }}
            )
            return None

        lines = [f"Follow-up completed: {follow_up.title}"]
        if follow_up.outcome:
            lines.append(f"Outcome: {follow_up.outcome}")
        if follow_up.action_items:
            lines.append("Action items:")
            lines.extend(f"- {item}" for item in follow_up.action_items)

        return self._create(
            follow_up,
            NotificationType.OUTCOME_SUMMARY,
            Recipient(NotificationChannel.EMAIL, address),
            now_utc(),
            "\n".join(lines),
        )

    def cancellation_notice(
        self,
        follow_up: FollowUp,
        client: Optional[Client],
        reason: str,
    ) -> Optional[FollowUpNotification]:
        """Create a RESCHEDULE_REQUEST notice, by email when possible, else SMS."""
        recipients = self.channels_for(client)
        if not recipients:
            logger.warning(
                "Skipping cancellation notice: client is not reachable",
                extra={"extra_fields": {
                    "follow_up_id": follow_up.id,
                    "client_id": follow_up.client_id,
                }}
            )
            return None

        recipient = next(
            (r for r in recipients if r.channel == NotificationChannel.EMAIL),
            recipients[0],
        )
        when = _format_local(follow_up.scheduled_date, follow_up.timezone)
        content = (
            f"Your follow-up \"{follow_up.title}\" on {when} has been cancelled. "
            f"Reason: {reason}. Reply to this message to pick a new time."
        )
        return self._create(
            follow_up,
            NotificationType.RESCHEDULE_REQUEST,
            recipient,
            now_utc(),
            content,
        )

    def fail_pending(self, follow_up_ids: Iterable[str], message: str) -> int:
        """Mark the PENDING notifications of the given follow-ups as FAILED."""
        ids: Tuple[str, ...] = tuple(follow_up_ids)
        if not ids:
            return 0
        return self._store.update_notifications_where(
            NotificationFilter(follow_up_ids=ids, statuses=(NotificationStatus.PENDING,)),
            {"status": NotificationStatus.FAILED, "error_message": message},
        )
