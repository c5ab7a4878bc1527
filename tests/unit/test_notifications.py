"""
Tests for Notification Planning.
"""

from dataclasses import replace
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from followup_engine.config import NotificationSettings
from followup_engine.core.models import (
    NotificationChannel,
    NotificationStatus,
    NotificationType,
)
from followup_engine.infrastructure.store import Client, FollowUpNotification
from followup_engine.services.notifications import NotificationPlanner


TORONTO = ZoneInfo("America/Toronto")


@pytest.fixture
def planner(store, test_settings) -> NotificationPlanner:
    return NotificationPlanner(store, test_settings.notifications)


@pytest.fixture
def follow_up(make_follow_up):
    return make_follow_up(datetime(2025, 6, 20, 10, 0, tzinfo=TORONTO), title="Spring check-in")


class TestChannelsFor:
    """Tests for channel selection."""

    def test_email_and_sms(self, planner, sample_client):
        recipients = planner.channels_for(sample_client)

        assert [(r.channel, r.address) for r in recipients] == [
            (NotificationChannel.EMAIL, "owner@acme.example"),
            (NotificationChannel.SMS, "+1 416 555 0100"),
        ]

    def test_invalid_addresses_are_skipped(self, planner):
        client = Client(id="C9", name="Typo Ltd", email="not-an-email", phone="555-01")

        assert planner.channels_for(client) == []

    def test_disabled_channel(self, store, sample_client):
        planner = NotificationPlanner(store, NotificationSettings(email_enabled=True, sms_enabled=False))

        recipients = planner.channels_for(sample_client)

        assert [r.channel for r in recipients] == [NotificationChannel.EMAIL]

    def test_missing_client(self, planner):
        assert planner.channels_for(None) == []


class TestPlanReminders:
    """Tests for reminder planning."""

    def test_one_per_offset_and_channel(self, planner, store, follow_up, sample_client):
        """Two offsets and two channels give four pending reminders."""
        created = planner.plan_reminders(follow_up, sample_client, [7, 1])

        assert len(created) == 4
        assert [(n.notification_type, n.channel) for n in created] == [
            (NotificationType.REMINDER_7_DAYS, NotificationChannel.EMAIL),
            (NotificationType.REMINDER_7_DAYS, NotificationChannel.SMS),
            (NotificationType.REMINDER_24_HOURS, NotificationChannel.EMAIL),
            (NotificationType.REMINDER_24_HOURS, NotificationChannel.SMS),
        ]
        assert created[0].scheduled_at == datetime(2025, 6, 13, 14, 0, tzinfo=timezone.utc)
        assert all(n.status == NotificationStatus.PENDING for n in created)
        assert created[0].content.startswith("Reminder: Spring check-in is scheduled for Friday, June 20 at 10:00")
        assert len(store.list_notifications(follow_up.id)) == 4

    def test_unreachable_client_gets_none(self, planner, follow_up, unreachable_client):
        assert planner.plan_reminders(follow_up, unreachable_client, [7, 1]) == []

    def test_unlabelled_offset_is_still_created(self, planner, follow_up, email_only_client):
        created = planner.plan_reminders(follow_up, email_only_client, [3])

        assert len(created) == 1
        assert created[0].notification_type == NotificationType.REMINDER_24_HOURS

    def test_repeated_offset_creates_one_reminder_per_channel(self, planner, store, follow_up, sample_client):
        created = planner.plan_reminders(follow_up, sample_client, [7, 7])

        assert [(n.notification_type, n.channel) for n in created] == [
            (NotificationType.REMINDER_7_DAYS, NotificationChannel.EMAIL),
            (NotificationType.REMINDER_7_DAYS, NotificationChannel.SMS),
        ]
        assert len(store.list_notifications(follow_up.id)) == 2


class TestStatusNotices:
    """Tests for outcome summaries and cancellation notices."""

    def test_outcome_summary(self, planner, follow_up, sample_client):
        completed = replace(follow_up, outcome="Renewed for a year", action_items=("Send contract",))

        summary = planner.outcome_summary(completed, sample_client)

        assert summary.notification_type == NotificationType.OUTCOME_SUMMARY
        assert summary.channel == NotificationChannel.EMAIL
        assert summary.recipient == "owner@acme.example"
        assert summary.content == (
            "Follow-up completed: Spring check-in\n"
            "Outcome: Renewed for a year\n"
            "Action items:\n"
            "- Send contract"
        )

    def test_outcome_summary_uses_fallback(self, store, follow_up, unreachable_client):
        planner = NotificationPlanner(store, NotificationSettings(fallback_recipient="office@example.com"))

        summary = planner.outcome_summary(follow_up, unreachable_client)

        assert summary.recipient == "office@example.com"

    def test_outcome_summary_without_recipient(self, planner, follow_up, unreachable_client):
        assert planner.outcome_summary(follow_up, unreachable_client) is None

    def test_cancellation_notice_prefers_email(self, planner, follow_up, sample_client):
        notice = planner.cancellation_notice(follow_up, sample_client, "Client travelling")

        assert notice.notification_type == NotificationType.RESCHEDULE_REQUEST
        assert notice.channel == NotificationChannel.EMAIL
        assert "Reason: Client travelling." in notice.content

    def test_cancellation_notice_falls_back_to_sms(self, planner, follow_up):
        client = Client(id="C8", name="Phone Only", phone="(416) 555-0199")

        notice = planner.cancellation_notice(follow_up, client, "Weather")

        assert notice.channel == NotificationChannel.SMS
        assert notice.recipient == "(416) 555-0199"


class TestFailPending:
    """Tests for fail_pending."""

    def _notification(self, store, follow_up, status):
        return store.create_notification(FollowUpNotification(
            id="",
            follow_up_id=follow_up.id,
            notification_type=NotificationType.REMINDER_24_HOURS,
            channel=NotificationChannel.EMAIL,
            recipient="owner@acme.example",
            scheduled_at=datetime(2025, 6, 19, 14, 0, tzinfo=timezone.utc),
            status=status,
        ))

    def test_only_pending_are_failed(self, planner, store, follow_up):
        pending = self._notification(store, follow_up, NotificationStatus.PENDING)
        sent = self._notification(store, follow_up, NotificationStatus.SENT)

        count = planner.fail_pending([follow_up.id], "Follow-up cancelled")

        assert count == 1
        by_id = {n.id: n for n in store.list_notifications(follow_up.id)}
        assert by_id[sent.id].status == NotificationStatus.SENT
        assert by_id[pending.id].status == NotificationStatus.FAILED
        assert by_id[pending.id].error_message == "Follow-up cancelled"

    def test_no_ids(self, planner):
        assert planner.fail_pending([], "anything") == 0
