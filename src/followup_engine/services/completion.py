"""
Follow-up Completion Service.

Records the outcome of a follow-up and optionally books the next one.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from followup_engine.config import SchedulingSettings, settings
from followup_engine.core import FollowUpStatusManager, localize, now_utc
from followup_engine.core.exceptions import ValidationError
from followup_engine.core.models import FollowUpStatus
from followup_engine.infrastructure.logging import get_logger, log_duration
from followup_engine.infrastructure.metrics import get_metrics
from followup_engine.infrastructure.store import (
    Client,
    FollowUp,
    FollowUpNotification,
    Store,
)
from followup_engine.services.common import append_note, load_follow_up
from followup_engine.services.conflicts import ConflictDetector
from followup_engine.services.notifications import NotificationPlanner
from followup_engine.services.validation import CompleteFollowUpRequest


logger = get_logger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    """Result of completing a follow-up."""
    follow_up: FollowUp
    notifications: Tuple[FollowUpNotification, ...] = ()
    next_follow_up: Optional[FollowUp] = None
    next_notifications: Tuple[FollowUpNotification, ...] = ()

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "followUp": self.follow_up.to_response(),
            "notifications": [n.to_response() for n in self.notifications],
        }
        if self.next_follow_up is not None:
            body["nextFollowUp"] = self.next_follow_up.to_response()
            body["nextNotifications"] = [n.to_response() for n in self.next_notifications]
        return body


class CompletionService:
    """
    Service for completing follow-ups.

    Responsible for:
    - Moving the follow-up to COMPLETED with its outcome and action items
    - Creating the outcome summary notification
    - Booking a single next follow-up when asked to
    """

    def __init__(
        self,
        store: Store,
        detector: Optional[ConflictDetector] = None,
        planner: Optional[NotificationPlanner] = None,
        scheduling: Optional[SchedulingSettings] = None,
    ) -> None:
        self._store = store
        self._scheduling = scheduling or settings.scheduling
        self._detector = detector or ConflictDetector(store, scheduling=self._scheduling)
        self._planner = planner or NotificationPlanner(store)

    def _schedule_next(
        self,
        completed: FollowUp,
        client: Optional[Client],
        request: CompleteFollowUpRequest,
    ) -> Tuple[FollowUp, List[FollowUpNotification]]:
        start = localize(request.next_follow_up_date, completed.timezone)
        if start < now_utc():
            raise ValidationError(
                "Validation failed",
                ["nextFollowUpDate: must not be in the past"],
            )

        self._detector.ensure_available(
            start,
            completed.duration,
            completed.client_id,
            completed.timezone,
            exclude_id=completed.id,
        )

        now = now_utc()
        title = f"Follow-up: {client.name}" if client is not None else completed.title
        next_follow_up = self._store.create_follow_up(FollowUp(
            id="",
            client_id=completed.client_id,
            scheduled_date=start,
            service_id=completed.service_id,
            timezone=completed.timezone,
            duration=completed.duration,
            title=title,
            notes=request.next_follow_up_notes,
            priority=completed.priority,
            category=completed.category,
            status=FollowUpStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
        ))
        reminders = self._planner.plan_reminders(
            next_follow_up,
            client,
            self._scheduling.reminder_days,
        )
        get_metrics().followups_created_total.inc()
        return next_follow_up, reminders

    @log_duration("complete_follow_up")
    def complete(self, follow_up_id: str, request: CompleteFollowUpRequest) -> CompletionResult:
        """
        Complete a follow-up.

        Args:
            follow_up_id: Follow-up to complete.
            request: Validated completion request.

        Returns:
            CompletionResult.

        Raises:
            NotFoundError: If the follow-up doesn't exist.
            InvalidStatusTransitionError: If it cannot be completed.
            ConflictError: If the next follow-up's slot is not available.
        """
        existing = load_follow_up(self._store, follow_up_id)
        FollowUpStatusManager.ensure_transition(existing.status, FollowUpStatus.COMPLETED)

        notes = existing.notes
        if request.notes:
            notes = append_note(notes, f"Completion Notes: {request.notes}")

        changes = {
            "status": FollowUpStatus.COMPLETED,
            "outcome": request.outcome,
            "action_items": tuple(request.action_items),
            "notes": notes,
            "updated_at": now_utc(),
        }
        self._store.update_follow_up(existing.id, changes)
        completed = replace(existing, **changes)

        client = self._store.get_client(existing.client_id)
        notifications = []
        summary = self._planner.outcome_summary(completed, client)
        if summary is not None:
            notifications.append(summary)

        next_follow_up = None
        next_notifications: List[FollowUpNotification] = []
        if request.schedule_next:
            next_follow_up, next_notifications = self._schedule_next(completed, client, request)

        get_metrics().followups_completed_total.inc()
        logger.info(
            f"Completed follow-up {follow_up_id}",
            extra={"extra_fields": {
                "follow_up_id": follow_up_id,
                "action_item_count": len(request.action_items),
                "next_follow_up_id": next_follow_up.id if next_follow_up else None,
            }}
        )

        return CompletionResult(
            follow_up=completed,
            notifications=tuple(notifications),
            next_follow_up=next_follow_up,
            next_notifications=tuple(next_notifications),
        )
