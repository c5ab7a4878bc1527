"""
Follow-up Cancellation Service.

Handles cancellation of follow-ups and, on request, the rest of a
recurring series.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from followup_engine.core import FollowUpStatusManager, now_utc
from followup_engine.core.models import FollowUpStatus
from followup_engine.infrastructure.logging import get_logger, log_duration
from followup_engine.infrastructure.metrics import get_metrics
from followup_engine.infrastructure.store import FollowUp, FollowUpNotification, Store
from followup_engine.services.common import append_note, load_follow_up
from followup_engine.services.notifications import (
    FOLLOW_UP_CANCELLED,
    SERIES_CANCELLED,
    NotificationPlanner,
)


logger = get_logger(__name__)

DEFAULT_REASON = "Cancelled by user"


@dataclass(frozen=True)
class CancellationResult:
    """Result of a follow-up cancellation."""
    follow_up: FollowUp
    cancelled_children: Tuple[str, ...] = ()
    failed_notifications: int = 0
    notice: Optional[FollowUpNotification] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "followUp": self.follow_up.to_response(),
            "cancelledOccurrences": list(self.cancelled_children),
            "failedNotifications": self.failed_notifications,
            "notice": self.notice.to_response() if self.notice else None,
        }


class CancellationService:
    """
    Service for cancelling follow-ups.

    Responsible for:
    - Moving the follow-up to CANCELLED and recording the reason
    - Failing its pending notifications
    - Cascading to future scheduled occurrences of a recurring parent
    - Sending the client a reschedule request
    """

    def __init__(
        self,
        store: Store,
        planner: Optional[NotificationPlanner] = None,
    ) -> None:
        self._store = store
        self._planner = planner or NotificationPlanner(store)

    def _cancel_children(self, parent: FollowUp, reason: str) -> List[str]:
        now = now_utc()
        cancelled = []
        for child in self._store.find_children(parent.id):
            if child.status != FollowUpStatus.SCHEDULED or child.scheduled_date <= now:
                continue
            self._store.update_follow_up(child.id, {
                "status": FollowUpStatus.CANCELLED,
                "notes": append_note(child.notes, f"Cancelled as part of recurring series: {reason}"),
                "updated_at": now,
            })
            cancelled.append(child.id)
        return cancelled

    @log_duration("cancel_follow_up")
    def cancel(
        self,
        follow_up_id: str,
        reason: Optional[str] = None,
        cascade: bool = False,
    ) -> CancellationResult:
        """
        Cancel a follow-up.

        Args:
            follow_up_id: Follow-up to cancel.
            reason: Free-text reason appended to the notes.
            cascade: Also cancel future SCHEDULED occurrences when the
                follow-up is a recurring parent. Occurrences already
                completed, confirmed or past are left alone.

        Returns:
            CancellationResult.

        Raises:
            NotFoundError: If the follow-up doesn't exist.
            InvalidStatusTransitionError: If it can no longer be cancelled.
        """
        reason = (reason or "").strip() or DEFAULT_REASON
        existing = load_follow_up(self._store, follow_up_id)
        FollowUpStatusManager.ensure_transition(existing.status, FollowUpStatus.CANCELLED)

        logger.info(
            f"Cancelling follow-up {follow_up_id}",
            extra={"extra_fields": {
                "follow_up_id": follow_up_id,
                "cascade": cascade,
            }}
        )

        changes = {
            "status": FollowUpStatus.CANCELLED,
            "notes": append_note(existing.notes, f"Cancelled: {reason}"),
            "updated_at": now_utc(),
        }
        self._store.update_follow_up(existing.id, changes)
        cancelled = replace(existing, **changes)

        failed = self._planner.fail_pending([existing.id], FOLLOW_UP_CANCELLED)

        children: List[str] = []
        if cascade and existing.is_recurring_parent:
            children = self._cancel_children(existing, reason)
            failed += self._planner.fail_pending(children, SERIES_CANCELLED)

        client = self._store.get_client(existing.client_id)
        notice = self._planner.cancellation_notice(cancelled, client, reason)

        get_metrics().followups_cancelled_total.inc(1 + len(children))
        logger.info(
            f"Cancelled follow-up {follow_up_id}",
            extra={"extra_fields": {
                "follow_up_id": follow_up_id,
                "cancelled_occurrences": len(children),
                "failed_notifications": failed,
            }}
        )

        return CancellationResult(
            follow_up=cancelled,
            cancelled_children=tuple(children),
            failed_notifications=failed,
            notice=notice,
        )
