"""
Follow-up Scheduler Service.

Handles booking new follow-ups, including recurring series, and
updating existing ones.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from followup_engine.config import SchedulingSettings, settings
from followup_engine.core import (
    FollowUpStatusManager,
    RecurrenceGenerator,
    is_within_business_hours,
    localize,
    now_utc,
)
from followup_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from followup_engine.core.models import (
    ACTIVE_STATUSES,
    FollowUpStatus,
    IntervalUnit,
    RecurrencePattern,
)
from followup_engine.infrastructure.logging import get_logger, log_duration
from followup_engine.infrastructure.metrics import get_metrics
from followup_engine.infrastructure.store import (
    Client,
    FollowUp,
    FollowUpNotification,
    RecurrenceSeries,
    Store,
)
from followup_engine.services.classifier import FollowUpClassifier
from followup_engine.services.common import load_follow_up
from followup_engine.services.conflicts import ConflictDetector
from followup_engine.services.notifications import FOLLOW_UP_CANCELLED, NotificationPlanner
from followup_engine.services.validation import ScheduleFollowUpRequest, UpdateFollowUpRequest


logger = get_logger(__name__)

RESCHEDULE_FIELDS = frozenset({"scheduled_date", "duration", "timezone"})


def describe_custom_recurrence(interval: int, unit: IntervalUnit) -> Dict[str, Any]:
    """Summarize a CUSTOM rule, e.g. ``Every 2 weeks``."""
    unit_name = unit.value if interval != 1 else unit.value.rstrip("s")
    return {
        "interval": interval,
        "unit": unit.value,
        "description": f"Every {interval} {unit_name}",
    }


@dataclass(frozen=True)
class CreateResult:
    """Result of booking a follow-up."""
    follow_up: FollowUp
    notifications: Tuple[FollowUpNotification, ...] = ()
    children: Tuple[FollowUp, ...] = ()
    custom_recurrence: Optional[Dict[str, Any]] = None
    skipped_occurrences: Tuple[datetime, ...] = ()

    @property
    def series(self) -> Optional[RecurrenceSeries]:
        if not self.follow_up.is_recurring_parent:
            return None
        return RecurrenceSeries(
            parent_id=self.follow_up.id,
            occurrence_ids=tuple(child.id for child in self.children),
        )

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "followUp": self.follow_up.to_response(),
            "notifications": [n.to_response() for n in self.notifications],
        }
        if self.custom_recurrence:
            body["customRecurrence"] = self.custom_recurrence
        series = self.series
        if series is not None:
            body["series"] = series.to_response()
        if self.skipped_occurrences:
            body["skippedOccurrences"] = [value.isoformat() for value in self.skipped_occurrences]
        return body


@dataclass(frozen=True)
class UpdateResult:
    """Result of a follow-up update."""
    follow_up: FollowUp
    notifications: Tuple[FollowUpNotification, ...] = ()
    failed_notifications: int = 0

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "followUp": self.follow_up.to_response(),
            "notifications": [n.to_response() for n in self.notifications],
            "failedNotifications": self.failed_notifications,
        }


class SchedulerService:
    """
    Service for booking and updating follow-ups.

    Responsible for:
    - Rejecting slots outside business hours or already taken
    - Defaulting priority and category
    - Expanding recurring series into child follow-ups
    - Scheduling reminders for every follow-up it creates
    - Applying partial updates through the status state machine
    """

    def __init__(
        self,
        store: Store,
        detector: Optional[ConflictDetector] = None,
        planner: Optional[NotificationPlanner] = None,
        classifier: Optional[FollowUpClassifier] = None,
        recurrence: Optional[RecurrenceGenerator] = None,
        scheduling: Optional[SchedulingSettings] = None,
    ) -> None:
        self._store = store
        self._scheduling = scheduling or settings.scheduling
        self._detector = detector or ConflictDetector(store, scheduling=self._scheduling)
        self._planner = planner or NotificationPlanner(store)
        self._classifier = classifier or FollowUpClassifier()
        self._recurrence = recurrence or RecurrenceGenerator()

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _load_client(self, client_id: str) -> Client:
        client = self._store.get_client(client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    def _classify(self, request: ScheduleFollowUpRequest, client: Client):
        category = request.category
        if category is None:
            days_since = None
            if client.last_service_at is not None:
                days_since = (now_utc() - client.last_service_at).days
            category = self._classifier.suggest_category(
                request.service_id,
                client.service_history,
                days_since,
            )
        priority = request.priority or self._classifier.determine_priority(
            category,
            client.importance,
        )
        return priority, category

    def _plan_occurrences(
        self,
        request: ScheduleFollowUpRequest,
        client_id: str,
    ) -> Tuple[List[datetime], List[datetime]]:
        """
        Expand the series and check every later occurrence.

        Occurrences starting outside business hours are skipped.
        An occurrence overlapping an active follow-up rejects the
        whole request, and so does one starting before the previous
        occurrence of the series has ended.

        Returns:
            (occurrences to create, skipped occurrences), parent excluded.
        """
        spec = request.recurrence_spec()
        if not spec.is_recurring:
            return [], []

        instants = self._recurrence.generate(
            request.scheduled_date,
            spec,
            self._scheduling.max_recurrence_occurrences,
            custom_interval=request.custom_interval,
            custom_unit=request.custom_interval_unit,
            tz_name=request.timezone,
        )
        length = timedelta(minutes=request.duration)

        occurrences: List[datetime] = []
        skipped: List[datetime] = []
        previous_end = request.scheduled_date + length
        for occurrence in instants[1:]:
            if not is_within_business_hours(occurrence, self._detector.business_hours, request.timezone):
                skipped.append(occurrence)
                continue

            if occurrence < previous_end:
                raise ValidationError(
                    "Recurring occurrences overlap",
                    [f"duration: occurrence on {occurrence.isoformat()} starts before "
                     f"the previous occurrence of the series ends"],
                )

            conflicts = self._detector.detect_conflicts(occurrence, occurrence + length, client_id)
            if conflicts:
                alternatives = self._detector.generate_alternatives(
                    occurrence, request.duration, client_id, request.timezone, conflicts,
                )
                get_metrics().scheduling_conflicts_total.inc(type=conflicts[0].conflict_type.value)
                raise ConflictError(
                    f"Recurring occurrence on {occurrence.isoformat()} conflicts with an existing follow-up",
                    conflicts=[conflict.to_response() for conflict in conflicts],
                    alternatives=[slot.to_response() for slot in alternatives],
                )
            occurrences.append(occurrence)
            previous_end = occurrence + length

        if skipped:
            logger.warning(
                f"Skipped {len(skipped)} occurrences outside business hours",
                extra={"extra_fields": {
                    "client_id": client_id,
                    "skipped": [value.isoformat() for value in skipped],
                }}
            )

        return occurrences, skipped

    @log_duration("create_follow_up")
    def create(self, request: ScheduleFollowUpRequest) -> CreateResult:
        """
        Book a follow-up, and its series when recurring.

        Every check runs before the first write, so a rejected request
        leaves nothing behind.

        Args:
            request: Validated create request.

        Returns:
            CreateResult with the parent follow-up and its reminders.

        Raises:
            NotFoundError: If the client doesn't exist.
            ConflictError: If the slot, or one occurrence, is not available.
        """
        logger.info(
            f"Scheduling follow-up for client {request.client_id}",
            extra={"extra_fields": {
                "client_id": request.client_id,
                "scheduled_date": request.scheduled_date.isoformat(),
                "recurrence_pattern": request.recurrence_pattern.value,
            }}
        )

        client = self._load_client(request.client_id)
        self._detector.ensure_available(
            request.scheduled_date,
            request.duration,
            client.id,
            request.timezone,
        )
        priority, category = self._classify(request, client)
        occurrences, skipped = self._plan_occurrences(request, client.id)

        spec = request.recurrence_spec()
        now = now_utc()
        parent = self._store.create_follow_up(FollowUp(
            id="",
            client_id=client.id,
            scheduled_date=request.scheduled_date,
            service_id=request.service_id,
            timezone=request.timezone,
            duration=request.duration,
            title=request.title or f"Follow-up with {client.name}",
            notes=request.notes,
            priority=priority,
            category=category,
            status=FollowUpStatus.SCHEDULED,
            recurrence_pattern=spec.pattern,
            recurrence_data=spec.to_document() if spec.is_recurring else None,
            custom_interval=request.custom_interval,
            custom_interval_unit=request.custom_interval_unit,
            created_at=now,
            updated_at=now,
        ))
        notifications = self._planner.plan_reminders(parent, client, request.reminder_days)

        children = []
        for occurrence in occurrences:
            child = self._store.create_follow_up(replace(
                parent,
                id="",
                scheduled_date=occurrence,
                recurrence_pattern=RecurrencePattern.NONE,
                recurrence_data=None,
                custom_interval=None,
                custom_interval_unit=None,
                parent_follow_up_id=parent.id,
            ))
            self._planner.plan_reminders(child, client, request.reminder_days)
            children.append(child)

        custom_recurrence = None
        if request.custom_interval and request.custom_interval_unit is not None:
            custom_recurrence = describe_custom_recurrence(
                request.custom_interval,
                request.custom_interval_unit,
            )

        get_metrics().followups_created_total.inc(1 + len(children))
        logger.info(
            f"Scheduled follow-up {parent.id}",
            extra={"extra_fields": {
                "follow_up_id": parent.id,
                "client_id": client.id,
                "occurrence_count": len(children),
                "notification_count": len(notifications),
            }}
        )

        return CreateResult(
            follow_up=parent,
            notifications=tuple(notifications),
            children=tuple(children),
            custom_recurrence=custom_recurrence,
            skipped_occurrences=tuple(skipped),
        )

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    @log_duration("update_follow_up")
    def update(self, follow_up_id: str, request: UpdateFollowUpRequest) -> UpdateResult:
        """
        Apply a partial update.

        Args:
            follow_up_id: Follow-up to update.
            request: Validated patch; only fields present are applied.

        Returns:
            UpdateResult with the merged follow-up and any new notification.

        Raises:
            NotFoundError: If the follow-up doesn't exist.
            InvalidStatusTransitionError: If the status change is not allowed.
            ConflictError: If a reschedule lands on an unavailable slot.
        """
        existing = load_follow_up(self._store, follow_up_id)
        changes = request.changes()

        new_status = changes.get("status")
        if new_status is not None and new_status != existing.status:
            FollowUpStatusManager.ensure_transition(existing.status, new_status)
        else:
            changes.pop("status", None)
        target_status = changes.get("status", existing.status)

        tz_name = changes.get("timezone") or existing.timezone
        if "scheduled_date" in changes:
            start = localize(changes["scheduled_date"], tz_name)
            if start < now_utc():
                raise ValidationError("Validation failed", ["scheduledDate: must not be in the past"])
            changes["scheduled_date"] = start

        if RESCHEDULE_FIELDS & changes.keys() and target_status in ACTIVE_STATUSES:
            self._detector.ensure_available(
                changes.get("scheduled_date", existing.scheduled_date),
                changes.get("duration", existing.duration),
                existing.client_id,
                tz_name,
                exclude_id=existing.id,
            )

        if changes.get("action_items") is not None:
            changes["action_items"] = tuple(changes["action_items"])
        changes["updated_at"] = now_utc()

        self._store.update_follow_up(existing.id, changes)
        updated = replace(existing, **changes)

        notifications: List[FollowUpNotification] = []
        failed = 0
        if target_status != existing.status:
            if target_status == FollowUpStatus.CANCELLED:
                failed = self._planner.fail_pending([existing.id], FOLLOW_UP_CANCELLED)
            elif target_status == FollowUpStatus.COMPLETED:
                client = self._store.get_client(existing.client_id)
                summary = self._planner.outcome_summary(updated, client)
                if summary is not None:
                    notifications.append(summary)

        get_metrics().followups_updated_total.inc()
        logger.info(
            f"Updated follow-up {existing.id}",
            extra={"extra_fields": {
                "follow_up_id": existing.id,
                "fields": sorted(changes.keys()),
                "status": target_status.value,
            }}
        )

        return UpdateResult(
            follow_up=updated,
            notifications=tuple(notifications),
            failed_notifications=failed,
        )
