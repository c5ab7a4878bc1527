"""
Scheduling Conflict Detection.

Finds overlaps between a requested slot and a client's active
follow-ups, checks business hours, and ranks free alternative slots.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from followup_engine.config import SchedulingSettings, settings
from followup_engine.core import (
    as_utc,
    fits_business_hours,
    get_next_business_slot,
    is_within_business_hours,
    now_utc,
    to_local,
)
from followup_engine.core.exceptions import ConflictError
from followup_engine.core.models import (
    ACTIVE_STATUSES,
    AlternativeSlot,
    BusinessHours,
    Conflict,
    ConflictType,
    Severity,
)
from followup_engine.infrastructure.logging import get_logger
from followup_engine.infrastructure.metrics import get_metrics
from followup_engine.infrastructure.store import FollowUp, Store


logger = get_logger(__name__)

BUSINESS_HOURS_CONFLICT_ID = "business-hours"


@dataclass(frozen=True)
class ConflictReport:
    """Conflicts for a requested slot and the alternatives offered."""
    conflicts: Tuple[Conflict, ...] = ()
    alternatives: Tuple[AlternativeSlot, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "hasConflicts": self.has_conflicts,
            "conflicts": [conflict.to_response() for conflict in self.conflicts],
            "alternatives": [slot.to_response() for slot in self.alternatives],
        }


class ConflictDetector:
    """
    Detects scheduling conflicts for a client.

    Responsible for:
    - Half-open overlap checks against active follow-ups
    - Business-hours checks with a next-slot suggestion
    - Ranking conflict-free alternative slots
    """

    def __init__(
        self,
        store: Store,
        business_hours: Optional[BusinessHours] = None,
        scheduling: Optional[SchedulingSettings] = None,
    ) -> None:
        self._store = store
        self._hours = business_hours or settings.business_hours.hours
        self._scheduling = scheduling or settings.scheduling

    @property
    def business_hours(self) -> BusinessHours:
        return self._hours

    def _active_follow_ups(
        self,
        client_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str],
    ) -> List[FollowUp]:
        found = self._store.find_follow_ups_by_client_and_range(
            client_id, start, end, ACTIVE_STATUSES
        )
        return [follow_up for follow_up in found if follow_up.id != exclude_id]

    @staticmethod
    def _overlap_conflict(follow_up: FollowUp) -> Conflict:
        local_start = to_local(follow_up.scheduled_date, follow_up.timezone)
        local_end = to_local(follow_up.end_date, follow_up.timezone)
        return Conflict(
            conflict_type=ConflictType.FOLLOW_UP,
            conflict_id=follow_up.id,
            conflict_title=follow_up.title or "Follow-up",
            start_time=follow_up.scheduled_date,
            end_time=follow_up.end_date,
            severity=Severity.MEDIUM,
            suggestions=(
                f"Choose a time before {local_start:%H:%M} or from {local_end:%H:%M}",
            ),
        )

    def detect_conflicts(
        self,
        start: datetime,
        end: datetime,
        client_id: str,
        exclude_id: Optional[str] = None,
    ) -> List[Conflict]:
        """
        Find active follow-ups of a client overlapping ``[start, end)``.

        Touching intervals (one ends exactly when the other starts) do
        not conflict.

        Args:
            start: Requested start.
            end: Requested end (exclusive).
            client_id: Client identifier.
            exclude_id: Follow-up to ignore, typically the one being moved.

        Returns:
            One MEDIUM FOLLOW_UP conflict per overlapping follow-up.
        """
        start, end = as_utc(start), as_utc(end)
        return [
            self._overlap_conflict(follow_up)
            for follow_up in self._active_follow_ups(client_id, start, end, exclude_id)
            if follow_up.overlaps(start, end)
        ]

    def check_business_hours(
        self,
        start: datetime,
        duration: int,
        tz_name: str,
    ) -> Optional[Conflict]:
        """
        Check a start against the business-hours calendar.

        Returns:
            None when the start is inside business hours, otherwise a
            HIGH BUSINESS_HOURS conflict suggesting the next open slot.
        """
        if is_within_business_hours(start, self._hours, tz_name):
            return None

        next_slot = get_next_business_slot(
            start,
            duration,
            self._hours,
            tz_name,
            horizon_days=self._scheduling.search_horizon_days,
        )
        if next_slot is not None:
            suggestion = f"Next available business slot: {to_local(next_slot, tz_name).isoformat()}"
        else:
            suggestion = (
                f"No business slot available in the next "
                f"{self._scheduling.search_horizon_days} days"
            )

        start = as_utc(start)
        return Conflict(
            conflict_type=ConflictType.BUSINESS_HOURS,
            conflict_id=BUSINESS_HOURS_CONFLICT_ID,
            conflict_title="Outside business hours",
            start_time=start,
            end_time=start + timedelta(minutes=duration),
            severity=Severity.HIGH,
            suggestions=(suggestion,),
        )

    # -------------------------------------------------------------------------
    # Alternatives
    # -------------------------------------------------------------------------

    def generate_alternatives(
        self,
        desired_start: datetime,
        duration: int,
        client_id: str,
        tz_name: str,
        conflicts: Sequence[Conflict] = (),
        exclude_id: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> List[AlternativeSlot]:
        """
        Rank free slots close to a desired start.

        Candidates are probed on the same day first, stepping outward
        from ``desired_start`` in slot-step increments, then forward
        from each following business-day opening. A candidate must fit
        inside business hours, must not be in the past and must not
        overlap an active follow-up or one of ``conflicts``.

        Args:
            desired_start: The start that was requested.
            duration: Slot length in minutes.
            client_id: Client identifier.
            tz_name: IANA timezone of the calendar.
            conflicts: Conflicts already found for the desired slot.
            exclude_id: Follow-up to ignore.
            max_results: Number of slots to return.

        Returns:
            Alternatives ordered by distance to ``desired_start``,
            scored ``100 / (1 + hours away)``.
        """
        max_results = max_results or self._scheduling.max_alternatives
        desired = as_utc(desired_start)
        length = timedelta(minutes=duration)
        step = timedelta(minutes=self._scheduling.slot_step_minutes)
        search_end = desired + timedelta(days=self._scheduling.alternative_search_days)
        now = now_utc()

        local_desired = to_local(desired, tz_name)
        local_midnight = local_desired.replace(hour=0, minute=0, second=0, microsecond=0)
        day_start = as_utc(local_midnight)
        day_end = as_utc(local_midnight + timedelta(days=1))

        busy = [
            (follow_up.scheduled_date, follow_up.end_date)
            for follow_up in self._active_follow_ups(client_id, day_start, search_end + length, exclude_id)
        ]
        busy.extend(
            (conflict.start_time, conflict.end_time)
            for conflict in conflicts
            if conflict.conflict_type == ConflictType.FOLLOW_UP
        )

        def acceptable(candidate: datetime) -> bool:
            if candidate < now:
                return False
            if not fits_business_hours(candidate, duration, self._hours, tz_name):
                return False
            end = candidate + length
            return all(not (busy_start < end and candidate < busy_end) for busy_start, busy_end in busy)

        found: List[datetime] = []

        # Same day, nearest first
        offset = step
        while len(found) < max_results and (desired + offset < day_end or desired - offset >= day_start):
            for candidate in (desired + offset, desired - offset):
                if day_start <= candidate < day_end and len(found) < max_results and acceptable(candidate):
                    found.append(candidate)
            offset += step

        # Following business days
        cursor = day_end
        while len(found) < max_results and cursor < search_end:
            opening = get_next_business_slot(
                cursor,
                duration,
                self._hours,
                tz_name,
                horizon_days=self._scheduling.alternative_search_days,
            )
            if opening is None or opening > search_end:
                break
            opening_midnight = to_local(opening, tz_name).replace(hour=0, minute=0, second=0, microsecond=0)
            next_day = as_utc(opening_midnight + timedelta(days=1))
            candidate = opening
            while candidate < next_day and len(found) < max_results:
                if acceptable(candidate):
                    found.append(candidate)
                candidate += step
            cursor = next_day

        found.sort(key=lambda candidate: abs(candidate - desired))

        alternatives = []
        for candidate in found[:max_results]:
            hours_away = abs((candidate - desired).total_seconds()) / 3600
            local = to_local(candidate, tz_name)
            if local.date() == local_desired.date():
                reason = "Closest free time on the same day"
            else:
                reason = f"Next available on {local:%A %Y-%m-%d}"
            alternatives.append(AlternativeSlot(
                start_time=candidate,
                end_time=candidate + length,
                reason=reason,
                score=round(100 / (1 + hours_away), 1),
            ))
        return alternatives

    # -------------------------------------------------------------------------
    # Combined checks
    # -------------------------------------------------------------------------

    def check(
        self,
        start: datetime,
        duration: int,
        client_id: str,
        tz_name: str,
        exclude_id: Optional[str] = None,
    ) -> ConflictReport:
        """Collect business-hours and overlap conflicts plus alternatives."""
        start = as_utc(start)
        conflicts: List[Conflict] = []

        hours_conflict = self.check_business_hours(start, duration, tz_name)
        if hours_conflict is not None:
            conflicts.append(hours_conflict)

        conflicts.extend(self.detect_conflicts(
            start, start + timedelta(minutes=duration), client_id, exclude_id
        ))

        alternatives: List[AlternativeSlot] = []
        if conflicts:
            alternatives = self.generate_alternatives(
                start, duration, client_id, tz_name, conflicts, exclude_id
            )

        return ConflictReport(conflicts=tuple(conflicts), alternatives=tuple(alternatives))

    def ensure_available(
        self,
        start: datetime,
        duration: int,
        client_id: str,
        tz_name: str,
        exclude_id: Optional[str] = None,
    ) -> None:
        """
        Reject a slot that is outside business hours or already taken.

        Raises:
            ConflictError: Business hours are checked first, then overlaps.
        """
        start = as_utc(start)
        hours_conflict = self.check_business_hours(start, duration, tz_name)
        if hours_conflict is not None:
            self._reject(
                "Requested time is outside business hours",
                [hours_conflict], start, duration, client_id, tz_name, exclude_id,
            )

        overlaps = self.detect_conflicts(
            start, start + timedelta(minutes=duration), client_id, exclude_id
        )
        if overlaps:
            self._reject(
                "Scheduling conflict detected",
                overlaps, start, duration, client_id, tz_name, exclude_id,
            )

    def _reject(
        self,
        message: str,
        conflicts: List[Conflict],
        start: datetime,
        duration: int,
        client_id: str,
        tz_name: str,
        exclude_id: Optional[str],
    ) -> None:
        alternatives = self.generate_alternatives(
            start, duration, client_id, tz_name, conflicts, exclude_id
        )
        conflict_type = conflicts[0].conflict_type.value
        get_metrics().scheduling_conflicts_total.inc(type=conflict_type)
        logger.info(
            message,
            extra={"extra_fields": {
                "client_id": client_id,
                "conflict_type": conflict_type,
                "conflict_count": len(conflicts),
                "alternative_count": len(alternatives),
            }}
        )
        raise ConflictError(
            message,
            conflicts=[conflict.to_response() for conflict in conflicts],
            alternatives=[slot.to_response() for slot in alternatives],
        )
