"""
Recurrence expansion.

Turns a recurrence rule into the concrete start instants of a series.
Occurrence k is always computed from the first start (start + k * step),
so month-end clamping never drifts: with a monthly rule, January 31
yields February 28 (or 29) and then March 31.
"""

from datetime import datetime, timezone
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from followup_engine.core.business_hours import resolve_timezone
from followup_engine.core.exceptions import ValidationError
from followup_engine.core.models import IntervalUnit, RecurrencePattern, RecurrenceSpec


class RecurrenceGenerator:
    """Expands recurrence rules into ordered occurrence instants."""

    def step_for(
        self,
        spec: RecurrenceSpec,
        custom_interval: Optional[int] = None,
        custom_unit: Optional[IntervalUnit] = None,
    ) -> Optional[relativedelta]:
        """
        Get the step between two consecutive occurrences.

        Returns:
            relativedelta step, or None for non-recurring rules.

        Raises:
            ValidationError: If the interval is not positive or a CUSTOM
                rule lacks its interval or unit.
        """
        if spec.pattern == RecurrencePattern.NONE:
            return None

        if spec.pattern == RecurrencePattern.CUSTOM:
            if not custom_interval or custom_interval < 1 or custom_unit is None:
                raise ValidationError(
                    "Custom recurrence requires customInterval and customIntervalUnit",
                    ["customInterval, customIntervalUnit: both are required for CUSTOM recurrence"],
                )
            return relativedelta(**{IntervalUnit(custom_unit).value: custom_interval})

        if spec.interval < 1:
            raise ValidationError(
                "Recurrence interval must be positive",
                ["recurrenceData.interval: must be greater than 0"],
            )

        if spec.pattern == RecurrencePattern.DAILY:
            return relativedelta(days=spec.interval)
        if spec.pattern == RecurrencePattern.WEEKLY:
            return relativedelta(weeks=spec.interval)
        return relativedelta(months=spec.interval)

    def generate(
        self,
        start: datetime,
        spec: RecurrenceSpec,
        max_occurrences: int,
        custom_interval: Optional[int] = None,
        custom_unit: Optional[IntervalUnit] = None,
        tz_name: Optional[str] = None,
    ) -> List[datetime]:
        """
        Expand a recurrence rule.

        Args:
            start: First occurrence, always included.
            spec: Recurrence rule.
            max_occurrences: Upper bound on the number of instants returned.
            custom_interval: Interval for CUSTOM rules.
            custom_unit: Unit for CUSTOM rules.
            tz_name: When given, steps are taken on wall-clock time in this
                timezone so the local time of day survives DST changes,
                and results are returned in UTC.

        Returns:
            Ordered list of occurrence instants.
        """
        if max_occurrences < 1:
            return []

        step = self.step_for(spec, custom_interval, custom_unit)
        if step is None:
            return [start]

        limit = max_occurrences
        if spec.max_occurrences:
            limit = min(limit, spec.max_occurrences)

        anchor = start.astimezone(resolve_timezone(tz_name)) if tz_name else start

        occurrences: List[datetime] = []
        for k in range(limit):
            occurrence = anchor + step * k
            if tz_name:
                occurrence = occurrence.astimezone(timezone.utc)
            if spec.end_date is not None and occurrence > spec.end_date:
                break
            occurrences.append(occurrence)

        return occurrences
