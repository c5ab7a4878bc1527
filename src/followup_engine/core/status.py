"""
Follow-up status state machine.

SCHEDULED is the initial state. COMPLETED, CANCELLED and MISSED are
terminal.
"""

from typing import Dict, FrozenSet, Tuple

from followup_engine.core.exceptions import InvalidStatusTransitionError
from followup_engine.core.models import ACTIVE_STATUSES, FollowUpStatus


class FollowUpStatusManager:
    """Pure lookup over the allowed status transitions."""

    TRANSITIONS: Dict[FollowUpStatus, FrozenSet[FollowUpStatus]] = {
        FollowUpStatus.SCHEDULED: frozenset({
            FollowUpStatus.CONFIRMED,
            FollowUpStatus.CANCELLED,
            FollowUpStatus.MISSED,
            FollowUpStatus.COMPLETED,
        }),
        FollowUpStatus.CONFIRMED: frozenset({
            FollowUpStatus.COMPLETED,
            FollowUpStatus.CANCELLED,
            FollowUpStatus.MISSED,
        }),
        FollowUpStatus.COMPLETED: frozenset(),
        FollowUpStatus.CANCELLED: frozenset(),
        FollowUpStatus.MISSED: frozenset(),
    }

    @classmethod
    def can_transition_to(cls, current: FollowUpStatus, new: FollowUpStatus) -> bool:
        """Check whether ``current`` may move to ``new``."""
        return new in cls.TRANSITIONS.get(current, frozenset())

    @classmethod
    def get_next_statuses(cls, current: FollowUpStatus) -> Tuple[FollowUpStatus, ...]:
        """List the statuses reachable from ``current``, in declaration order."""
        allowed = cls.TRANSITIONS.get(current, frozenset())
        return tuple(status for status in FollowUpStatus if status in allowed)

    @classmethod
    def ensure_transition(cls, current: FollowUpStatus, new: FollowUpStatus) -> None:
        """
        Validate a transition.

        Raises:
            InvalidStatusTransitionError: If the graph does not allow it.
        """
        if not cls.can_transition_to(current, new):
            raise InvalidStatusTransitionError(current.value, new.value)

    @staticmethod
    def is_active(status: FollowUpStatus) -> bool:
        """Active follow-ups occupy their time slot."""
        return status in ACTIVE_STATUSES

    @classmethod
    def is_terminal(cls, status: FollowUpStatus) -> bool:
        return not cls.TRANSITIONS.get(status)
