"""Helpers shared by the follow-up use cases."""

from typing import Optional

from followup_engine.core.exceptions import NotFoundError
from followup_engine.infrastructure.store import FollowUp, Store


def load_follow_up(store: Store, follow_up_id: str) -> FollowUp:
    """
    Get a follow-up or fail.

    Raises:
        NotFoundError: If the follow-up does not exist.
    """
    follow_up = store.get_follow_up(follow_up_id)
    if follow_up is None:
        raise NotFoundError("Follow-up", follow_up_id)
    return follow_up


def append_note(notes: Optional[str], addition: str) -> str:
    """Append a paragraph to free-text notes."""
    if notes:
        return f"{notes}\n\n{addition}"
    return addition
