"""
Follow-up classification heuristics.

Fills in priority and category when the caller leaves them out. The
tables below are defaults, not rules: an explicit value in a request
always wins.
"""

from typing import Dict, Optional, Sequence, Tuple, Union

from followup_engine.core.models import ClientImportance, FollowUpCategory, Priority


CATEGORY_PRIORITIES: Dict[FollowUpCategory, Priority] = {
    FollowUpCategory.COMPLAINT_RESOLUTION: Priority.URGENT,
    FollowUpCategory.PAYMENT_FOLLOW_UP: Priority.HIGH,
    FollowUpCategory.CONTRACT_RENEWAL: Priority.HIGH,
    FollowUpCategory.SERVICE_CHECK: Priority.MEDIUM,
    FollowUpCategory.MAINTENANCE_REMINDER: Priority.MEDIUM,
    FollowUpCategory.PROJECT_UPDATE: Priority.MEDIUM,
    FollowUpCategory.SEASONAL_PLANNING: Priority.MEDIUM,
    FollowUpCategory.RELATIONSHIP_BUILDING: Priority.LOW,
    FollowUpCategory.UPSELL_OPPORTUNITY: Priority.LOW,
    FollowUpCategory.GENERAL: Priority.MEDIUM,
}

ESCALATION: Dict[Priority, Priority] = {
    Priority.LOW: Priority.MEDIUM,
    Priority.MEDIUM: Priority.HIGH,
    Priority.HIGH: Priority.URGENT,
    Priority.URGENT: Priority.URGENT,
}

OVERDUE_ESCALATION_DAYS = 7
SERVICE_CHECK_AFTER_DAYS = 90

# Service id substrings, checked in order
SERVICE_KEYWORDS: Tuple[Tuple[Tuple[str, ...], FollowUpCategory], ...] = (
    (
        ("tree_trimming", "hedge_trimming", "mulching", "dethatching", "leaf_removal"),
        FollowUpCategory.SEASONAL_PLANNING,
    ),
    (
        ("lawn_mowing", "weeding", "gardening_planting", "gardening_seeding"),
        FollowUpCategory.MAINTENANCE_REMINDER,
    ),
    (("gutter_cleaning",), FollowUpCategory.SEASONAL_PLANNING),
    (("maintenance",), FollowUpCategory.MAINTENANCE_REMINDER),
    (("seasonal",), FollowUpCategory.SEASONAL_PLANNING),
)

INTERACTION_KEYWORDS: Tuple[Tuple[Tuple[str, ...], FollowUpCategory], ...] = (
    (("complaint", "unhappy", "issue"), FollowUpCategory.COMPLAINT_RESOLUTION),
    (("invoice", "payment", "overdue balance"), FollowUpCategory.PAYMENT_FOLLOW_UP),
    (("renewal", "contract"), FollowUpCategory.CONTRACT_RENEWAL),
)


def _coerce_category(category: Union[FollowUpCategory, str, None]) -> Optional[FollowUpCategory]:
    if category is None or isinstance(category, FollowUpCategory):
        return category
    try:
        return FollowUpCategory(str(category).upper())
    except ValueError:
        return None


def _coerce_importance(importance: Union[ClientImportance, str, None]) -> ClientImportance:
    if isinstance(importance, ClientImportance):
        return importance
    try:
        return ClientImportance(str(importance).upper())
    except ValueError:
        return ClientImportance.MEDIUM


class FollowUpClassifier:
    """Defaults priority and category for new follow-ups."""

    def determine_priority(
        self,
        category: Union[FollowUpCategory, str, None],
        client_importance: Union[ClientImportance, str] = ClientImportance.MEDIUM,
        days_overdue: int = 0,
    ) -> Priority:
        """
        Derive a default priority.

        Args:
            category: Follow-up category. Unknown values count as GENERAL.
            client_importance: Importance of the client account.
            days_overdue: Days the touchpoint is already late.

        Returns:
            Priority from the category table, raised one level for
            important clients (LOW and MEDIUM only) and one more level
            when more than a week overdue.
        """
        resolved = _coerce_category(category)
        priority = CATEGORY_PRIORITIES.get(resolved, Priority.MEDIUM)

        if _coerce_importance(client_importance) == ClientImportance.HIGH:
            if priority in (Priority.LOW, Priority.MEDIUM):
                priority = ESCALATION[priority]

        if days_overdue > OVERDUE_ESCALATION_DAYS:
            priority = ESCALATION[priority]

        return priority

    def suggest_category(
        self,
        service_id: Optional[str] = None,
        past_interactions: Sequence[str] = (),
        days_since_last_service: Optional[int] = None,
    ) -> FollowUpCategory:
        """
        Suggest a category from what is known about the client.

        A long gap since the last service wins, then the service id,
        then keywords in past interactions. With no signal the answer
        is GENERAL.
        """
        if days_since_last_service is not None and days_since_last_service > SERVICE_CHECK_AFTER_DAYS:
            return FollowUpCategory.SERVICE_CHECK

        if service_id:
            lowered = service_id.lower()
            for keywords, category in SERVICE_KEYWORDS:
                if any(keyword in lowered for keyword in keywords):
                    return category

        for interaction in past_interactions or ():
            lowered = interaction.lower()
            for keywords, category in INTERACTION_KEYWORDS:
                if any(keyword in lowered for keyword in keywords):
                    return category

        return FollowUpCategory.GENERAL
