"""
Services Layer.

Business logic orchestration:
- Request validation and classification
- Conflict detection and alternative slots
- Follow-up scheduling, updates, cancellation and completion
- Notification planning
"""

from followup_engine.services.cancellation import (
    CancellationResult,
    CancellationService,
)
from followup_engine.services.classifier import FollowUpClassifier
from followup_engine.services.completion import CompletionResult, CompletionService
from followup_engine.services.conflicts import ConflictDetector, ConflictReport
from followup_engine.services.notifications import NotificationPlanner
from followup_engine.services.orchestrator import FollowUpDetails, FollowUpOrchestrator
from followup_engine.services.scheduler import CreateResult, SchedulerService, UpdateResult
from followup_engine.services.validation import FollowUpValidator, ValidationResult


__all__ = [
    "CancellationResult",
    "CancellationService",
    "CompletionResult",
    "CompletionService",
    "ConflictDetector",
    "ConflictReport",
    "CreateResult",
    "FollowUpClassifier",
    "FollowUpDetails",
    "FollowUpOrchestrator",
    "FollowUpValidator",
    "NotificationPlanner",
    "SchedulerService",
    "UpdateResult",
    "ValidationResult",
]
