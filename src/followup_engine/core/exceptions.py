"""
Custom exceptions for the follow-up engine.

Provides a hierarchy of business and infrastructure exceptions
for proper error handling and HTTP status code mapping.
"""

from typing import Any, Dict, List, Optional, Sequence


class FollowupEngineError(Exception):
    """Base exception for all follow-up engine errors."""

    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Business Errors (4xx)
# =============================================================================

class BusinessError(FollowupEngineError):
    """Base exception for business logic errors (typically 4xx)."""

    status_code = 400
    error_type = "business_error"


class ValidationError(BusinessError):
    """Raised when a request fails validation. Lists every violated field."""

    error_type = "validation_error"

    def __init__(self, message: str, errors: Optional[Sequence[str]] = None):
        self.errors: List[str] = list(errors or [message])
        super().__init__(message, {"errors": self.errors})


class InvalidStatusTransitionError(ValidationError):
    """Raised when a status change is not allowed by the state machine."""

    error_type = "invalid_status_transition"

    def __init__(self, current_status: str, new_status: str):
        message = f"Cannot transition from {current_status} to {new_status}"
        super().__init__(message, [f"status: {message}"])
        self.current_status = current_status
        self.new_status = new_status


class NotFoundError(BusinessError):
    """Raised when a client or follow-up does not exist."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity} not found",
            {"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(BusinessError):
    """Raised when a requested slot collides with business hours or another follow-up."""

    status_code = 409
    error_type = "scheduling_conflict"

    def __init__(
        self,
        message: str,
        conflicts: Optional[Sequence[Any]] = None,
        alternatives: Optional[Sequence[Any]] = None,
    ):
        super().__init__(message)
        self.conflicts = list(conflicts or [])
        self.alternatives = list(alternatives or [])


# =============================================================================
# Infrastructure Errors (5xx)
# =============================================================================

class InfrastructureError(FollowupEngineError):
    """Base exception for infrastructure errors (typically 5xx)."""
    pass


class ConfigurationError(InfrastructureError):
    """Raised when a configuration value is missing or malformed."""

    error_type = "configuration_error"

    def __init__(self, config_name: str, message: Optional[str] = None):
        msg = message or f"Configuration missing: {config_name}"
        super().__init__(msg, {"config_name": config_name})
        self.config_name = config_name


class StoreError(InfrastructureError):
    """Raised when a Store operation fails for a non-transient reason."""

    error_type = "store_error"


class StoreUnavailableError(StoreError):
    """Raised when the Store cannot be reached. Retryable."""

    status_code = 503
    error_type = "store_unavailable"
    retryable = True

    def __init__(
        self,
        message: str,
        diagnostics: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, diagnostics)
        self.diagnostics = diagnostics or {}


class CircuitOpenError(StoreUnavailableError):
    """Raised when the Store circuit breaker rejects a call."""

    retryable = False
