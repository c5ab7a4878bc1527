"""
Flask API Routes.

Defines all HTTP endpoints for the follow-up engine.
"""

from typing import Any, Dict, Tuple

from flask import Blueprint, current_app, request
from werkzeug.exceptions import HTTPException

from followup_engine import __version__
from followup_engine.api.rate_limiting import rate_limit
from followup_engine.api.validation import (
    CancelFollowUpQuery,
    ClientFollowUpsQuery,
    ConflictCheckQuery,
    parse_query,
)
from followup_engine.core.exceptions import (
    BusinessError,
    ConflictError,
    InfrastructureError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from followup_engine.infrastructure.logging import get_logger
from followup_engine.infrastructure.metrics import metrics_endpoint
from followup_engine.services.orchestrator import FollowUpOrchestrator


logger = get_logger(__name__)

EXTENSION_KEY = "followup_engine"

api_bp = Blueprint("api", __name__)


def _orchestrator() -> FollowUpOrchestrator:
    return current_app.extensions[EXTENSION_KEY]


def _error_response(
    message: str,
    status_code: int,
    error_type: str = "error",
    **extra: Any,
) -> Tuple[Dict[str, Any], int]:
    """Create standardized error response."""
    return {
        "success": False,
        "error": message,
        "error_type": error_type,
        **extra,
    }, status_code


def _status_filter() -> list:
    values = []
    for raw in request.args.getlist("status"):
        values.extend(part.strip().upper() for part in raw.split(",") if part.strip())
    return values


# ============================================================================
# Health Check
# ============================================================================

@api_bp.route("/health", methods=["GET"])
def health_check() -> Tuple[Dict[str, Any], int]:
    """
    Health check endpoint for Cloud Run.

    Reports Store diagnostics; answers 503 while the Store is down so
    the instance is taken out of rotation.
    """
    report = _orchestrator().health()
    healthy = bool(report.get("healthy"))
    return {
        "success": healthy,
        "status": "healthy" if healthy else "unhealthy",
        "service": "followup-engine",
        "version": __version__,
        "store": report,
    }, 200 if healthy else 503


@api_bp.route("/", methods=["GET"])
def root() -> Tuple[Dict[str, Any], int]:
    """Root endpoint, same as /health for Cloud Run default checks."""
    return health_check()


@api_bp.route("/metrics", methods=["GET"])
def metrics():
    """Prometheus metrics endpoint."""
    return metrics_endpoint()


# ============================================================================
# Follow-up Endpoints
# ============================================================================

@api_bp.route("/follow-ups/schedule", methods=["POST"])
@rate_limit
def schedule_follow_up() -> Tuple[Dict[str, Any], int]:
    """
    Book a follow-up, and its occurrences when recurring.

    Returns:
        201 with the follow-up, its reminders and the series summary.
    """
    result = _orchestrator().create_follow_up(request.get_json(silent=True))
    return result.to_response(), 201


@api_bp.route("/follow-ups/conflicts", methods=["GET"])
def check_conflicts() -> Tuple[Dict[str, Any], int]:
    """Report conflicts and alternatives for a prospective slot."""
    query = parse_query(ConflictCheckQuery, request.args.to_dict())
    report = _orchestrator().check_conflicts(
        query.client_id,
        query.start_time,
        duration=query.duration,
        tz_name=query.timezone,
        exclude_id=query.exclude_id,
    )
    return report.to_response(), 200


@api_bp.route("/follow-ups/client/<client_id>", methods=["GET"])
def list_client_follow_ups(client_id: str) -> Tuple[Dict[str, Any], int]:
    """List a client's follow-ups, optionally only upcoming or overdue ones."""
    args = request.args.to_dict()
    args["status"] = _status_filter()
    query = parse_query(ClientFollowUpsQuery, args)

    follow_ups = _orchestrator().list_client_follow_ups(
        client_id,
        upcoming_only=query.upcoming_only,
        overdue_only=query.overdue_only,
        statuses=query.status,
    )
    return {
        "success": True,
        "clientId": client_id,
        "count": len(follow_ups),
        "followUps": [follow_up.to_response() for follow_up in follow_ups],
    }, 200


@api_bp.route("/follow-ups/<follow_up_id>", methods=["GET"])
def get_follow_up(follow_up_id: str) -> Tuple[Dict[str, Any], int]:
    return _orchestrator().get_follow_up(follow_up_id).to_response(), 200


@api_bp.route("/follow-ups/<follow_up_id>", methods=["PUT"])
@rate_limit
def update_follow_up(follow_up_id: str) -> Tuple[Dict[str, Any], int]:
    """Apply a partial update; only fields present in the body change."""
    result = _orchestrator().update_follow_up(follow_up_id, request.get_json(silent=True))
    return result.to_response(), 200


@api_bp.route("/follow-ups/<follow_up_id>", methods=["DELETE"])
@rate_limit
def cancel_follow_up(follow_up_id: str) -> Tuple[Dict[str, Any], int]:
    """
    Cancel a follow-up.

    Query parameters:
        reason: Appended to the follow-up notes.
        cascade: Also cancel future occurrences of a recurring parent.
            ``cancelRecurring`` is accepted as an alias.
    """
    query = parse_query(CancelFollowUpQuery, request.args.to_dict())
    result = _orchestrator().cancel_follow_up(
        follow_up_id,
        reason=query.reason,
        cascade=query.should_cascade,
    )
    return result.to_response(), 200


@api_bp.route("/follow-ups/<follow_up_id>", methods=["PATCH"])
@rate_limit
def complete_follow_up(follow_up_id: str) -> Tuple[Dict[str, Any], int]:
    """Complete a follow-up, optionally booking the next one."""
    result = _orchestrator().complete_follow_up(follow_up_id, request.get_json(silent=True))
    return result.to_response(), 200


# ============================================================================
# Error Handlers
# ============================================================================

@api_bp.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError) -> Tuple[Dict[str, Any], int]:
    """Handle request validation errors (400)."""
    logger.info(
        f"Validation error: {error}",
        extra={"extra_fields": {
            "error_type": type(error).__name__,
            "errors": error.errors,
        }}
    )
    return _error_response(str(error), 400, error.error_type, details=error.errors)


@api_bp.errorhandler(NotFoundError)
def handle_not_found(error: NotFoundError) -> Tuple[Dict[str, Any], int]:
    """Handle missing clients and follow-ups (404)."""
    return _error_response(str(error), 404, error.error_type)


@api_bp.errorhandler(ConflictError)
def handle_conflict(error: ConflictError) -> Tuple[Dict[str, Any], int]:
    """Handle scheduling conflicts (409) with their alternatives."""
    return _error_response(
        str(error),
        409,
        error.error_type,
        conflicts=error.conflicts,
        alternatives=error.alternatives,
    )


@api_bp.errorhandler(BusinessError)
def handle_business_error(error: BusinessError) -> Tuple[Dict[str, Any], int]:
    """Handle other business logic errors (4xx)."""
    logger.warning(
        f"Business error: {error}",
        extra={"extra_fields": {"error_type": type(error).__name__}}
    )
    return _error_response(str(error), error.status_code, error.error_type)


@api_bp.errorhandler(StoreUnavailableError)
def handle_store_unavailable(error: StoreUnavailableError) -> Tuple[Dict[str, Any], int]:
    """Handle an unreachable Store (503) with health diagnostics."""
    logger.error(
        f"Store unavailable: {error}",
        extra={"extra_fields": {"error_type": type(error).__name__}}
    )
    details = dict(error.diagnostics)
    details["health"] = _orchestrator().health()
    return _error_response(str(error), 503, error.error_type, details=details)


@api_bp.errorhandler(InfrastructureError)
def handle_infrastructure_error(error: InfrastructureError) -> Tuple[Dict[str, Any], int]:
    """Handle non-transient infrastructure errors (500)."""
    logger.error(
        f"Infrastructure error: {error}",
        extra={"extra_fields": {"error_type": type(error).__name__}}
    )
    return _error_response(str(error), 500, error.error_type)


@api_bp.errorhandler(HTTPException)
def handle_http_exception(error: HTTPException) -> Tuple[Dict[str, Any], int]:
    return _error_response(error.description or error.name, error.code or 500, "http_error")


@api_bp.errorhandler(Exception)
def handle_unexpected_error(error: Exception) -> Tuple[Dict[str, Any], int]:
    """Handle unexpected errors (500)."""
    logger.exception(
        f"Unexpected error: {error}",
        extra={"extra_fields": {"error_type": type(error).__name__}}
    )
    return _error_response(
        "An unexpected error occurred",
        500,
        "internal_error",
    )
