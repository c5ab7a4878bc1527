"""
Infrastructure Layer.

This layer contains all external dependencies and adapters:
- Logging configuration
- Metrics
- Store backends (in-memory, Firestore) and their resilience wrappers
- Per-client locks
"""

from followup_engine.infrastructure.logging import (
    get_logger,
    log_duration,
    log_request_context,
    logger,
    StructuredLogger,
)


__all__ = [
    "get_logger",
    "log_duration",
    "log_request_context",
    "logger",
    "StructuredLogger",
]
