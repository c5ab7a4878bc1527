"""
Store Package.

Exports:
- Persisted entities (FollowUp, FollowUpNotification, Client, ...)
- The Store interface and its in-memory backend
- Resilience helpers (CircuitBreaker, call_with_retry)
- build_store, which picks the backend from settings
"""

from typing import Optional

from followup_engine.config import StoreSettings, settings
from followup_engine.core.exceptions import ConfigurationError
from followup_engine.infrastructure.store.base import Store
from followup_engine.infrastructure.store.memory import InMemoryStore
from followup_engine.infrastructure.store.models import (
    Client,
    FollowUp,
    FollowUpNotification,
    NotificationFilter,
    RecurrenceSeries,
    StoreHealth,
)
from followup_engine.infrastructure.store.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    call_with_retry,
)


def build_store(store_settings: Optional[StoreSettings] = None) -> Store:
    """
    Create the Store selected by STORE_BACKEND.

    Raises:
        ConfigurationError: If the backend name is unknown.
    """
    store_settings = store_settings or settings.store
    if store_settings.backend == "memory":
        return InMemoryStore()
    if store_settings.backend == "firestore":
        from followup_engine.infrastructure.firestore import FirestoreStore
        return FirestoreStore(store_settings)
    raise ConfigurationError(
        "STORE_BACKEND",
        f"Unknown store backend: {store_settings.backend}",
    )


__all__ = [
    # Models
    "Client",
    "FollowUp",
    "FollowUpNotification",
    "NotificationFilter",
    "RecurrenceSeries",
    "StoreHealth",
    # Stores
    "InMemoryStore",
    "Store",
    "build_store",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "call_with_retry",
]
