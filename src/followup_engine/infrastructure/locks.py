"""
Per-client write serialization.

Writes touching the same client run one at a time. Each client id
gets its own in-process lock.
"""

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator

from followup_engine.core.exceptions import StoreUnavailableError
from followup_engine.infrastructure.logging import get_logger


logger = get_logger(__name__)


class ClientLockRegistry:
    """Hands out one lock per client id."""

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self._timeout = timeout_seconds
        self._locks: Dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, client_id: str) -> Lock:
        with self._registry_lock:
            if client_id not in self._locks:
                self._locks[client_id] = Lock()
            return self._locks[client_id]

    @contextmanager
    def hold(self, client_id: str) -> Iterator[None]:
        """
        Hold the lock of a client for the duration of the block.

        Raises:
            StoreUnavailableError: If the lock is not acquired within the timeout.
        """
        lock = self._lock_for(client_id)
        if not lock.acquire(timeout=self._timeout):
            logger.warning(
                f"Timed out waiting for client lock {client_id}",
                extra={"extra_fields": {
                    "client_id": client_id,
                    "timeout_seconds": self._timeout,
                }}
            )
            raise StoreUnavailableError(
                "Another request is updating this client, retry later",
                {"client_id": client_id},
            )
        try:
            yield
        finally:
            lock.release()
