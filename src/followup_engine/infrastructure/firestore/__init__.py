"""
Firestore Infrastructure Package.

Exports the Firestore-backed Store.
"""

from followup_engine.infrastructure.firestore.store import FirestoreStore


__all__ = [
    "FirestoreStore",
]
