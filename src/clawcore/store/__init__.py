"""clawcore persistence layer."""

from clawcore.store.sessions import (
    ClawStoreError,
    SessionStore,
    StoreNotInitializedError,
)

__all__ = [
    "SessionStore",
    "ClawStoreError",
    "StoreNotInitializedError",
]
