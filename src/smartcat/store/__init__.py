"""Persisted category status and transition audit log."""

from smartcat.store.storage import (
    ManagedCategory,
    TransitionResult,
    TransitionStore,
)

__all__ = ["ManagedCategory", "TransitionResult", "TransitionStore"]
