"""
Storage backend abstraction layer.

Provides one interface for both stores (on-device SQLite, remote Cosmos DB).
Each backend implements the same per-family operations, so the router can
switch between them on the user's entitlement.
"""

from .base import (
    DEFAULT_LIST_LIMITS,
    MIGRATION_ORDER,
    RECORD_TYPES,
    EntityFamily,
    ExerciseLog,
    ListOptions,
    ProgressTracking,
    Record,
    StorageBackend,
    WorkoutSession,
)

__all__ = [
    # Core classes
    "StorageBackend",
    "ListOptions",
    # Records
    "EntityFamily",
    "WorkoutSession",
    "ExerciseLog",
    "ProgressTracking",
    "Record",
    "RECORD_TYPES",
    "MIGRATION_ORDER",
    "DEFAULT_LIST_LIMITS",
]
