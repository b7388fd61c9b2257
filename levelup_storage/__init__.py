"""
LevelUp Storage

Tiered workout data storage with one-shot cloud migration.

Provides:
- On-device SQLite store for free-plan users
- Cosmos DB remote store for paid-plan users
- Entitlement resolution that fails safe to the free plan
- A router that sends each action to exactly one store
- A migration engine that moves local rows to the cloud exactly once

Usage:

    >>> from levelup_storage import StorageRouter, ListOptions
    >>> router = await StorageRouter.create()
    >>> session_id = await router.save_workout_session(
    ...     routine_id="push-day", session_date="2026-01-05", start_time="07:30"
    ... )
    >>> await router.save_exercise_log(
    ...     session_id=session_id,
    ...     exercise_id="bench-press",
    ...     order_performed=0,
    ...     sets_completed=3,
    ...     reps_performed=[10, 8, 6],
    ...     weight_used_kg=[60.0, 70.0, 75.0],
    ... )
    >>> recent = await router.list_workout_sessions(ListOptions(limit=10))

After an upgrade:

    >>> await router.refresh_subscription()
    >>> summary = await router.sync_local_data_to_cloud()
    >>> summary.synced, summary.failed
"""

# Backend abstraction
from .backends import (
    MIGRATION_ORDER,
    EntityFamily,
    ExerciseLog,
    ListOptions,
    ProgressTracking,
    Record,
    StorageBackend,
    WorkoutSession,
)
from .backends.cosmos import CosmosBackend, CosmosConfig
from .backends.sqlite import LocalStorageStats, SQLiteBackend, SQLiteConfig

# Entitlement
from .entitlement import (
    EntitlementContext,
    EntitlementResolver,
    EntitlementState,
    SubscriptionPlan,
    SubscriptionSource,
)

# Exceptions
from .exceptions import (
    AuthenticationError,
    EntitlementNotLoadedError,
    LevelUpStorageError,
    NotEntitledError,
    RecordExistsError,
    RemoteStoreError,
    RemoteValidationError,
    StorageConnectionError,
    StorageIOError,
    TransientRemoteError,
    ValidationError,
)

# Identity module
from .identity import (
    AuthenticationRequiredError,
    ConfigFileIdentityProvider,
    IdentityProvider,
    StaticIdentityProvider,
    UserIdentity,
)

# Logging
from .logging_utils import LoggingConfig, StructuredJsonFormatter, configure_structured_logging

# Migration
from .migration import MigrationEngine, MigrationStage, MigrationSummary, RowFailure

# Routing
from .storage import (
    ConnectivityProbe,
    HttpConnectivityProbe,
    StaticConnectivity,
    StorageRouter,
    SyncStatus,
)

__all__ = [
    # Core abstractions
    "StorageBackend",
    "ListOptions",
    "EntityFamily",
    "MIGRATION_ORDER",
    # Records
    "WorkoutSession",
    "ExerciseLog",
    "ProgressTracking",
    "Record",
    # Backends
    "SQLiteBackend",
    "SQLiteConfig",
    "LocalStorageStats",
    "CosmosBackend",
    "CosmosConfig",
    # Entitlement
    "EntitlementContext",
    "EntitlementResolver",
    "EntitlementState",
    "SubscriptionPlan",
    "SubscriptionSource",
    # Routing
    "StorageRouter",
    "SyncStatus",
    "ConnectivityProbe",
    "HttpConnectivityProbe",
    "StaticConnectivity",
    # Migration
    "MigrationEngine",
    "MigrationStage",
    "MigrationSummary",
    "RowFailure",
    # Logging
    "LoggingConfig",
    "StructuredJsonFormatter",
    "configure_structured_logging",
    # Identity
    "IdentityProvider",
    "StaticIdentityProvider",
    "ConfigFileIdentityProvider",
    "UserIdentity",
    "AuthenticationRequiredError",
    # Exceptions
    "LevelUpStorageError",
    "StorageIOError",
    "StorageConnectionError",
    "RemoteStoreError",
    "TransientRemoteError",
    "RemoteValidationError",
    "AuthenticationError",
    "RecordExistsError",
    "ValidationError",
    "NotEntitledError",
    "EntitlementNotLoadedError",
]

__version__ = "0.1.0"
