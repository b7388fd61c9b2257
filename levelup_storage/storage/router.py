"""
Storage router.

Single entry point for feature code. Every write and read is routed to
exactly one backend, chosen from one entitlement snapshot per action:
the on-device SQLite store for free users, the remote store for paid
users. A paid user's write never falls back to the local store; remote
failures propagate to the caller.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any

from ..backends.base import (
    EntityFamily,
    ExerciseLog,
    ListOptions,
    ProgressTracking,
    StorageBackend,
    WorkoutSession,
)
from ..backends.cosmos import CosmosBackend, CosmosConfig
from ..backends.sqlite import LocalStorageStats, SQLiteBackend, SQLiteConfig
from ..entitlement.resolver import EntitlementResolver
from ..entitlement.types import EntitlementContext, SubscriptionPlan
from ..identity.config_provider import ConfigFileIdentityProvider
from ..identity.provider import IdentityProvider
from ..logging_utils import LoggingConfig, apply_logging_config
from ..migration.engine import MigrationEngine
from ..migration.types import MigrationSummary
from .connectivity import ConnectivityProbe, HttpConnectivityProbe

logger = logging.getLogger(__name__)


@dataclass
class SyncStatus:
    """Snapshot reported to the UI for the sync indicator."""

    is_online: bool
    can_sync_to_cloud: bool
    local_storage_enabled: bool
    unsynced_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class StorageRouter:
    """Routes workout data to the store the user's plan entitles them to.

    Usage:
        router = await StorageRouter.create()
        session_id = await router.save_workout_session(
            routine_id="r-1", session_date="2026-01-05", start_time="07:30"
        )
        sessions = await router.list_workout_sessions(ListOptions(limit=10))

        # after an upgrade completes
        await router.refresh_subscription()
        summary = await router.sync_local_data_to_cloud()
    """

    def __init__(
        self,
        local: SQLiteBackend,
        remote: CosmosBackend,
        entitlements: EntitlementResolver,
        identity: IdentityProvider,
        connectivity: ConnectivityProbe | None = None,
        migration: MigrationEngine | None = None,
    ):
        self.local = local
        self.remote = remote
        self.entitlements = entitlements
        self.identity = identity
        self.connectivity = connectivity or HttpConnectivityProbe.from_env()
        self.migration = migration or MigrationEngine(local, remote)

    @classmethod
    async def create(
        cls,
        identity: IdentityProvider | None = None,
        sqlite_config: SQLiteConfig | None = None,
        cosmos_config: CosmosConfig | None = None,
        logging_config: LoggingConfig | None = None,
    ) -> StorageRouter:
        """Build and initialize a router from environment configuration.

        Structured JSON logging is installed first when the logging config
        (LEVELUP_LOG_FORMAT=json by default) asks for it.
        """
        apply_logging_config(logging_config or LoggingConfig.from_env())
        local = SQLiteBackend(sqlite_config or SQLiteConfig.from_env())
        remote = CosmosBackend(cosmos_config or CosmosConfig.from_env())
        router = cls(
            local=local,
            remote=remote,
            entitlements=EntitlementResolver(remote),
            identity=identity or ConfigFileIdentityProvider(),
        )
        await router.initialize()
        return router

    async def initialize(self) -> EntitlementContext:
        """Resolve the signed-in user, open the local store, load the plan."""
        user_id = await self.identity.get_user_id()
        await self.local.initialize()
        context = await self.entitlements.load_subscription(user_id)
        logger.info(
            f"Storage router ready ({context.plan.value} plan)",
            extra={"user_id": user_id, "use_cloud": context.should_use_cloud},
        )
        return context

    async def close(self) -> None:
        await self.local.close()
        await self.remote.close()

    async def __aenter__(self) -> StorageRouter:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _backend_for(self, context: EntitlementContext) -> StorageBackend:
        return self.remote if context.should_use_cloud else self.local

    # =========================================================================
    # Writes
    # =========================================================================

    async def save_workout_session(
        self,
        routine_id: str,
        session_date: str,
        start_time: str,
        end_time: str | None = None,
        notes: str | None = None,
        rating: int | None = None,
    ) -> str:
        """Persist a workout session and return its generated id."""
        session = WorkoutSession(
            id=str(uuid.uuid4()),
            routine_id=routine_id,
            session_date=session_date,
            start_time=start_time,
            end_time=end_time,
            notes=notes,
            rating=rating,
        )
        session.validate()

        context = self.entitlements.context
        await self._backend_for(context).save_workout_session(context.user_id, session)
        logger.debug(
            f"Saved workout session {session.id}",
            extra={"user_id": context.user_id, "use_cloud": context.should_use_cloud},
        )
        return session.id

    async def save_exercise_log(
        self,
        session_id: str,
        exercise_id: str,
        order_performed: int,
        sets_completed: int,
        reps_performed: list[int],
        weight_used_kg: list[float],
        rest_time_seconds: list[int] | None = None,
        notes: str | None = None,
        skipped: bool = False,
    ) -> str:
        """Persist one exercise performed in a session and return its id."""
        log = ExerciseLog(
            id=str(uuid.uuid4()),
            session_id=session_id,
            exercise_id=exercise_id,
            order_performed=order_performed,
            sets_completed=sets_completed,
            reps_performed=list(reps_performed),
            weight_used_kg=list(weight_used_kg),
            rest_time_seconds=list(rest_time_seconds) if rest_time_seconds is not None else None,
            notes=notes,
            skipped=skipped,
        )
        log.validate()

        context = self.entitlements.context
        await self._backend_for(context).save_exercise_log(context.user_id, log)
        return log.id

    async def save_progress_tracking(
        self,
        record_date: str,
        metric_type: str,
        value: float,
        unit: str,
        notes: str | None = None,
    ) -> str:
        """Persist a progress measurement and return its id."""
        progress = ProgressTracking(
            id=str(uuid.uuid4()),
            record_date=record_date,
            metric_type=metric_type,
            value=value,
            unit=unit,
            notes=notes,
        )
        progress.validate()

        context = self.entitlements.context
        await self._backend_for(context).save_progress_tracking(context.user_id, progress)
        return progress.id

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_workout_sessions(
        self, options: ListOptions | None = None
    ) -> list[WorkoutSession]:
        options = options or ListOptions()
        options.validate_for(EntityFamily.WORKOUT_SESSION)
        context = self.entitlements.context
        return await self._backend_for(context).list_workout_sessions(context.user_id, options)

    async def list_exercise_logs(self, options: ListOptions | None = None) -> list[ExerciseLog]:
        options = options or ListOptions()
        options.validate_for(EntityFamily.EXERCISE_LOG)
        context = self.entitlements.context
        return await self._backend_for(context).list_exercise_logs(context.user_id, options)

    async def get_exercise_logs_by_session(self, session_id: str) -> list[ExerciseLog]:
        context = self.entitlements.context
        return await self._backend_for(context).get_exercise_logs_by_session(
            context.user_id, session_id
        )

    async def list_progress_tracking(
        self, options: ListOptions | None = None
    ) -> list[ProgressTracking]:
        options = options or ListOptions()
        options.validate_for(EntityFamily.PROGRESS_TRACKING)
        context = self.entitlements.context
        return await self._backend_for(context).list_progress_tracking(context.user_id, options)

    # =========================================================================
    # Sync and Entitlement
    # =========================================================================

    @property
    def current_plan(self) -> SubscriptionPlan:
        return self.entitlements.context.plan

    async def refresh_subscription(self) -> EntitlementContext:
        """Reload the plan, e.g. after an upgrade flow completes."""
        return await self.entitlements.refresh()

    async def sync_local_data_to_cloud(self) -> MigrationSummary:
        """Migrate unsynced local rows to the remote store.

        Raises:
            NotEntitledError: If the current plan is the free plan.
        """
        return await self.migration.sync(self.entitlements.context)

    async def get_sync_status(self) -> SyncStatus:
        context = self.entitlements.context
        is_online = await self.connectivity.is_online()
        return SyncStatus(
            is_online=is_online,
            can_sync_to_cloud=is_online and context.should_use_cloud,
            local_storage_enabled=context.local_storage_enabled,
            unsynced_count=await self.local.count_unsynced(context.user_id),
        )

    async def get_storage_stats(self) -> LocalStorageStats:
        """Row counts of the on-device store."""
        return await self.local.get_storage_stats()

    async def clear_local_data(self) -> bool:
        """Delete all on-device data. Only allowed on the free plan.

        Returns:
            True if data was cleared, False if the plan does not use local storage.
        """
        context = self.entitlements.context
        if not context.local_storage_enabled:
            logger.warning(
                "Refusing to clear local data: plan does not use local storage",
                extra={"user_id": context.user_id, "plan": context.plan.value},
            )
            return False

        await self.local.clear_all()
        return True
