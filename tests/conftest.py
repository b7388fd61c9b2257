"""
Shared test configuration and fixtures.

Local store tests run against real in-memory SQLite. The remote store is
replaced by FakeRemoteBackend, an in-memory implementation of the same
backend interface with switches for going offline, rejecting specific
rows, and failing plan lookups.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from levelup_storage.backends.base import (
    RECORD_TYPES,
    EntityFamily,
    ExerciseLog,
    ListOptions,
    ProgressTracking,
    Record,
    StorageBackend,
    WorkoutSession,
)
from levelup_storage.backends.sqlite import SQLiteBackend, SQLiteConfig
from levelup_storage.entitlement import EntitlementResolver
from levelup_storage.exceptions import (
    RecordExistsError,
    RemoteValidationError,
    TransientRemoteError,
    ValidationError,
)
from levelup_storage.identity import StaticIdentityProvider
from levelup_storage.storage import StaticConnectivity, StorageRouter

logger = logging.getLogger(__name__)

USER_ID = "user-123"


class FakeRemoteBackend(StorageBackend):
    """
    In-memory remote store for testing without a Cosmos account.

    Mirrors the Cosmos backend's observable behaviour: inserts are
    create-only, rows are scoped by user_id, exercise logs must reference
    a session that already exists remotely and take a free order_performed
    slot in it.
    """

    def __init__(self, plans: dict[str, str | None] | None = None):
        self.plans: dict[str, str | None] = dict(plans or {})
        self.rows: dict[tuple[str, str], tuple[EntityFamily, Record]] = {}
        self.online = True
        self.fail_ids: set[str] = set()
        self.plan_error: Exception | None = None
        self.insert_calls: list[str] = []
        self.plan_lookups = 0
        self.closed = False

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        self.closed = True

    # Failure injection and inspection

    def records(self, family: EntityFamily, user_id: str = USER_ID) -> list[Record]:
        return [
            record
            for (owner, _), (fam, record) in self.rows.items()
            if owner == user_id and fam == family
        ]

    def seed(self, user_id: str, record: Record) -> None:
        """Place a row remotely without going through save (e.g. an earlier run)."""
        self.rows[(user_id, record.id)] = (record.family, self._stored_copy(record))

    def _stored_copy(self, record: Record) -> Record:
        data = record.to_dict()
        data["synced"] = True
        data["created_at"] = data.get("created_at") or datetime.now(UTC).isoformat()
        return RECORD_TYPES[record.family].from_dict(data)

    async def _insert(self, user_id: str, record: Record) -> None:
        self.insert_calls.append(record.id)
        # Yield so concurrent callers can interleave
        await asyncio.sleep(0)

        if not self.online:
            raise TransientRemoteError("Remote store unreachable", operation="save")
        if record.id in self.fail_ids:
            raise RemoteValidationError(
                f"Rejected {record.id}", operation="save", status_code=400
            )
        record.validate()
        if (user_id, record.id) in self.rows:
            raise RecordExistsError(record.family.value, record.id)
        if isinstance(record, ExerciseLog) and (user_id, record.session_id) not in self.rows:
            raise RemoteValidationError(
                f"Unknown session {record.session_id}", operation="save", status_code=400
            )
        if isinstance(record, ExerciseLog) and any(
            other.session_id == record.session_id
            and other.order_performed == record.order_performed
            for other in self.records(EntityFamily.EXERCISE_LOG, user_id)
        ):
            raise ValidationError(
                "order_performed",
                "already used by another exercise in this session",
                str(record.order_performed),
            )
        self.seed(user_id, record)

    def _check_online(self, operation: str) -> None:
        if not self.online:
            raise TransientRemoteError("Remote store unreachable", operation=operation)

    # StorageBackend

    async def save_workout_session(self, user_id: str, session: WorkoutSession) -> None:
        await self._insert(user_id, session)

    async def list_workout_sessions(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[WorkoutSession]:
        family = EntityFamily.WORKOUT_SESSION
        options = options or ListOptions()
        options.validate_for(family)
        self._check_online("list")
        rows: list[Any] = self.records(family, user_id)
        rows.sort(key=lambda s: (s.session_date, s.start_time, s.created_at), reverse=True)
        return rows[: options.resolve_limit(family)]

    async def save_exercise_log(self, user_id: str, log: ExerciseLog) -> None:
        await self._insert(user_id, log)

    async def list_exercise_logs(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ExerciseLog]:
        family = EntityFamily.EXERCISE_LOG
        options = options or ListOptions()
        options.validate_for(family)
        self._check_online("list")
        rows: list[Any] = self.records(family, user_id)
        if options.session_id is not None:
            rows = [r for r in rows if r.session_id == options.session_id]
            rows.sort(key=lambda r: r.order_performed)
        else:
            rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[: options.resolve_limit(family)]

    async def save_progress_tracking(self, user_id: str, progress: ProgressTracking) -> None:
        await self._insert(user_id, progress)

    async def list_progress_tracking(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ProgressTracking]:
        family = EntityFamily.PROGRESS_TRACKING
        options = options or ListOptions()
        options.validate_for(family)
        self._check_online("list")
        rows: list[Any] = self.records(family, user_id)
        if options.metric_type is not None:
            rows = [r for r in rows if r.metric_type == options.metric_type]
        rows.sort(key=lambda r: r.record_date, reverse=True)
        return rows[: options.resolve_limit(family)]

    # Remote-only operations used by the resolver and the migration

    async def record_exists(self, user_id: str, family: EntityFamily, record_id: str) -> bool:
        self._check_online("record_exists")
        entry = self.rows.get((user_id, record_id))
        return entry is not None and entry[0] == family

    async def get_subscription_plan(self, user_id: str) -> str | None:
        self.plan_lookups += 1
        if self.plan_error is not None:
            raise self.plan_error
        return self.plans.get(user_id)


class RecordFactory:
    """Builds valid records with fresh ids; keyword overrides win."""

    def session(self, **overrides: Any) -> WorkoutSession:
        data: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "routine_id": "push-day",
            "session_date": "2026-01-05",
            "start_time": "07:30",
        }
        data.update(overrides)
        return WorkoutSession(**data)

    def log(self, session_id: str, **overrides: Any) -> ExerciseLog:
        data: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "exercise_id": "bench-press",
            "order_performed": 0,
            "sets_completed": 3,
            "reps_performed": [10, 8, 6],
            "weight_used_kg": [60.0, 70.0, 75.0],
        }
        data.update(overrides)
        return ExerciseLog(**data)

    def progress(self, **overrides: Any) -> ProgressTracking:
        data: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "record_date": "2026-01-05",
            "metric_type": "body_weight",
            "value": 82.5,
            "unit": "kg",
        }
        data.update(overrides)
        return ProgressTracking(**data)


@pytest.fixture
def records() -> RecordFactory:
    return RecordFactory()


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
async def local_backend():
    """Fixture providing an initialized in-memory SQLite backend."""
    config = SQLiteConfig(db_path=":memory:")
    backend = await SQLiteBackend.create(config=config)
    yield backend
    await backend.close()


@pytest.fixture
def remote_backend() -> FakeRemoteBackend:
    return FakeRemoteBackend()


@pytest.fixture
def make_router(
    local_backend: SQLiteBackend, remote_backend: FakeRemoteBackend
) -> Callable[..., Awaitable[StorageRouter]]:
    """Factory fixture: initialized router for USER_ID on the given plan."""

    async def _make(plan: str | None = "free", online: bool = True) -> StorageRouter:
        remote_backend.plans[USER_ID] = plan
        router = StorageRouter(
            local=local_backend,
            remote=remote_backend,  # type: ignore[arg-type]
            entitlements=EntitlementResolver(remote_backend),
            identity=StaticIdentityProvider(USER_ID),
            connectivity=StaticConnectivity(online),
        )
        await router.initialize()
        return router

    return _make
