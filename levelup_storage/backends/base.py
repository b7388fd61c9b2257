"""
Record types and the abstract storage backend.

Both the on-device store (SQLite) and the remote store (Cosmos DB)
implement StorageBackend with identical per-family signatures, so the
router can hold "the current backend" without branching on tier.
Records are always handed out in their decoded, in-memory shape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from ..exceptions import ValidationError


class EntityFamily(Enum):
    """Logical record families, valued by their table / document type name."""

    WORKOUT_SESSION = "workout_sessions"
    EXERCISE_LOG = "exercise_logs"
    PROGRESS_TRACKING = "progress_tracking"


# Parents before children: exercise logs reference a session by id.
MIGRATION_ORDER = (
    EntityFamily.WORKOUT_SESSION,
    EntityFamily.EXERCISE_LOG,
    EntityFamily.PROGRESS_TRACKING,
)


def _require(field_name: str, value: Any) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(field_name, "is required")


@dataclass
class WorkoutSession:
    """A finished workout."""

    family: ClassVar[EntityFamily] = EntityFamily.WORKOUT_SESSION

    id: str
    routine_id: str
    session_date: str  # ISO date
    start_time: str
    end_time: str | None = None
    notes: str | None = None
    rating: int | None = None  # 1-5
    created_at: str | None = None  # ISO timestamp, assigned by the store
    synced: bool = False  # On-device only

    def validate(self) -> None:
        _require("id", self.id)
        _require("routine_id", self.routine_id)
        _require("session_date", self.session_date)
        _require("start_time", self.start_time)
        if self.rating is not None and not 1 <= self.rating <= 5:
            raise ValidationError("rating", "must be between 1 and 5", str(self.rating))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkoutSession:
        return cls(
            id=data["id"],
            routine_id=data["routine_id"],
            session_date=data["session_date"],
            start_time=data["start_time"],
            end_time=data.get("end_time"),
            notes=data.get("notes"),
            rating=data.get("rating"),
            created_at=data.get("created_at"),
            synced=bool(data.get("synced", False)),
        )


@dataclass
class ExerciseLog:
    """One exercise performed within a workout session.

    ``reps_performed`` and ``weight_used_kg`` are parallel per-set sequences.
    """

    family: ClassVar[EntityFamily] = EntityFamily.EXERCISE_LOG

    id: str
    session_id: str
    exercise_id: str
    order_performed: int
    sets_completed: int
    reps_performed: list[int] = field(default_factory=list)
    weight_used_kg: list[float] = field(default_factory=list)
    rest_time_seconds: list[int] | None = None
    notes: str | None = None
    skipped: bool = False
    created_at: str | None = None
    synced: bool = False

    def validate(self) -> None:
        _require("id", self.id)
        _require("session_id", self.session_id)
        _require("exercise_id", self.exercise_id)
        if self.order_performed < 0:
            raise ValidationError(
                "order_performed", "must be non-negative", str(self.order_performed)
            )
        if self.sets_completed < 0:
            raise ValidationError(
                "sets_completed", "must be non-negative", str(self.sets_completed)
            )
        if len(self.reps_performed) != len(self.weight_used_kg):
            raise ValidationError(
                "weight_used_kg",
                f"length {len(self.weight_used_kg)} does not match "
                f"reps_performed length {len(self.reps_performed)}",
            )
        if self.rest_time_seconds and len(self.rest_time_seconds) != len(self.reps_performed):
            raise ValidationError(
                "rest_time_seconds",
                f"length {len(self.rest_time_seconds)} does not match "
                f"reps_performed length {len(self.reps_performed)}",
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExerciseLog:
        rest = data.get("rest_time_seconds")
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            exercise_id=data["exercise_id"],
            order_performed=int(data["order_performed"]),
            sets_completed=int(data["sets_completed"]),
            reps_performed=[int(r) for r in data.get("reps_performed") or []],
            weight_used_kg=[float(w) for w in data.get("weight_used_kg") or []],
            rest_time_seconds=[int(s) for s in rest] if rest is not None else None,
            notes=data.get("notes"),
            skipped=bool(data.get("skipped", False)),
            created_at=data.get("created_at"),
            synced=bool(data.get("synced", False)),
        )


@dataclass
class ProgressTracking:
    """A single point in a per-metric time series (body weight, waist, ...)."""

    family: ClassVar[EntityFamily] = EntityFamily.PROGRESS_TRACKING

    id: str
    record_date: str
    metric_type: str
    value: float
    unit: str
    notes: str | None = None
    created_at: str | None = None
    synced: bool = False

    def validate(self) -> None:
        _require("id", self.id)
        _require("record_date", self.record_date)
        _require("metric_type", self.metric_type)
        _require("unit", self.unit)
        _require("value", self.value)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressTracking:
        return cls(
            id=data["id"],
            record_date=data["record_date"],
            metric_type=data["metric_type"],
            value=float(data["value"]),
            unit=data["unit"],
            notes=data.get("notes"),
            created_at=data.get("created_at"),
            synced=bool(data.get("synced", False)),
        )


Record = Union[WorkoutSession, ExerciseLog, ProgressTracking]

RECORD_TYPES: dict[EntityFamily, type] = {
    EntityFamily.WORKOUT_SESSION: WorkoutSession,
    EntityFamily.EXERCISE_LOG: ExerciseLog,
    EntityFamily.PROGRESS_TRACKING: ProgressTracking,
}

DEFAULT_LIST_LIMITS: dict[EntityFamily, int] = {
    EntityFamily.WORKOUT_SESSION: 50,
    EntityFamily.EXERCISE_LOG: 100,
    EntityFamily.PROGRESS_TRACKING: 100,
}


@dataclass
class ListOptions:
    """Options for list operations.

    Every supported filter is named here; there is no free-form filter dict.

    limit: Maximum rows returned. None uses the family default
        (50 workout sessions, 100 exercise logs, 100 progress rows).
    metric_type: Progress tracking only. Equality filter on metric type.
    session_id: Exercise logs only. Equality filter on the owning session;
        results are then ordered by order_performed ascending instead of
        most-recent-first.
    """

    limit: int | None = None
    metric_type: str | None = None
    session_id: str | None = None

    def resolve_limit(self, family: EntityFamily) -> int:
        return self.limit if self.limit is not None else DEFAULT_LIST_LIMITS[family]

    def validate_for(self, family: EntityFamily) -> None:
        """Reject filters the given family does not support."""
        if self.limit is not None and self.limit <= 0:
            raise ValidationError("limit", "must be positive", str(self.limit))
        if self.metric_type is not None and family != EntityFamily.PROGRESS_TRACKING:
            raise ValidationError("metric_type", f"not supported for {family.value}")
        if self.session_id is not None and family != EntityFamily.EXERCISE_LOG:
            raise ValidationError("session_id", f"not supported for {family.value}")


class StorageBackend(ABC):
    """
    Abstract base for both storage backends.

    Every operation is scoped by ``user_id``: the remote store uses it as
    the tenant predicate, the local store as the row owner.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the backend (connections, schema, indexes)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup resources."""
        pass

    async def __aenter__(self) -> StorageBackend:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # =========================================================================
    # Workout Sessions
    # =========================================================================

    @abstractmethod
    async def save_workout_session(self, user_id: str, session: WorkoutSession) -> None:
        """Insert one workout session. Raises RecordExistsError on id collision."""
        pass

    @abstractmethod
    async def list_workout_sessions(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[WorkoutSession]:
        """List sessions by session_date, start_time, most recent first."""
        pass

    # =========================================================================
    # Exercise Logs
    # =========================================================================

    @abstractmethod
    async def save_exercise_log(self, user_id: str, log: ExerciseLog) -> None:
        """Insert one exercise log. Raises RecordExistsError on id collision."""
        pass

    @abstractmethod
    async def list_exercise_logs(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ExerciseLog]:
        """List exercise logs, most recent first, or in order within a session."""
        pass

    async def get_exercise_logs_by_session(
        self, user_id: str, session_id: str
    ) -> list[ExerciseLog]:
        """All logs of one session in the order they were performed."""
        return await self.list_exercise_logs(user_id, ListOptions(session_id=session_id))

    # =========================================================================
    # Progress Tracking
    # =========================================================================

    @abstractmethod
    async def save_progress_tracking(self, user_id: str, progress: ProgressTracking) -> None:
        """Insert one progress row. Raises RecordExistsError on id collision."""
        pass

    @abstractmethod
    async def list_progress_tracking(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ProgressTracking]:
        """List progress rows by record_date, most recent first."""
        pass

    # =========================================================================
    # Generic dispatch
    # =========================================================================

    async def save_record(self, user_id: str, record: Record) -> None:
        """Save any record through its family-specific method."""
        if isinstance(record, WorkoutSession):
            await self.save_workout_session(user_id, record)
        elif isinstance(record, ExerciseLog):
            await self.save_exercise_log(user_id, record)
        elif isinstance(record, ProgressTracking):
            await self.save_progress_tracking(user_id, record)
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")
