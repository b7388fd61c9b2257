"""
SQLite storage backend for on-device persistence.

Holds the same logical records as the remote store plus a per-row
``synced`` flag. This is the authoritative store for free-tier users
and the source of the one-shot migration after an upgrade.

Per-set sequences (reps, weights, rest times) are stored as JSON text
columns; encoding and decoding never leave this module.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import RecordExistsError, StorageConnectionError, StorageIOError, ValidationError
from .base import (
    RECORD_TYPES,
    EntityFamily,
    ExerciseLog,
    ListOptions,
    ProgressTracking,
    Record,
    StorageBackend,
    WorkoutSession,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Column Definitions
# =============================================================================

WORKOUT_SESSION_COLUMNS = (
    "id",
    "routine_id",
    "session_date",
    "start_time",
    "end_time",
    "notes",
    "rating",
    "synced",
    "created_at",
)

EXERCISE_LOG_COLUMNS = (
    "id",
    "session_id",
    "exercise_id",
    "order_performed",
    "sets_completed",
    "reps_performed",
    "weight_used_kg",
    "rest_time_seconds",
    "notes",
    "skipped",
    "synced",
    "created_at",
)

PROGRESS_TRACKING_COLUMNS = (
    "id",
    "record_date",
    "metric_type",
    "value",
    "unit",
    "notes",
    "synced",
    "created_at",
)

COLUMNS: dict[EntityFamily, tuple[str, ...]] = {
    EntityFamily.WORKOUT_SESSION: WORKOUT_SESSION_COLUMNS,
    EntityFamily.EXERCISE_LOG: EXERCISE_LOG_COLUMNS,
    EntityFamily.PROGRESS_TRACKING: PROGRESS_TRACKING_COLUMNS,
}

SEQUENCE_COLUMNS = ("reps_performed", "weight_used_kg", "rest_time_seconds")
BOOLEAN_COLUMNS = ("synced", "skipped")

ACKNOWLEDGEMENTS_TABLE = "sync_acknowledgements"

_CREATE_TABLES_SQL = (
    """
    CREATE TABLE IF NOT EXISTS workout_sessions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        routine_id TEXT NOT NULL,
        session_date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT,
        notes TEXT,
        rating INTEGER CHECK (rating >= 1 AND rating <= 5),
        synced INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exercise_logs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        session_id TEXT NOT NULL,
        exercise_id TEXT NOT NULL,
        order_performed INTEGER NOT NULL,
        sets_completed INTEGER NOT NULL,
        reps_performed TEXT NOT NULL,
        weight_used_kg TEXT NOT NULL,
        rest_time_seconds TEXT,
        notes TEXT,
        skipped INTEGER NOT NULL DEFAULT 0,
        synced INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        UNIQUE (session_id, order_performed),
        FOREIGN KEY (session_id) REFERENCES workout_sessions(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS progress_tracking (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        record_date TEXT NOT NULL,
        metric_type TEXT NOT NULL,
        value REAL NOT NULL,
        unit TEXT NOT NULL,
        notes TEXT,
        synced INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    # Remote insert acknowledged, local flag flip still pending
    f"""
    CREATE TABLE IF NOT EXISTS {ACKNOWLEDGEMENTS_TABLE} (
        family TEXT NOT NULL,
        record_id TEXT NOT NULL,
        acknowledged_at TEXT NOT NULL,
        PRIMARY KEY (family, record_id)
    )
    """,
)

_CREATE_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_sessions_date "
    "ON workout_sessions(user_id, session_date DESC, start_time DESC)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_created ON workout_sessions(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_synced ON workout_sessions(synced)",
    "CREATE INDEX IF NOT EXISTS idx_exercises_created ON exercise_logs(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_exercises_synced ON exercise_logs(synced)",
    "CREATE INDEX IF NOT EXISTS idx_progress_date "
    "ON progress_tracking(user_id, metric_type, record_date DESC)",
    "CREATE INDEX IF NOT EXISTS idx_progress_record_date ON progress_tracking(record_date)",
    "CREATE INDEX IF NOT EXISTS idx_progress_created ON progress_tracking(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_progress_synced ON progress_tracking(synced)",
)


def _encode_sequence(values: list[Any] | None) -> str | None:
    if values is None:
        return None
    return json.dumps(list(values))


def _decode_sequence(raw: str | None) -> list[Any] | None:
    if raw is None:
        return None
    return json.loads(raw)


@dataclass
class LocalStorageStats:
    """Row counts of the on-device store."""

    sessions: int
    exercises: int
    progress: int
    unsynced: int

    def to_dict(self) -> dict[str, int]:
        return {
            "sessions": self.sessions,
            "exercises": self.exercises,
            "progress": self.progress,
            "unsynced": self.unsynced,
        }


@dataclass
class SQLiteConfig:
    """Configuration for the on-device SQLite store."""

    db_path: str | Path = ":memory:"

    @classmethod
    def from_env(cls) -> SQLiteConfig:
        """Create config from environment variables."""
        import os

        default_path = Path.home() / ".levelup" / "levelup_local.db"
        return cls(db_path=os.environ.get("LEVELUP_SQLITE_PATH", str(default_path)))


class SQLiteBackend(StorageBackend):
    """
    SQLite storage backend.

    Features:
    - Single file database (or in-memory for tests)
    - Idempotent schema creation at startup
    - Indexed date columns and sync flags for the list and migration hot paths
    - Foreign key from exercise logs to workout sessions enforced
    - One exercise log per (session_id, order_performed)
    """

    def __init__(self, config: SQLiteConfig):
        self.config = config
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False

    @classmethod
    async def create(cls, config: SQLiteConfig | None = None) -> SQLiteBackend:
        """Create and initialize SQLite backend."""
        if config is None:
            config = SQLiteConfig.from_env()

        backend = cls(config)
        await backend.initialize()
        return backend

    async def initialize(self) -> None:
        """Open the connection and create tables and indexes if missing."""
        if self._initialized:
            return

        db_path = str(self.config.db_path)
        try:
            if db_path != ":memory:":
                Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
                db_path = str(Path(db_path).expanduser())

            self.conn = await aiosqlite.connect(db_path)
            self.conn.row_factory = aiosqlite.Row
            await self.conn.execute("PRAGMA foreign_keys = ON")

            for statement in _CREATE_TABLES_SQL:
                await self.conn.execute(statement)
            for statement in _CREATE_INDEXES_SQL:
                await self.conn.execute(statement)

            await self.conn.commit()
            self._initialized = True
            logger.info(f"SQLite backend initialized: {self.config.db_path}")

        except Exception as e:
            if self.conn is not None:
                await self.conn.close()
                self.conn = None
            raise StorageConnectionError(str(self.config.db_path), e) from e

    async def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require_conn(self, operation: str, table: str | None = None) -> aiosqlite.Connection:
        if self.conn is None:
            raise StorageIOError(operation, table, cause=RuntimeError("Not initialized"))
        return self.conn

    # =========================================================================
    # Row Encoding
    # =========================================================================

    def _encode_row(self, family: EntityFamily, user_id: str, record: Record) -> dict[str, Any]:
        data = record.to_dict()
        row: dict[str, Any] = {"user_id": user_id}
        for column in COLUMNS[family]:
            value = data.get(column)
            if column in SEQUENCE_COLUMNS:
                value = _encode_sequence(value)
            elif column in BOOLEAN_COLUMNS:
                value = 1 if value else 0
            row[column] = value
        row["synced"] = 0
        row["created_at"] = data.get("created_at") or datetime.now(UTC).isoformat()
        return row

    def _decode_row(self, family: EntityFamily, row: aiosqlite.Row) -> Record:
        data = dict(row)
        data.pop("user_id", None)
        for column in SEQUENCE_COLUMNS:
            if column in data:
                data[column] = _decode_sequence(data[column])
        for column in BOOLEAN_COLUMNS:
            if column in data:
                data[column] = bool(data[column])
        return RECORD_TYPES[family].from_dict(data)

    # =========================================================================
    # Generic Operations
    # =========================================================================

    async def _insert(self, family: EntityFamily, user_id: str, record: Record) -> None:
        table = family.value
        conn = self._require_conn("save", table)
        record.validate()
        row = self._encode_row(family, user_id, record)

        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        try:
            await conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            await conn.commit()
        except aiosqlite.IntegrityError as e:
            await conn.rollback()
            message = str(e)
            if "FOREIGN KEY" in message:
                raise ValidationError(
                    "session_id", "references an unknown workout session", row.get("session_id")
                ) from e
            if "order_performed" in message:
                raise ValidationError(
                    "order_performed",
                    "already used by another exercise in this session",
                    str(row.get("order_performed")),
                ) from e
            if "UNIQUE" in message or "PRIMARY KEY" in message:
                raise RecordExistsError(table, record.id) from e
            raise StorageIOError("save", table, e) from e
        except aiosqlite.Error as e:
            await conn.rollback()
            raise StorageIOError("save", table, e) from e

    async def _query(
        self,
        family: EntityFamily,
        operation: str,
        query: str,
        params: list[Any] | tuple[Any, ...] = (),
    ) -> list[Record]:
        conn = self._require_conn(operation, family.value)
        try:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError(operation, family.value, e) from e
        return [self._decode_row(family, row) for row in rows]

    async def list_unsynced(
        self, family: EntityFamily, user_id: str | None = None
    ) -> list[Record]:
        """All rows of a family whose synced flag is still false.

        Args:
            family: Entity family to scan
            user_id: Optional owner filter (None returns every owner's rows)
        """
        query = f"SELECT * FROM {family.value} WHERE synced = 0"
        params: list[Any] = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY rowid"
        return await self._query(family, "list_unsynced", query, params)

    async def mark_synced(self, family: EntityFamily, record_id: str) -> bool:
        """Flip one row's synced flag to true.

        Idempotent: flipping an already-synced (or missing) row is a no-op.
        Clears any pending acknowledgement for the row in the same transaction.

        Returns:
            True if the flag changed on this call
        """
        table = family.value
        conn = self._require_conn("mark_synced", table)
        try:
            cursor = await conn.execute(
                f"UPDATE {table} SET synced = 1 WHERE id = ? AND synced = 0",
                (record_id,),
            )
            changed = cursor.rowcount > 0
            await cursor.close()
            await conn.execute(
                f"DELETE FROM {ACKNOWLEDGEMENTS_TABLE} WHERE family = ? AND record_id = ?",
                (family.value, record_id),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            await conn.rollback()
            raise StorageIOError("mark_synced", table, e) from e
        return changed

    async def record_acknowledgement(self, family: EntityFamily, record_id: str) -> None:
        """Remember that the remote store acknowledged this row's insert."""
        conn = self._require_conn("record_acknowledgement", ACKNOWLEDGEMENTS_TABLE)
        try:
            await conn.execute(
                f"INSERT OR REPLACE INTO {ACKNOWLEDGEMENTS_TABLE} "
                "(family, record_id, acknowledged_at) VALUES (?, ?, ?)",
                (family.value, record_id, datetime.now(UTC).isoformat()),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            await conn.rollback()
            raise StorageIOError("record_acknowledgement", ACKNOWLEDGEMENTS_TABLE, e) from e

    async def list_acknowledged(self, family: EntityFamily) -> set[str]:
        """Ids whose remote insert was acknowledged but whose flag flip is pending."""
        conn = self._require_conn("list_acknowledged", ACKNOWLEDGEMENTS_TABLE)
        try:
            async with conn.execute(
                f"SELECT record_id FROM {ACKNOWLEDGEMENTS_TABLE} WHERE family = ?",
                (family.value,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError("list_acknowledged", ACKNOWLEDGEMENTS_TABLE, e) from e
        return {row[0] for row in rows}

    async def clear_all(self) -> None:
        """Hard-delete every row in every table."""
        conn = self._require_conn("clear_all")
        try:
            # Children before parents for the foreign key
            for table in (
                EntityFamily.EXERCISE_LOG.value,
                EntityFamily.WORKOUT_SESSION.value,
                EntityFamily.PROGRESS_TRACKING.value,
                ACKNOWLEDGEMENTS_TABLE,
            ):
                await conn.execute(f"DELETE FROM {table}")
            await conn.commit()
        except aiosqlite.Error as e:
            await conn.rollback()
            raise StorageIOError("clear_all", cause=e) from e
        logger.info("Cleared all local data")

    async def count_unsynced(self, user_id: str | None = None) -> int:
        """Total unsynced rows across all families."""
        conn = self._require_conn("count_unsynced")
        total = 0
        try:
            for family in EntityFamily:
                query = f"SELECT COUNT(*) FROM {family.value} WHERE synced = 0"
                params: tuple[Any, ...] = ()
                if user_id is not None:
                    query += " AND user_id = ?"
                    params = (user_id,)
                async with conn.execute(query, params) as cursor:
                    row = await cursor.fetchone()
                    total += row[0] if row else 0
        except aiosqlite.Error as e:
            raise StorageIOError("count_unsynced", cause=e) from e
        return total

    async def get_storage_stats(self) -> LocalStorageStats:
        """Row counts per table plus the total unsynced count."""
        conn = self._require_conn("get_storage_stats")
        counts: dict[EntityFamily, int] = {}
        try:
            for family in EntityFamily:
                async with conn.execute(f"SELECT COUNT(*) FROM {family.value}") as cursor:
                    row = await cursor.fetchone()
                    counts[family] = row[0] if row else 0
        except aiosqlite.Error as e:
            raise StorageIOError("get_storage_stats", cause=e) from e

        return LocalStorageStats(
            sessions=counts[EntityFamily.WORKOUT_SESSION],
            exercises=counts[EntityFamily.EXERCISE_LOG],
            progress=counts[EntityFamily.PROGRESS_TRACKING],
            unsynced=await self.count_unsynced(),
        )

    # =========================================================================
    # Workout Sessions
    # =========================================================================

    async def save_workout_session(self, user_id: str, session: WorkoutSession) -> None:
        await self._insert(EntityFamily.WORKOUT_SESSION, user_id, session)

    async def list_workout_sessions(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[WorkoutSession]:
        family = EntityFamily.WORKOUT_SESSION
        options = options or ListOptions()
        options.validate_for(family)

        query = """
            SELECT * FROM workout_sessions
            WHERE user_id = ?
            ORDER BY session_date DESC, start_time DESC, created_at DESC
            LIMIT ?
        """
        return await self._query(
            family, "list", query, (user_id, options.resolve_limit(family))
        )  # type: ignore[return-value]

    # =========================================================================
    # Exercise Logs
    # =========================================================================

    async def save_exercise_log(self, user_id: str, log: ExerciseLog) -> None:
        await self._insert(EntityFamily.EXERCISE_LOG, user_id, log)

    async def list_exercise_logs(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ExerciseLog]:
        family = EntityFamily.EXERCISE_LOG
        options = options or ListOptions()
        options.validate_for(family)

        where_parts = ["user_id = ?"]
        params: list[Any] = [user_id]
        if options.session_id is not None:
            where_parts.append("session_id = ?")
            params.append(options.session_id)
            order_by = "order_performed ASC"
        else:
            order_by = "created_at DESC"
        params.append(options.resolve_limit(family))

        query = f"""
            SELECT * FROM exercise_logs
            WHERE {" AND ".join(where_parts)}
            ORDER BY {order_by}
            LIMIT ?
        """
        return await self._query(family, "list", query, params)  # type: ignore[return-value]

    # =========================================================================
    # Progress Tracking
    # =========================================================================

    async def save_progress_tracking(self, user_id: str, progress: ProgressTracking) -> None:
        await self._insert(EntityFamily.PROGRESS_TRACKING, user_id, progress)

    async def list_progress_tracking(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ProgressTracking]:
        family = EntityFamily.PROGRESS_TRACKING
        options = options or ListOptions()
        options.validate_for(family)

        where_parts = ["user_id = ?"]
        params: list[Any] = [user_id]
        if options.metric_type is not None:
            where_parts.append("metric_type = ?")
            params.append(options.metric_type)
        params.append(options.resolve_limit(family))

        query = f"""
            SELECT * FROM progress_tracking
            WHERE {" AND ".join(where_parts)}
            ORDER BY record_date DESC, created_at DESC
            LIMIT ?
        """
        return await self._query(family, "list", query, params)  # type: ignore[return-value]
