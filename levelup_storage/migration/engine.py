"""
Local-to-cloud migration engine.

Drains every unsynced on-device row into the remote store after a user
becomes cloud-entitled. Each row is inserted remotely and only then
flagged as synced locally; the flag is the commit signal that ownership
moved to the remote store.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Protocol

from ..backends.base import MIGRATION_ORDER, EntityFamily, Record
from ..backends.sqlite import SQLiteBackend
from ..entitlement.types import EntitlementContext
from ..exceptions import NotEntitledError, RecordExistsError, StorageIOError
from ..logging_utils import StorageLoggerAdapter, get_storage_logger
from .types import MigrationStage, MigrationSummary, RowFailure

logger = get_storage_logger("migration")


class RemoteRecordStore(Protocol):
    """Remote store operations the migration needs."""

    async def save_record(self, user_id: str, record: Record) -> None: ...

    async def record_exists(
        self, user_id: str, family: EntityFamily, record_id: str
    ) -> bool: ...


class MigrationEngine:
    """Migrates unsynced local rows into the remote store.

    Per row:
    1. If an earlier run journaled the remote acknowledgement, flip the flag only.
    2. Otherwise insert remotely. A conflict on the row id means an earlier
       run already inserted it; confirm and flip only.
    3. Journal the acknowledgement, then flip the local flag.

    A failing row is recorded and the batch continues. Failed rows are not
    retried within a run and synced rows are never rolled back. Runs are
    serialized: a second caller waits for the first to finish and then
    finds nothing left to migrate.
    """

    def __init__(self, local: SQLiteBackend, remote: RemoteRecordStore):
        self.local = local
        self.remote = remote
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def sync(self, context: EntitlementContext) -> MigrationSummary:
        """Run one migration for the context's user.

        Raises:
            NotEntitledError: If the context is not cloud-entitled. No I/O happens.
            StorageIOError: If the local store cannot be read.
        """
        if not context.should_use_cloud:
            raise NotEntitledError(context.user_id, context.plan.value)

        log = StorageLoggerAdapter(logger, {"user_id": context.user_id})
        if self._lock.locked():
            log.info("Migration already running, waiting for it to finish")

        async with self._lock:
            summary = MigrationSummary(started_at=datetime.now(UTC))
            for family in MIGRATION_ORDER:
                await self._sync_family(family, context.user_id, summary, log)
            summary.completed_at = datetime.now(UTC)

        log.info(
            f"Migration finished: {summary.synced} synced, {summary.failed} failed",
            extra={
                "synced": summary.synced,
                "failed": summary.failed,
                "recovered": summary.recovered,
                "duration_seconds": summary.duration_seconds,
            },
        )
        return summary

    async def _sync_family(
        self,
        family: EntityFamily,
        user_id: str,
        summary: MigrationSummary,
        log: StorageLoggerAdapter,
    ) -> None:
        rows = await self.local.list_unsynced(family, user_id)
        if not rows:
            return

        acknowledged = await self.local.list_acknowledged(family)
        log.info(
            f"Migrating {len(rows)} unsynced {family.value} rows",
            extra={"family": family.value, "pending_flips": len(acknowledged)},
        )
        for record in rows:
            await self._sync_row(family, user_id, record, record.id in acknowledged, summary, log)

    async def _sync_row(
        self,
        family: EntityFamily,
        user_id: str,
        record: Record,
        acknowledged: bool,
        summary: MigrationSummary,
        log: StorageLoggerAdapter,
    ) -> None:
        recovered = acknowledged

        if not acknowledged:
            try:
                await self.remote.save_record(user_id, record)
            except RecordExistsError as e:
                if not await self._already_migrated(family, user_id, record, summary, log, e):
                    return
                recovered = True
            except Exception as e:
                failure = RowFailure.from_exception(
                    family, record.id, MigrationStage.REMOTE_INSERT, e
                )
                summary.add_failure(failure)
                log.warning(
                    f"Remote insert failed for {family.value} {record.id}: {e}",
                    extra=failure.to_dict(),
                )
                return

            try:
                await self.local.record_acknowledgement(family, record.id)
            except StorageIOError as e:
                # Without the journal entry a retry re-inserts and hits the conflict path
                log.warning(
                    f"Could not journal acknowledgement for {record.id}: {e}",
                    extra={"family": family.value, "record_id": record.id},
                )

        try:
            await self.local.mark_synced(family, record.id)
        except Exception as e:
            failure = RowFailure.from_exception(family, record.id, MigrationStage.MARK_SYNCED, e)
            summary.add_failure(failure)
            log.error(
                f"Remote insert acknowledged but local flag flip failed for {record.id}: {e}",
                extra=failure.to_dict(),
            )
            return

        summary.add_success(family, recovered=recovered)

    async def _already_migrated(
        self,
        family: EntityFamily,
        user_id: str,
        record: Record,
        summary: MigrationSummary,
        log: StorageLoggerAdapter,
        conflict: RecordExistsError,
    ) -> bool:
        """Confirm a conflicting id belongs to this row's earlier remote insert."""
        try:
            present = await self.remote.record_exists(user_id, family, record.id)
        except Exception as e:
            summary.add_failure(
                RowFailure.from_exception(family, record.id, MigrationStage.REMOTE_INSERT, e)
            )
            return False

        if not present:
            summary.add_failure(
                RowFailure.from_exception(
                    family, record.id, MigrationStage.REMOTE_INSERT, conflict
                )
            )
            return False

        log.info(
            f"{family.value} {record.id} already in remote store, flipping flag only",
            extra={"family": family.value, "record_id": record.id},
        )
        return True
