"""
Migration types and data structures.

Defines the per-row failure records and the aggregate summary
returned by a local-to-cloud migration run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..backends.base import EntityFamily


class MigrationStage(Enum):
    """Step of the per-row migration at which a failure happened."""

    # Remote insert failed: the row is still local-only
    REMOTE_INSERT = "remote_insert"
    # Remote insert acknowledged, local flag flip failed: retry flips only
    MARK_SYNCED = "mark_synced"


@dataclass
class RowFailure:
    """A single row that did not finish migrating."""

    family: EntityFamily
    record_id: str
    stage: MigrationStage
    error: str
    error_type: str
    retryable: bool

    @classmethod
    def from_exception(
        cls,
        family: EntityFamily,
        record_id: str,
        stage: MigrationStage,
        error: Exception,
    ) -> RowFailure:
        return cls(
            family=family,
            record_id=record_id,
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
            retryable=bool(getattr(error, "retryable", stage == MigrationStage.MARK_SYNCED)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "family": self.family.value,
            "record_id": self.record_id,
            "stage": self.stage.value,
            "error": self.error,
            "error_type": self.error_type,
            "retryable": self.retryable,
        }


@dataclass
class FamilyCounts:
    """Outcome counts for one entity family."""

    synced: int = 0
    failed: int = 0
    recovered: int = 0


@dataclass
class MigrationSummary:
    """Result of one migration run.

    ``synced`` counts rows whose flag flipped during this run, including
    ``recovered`` rows that only needed the flip because an earlier run's
    remote insert had already been acknowledged.
    """

    synced: int = 0
    failed: int = 0
    recovered: int = 0
    errors: list[RowFailure] = field(default_factory=list)
    by_family: dict[EntityFamily, FamilyCounts] = field(default_factory=dict)

    # Timing
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def _counts(self, family: EntityFamily) -> FamilyCounts:
        return self.by_family.setdefault(family, FamilyCounts())

    def add_success(self, family: EntityFamily, recovered: bool = False) -> None:
        counts = self._counts(family)
        self.synced += 1
        counts.synced += 1
        if recovered:
            self.recovered += 1
            counts.recovered += 1

    def add_failure(self, failure: RowFailure) -> None:
        self.errors.append(failure)
        self.failed += 1
        self._counts(failure.family).failed += 1

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def retryable_failures(self) -> list[RowFailure]:
        return [f for f in self.errors if f.retryable]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "synced": self.synced,
            "failed": self.failed,
            "recovered": self.recovered,
            "errors": [f.to_dict() for f in self.errors],
            "by_family": {
                family.value: {
                    "synced": counts.synced,
                    "failed": counts.failed,
                    "recovered": counts.recovered,
                }
                for family, counts in self.by_family.items()
            },
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }
