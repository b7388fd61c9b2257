"""
Local-to-cloud migration.

Moves unsynced on-device rows into the remote store exactly once
when a user upgrades to a paid plan.
"""

from .engine import MigrationEngine, RemoteRecordStore
from .types import FamilyCounts, MigrationStage, MigrationSummary, RowFailure

__all__ = [
    "FamilyCounts",
    "MigrationEngine",
    "MigrationStage",
    "MigrationSummary",
    "RemoteRecordStore",
    "RowFailure",
]
