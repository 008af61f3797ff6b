"""Synchronization components for diff-and-patch convergence."""

from thinker.sync.diff_engine import MergeDiffEngine
from thinker.sync.models import (
    Delete,
    DiffOperation,
    Insert,
    RunReport,
    SyncProgress,
    TableReport,
    TableStatus,
    Update,
)
from thinker.sync.orchestrator import SyncOrchestrator
from thinker.sync.reader import OrderedBatchReader, Row

__all__ = [
    "Delete",
    "DiffOperation",
    "Insert",
    "MergeDiffEngine",
    "OrderedBatchReader",
    "Row",
    "RunReport",
    "SyncOrchestrator",
    "SyncProgress",
    "TableReport",
    "TableStatus",
    "Update",
]
