"""Data models for diff operations and sync reporting."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from thinker.errors import ThinkerError


class OperationKind(str, Enum):
    """Kinds of diff operations, in the order they are flushed."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Insert(BaseModel):
    """Source document whose key is missing from the destination."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[OperationKind.INSERT] = OperationKind.INSERT
    doc: dict[str, Any]


class Update(BaseModel):
    """Source document that differs from the destination document with the same key."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[OperationKind.UPDATE] = OperationKind.UPDATE
    key: Any
    doc: dict[str, Any]


class Delete(BaseModel):
    """Destination key that no longer exists in the source."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[OperationKind.DELETE] = OperationKind.DELETE
    key: Any


DiffOperation = Union[Insert, Update, Delete]


class DiffAnomaly(BaseModel):
    """A key pair the comparator could not order; skipped by the engine."""

    model_config = ConfigDict(frozen=True)

    source_key: Any
    destination_key: Any

    def describe(self) -> str:
        return f"incomparable keys {self.source_key!r} and {self.destination_key!r}"


class SyncProgress(BaseModel):
    """Running counters for one table. Counters only ever grow."""

    scanned: int = Field(default=0, ge=0, description="Source rows read")
    inserted: int = Field(default=0, ge=0, description="Documents inserted")
    updated: int = Field(default=0, ge=0, description="Documents replaced")
    deleted: int = Field(default=0, ge=0, description="Documents deleted")
    skipped_deletes: int = Field(
        default=0, ge=0, description="Deletes dropped because confirmation was declined"
    )
    anomalies: int = Field(default=0, ge=0, description="Incomparable key pairs skipped")

    @property
    def total_changes(self) -> int:
        """Get total number of writes applied."""
        return self.inserted + self.updated + self.deleted


class TableStatus(str, Enum):
    """Outcome of one table's pipeline."""

    SUCCESS = "success"
    INCOMPLETE = "incomplete"
    FAILED = "failed"
    SKIPPED = "skipped"


class TableReport(BaseModel):
    """Report of one table's clone or sync."""

    table: str = Field(..., description="Table name")
    operation: Literal["clone", "sync"] = Field(..., description="Pipeline that produced it")
    status: TableStatus = Field(default=TableStatus.SUCCESS)
    progress: SyncProgress = Field(default_factory=SyncProgress)
    anomalies: list[str] = Field(default_factory=list, description="Ordering anomalies")
    errors: list[str] = Field(default_factory=list, description="Errors as '<phase>: <message>'")
    start_time: datetime = Field(..., description="Pipeline start timestamp")
    end_time: datetime | None = Field(default=None, description="Pipeline end timestamp")

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """True when the table converged or was deliberately skipped."""
        return self.status in (TableStatus.SUCCESS, TableStatus.SKIPPED)

    @property
    def clean(self) -> bool:
        """True when the table succeeded without ordering anomalies."""
        return self.success and not self.anomalies

    def fail(self, error: ThinkerError | Exception) -> None:
        """Mark the table failed, recording the error with its phase."""
        self.status = TableStatus.FAILED
        if isinstance(error, ThinkerError):
            self.errors.append(error.describe())
        else:
            self.errors.append(str(error))


class RunReport(BaseModel):
    """Aggregate of every table processed by one invocation."""

    operation: Literal["clone", "sync"]
    tables: list[TableReport] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(report.success for report in self.tables)

    @property
    def clean(self) -> bool:
        return all(report.clean for report in self.tables)

    @property
    def exit_code(self) -> int:
        """0 when every table succeeded, 1 when any failed or is incomplete."""
        return 0 if self.success else 1

    @property
    def totals(self) -> SyncProgress:
        """Counters summed over all tables."""
        totals = SyncProgress()
        for report in self.tables:
            for field_name in SyncProgress.model_fields:
                setattr(
                    totals,
                    field_name,
                    getattr(totals, field_name) + getattr(report.progress, field_name),
                )
        return totals

    def failed_tables(self) -> list[str]:
        return [report.table for report in self.tables if not report.success]
