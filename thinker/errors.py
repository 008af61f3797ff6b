"""Exception hierarchy shared by the clone and sync pipelines."""

from enum import Enum


class Phase(str, Enum):
    """Pipeline phase an error was raised in."""

    SCHEMA = "schema"
    READ = "read"
    COMPARE = "compare"
    WRITE = "write"


class ThinkerError(Exception):
    """Base class for errors that carry the table and phase they belong to."""

    def __init__(self, message: str, table: str | None = None, phase: Phase | None = None):
        super().__init__(message)
        self.message = message
        self.table = table
        self.phase = phase

    def describe(self) -> str:
        """Render as ``<phase>: <message>`` for reports."""
        if self.phase is None:
            return self.message
        return f"{self.phase.value}: {self.message}"


class DriverError(ThinkerError):
    """A database call failed and retrying it will not help."""


class TransientDriverError(DriverError):
    """A database call failed in a way that may succeed on retry."""


class TableOperationError(ThinkerError):
    """Fatal error for one table's pipeline. Sibling tables keep running."""


class SchemaError(ThinkerError):
    """Source and destination schemas are incompatible."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message, table=table, phase=Phase.SCHEMA)


class OrderingError(ThinkerError):
    """A stream returned keys that are not strictly ascending."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message, table=table, phase=Phase.READ)


def unexpected_error(error: Exception, table: str, phase: Phase) -> TableOperationError:
    """Wrap an exception outside the hierarchy so reports keep table and phase."""
    wrapped = TableOperationError(f"{type(error).__name__}: {error}", table=table, phase=phase)
    wrapped.__cause__ = error
    return wrapped
