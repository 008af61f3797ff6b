"""Database driver interface used by the clone and sync pipelines."""

from abc import ABC, abstractmethod
from typing import Any, Literal, Sequence

from thinker.models.table import IndexDescriptor, TableDescriptor

ConflictPolicy = Literal["error", "replace", "update"]


class Driver(ABC):
    """Request/response access to one database server.

    Every method may raise TransientDriverError (worth retrying) or
    DriverError (permanent). Implementations own their connections and must
    release them in close().
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""

    async def __aenter__(self) -> "Driver":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @abstractmethod
    async def list_databases(self) -> list[str]:
        """Names of all databases on the server."""

    @abstractmethod
    async def create_database(self, db: str) -> None:
        """Create a database."""

    @abstractmethod
    async def list_tables(self, db: str) -> list[str]:
        """Names of the tables in ``db``, sorted."""

    @abstractmethod
    async def describe_table(self, db: str, table: str) -> TableDescriptor:
        """Primary key and secondary indexes of ``table``."""

    @abstractmethod
    async def create_table(self, db: str, table: str, primary_key: str) -> None:
        """Create an empty table."""

    @abstractmethod
    async def create_index(self, db: str, table: str, index: IndexDescriptor) -> None:
        """Recreate a secondary index from its serialized definition."""

    @abstractmethod
    async def wait_for_indexes(self, db: str, table: str) -> None:
        """Block until every index of ``table`` is ready."""

    @abstractmethod
    async def fetch_page(
        self, db: str, table: str, index: str, after_key: Any, limit: int
    ) -> list[dict[str, Any]]:
        """Fetch up to ``limit`` documents ordered ascending by ``index``.

        Only documents whose key is strictly greater than ``after_key`` are
        returned; ``after_key=None`` starts at the beginning of the table.
        One call is one round trip and is safe to repeat.
        """

    @abstractmethod
    async def insert(
        self,
        db: str,
        table: str,
        documents: Sequence[dict[str, Any]],
        conflict: ConflictPolicy = "error",
    ) -> int:
        """Write documents, returning how many were inserted or replaced."""

    @abstractmethod
    async def delete(self, db: str, table: str, keys: Sequence[Any]) -> int:
        """Delete documents by primary key, returning how many were deleted."""
