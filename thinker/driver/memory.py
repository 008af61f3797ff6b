"""In-process Driver backed by sorted lists.

Documents are kept in primary key order using the same comparator RethinkDB
uses, so pages come back exactly as a server would return them. Used by
the tests; transient failures can be injected to exercise the retry paths.
"""

import copy
import uuid
from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from typing import Any, Sequence

from thinker.driver.base import ConflictPolicy, Driver
from thinker.errors import DriverError, Phase, TransientDriverError
from thinker.models.table import IndexDescriptor, TableDescriptor
from thinker.models.value import compare_values, sort_key


@dataclass
class _Table:
    descriptor: TableDescriptor
    rows: list[dict[str, Any]] = field(default_factory=list)


class MemoryDriver(Driver):
    """Driver holding databases in memory."""

    def __init__(self, name: str = "memory"):
        self.name = name
        self.databases: dict[str, dict[str, _Table]] = {}
        self.connected = False
        self.fail_fetches = 0
        self.fail_writes = 0
        self.fetch_calls = 0
        self.write_calls: list[tuple[str, str, int]] = []

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    # helpers for seeding and inspecting state

    def add_table(
        self,
        db: str,
        table: str,
        documents: Sequence[dict[str, Any]] = (),
        primary_key: str = "id",
        indexes: Sequence[IndexDescriptor] = (),
    ) -> None:
        """Create ``db``/``table`` if needed and insert ``documents``."""
        tables = self.databases.setdefault(db, {})
        tables[table] = _Table(
            TableDescriptor(name=table, primary_key=primary_key, indexes=tuple(indexes))
        )
        for document in documents:
            self._put(tables[table], copy.deepcopy(document), "error")

    def documents(self, db: str, table: str) -> list[dict[str, Any]]:
        """All documents of a table in primary key order."""
        return copy.deepcopy(self._table(db, table).rows)

    # Driver interface

    def _table(self, db: str, table: str) -> _Table:
        try:
            return self.databases[db][table]
        except KeyError:
            raise DriverError(f"table `{db}.{table}` does not exist", table=table) from None

    def _check_connected(self) -> None:
        if not self.connected:
            raise TransientDriverError(f"{self.name} is not connected")

    def _maybe_fail_write(self, table: str) -> None:
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise TransientDriverError("injected write failure", table=table, phase=Phase.WRITE)

    def _position(self, entry: _Table, key: Any, right: bool = False) -> int:
        pk = entry.descriptor.primary_key
        search = bisect_right if right else bisect_left
        return search(entry.rows, sort_key(key), key=lambda row: sort_key(row[pk]))

    def _put(self, entry: _Table, document: dict[str, Any], conflict: ConflictPolicy) -> None:
        pk = entry.descriptor.primary_key
        document.setdefault(pk, str(uuid.uuid4()))
        key = document[pk]
        if compare_values(key, key) != 0:
            raise DriverError(f"primary key {key!r} cannot be ordered", phase=Phase.WRITE)

        position = self._position(entry, key)
        if position < len(entry.rows) and compare_values(entry.rows[position][pk], key) == 0:
            if conflict == "error":
                raise DriverError(f"duplicate primary key {key!r}", phase=Phase.WRITE)
            if conflict == "update":
                entry.rows[position] = {**entry.rows[position], **document}
            else:
                entry.rows[position] = document
        else:
            entry.rows.insert(position, document)

    async def list_databases(self) -> list[str]:
        self._check_connected()
        return sorted(self.databases)

    async def create_database(self, db: str) -> None:
        self._check_connected()
        if db in self.databases:
            raise DriverError(f"database `{db}` already exists", phase=Phase.SCHEMA)
        self.databases[db] = {}

    async def list_tables(self, db: str) -> list[str]:
        self._check_connected()
        if db not in self.databases:
            raise DriverError(f"database `{db}` does not exist", phase=Phase.SCHEMA)
        return sorted(self.databases[db])

    async def describe_table(self, db: str, table: str) -> TableDescriptor:
        self._check_connected()
        return self._table(db, table).descriptor

    async def create_table(self, db: str, table: str, primary_key: str) -> None:
        self._check_connected()
        if db not in self.databases:
            raise DriverError(f"database `{db}` does not exist", table=table, phase=Phase.SCHEMA)
        if table in self.databases[db]:
            raise DriverError(f"table `{db}.{table}` already exists", table=table, phase=Phase.SCHEMA)
        self.add_table(db, table, primary_key=primary_key)

    async def create_index(self, db: str, table: str, index: IndexDescriptor) -> None:
        self._check_connected()
        entry = self._table(db, table)
        if index.name in entry.descriptor.index_names:
            raise DriverError(f"index `{index.name}` already exists", table=table, phase=Phase.SCHEMA)
        entry.descriptor = entry.descriptor.model_copy(
            update={"indexes": entry.descriptor.indexes + (index,)}
        )

    async def wait_for_indexes(self, db: str, table: str) -> None:
        self._check_connected()
        self._table(db, table)

    async def fetch_page(
        self, db: str, table: str, index: str, after_key: Any, limit: int
    ) -> list[dict[str, Any]]:
        self._check_connected()
        self.fetch_calls += 1
        if self.fail_fetches > 0:
            self.fail_fetches -= 1
            raise TransientDriverError("injected fetch failure", table=table, phase=Phase.READ)

        entry = self._table(db, table)
        if index != entry.descriptor.primary_key:
            raise DriverError(
                f"only primary key ordering is supported, got `{index}`",
                table=table,
                phase=Phase.READ,
            )
        start = 0 if after_key is None else self._position(entry, after_key, right=True)
        return copy.deepcopy(entry.rows[start : start + limit])

    async def insert(
        self,
        db: str,
        table: str,
        documents: Sequence[dict[str, Any]],
        conflict: ConflictPolicy = "error",
    ) -> int:
        self._check_connected()
        self._maybe_fail_write(table)
        entry = self._table(db, table)
        for document in documents:
            self._put(entry, copy.deepcopy(document), conflict)
        self.write_calls.append(("insert", table, len(documents)))
        return len(documents)

    async def delete(self, db: str, table: str, keys: Sequence[Any]) -> int:
        self._check_connected()
        self._maybe_fail_write(table)
        entry = self._table(db, table)
        pk = entry.descriptor.primary_key
        deleted = 0
        for key in keys:
            position = self._position(entry, key)
            if position < len(entry.rows) and compare_values(entry.rows[position][pk], key) == 0:
                del entry.rows[position]
                deleted += 1
        self.write_calls.append(("delete", table, len(keys)))
        return deleted
