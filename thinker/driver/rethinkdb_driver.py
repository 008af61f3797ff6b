"""RethinkDB implementation of the Driver interface."""

import asyncio
from typing import Any, Sequence

import structlog
from rethinkdb import RethinkDB
from rethinkdb.errors import (
    ReqlAuthError,
    ReqlAvailabilityError,
    ReqlDriverError,
    ReqlError,
    ReqlTimeoutError,
)

from thinker.driver.base import ConflictPolicy, Driver
from thinker.errors import DriverError, Phase, TransientDriverError
from thinker.models.config import ConnectionConfig
from thinker.models.table import IndexDescriptor, TableDescriptor

log = structlog.stdlib.get_logger()

r = RethinkDB()
r.set_loop_type("asyncio")

TRANSIENT_ERRORS = (
    ReqlAvailabilityError,
    ReqlTimeoutError,
    ConnectionError,
    asyncio.TimeoutError,
    OSError,
)


class RethinkDBDriver(Driver):
    """Driver over the official rethinkdb package using its asyncio loop."""

    def __init__(self, config: ConnectionConfig):
        """
        Initialize the driver. No connection is made until connect().

        Args:
            config: Host, port and credentials of the server
        """
        self._config = config
        self._conn: Any = None
        self._reconnect_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._config.address

    async def connect(self) -> None:
        log.info("connecting", address=self.address)
        try:
            self._conn = await r.connect(
                host=self._config.host,
                port=self._config.port,
                user=self._config.user,
                password=self._config.password.get_secret_value(),
                timeout=self._config.timeout,
            )
        except ReqlAuthError as e:
            raise DriverError(f"authentication failed for {self.address}: {e}") from e
        except (ReqlDriverError, *TRANSIENT_ERRORS) as e:
            raise TransientDriverError(f"cannot connect to {self.address}: {e}") from e
        log.info("connected", address=self.address)

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await conn.close(noreply_wait=False)
        except ReqlDriverError as e:
            log.warning("close_failed", address=self.address, error=str(e))
        log.info("connection_closed", address=self.address)

    def _is_open(self) -> bool:
        return self._conn is not None and self._conn.is_open()

    async def _ensure_connected(self) -> None:
        """Reconnect if the last call dropped the connection.

        Tables share one driver, so concurrent callers wait for a single
        reconnect instead of each opening their own connection.
        """
        if self._is_open():
            return
        async with self._reconnect_lock:
            if not self._is_open():
                await self.connect()

    async def _run(self, query: Any, table: str | None = None, phase: Phase | None = None) -> Any:
        """Run one query, reconnecting first if needed."""
        await self._ensure_connected()
        try:
            return await query.run(self._conn)
        except ReqlAuthError as e:
            raise DriverError(str(e), table=table, phase=phase) from e
        except TRANSIENT_ERRORS as e:
            raise TransientDriverError(str(e), table=table, phase=phase) from e
        except ReqlDriverError as e:
            # Connection loss surfaces as a plain driver error
            if self._is_open():
                raise DriverError(str(e), table=table, phase=phase) from e
            raise TransientDriverError(str(e), table=table, phase=phase) from e
        except ReqlError as e:
            raise DriverError(str(e), table=table, phase=phase) from e

    async def list_databases(self) -> list[str]:
        return sorted(await self._run(r.db_list(), phase=Phase.SCHEMA))

    async def create_database(self, db: str) -> None:
        await self._run(r.db_create(db), phase=Phase.SCHEMA)
        log.info("database_created", address=self.address, db=db)

    async def list_tables(self, db: str) -> list[str]:
        return sorted(await self._run(r.db(db).table_list(), phase=Phase.SCHEMA))

    async def describe_table(self, db: str, table: str) -> TableDescriptor:
        query = r.db(db).table(table)
        config = await self._run(query.config(), table=table, phase=Phase.SCHEMA)
        statuses = await self._run(query.index_status(), table=table, phase=Phase.SCHEMA)
        indexes = tuple(
            IndexDescriptor(
                name=status["index"],
                function=status.get("function"),
                multi=status.get("multi", False),
                geo=status.get("geo", False),
            )
            for status in sorted(statuses, key=lambda status: status["index"])
        )
        return TableDescriptor(name=table, primary_key=config["primary_key"], indexes=indexes)

    async def create_table(self, db: str, table: str, primary_key: str) -> None:
        await self._run(
            r.db(db).table_create(table, primary_key=primary_key), table=table, phase=Phase.SCHEMA
        )

    async def create_index(self, db: str, table: str, index: IndexDescriptor) -> None:
        query = r.db(db).table(table)
        if index.function is None:
            query = query.index_create(index.name, multi=index.multi, geo=index.geo)
        else:
            query = query.index_create(index.name, index.function, multi=index.multi, geo=index.geo)
        await self._run(query, table=table, phase=Phase.SCHEMA)

    async def wait_for_indexes(self, db: str, table: str) -> None:
        await self._run(r.db(db).table(table).index_wait(), table=table, phase=Phase.SCHEMA)

    async def fetch_page(
        self, db: str, table: str, index: str, after_key: Any, limit: int
    ) -> list[dict[str, Any]]:
        query = r.db(db).table(table)
        if after_key is not None:
            query = query.between(after_key, r.maxval, index=index, left_bound="open")
        query = query.order_by(index=index).limit(limit).coerce_to("array")
        return await self._run(query, table=table, phase=Phase.READ)

    async def insert(
        self,
        db: str,
        table: str,
        documents: Sequence[dict[str, Any]],
        conflict: ConflictPolicy = "error",
    ) -> int:
        if not documents:
            return 0
        result = await self._run(
            r.db(db).table(table).insert(list(documents), conflict=conflict),
            table=table,
            phase=Phase.WRITE,
        )
        if result.get("errors"):
            raise DriverError(
                f"{result['errors']} documents rejected: {result.get('first_error')}",
                table=table,
                phase=Phase.WRITE,
            )
        return result.get("inserted", 0) + result.get("replaced", 0) + result.get("unchanged", 0)

    async def delete(self, db: str, table: str, keys: Sequence[Any]) -> int:
        if not keys:
            return 0
        result = await self._run(
            r.db(db).table(table).get_all(r.args(list(keys))).delete(),
            table=table,
            phase=Phase.WRITE,
        )
        if result.get("errors"):
            raise DriverError(
                f"{result['errors']} deletes failed: {result.get('first_error')}",
                table=table,
                phase=Phase.WRITE,
            )
        return result.get("deleted", 0)
