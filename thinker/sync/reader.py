"""Paginated, index-ordered reading of one table."""

from typing import Any, AsyncIterator, NamedTuple

import structlog

from thinker.driver.base import Driver
from thinker.errors import (
    DriverError,
    OrderingError,
    Phase,
    SchemaError,
    TableOperationError,
    TransientDriverError,
)
from thinker.models.config import SyncSettings
from thinker.models.table import TableDescriptor
from thinker.models.value import compare_values
from thinker.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()


class Row(NamedTuple):
    """One document and its key in the reader's index."""

    key: Any
    doc: dict[str, Any]


class OrderedBatchReader:
    """Forward-only cursor over a table in ascending index order.

    Pages are fetched with keyset pagination: each request asks for the
    documents strictly after the last key seen, so a failed request can be
    repeated without skipping or duplicating rows. Only the current page is
    held in memory.
    """

    def __init__(
        self,
        driver: Driver,
        db: str,
        table: str,
        index: str,
        settings: SyncSettings | None = None,
        resume_key: Any = None,
        schema: TableDescriptor | None = None,
    ):
        """
        Initialize the reader. Nothing is fetched until the first peek().

        Args:
            driver: Driver connected to the server holding the table
            db: Database name
            table: Table name
            index: Index to order by; the key of a row is ``doc[index]``
            settings: Batch size and retry settings (defaults if None)
            resume_key: Start strictly after this key instead of at the beginning
            schema: Table schema; when given, ``index`` must be its primary key
                or one of its secondary indexes

        Raises:
            SchemaError: If ``schema`` has no index named ``index``
        """
        if schema is not None and not schema.has_index(index):
            raise SchemaError(
                f"`{db}.{table}` has no index `{index}` to order by", table=table
            )

        self._driver = driver
        self.db = db
        self.table = table
        self.index = index
        self._settings = settings or SyncSettings()
        self._after_key = resume_key
        self._last_key: Any = resume_key
        self._has_last = resume_key is not None
        self._page: list[dict[str, Any]] = []
        self._position = 0
        self._source_done = False
        self._closed = False

        self.rows_read = 0
        self.pages_fetched = 0

        self._fetch = exponential_backoff_retry(
            max_retries=self._settings.max_retries,
            base_delay=self._settings.base_delay,
            max_delay=self._settings.max_delay,
            exceptions=(TransientDriverError,),
        )(self._driver.fetch_page)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exhausted(self) -> bool:
        """True once every row has been consumed."""
        return self._source_done and self._position >= len(self._page)

    async def _fill(self) -> None:
        limit = self._settings.batch_size
        try:
            page = await self._fetch(self.db, self.table, self.index, self._after_key, limit)
        except DriverError as e:
            log.error(
                "page_fetch_failed",
                table=self.table,
                db=self.db,
                after_key=repr(self._after_key),
                error=str(e),
            )
            raise TableOperationError(
                f"fetching page from `{self.db}.{self.table}` failed: {e.message}",
                table=self.table,
                phase=Phase.READ,
            ) from e

        self.pages_fetched += 1
        self._page = page
        self._position = 0
        if len(page) < limit:
            self._source_done = True
        if page:
            self._after_key = self._key_of(page[-1])

        log.debug(
            "page_fetched",
            table=self.table,
            db=self.db,
            rows=len(page),
            pages_fetched=self.pages_fetched,
        )

    def _key_of(self, doc: dict[str, Any]) -> Any:
        try:
            return doc[self.index]
        except KeyError:
            raise OrderingError(
                f"document in `{self.db}.{self.table}` has no `{self.index}` field",
                table=self.table,
            ) from None

    async def peek(self) -> Row | None:
        """Return the next row without consuming it, or None at the end."""
        if self._closed:
            raise RuntimeError(f"reader for `{self.db}.{self.table}` is closed")
        while self._position >= len(self._page):
            if self._source_done:
                return None
            await self._fill()
        doc = self._page[self._position]
        return Row(self._key_of(doc), doc)

    async def advance(self) -> Row:
        """Consume and return the next row.

        Raises:
            StopAsyncIteration: If the reader is exhausted
            OrderingError: If the row's key does not sort after the previous one
        """
        row = await self.peek()
        if row is None:
            raise StopAsyncIteration

        if self._has_last:
            order = compare_values(self._last_key, row.key)
            if order is None:
                log.debug(
                    "unordered_key_pair",
                    table=self.table,
                    previous_key=repr(self._last_key),
                    key=repr(row.key),
                )
            elif order >= 0:
                raise OrderingError(
                    f"`{self.db}.{self.table}` returned key {row.key!r} "
                    f"after {self._last_key!r} when ordering by `{self.index}`",
                    table=self.table,
                )

        self._last_key = row.key
        self._has_last = True
        self._position += 1
        self.rows_read += 1
        return row

    def __aiter__(self) -> AsyncIterator[Row]:
        return self

    async def __anext__(self) -> Row:
        return await self.advance()

    async def aclose(self) -> None:
        """Drop the buffered page. The reader cannot be used afterwards."""
        self._page = []
        self._position = 0
        self._source_done = True
        self._closed = True

    async def __aenter__(self) -> "OrderedBatchReader":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
