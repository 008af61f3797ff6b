"""Tests for the ordered batch reader.

Feature: thinker
Keyset pagination, lookahead, resume and retry behaviour against the
in-memory driver.
"""

from typing import Any

import pytest

from tests.conftest import SOURCE_DB, iso
from thinker.errors import OrderingError, Phase, SchemaError, TableOperationError
from thinker.models.config import SyncSettings
from thinker.models.table import IndexDescriptor, TableDescriptor
from thinker.sync.reader import OrderedBatchReader, Row


class ScriptedDriver:
    """Returns canned pages regardless of the requested key."""

    def __init__(self, pages: list[list[dict[str, Any]]]):
        self.pages = list(pages)
        self.requests: list[Any] = []

    async def fetch_page(self, db, table, index, after_key, limit):
        self.requests.append(after_key)
        return self.pages.pop(0) if self.pages else []


async def read_all(reader: OrderedBatchReader) -> list[Any]:
    return [row.key async for row in reader]


@pytest.mark.asyncio
async def test_reads_every_row_in_key_order(source, settings):
    source.add_table(SOURCE_DB, "items", [{"id": i, "n": i * 10} for i in (5, 3, 1, 4, 2)])

    reader = OrderedBatchReader(source, SOURCE_DB, "items", "id", settings)
    assert await read_all(reader) == [1, 2, 3, 4, 5]
    assert reader.rows_read == 5
    # [1, 2] [3, 4] [5]; the short page ends the stream
    assert reader.pages_fetched == 3
    assert reader.exhausted


@pytest.mark.asyncio
async def test_full_last_page_needs_one_empty_fetch(source, settings):
    source.add_table(SOURCE_DB, "items", [{"id": i} for i in range(4)])

    reader = OrderedBatchReader(source, SOURCE_DB, "items", "id", settings)
    assert await read_all(reader) == [0, 1, 2, 3]
    assert reader.pages_fetched == 3


@pytest.mark.asyncio
async def test_empty_table(source, settings):
    source.add_table(SOURCE_DB, "empty")

    reader = OrderedBatchReader(source, SOURCE_DB, "empty", "id", settings)
    assert await reader.peek() is None
    assert reader.exhausted
    with pytest.raises(StopAsyncIteration):
        await reader.advance()


@pytest.mark.asyncio
async def test_peek_does_not_consume(source, settings):
    source.add_table(SOURCE_DB, "items", [{"id": "a"}, {"id": "b"}, {"id": "c"}])

    reader = OrderedBatchReader(source, SOURCE_DB, "items", "id", settings)
    first = await reader.peek()
    assert first == Row("a", {"id": "a"})
    assert await reader.peek() == first
    assert reader.rows_read == 0

    assert await reader.advance() == first
    assert (await reader.peek()).key == "b"


@pytest.mark.asyncio
async def test_nothing_is_fetched_before_first_peek(source, settings):
    source.add_table(SOURCE_DB, "items", [{"id": 1}])

    OrderedBatchReader(source, SOURCE_DB, "items", "id", settings)
    assert source.fetch_calls == 0


@pytest.mark.asyncio
async def test_mixed_key_types_follow_native_order(source, settings, dataset):
    source.add_table(SOURCE_DB, "typed", dataset)

    reader = OrderedBatchReader(source, SOURCE_DB, "typed", "id", settings)
    keys = await read_all(reader)
    assert keys == [
        1,
        2,
        3,
        iso("2017-01-01T00:00:00+03:00"),
        iso("2017-01-01T00:00:00+00:00"),
        iso("2017-01-01T00:00:00-07:00"),
    ]


@pytest.mark.asyncio
async def test_resume_key_starts_strictly_after(source, settings):
    source.add_table(SOURCE_DB, "items", [{"id": i} for i in range(6)])

    reader = OrderedBatchReader(source, SOURCE_DB, "items", "id", settings, resume_key=2)
    assert await read_all(reader) == [3, 4, 5]


@pytest.mark.asyncio
async def test_transient_fetch_failures_are_retried(source, settings):
    source.add_table(SOURCE_DB, "items", [{"id": i} for i in range(3)])
    source.fail_fetches = 2

    reader = OrderedBatchReader(source, SOURCE_DB, "items", "id", settings)
    assert await read_all(reader) == [0, 1, 2]
    # two failed attempts, then [0, 1] and [2]
    assert source.fetch_calls == 4


@pytest.mark.asyncio
async def test_exhausted_retries_fail_the_table(source):
    source.add_table(SOURCE_DB, "items", [{"id": 1}])
    source.fail_fetches = 10
    settings = SyncSettings(batch_size=2, max_retries=2, base_delay=0.0, max_delay=0.0)

    reader = OrderedBatchReader(source, SOURCE_DB, "items", "id", settings)
    with pytest.raises(TableOperationError) as excinfo:
        await reader.peek()

    assert excinfo.value.phase == Phase.READ
    assert excinfo.value.table == "items"
    assert source.fetch_calls == 3


@pytest.mark.asyncio
async def test_missing_table_is_not_retried(source, settings):
    reader = OrderedBatchReader(source, SOURCE_DB, "nope", "id", settings)
    with pytest.raises(TableOperationError, match="nope"):
        await reader.peek()
    assert source.fetch_calls == 1


@pytest.mark.asyncio
async def test_descending_keys_raise_ordering_error(settings):
    driver = ScriptedDriver([[{"id": 2}, {"id": 1}]])

    reader = OrderedBatchReader(driver, SOURCE_DB, "items", "id", settings)
    assert (await reader.advance()).key == 2
    with pytest.raises(OrderingError) as excinfo:
        await reader.advance()
    assert excinfo.value.phase == Phase.READ


@pytest.mark.asyncio
async def test_duplicate_keys_raise_ordering_error(settings):
    driver = ScriptedDriver([[{"id": "a"}, {"id": "a"}]])

    reader = OrderedBatchReader(driver, SOURCE_DB, "items", "id", settings)
    await reader.advance()
    with pytest.raises(OrderingError):
        await reader.advance()


@pytest.mark.asyncio
async def test_document_without_index_field(settings):
    driver = ScriptedDriver([[{"name": "no key"}]])

    reader = OrderedBatchReader(driver, SOURCE_DB, "items", "id", settings)
    with pytest.raises(OrderingError, match="no `id` field"):
        await reader.peek()


@pytest.mark.asyncio
async def test_next_page_requests_after_last_key(settings):
    driver = ScriptedDriver([[{"id": 1}, {"id": 2}], [{"id": 3}]])

    reader = OrderedBatchReader(driver, SOURCE_DB, "items", "id", settings)
    assert await read_all(reader) == [1, 2, 3]
    assert driver.requests == [None, 2]


@pytest.mark.asyncio
async def test_closed_reader_cannot_be_used(source, settings):
    source.add_table(SOURCE_DB, "items", [{"id": 1}, {"id": 2}, {"id": 3}])

    async with OrderedBatchReader(source, SOURCE_DB, "items", "id", settings) as reader:
        await reader.advance()

    assert reader.closed
    with pytest.raises(RuntimeError, match="closed"):
        await reader.peek()


def test_ordering_index_must_exist_in_schema(source, settings):
    schema = TableDescriptor(name="users", indexes=(IndexDescriptor(name="email"),))

    OrderedBatchReader(source, SOURCE_DB, "users", "id", settings, schema=schema)
    OrderedBatchReader(source, SOURCE_DB, "users", "email", settings, schema=schema)
    with pytest.raises(SchemaError, match="no index `created_at`") as excinfo:
        OrderedBatchReader(source, SOURCE_DB, "users", "created_at", settings, schema=schema)
    assert excinfo.value.phase == Phase.SCHEMA
    assert excinfo.value.table == "users"
