"""Property-based tests for the merge diff engine.

Feature: thinker
Applying the yielded operations to the destination makes it equal to the
source, and rows present on both sides with equal documents produce nothing.
"""

import asyncio
import math
from typing import Any

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tests.conftest import SOURCE_DB, TARGET_DB, iso
from thinker.driver.memory import MemoryDriver
from thinker.errors import Phase, TableOperationError
from thinker.models.config import SyncSettings
from thinker.models.value import sort_key
from thinker.sync.diff_engine import MergeDiffEngine
from thinker.sync.models import Delete, Insert, OperationKind, Update
from thinker.sync.reader import OrderedBatchReader, Row

SMALL_PAGES = SyncSettings(batch_size=3, base_delay=0.0, max_delay=0.0)


class ListReader:
    """Reader stand-in over a fixed list of rows."""

    def __init__(self, keys: list[Any], table: str = "items"):
        self.rows = [Row(key, {"id": key}) for key in keys]
        self.table = table
        self.rows_read = 0

    async def peek(self) -> Row | None:
        return self.rows[self.rows_read] if self.rows_read < len(self.rows) else None

    async def advance(self) -> Row:
        row = self.rows[self.rows_read]
        self.rows_read += 1
        return row


async def run_diff(
    source_docs: list[dict], destination_docs: list[dict], batch: SyncSettings = SMALL_PAGES
) -> list:
    driver = MemoryDriver()
    driver.connected = True
    driver.add_table(SOURCE_DB, "items", source_docs)
    driver.add_table(TARGET_DB, "items", destination_docs)

    engine = MergeDiffEngine(
        OrderedBatchReader(driver, SOURCE_DB, "items", "id", batch),
        OrderedBatchReader(driver, TARGET_DB, "items", "id", batch),
    )
    return [operation async for operation in engine.diff()]


def apply(destination: dict[Any, dict], operations: list) -> dict[Any, dict]:
    result = dict(destination)
    for operation in operations:
        if operation.kind == OperationKind.DELETE:
            del result[operation.key]
        else:
            result[operation.doc["id"]] = operation.doc
    return result


# Strategies for generating tables

documents = st.fixed_dictionaries(
    {"name": st.text(max_size=5), "count": st.integers(min_value=0, max_value=3)}
)


@st.composite
def table_strategy(draw: st.DrawFn) -> dict[Any, dict]:
    """A table keyed by ints and short strings."""
    keys = draw(
        st.lists(
            st.one_of(st.integers(min_value=0, max_value=30), st.text(max_size=2)),
            unique=True,
            max_size=15,
        )
    )
    return {key: {"id": key, **draw(documents)} for key in keys}


@given(source=table_strategy(), destination=table_strategy())
@settings(max_examples=100, deadline=None)
def test_applying_operations_converges(source: dict, destination: dict):
    """Applying the diff to the destination yields exactly the source."""
    operations = asyncio.run(run_diff(list(source.values()), list(destination.values())))

    assert apply(destination, operations) == source

    inserts = {op.doc["id"] for op in operations if isinstance(op, Insert)}
    deletes = {op.key for op in operations if isinstance(op, Delete)}
    updates = {op.key for op in operations if isinstance(op, Update)}
    assert inserts == source.keys() - destination.keys()
    assert deletes == destination.keys() - source.keys()
    assert updates == {
        key for key in source.keys() & destination.keys() if source[key] != destination[key]
    }


@given(source=table_strategy())
@settings(max_examples=50, deadline=None)
def test_identical_tables_produce_no_operations(source: dict):
    assert asyncio.run(run_diff(list(source.values()), list(source.values()))) == []


@given(source=table_strategy(), destination=table_strategy())
@settings(max_examples=50, deadline=None)
def test_operations_are_yielded_in_key_order(source: dict, destination: dict):
    operations = asyncio.run(run_diff(list(source.values()), list(destination.values())))
    keys = [op.doc["id"] if isinstance(op, Insert) else op.key for op in operations]
    assert keys == sorted(keys, key=sort_key)


@pytest.mark.asyncio
async def test_empty_source_deletes_everything(dataset):
    operations = await run_diff([], dataset)

    assert all(isinstance(op, Delete) for op in operations)
    assert [op.key for op in operations] == [
        1,
        2,
        3,
        iso("2017-01-01T00:00:00+03:00"),
        iso("2017-01-01T00:00:00+00:00"),
        iso("2017-01-01T00:00:00-07:00"),
    ]


@pytest.mark.asyncio
async def test_empty_destination_inserts_everything(dataset):
    operations = await run_diff(dataset, [])

    assert len(operations) == 6
    assert all(isinstance(op, Insert) for op in operations)


@pytest.mark.asyncio
async def test_changed_time_offset_is_an_update(dataset):
    destination = [dict(doc) for doc in dataset]
    # Same instant as the source value, stored with a different offset
    destination[0]["test"] = iso("2017-01-01T03:00:00+03:00")

    operations = await run_diff(dataset, destination)

    assert operations == [Update(key=1, doc=dataset[0])]


@pytest.mark.asyncio
async def test_bool_and_number_fields_differ():
    operations = await run_diff([{"id": 1, "flag": True}], [{"id": 1, "flag": 1}])
    assert operations == [Update(key=1, doc={"id": 1, "flag": True})]


@pytest.mark.asyncio
async def test_incomparable_keys_are_skipped_and_recorded():
    source = ListReader([1, math.nan, 5])
    destination = ListReader([1, math.nan, 4])
    engine = MergeDiffEngine(source, destination)

    operations = [op async for op in engine.diff()]

    assert operations == [Delete(key=4), Insert(doc={"id": 5})]
    assert len(engine.anomalies) == 1
    assert "incomparable keys" in engine.anomalies[0].describe()
    assert source.rows_read == 3
    assert destination.rows_read == 3


@pytest.mark.asyncio
async def test_custom_equality_is_used():
    engine = MergeDiffEngine(
        ListReader([1, 2]), ListReader([1, 2]), equal=lambda left, right: False
    )
    operations = [op async for op in engine.diff()]
    assert [op.kind for op in operations] == [OperationKind.UPDATE, OperationKind.UPDATE]
    assert engine.compared == 2
    assert engine.scanned_source == engine.scanned_destination == 2


@pytest.mark.asyncio
async def test_equality_failure_names_table_and_phase():
    def broken_equal(left, right):
        raise TypeError("cannot compare documents")

    engine = MergeDiffEngine(ListReader([1], "events"), ListReader([1], "events"), equal=broken_equal)

    with pytest.raises(TableOperationError) as excinfo:
        [op async for op in engine.diff()]

    assert excinfo.value.phase == Phase.COMPARE
    assert excinfo.value.table == "events"
    assert excinfo.value.describe() == (
        "compare: comparing key 1 failed: TypeError: cannot compare documents"
    )
    assert isinstance(excinfo.value.__cause__, TypeError)
