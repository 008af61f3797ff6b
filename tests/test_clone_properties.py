"""Tests for the clone pipeline and schema cloning.

Feature: thinker
Cloning creates each missing table with the source's primary key and
secondary indexes and copies every document unchanged.
"""

import pytest

from tests.conftest import SOURCE_DB, TARGET_DB, RecordingObserver
from thinker.clone.pipeline import ClonePipeline
from thinker.clone.schema import SchemaCloner
from thinker.errors import SchemaError
from thinker.models.config import SyncSettings
from thinker.models.table import IndexDescriptor, TableDescriptor
from thinker.models.value import values_equal
from thinker.sync.models import TableStatus
from thinker.sync.orchestrator import SyncOrchestrator


@pytest.mark.asyncio
async def test_clone_copies_typed_documents(source, target, settings, dataset):
    source.add_table(SOURCE_DB, "typed", dataset)

    report = await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings).run()

    assert report.clean and report.exit_code == 0
    table = report.tables[0]
    assert table.operation == "clone"
    assert table.progress.inserted == 6
    assert table.progress.scanned == 6

    copied = target.documents(TARGET_DB, "typed")
    original = source.documents(SOURCE_DB, "typed")
    assert len(copied) == len(original)
    for left, right in zip(copied, original):
        assert values_equal(left, right)


@pytest.mark.asyncio
async def test_clone_copies_primary_key_and_indexes(source, target, settings):
    indexes = [
        IndexDescriptor(name="by_email", function=b"\x01email"),
        IndexDescriptor(name="by_tag", function=b"\x02tags", multi=True),
    ]
    source.add_table(
        SOURCE_DB, "users", [{"uid": "a"}, {"uid": "b"}], primary_key="uid", indexes=indexes
    )

    await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings).run()

    descriptor = await target.describe_table(TARGET_DB, "users")
    assert descriptor.primary_key == "uid"
    assert descriptor.indexes == tuple(indexes)
    assert [doc["uid"] for doc in target.documents(TARGET_DB, "users")] == ["a", "b"]


@pytest.mark.asyncio
async def test_clone_writes_one_page_at_a_time(source, target, settings):
    source.add_table(SOURCE_DB, "items", [{"id": i} for i in range(5)])
    observer = RecordingObserver()

    await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings, observer=observer).run()

    assert target.write_calls == [("insert", "items", 2), ("insert", "items", 2), ("insert", "items", 1)]
    assert [progress.inserted for progress in observer.for_table("items")] == [2, 4, 5]


@pytest.mark.asyncio
async def test_existing_tables_are_skipped_by_default(source, target, settings):
    source.add_table(SOURCE_DB, "users", [{"id": 1}, {"id": 2}])
    source.add_table(SOURCE_DB, "orders", [{"id": 1}])
    target.add_table(TARGET_DB, "users", [{"id": 9}])

    report = await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings).run()

    by_name = {table.table: table for table in report.tables}
    assert by_name["users"].status == TableStatus.SKIPPED
    assert by_name["orders"].status == TableStatus.SUCCESS
    assert report.exit_code == 0
    assert target.documents(TARGET_DB, "users") == [{"id": 9}]


@pytest.mark.asyncio
async def test_existing_tables_can_be_synced(source, target, settings):
    source.add_table(SOURCE_DB, "users", [{"id": 1}, {"id": 2}])
    target.add_table(TARGET_DB, "users", [{"id": 2, "old": True}, {"id": 9}])
    orchestrator = SyncOrchestrator(
        source, target, SOURCE_DB, TARGET_DB, settings, assume_yes=True
    )

    report = await ClonePipeline(
        source, target, SOURCE_DB, TARGET_DB, settings, existing="sync", orchestrator=orchestrator
    ).run()

    table = report.tables[0]
    assert table.operation == "sync"
    assert table.status == TableStatus.SUCCESS
    assert target.documents(TARGET_DB, "users") == [{"id": 1}, {"id": 2}]


def test_sync_policy_requires_orchestrator(source, target):
    with pytest.raises(ValueError, match="orchestrator"):
        ClonePipeline(source, target, SOURCE_DB, TARGET_DB, existing="sync")


@pytest.mark.asyncio
async def test_interrupted_clone_can_be_rerun(source, target, settings):
    """A table left half-copied is finished by cloning it again."""
    docs = [{"id": i, "v": i} for i in range(4)]
    source.add_table(SOURCE_DB, "items", docs)
    target.add_table(TARGET_DB, "items", docs[:2])

    report = await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings).clone_table("items")

    assert report.status == TableStatus.SUCCESS
    assert target.documents(TARGET_DB, "items") == docs


@pytest.mark.asyncio
async def test_write_failure_fails_only_that_table(source, target):
    source.add_table(SOURCE_DB, "items", [{"id": 1}])
    target.fail_writes = 100
    settings = SyncSettings(batch_size=2, workers=1, max_retries=1, base_delay=0.0, max_delay=0.0)

    report = await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings).run()

    table = report.tables[0]
    assert table.status == TableStatus.FAILED
    assert table.errors[0].startswith("write:")
    assert report.exit_code == 1


@pytest.mark.asyncio
async def test_missing_requested_table(source, target, settings):
    source.add_table(SOURCE_DB, "users", [{"id": 1}])

    report = await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings).run(["ghost"])

    assert report.failed_tables() == ["ghost"]
    assert report.tables[0].errors[0].startswith("schema:")
    assert "users" not in target.databases[TARGET_DB]


@pytest.mark.asyncio
async def test_schema_cloner_creates_database_once(target):
    cloner = SchemaCloner(target, "fresh")

    await cloner.ensure_database()
    await cloner.ensure_database()

    assert "fresh" in await target.list_databases()


@pytest.mark.asyncio
async def test_schema_cloner_wraps_create_failures(target):
    cloner = SchemaCloner(target, TARGET_DB)
    target.add_table(TARGET_DB, "users")

    with pytest.raises(SchemaError, match="creating") as excinfo:
        await cloner.clone_table(TableDescriptor(name="users"))
    assert excinfo.value.table == "users"


def test_check_compatible_ignores_missing_indexes():
    source = TableDescriptor(name="users", indexes=(IndexDescriptor(name="by_email"),))
    SchemaCloner.check_compatible(source, TableDescriptor(name="users"))

    with pytest.raises(SchemaError, match="primary key mismatch"):
        SchemaCloner.check_compatible(source, TableDescriptor(name="users", primary_key="uid"))


@pytest.mark.asyncio
async def test_unexpected_error_while_copying_keeps_phase(source, target, settings, monkeypatch):
    source.add_table(SOURCE_DB, "items", [{"id": 1}])

    async def broken_fetch(*args, **kwargs):
        raise RuntimeError("cursor vanished")

    monkeypatch.setattr(source, "fetch_page", broken_fetch)

    table = await ClonePipeline(source, target, SOURCE_DB, TARGET_DB, settings).clone_table("items")

    assert table.status == TableStatus.FAILED
    assert table.errors == ["read: RuntimeError: cursor vanished"]
    assert "items" in target.databases[TARGET_DB]
