"""Table selection and bounded per-table scheduling shared by clone and sync."""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Literal

import structlog

from thinker.driver.base import Driver
from thinker.errors import SchemaError
from thinker.sync.models import TableReport

log = structlog.stdlib.get_logger()


async def resolve_tables(
    driver: Driver, db: str, table_names: Iterable[str] | None = None
) -> tuple[list[str], list[str]]:
    """
    Select the source tables to process.

    Args:
        driver: Source driver
        db: Source database
        table_names: Optional allow-list; None selects every table

    Returns:
        Tuple of (tables to process, requested names missing from the source)
    """
    available = await driver.list_tables(db)
    if table_names is None:
        return available, []

    requested = list(dict.fromkeys(table_names))
    present = set(available)
    selected = [name for name in requested if name in present]
    missing = [name for name in requested if name not in present]
    if missing:
        log.warning("requested_tables_missing", db=db, tables=missing)
    return selected, missing


def missing_table_report(table: str, db: str, operation: Literal["clone", "sync"]) -> TableReport:
    """Failed report for a requested table that does not exist in the source."""
    now = datetime.now(timezone.utc)
    report = TableReport(table=table, operation=operation, start_time=now, end_time=now)
    report.fail(SchemaError(f"table `{db}.{table}` does not exist in the source", table=table))
    return report


async def run_bounded(
    tables: list[str],
    worker: Callable[[str], Awaitable[TableReport]],
    workers: int,
) -> list[TableReport]:
    """Run ``worker`` for every table with at most ``workers`` running at once.

    Workers convert their own failures into reports, so one table failing
    never cancels its siblings. Cancelling the caller cancels every worker.
    """
    semaphore = asyncio.Semaphore(workers)

    async def guarded(table: str) -> TableReport:
        async with semaphore:
            return await worker(table)

    return list(await asyncio.gather(*(guarded(table) for table in tables)))
