"""Clone pipeline: create missing tables and bulk-copy their documents."""

from datetime import datetime, timezone
from typing import Iterable, Literal

import structlog

from thinker.clone.schema import SchemaCloner
from thinker.driver.base import Driver
from thinker.errors import (
    DriverError,
    Phase,
    TableOperationError,
    ThinkerError,
    TransientDriverError,
    unexpected_error,
)
from thinker.models.config import SyncSettings
from thinker.sync.collaborators import NullProgressObserver, ProgressObserver
from thinker.sync.models import RunReport, TableReport, TableStatus
from thinker.sync.orchestrator import SyncOrchestrator
from thinker.sync.reader import OrderedBatchReader
from thinker.sync.tables import missing_table_report, resolve_tables, run_bounded
from thinker.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()

ExistingPolicy = Literal["skip", "sync"]


class ClonePipeline:
    """Copies source tables that do not exist in the destination."""

    def __init__(
        self,
        source: Driver,
        destination: Driver,
        source_db: str,
        target_db: str,
        settings: SyncSettings | None = None,
        observer: ProgressObserver | None = None,
        existing: ExistingPolicy = "skip",
        orchestrator: SyncOrchestrator | None = None,
    ):
        """
        Initialize clone pipeline.

        Args:
            source: Driver for the server to copy from
            destination: Driver for the server to copy to
            source_db: Source database name
            target_db: Destination database name
            settings: Batch, concurrency and retry settings (defaults if None)
            observer: Receives counters after every copied page
            existing: What to do with tables already in the destination
            orchestrator: Sync orchestrator used when ``existing`` is "sync"
        """
        if existing == "sync" and orchestrator is None:
            raise ValueError("orchestrator is required when existing tables are synced")

        self._source = source
        self._destination = destination
        self.source_db = source_db
        self.target_db = target_db
        self._settings = settings or SyncSettings()
        self._observer: ProgressObserver = observer or NullProgressObserver()
        self._existing = existing
        self._orchestrator = orchestrator
        self._cloner = SchemaCloner(destination, target_db)
        self._insert = exponential_backoff_retry(
            max_retries=self._settings.max_retries,
            base_delay=self._settings.base_delay,
            max_delay=self._settings.max_delay,
            exceptions=(TransientDriverError,),
        )(destination.insert)

    async def run(self, table_names: Iterable[str] | None = None) -> RunReport:
        """
        Clone every selected table with bounded concurrency.

        Args:
            table_names: Optional allow-list of source tables

        Returns:
            RunReport with one TableReport per requested table
        """
        report = RunReport(operation="clone")
        tables, missing = await resolve_tables(self._source, self.source_db, table_names)
        report.tables.extend(
            missing_table_report(name, self.source_db, "clone") for name in missing
        )

        log.info("clone_started", source_db=self.source_db, target_db=self.target_db, tables=tables)
        await self._cloner.ensure_database()
        existing = set(await self._destination.list_tables(self.target_db))

        async def worker(table: str) -> TableReport:
            if table not in existing:
                return await self.clone_table(table)
            if self._existing == "sync":
                return await self._orchestrator.sync_table(table)
            return self._skipped(table)

        report.tables.extend(await run_bounded(tables, worker, self._settings.workers))

        log.info(
            "clone_completed",
            tables=len(report.tables),
            failed=report.failed_tables(),
            documents=report.totals.inserted,
        )
        return report

    def _skipped(self, table: str) -> TableReport:
        now = datetime.now(timezone.utc)
        log.info("clone_table_skipped", table=table, reason="exists in destination")
        return TableReport(
            table=table,
            operation="clone",
            status=TableStatus.SKIPPED,
            start_time=now,
            end_time=now,
        )

    async def clone_table(self, table: str) -> TableReport:
        """
        Create one table in the destination and copy every document into it.

        Pages are written with conflict="replace", so re-running a clone that
        stopped halfway converges instead of failing on duplicate keys.

        Args:
            table: Table name (same in both databases)

        Returns:
            TableReport for the table
        """
        report = TableReport(
            table=table, operation="clone", start_time=datetime.now(timezone.utc)
        )
        progress = report.progress
        log.info("clone_table_started", table=table)

        phase = Phase.SCHEMA
        try:
            descriptor = await self._source.describe_table(self.source_db, table)
            await self._cloner.prepare_table(descriptor)

            phase = Phase.READ
            async with OrderedBatchReader(
                self._source,
                self.source_db,
                table,
                descriptor.primary_key,
                self._settings,
                schema=descriptor,
            ) as reader:
                page: list[dict] = []
                async for row in reader:
                    page.append(row.doc)
                    if len(page) >= self._settings.batch_size:
                        await self._write_page(table, page)
                        progress.inserted += len(page)
                        progress.scanned = reader.rows_read
                        self._observer.report(table, progress.model_copy())
                        page = []
                await self._write_page(table, page)
                progress.inserted += len(page)
                progress.scanned = reader.rows_read
                self._observer.report(table, progress.model_copy())
        except ThinkerError as e:
            e.table = e.table or table
            report.fail(e)
            log.error("clone_table_failed", table=table, phase=e.phase, error=e.message)
        except Exception as e:
            report.fail(unexpected_error(e, table, phase))
            log.error(
                "clone_table_failed",
                table=table,
                phase=phase,
                error_type=type(e).__name__,
                error=str(e),
            )
        finally:
            report.end_time = datetime.now(timezone.utc)

        log.info(
            "clone_table_finished",
            table=table,
            status=report.status.value,
            documents=progress.inserted,
            duration_seconds=report.duration_seconds,
        )
        return report

    async def _write_page(self, table: str, page: list[dict]) -> None:
        if not page:
            return
        try:
            await self._insert(self.target_db, table, page, conflict="replace")
        except DriverError as e:
            raise TableOperationError(
                f"writing to `{self.target_db}.{table}` failed: {e.message}",
                table=table,
                phase=Phase.WRITE,
            ) from e
