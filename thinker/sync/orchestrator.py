"""Sync orchestrator: diff each table and patch the destination in batches."""

from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, Iterable

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
from thinker.models.table import TableDescriptor
from thinker.sync.collaborators import (
    ConfirmationProvider,
    DeleteGate,
    NullProgressObserver,
    ProgressObserver,
    StaticConfirmation,
)
from thinker.sync.diff_engine import MergeDiffEngine
from thinker.sync.models import (
    DiffOperation,
    OperationKind,
    RunReport,
    SyncProgress,
    TableReport,
    TableStatus,
)
from thinker.sync.reader import OrderedBatchReader
from thinker.sync.tables import missing_table_report, resolve_tables, run_bounded
from thinker.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()


class WriteBuffer:
    """Pending operations for one table, grouped by kind."""

    def __init__(self) -> None:
        self.upserts: dict[OperationKind, list[dict[str, Any]]] = {
            OperationKind.INSERT: [],
            OperationKind.UPDATE: [],
        }
        self.deletes: list[Any] = []

    def __len__(self) -> int:
        return sum(len(docs) for docs in self.upserts.values()) + len(self.deletes)

    def add(self, operation: DiffOperation) -> None:
        if operation.kind == OperationKind.DELETE:
            self.deletes.append(operation.key)
        else:
            self.upserts[operation.kind].append(operation.doc)

    def clear(self) -> None:
        for docs in self.upserts.values():
            docs.clear()
        self.deletes.clear()


class SyncOrchestrator:
    """Converges destination tables to match their source tables."""

    def __init__(
        self,
        source: Driver,
        destination: Driver,
        source_db: str,
        target_db: str,
        settings: SyncSettings | None = None,
        confirmation: ConfirmationProvider | None = None,
        observer: ProgressObserver | None = None,
        assume_yes: bool = False,
        delete_gate: DeleteGate | None = None,
    ):
        """
        Initialize sync orchestrator.

        Args:
            source: Driver for the server to copy from
            destination: Driver for the server to converge
            source_db: Source database name
            target_db: Destination database name
            settings: Batch, concurrency and retry settings (defaults if None)
            confirmation: Asked once before the first delete (declines if None)
            observer: Receives counters after every write batch
            assume_yes: Pre-authorize deletes without asking
            delete_gate: Share one confirmation between several orchestrators
        """
        self._source = source
        self._destination = destination
        self.source_db = source_db
        self.target_db = target_db
        self._settings = settings or SyncSettings()
        self._observer: ProgressObserver = observer or NullProgressObserver()
        self._gate = delete_gate or DeleteGate(
            confirmation or StaticConfirmation(False), assume_yes=assume_yes
        )
        self._cloner = SchemaCloner(destination, target_db)

        retry = exponential_backoff_retry(
            max_retries=self._settings.max_retries,
            base_delay=self._settings.base_delay,
            max_delay=self._settings.max_delay,
            exceptions=(TransientDriverError,),
        )
        self._insert = retry(destination.insert)
        self._delete = retry(destination.delete)

        log.debug(
            "sync_orchestrator_initialized",
            source_db=source_db,
            target_db=target_db,
            workers=self._settings.workers,
            batch_size=self._settings.batch_size,
        )

    async def run(self, table_names: Iterable[str] | None = None) -> RunReport:
        """
        Sync every selected table with bounded concurrency.

        Args:
            table_names: Optional allow-list of source tables

        Returns:
            RunReport with one TableReport per requested table

        Raises:
            DriverError: If the source tables cannot be listed or the target
                database cannot be created
        """
        report = RunReport(operation="sync")
        tables, missing = await resolve_tables(self._source, self.source_db, table_names)
        report.tables.extend(missing_table_report(name, self.source_db, "sync") for name in missing)

        log.info("sync_started", source_db=self.source_db, target_db=self.target_db, tables=tables)
        await self._cloner.ensure_database()
        report.tables.extend(await run_bounded(tables, self.sync_table, self._settings.workers))

        totals = report.totals
        log.info(
            "sync_completed",
            tables=len(report.tables),
            failed=report.failed_tables(),
            inserted=totals.inserted,
            updated=totals.updated,
            deleted=totals.deleted,
            clean=report.clean,
        )
        return report

    async def sync_table(self, table: str) -> TableReport:
        """
        Converge one destination table. Never raises for table-level failures.

        Creates the destination table when it does not exist, then merges
        both primary key streams and applies the resulting operations.

        Args:
            table: Table name (same in both databases)

        Returns:
            TableReport for the table
        """
        report = TableReport(
            table=table, operation="sync", start_time=datetime.now(timezone.utc)
        )
        log.info("sync_table_started", table=table)

        phase = Phase.SCHEMA
        try:
            source_schema, destination_schema = await self._prepare(table)
            phase = Phase.READ
            await self._sync_rows(source_schema, destination_schema, report)
        except ThinkerError as e:
            e.table = e.table or table
            report.fail(e)
            log.error("sync_table_failed", table=table, phase=e.phase, error=e.message)
        except Exception as e:
            report.fail(unexpected_error(e, table, phase))
            log.error(
                "sync_table_failed",
                table=table,
                phase=phase,
                error_type=type(e).__name__,
                error=str(e),
            )
        finally:
            report.end_time = datetime.now(timezone.utc)

        if report.status == TableStatus.SUCCESS and report.progress.skipped_deletes:
            report.status = TableStatus.INCOMPLETE

        log.info(
            "sync_table_finished",
            table=table,
            status=report.status.value,
            duration_seconds=report.duration_seconds,
            **report.progress.model_dump(),
        )
        return report

    async def _prepare(self, table: str) -> tuple[TableDescriptor, TableDescriptor]:
        """Check or create the destination table, returning both schemas."""
        source = await self._source.describe_table(self.source_db, table)
        destination = await self._cloner.prepare_table(source)
        return source, destination

    async def _sync_rows(
        self, source_schema: TableDescriptor, destination_schema: TableDescriptor, report: TableReport
    ) -> None:
        table = source_schema.name
        primary_key = source_schema.primary_key
        progress = report.progress
        buffer = WriteBuffer()

        async with OrderedBatchReader(
            self._source,
            self.source_db,
            table,
            primary_key,
            self._settings,
            schema=source_schema,
        ) as source, OrderedBatchReader(
            self._destination,
            self.target_db,
            table,
            primary_key,
            self._settings,
            schema=destination_schema,
        ) as destination:
            engine = MergeDiffEngine(source, destination)
            async with aclosing(engine.diff()) as operations:
                async for operation in operations:
                    buffer.add(operation)
                    if len(buffer) >= self._settings.write_batch_size:
                        progress.scanned = source.rows_read
                        await self._flush(table, buffer, progress)

            progress.scanned = source.rows_read
            progress.anomalies = len(engine.anomalies)
            report.anomalies.extend(anomaly.describe() for anomaly in engine.anomalies)
            await self._flush(table, buffer, progress)

    async def _flush(self, table: str, buffer: WriteBuffer, progress: SyncProgress) -> None:
        """Apply pending operations, one write call per kind, then report."""
        try:
            for kind, docs in buffer.upserts.items():
                if not docs:
                    continue
                await self._insert(self.target_db, table, docs, conflict="replace")
                if kind == OperationKind.INSERT:
                    progress.inserted += len(docs)
                else:
                    progress.updated += len(docs)

            if buffer.deletes:
                if await self._gate.allowed(self._delete_question(table)):
                    await self._delete(self.target_db, table, buffer.deletes)
                    progress.deleted += len(buffer.deletes)
                else:
                    progress.skipped_deletes += len(buffer.deletes)
                    log.warning("deletes_skipped", table=table, count=len(buffer.deletes))
        except DriverError as e:
            raise TableOperationError(
                f"writing to `{self.target_db}.{table}` failed: {e.message}",
                table=table,
                phase=Phase.WRITE,
            ) from e
        finally:
            buffer.clear()

        self._observer.report(table, progress.model_copy())

    def _delete_question(self, table: str) -> str:
        return (
            f"Sync will delete documents from `{self.target_db}` that do not exist in "
            f"`{self.source_db}` (starting with table `{table}`)."
        )
