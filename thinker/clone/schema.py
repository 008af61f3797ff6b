"""Copying table definitions from the source to the destination server."""

import structlog

from thinker.driver.base import Driver
from thinker.errors import DriverError, SchemaError
from thinker.models.table import TableDescriptor

log = structlog.stdlib.get_logger()


class SchemaCloner:
    """Creates destination databases, tables and secondary indexes."""

    def __init__(self, destination: Driver, target_db: str):
        self._destination = destination
        self._target_db = target_db

    async def ensure_database(self) -> None:
        """Create the target database if it does not exist."""
        if self._target_db in await self._destination.list_databases():
            return
        try:
            await self._destination.create_database(self._target_db)
        except DriverError:
            # Another table task may have created it concurrently
            if self._target_db not in await self._destination.list_databases():
                raise
        log.info("target_database_created", db=self._target_db)

    async def clone_table(self, descriptor: TableDescriptor) -> None:
        """Create the table with the source's primary key and indexes.

        Raises:
            SchemaError: If creation fails
        """
        table = descriptor.name
        log.info(
            "creating_table",
            table=table,
            db=self._target_db,
            primary_key=descriptor.primary_key,
            indexes=sorted(descriptor.index_names),
        )
        try:
            await self._destination.create_table(self._target_db, table, descriptor.primary_key)
            for index in descriptor.indexes:
                await self._destination.create_index(self._target_db, table, index)
            if descriptor.indexes:
                await self._destination.wait_for_indexes(self._target_db, table)
        except DriverError as e:
            log.error("create_table_failed", table=table, db=self._target_db, error=str(e))
            raise SchemaError(
                f"creating `{self._target_db}.{table}` failed: {e.message}", table=table
            ) from e

    async def prepare_table(self, descriptor: TableDescriptor) -> TableDescriptor:
        """Create the destination table, or check the existing one is compatible.

        Returns:
            The destination table's schema
        """
        if descriptor.name in await self._destination.list_tables(self._target_db):
            existing = await self._destination.describe_table(self._target_db, descriptor.name)
            self.check_compatible(descriptor, existing)
            return existing
        await self.clone_table(descriptor)
        return descriptor

    @staticmethod
    def check_compatible(source: TableDescriptor, destination: TableDescriptor) -> None:
        """Raise SchemaError when the two tables cannot be diffed by primary key."""
        if source.primary_key != destination.primary_key:
            raise SchemaError(
                f"primary key mismatch: source `{source.primary_key}`, "
                f"destination `{destination.primary_key}`",
                table=source.name,
            )
        missing = source.index_names - destination.index_names
        if missing:
            log.warning(
                "destination_missing_indexes",
                table=source.name,
                indexes=sorted(missing),
            )
