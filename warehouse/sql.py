"""
SQL warehouse backend on SQLAlchemy async (PostgreSQL 15+).

Datasets map to PostgreSQL schemas. Load jobs run in a single transaction:
the table is emptied first (truncate disposition), then valid rows are bulk
inserted. Merge and truncate statements are rendered with double-quoted
identifiers and executed as text.
"""

from typing import Any, Dict, List
from sqlalchemy import delete, insert, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.schema import CreateSchema
import tempfile
import logging

from core.exceptions import WarehouseError
from models.base import new_metadata
from models.product import product_table
from schemas.export import ExportDestination, TableRef
from warehouse.base import (
    WarehouseClient,
    WarehouseJob,
    WriteChannel,
    WriteDisposition,
    parse_load_lines,
)

logger = logging.getLogger(__name__)

# Load streams above this size spill from memory to a temp file
SPOOL_MAX_SIZE = 8 * 1024 * 1024


class SqlWriteChannel(WriteChannel):
    """Spools the NDJSON stream, then loads it in one transaction"""

    def __init__(self, warehouse: "SqlWarehouse", table: TableRef, disposition: WriteDisposition):
        super().__init__(table, disposition)
        self.warehouse = warehouse
        self._spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)

    async def _append(self, data: bytes):
        self._spool.write(data)

    async def _submit(self) -> WarehouseJob:
        spool = self._spool
        spool.seek(0)

        async def load(job: WarehouseJob) -> int:
            try:
                return await self.warehouse._load(self.table, self.disposition, spool, job)
            finally:
                spool.close()

        return WarehouseJob("LOAD", load)

    async def _discard(self):
        self._spool.close()


class SqlWarehouse(WarehouseClient):
    """
    Warehouse backed by a SQLAlchemy async engine.

    Ensures:
    - Loads are atomic (truncate and insert share one transaction)
    - Statement failures surface as job errors, not raised exceptions
    """

    identifier_quote = '"'

    def __init__(self, engine: AsyncEngine, insert_chunk_size: int = 500):
        self.engine = engine
        self.insert_chunk_size = insert_chunk_size

    async def open_writer(self, table: TableRef, disposition: WriteDisposition) -> WriteChannel:
        return SqlWriteChannel(self, table, disposition)

    async def query(self, statement) -> WarehouseJob:
        sql = statement.render(self.identifier_quote)

        async def execute(job: WarehouseJob):
            try:
                async with self.engine.begin() as conn:
                    result = await conn.execute(text(sql))
            except SQLAlchemyError as e:
                raise WarehouseError(
                    f"{statement.operation} failed",
                    context={"operation": statement.operation, "job_id": job.job_id},
                    original_exception=e
                )
            rowcount = result.rowcount
            return rowcount if rowcount is not None and rowcount >= 0 else None

        return WarehouseJob(statement.operation, execute)

    async def fetch_rows(self, statement) -> List[Dict[str, Any]]:
        sql = statement.render(self.identifier_quote)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(sql))
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            raise WarehouseError(
                f"{statement.operation} failed",
                context={"operation": statement.operation},
                original_exception=e
            )

    async def create_tables(self, destination: ExportDestination):
        """Create the dataset schema plus target and staging tables if missing"""
        metadata = new_metadata()
        product_table(destination.table_name, metadata, schema=destination.dataset_name)
        product_table(destination.staging_table_name, metadata, schema=destination.dataset_name, keyed=False)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(CreateSchema(destination.dataset_name, if_not_exists=True))
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            raise WarehouseError(
                "Failed to create export tables",
                context={"operation": "CREATE", "table": destination.target.qualified_name},
                original_exception=e
            )
        logger.info(f"Ensured tables {destination.target} and {destination.staging}")

    async def close(self):
        await self.engine.dispose()

    async def _load(self, table: TableRef, disposition: WriteDisposition, stream, job: WarehouseJob) -> int:
        rows, errors = parse_load_lines(stream)
        job.execution_errors.extend(errors)

        staging = product_table(table.table, new_metadata(), schema=table.dataset, keyed=False)

        try:
            async with self.engine.begin() as conn:
                await conn.execute(delete(staging))

                for i in range(0, len(rows), self.insert_chunk_size):
                    await conn.execute(insert(staging), rows[i:i + self.insert_chunk_size])
        except SQLAlchemyError as e:
            raise WarehouseError(
                "Load failed",
                context={"operation": "LOAD", "table": table.qualified_name, "job_id": job.job_id},
                original_exception=e
            )

        logger.debug(f"Loaded {len(rows)} rows into {table.qualified_name} ({len(errors)} rejected)")
        return len(rows)
