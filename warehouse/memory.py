"""
In-process warehouse backend.

Holds tables as lists of row dicts and executes the structured statements
from ``export.statements`` directly. Used for local dry runs
(``WAREHOUSE_URL=memory://``) and for exercising the pipeline end to end.
"""

from typing import Any, Dict, List, Optional, Tuple
import logging

from core.exceptions import WarehouseError
from export.statements import MergeStatement, SelectStatement, TruncateStatement
from models.product import PRODUCT_COLUMNS
from schemas.export import TableRef
from warehouse.base import (
    WarehouseClient,
    WarehouseJob,
    WriteChannel,
    WriteDisposition,
    parse_load_lines,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class MemoryWriteChannel(WriteChannel):
    """Buffers the NDJSON stream until close"""

    def __init__(self, warehouse: "InMemoryWarehouse", table: TableRef, disposition: WriteDisposition):
        super().__init__(table, disposition)
        self.warehouse = warehouse
        self._buffer = bytearray()

    async def _append(self, data: bytes):
        self._buffer.extend(data)

    async def _submit(self) -> WarehouseJob:
        payload = bytes(self._buffer)
        self._buffer = bytearray()

        async def load(job: WarehouseJob) -> int:
            return self.warehouse._load(self.table, self.disposition, payload, job)

        return WarehouseJob("LOAD", load)

    async def _discard(self):
        self._buffer = bytearray()


class InMemoryWarehouse(WarehouseClient):
    """
    Warehouse held in process memory.

    Load jobs create the destination table when it does not exist yet.
    Statements against a missing table fail the job.
    """

    identifier_quote = "`"

    def __init__(self):
        self.tables: Dict[Tuple[str, str], List[Row]] = {}

    # ------------------------------------------------------------------
    # Table helpers
    # ------------------------------------------------------------------

    def create_table(self, table: TableRef, rows: Optional[List[Row]] = None):
        self.tables[(table.dataset, table.table)] = [dict(r) for r in rows or []]

    def has_table(self, table: TableRef) -> bool:
        return (table.dataset, table.table) in self.tables

    def rows(self, table: TableRef) -> List[Row]:
        """Copy of a table's rows"""
        return [dict(r) for r in self._table(table, "SELECT")]

    def _table(self, table: TableRef, operation: str) -> List[Row]:
        try:
            return self.tables[(table.dataset, table.table)]
        except KeyError:
            raise WarehouseError(
                f"Not found: Table {table.qualified_name}",
                context={"operation": operation, "table": table.qualified_name}
            )

    # ------------------------------------------------------------------
    # Client API
    # ------------------------------------------------------------------

    async def open_writer(self, table: TableRef, disposition: WriteDisposition) -> WriteChannel:
        return MemoryWriteChannel(self, table, disposition)

    async def query(self, statement) -> WarehouseJob:
        async def execute(job: WarehouseJob) -> int:
            return self._execute(statement)

        return WarehouseJob(statement.operation, execute)

    async def fetch_rows(self, statement) -> List[Row]:
        if not isinstance(statement, SelectStatement):
            raise WarehouseError(
                "Only SELECT statements return rows",
                context={"operation": statement.operation}
            )
        return [
            {column: row.get(column) for column in statement.columns}
            for row in self._table(statement.table, "SELECT")
        ]

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    def _load(self, table: TableRef, disposition: WriteDisposition, payload: bytes, job: WarehouseJob) -> int:
        rows, errors = parse_load_lines(payload.splitlines())
        job.execution_errors.extend(errors)

        # Truncate disposition: the load replaces the table contents
        self.tables[(table.dataset, table.table)] = rows

        logger.debug(
            f"Loaded {len(rows)} rows into {table.qualified_name} "
            f"({len(errors)} rejected, {disposition.value})"
        )
        return len(rows)

    def _execute(self, statement) -> int:
        if isinstance(statement, MergeStatement):
            return self._merge(statement)
        if isinstance(statement, TruncateStatement):
            rows = self._table(statement.table, "TRUNCATE")
            removed = len(rows)
            rows.clear()
            return removed
        if isinstance(statement, SelectStatement):
            return len(self._table(statement.table, "SELECT"))
        raise WarehouseError(
            f"Unsupported statement: {type(statement).__name__}",
            context={"operation": getattr(statement, "operation", None)}
        )

    def _merge(self, statement: MergeStatement) -> int:
        target = self._table(statement.target, "MERGE")
        source = self._table(statement.source, "MERGE")
        key = statement.key_column

        seen = set()
        for row in source:
            if row.get(key) in seen:
                raise WarehouseError(
                    "MERGE statement must match at most one source row for each target row",
                    context={
                        "operation": "MERGE",
                        "table": statement.target.qualified_name,
                        "key": row.get(key),
                    }
                )
            seen.add(row.get(key))

        index = {row.get(key): row for row in target}
        affected = 0
        for row in source:
            match = index.get(row.get(key))
            if match is not None:
                for column in statement.value_columns:
                    match[column] = row.get(column)
            else:
                inserted = {column: None for column in PRODUCT_COLUMNS}
                inserted.update({column: row.get(column) for column in statement.columns})
                target.append(inserted)
                index[row.get(key)] = inserted
            affected += 1

        return affected
