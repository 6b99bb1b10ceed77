"""
Abstract warehouse backend: write channels, asynchronous jobs and the client.

A backend exposes three things to the export pipeline:

- a streaming row-append channel accepting newline-delimited JSON under a
  write disposition, whose ``close()`` returns a load job
- statement execution (merge, truncate) returning a job
- row fetching for read-back

Jobs run as asyncio tasks. Waiting on a job is shielded, so interrupting the
waiter does not cancel the backend work.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from pydantic import BaseModel
import asyncio
import enum
import logging
import uuid

from core.exceptions import JobFailedError, RowDecodeError, WaitInterruptedError, WarehouseError
from export.codec import decode_row
from models.product import KEY_COLUMN, PRODUCT_COLUMNS
from schemas.export import TableRef

logger = logging.getLogger(__name__)


class WriteDisposition(str, enum.Enum):
    """What a load does with rows already in the destination table"""
    WRITE_TRUNCATE = "WRITE_TRUNCATE"


class JobState(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"


class JobError(BaseModel):
    """Job-level or row-level error reported by the backend"""
    reason: str
    message: str
    location: Optional[str] = None


def _describe(error: WarehouseError) -> str:
    """Error message with the underlying driver error appended"""
    if error.original_exception is None:
        return error.message
    return f"{error.message}: {error.original_exception}"


class WarehouseJob:
    """
    Handle for asynchronous backend work.

    ``error`` is set when the job as a whole failed; ``execution_errors``
    lists row-level problems of an otherwise completed job.
    """

    def __init__(
        self,
        operation: str,
        work: Callable[["WarehouseJob"], Awaitable[Optional[int]]],
        job_id: Optional[str] = None
    ):
        self.job_id = job_id or f"job_{uuid.uuid4().hex}"
        self.operation = operation
        self.state = JobState.PENDING
        self.error: Optional[JobError] = None
        self.execution_errors: List[JobError] = []
        self.affected_rows: Optional[int] = None
        self._task = asyncio.ensure_future(self._run(work))

    async def _run(self, work):
        self.state = JobState.RUNNING
        try:
            self.affected_rows = await work(self)
        except WarehouseError as e:
            logger.debug(f"Job {self.job_id} ({self.operation}) failed: {e}")
            self.error = JobError(reason="backendError", message=_describe(e))
        except Exception as e:
            logger.debug(f"Job {self.job_id} ({self.operation}) failed unexpectedly: {e}")
            self.error = JobError(reason=type(e).__name__, message=str(e))
        finally:
            self.state = JobState.DONE

    @property
    def done(self) -> bool:
        return self.state == JobState.DONE

    @property
    def failed(self) -> bool:
        return self.error is not None

    async def wait(self) -> "WarehouseJob":
        """
        Block until the job reaches a terminal state.

        Raises:
            WaitInterruptedError: If the waiter is cancelled; the job keeps running
        """
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError as e:
            raise WaitInterruptedError(
                f"Interrupted while waiting for {self.operation} job",
                context={"job_id": self.job_id, "operation": self.operation},
                original_exception=e
            )
        return self

    def raise_for_error(self):
        if self.error is not None:
            raise JobFailedError(
                self.error.message,
                context={"job_id": self.job_id, "operation": self.operation, "job_reason": self.error.reason}
            )


class WriteChannel(ABC):
    """Streaming NDJSON sink bound to one table and write disposition"""

    def __init__(self, table: TableRef, disposition: WriteDisposition):
        self.table = table
        self.disposition = disposition
        self.closed = False
        self.job: Optional[WarehouseJob] = None

    async def write(self, data: bytes):
        if self.closed:
            raise WarehouseError(
                "Write channel is closed",
                context={"operation": "LOAD", "table": self.table.qualified_name}
            )
        await self._append(data)

    async def close(self) -> WarehouseJob:
        """Finalize the stream and submit the load job"""
        if self.closed:
            return self.job
        self.closed = True
        self.job = await self._submit()
        return self.job

    async def abort(self):
        """Discard buffered data without submitting a job"""
        self.closed = True
        await self._discard()

    @abstractmethod
    async def _append(self, data: bytes):
        pass

    @abstractmethod
    async def _submit(self) -> WarehouseJob:
        pass

    @abstractmethod
    async def _discard(self):
        pass


class WarehouseClient(ABC):
    """Warehouse backend used by the export pipeline"""

    # Quote character used when rendering statements for this backend
    identifier_quote = "`"

    @abstractmethod
    async def open_writer(self, table: TableRef, disposition: WriteDisposition) -> WriteChannel:
        pass

    @abstractmethod
    async def query(self, statement) -> WarehouseJob:
        """Submit a statement; the returned job runs in the background"""
        pass

    @abstractmethod
    async def fetch_rows(self, statement) -> List[Dict[str, Any]]:
        pass

    async def close(self):
        pass


def parse_load_lines(
    lines: Iterable[bytes],
    columns: Tuple[str, ...] = PRODUCT_COLUMNS,
    key_column: str = KEY_COLUMN
) -> Tuple[List[Dict[str, Any]], List[JobError]]:
    """
    Decode a load stream into rows, collecting one error per rejected line.

    Rejected lines: malformed JSON, non-object values, unknown columns and a
    missing or empty key. Missing value columns load as NULL.
    """
    rows: List[Dict[str, Any]] = []
    errors: List[JobError] = []

    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.decode("utf-8", errors="replace").strip()
        if not line:
            continue

        try:
            row = decode_row(line, line_number=line_number)
        except RowDecodeError as e:
            errors.append(JobError(reason="invalid", message=e.message, location=f"line {line_number}"))
            continue

        unknown = sorted(set(row) - set(columns))
        if unknown:
            errors.append(JobError(
                reason="invalid",
                message=f"No such field: {', '.join(unknown)}",
                location=f"line {line_number}"
            ))
            continue

        if row.get(key_column) in (None, ""):
            errors.append(JobError(
                reason="invalid",
                message=f"Missing required field: {key_column}",
                location=f"line {line_number}"
            ))
            continue

        rows.append({column: row.get(column) for column in columns})

    return rows, errors
