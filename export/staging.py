"""
Staging writer: serialize batches to a local NDJSON sink, then load the sink
into the staging table under a truncate disposition.

Row-level errors reported by the load job are tolerated: they are logged,
counted as dropped rows and the stage still succeeds. Those rows never
reach staging, so the following merge silently skips them; callers detect
this through ``WriteOutcome.dropped_rows``.
"""

from typing import AsyncIterable, List, Optional
from contextlib import suppress
import asyncio
import logging
import os
import tempfile

from core.config import settings
from core.exceptions import SerializationError, WaitInterruptedError, WarehouseError
from export.codec import RecordCodec
from schemas.export import ExportDestination, SerializeOutcome, StageStatus, WriteOutcome
from schemas.product import Product
from warehouse.base import WarehouseClient, WriteDisposition


class StagingWriter:
    """
    Streams product batches into the staging table.

    Attributes:
        sink_path: Caller-supplied NDJSON path; when None each run uses a
                   temporary file that is removed after upload
        chunk_size: Bytes per write call on the warehouse channel
    """

    def __init__(
        self,
        warehouse: WarehouseClient,
        codec: Optional[RecordCodec] = None,
        sink_path: Optional[str] = None,
        chunk_size: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.warehouse = warehouse
        self.codec = codec or RecordCodec()
        self.sink_path = sink_path
        self.chunk_size = chunk_size or settings.UPLOAD_CHUNK_SIZE
        self.logger = logger or logging.getLogger(__name__)

    async def write(
        self,
        batches: AsyncIterable[List[Product]],
        destination: ExportDestination
    ) -> WriteOutcome:
        """Serialize every batch, then load the result into staging"""
        serialized = await self.serialize(batches)
        if not serialized.ok:
            return WriteOutcome(
                status=serialized.status,
                detail=serialized.detail,
                error_context=serialized.error_context,
                rows_written=serialized.rows_written,
                batches_written=serialized.batches_written,
            )
        return await self.upload(serialized, destination)

    async def serialize(
        self,
        batches: AsyncIterable[List[Product]],
        sink_path: Optional[str] = None
    ) -> SerializeOutcome:
        """
        Stamp, encode and append each batch to the local sink as it arrives.

        The sink is ``sink_path`` when given, else the writer's configured
        path, else a temporary file owned by the writer. Only one batch is
        held in memory at a time. Local IO failures are reported as
        IO_ERROR; nothing has been sent to the warehouse then.
        """
        sink_path = sink_path or self.sink_path
        owns_sink = sink_path is None
        counts = {"rows": 0, "batches": 0}

        try:
            if owns_sink:
                sink_path = self._create_temp_sink()
            self.logger.info(f"Serializing products to {sink_path}")
            await self._append_batches(batches, sink_path, counts)

        except SerializationError as e:
            self.logger.error(f"Serializing products failed: {e.message}", extra={"error_context": e.to_dict()})
            if owns_sink and sink_path:
                with suppress(OSError):
                    os.remove(sink_path)
            return SerializeOutcome(
                status=StageStatus.IO_ERROR,
                detail=f"Cannot write export file: {e.original_exception}",
                error_context=e.context,
                sink_path=sink_path,
                owns_sink=owns_sink,
                rows_written=counts["rows"],
                batches_written=counts["batches"],
            )

        except BaseException:
            if owns_sink and sink_path:
                with suppress(OSError):
                    os.remove(sink_path)
            raise

        self.logger.info(f"Serialized {counts['rows']} products in {counts['batches']} batches")
        return SerializeOutcome(
            sink_path=sink_path,
            owns_sink=owns_sink,
            rows_written=counts["rows"],
            batches_written=counts["batches"],
        )

    @staticmethod
    def _create_temp_sink() -> str:
        try:
            fd, path = tempfile.mkstemp(prefix="product-export-", suffix=".ndjson")
        except OSError as e:
            raise SerializationError(
                "Cannot create temporary export file",
                context={"sink_path": None},
                original_exception=e
            )
        os.close(fd)
        return path

    async def _append_batches(self, batches: AsyncIterable[List[Product]], sink_path: str, counts: dict):
        """
        Raises:
            SerializationError: If the sink cannot be opened or written
        """
        try:
            with open(sink_path, "w", encoding="utf-8") as sink:
                async for batch in batches:
                    for record in batch:
                        sink.write(self.codec.encode_for_export(record))
                        sink.write("\n")
                    counts["rows"] += len(batch)
                    counts["batches"] += 1
                    self.logger.debug(f"Batch {counts['batches']}: appended {len(batch)} products")
        except OSError as e:
            raise SerializationError(
                f"Cannot write export file {sink_path}",
                context={"sink_path": sink_path, "batch_index": counts["batches"], "error": str(e)},
                original_exception=e
            )

    async def upload(self, serialized: SerializeOutcome, destination: ExportDestination) -> WriteOutcome:
        """Load the serialized sink into staging and wait for the load job"""
        table = destination.staging
        outcome = WriteOutcome(
            rows_written=serialized.rows_written,
            batches_written=serialized.batches_written,
        )
        context = {"stage": outcome.stage, "table": table.qualified_name, "sink_path": serialized.sink_path}
        channel = None
        job = None

        try:
            channel = await self.warehouse.open_writer(table, WriteDisposition.WRITE_TRUNCATE)
            with open(serialized.sink_path, "rb") as source:
                while True:
                    chunk = source.read(self.chunk_size)
                    if not chunk:
                        break
                    await channel.write(chunk)

            job = await channel.close()
            context["job_id"] = job.job_id
            self.logger.info(f"Waiting for staging load job {job.job_id} on {table}")
            await job.wait()
            job.raise_for_error()

        except OSError as e:
            if channel is not None and not channel.closed:
                await channel.abort()
            context["error"] = str(e)
            self.logger.error(f"Reading export file failed: {e}", extra={"error_context": context})
            return outcome.failed_with(StageStatus.IO_ERROR, f"Cannot read export file: {e}", context)

        except (asyncio.CancelledError, WaitInterruptedError):
            self.logger.error("Interrupted while waiting for staging load job", extra={"error_context": context})
            return outcome.failed_with(
                StageStatus.INTERRUPTED,
                "Interrupted while waiting for staging load job",
                context
            )

        except WarehouseError as e:
            if channel is not None and not channel.closed:
                await channel.abort()
            if job is not None:
                outcome = outcome.model_copy(update={"job_id": job.job_id})
            self.logger.error(f"Staging load failed: {e.message}", extra={"error_context": e.to_dict()})
            return outcome.failed_with(StageStatus.BACKEND_ERROR, e.message, {**context, **e.context})

        finally:
            if serialized.owns_sink:
                with suppress(OSError):
                    os.remove(serialized.sink_path)

        outcome = outcome.model_copy(update={"job_id": job.job_id, "rows_staged": job.affected_rows})

        for error in job.execution_errors:
            self.logger.warning(
                f"Staging row rejected ({error.location}): {error.message}",
                extra={"error_context": {**context, "reason": error.reason}}
            )

        outcome = outcome.model_copy(update={"dropped_rows": len(job.execution_errors)})
        self.logger.info(
            f"Staging write done: {outcome.rows_staged} rows in {table} "
            f"({outcome.dropped_rows} dropped)"
        )
        return outcome
