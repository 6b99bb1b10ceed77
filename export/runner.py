# ============================================================================
# File: export/runner.py
# Description: Staged-merge export orchestrator
# ============================================================================
"""
Export Runner - Orchestrates Produce, Stage, Merge, Cleanup.

This module provides the export pipeline with:
- Strictly sequential stages (no overlap between stages of one run)
- Bounded memory: batches are pulled and serialized one at a time
- Tagged stage results instead of exceptions between stages
- A boolean-convertible ExportRun as the only outcome of a run (no stage
  failure is raised)
- Wall-clock timing for performance probes
"""

from typing import List, Optional
from datetime import datetime
import asyncio
import logging
import time

from core.config import settings
from export.cleanup import CleanupExecutor
from export.codec import RecordCodec
from export.merge import MergeExecutor
from export.producers import BatchProducer, SyntheticBatchProducer, iter_batches
from export.staging import StagingWriter
from export.statements import build_select_statement
from models.base import RunState
from schemas.export import ExportDestination, ExportRun, StageResult, StageStatus
from schemas.product import Product
from warehouse.base import WarehouseClient
from warehouse.factory import create_warehouse

# Forward-only lifecycle; FAILED may follow any non-terminal state
_STATE_ORDER = [
    RunState.IDLE,
    RunState.PRODUCING,
    RunState.WRITING,
    RunState.MERGING,
    RunState.CLEANING,
    RunState.COMPLETED,
]


class ExportRunner:
    """
    Staged-merge export orchestrator

    Responsibilities:
    - Orchestrate Producer -> Codec -> StagingWriter -> MergeExecutor -> CleanupExecutor
    - Translate every stage failure into a failed ExportRun with a reason
    - Serialize export calls made through this runner
    - Log each stage boundary and every failure with structured context

    Callers must not run exports against the same staging table through
    different runners concurrently: staging is shared, unpartitioned state.
    """

    def __init__(
        self,
        warehouse: WarehouseClient,
        codec: Optional[RecordCodec] = None,
        export_file_path: Optional[str] = None,
        truncate_before_write: Optional[bool] = None,
        chunk_size: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.warehouse = warehouse
        self.codec = codec or RecordCodec()
        self.logger = logger or logging.getLogger(__name__)
        self.truncate_before_write = (
            settings.TRUNCATE_STAGING_BEFORE_WRITE if truncate_before_write is None else truncate_before_write
        )

        self.writer = StagingWriter(
            warehouse,
            codec=self.codec,
            sink_path=export_file_path,
            chunk_size=chunk_size,
            logger=self.logger
        )
        self.merger = MergeExecutor(warehouse, logger=self.logger)
        self.cleaner = CleanupExecutor(warehouse, logger=self.logger)
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, warehouse: Optional[WarehouseClient] = None, config=None) -> "ExportRunner":
        """Runner wired from application settings"""
        config = config or settings
        if warehouse is None:
            warehouse = create_warehouse(config.WAREHOUSE_URL)
        return cls(
            warehouse,
            export_file_path=config.EXPORT_FILE_PATH,
            truncate_before_write=config.TRUNCATE_STAGING_BEFORE_WRITE,
            chunk_size=config.UPLOAD_CHUNK_SIZE,
        )

    async def export(self, producer: BatchProducer, destination: Optional[ExportDestination] = None) -> ExportRun:
        """
        Run the full staged-merge export.

        Pipeline phases:
        1. Produce + serialize - pull batches and append them to the local sink
        2. Write - load the sink into staging (truncate disposition)
        3. Merge - upsert staging into target on longArticleId
        4. Cleanup - truncate staging

        Args:
            producer: Paginated source of products
            destination: Dataset, tables and batch size; defaults to settings

        Returns:
            ExportRun; ``bool(run)`` is True only when every stage succeeded.
            Failures carry ``failed_stage``, ``failure_reason`` (io,
            interrupted, backend) and ``error_message``.

        Raises:
            pydantic.ValidationError: Only when ``destination`` is omitted and
                the configured destination is invalid (for example staging
                and target tables with the same name). Nothing is exported then.
        """
        destination = destination or ExportDestination.from_settings()
        async with self._lock:
            return await self._run(producer, destination)

    async def run_performance_probe(
        self,
        destination: Optional[ExportDestination] = None,
        size: Optional[int] = None,
        template: Optional[Product] = None
    ) -> ExportRun:
        """Export ``size`` synthetic products and report elapsed milliseconds"""
        size = settings.PERFORMANCE_TEST_SIZE if size is None else size
        run = await self.export(SyntheticBatchProducer(size, template=template), destination)
        self.logger.info(
            f"Performance probe: {size} products in {run.elapsed_ms} ms "
            f"({'succeeded' if run else 'failed'})"
        )
        return run

    async def read_records(self, destination: Optional[ExportDestination] = None) -> List[Product]:
        """
        Read every product from the target table.

        Raises:
            WarehouseError: If the backend rejects the query
        """
        destination = destination or ExportDestination.from_settings()
        statement = build_select_statement(destination.dataset_name, destination.table_name)
        rows = await self.warehouse.fetch_rows(statement)
        self.logger.info(f"Read {len(rows)} products from {destination.target}")
        return [self.codec.from_storage_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, producer: BatchProducer, destination: ExportDestination) -> ExportRun:
        run = ExportRun.for_destination(destination)
        started = time.perf_counter()

        try:
            # --------------------------------------------------
            # PHASE 1: PRODUCE + SERIALIZE
            # --------------------------------------------------
            self._transition(run, RunState.PRODUCING)
            self.logger.info(
                f"Export {run.run_id} started: {destination.target} via {destination.staging}, "
                f"batch size {destination.batch_size}"
            )

            serialized = await self.writer.serialize(iter_batches(producer, destination.batch_size))
            run.rows_produced = serialized.rows_written
            run.batches_written = serialized.batches_written
            if not serialized.ok:
                return self._fail(run, serialized)

            # --------------------------------------------------
            # PHASE 2: STAGE WRITE
            # --------------------------------------------------
            self._transition(run, RunState.WRITING)

            if self.truncate_before_write:
                # Staging may be missing on a first run; the truncate load covers it
                cleared = await self.cleaner.truncate(
                    destination.dataset_name,
                    destination.staging_table_name,
                    stage="pre_truncate"
                )
                if not cleared.ok:
                    self.logger.warning(f"Pre-write truncate of {destination.staging} skipped: {cleared.detail}")

            written = await self.writer.upload(serialized, destination)
            run.rows_staged = written.rows_staged
            run.dropped_rows = written.dropped_rows
            if not written.ok:
                return self._fail(run, written)

            if written.dropped_rows:
                self.logger.warning(
                    f"{written.dropped_rows} products were rejected by staging and will not be merged",
                    extra={"error_context": {"run_id": str(run.run_id), "dropped_rows": written.dropped_rows}}
                )

            # --------------------------------------------------
            # PHASE 3: MERGE
            # --------------------------------------------------
            self._transition(run, RunState.MERGING)
            merged = await self.merger.merge(
                destination.dataset_name,
                destination.table_name,
                destination.staging_table_name
            )
            if not merged.ok:
                return self._fail(run, merged)

            # --------------------------------------------------
            # PHASE 4: CLEANUP
            # --------------------------------------------------
            self._transition(run, RunState.CLEANING)
            cleaned = await self.cleaner.truncate(destination.dataset_name, destination.staging_table_name)
            if not cleaned.ok:
                return self._fail(run, cleaned)

            self._transition(run, RunState.COMPLETED)
            self.logger.info(
                f"Export {run.run_id} completed: {run.rows_produced} products in "
                f"{run.batches_written} batches merged into {destination.target}"
            )
            return run

        except Exception as e:
            self.logger.exception(f"Unexpected error in export {run.run_id}")
            return self._fail(run, StageResult(
                stage=run.state.value,
                status=StageStatus.BACKEND_ERROR,
                detail=str(e),
                error_context={"error_type": type(e).__name__}
            ))

        finally:
            run.completed_at = datetime.utcnow()
            run.elapsed_ms = max(0, int((time.perf_counter() - started) * 1000))

    def _transition(self, run: ExportRun, state: RunState):
        if _STATE_ORDER.index(state) <= _STATE_ORDER.index(run.state):
            raise RuntimeError(f"Illegal export state transition {run.state.value} -> {state.value}")
        self.logger.debug(f"Export {run.run_id}: {run.state.value} -> {state.value}")
        run.state = state

    def _fail(self, run: ExportRun, result: StageResult) -> ExportRun:
        run.failed_stage = result.stage
        run.failure_reason = result.failure_reason
        run.error_message = result.detail
        error_context = {
            **result.error_context,
            "run_id": str(run.run_id),
            "state": run.state.value,
            "stage": result.stage,
            "reason": result.failure_reason.value if result.failure_reason else None,
            "rows_produced": run.rows_produced,
            "batches_written": run.batches_written,
        }
        run.state = RunState.FAILED
        self.logger.error(
            f"Export {run.run_id} failed at {result.stage}: {result.detail}",
            extra={"error_context": error_context}
        )
        return run
