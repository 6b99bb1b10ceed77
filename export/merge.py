"""
Merge (upsert) staging into the target table
"""

from typing import Optional
import logging

from core.exceptions import InvalidIdentifierError
from export.jobs import run_statement
from export.statements import build_merge_statement
from schemas.export import MergeOutcome, StageStatus
from warehouse.base import WarehouseClient


class MergeExecutor:
    """
    Runs the staging -> target MERGE and waits for it.

    Ensures:
    - One set-based statement per run (matched rows overwritten, new keys
      inserted, nothing deleted)
    - Re-running with identical staging content leaves target unchanged
    - Any backend error is reported as a failed MergeOutcome
    """

    def __init__(self, warehouse: WarehouseClient, logger: Optional[logging.Logger] = None):
        self.warehouse = warehouse
        self.logger = logger or logging.getLogger(__name__)

    async def merge(self, dataset_name: str, target_table: str, staging_table: str) -> MergeOutcome:
        outcome = MergeOutcome()

        try:
            statement = build_merge_statement(dataset_name, target_table, staging_table)
        except InvalidIdentifierError as e:
            self.logger.error(f"Merge statement rejected: {e.message}", extra={"error_context": e.to_dict()})
            return outcome.failed_with(StageStatus.BACKEND_ERROR, e.message, e.context)

        self.logger.info(f"Merging {dataset_name}.{staging_table} into {dataset_name}.{target_table}")

        outcome, job = await run_statement(self.warehouse, statement, outcome, self.logger)
        if job is not None:
            outcome = outcome.model_copy(update={"job_id": job.job_id, "affected_rows": job.affected_rows})

        if outcome.ok:
            self.logger.info(
                f"Merge done: {outcome.affected_rows} rows merged into {dataset_name}.{target_table}"
            )
        return outcome
