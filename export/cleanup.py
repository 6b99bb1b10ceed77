"""
Staging table cleanup
"""

from typing import Optional
import logging

from core.exceptions import InvalidIdentifierError
from export.jobs import run_statement
from export.statements import build_truncate_statement
from schemas.export import StageResult, StageStatus
from warehouse.base import WarehouseClient


class CleanupExecutor:
    """Truncates the staging table so the next run starts empty"""

    def __init__(self, warehouse: WarehouseClient, logger: Optional[logging.Logger] = None):
        self.warehouse = warehouse
        self.logger = logger or logging.getLogger(__name__)

    async def truncate(self, dataset_name: str, staging_table: str, stage: str = "cleanup") -> StageResult:
        result = StageResult(stage=stage)

        try:
            statement = build_truncate_statement(dataset_name, staging_table)
        except InvalidIdentifierError as e:
            self.logger.error(f"Truncate statement rejected: {e.message}", extra={"error_context": e.to_dict()})
            return result.failed_with(StageStatus.BACKEND_ERROR, e.message, e.context)

        result, _ = await run_statement(self.warehouse, statement, result, self.logger)
        if result.ok:
            self.logger.info(f"Cleanup done: truncated {dataset_name}.{staging_table}")
        return result
