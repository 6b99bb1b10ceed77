"""
Submit a statement and wait for its job, translating failures into a StageResult
"""

from typing import Optional, Tuple, TypeVar
import asyncio
import logging

from core.exceptions import WaitInterruptedError, WarehouseError
from schemas.export import StageResult, StageStatus
from warehouse.base import WarehouseClient, WarehouseJob

R = TypeVar("R", bound=StageResult)


async def run_statement(
    warehouse: WarehouseClient,
    statement,
    result: R,
    logger: logging.Logger
) -> Tuple[R, Optional[WarehouseJob]]:
    """
    Run one statement job to completion.

    Any job error, including row-level execution errors, fails the stage.
    """
    context = {"stage": result.stage, "operation": statement.operation}
    job = None
    try:
        job = await warehouse.query(statement)
        context["job_id"] = job.job_id
        logger.debug(f"Waiting for {statement.operation} job {job.job_id}")
        await job.wait()
        job.raise_for_error()
    except (asyncio.CancelledError, WaitInterruptedError):
        logger.error(f"Interrupted while waiting for {statement.operation} job", extra={"error_context": context})
        return result.failed_with(
            StageStatus.INTERRUPTED,
            f"Interrupted while waiting for {statement.operation} job",
            context
        ), job
    except WarehouseError as e:
        logger.error(f"{statement.operation} failed: {e.message}", extra={"error_context": e.to_dict()})
        return result.failed_with(StageStatus.BACKEND_ERROR, e.message, {**context, **e.context}), job

    if job.execution_errors:
        context["execution_errors"] = [e.message for e in job.execution_errors]
        return result.failed_with(
            StageStatus.BACKEND_ERROR,
            f"{statement.operation} reported {len(job.execution_errors)} execution errors",
            context
        ), job

    return result, job
