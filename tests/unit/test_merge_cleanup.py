"""
Unit tests for the merge and cleanup executors
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from core.exceptions import WarehouseError
from export.cleanup import CleanupExecutor
from export.merge import MergeExecutor
from schemas.export import StageStatus
from warehouse.base import JobError, WarehouseJob
from warehouse.memory import InMemoryWarehouse


def stored(key, title, modified="2024-01-15T10:00:00.000000"):
    return {
        "longArticleId": key,
        "title": title,
        "article": f"ART-{key}",
        "descriptionContent": "",
        "mainCategoryTitle": "Electronics",
        "categoryTree": "Electronics",
        "image": "",
        "producerTitle": "Acme",
        "modified": modified,
    }


class TestMergeExecutor:
    """Test staging -> target upsert"""

    @pytest.mark.asyncio
    async def test_upsert(self, warehouse, destination):
        warehouse.create_table(destination.target, [
            stored("1", "Old", "2023-01-01T00:00:00.000000"),
            stored("2", "Kept", "2023-01-01T00:00:00.000000"),
        ])
        warehouse.create_table(destination.staging, [stored("1", "New"), stored("3", "Added")])

        outcome = await MergeExecutor(warehouse).merge("products", "product", "product_tmp")

        assert outcome.ok
        assert outcome.affected_rows == 2
        assert outcome.job_id is not None
        target = {r["longArticleId"]: r for r in warehouse.rows(destination.target)}
        assert set(target) == {"1", "2", "3"}
        assert target["1"]["title"] == "New"
        assert target["1"]["modified"] == "2024-01-15T10:00:00.000000"
        assert target["2"]["title"] == "Kept"
        assert target["2"]["modified"] == "2023-01-01T00:00:00.000000"
        assert target["3"] == stored("3", "Added")

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, warehouse, destination):
        warehouse.create_table(destination.staging, [stored("1", "A"), stored("2", "B")])
        executor = MergeExecutor(warehouse)

        await executor.merge("products", "product", "product_tmp")
        first = warehouse.rows(destination.target)
        await executor.merge("products", "product", "product_tmp")

        assert warehouse.rows(destination.target) == first

    @pytest.mark.asyncio
    async def test_empty_staging_leaves_target(self, warehouse, destination):
        warehouse.create_table(destination.target, [stored("1", "A")])

        outcome = await MergeExecutor(warehouse).merge("products", "product", "product_tmp")

        assert outcome.ok
        assert outcome.affected_rows == 0
        assert warehouse.rows(destination.target) == [stored("1", "A")]

    @pytest.mark.asyncio
    async def test_invalid_identifier_never_reaches_backend(self, warehouse):
        warehouse.query = AsyncMock()

        outcome = await MergeExecutor(warehouse).merge("products", "product; DROP TABLE x", "product_tmp")

        assert outcome.status == StageStatus.BACKEND_ERROR
        assert outcome.failure_reason.value == "backend"
        warehouse.query.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_staging_table(self, warehouse, destination):
        del warehouse.tables[("products", "product_tmp")]

        outcome = await MergeExecutor(warehouse).merge("products", "product", "product_tmp")

        assert outcome.status == StageStatus.BACKEND_ERROR
        assert "Not found" in outcome.detail

    @pytest.mark.asyncio
    async def test_rejected_submission(self, warehouse):
        warehouse.query = AsyncMock(side_effect=WarehouseError("Quota exceeded", context={"operation": "MERGE"}))

        outcome = await MergeExecutor(warehouse).merge("products", "product", "product_tmp")

        assert outcome.status == StageStatus.BACKEND_ERROR
        assert outcome.detail == "Quota exceeded"

    @pytest.mark.asyncio
    async def test_execution_errors_fail_merge(self, warehouse):
        async def work(job):
            job.execution_errors.append(JobError(reason="invalidQuery", message="Column mismatch"))
            return 0

        async def query(statement):
            return WarehouseJob("MERGE", work)

        warehouse.query = query

        outcome = await MergeExecutor(warehouse).merge("products", "product", "product_tmp")

        assert outcome.status == StageStatus.BACKEND_ERROR
        assert outcome.error_context["execution_errors"] == ["Column mismatch"]

    @pytest.mark.asyncio
    async def test_interrupted_wait(self, warehouse):
        with patch.object(WarehouseJob, "wait", AsyncMock(side_effect=asyncio.CancelledError())):
            outcome = await MergeExecutor(warehouse).merge("products", "product", "product_tmp")

        assert outcome.status == StageStatus.INTERRUPTED
        assert outcome.job_id is not None


class TestCleanupExecutor:
    """Test staging truncation"""

    @pytest.mark.asyncio
    async def test_truncate(self, warehouse, destination):
        warehouse.create_table(destination.staging, [stored("1", "A")])

        result = await CleanupExecutor(warehouse).truncate("products", "product_tmp")

        assert result.ok
        assert result.stage == "cleanup"
        assert warehouse.rows(destination.staging) == []

    @pytest.mark.asyncio
    async def test_truncate_empty_table(self, warehouse, destination):
        result = await CleanupExecutor(warehouse).truncate("products", "product_tmp")

        assert result.ok
        assert warehouse.rows(destination.staging) == []

    @pytest.mark.asyncio
    async def test_custom_stage_name(self, warehouse):
        result = await CleanupExecutor(warehouse).truncate("products", "product_tmp", stage="pre_truncate")

        assert result.stage == "pre_truncate"

    @pytest.mark.asyncio
    async def test_missing_table(self):
        result = await CleanupExecutor(InMemoryWarehouse()).truncate("products", "product_tmp")

        assert result.status == StageStatus.BACKEND_ERROR

    @pytest.mark.asyncio
    async def test_invalid_identifier(self, warehouse):
        result = await CleanupExecutor(warehouse).truncate("products", "tmp`")

        assert result.status == StageStatus.BACKEND_ERROR
