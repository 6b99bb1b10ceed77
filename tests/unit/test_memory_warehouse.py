"""
Unit tests for the in-process warehouse backend
"""

import asyncio
import json
import pytest

from core.exceptions import JobFailedError, WaitInterruptedError, WarehouseError
from export.statements import build_merge_statement, build_select_statement, build_truncate_statement
from schemas.export import TableRef
from warehouse.base import JobState, WarehouseJob, WriteDisposition, parse_load_lines
from warehouse.memory import InMemoryWarehouse

TARGET = TableRef(dataset="products", table="product")
STAGING = TableRef(dataset="products", table="product_tmp")


def ndjson(*rows) -> bytes:
    return b"".join(json.dumps(row).encode("utf-8") + b"\n" for row in rows)


def row(key, title="Title", **extra):
    data = {"longArticleId": str(key), "title": title, "modified": "2024-01-15T10:00:00.000000"}
    data.update(extra)
    return data


async def load(warehouse, table, payload, disposition=WriteDisposition.WRITE_TRUNCATE):
    channel = await warehouse.open_writer(table, disposition)
    await channel.write(payload)
    job = await channel.close()
    return await job.wait()


class TestParseLoadLines:
    """Test load stream validation"""

    def test_valid_rows_fill_missing_columns(self):
        rows, errors = parse_load_lines([b'{"longArticleId": "1", "title": "A"}', b""])

        assert errors == []
        assert rows[0]["longArticleId"] == "1"
        assert rows[0]["title"] == "A"
        assert rows[0]["image"] is None

    def test_rejected_lines_are_reported(self):
        lines = [
            b'{"longArticleId": "1"}',
            b'{"longArticleId": ',
            b'{"longArticleId": "3", "price": 10}',
            b'{"title": "no key"}',
            b'"just a string"',
        ]

        rows, errors = parse_load_lines(lines)

        assert [r["longArticleId"] for r in rows] == ["1"]
        assert [e.location for e in errors] == ["line 2", "line 3", "line 4", "line 5"]
        assert "price" in errors[1].message
        assert "longArticleId" in errors[2].message


class TestWarehouseJob:
    """Test job lifecycle"""

    @pytest.mark.asyncio
    async def test_successful_job(self):
        async def work(job):
            return 3

        job = await WarehouseJob("MERGE", work).wait()

        assert job.state == JobState.DONE
        assert job.done
        assert not job.failed
        assert job.affected_rows == 3
        job.raise_for_error()

    @pytest.mark.asyncio
    async def test_failed_job(self):
        async def work(job):
            raise WarehouseError("boom", context={"operation": "MERGE"})

        job = await WarehouseJob("MERGE", work, job_id="job_1").wait()

        assert job.failed
        assert job.error.reason == "backendError"
        assert job.error.message == "boom"
        with pytest.raises(JobFailedError) as exc_info:
            job.raise_for_error()
        assert exc_info.value.context["job_id"] == "job_1"
        assert exc_info.value.context["job_reason"] == "backendError"

    @pytest.mark.asyncio
    async def test_failure_message_includes_driver_error(self):
        async def work(job):
            raise WarehouseError("MERGE failed", original_exception=ValueError("duplicate key"))

        job = await WarehouseJob("MERGE", work).wait()

        assert job.error.message == "MERGE failed: duplicate key"

    @pytest.mark.asyncio
    async def test_cancelled_wait_leaves_job_running(self):
        release = asyncio.Event()

        async def work(job):
            await release.wait()
            return 7

        job = WarehouseJob("MERGE", work, job_id="job_2")
        waiter = asyncio.ensure_future(job.wait())
        await asyncio.sleep(0)
        waiter.cancel()

        with pytest.raises(WaitInterruptedError) as exc_info:
            await waiter

        assert exc_info.value.context["job_id"] == "job_2"
        assert not job.done

        release.set()
        await job.wait()

        assert job.done
        assert job.affected_rows == 7

    @pytest.mark.asyncio
    async def test_unexpected_error_is_captured(self):
        async def work(job):
            raise KeyError("missing")

        job = await WarehouseJob("LOAD", work).wait()

        assert job.error.reason == "KeyError"


class TestInMemoryWarehouse:
    """Test loads and statement execution"""

    @pytest.mark.asyncio
    async def test_truncate_load_replaces_rows(self):
        warehouse = InMemoryWarehouse()
        warehouse.create_table(STAGING, [row("old")])

        job = await load(warehouse, STAGING, ndjson(row(1), row(2)))

        assert job.affected_rows == 2
        assert [r["longArticleId"] for r in warehouse.rows(STAGING)] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_load_creates_missing_table(self):
        warehouse = InMemoryWarehouse()

        await load(warehouse, STAGING, ndjson(row(1)))

        assert warehouse.has_table(STAGING)
        assert len(warehouse.rows(STAGING)) == 1

    @pytest.mark.asyncio
    async def test_rejected_rows_become_execution_errors(self):
        warehouse = InMemoryWarehouse()

        job = await load(warehouse, STAGING, ndjson(row(1), {"title": "keyless"}, row(3, bogus="x")))

        assert not job.failed
        assert job.affected_rows == 1
        assert len(job.execution_errors) == 2

    @pytest.mark.asyncio
    async def test_write_after_close(self):
        warehouse = InMemoryWarehouse()
        channel = await warehouse.open_writer(STAGING, WriteDisposition.WRITE_TRUNCATE)
        await channel.close()

        with pytest.raises(WarehouseError):
            await channel.write(b"{}\n")

    @pytest.mark.asyncio
    async def test_abort_discards_stream(self):
        warehouse = InMemoryWarehouse()
        warehouse.create_table(STAGING, [row(1)])
        channel = await warehouse.open_writer(STAGING, WriteDisposition.WRITE_TRUNCATE)
        await channel.write(ndjson(row(2)))

        await channel.abort()

        assert channel.closed
        assert [r["longArticleId"] for r in warehouse.rows(STAGING)] == ["1"]

    @pytest.mark.asyncio
    async def test_merge_updates_and_inserts(self):
        warehouse = InMemoryWarehouse()
        warehouse.create_table(TARGET, [row(1, "Old"), row(2, "Untouched")])
        warehouse.create_table(STAGING, [row(1, "New"), row(3, "Inserted")])

        job = await warehouse.query(build_merge_statement("products", "product", "product_tmp"))
        await job.wait()

        assert job.affected_rows == 2
        titles = {r["longArticleId"]: r["title"] for r in warehouse.rows(TARGET)}
        assert titles == {"1": "New", "2": "Untouched", "3": "Inserted"}

    @pytest.mark.asyncio
    async def test_merge_rejects_duplicate_source_keys(self):
        warehouse = InMemoryWarehouse()
        warehouse.create_table(TARGET, [row(1, "Old")])
        warehouse.create_table(STAGING, [row(1, "A"), row(1, "B")])

        job = await warehouse.query(build_merge_statement("products", "product", "product_tmp"))
        await job.wait()

        assert job.failed
        assert warehouse.rows(TARGET)[0]["title"] == "Old"

    @pytest.mark.asyncio
    async def test_statement_on_missing_table_fails_job(self):
        warehouse = InMemoryWarehouse()

        job = await warehouse.query(build_truncate_statement("products", "product_tmp"))
        await job.wait()

        assert job.failed
        assert "Not found" in job.error.message

    @pytest.mark.asyncio
    async def test_truncate(self):
        warehouse = InMemoryWarehouse()
        warehouse.create_table(STAGING, [row(1), row(2)])

        job = await warehouse.query(build_truncate_statement("products", "product_tmp"))
        await job.wait()

        assert job.affected_rows == 2
        assert warehouse.rows(STAGING) == []

    @pytest.mark.asyncio
    async def test_fetch_rows(self):
        warehouse = InMemoryWarehouse()
        warehouse.create_table(TARGET, [row(1, "A")])

        rows = await warehouse.fetch_rows(build_select_statement("products", "product", columns=("longArticleId", "title")))

        assert rows == [{"longArticleId": "1", "title": "A"}]

    @pytest.mark.asyncio
    async def test_fetch_rows_requires_select(self):
        warehouse = InMemoryWarehouse()
        warehouse.create_table(STAGING)

        with pytest.raises(WarehouseError):
            await warehouse.fetch_rows(build_truncate_statement("products", "product_tmp"))
