"""
Warehouse backends for the export pipeline.

Modules:
    base: Backend interface (WarehouseClient, WriteChannel, WarehouseJob,
          WriteDisposition, JobState, JobError) and the shared NDJSON load
          stream parser
    memory: In-process warehouse for dry runs and pipeline tests
    sql: SQLAlchemy async warehouse (PostgreSQL MERGE, schemas as datasets)
    factory: create_warehouse(url) backend selection

Usage:
    from warehouse.factory import create_warehouse

    warehouse = create_warehouse("memory://")
"""

__all__ = [
    "WarehouseClient",
    "WriteChannel",
    "WarehouseJob",
    "WriteDisposition",
    "JobState",
    "JobError",
    "InMemoryWarehouse",
    "SqlWarehouse",
    "create_warehouse",
]
