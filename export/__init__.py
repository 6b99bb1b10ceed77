"""
Staged-merge export pipeline.

Modules:
    codec: Freshness stamping, record <-> storage row mapping, NDJSON lines
    producers: Pull-based batch producers (list-backed, synthetic) and iter_batches
    statements: Validated MERGE / TRUNCATE / SELECT statement builders
    staging: StagingWriter (local NDJSON sink -> staging table, truncate disposition)
    merge: MergeExecutor (staging -> target upsert)
    cleanup: CleanupExecutor (staging truncate)
    jobs: Submit-and-wait helper shared by merge and cleanup
    runner: ExportRunner orchestrator, performance probe and read-back

Architecture:
    Producer -> Codec -> StagingWriter -> MergeExecutor -> CleanupExecutor

    Each stage fully drains before the next starts. Stages return tagged
    StageResult values; the runner turns the first failure into a failed
    ExportRun and never raises.

Usage:
    from export.producers import ListBatchProducer
    from export.runner import ExportRunner
    from warehouse.factory import create_warehouse

Example:
    runner = ExportRunner(create_warehouse("memory://"))
    run = await runner.export(ListBatchProducer(products), destination)

    if not run:
        print(f"Export failed at {run.failed_stage}: {run.failure_reason}")
"""

__all__ = [
    "RecordCodec",
    "BatchProducer",
    "ListBatchProducer",
    "SyntheticBatchProducer",
    "iter_batches",
    "StagingWriter",
    "MergeExecutor",
    "CleanupExecutor",
    "ExportRunner",
]
