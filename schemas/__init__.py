"""
Pydantic schemas for records, destinations and pipeline outcomes.

Schemas:
    product: The exported product record and text coercion of warehouse values
    export: Destinations (TableRef, ExportDestination), tagged stage results
            (StageResult, SerializeOutcome, WriteOutcome, MergeOutcome) and
            the ExportRun lifecycle object

Usage:
    from schemas.product import Product
    from schemas.export import ExportDestination, ExportRun

Example:
    destination = ExportDestination(
        dataset_name="products",
        table_name="product",
        staging_table_name="product_tmp",
        batch_size=500
    )
    assert destination.staging.qualified_name == "products.product_tmp"
"""

__all__ = [
    "Product",
    "MODIFIED_FORMAT",
    "TableRef",
    "ExportDestination",
    "StageStatus",
    "StageResult",
    "SerializeOutcome",
    "WriteOutcome",
    "MergeOutcome",
    "ExportRun",
]
