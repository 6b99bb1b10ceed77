"""
SQLAlchemy table definitions and shared enums.

Models:
    base: Shared enums (RunState, FailureReason) and metadata factory
    product: Product table definition used for both target and staging
             tables, plus the storage column names

Warehouse tables are named at runtime (dataset and table names come from
configuration), so product tables are built with ``product_table`` against
a fresh ``MetaData`` rather than declared as ORM classes.

Usage:
    from models.base import RunState, FailureReason
    from models.product import product_table, PRODUCT_COLUMNS, KEY_COLUMN
"""

__all__ = [
    "RunState",
    "FailureReason",
    "new_metadata",
    "product_table",
    "PRODUCT_COLUMNS",
    "VALUE_COLUMNS",
    "KEY_COLUMN",
]
