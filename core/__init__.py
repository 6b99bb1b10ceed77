"""
Core utilities and configuration for the product export pipeline.

Modules:
    config: Application configuration and environment variable management
    database: Async engine creation for the SQL warehouse backend
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import create_warehouse_engine
    from core.exceptions import WarehouseError, SerializationError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "create_warehouse_engine",
    "setup_logging",
    # Exceptions
    "ExportException",
    "SerializationError",
    "RowDecodeError",
    "StatementError",
    "InvalidIdentifierError",
    "WarehouseError",
    "JobFailedError",
    "WaitInterruptedError",
]
