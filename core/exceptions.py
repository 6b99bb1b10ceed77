"""
Custom exceptions for the export pipeline with structured error context.

Backends and helpers raise these; the pipeline stages catch them at their
boundary and turn them into a ``StageResult`` so that nothing escapes
``ExportRunner.export``.

Exception Hierarchy:
    ExportException (base)
    ├── SerializationError
    │   └── RowDecodeError
    ├── StatementError
    │   └── InvalidIdentifierError
    ├── WarehouseError
    │   └── JobFailedError
    └── WaitInterruptedError
"""

from typing import Optional, Dict, Any
from datetime import datetime


class ExportException(Exception):
    """
    Base exception for all export-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (table, job id, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Serialization Errors
# ============================================================================

class SerializationError(ExportException):
    """
    Raised when records cannot be written to or read from the local sink.

    Context should include:
        - sink_path: Path of the NDJSON sink
        - batch_index: Index of the batch being appended (if applicable)
    """
    pass


class RowDecodeError(SerializationError):
    """
    Raised when one NDJSON line cannot be decoded into a row.

    Context should include:
        - line_number: 1-based line number in the load stream
    """
    pass


# ============================================================================
# Statement Errors
# ============================================================================

class StatementError(ExportException):
    """Base exception for statement building failures."""
    pass


class InvalidIdentifierError(StatementError):
    """
    Raised when a dataset, table or column name is not a plain identifier.

    Context should include:
        - identifier: The rejected value
    """
    pass


# ============================================================================
# Warehouse Errors
# ============================================================================

class WarehouseError(ExportException):
    """
    Raised when the warehouse rejects a request or a job.

    Context should include:
        - operation: LOAD, MERGE, TRUNCATE or SELECT
        - table: Fully qualified table name
        - job_id: Backend job id (if a job was created)
    """
    pass


class JobFailedError(WarehouseError):
    """Raised when a submitted job reaches a terminal state with an error."""
    pass


class WaitInterruptedError(ExportException):
    """
    Raised when waiting for a backend job is interrupted locally.

    The job itself keeps running on the backend side.
    """
    pass
