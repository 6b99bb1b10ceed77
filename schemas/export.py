"""
Pydantic schemas for export destinations and pipeline outcomes
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID, uuid4
import enum
import re

from models.base import RunState, FailureReason

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(value: str) -> str:
    """Validator helper: plain identifiers only"""
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"{value!r} is not a valid identifier (letters, digits, underscore)")
    return value


# ============================================================================
# Destination Schemas
# ============================================================================

class TableRef(BaseModel):
    """A warehouse table identified by (dataset, table)"""
    dataset: str
    table: str

    @field_validator("dataset", "table")
    @classmethod
    def validate_names(cls, v):
        return check_identifier(v)

    @property
    def qualified_name(self) -> str:
        return f"{self.dataset}.{self.table}"

    def __str__(self) -> str:
        return self.qualified_name

    class Config:
        frozen = True


class ExportDestination(BaseModel):
    """Where an export run lands: dataset, target table, staging table, batch size"""
    dataset_name: str
    table_name: str
    staging_table_name: str
    batch_size: int = Field(500, gt=0)

    @field_validator("dataset_name", "table_name", "staging_table_name")
    @classmethod
    def validate_names(cls, v):
        return check_identifier(v)

    @model_validator(mode="after")
    def staging_differs_from_target(self):
        if self.table_name == self.staging_table_name:
            raise ValueError("staging_table_name must differ from table_name")
        return self

    @property
    def target(self) -> TableRef:
        return TableRef(dataset=self.dataset_name, table=self.table_name)

    @property
    def staging(self) -> TableRef:
        return TableRef(dataset=self.dataset_name, table=self.staging_table_name)

    @classmethod
    def from_settings(cls, config=None) -> "ExportDestination":
        """Build the configured default destination"""
        if config is None:
            from core.config import settings as config
        return cls(
            dataset_name=config.DATASET_NAME,
            table_name=config.TABLE_NAME,
            staging_table_name=config.TEMP_MERGE_TABLE_NAME,
            batch_size=config.BATCH_SIZE,
        )

    class Config:
        frozen = True


# ============================================================================
# Stage Outcome Schemas
# ============================================================================

class StageStatus(str, enum.Enum):
    """Tagged result of one pipeline stage"""
    SUCCESS = "success"
    IO_ERROR = "io_error"
    INTERRUPTED = "interrupted"
    BACKEND_ERROR = "backend_error"


_REASONS = {
    StageStatus.IO_ERROR: FailureReason.IO,
    StageStatus.INTERRUPTED: FailureReason.INTERRUPTED,
    StageStatus.BACKEND_ERROR: FailureReason.BACKEND,
}


class StageResult(BaseModel):
    """Outcome of a single stage: success or a tagged failure with detail"""
    stage: str
    status: StageStatus = StageStatus.SUCCESS
    detail: Optional[str] = None
    error_context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.SUCCESS

    @property
    def failure_reason(self) -> Optional[FailureReason]:
        return _REASONS.get(self.status)

    def failed_with(self, status: StageStatus, detail: str, context: Optional[Dict[str, Any]] = None):
        """Copy of this result carrying a failure"""
        return self.model_copy(update={
            "status": status,
            "detail": detail,
            "error_context": context or {},
        })


class SerializeOutcome(StageResult):
    """Local NDJSON sink produced from the batch stream"""
    stage: str = "serialize"
    sink_path: Optional[str] = None
    owns_sink: bool = False
    rows_written: int = 0
    batches_written: int = 0


class WriteOutcome(StageResult):
    """
    Staging load outcome.

    ``dropped_rows`` counts rows the backend rejected individually; they
    never reached staging and so are missing from the following merge even
    though the stage reports success.
    """
    stage: str = "stage_write"
    rows_written: int = 0
    batches_written: int = 0
    rows_staged: Optional[int] = None
    dropped_rows: int = 0
    job_id: Optional[str] = None


class MergeOutcome(StageResult):
    """Merge job outcome"""
    stage: str = "merge"
    job_id: Optional[str] = None
    affected_rows: Optional[int] = None


# ============================================================================
# Pipeline Run Schema
# ============================================================================

class ExportRun(BaseModel):
    """
    One export run: counts, state and terminal outcome.

    ``bool(run)`` is the run's success outcome.
    """
    run_id: UUID = Field(default_factory=uuid4)
    state: RunState = RunState.IDLE

    dataset_name: str
    table_name: str
    staging_table_name: str
    batch_size: int

    rows_produced: int = 0
    batches_written: int = 0
    rows_staged: Optional[int] = None
    dropped_rows: int = 0

    failed_stage: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    error_message: Optional[str] = None

    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    elapsed_ms: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.COMPLETED

    def __bool__(self) -> bool:
        return self.succeeded

    @classmethod
    def for_destination(cls, destination: ExportDestination) -> "ExportRun":
        return cls(
            dataset_name=destination.dataset_name,
            table_name=destination.table_name,
            staging_table_name=destination.staging_table_name,
            batch_size=destination.batch_size,
        )
