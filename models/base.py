from sqlalchemy import MetaData
import enum


# ============================================================================
# ENUMS
# ============================================================================

class RunState(str, enum.Enum):
    """Export run lifecycle states, in order"""
    IDLE = "idle"
    PRODUCING = "producing"
    WRITING = "writing"
    MERGING = "merging"
    CLEANING = "cleaning"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, enum.Enum):
    """Why an export run failed"""
    IO = "io"
    INTERRUPTED = "interrupted"
    BACKEND = "backend"


def new_metadata() -> MetaData:
    """Fresh metadata for dynamically named warehouse tables"""
    return MetaData()
