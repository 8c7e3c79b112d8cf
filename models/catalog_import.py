"""
Import workflow schemas: state machine, history, API requests and responses.
"""

from pydantic import BaseModel, Field
from typing import Any, Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class ImportState(str, Enum):
    """Caller-facing import workflow state."""
    IDLE = "idle"
    DIFFING = "diffing"
    REVIEWING = "reviewing"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


# Allowed transitions; anything not listed is rejected
IMPORT_STATE_TRANSITIONS = {
    ImportState.IDLE: {ImportState.DIFFING},
    ImportState.DIFFING: {ImportState.REVIEWING, ImportState.FAILED},
    ImportState.REVIEWING: {ImportState.EXECUTING, ImportState.IDLE},
    ImportState.EXECUTING: {ImportState.SUCCEEDED, ImportState.FAILED},
    ImportState.SUCCEEDED: {ImportState.ROLLED_BACK},
    ImportState.FAILED: {ImportState.ROLLED_BACK},
    ImportState.ROLLED_BACK: set(),
}


def is_valid_import_state_transition(current: ImportState, new: ImportState) -> bool:
    """
    Check if an import state transition is valid.

    Rules:
    - Forward only: idle → diffing → reviewing → executing → succeeded | failed
    - A reviewed preview can be abandoned (reviewing → idle)
    - rolled_back is terminal, so a snapshot is consumed once
    """
    return new in IMPORT_STATE_TRANSITIONS.get(current, set())


class ImportStage(str, Enum):
    """Apply stages, in order."""
    SNAPSHOT = "snapshot"
    VALIDATE = "validate"
    APPLY = "apply"
    HISTORY = "history"


class ImportHistoryStatus(str, Enum):
    """Status of an import_history row."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Operation(str, Enum):
    """Operations guarded by the operation lock."""
    IMPORT = "import"
    ROLLBACK = "rollback"


# ===================
# METADATA / RESULTS
# ===================

class ImportMetadata(BaseSchema):
    """Source-file metadata recorded with each import."""

    file_name: str = Field(..., min_length=1)
    file_size_bytes: int = Field(0, ge=0)
    file_hash: Optional[str] = None
    imported_by: Optional[str] = None


class ImportSummary(BaseModel):
    """Counts written to import_history.import_summary."""

    adds: int = 0
    updates: int = 0
    deletes: int = 0

    @property
    def total_changes(self) -> int:
        return self.adds + self.updates + self.deletes


class ImportResultSummary(BaseModel):
    total_adds: int
    total_updates: int
    total_deletes: int
    total_changes: int


class ImportResult(BaseModel):
    """Successful apply."""

    import_id: str
    summary: ImportResultSummary
    changes_by_sheet: dict[str, dict[str, int]] = Field(default_factory=dict)
    execution_time_ms: int


class RollbackResult(BaseModel):
    """Successful rollback."""

    import_id: str
    state: ImportState = ImportState.ROLLED_BACK
    restored_counts: dict[str, int]
    execution_time_ms: int


class ImportHistoryEntry(BaseModel):
    """import_history row without the snapshot payload."""

    id: str
    file_name: Optional[str] = None
    file_size_bytes: Optional[int] = None
    file_hash: Optional[str] = None
    imported_by: Optional[str] = None
    rows_imported: Optional[int] = None
    import_summary: Optional[dict[str, Any]] = None
    status: Optional[str] = None
    stage: Optional[str] = None
    error_message: Optional[str] = None
    execution_time_ms: Optional[int] = None
    created_at: Optional[datetime] = None


class ImportHistoryListResponse(BaseModel):
    data: list[ImportHistoryEntry]
    total: int


class OperationStatusResponse(BaseModel):
    """Current locked operation, for progress polling."""

    running: bool
    operation: Optional[Operation] = None
    stage: Optional[str] = None
    import_id: Optional[str] = None
    started_at: Optional[datetime] = None


# ===================
# REQUESTS
# ===================

class ExecuteImportRequest(BaseSchema):
    preview_id: str = Field(..., min_length=1)
    acknowledged: bool = False


class RollbackRequest(BaseSchema):
    import_id: str = Field(..., min_length=1)


class ImportPreviewResponse(BaseModel):
    """Preview payload returned to the review UI."""

    preview_id: str
    state: ImportState
    file_name: str
    expires_in_minutes: int
    diff: dict[str, Any]
    validation: dict[str, Any]
