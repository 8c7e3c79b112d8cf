"""
Custom exception classes for the application.

Every error carries a machine-readable code, an HTTP status and a details
dict so routes can return them unchanged via to_dict().
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "SNAPSHOT_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None,
        message: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=message or f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource or state (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# WORKBOOK ERRORS
# ===================

class WorkbookSchemaError(ValidationError):
    """
    Workbook structure is unusable.

    Raised by the parser before any diffing happens: unreadable file,
    missing sheet, missing required or hidden column.
    """

    def __init__(
        self,
        message: str,
        sheet: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="WORKBOOK_SCHEMA_ERROR",
            message=message,
            details={"sheet": sheet, **(details or {})}
        )


# ===================
# IMPORT ERRORS
# ===================

class PreviewNotFoundError(NotFoundError):
    """Preview expired or never existed."""

    def __init__(self, preview_id: str):
        super().__init__(
            resource="Import preview",
            identifier=preview_id,
            code="PREVIEW_NOT_FOUND",
            message="Import preview not found or expired. Upload the file again."
        )


class ImportNotApplicableError(ValidationError):
    """Validation errors exist; the import cannot be applied."""

    def __init__(self, error_count: int):
        super().__init__(
            code="IMPORT_HAS_ERRORS",
            message=f"Import has {error_count} validation error(s). Fix the file and upload it again.",
            details={"error_count": error_count}
        )


class AcknowledgmentRequiredError(ConflictError):
    """Warnings exist and the caller did not acknowledge them."""

    def __init__(self, warning_count: int):
        super().__init__(
            code="ACKNOWLEDGMENT_REQUIRED",
            message=f"Import has {warning_count} warning(s) that must be acknowledged before applying",
            details={"warning_count": warning_count}
        )


class ImportInProgressError(ConflictError):
    """Another apply or rollback holds the operation lock."""

    def __init__(self, operation: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(
            code="IMPORT_IN_PROGRESS",
            message="Another import or rollback is currently running",
            details={"running_operation": operation, "stage": stage}
        )


class InvalidStateTransitionError(ConflictError):
    """Import workflow cannot move to the requested state."""

    def __init__(self, current_state: str, new_state: str):
        super().__init__(
            code="INVALID_IMPORT_STATE_TRANSITION",
            message=f"Cannot transition import from {current_state} to {new_state}",
            details={"current_state": current_state, "new_state": new_state}
        )


class ImportExecutionError(AppError):
    """
    Apply failed at a specific stage.

    If the snapshot stage completed, import_id points at the persisted
    snapshot that can be used for rollback.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        import_id: Optional[str] = None,
        code: str = "IMPORT_EXECUTION_FAILED",
        status_code: int = 500,
        details: Optional[dict] = None
    ):
        self.stage = stage
        self.import_id = import_id
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details={
                "stage": stage,
                "import_id": import_id,
                "rollback_available": import_id is not None,
                **(details or {})
            }
        )


class StaleDiffError(ImportExecutionError):
    """Catalog changed between preview and apply."""

    def __init__(self, import_id: Optional[str], conflicts: list[str]):
        super().__init__(
            stage="validate",
            code="STALE_IMPORT_PREVIEW",
            status_code=409,
            message=(
                f"Catalog changed since the preview was computed ({len(conflicts)} conflict(s)). "
                "Upload the file again."
            ),
            import_id=import_id,
            details={"conflicts": conflicts[:50]}
        )


class ImportTimeoutError(AppError):
    """Apply or rollback exceeded the execution timeout."""

    def __init__(self, operation: str, stage: str, timeout_seconds: int):
        self.stage = stage
        super().__init__(
            code="IMPORT_TIMEOUT",
            message=f"{operation} exceeded {timeout_seconds}s during stage '{stage}'",
            status_code=504,
            details={"operation": operation, "stage": stage, "timeout_seconds": timeout_seconds}
        )


# ===================
# ROLLBACK ERRORS
# ===================

class SnapshotNotFoundError(NotFoundError):
    """Snapshot missing: already rolled back, pruned, or never existed."""

    def __init__(self, import_id: str):
        super().__init__(
            resource="Import snapshot",
            identifier=import_id,
            code="SNAPSHOT_NOT_FOUND",
            message="Import snapshot not found. It may already have been rolled back."
        )


class SequentialRollbackError(ConflictError):
    """Only the newest import may be rolled back."""

    def __init__(self, newest_import_id: str, requested_import_id: str):
        super().__init__(
            code="SEQUENTIAL_ROLLBACK_REQUIRED",
            message="Rollback the newest import first",
            details={
                "newest_import_id": newest_import_id,
                "requested_import_id": requested_import_id
            }
        )


class RestoreWriteFailedError(AppError):
    """
    Restore failed part-way.

    The catalog may be partially restored. The snapshot is kept so the
    rollback can be retried.
    """

    def __init__(
        self,
        import_id: str,
        step: str,
        table: Optional[str],
        message: str
    ):
        self.step = step
        self.table = table
        target = f"{step} {table}" if table else step
        super().__init__(
            code="RESTORE_WRITE_FAILED",
            message=f"Rollback failed while {target}: {message}",
            status_code=500,
            details={
                "import_id": import_id,
                "step": step,
                "table": table,
                "snapshot_retained": step != "consuming"
            }
        )
