"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,

    # Workbook
    WorkbookSchemaError,

    # Import
    PreviewNotFoundError,
    ImportNotApplicableError,
    AcknowledgmentRequiredError,
    ImportInProgressError,
    InvalidStateTransitionError,
    ImportExecutionError,
    StaleDiffError,
    ImportTimeoutError,

    # Rollback
    SnapshotNotFoundError,
    SequentialRollbackError,
    RestoreWriteFailedError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",

    # Workbook
    "WorkbookSchemaError",

    # Import
    "PreviewNotFoundError",
    "ImportNotApplicableError",
    "AcknowledgmentRequiredError",
    "ImportInProgressError",
    "InvalidStateTransitionError",
    "ImportExecutionError",
    "StaleDiffError",
    "ImportTimeoutError",

    # Rollback
    "SnapshotNotFoundError",
    "SequentialRollbackError",
    "RestoreWriteFailedError",
]
