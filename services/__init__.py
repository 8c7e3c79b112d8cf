"""
Business logic services.

Each service handles one stage of the catalog import pipeline.
"""

from services.catalog_repository import CatalogRepository, get_catalog_repository
from services.diff_engine import (
    ChangeKind,
    DeleteReason,
    DiffItem,
    SheetDiff,
    DiffResult,
    compute_diff,
    diff_sheet,
)
from services.validation_engine import (
    ValidationEngine,
    ValidationIssue,
    ValidationResult,
    validate_import,
)
from services.snapshot_service import ImportSnapshot, SnapshotService
from services.import_history_service import ImportHistoryService, get_import_history_service
from services.import_executor import ImportExecutor
from services.rollback_service import RollbackService, get_rollback_service
from services.catalog_export_service import CatalogExportService, get_catalog_export_service
from services.catalog_import_service import CatalogImportService, get_catalog_import_service

__all__ = [
    "CatalogRepository",
    "get_catalog_repository",
    "ChangeKind",
    "DeleteReason",
    "DiffItem",
    "SheetDiff",
    "DiffResult",
    "compute_diff",
    "diff_sheet",
    "ValidationEngine",
    "ValidationIssue",
    "ValidationResult",
    "validate_import",
    "ImportSnapshot",
    "SnapshotService",
    "ImportHistoryService",
    "get_import_history_service",
    "ImportExecutor",
    "RollbackService",
    "get_rollback_service",
    "CatalogExportService",
    "get_catalog_export_service",
    "CatalogImportService",
    "get_catalog_import_service",
]
