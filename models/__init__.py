"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.catalog import (
    WorkflowStatus,
    AliasType,
    CatalogTable,
    TABLE_INSERT_ORDER,
    TABLE_DELETE_ORDER,
    PartWrite,
    VehicleApplicationWrite,
    CrossReferenceWrite,
    VehicleAliasWrite,
    to_write_record,
)
from models.catalog_import import (
    ImportState,
    is_valid_import_state_transition,
    ImportStage,
    ImportHistoryStatus,
    Operation,
    ImportMetadata,
    ImportSummary,
    ImportResultSummary,
    ImportResult,
    RollbackResult,
    ImportHistoryEntry,
    ImportHistoryListResponse,
    OperationStatusResponse,
    ExecuteImportRequest,
    RollbackRequest,
    ImportPreviewResponse,
)

__all__ = [
    # Base
    "BaseSchema",

    # Catalog
    "WorkflowStatus",
    "AliasType",
    "CatalogTable",
    "TABLE_INSERT_ORDER",
    "TABLE_DELETE_ORDER",
    "PartWrite",
    "VehicleApplicationWrite",
    "CrossReferenceWrite",
    "VehicleAliasWrite",
    "to_write_record",

    # Import workflow
    "ImportState",
    "is_valid_import_state_transition",
    "ImportStage",
    "ImportHistoryStatus",
    "Operation",
    "ImportMetadata",
    "ImportSummary",
    "ImportResultSummary",
    "ImportResult",
    "RollbackResult",
    "ImportHistoryEntry",
    "ImportHistoryListResponse",
    "OperationStatusResponse",
    "ExecuteImportRequest",
    "RollbackRequest",
    "ImportPreviewResponse",
]
