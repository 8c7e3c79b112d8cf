"""
Catalog bulk import API routes.

    POST /api/admin/import/preview   upload workbook → diff + validation
    POST /api/admin/import/execute   apply a reviewed preview
    POST /api/admin/import/rollback  restore the catalog from a snapshot
    GET  /api/admin/import/history   recent imports
    GET  /api/admin/import/status    running import/rollback, if any
"""

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from exceptions import AppError
from models.catalog_import import (
    ExecuteImportRequest,
    ImportHistoryListResponse,
    ImportPreviewResponse,
    ImportResult,
    OperationStatusResponse,
    RollbackRequest,
    RollbackResult,
)
from services.catalog_import_service import get_catalog_import_service
from services.import_history_service import get_import_history_service
from services.operation_lock import get_operation_lock

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# ROUTES
# ===================

@router.post("/preview", response_model=ImportPreviewResponse)
async def preview_import(
    file: UploadFile = File(...),
    imported_by: Optional[str] = Form(None),
):
    """
    Parse a catalog workbook and return the diff and validation.

    Nothing is written until /execute is called with the returned preview_id.

    Raises:
        422: Workbook schema error (missing sheet/column, bad file)
    """
    logger.info("import_preview_started", filename=file.filename, content_type=file.content_type)

    try:
        content = await file.read()
        return get_catalog_import_service().preview(
            content,
            file_name=file.filename or "upload.xlsx",
            imported_by=imported_by,
        )
    except Exception as e:
        return handle_error(e)


@router.post("/execute", response_model=ImportResult)
def execute_import(request: ExecuteImportRequest):
    """
    Apply a previewed import.

    Raises:
        404: Preview not found or expired
        409: Warnings not acknowledged, import/rollback already running,
             or the catalog changed since the preview
        422: Preview has validation errors
        500: A stage failed (details.import_id can be rolled back)
    """
    try:
        return get_catalog_import_service().execute(request.preview_id, request.acknowledged)
    except Exception as e:
        return handle_error(e)


@router.post("/rollback", response_model=RollbackResult)
def rollback_import(request: RollbackRequest):
    """
    Restore the catalog to its state before an import.

    Raises:
        404: Snapshot not found (already rolled back or pruned)
        409: Not the newest import, or another operation is running
        500: Restore write failed (snapshot kept, retry is safe)
    """
    try:
        return get_catalog_import_service().rollback_import(request.import_id)
    except Exception as e:
        return handle_error(e)


@router.get("/history", response_model=ImportHistoryListResponse)
def list_import_history(limit: int = Query(10, ge=1, le=50)):
    """Recent imports, newest first, without snapshot payloads."""
    try:
        entries = get_import_history_service().list_recent(limit)
        return ImportHistoryListResponse(data=entries, total=len(entries))
    except Exception as e:
        return handle_error(e)


@router.get("/status", response_model=OperationStatusResponse)
def import_status():
    """Currently running import or rollback and its stage."""
    return get_operation_lock().status()
