"""
Catalog export endpoint.

Returns the bulk-edit workbook that /api/admin/import/preview accepts.
"""

from datetime import date

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response

from exceptions import AppError
from services.catalog_export_service import get_catalog_export_service

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin/export", tags=["Export"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _handle_error(e: Exception) -> JSONResponse:
    if isinstance(e, AppError):
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    logger.error("export_unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}},
    )


@router.get("")
def export_catalog():
    """Download the full catalog as an .xlsx workbook."""
    try:
        content = get_catalog_export_service().export_catalog_workbook()
    except Exception as e:
        return _handle_error(e)

    filename = f"catalog_{date.today().isoformat()}.xlsx"
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
