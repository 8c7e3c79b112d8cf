"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.catalog_import import router as catalog_import_router
from routes.export import router as export_router

__all__ = [
    "catalog_import_router",
    "export_router",
]
