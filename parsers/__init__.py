"""
Workbook parsers module.
"""

from parsers.catalog_columns import (
    SheetName,
    SHEETS,
    CatalogRows,
    PartRow,
    VehicleApplicationRow,
    CrossReferenceRow,
    VehicleAliasRow,
    ParentState,
)
from parsers.workbook_parser import (
    parse_catalog_workbook,
    ParsedWorkbook,
)

__all__ = [
    "SheetName",
    "SHEETS",
    "CatalogRows",
    "PartRow",
    "VehicleApplicationRow",
    "CrossReferenceRow",
    "VehicleAliasRow",
    "ParentState",
    "parse_catalog_workbook",
    "ParsedWorkbook",
]
