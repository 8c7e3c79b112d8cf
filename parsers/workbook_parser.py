"""
Catalog workbook parser.

Reads the four-sheet catalog export (Parts, Vehicle Applications,
Cross References, Vehicle Aliases) into typed rows. Structural problems
raise WorkbookSchemaError; row-level problems are left in the rows for
the validation engine to report.
"""

from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Optional, Union
import structlog

import pandas as pd

from exceptions import WorkbookSchemaError
from parsers.catalog_columns import (
    COLUMN_HEADER_ROW,
    FIRST_DATA_ROW,
    ROW_TYPES,
    SHEETS,
    VALID_EXTENSIONS,
    CatalogRows,
    SheetName,
    SheetSpec,
)
from utils.text_utils import canonical_text, coerce_year, is_blank

logger = structlog.get_logger(__name__)


@dataclass
class ParsedWorkbook:
    """Result of parsing a catalog workbook."""
    rows: CatalogRows = field(default_factory=CatalogRows)
    sheets_present: set[SheetName] = field(default_factory=set)
    file_name: Optional[str] = None
    file_size_bytes: int = 0

    def has_sheet(self, sheet: SheetName) -> bool:
        return sheet in self.sheets_present

    @property
    def row_counts(self) -> dict[str, int]:
        return {
            SheetName.PARTS.value: len(self.rows.parts),
            SheetName.VEHICLE_APPLICATIONS.value: len(self.rows.vehicle_applications),
            SheetName.CROSS_REFERENCES.value: len(self.rows.cross_references),
            SheetName.VEHICLE_ALIASES.value: len(self.rows.vehicle_aliases),
        }


def excel_engine(file_name: Optional[str]) -> str:
    """xlrd for legacy .xls, openpyxl otherwise."""
    if file_name and file_name.lower().endswith(".xls"):
        return "xlrd"
    return "openpyxl"


def parse_catalog_workbook(
    file: Union[str, Path, bytes, BytesIO],
    file_name: Optional[str] = None,
    max_size_bytes: Optional[int] = None,
) -> ParsedWorkbook:
    """
    Parse a catalog workbook.

    Args:
        file: File path, raw bytes or file-like object
        file_name: Original upload name (used for the extension check)
        max_size_bytes: Reject files larger than this

    Returns:
        ParsedWorkbook with rows per entity and the set of sheets found

    Raises:
        WorkbookSchemaError: unreadable file, bad extension, too large,
            missing required sheet or column, duplicate headers
    """
    if file_name is None and isinstance(file, (str, Path)):
        file_name = Path(file).name

    if file_name and not file_name.lower().endswith(VALID_EXTENSIONS):
        raise WorkbookSchemaError(
            message=f"Invalid file type. Expected {' or '.join(VALID_EXTENSIONS)}",
            details={"file_name": file_name}
        )

    if isinstance(file, bytes):
        size = len(file)
        file = BytesIO(file)
    elif isinstance(file, BytesIO):
        size = len(file.getbuffer())
    else:
        size = Path(file).stat().st_size

    if max_size_bytes is not None and size > max_size_bytes:
        raise WorkbookSchemaError(
            message=f"File too large ({size} bytes). Maximum is {max_size_bytes} bytes",
            details={"file_size_bytes": size, "max_size_bytes": max_size_bytes}
        )

    logger.info("parsing_catalog_workbook", file_name=file_name, file_size_bytes=size)

    try:
        excel = pd.ExcelFile(file, engine=excel_engine(file_name))
    except Exception as e:
        logger.error("workbook_read_failed", file_name=file_name, error=str(e))
        raise WorkbookSchemaError(
            message="Failed to read workbook. Is it a valid Excel file?",
            details={"original_error": str(e)}
        )

    result = ParsedWorkbook(file_name=file_name, file_size_bytes=size)

    for spec in SHEETS:
        if spec.name.value not in excel.sheet_names:
            if spec.required_sheet:
                raise WorkbookSchemaError(
                    message=f"Missing required sheet '{spec.name.value}'",
                    sheet=spec.name.value,
                    details={"sheets_found": list(excel.sheet_names)}
                )
            logger.debug("optional_sheet_absent", sheet=spec.name.value)
            continue

        rows = _parse_sheet(excel, spec)
        result.sheets_present.add(spec.name)
        _attach_rows(result.rows, spec.name, rows)

    logger.info(
        "catalog_workbook_parsed",
        file_name=file_name,
        sheets=sorted(s.value for s in result.sheets_present),
        **{k.lower().replace(" ", "_"): v for k, v in result.row_counts.items()}
    )

    return result


def _parse_sheet(excel: pd.ExcelFile, spec: SheetSpec) -> list:
    sheet = spec.name.value
    try:
        df = excel.parse(sheet, header=None, dtype=object)
    except Exception as e:
        raise WorkbookSchemaError(
            message=f"Failed to read sheet '{sheet}'",
            sheet=sheet,
            details={"original_error": str(e)}
        )

    if len(df.index) < COLUMN_HEADER_ROW:
        raise WorkbookSchemaError(
            message=f"Sheet '{sheet}' has no column header row",
            sheet=sheet
        )

    column_keys = _map_headers(df.iloc[COLUMN_HEADER_ROW - 1].tolist(), spec)

    row_type = ROW_TYPES[spec.name]
    rows = []
    for idx in range(FIRST_DATA_ROW - 1, len(df.index)):
        values = df.iloc[idx].tolist()
        record = {
            key: values[position]
            for position, key in column_keys.items()
        }
        if all(is_blank(v) for v in record.values()):
            continue
        rows.append(_build_row(row_type, record, row_number=idx + 1))

    logger.debug("sheet_parsed", sheet=sheet, row_count=len(rows))
    return rows


def _map_headers(header_cells: list[Any], spec: SheetSpec) -> dict[int, str]:
    """Map column position → row attribute. Unknown columns are ignored."""
    sheet = spec.name.value
    seen: dict[str, int] = {}
    mapping: dict[int, str] = {}

    for position, cell in enumerate(header_cells):
        header = canonical_text(cell)
        if header is None:
            continue
        normalized = header.lower()
        if normalized in seen:
            raise WorkbookSchemaError(
                message=f"Duplicate column '{header}' in sheet '{sheet}'",
                sheet=sheet,
                details={"column": header}
            )
        seen[normalized] = position
        key = spec.key_for(header)
        if key is not None:
            mapping[position] = key

    missing = [h for h in spec.required_headers if h.lower() not in seen]
    if missing:
        raise WorkbookSchemaError(
            message=f"Sheet '{sheet}' is missing required column(s): {', '.join(missing)}",
            sheet=sheet,
            details={"missing_columns": missing}
        )

    return mapping


def _build_row(row_type: type, record: dict, row_number: int):
    values = {}
    for key, value in record.items():
        if key in ("start_year", "end_year"):
            values[key] = coerce_year(value)
        elif key in ("id", "part_id"):
            values[key] = canonical_text(value)
        else:
            values[key] = None if is_blank(value) else value
    return row_type(row_number=row_number, **values)


def _attach_rows(target: CatalogRows, sheet: SheetName, rows: list) -> None:
    if sheet == SheetName.PARTS:
        target.parts = rows
    elif sheet == SheetName.VEHICLE_APPLICATIONS:
        target.vehicle_applications = rows
    elif sheet == SheetName.CROSS_REFERENCES:
        target.cross_references = rows
    else:
        target.vehicle_aliases = rows
