"""
Catalog export: generate the bulk-edit workbook.

Writes the four sheets in exactly the layout the workbook parser reads:
group header row, column header row, instructions row, then data. Hidden
identifier columns carry the record ids so an unmodified export re-imports
as a zero-change diff.
"""

from io import BytesIO
from typing import Any, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
import structlog

from parsers.catalog_columns import (
    COLUMN_HEADER_ROW,
    FIRST_DATA_ROW,
    GROUP_HEADER_ROW,
    INSTRUCTIONS_ROW,
    SHEETS,
    CatalogRows,
    SheetName,
    SheetSpec,
)
from services.catalog_repository import CatalogRepository, get_catalog_repository
from services.diff_engine import store_rows_from_records
from utils.text_utils import canonical_value

logger = structlog.get_logger(__name__)

HEADER_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
GROUP_FILL = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")


class CatalogExportService:
    """Builds the catalog workbook from the live tables."""

    def __init__(self, repository: Optional[CatalogRepository] = None):
        self.repository = repository or get_catalog_repository()

    def export_catalog_workbook(self) -> bytes:
        """Read all governed tables and return the .xlsx bytes."""
        rows = store_rows_from_records(self.repository.fetch_tables())
        output = BytesIO()
        self.build_workbook(rows).save(output)

        logger.info(
            "catalog_exported",
            parts=len(rows.parts),
            vehicle_applications=len(rows.vehicle_applications),
            cross_references=len(rows.cross_references),
            vehicle_aliases=len(rows.vehicle_aliases),
            size_bytes=output.tell(),
        )
        return output.getvalue()

    def build_workbook(self, rows: CatalogRows) -> Workbook:
        wb = Workbook()
        wb.remove(wb.active)

        sheet_rows = {
            SheetName.PARTS: rows.parts,
            SheetName.VEHICLE_APPLICATIONS: rows.vehicle_applications,
            SheetName.CROSS_REFERENCES: rows.cross_references,
            SheetName.VEHICLE_ALIASES: rows.vehicle_aliases,
        }
        for spec in SHEETS:
            ws = wb.create_sheet(spec.name.value)
            self._write_sheet(ws, spec, sorted(sheet_rows[spec.name], key=lambda r: (r.business_key, str(r.id))))
        return wb

    def _write_sheet(self, ws: Worksheet, spec: SheetSpec, rows: list) -> None:
        bold_font = Font(bold=True)
        header_font = Font(bold=True, color="FFFFFF")
        instructions_font = Font(italic=True, size=9, color="595959")
        thin_border = Border(bottom=Side(style="thin", color="000000"))

        # Row 1: group headers, merged across each run of same-group columns
        start = 1
        for index in range(1, len(spec.columns) + 1):
            group = spec.columns[index - 1].group
            is_last = index == len(spec.columns) or spec.columns[index].group != group
            if not is_last:
                continue
            cell = ws.cell(row=GROUP_HEADER_ROW, column=start, value=group)
            cell.font = bold_font
            cell.fill = GROUP_FILL
            cell.alignment = Alignment(horizontal="center")
            if index > start:
                ws.merge_cells(start_row=GROUP_HEADER_ROW, start_column=start,
                               end_row=GROUP_HEADER_ROW, end_column=index)
            start = index + 1

        # Row 2: column headers; Row 3: instructions
        for index, column in enumerate(spec.columns, start=1):
            header = ws.cell(row=COLUMN_HEADER_ROW, column=index, value=column.header)
            header.font = header_font
            header.fill = HEADER_FILL
            header.border = thin_border

            note = ws.cell(row=INSTRUCTIONS_ROW, column=index, value=column.instructions or None)
            note.font = instructions_font
            note.alignment = Alignment(wrap_text=True, vertical="top")

            dimension = ws.column_dimensions[get_column_letter(index)]
            dimension.width = column.width
            if column.hidden:
                dimension.hidden = True

        # Data
        for offset, row in enumerate(rows):
            for index, column in enumerate(spec.columns, start=1):
                ws.cell(row=FIRST_DATA_ROW + offset, column=index, value=_cell_value(getattr(row, column.key)))

        ws.freeze_panes = ws.cell(row=FIRST_DATA_ROW, column=1)


def _cell_value(value: Any) -> Any:
    value = canonical_value(value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


_service: Optional[CatalogExportService] = None


def get_catalog_export_service() -> CatalogExportService:
    global _service
    if _service is None:
        _service = CatalogExportService()
    return _service
