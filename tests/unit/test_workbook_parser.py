"""
Unit tests for the catalog workbook parser.
"""

import pandas as pd
import pytest

from exceptions import WorkbookSchemaError
from models.catalog import WorkflowStatus
from parsers.catalog_columns import PARTS_SHEET, SheetName, parse_status
from parsers.workbook_parser import excel_engine, parse_catalog_workbook
from tests.factories import build_workbook


PART_ID = "0b6f0a52-3f0e-4c4e-9a55-6a1f0f6c1c01"


def minimal_sheets(**overrides) -> dict:
    sheets = {
        "Parts": [{"_id": PART_ID, "ACR_SKU": "ACR100", "Status": "Activo", "Part_Type": "Disco"}],
        "Vehicle Applications": [],
    }
    sheets.update(overrides)
    return sheets


class TestExcelEngine:

    @pytest.mark.parametrize("file_name,expected", [
        ("catalog.xlsx", "openpyxl"),
        ("CATALOG.XLS", "xlrd"),
        ("catalog.xls", "xlrd"),
        (None, "openpyxl"),
    ])
    def test_engine_by_extension(self, file_name, expected):
        assert excel_engine(file_name) == expected

    def test_xls_upload_read_with_xlrd(self, monkeypatch):
        engines = []
        real_excel_file = pd.ExcelFile

        def recording_excel_file(file, engine=None):
            engines.append(engine)
            return real_excel_file(file, engine="openpyxl")

        monkeypatch.setattr(pd, "ExcelFile", recording_excel_file)

        result = parse_catalog_workbook(build_workbook(minimal_sheets()), file_name="legacy.xls")

        assert engines == ["xlrd"]
        assert len(result.rows.parts) == 1


# ===================
# VALID FILES
# ===================

class TestValidWorkbook:

    def test_parses_rows_with_row_numbers(self):
        content = build_workbook(minimal_sheets(**{
            "Vehicle Applications": [
                {"_part_id": PART_ID, "ACR_SKU": "ACR100", "Make": "TOYOTA", "Model": "CAMRY",
                 "Start_Year": 2015, "End_Year": 2018},
            ],
        }))

        result = parse_catalog_workbook(content, file_name="catalog.xlsx")

        assert len(result.rows.parts) == 1
        part = result.rows.parts[0]
        assert part.id == PART_ID
        assert part.acr_sku == "ACR100"
        assert part.row_number == 4

        va = result.rows.vehicle_applications[0]
        assert va.part_id == PART_ID
        assert va.start_year == 2015
        assert va.end_year == 2018
        assert va.id is None

    def test_skips_blank_rows(self):
        content = build_workbook(minimal_sheets(Parts=[
            {"ACR_SKU": "ACR100", "Part_Type": "Disco"},
            {},
            {"ACR_SKU": "ACR101", "Part_Type": "MAZA"},
        ]))

        result = parse_catalog_workbook(content, file_name="catalog.xlsx")

        assert [p.acr_sku for p in result.rows.parts] == ["ACR100", "ACR101"]
        assert [p.row_number for p in result.rows.parts] == [4, 6]

    def test_optional_sheets_absent(self):
        result = parse_catalog_workbook(build_workbook(minimal_sheets()), file_name="catalog.xlsx")

        assert result.has_sheet(SheetName.PARTS)
        assert not result.has_sheet(SheetName.CROSS_REFERENCES)
        assert not result.has_sheet(SheetName.VEHICLE_ALIASES)
        assert result.rows.cross_references == []

    def test_non_numeric_year_kept_raw(self):
        content = build_workbook(minimal_sheets(**{
            "Vehicle Applications": [
                {"ACR_SKU": "ACR100", "Make": "TOYOTA", "Model": "CAMRY",
                 "Start_Year": "dos mil", "End_Year": "2018"},
            ],
        }))

        va = parse_catalog_workbook(content, file_name="catalog.xlsx").rows.vehicle_applications[0]

        assert va.start_year == "dos mil"
        assert va.end_year == 2018

    def test_headers_match_case_insensitively(self):
        headers = {"Parts": [c.header.upper() for c in PARTS_SHEET.columns]}
        content = build_workbook(
            minimal_sheets(Parts=[{"_ID": PART_ID, "ACR_SKU": "ACR100", "PART_TYPE": "Disco"}]),
            headers=headers,
        )

        part = parse_catalog_workbook(content, file_name="catalog.xlsx").rows.parts[0]

        assert part.id == PART_ID
        assert part.part_type == "Disco"


# ===================
# SCHEMA ERRORS
# ===================

class TestSchemaErrors:

    def test_rejects_wrong_extension(self):
        with pytest.raises(WorkbookSchemaError):
            parse_catalog_workbook(build_workbook(minimal_sheets()), file_name="catalog.csv")

    def test_rejects_unreadable_file(self):
        with pytest.raises(WorkbookSchemaError) as exc_info:
            parse_catalog_workbook(b"not an excel file", file_name="catalog.xlsx")
        assert exc_info.value.status_code == 422

    def test_rejects_oversized_file(self):
        content = build_workbook(minimal_sheets())
        with pytest.raises(WorkbookSchemaError):
            parse_catalog_workbook(content, file_name="catalog.xlsx", max_size_bytes=10)

    def test_missing_required_sheet(self):
        content = build_workbook({"Parts": []})

        with pytest.raises(WorkbookSchemaError) as exc_info:
            parse_catalog_workbook(content, file_name="catalog.xlsx")

        assert exc_info.value.details["sheet"] == "Vehicle Applications"

    def test_missing_hidden_id_column(self):
        headers = {"Parts": [c.header for c in PARTS_SHEET.columns if c.header != "_id"]}
        content = build_workbook(minimal_sheets(), headers=headers)

        with pytest.raises(WorkbookSchemaError) as exc_info:
            parse_catalog_workbook(content, file_name="catalog.xlsx")

        assert "_id" in exc_info.value.details["missing_columns"]

    def test_missing_required_column(self):
        headers = {"Parts": ["_id", "ACR_SKU", "Status"]}
        content = build_workbook(minimal_sheets(), headers=headers)

        with pytest.raises(WorkbookSchemaError) as exc_info:
            parse_catalog_workbook(content, file_name="catalog.xlsx")

        assert exc_info.value.details["missing_columns"] == ["Part_Type"]

    def test_duplicate_header(self):
        headers = {"Parts": [c.header for c in PARTS_SHEET.columns] + ["ACR_SKU"]}
        content = build_workbook(minimal_sheets(), headers=headers)

        with pytest.raises(WorkbookSchemaError):
            parse_catalog_workbook(content, file_name="catalog.xlsx")


class TestStatusValues:

    @pytest.mark.parametrize("value,expected", [
        ("Activo", WorkflowStatus.ACTIVE),
        ("inactivo", WorkflowStatus.INACTIVE),
        ("ELIMINAR", WorkflowStatus.DELETE),
        ("DELETE", WorkflowStatus.DELETE),
        (None, WorkflowStatus.ACTIVE),
        ("   ", WorkflowStatus.ACTIVE),
        ("Borrar", None),
    ])
    def test_parse_status(self, value, expected):
        assert parse_status(value) == expected
