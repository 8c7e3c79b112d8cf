"""
Column model for the catalog workbook.

Single source of truth for sheet names, column headers, hidden identifier
columns and the typed rows each sheet parses into. The export service writes
exactly this layout and the workbook parser reads it back, which is what makes
export → re-import a zero-change round trip.

Sheet layout (every sheet):
    Row 1: group headers (merged cells, ignored on import)
    Row 2: column headers
    Row 3: instructions (ignored on import)
    Row 4+: data
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from models.catalog import AliasType, WorkflowStatus
from utils.text_utils import canonical_text, coerce_year, normalize_key_part, normalize_sku

GROUP_HEADER_ROW = 1
COLUMN_HEADER_ROW = 2
INSTRUCTIONS_ROW = 3
FIRST_DATA_ROW = 4

VALID_EXTENSIONS = (".xlsx", ".xls")


class SheetName(str, Enum):
    """Worksheet names (must match exactly between export and import)."""
    PARTS = "Parts"
    VEHICLE_APPLICATIONS = "Vehicle Applications"
    CROSS_REFERENCES = "Cross References"
    VEHICLE_ALIASES = "Vehicle Aliases"


# Status column values. Spanish labels are what the export writes; the
# database spellings are accepted too.
STATUS_DISPLAY = {
    WorkflowStatus.ACTIVE: "Activo",
    WorkflowStatus.INACTIVE: "Inactivo",
    WorkflowStatus.DELETE: "Eliminar",
}

STATUS_ALIASES = {
    "ACTIVO": WorkflowStatus.ACTIVE,
    "ACTIVE": WorkflowStatus.ACTIVE,
    "INACTIVO": WorkflowStatus.INACTIVE,
    "INACTIVE": WorkflowStatus.INACTIVE,
    "ELIMINAR": WorkflowStatus.DELETE,
    "DELETE": WorkflowStatus.DELETE,
}


def parse_status(value: Any) -> Optional[WorkflowStatus]:
    """
    Map a Status cell to WorkflowStatus.

    Blank means ACTIVE. Unknown text returns None (reported by validation).
    """
    text = canonical_text(value)
    if text is None:
        return WorkflowStatus.ACTIVE
    return STATUS_ALIASES.get(text.upper())


def is_tombstone(value: Any) -> bool:
    """True when a Status cell marks the row for deletion."""
    return parse_status(value) == WorkflowStatus.DELETE


# ===================
# COLUMN DEFINITIONS
# ===================

@dataclass(frozen=True)
class ColumnSpec:
    """One worksheet column."""
    header: str
    key: str
    width: int = 15
    hidden: bool = False
    required: bool = False
    group: str = ""
    instructions: str = ""


@dataclass(frozen=True)
class SheetSpec:
    """One worksheet: its name, columns and whether the sheet must exist."""
    name: SheetName
    columns: tuple[ColumnSpec, ...]
    required_sheet: bool = True

    @property
    def hidden_columns(self) -> list[ColumnSpec]:
        return [c for c in self.columns if c.hidden]

    @property
    def business_columns(self) -> list[ColumnSpec]:
        return [c for c in self.columns if not c.hidden]

    @property
    def required_headers(self) -> list[str]:
        """Headers that must be present: every required column plus _id."""
        return [c.header for c in self.columns if c.required or c.key == "id"]

    def header_for(self, key: str) -> str:
        for column in self.columns:
            if column.key == key:
                return column.header
        return key

    def key_for(self, header: str) -> Optional[str]:
        wanted = header.strip().lower()
        for column in self.columns:
            if column.header.lower() == wanted:
                return column.key
        return None


PARTS_SHEET = SheetSpec(
    name=SheetName.PARTS,
    columns=(
        ColumnSpec("_id", "id", width=36, hidden=True, group="System"),
        ColumnSpec("ACR_SKU", "acr_sku", required=True, group="Part",
                   instructions="Unique ACR SKU. Do not change for existing parts."),
        ColumnSpec("Status", "status", width=12, group="Part",
                   instructions="Activo, Inactivo or Eliminar (deletes the part and its applications)."),
        ColumnSpec("Part_Type", "part_type", width=20, required=True, group="Part",
                   instructions="Required. e.g. MAZA, Disco."),
        ColumnSpec("Position_Type", "position_type", group="Specifications"),
        ColumnSpec("ABS_Type", "abs_type", group="Specifications"),
        ColumnSpec("Bolt_Pattern", "bolt_pattern", group="Specifications"),
        ColumnSpec("Drive_Type", "drive_type", group="Specifications"),
        ColumnSpec("Specifications", "specifications", width=40, group="Specifications",
                   instructions="Free text."),
    ),
)

VEHICLE_APPLICATIONS_SHEET = SheetSpec(
    name=SheetName.VEHICLE_APPLICATIONS,
    columns=(
        ColumnSpec("_id", "id", width=36, hidden=True, group="System"),
        ColumnSpec("_part_id", "part_id", width=36, hidden=True, group="System"),
        ColumnSpec("ACR_SKU", "acr_sku", required=True, group="Part",
                   instructions="SKU of a part in the Parts sheet."),
        ColumnSpec("Status", "status", width=12, group="Part",
                   instructions="Activo or Eliminar."),
        ColumnSpec("Make", "make", required=True, group="Vehicle"),
        ColumnSpec("Model", "model", width=20, required=True, group="Vehicle"),
        ColumnSpec("Start_Year", "start_year", width=12, required=True, group="Years",
                   instructions="Four-digit year."),
        ColumnSpec("End_Year", "end_year", width=12, required=True, group="Years",
                   instructions="Four-digit year, not before Start_Year."),
    ),
)

CROSS_REFERENCES_SHEET = SheetSpec(
    name=SheetName.CROSS_REFERENCES,
    required_sheet=False,
    columns=(
        ColumnSpec("_id", "id", width=36, hidden=True, group="System"),
        ColumnSpec("_acr_part_id", "part_id", width=36, hidden=True, group="System"),
        ColumnSpec("ACR_SKU", "acr_sku", required=True, group="Part",
                   instructions="SKU of a part in the Parts sheet."),
        ColumnSpec("Status", "status", width=12, group="Part",
                   instructions="Activo or Eliminar."),
        ColumnSpec("Competitor_Brand", "competitor_brand", width=20, group="Competitor"),
        ColumnSpec("Competitor_SKU", "competitor_sku", width=20, required=True, group="Competitor"),
    ),
)

VEHICLE_ALIASES_SHEET = SheetSpec(
    name=SheetName.VEHICLE_ALIASES,
    required_sheet=False,
    columns=(
        ColumnSpec("_id", "id", width=36, hidden=True, group="System"),
        ColumnSpec("Alias", "alias", width=20, required=True, group="Alias",
                   instructions="Nickname or abbreviation, e.g. chevy."),
        ColumnSpec("Canonical_Name", "canonical_name", width=25, required=True, group="Alias",
                   instructions="Make or model exactly as in Vehicle Applications."),
        ColumnSpec("Alias_Type", "alias_type", width=12, required=True, group="Alias",
                   instructions="make or model."),
        ColumnSpec("Status", "status", width=12, group="Alias",
                   instructions="Activo or Eliminar."),
    ),
)

SHEETS: tuple[SheetSpec, ...] = (
    PARTS_SHEET,
    VEHICLE_APPLICATIONS_SHEET,
    CROSS_REFERENCES_SHEET,
    VEHICLE_ALIASES_SHEET,
)

# Column length limits (mirror the database VARCHAR sizes)
MAX_LENGTHS = {
    "acr_sku": 50,
    "part_type": 100,
    "position_type": 50,
    "abs_type": 20,
    "bolt_pattern": 50,
    "drive_type": 50,
    "make": 50,
    "model": 100,
    "competitor_brand": 50,
    "competitor_sku": 50,
    "alias": 50,
    "canonical_name": 100,
}


# ===================
# ROW TYPES
# ===================

class ParentState(str, Enum):
    """How a child row's part reference resolved."""
    EXISTING = "existing"        # part exists and survives the import
    PENDING_ADD = "pending_add"  # part is added by this import
    DELETED = "deleted"          # part is deleted by this import
    MISSING = "missing"          # no such part anywhere


@dataclass
class PartRow:
    """A row of the Parts sheet, or a part record shaped like one."""
    acr_sku: Any = None
    part_type: Any = None
    id: Optional[str] = None
    status: Any = None
    position_type: Any = None
    abs_type: Any = None
    bolt_pattern: Any = None
    drive_type: Any = None
    specifications: Any = None
    workflow_status: Optional[str] = None
    row_number: Optional[int] = None

    @property
    def business_key(self) -> tuple:
        return (normalize_key_part(self.acr_sku),)

    @classmethod
    def from_record(cls, record: dict) -> "PartRow":
        status = record.get("workflow_status") or WorkflowStatus.ACTIVE.value
        return cls(
            id=record.get("id"),
            acr_sku=record.get("acr_sku"),
            part_type=record.get("part_type"),
            position_type=record.get("position_type"),
            abs_type=record.get("abs_type"),
            bolt_pattern=record.get("bolt_pattern"),
            drive_type=record.get("drive_type"),
            specifications=record.get("specifications"),
            workflow_status=status,
            status=STATUS_DISPLAY.get(WorkflowStatus(status), status),
        )

    def to_record(self) -> dict:
        """Business columns as written to the parts table."""
        return {
            "acr_sku": normalize_sku(self.acr_sku),
            "part_type": canonical_text(self.part_type),
            "position_type": canonical_text(self.position_type),
            "abs_type": canonical_text(self.abs_type),
            "bolt_pattern": canonical_text(self.bolt_pattern),
            "drive_type": canonical_text(self.drive_type),
            "specifications": canonical_text(self.specifications),
            "workflow_status": self.workflow_status or WorkflowStatus.ACTIVE.value,
        }


@dataclass
class VehicleApplicationRow:
    """A row of the Vehicle Applications sheet."""
    acr_sku: Any = None
    make: Any = None
    model: Any = None
    start_year: Any = None
    end_year: Any = None
    id: Optional[str] = None
    part_id: Optional[str] = None
    status: Any = None
    parent_state: Optional[ParentState] = None
    row_number: Optional[int] = None

    @property
    def business_key(self) -> tuple:
        return (
            normalize_key_part(self.acr_sku),
            normalize_key_part(self.make),
            normalize_key_part(self.model),
            _year_sort_value(self.start_year),
            _year_sort_value(self.end_year),
        )

    @property
    def label(self) -> str:
        return f"{canonical_text(self.make)} {canonical_text(self.model)} {self.start_year}-{self.end_year}"

    @classmethod
    def from_record(cls, record: dict, sku_by_part_id: dict[str, str]) -> "VehicleApplicationRow":
        part_id = record.get("part_id")
        return cls(
            id=record.get("id"),
            part_id=part_id,
            acr_sku=sku_by_part_id.get(part_id),
            make=record.get("make"),
            model=record.get("model"),
            start_year=coerce_year(record.get("start_year")),
            end_year=coerce_year(record.get("end_year")),
            status=STATUS_DISPLAY[WorkflowStatus.ACTIVE],
            parent_state=ParentState.EXISTING,
        )

    def to_record(self) -> dict:
        return {
            "part_id": self.part_id,
            "make": canonical_text(self.make),
            "model": canonical_text(self.model),
            "start_year": coerce_year(self.start_year),
            "end_year": coerce_year(self.end_year),
        }


@dataclass
class CrossReferenceRow:
    """A row of the Cross References sheet."""
    acr_sku: Any = None
    competitor_brand: Any = None
    competitor_sku: Any = None
    id: Optional[str] = None
    part_id: Optional[str] = None
    status: Any = None
    parent_state: Optional[ParentState] = None
    row_number: Optional[int] = None

    @property
    def business_key(self) -> tuple:
        return (
            normalize_key_part(self.acr_sku),
            normalize_key_part(self.competitor_brand),
            normalize_key_part(self.competitor_sku),
        )

    @property
    def label(self) -> str:
        brand = canonical_text(self.competitor_brand) or "?"
        return f"{brand} {canonical_text(self.competitor_sku)}"

    @classmethod
    def from_record(cls, record: dict, sku_by_part_id: dict[str, str]) -> "CrossReferenceRow":
        part_id = record.get("acr_part_id")
        return cls(
            id=record.get("id"),
            part_id=part_id,
            acr_sku=sku_by_part_id.get(part_id),
            competitor_brand=record.get("competitor_brand"),
            competitor_sku=record.get("competitor_sku"),
            status=STATUS_DISPLAY[WorkflowStatus.ACTIVE],
            parent_state=ParentState.EXISTING,
        )

    def to_record(self) -> dict:
        return {
            "acr_part_id": self.part_id,
            "competitor_brand": canonical_text(self.competitor_brand),
            "competitor_sku": canonical_text(self.competitor_sku),
        }


@dataclass
class VehicleAliasRow:
    """A row of the Vehicle Aliases sheet."""
    alias: Any = None
    canonical_name: Any = None
    alias_type: Any = None
    id: Optional[str] = None
    status: Any = None
    row_number: Optional[int] = None

    @property
    def business_key(self) -> tuple:
        return (normalize_key_part(self.alias), normalize_key_part(self.canonical_name))

    @classmethod
    def from_record(cls, record: dict) -> "VehicleAliasRow":
        return cls(
            id=record.get("id"),
            alias=record.get("alias"),
            canonical_name=record.get("canonical_name"),
            alias_type=record.get("alias_type"),
            status=STATUS_DISPLAY[WorkflowStatus.ACTIVE],
        )

    def to_record(self) -> dict:
        alias_type = canonical_text(self.alias_type)
        return {
            "alias": canonical_text(self.alias).lower() if canonical_text(self.alias) else None,
            "canonical_name": canonical_text(self.canonical_name),
            "alias_type": alias_type.lower() if alias_type else None,
        }


def parse_alias_type(value: Any) -> Optional[AliasType]:
    """Alias_Type cell → AliasType, or None when not a valid value."""
    text = canonical_text(value)
    if text is None:
        return None
    try:
        return AliasType(text.lower())
    except ValueError:
        return None


def _year_sort_value(value: Any) -> tuple:
    """Sort ints before anything unparseable, keeping the order total."""
    year = coerce_year(value)
    if isinstance(year, int):
        return (0, year, "")
    return (1, 0, str(year) if year is not None else "")


ROW_TYPES = {
    SheetName.PARTS: PartRow,
    SheetName.VEHICLE_APPLICATIONS: VehicleApplicationRow,
    SheetName.CROSS_REFERENCES: CrossReferenceRow,
    SheetName.VEHICLE_ALIASES: VehicleAliasRow,
}


@dataclass
class CatalogRows:
    """Rows for all four entities, from a workbook or from the store."""
    parts: list[PartRow] = field(default_factory=list)
    vehicle_applications: list[VehicleApplicationRow] = field(default_factory=list)
    cross_references: list[CrossReferenceRow] = field(default_factory=list)
    vehicle_aliases: list[VehicleAliasRow] = field(default_factory=list)
