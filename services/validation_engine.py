"""
Validation engine for catalog imports.

Checks the diff and the raw workbook rows. Errors block the import;
warnings (cascade side effects and destructive mutations) must be
acknowledged before it can be applied.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import structlog

from parsers.catalog_columns import (
    MAX_LENGTHS,
    SHEETS,
    ParentState,
    SheetName,
    SheetSpec,
    is_tombstone,
    parse_alias_type,
    parse_status,
)
from models.catalog import WorkflowStatus
from parsers.workbook_parser import ParsedWorkbook
from services.diff_engine import STRATEGY_TYPES, DeleteReason, DiffResult, SheetDiff, normalize_id
from utils.text_utils import canonical_text, coerce_year, is_blank, is_uuid, normalize_key_part, normalize_sku

logger = structlog.get_logger(__name__)

MIN_YEAR = 1900
FUTURE_YEARS_ALLOWED = 2

SINGULAR = {
    SheetName.PARTS: "Part",
    SheetName.VEHICLE_APPLICATIONS: "Vehicle application",
    SheetName.CROSS_REFERENCES: "Cross reference",
    SheetName.VEHICLE_ALIASES: "Vehicle alias",
}


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCategory(str, Enum):
    SCHEMA = "schema"
    REFERENTIAL = "referential"
    DOMAIN = "domain"
    CASCADE = "cascade"
    MUTATION = "mutation"


class IssueCode(str, Enum):
    """Stable codes the review UI keys its help text on."""
    # Errors
    INVALID_UUID = "INVALID_UUID"
    DUPLICATE_ID = "DUPLICATE_ID"
    ID_NOT_FOUND = "ID_NOT_FOUND"
    EMPTY_REQUIRED_FIELD = "EMPTY_REQUIRED_FIELD"
    STRING_TOO_LONG = "STRING_TOO_LONG"
    DUPLICATE_SKU = "DUPLICATE_SKU"
    DUPLICATE_VEHICLE_APPLICATION = "DUPLICATE_VEHICLE_APPLICATION"
    DUPLICATE_CROSS_REFERENCE = "DUPLICATE_CROSS_REFERENCE"
    DUPLICATE_ALIAS = "DUPLICATE_ALIAS"
    ORPHANED_PART_REFERENCE = "ORPHANED_PART_REFERENCE"
    PARENT_PART_DELETED = "PARENT_PART_DELETED"
    SKU_COLLISION = "SKU_COLLISION"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_ALIAS_TYPE = "INVALID_ALIAS_TYPE"
    INVALID_YEAR = "INVALID_YEAR"
    YEAR_OUT_OF_RANGE = "YEAR_OUT_OF_RANGE"
    INVALID_YEAR_RANGE = "INVALID_YEAR_RANGE"
    # Warnings
    CASCADE_DELETE = "CASCADE_DELETE"
    RECORD_DELETED = "RECORD_DELETED"
    FIELDS_CHANGED = "FIELDS_CHANGED"
    YEAR_RANGE_NARROWED = "YEAR_RANGE_NARROWED"
    SPECIFICATIONS_SHORTENED = "SPECIFICATIONS_SHORTENED"
    TOMBSTONE_WITHOUT_ID = "TOMBSTONE_WITHOUT_ID"


@dataclass
class ValidationIssue:
    """Single validation error or warning."""
    code: IssueCode
    severity: Severity
    category: IssueCategory
    message: str
    sheet: str
    row: Optional[int] = None
    column: Optional[str] = None
    value: Any = None
    expected: Optional[str] = None

    def to_dict(self) -> dict:
        value = self.value
        if value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        return {
            "code": self.code.value,
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "sheet": self.sheet,
            "row": self.row,
            "column": self.column,
            "value": value,
            "expected": self.expected,
        }


@dataclass
class ValidationResult:
    """All issues for one import preview."""
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return len(self.errors) == 0

    @property
    def requires_acknowledgment(self) -> bool:
        return len(self.warnings) > 0

    @property
    def counts_by_sheet(self) -> dict[str, dict[str, int]]:
        counts: dict[str, dict[str, int]] = defaultdict(lambda: {"errors": 0, "warnings": 0})
        for issue in self.errors:
            counts[issue.sheet]["errors"] += 1
        for issue in self.warnings:
            counts[issue.sheet]["warnings"] += 1
        return dict(counts)

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity == Severity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "requires_acknowledgment": self.requires_acknowledgment,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "counts_by_sheet": self.counts_by_sheet,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _error(code, category, message, sheet, row=None, column=None, value=None, expected=None) -> ValidationIssue:
    return ValidationIssue(code, Severity.ERROR, category, message, sheet.value, row, column, value, expected)


def _warning(code, category, message, sheet, row=None, column=None, value=None, expected=None) -> ValidationIssue:
    return ValidationIssue(code, Severity.WARNING, category, message, sheet.value, row, column, value, expected)


class ValidationEngine:
    """
    Rule checks over a computed diff and the rows it came from.

    Usage:
        result = ValidationEngine().validate(diff, workbook)
        if not result.valid: ...
    """

    def __init__(self, current_year: Optional[int] = None):
        self.current_year = current_year or datetime.now().year

    @property
    def max_year(self) -> int:
        return self.current_year + FUTURE_YEARS_ALLOWED

    def validate(self, diff: DiffResult, workbook: ParsedWorkbook) -> ValidationResult:
        result = ValidationResult()

        sheet_rows = {
            SheetName.PARTS: workbook.rows.parts,
            SheetName.VEHICLE_APPLICATIONS: workbook.rows.vehicle_applications,
            SheetName.CROSS_REFERENCES: workbook.rows.cross_references,
            SheetName.VEHICLE_ALIASES: workbook.rows.vehicle_aliases,
        }

        # Row-level checks
        for spec in SHEETS:
            rows = sheet_rows[spec.name]
            self._check_identifiers(spec, rows, result)
            for row in rows:
                self._check_row(spec, row, result)
        self._check_duplicate_keys(sheet_rows, result)

        # Diff-level checks
        for sheet_diff in diff.sheets():
            self._check_id_not_found(sheet_diff, result)
        self._check_parent_references(diff, result)
        self._check_sku_collisions(diff, result)
        self._collect_warnings(diff, result)

        logger.info(
            "import_validated",
            valid=result.valid,
            error_count=len(result.errors),
            warning_count=len(result.warnings)
        )
        return result

    # ===================
    # ROW CHECKS
    # ===================

    def _check_identifiers(self, spec: SheetSpec, rows: list, result: ValidationResult) -> None:
        seen: dict[str, int] = {}
        for row in rows:
            for column in spec.hidden_columns:
                value = getattr(row, column.key)
                if not is_blank(value) and not is_uuid(value):
                    result.add(_error(
                        IssueCode.INVALID_UUID, IssueCategory.SCHEMA,
                        f"{column.header} is not a valid UUID",
                        spec.name, row.row_number, column.header, value, "UUID"
                    ))

            row_id = normalize_id(row.id)
            if row_id is None or not is_uuid(row_id):
                continue
            if row_id in seen:
                result.add(_error(
                    IssueCode.DUPLICATE_ID, IssueCategory.SCHEMA,
                    f"_id appears more than once in the sheet (first at row {seen[row_id]})",
                    spec.name, row.row_number, "_id", row.id
                ))
            else:
                seen[row_id] = row.row_number

    def _check_row(self, spec: SheetSpec, row: Any, result: ValidationResult) -> None:
        status = parse_status(row.status)
        allowed = (
            set(WorkflowStatus) if spec.name == SheetName.PARTS
            else {WorkflowStatus.ACTIVE, WorkflowStatus.DELETE}
        )
        if status is None or status not in allowed:
            result.add(_error(
                IssueCode.INVALID_STATUS, IssueCategory.DOMAIN,
                f"Invalid Status '{canonical_text(row.status)}'",
                spec.name, row.row_number, "Status", row.status,
                "Activo, Inactivo or Eliminar" if spec.name == SheetName.PARTS else "Activo or Eliminar"
            ))

        # Tombstoned rows only need a valid id
        if status == WorkflowStatus.DELETE:
            return

        for column in spec.business_columns:
            value = getattr(row, column.key)
            if column.required and is_blank(value):
                result.add(_error(
                    IssueCode.EMPTY_REQUIRED_FIELD, IssueCategory.SCHEMA,
                    f"{column.header} is required",
                    spec.name, row.row_number, column.header
                ))
                continue
            limit = MAX_LENGTHS.get(column.key)
            text = canonical_text(value)
            if limit and text and len(text) > limit:
                result.add(_error(
                    IssueCode.STRING_TOO_LONG, IssueCategory.SCHEMA,
                    f"{column.header} is {len(text)} characters (max {limit})",
                    spec.name, row.row_number, column.header, text[:60], f"<= {limit} characters"
                ))

        if spec.name == SheetName.VEHICLE_APPLICATIONS:
            self._check_years(row, result)
        elif spec.name == SheetName.VEHICLE_ALIASES:
            if not is_blank(row.alias_type) and parse_alias_type(row.alias_type) is None:
                result.add(_error(
                    IssueCode.INVALID_ALIAS_TYPE, IssueCategory.DOMAIN,
                    f"Invalid Alias_Type '{canonical_text(row.alias_type)}'",
                    SheetName.VEHICLE_ALIASES, row.row_number, "Alias_Type", row.alias_type, "make or model"
                ))

    def _check_years(self, row: Any, result: ValidationResult) -> None:
        sheet = SheetName.VEHICLE_APPLICATIONS
        years = {}
        for key, header in (("start_year", "Start_Year"), ("end_year", "End_Year")):
            value = coerce_year(getattr(row, key))
            if value is None:
                continue
            if not isinstance(value, int) or isinstance(value, bool):
                result.add(_error(
                    IssueCode.INVALID_YEAR, IssueCategory.DOMAIN,
                    f"{header} must be a whole number",
                    sheet, row.row_number, header, value, "four-digit year"
                ))
                continue
            if not MIN_YEAR <= value <= self.max_year:
                result.add(_error(
                    IssueCode.YEAR_OUT_OF_RANGE, IssueCategory.DOMAIN,
                    f"{header} {value} is outside {MIN_YEAR}-{self.max_year}",
                    sheet, row.row_number, header, value, f"{MIN_YEAR}-{self.max_year}"
                ))
            years[key] = value

        if "start_year" in years and "end_year" in years and years["end_year"] < years["start_year"]:
            result.add(_error(
                IssueCode.INVALID_YEAR_RANGE, IssueCategory.DOMAIN,
                f"End_Year {years['end_year']} is before Start_Year {years['start_year']}",
                sheet, row.row_number, "End_Year", years["end_year"], f">= {years['start_year']}"
            ))

    def _check_duplicate_keys(self, sheet_rows: dict, result: ValidationResult) -> None:
        checks = (
            (SheetName.PARTS, IssueCode.DUPLICATE_SKU, "ACR_SKU",
             lambda r: normalize_sku(r.acr_sku), True),
            (SheetName.VEHICLE_APPLICATIONS, IssueCode.DUPLICATE_VEHICLE_APPLICATION, "ACR_SKU",
             lambda r: r.business_key, False),
            (SheetName.CROSS_REFERENCES, IssueCode.DUPLICATE_CROSS_REFERENCE, "Competitor_SKU",
             lambda r: r.business_key, False),
            (SheetName.VEHICLE_ALIASES, IssueCode.DUPLICATE_ALIAS, "Alias",
             lambda r: normalize_key_part(r.alias) or None, False),
        )
        for sheet, code, column, key_of, include_tombstones in checks:
            first_seen: dict[Any, int] = {}
            for row in sheet_rows[sheet]:
                if not include_tombstones and is_tombstone(row.status):
                    continue
                key = key_of(row)
                if not key:
                    continue
                if key in first_seen:
                    result.add(_error(
                        code, IssueCategory.SCHEMA,
                        f"Duplicate {column} in file (first at row {first_seen[key]})",
                        sheet, row.row_number, column,
                        canonical_text(getattr(row, column.lower(), None))
                    ))
                else:
                    first_seen[key] = row.row_number

    # ===================
    # DIFF CHECKS
    # ===================

    def _check_id_not_found(self, sheet_diff: SheetDiff, result: ValidationResult) -> None:
        for row in sheet_diff.id_not_found:
            result.add(_error(
                IssueCode.ID_NOT_FOUND, IssueCategory.REFERENTIAL,
                "_id does not match any record in the catalog. Remove the id to add it as new, "
                "or export a fresh copy",
                sheet_diff.sheet, row.row_number, "_id", row.id
            ))

    def _check_parent_references(self, diff: DiffResult, result: ValidationResult) -> None:
        for sheet_diff in (diff.vehicle_applications, diff.cross_references):
            for item in sheet_diff.adds + sheet_diff.updates:
                row = item.after
                sku = normalize_sku(row.acr_sku)
                if row.parent_state == ParentState.MISSING and sku:
                    result.add(_error(
                        IssueCode.ORPHANED_PART_REFERENCE, IssueCategory.REFERENTIAL,
                        f"Part {sku} does not exist in the catalog or the Parts sheet",
                        sheet_diff.sheet, row.row_number, "ACR_SKU", sku
                    ))
                elif row.parent_state == ParentState.DELETED:
                    result.add(_error(
                        IssueCode.PARENT_PART_DELETED, IssueCategory.REFERENTIAL,
                        f"Part {sku} is deleted by this import",
                        sheet_diff.sheet, row.row_number, "ACR_SKU", sku
                    ))

    def _check_sku_collisions(self, diff: DiffResult, result: ValidationResult) -> None:
        context = diff.parts_context
        if context is None:
            return
        for item in diff.parts.adds + diff.parts.updates:
            sku = normalize_sku(item.after.acr_sku)
            if not sku:
                continue
            if item.before is not None and normalize_sku(item.before.acr_sku) == sku:
                continue
            owner = next(
                (pid for pid, store_sku in context.store_sku_by_id.items() if store_sku == sku),
                None
            )
            if owner is not None and owner != item.record_id:
                result.add(_error(
                    IssueCode.SKU_COLLISION, IssueCategory.REFERENTIAL,
                    f"ACR_SKU {sku} already belongs to another part in the catalog",
                    SheetName.PARTS, item.row_number, "ACR_SKU", sku
                ))

    # ===================
    # WARNINGS
    # ===================

    def _collect_warnings(self, diff: DiffResult, result: ValidationResult) -> None:
        context = diff.parts_context

        for sheet_diff in diff.sheets():
            strategy_label = STRATEGY_TYPES[sheet_diff.sheet].describe

            for item in sheet_diff.deletes:
                label = strategy_label(item.before)
                if item.reason == DeleteReason.CASCADE:
                    owner = context.sku_for(item.before.part_id) if context else None
                    owner = owner or normalize_sku(item.before.acr_sku)
                    result.add(_warning(
                        IssueCode.CASCADE_DELETE, IssueCategory.CASCADE,
                        f"{SINGULAR[sheet_diff.sheet]} {label} will be deleted because part {owner} is deleted",
                        sheet_diff.sheet, item.row_number, "ACR_SKU", owner
                    ))
                else:
                    how = "marked Eliminar" if item.reason == DeleteReason.TOMBSTONE else "missing from file"
                    result.add(_warning(
                        IssueCode.RECORD_DELETED, IssueCategory.MUTATION,
                        f"{label} will be deleted ({how})",
                        sheet_diff.sheet, item.row_number
                    ))

            for item in sheet_diff.updates:
                result.add(_warning(
                    IssueCode.FIELDS_CHANGED, IssueCategory.MUTATION,
                    f"{strategy_label(item.after)}: {', '.join(item.changes)} changed",
                    sheet_diff.sheet, item.row_number, ", ".join(item.changes)
                ))
                if sheet_diff.sheet == SheetName.VEHICLE_APPLICATIONS:
                    self._warn_year_narrowed(item, result)
                elif sheet_diff.sheet == SheetName.PARTS:
                    self._warn_specifications_shortened(item, result)

            for item in sheet_diff.unchanged:
                if item.before is None and item.after is not None:
                    result.add(_warning(
                        IssueCode.TOMBSTONE_WITHOUT_ID, IssueCategory.MUTATION,
                        "Row is marked Eliminar but has no _id; nothing will be deleted",
                        sheet_diff.sheet, item.row_number, "Status", item.after.status
                    ))

    def _warn_year_narrowed(self, item, result: ValidationResult) -> None:
        old_start, old_end = coerce_year(item.before.start_year), coerce_year(item.before.end_year)
        new_start, new_end = coerce_year(item.after.start_year), coerce_year(item.after.end_year)
        if not all(isinstance(y, int) for y in (old_start, old_end, new_start, new_end)):
            return
        if new_start > old_start or new_end < old_end:
            result.add(_warning(
                IssueCode.YEAR_RANGE_NARROWED, IssueCategory.MUTATION,
                f"Year range narrowed from {old_start}-{old_end} to {new_start}-{new_end}",
                SheetName.VEHICLE_APPLICATIONS, item.row_number, "Start_Year",
                f"{new_start}-{new_end}", f"{old_start}-{old_end}"
            ))

    def _warn_specifications_shortened(self, item, result: ValidationResult) -> None:
        old = canonical_text(item.before.specifications) or ""
        new = canonical_text(item.after.specifications) or ""
        if old and len(new) < len(old) / 2:
            result.add(_warning(
                IssueCode.SPECIFICATIONS_SHORTENED, IssueCategory.MUTATION,
                f"Specifications shortened from {len(old)} to {len(new)} characters",
                SheetName.PARTS, item.row_number, "Specifications"
            ))


def validate_import(diff: DiffResult, workbook: ParsedWorkbook) -> ValidationResult:
    """Convenience wrapper around ValidationEngine().validate()."""
    return ValidationEngine().validate(diff, workbook)
