"""
Diff engine: workbook rows vs. catalog store contents.

The workbook is the full desired state. For each entity the engine
classifies every file row and every store row exactly once as add, update,
delete or unchanged. Rows whose hidden id no longer exists in the store are
rejected into id_not_found and never classified.

Matching and comparison per entity live in a strategy; the generic
diff_sheet() walk is the same for all four sheets.
"""

from dataclasses import dataclass, field, fields, replace, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar
import structlog

from models.catalog import CatalogTable
from parsers.catalog_columns import (
    CatalogRows,
    CrossReferenceRow,
    ParentState,
    PartRow,
    SheetName,
    VehicleAliasRow,
    VehicleApplicationRow,
    is_tombstone,
    parse_status,
)
from parsers.workbook_parser import ParsedWorkbook
from utils.text_utils import canonical_text, canonical_value, normalize_sku

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ChangeKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    UNCHANGED = "unchanged"


class DeleteReason(str, Enum):
    MISSING_FROM_FILE = "missing_from_file"
    TOMBSTONE = "tombstone"
    CASCADE = "cascade"


def normalize_id(value: Any) -> Optional[str]:
    """Ids compare case-insensitively (Postgres renders UUIDs lowercase)."""
    text = canonical_text(value)
    return text.lower() if text else None


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    value = canonical_value(value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def row_to_dict(row: Any) -> Optional[dict]:
    """Serialize a row dataclass for API responses."""
    if row is None or not is_dataclass(row):
        return None
    return {f.name: _jsonable(getattr(row, f.name)) for f in fields(row)}


# ===================
# DIFF TYPES
# ===================

@dataclass
class DiffItem(Generic[T]):
    """
    One classified row.

    before is the store row (None for adds); after is the prepared file row
    (None when the row is absent from the file).
    """
    kind: ChangeKind
    before: Optional[T] = None
    after: Optional[T] = None
    changes: list[str] = field(default_factory=list)
    reason: Optional[DeleteReason] = None

    @property
    def row(self) -> T:
        return self.after if self.after is not None else self.before

    @property
    def row_number(self) -> Optional[int]:
        return getattr(self.after, "row_number", None) if self.after is not None else None

    @property
    def record_id(self) -> Optional[str]:
        source = self.before if self.before is not None else self.after
        return normalize_id(getattr(source, "id", None))

    def to_dict(self) -> dict:
        data = {
            "kind": self.kind.value,
            "id": self.record_id,
            "row": self.row_number,
            "before": row_to_dict(self.before),
            "after": row_to_dict(self.after),
        }
        if self.kind == ChangeKind.UPDATE:
            data["changes"] = list(self.changes)
        if self.reason is not None:
            data["reason"] = self.reason.value
        return data


@dataclass
class SheetDiff(Generic[T]):
    """Classification of one entity sheet."""
    sheet: SheetName
    sheet_present: bool = True
    adds: list[DiffItem[T]] = field(default_factory=list)
    updates: list[DiffItem[T]] = field(default_factory=list)
    deletes: list[DiffItem[T]] = field(default_factory=list)
    unchanged: list[DiffItem[T]] = field(default_factory=list)
    id_not_found: list[T] = field(default_factory=list)
    duplicate_ids: list[T] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "adds": len(self.adds),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
            "unchanged": len(self.unchanged),
            "id_not_found": len(self.id_not_found),
            "total_changes": len(self.adds) + len(self.updates) + len(self.deletes),
        }

    @property
    def has_changes(self) -> bool:
        return bool(self.adds or self.updates or self.deletes)

    def items(self) -> list[DiffItem[T]]:
        return self.adds + self.updates + self.deletes + self.unchanged

    def to_dict(self, include_unchanged: bool = False) -> dict:
        data = {
            "sheet": self.sheet.value,
            "sheet_present": self.sheet_present,
            "summary": self.summary,
            "adds": [i.to_dict() for i in self.adds],
            "updates": [i.to_dict() for i in self.updates],
            "deletes": [i.to_dict() for i in self.deletes],
            "id_not_found": [row_to_dict(r) for r in self.id_not_found],
        }
        if include_unchanged:
            data["unchanged"] = [i.to_dict() for i in self.unchanged]
        return data


@dataclass
class DiffResult:
    """One SheetDiff per entity plus the aggregate summary."""
    parts: SheetDiff[PartRow]
    vehicle_applications: SheetDiff[VehicleApplicationRow]
    cross_references: SheetDiff[CrossReferenceRow]
    vehicle_aliases: SheetDiff[VehicleAliasRow]
    parts_context: Optional["PartsContext"] = None

    def sheets(self) -> list[SheetDiff]:
        return [self.parts, self.vehicle_applications, self.cross_references, self.vehicle_aliases]

    @property
    def summary(self) -> dict:
        sheets = self.sheets()
        total_adds = sum(len(s.adds) for s in sheets)
        total_updates = sum(len(s.updates) for s in sheets)
        total_deletes = sum(len(s.deletes) for s in sheets)
        return {
            "total_adds": total_adds,
            "total_updates": total_updates,
            "total_deletes": total_deletes,
            "total_unchanged": sum(len(s.unchanged) for s in sheets),
            "total_changes": total_adds + total_updates + total_deletes,
            "changes_by_sheet": {s.sheet.value: s.summary for s in sheets},
        }

    @property
    def has_changes(self) -> bool:
        return any(s.has_changes for s in self.sheets())

    def to_dict(self, include_unchanged: bool = False) -> dict:
        return {
            "summary": self.summary,
            "sheets": {s.sheet.value: s.to_dict(include_unchanged) for s in self.sheets()},
        }


# ===================
# STRATEGIES
# ===================

class EntityStrategy(Generic[T]):
    """Per-entity matching and comparison used by diff_sheet()."""

    sheet: SheetName
    table: CatalogTable

    def prepare(self, row: T) -> T:
        """Return the file row with derived values filled in."""
        return row

    def compare_values(self, row: T) -> dict:
        return row.to_record()

    def sort_key(self, row: T) -> tuple:
        return row.business_key

    def is_tombstone(self, row: T) -> bool:
        return is_tombstone(row.status)

    def is_cascade_delete(self, before: T, after: Optional[T]) -> bool:
        """True when the store row goes away because its parent part does."""
        return False

    @staticmethod
    def describe(row: T) -> str:
        """Human-readable label used in validation messages."""
        return str(row.business_key)


class PartStrategy(EntityStrategy[PartRow]):
    sheet = SheetName.PARTS
    table = CatalogTable.PARTS

    def prepare(self, row: PartRow) -> PartRow:
        status = parse_status(row.status)
        return replace(row, workflow_status=status.value if status else None)

    @staticmethod
    def describe(row: PartRow) -> str:
        return f"Part {normalize_sku(row.acr_sku) or '(blank SKU)'}"


class VehicleAliasStrategy(EntityStrategy[VehicleAliasRow]):
    sheet = SheetName.VEHICLE_ALIASES
    table = CatalogTable.VEHICLE_ALIASES

    @staticmethod
    def describe(row: VehicleAliasRow) -> str:
        return f"Alias {canonical_text(row.alias)} → {canonical_text(row.canonical_name)}"


@dataclass
class PartsContext:
    """
    Parts outcome that child sheets resolve their parent against.

    Built from the parts SheetDiff so children see the post-import
    catalog: surviving parts by SKU and id, and parts being deleted.
    """
    surviving_by_sku: dict[str, Optional[str]] = field(default_factory=dict)
    surviving_ids: set[str] = field(default_factory=set)
    deleted_by_sku: dict[str, str] = field(default_factory=dict)
    deleted_ids: set[str] = field(default_factory=set)
    store_sku_by_id: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(cls, parts_diff: SheetDiff[PartRow], store_parts: list[PartRow]) -> "PartsContext":
        context = cls()
        for part in store_parts:
            part_id = normalize_id(part.id)
            sku = normalize_sku(part.acr_sku)
            if part_id and sku:
                context.store_sku_by_id[part_id] = sku

        for item in parts_diff.adds:
            sku = normalize_sku(item.after.acr_sku)
            if sku:
                context.surviving_by_sku[sku] = None

        for item in parts_diff.updates + parts_diff.unchanged:
            if item.before is None:
                continue
            part_id = normalize_id(item.before.id)
            context.surviving_ids.add(part_id)
            sku = normalize_sku(item.row.acr_sku)
            if sku:
                context.surviving_by_sku[sku] = part_id

        for item in parts_diff.deletes:
            part_id = normalize_id(item.before.id)
            context.deleted_ids.add(part_id)
            sku = normalize_sku(item.before.acr_sku)
            if sku and sku not in context.surviving_by_sku:
                context.deleted_by_sku[sku] = part_id

        return context

    def resolve(self, acr_sku: Any, hidden_part_id: Any) -> tuple[ParentState, Optional[str]]:
        """
        Resolve a child row's part.

        SKU against the file's surviving parts first, then the hidden part
        id, then the parts being deleted.
        """
        sku = normalize_sku(acr_sku)
        hidden = normalize_id(hidden_part_id)

        if sku and sku in self.surviving_by_sku:
            part_id = self.surviving_by_sku[sku]
            if part_id is None:
                return ParentState.PENDING_ADD, None
            return ParentState.EXISTING, part_id

        if sku is None and hidden in self.surviving_ids:
            return ParentState.EXISTING, hidden

        if sku and sku in self.deleted_by_sku:
            return ParentState.DELETED, self.deleted_by_sku[sku]
        if hidden in self.deleted_ids and (sku is None or self.store_sku_by_id.get(hidden) == sku):
            return ParentState.DELETED, hidden

        return ParentState.MISSING, None

    def sku_for(self, part_id: Any) -> Optional[str]:
        return self.store_sku_by_id.get(normalize_id(part_id))


class ChildStrategy(EntityStrategy[T]):
    """Shared parent handling for vehicle applications and cross references."""

    def __init__(self, parts: PartsContext):
        self.parts = parts

    def prepare(self, row: T) -> T:
        state, part_id = self.parts.resolve(row.acr_sku, row.part_id)
        return replace(row, part_id=part_id, parent_state=state)

    def is_cascade_delete(self, before: T, after: Optional[T]) -> bool:
        if normalize_id(before.part_id) not in self.parts.deleted_ids:
            return False
        if after is None:
            return True
        if after.parent_state == ParentState.MISSING and normalize_sku(after.acr_sku):
            # Re-pointed at an unknown part: an update, reported as an orphan
            return False
        return after.parent_state not in (ParentState.EXISTING, ParentState.PENDING_ADD)

    @staticmethod
    def describe(row: T) -> str:
        return f"{normalize_sku(row.acr_sku)} {row.label}"


class VehicleApplicationStrategy(ChildStrategy[VehicleApplicationRow]):
    sheet = SheetName.VEHICLE_APPLICATIONS
    table = CatalogTable.VEHICLE_APPLICATIONS


class CrossReferenceStrategy(ChildStrategy[CrossReferenceRow]):
    sheet = SheetName.CROSS_REFERENCES
    table = CatalogTable.CROSS_REFERENCES


STRATEGY_TYPES: dict[SheetName, type[EntityStrategy]] = {
    SheetName.PARTS: PartStrategy,
    SheetName.VEHICLE_APPLICATIONS: VehicleApplicationStrategy,
    SheetName.CROSS_REFERENCES: CrossReferenceStrategy,
    SheetName.VEHICLE_ALIASES: VehicleAliasStrategy,
}


# ===================
# DIFF
# ===================

def diff_sheet(
    file_rows: list[T],
    store_rows: list[T],
    strategy: EntityStrategy[T],
    sheet_present: bool = True,
) -> SheetDiff[T]:
    """
    Classify one entity.

    Args:
        file_rows: Parsed rows in file order
        store_rows: Current store rows (shaped as row dataclasses)
        strategy: Entity matching and comparison
        sheet_present: False when an optional sheet is absent; store rows
            are then kept unless their parent part is deleted

    Returns:
        SheetDiff with every row classified exactly once
    """
    result: SheetDiff[T] = SheetDiff(sheet=strategy.sheet, sheet_present=sheet_present)
    store_by_id = {normalize_id(r.id): r for r in store_rows}
    seen: set[str] = set()

    for raw in file_rows:
        row_id = normalize_id(raw.id)
        after = strategy.prepare(raw)

        if row_id is None:
            if strategy.is_tombstone(after):
                # Nothing to delete; validation warns about it
                result.unchanged.append(DiffItem(ChangeKind.UNCHANGED, before=None, after=after))
            else:
                result.adds.append(DiffItem(ChangeKind.ADD, after=after))
            continue

        before = store_by_id.get(row_id)
        if before is None:
            result.id_not_found.append(after)
            continue
        if row_id in seen:
            result.duplicate_ids.append(after)
            continue
        seen.add(row_id)

        if strategy.is_cascade_delete(before, after):
            result.deletes.append(DiffItem(ChangeKind.DELETE, before, after, reason=DeleteReason.CASCADE))
        elif strategy.is_tombstone(after):
            result.deletes.append(DiffItem(ChangeKind.DELETE, before, after, reason=DeleteReason.TOMBSTONE))
        else:
            old = strategy.compare_values(before)
            new = strategy.compare_values(after)
            changes = [key for key in new if old.get(key) != new[key]]
            if changes:
                result.updates.append(DiffItem(ChangeKind.UPDATE, before, after, changes=changes))
            else:
                result.unchanged.append(DiffItem(ChangeKind.UNCHANGED, before, after))

    for row_id, before in store_by_id.items():
        if row_id in seen:
            continue
        if strategy.is_cascade_delete(before, None):
            result.deletes.append(DiffItem(ChangeKind.DELETE, before, reason=DeleteReason.CASCADE))
        elif sheet_present:
            result.deletes.append(DiffItem(ChangeKind.DELETE, before, reason=DeleteReason.MISSING_FROM_FILE))
        else:
            result.unchanged.append(DiffItem(ChangeKind.UNCHANGED, before))

    def order(item: DiffItem) -> tuple:
        return (strategy.sort_key(item.row), item.record_id or "", item.row_number or 0)

    for bucket in (result.adds, result.updates, result.deletes, result.unchanged):
        bucket.sort(key=order)
    result.id_not_found.sort(key=lambda r: r.row_number or 0)

    return result


def store_rows_from_records(records: dict[CatalogTable, list[dict]]) -> CatalogRows:
    """Shape raw table rows as row dataclasses."""
    parts = [PartRow.from_record(r) for r in records.get(CatalogTable.PARTS, [])]
    sku_by_part_id = {normalize_id(p.id): p.acr_sku for p in parts}
    lookup = _IdLookup(sku_by_part_id)
    return CatalogRows(
        parts=parts,
        vehicle_applications=[
            VehicleApplicationRow.from_record(r, lookup)
            for r in records.get(CatalogTable.VEHICLE_APPLICATIONS, [])
        ],
        cross_references=[
            CrossReferenceRow.from_record(r, lookup)
            for r in records.get(CatalogTable.CROSS_REFERENCES, [])
        ],
        vehicle_aliases=[
            VehicleAliasRow.from_record(r)
            for r in records.get(CatalogTable.VEHICLE_ALIASES, [])
        ],
    )


class _IdLookup(dict):
    """dict keyed by normalized id that normalizes on get()."""

    def get(self, key, default=None):
        return super().get(normalize_id(key), default)


def compute_diff(workbook: ParsedWorkbook, store: CatalogRows) -> DiffResult:
    """
    Diff a parsed workbook against the store.

    Parts are diffed first; the child sheets resolve their parent part
    against the parts outcome.
    """
    parts_diff = diff_sheet(workbook.rows.parts, store.parts, PartStrategy())
    context = PartsContext.build(parts_diff, store.parts)

    result = DiffResult(
        parts=parts_diff,
        vehicle_applications=diff_sheet(
            workbook.rows.vehicle_applications,
            store.vehicle_applications,
            VehicleApplicationStrategy(context),
            sheet_present=workbook.has_sheet(SheetName.VEHICLE_APPLICATIONS),
        ),
        cross_references=diff_sheet(
            workbook.rows.cross_references,
            store.cross_references,
            CrossReferenceStrategy(context),
            sheet_present=workbook.has_sheet(SheetName.CROSS_REFERENCES),
        ),
        vehicle_aliases=diff_sheet(
            workbook.rows.vehicle_aliases,
            store.vehicle_aliases,
            VehicleAliasStrategy(),
            sheet_present=workbook.has_sheet(SheetName.VEHICLE_ALIASES),
        ),
        parts_context=context,
    )

    logger.info("diff_computed", **{k: v for k, v in result.summary.items() if k != "changes_by_sheet"})
    return result

