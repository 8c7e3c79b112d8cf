"""
Import executor.

Applies a validated, acknowledged diff in four stages:

    snapshot → validate → apply → history

The snapshot is persisted before anything is written, so any failure
after that point can be undone with a rollback of the returned import id.
"""

from typing import Callable, Optional
import structlog

from config.settings import settings
from exceptions import (
    AcknowledgmentRequiredError,
    AppError,
    ImportExecutionError,
    ImportNotApplicableError,
    StaleDiffError,
)
from models.catalog import CatalogTable, to_write_record
from models.catalog_import import (
    ImportMetadata,
    ImportResult,
    ImportResultSummary,
    ImportStage,
    ImportSummary,
    Operation,
)
from services.catalog_repository import CatalogRepository, get_catalog_repository
from services.diff_engine import DiffItem, DiffResult, SheetDiff, normalize_id, store_rows_from_records
from services.import_history_service import ImportHistoryService, get_import_history_service
from services.operation_lock import Deadline, OperationHandle, OperationLock, get_operation_lock
from services.snapshot_service import ImportSnapshot, SnapshotService
from services.validation_engine import ValidationResult
from utils.text_utils import normalize_key_part, normalize_sku

logger = structlog.get_logger(__name__)


class ImportExecutor:
    def __init__(
        self,
        repository: Optional[CatalogRepository] = None,
        history: Optional[ImportHistoryService] = None,
        lock: Optional[OperationLock] = None,
        timeout_seconds: Optional[int] = None,
    ):
        self.repository = repository or get_catalog_repository()
        self.history = history or get_import_history_service()
        self.snapshots = SnapshotService(self.repository, self.history)
        self.lock = lock or get_operation_lock()
        self.timeout_seconds = timeout_seconds or settings.import_timeout_seconds

    def apply(
        self,
        diff: DiffResult,
        validation: ValidationResult,
        acknowledged: bool,
        metadata: ImportMetadata,
        on_started: Optional[Callable[[], None]] = None,
    ) -> ImportResult:
        """
        Apply a previewed diff.

        on_started runs once the operation lock is held, before the snapshot.

        Raises:
            ImportNotApplicableError: validation errors exist
            AcknowledgmentRequiredError: warnings exist and were not acknowledged
            ImportInProgressError: another import or rollback is running
            ImportExecutionError: a stage failed (details name the stage and
                the import id to roll back, if the snapshot was persisted)
        """
        if not validation.valid:
            raise ImportNotApplicableError(len(validation.errors))
        if validation.requires_acknowledgment and not acknowledged:
            raise AcknowledgmentRequiredError(len(validation.warnings))

        with self.lock.hold(Operation.IMPORT) as handle:
            if on_started is not None:
                on_started()
            return self._run(diff, metadata, handle)

    def _run(self, diff: DiffResult, metadata: ImportMetadata, handle: OperationHandle) -> ImportResult:
        deadline = Deadline(Operation.IMPORT, self.timeout_seconds)
        import_id: Optional[str] = None
        stage = ImportStage.SNAPSHOT

        logger.info("import_started", file_name=metadata.file_name, **_flat_summary(diff))

        try:
            handle.set_stage(stage.value)
            snapshot = self.snapshots.capture()
            import_id = self.snapshots.persist(snapshot, metadata)
            handle.set_stage(stage.value, import_id)
            deadline.check(stage.value)

            stage = ImportStage.VALIDATE
            handle.set_stage(stage.value)
            conflicts = find_stale_conflicts(diff, snapshot)
            if conflicts:
                raise StaleDiffError(import_id, conflicts)
            deadline.check(stage.value)

            stage = ImportStage.APPLY
            handle.set_stage(stage.value)
            summary = self._apply_changes(diff, deadline, handle)

            # Every write has landed; no deadline check from here on
            stage = ImportStage.HISTORY
            handle.set_stage(stage.value)
            self.history.mark_completed(
                import_id,
                summary,
                rows_imported=summary.total_changes,
                execution_time_ms=deadline.elapsed_ms,
            )

        except ImportExecutionError as e:
            self._record_failure(import_id, stage, e.message, deadline)
            raise
        except AppError as e:
            self._record_failure(import_id, stage, e.message, deadline)
            raise ImportExecutionError(
                stage=stage.value,
                message=f"Import failed during {stage.value}: {e.message}",
                import_id=import_id,
                code=e.code if e.code == "IMPORT_TIMEOUT" else "IMPORT_EXECUTION_FAILED",
                status_code=504 if e.code == "IMPORT_TIMEOUT" else 500,
                details={"cause": e.code, **e.details}
            ) from e
        except Exception as e:
            self._record_failure(import_id, stage, str(e), deadline)
            raise ImportExecutionError(
                stage=stage.value,
                message=f"Import failed during {stage.value}: {e}",
                import_id=import_id,
                details={"error_type": type(e).__name__}
            ) from e

        self._prune_history()

        logger.info(
            "import_completed",
            import_id=import_id,
            adds=summary.adds,
            updates=summary.updates,
            deletes=summary.deletes,
            execution_time_ms=deadline.elapsed_ms
        )

        return ImportResult(
            import_id=import_id,
            summary=ImportResultSummary(
                total_adds=summary.adds,
                total_updates=summary.updates,
                total_deletes=summary.deletes,
                total_changes=summary.total_changes,
            ),
            changes_by_sheet={
                sheet: {k: counts[k] for k in ("adds", "updates", "deletes")}
                for sheet, counts in diff.summary["changes_by_sheet"].items()
            },
            execution_time_ms=deadline.elapsed_ms,
        )

    def _record_failure(
        self,
        import_id: Optional[str],
        stage: ImportStage,
        message: str,
        deadline: Deadline,
    ) -> None:
        logger.error("import_failed", import_id=import_id, stage=stage.value, error=message)
        if import_id is not None:
            self.history.mark_failed(import_id, stage.value, message, deadline.elapsed_ms)

    def _prune_history(self) -> None:
        try:
            self.history.prune(settings.import_history_retention)
        except AppError as e:
            # Data is already applied; a stale extra snapshot is harmless
            logger.warning("import_history_prune_skipped", error=e.message)

    # ===================
    # APPLY
    # ===================

    def _apply_changes(self, diff: DiffResult, deadline: Deadline, handle: OperationHandle) -> ImportSummary:
        """
        Write the diff in dependency order.

        1. child deletes (cross references, vehicle applications)
        2. part adds, capturing generated ids by SKU
        3. part updates
        4. child adds and updates, pending parents resolved by SKU
        5. part deletes
        6. alias deletes, adds, updates
        """
        repo = self.repository

        def checkpoint() -> None:
            deadline.check(ImportStage.APPLY.value)

        def step(name: str) -> None:
            handle.set_stage(f"{ImportStage.APPLY.value}:{name}")
            checkpoint()

        step("child_deletes")
        repo.bulk_delete(CatalogTable.CROSS_REFERENCES, _delete_ids(diff.cross_references), checkpoint)
        repo.bulk_delete(CatalogTable.VEHICLE_APPLICATIONS, _delete_ids(diff.vehicle_applications), checkpoint)

        step("part_adds")
        inserted = repo.bulk_insert(
            CatalogTable.PARTS,
            [to_write_record(CatalogTable.PARTS, item.after.to_record()) for item in diff.parts.adds],
            checkpoint,
        )
        new_part_ids = {normalize_sku(row["acr_sku"]): row["id"] for row in inserted}

        step("part_updates")
        repo.bulk_update(CatalogTable.PARTS, _update_records(CatalogTable.PARTS, diff.parts.updates), checkpoint)

        step("child_writes")
        for table, sheet_diff in (
            (CatalogTable.VEHICLE_APPLICATIONS, diff.vehicle_applications),
            (CatalogTable.CROSS_REFERENCES, diff.cross_references),
        ):
            adds = [
                to_write_record(table, _child_record(item, new_part_ids))
                for item in sheet_diff.adds
            ]
            updates = [
                {**to_write_record(table, _child_record(item, new_part_ids)), "id": item.before.id}
                for item in sheet_diff.updates
            ]
            repo.bulk_insert(table, adds, checkpoint)
            repo.bulk_update(table, updates, checkpoint)

        step("part_deletes")
        repo.bulk_delete(CatalogTable.PARTS, _delete_ids(diff.parts), checkpoint)

        step("aliases")
        aliases = diff.vehicle_aliases
        repo.bulk_delete(CatalogTable.VEHICLE_ALIASES, _delete_ids(aliases), checkpoint)
        repo.bulk_insert(
            CatalogTable.VEHICLE_ALIASES,
            [to_write_record(CatalogTable.VEHICLE_ALIASES, item.after.to_record()) for item in aliases.adds],
            checkpoint,
        )
        repo.bulk_update(
            CatalogTable.VEHICLE_ALIASES,
            _update_records(CatalogTable.VEHICLE_ALIASES, aliases.updates),
            checkpoint,
        )

        sheets = diff.sheets()
        return ImportSummary(
            adds=sum(len(s.adds) for s in sheets),
            updates=sum(len(s.updates) for s in sheets),
            deletes=sum(len(s.deletes) for s in sheets),
        )


def _delete_ids(sheet_diff: SheetDiff) -> list[str]:
    return [item.before.id for item in sheet_diff.deletes]


def _update_records(table: CatalogTable, items: list[DiffItem]) -> list[dict]:
    return [{**to_write_record(table, item.after.to_record()), "id": item.before.id} for item in items]


def _child_record(item: DiffItem, new_part_ids: dict[str, str]) -> dict:
    record = item.after.to_record()
    if not record.get("part_id") and not record.get("acr_part_id"):
        part_id = new_part_ids.get(normalize_sku(item.after.acr_sku))
        if part_id is None:
            raise ValueError(f"No part id for SKU {normalize_sku(item.after.acr_sku)}")
        key = "acr_part_id" if "acr_part_id" in record else "part_id"
        record[key] = part_id
    return record


# ===================
# STALE CHECK
# ===================

def find_stale_conflicts(diff: DiffResult, snapshot: ImportSnapshot) -> list[str]:
    """
    Compare the previewed diff with the catalog as it is now.

    Every update/delete target must still exist with its previewed values,
    no record may have been created since the preview (the diff never saw
    it, so it would be deleted or cascaded without a warning), and no SKU or
    alias the import adds may have appeared since the preview.
    """
    current = store_rows_from_records(snapshot.tables())
    conflicts: list[str] = []

    pairs = (
        (diff.parts, current.parts),
        (diff.vehicle_applications, current.vehicle_applications),
        (diff.cross_references, current.cross_references),
        (diff.vehicle_aliases, current.vehicle_aliases),
    )
    for sheet_diff, current_rows in pairs:
        by_id = {normalize_id(r.id): r for r in current_rows}
        for item in sheet_diff.updates + sheet_diff.deletes:
            now = by_id.get(item.record_id)
            if now is None:
                conflicts.append(f"{sheet_diff.sheet.value}: record {item.record_id} no longer exists")
            elif now.to_record() != item.before.to_record():
                conflicts.append(f"{sheet_diff.sheet.value}: record {item.record_id} was modified")

        previewed_ids = {item.record_id for item in sheet_diff.items() if item.before is not None}
        for record_id in by_id:
            if record_id not in previewed_ids:
                conflicts.append(f"{sheet_diff.sheet.value}: record {record_id} was created since the preview")

    known_skus = {normalize_sku(i.before.acr_sku) for i in diff.parts.items() if i.before is not None}
    current_skus = {normalize_sku(p.acr_sku) for p in current.parts}
    for item in diff.parts.adds:
        sku = normalize_sku(item.after.acr_sku)
        if sku in current_skus and sku not in known_skus:
            conflicts.append(f"{diff.parts.sheet.value}: SKU {sku} was added since the preview")

    known_aliases = {normalize_key_part(i.before.alias) for i in diff.vehicle_aliases.items() if i.before is not None}
    current_aliases = {normalize_key_part(a.alias) for a in current.vehicle_aliases}
    for item in diff.vehicle_aliases.adds:
        alias = normalize_key_part(item.after.alias)
        if alias in current_aliases and alias not in known_aliases:
            conflicts.append(f"{diff.vehicle_aliases.sheet.value}: alias {alias} was added since the preview")

    if conflicts:
        logger.warning("stale_preview_detected", conflict_count=len(conflicts))
    return conflicts


def _flat_summary(diff: DiffResult) -> dict:
    return {k: v for k, v in diff.summary.items() if k != "changes_by_sheet"}
