"""
Tests for the import executor against the in-memory database.
"""

import pytest

from exceptions import (
    AcknowledgmentRequiredError,
    ImportExecutionError,
    ImportInProgressError,
    ImportNotApplicableError,
    StaleDiffError,
)
from models.catalog_import import Operation
from services.import_executor import ImportExecutor
from services.operation_lock import Deadline, get_operation_lock
from tests.factories import part_by_sku, preview_edit, row_where, seed_catalog


def apply(preview, acknowledged=True, **executor_kwargs):
    return ImportExecutor(**executor_kwargs).apply(
        preview.diff, preview.validation, acknowledged, preview.metadata
    )


def sku_of(fake_db, part_id):
    return next(p["acr_sku"] for p in fake_db.tables["parts"] if p["id"] == part_id)


def history_rows(fake_db):
    return fake_db.tables["import_history"]


@pytest.fixture
def catalog(fake_db):
    return seed_catalog(fake_db)


# ===================
# APPLY
# ===================

class TestApply:

    def test_applies_mixed_changes(self, fake_db, catalog):
        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = "Tambor"
            sheets["Parts"] = [p for p in sheets["Parts"] if p["ACR_SKU"] != "ACR300"]
            sheets["Parts"].append({"ACR_SKU": "ACR400", "Part_Type": "MAZA"})
            sheets["Vehicle Applications"].append({
                "ACR_SKU": "ACR400", "Make": "FORD", "Model": "FOCUS",
                "Start_Year": 2012, "End_Year": 2018,
            })

        result = apply(preview_edit(edit))

        skus = sorted(p["acr_sku"] for p in fake_db.tables["parts"])
        assert skus == ["ACR100", "ACR200", "ACR400"]
        assert part_by_sku({"parts": fake_db.tables["parts"]}, "ACR100")["part_type"] == "Tambor"

        vas = fake_db.tables["vehicle_applications"]
        assert sorted(sku_of(fake_db, v["part_id"]) for v in vas) == ["ACR200", "ACR200", "ACR400"]
        assert not any(v["model"] == "SENTRA" for v in vas)

        assert result.summary.total_adds == 2
        assert result.summary.total_updates == 1
        assert result.summary.total_deletes == 2
        assert result.changes_by_sheet["Vehicle Applications"] == {"adds": 1, "updates": 0, "deletes": 1}

    def test_records_completed_history(self, fake_db, catalog):
        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = "Tambor"

        preview = preview_edit(edit, imported_by="ana@example.com")
        result = apply(preview)

        [row] = history_rows(fake_db)
        assert row["id"] == result.import_id
        assert row["status"] == "completed"
        assert row["rows_imported"] == 1
        assert row["imported_by"] == "ana@example.com"
        assert row["file_hash"] == preview.metadata.file_hash
        assert row["import_summary"] == {"adds": 0, "updates": 1, "deletes": 0}
        assert len(row["snapshot_data"]["parts"]) == 3

    def test_write_order(self, fake_db, catalog):
        """Children go before their parts are deleted and after new parts exist."""
        def edit(sheets):
            sheets["Parts"] = [p for p in sheets["Parts"] if p["ACR_SKU"] != "ACR300"]
            sheets["Parts"].append({"ACR_SKU": "ACR400", "Part_Type": "MAZA"})
            sheets["Cross References"].append({
                "ACR_SKU": "ACR400", "Competitor_Brand": "SKF", "Competitor_SKU": "BR930",
            })

        preview = preview_edit(edit)
        fake_db.calls.clear()
        apply(preview)

        writes = [c for c in fake_db.calls if c[1] != "select" and c[0] != "import_history"]
        assert writes == [
            ("vehicle_applications", "delete"),
            ("parts", "insert"),
            ("cross_references", "insert"),
            ("parts", "delete"),
        ]

    def test_added_part_is_unchanged_after_reexport(self, fake_db, catalog):
        def edit(sheets):
            sheets["Parts"].append({"ACR_SKU": "ACR500", "Part_Type": "Disco"})

        apply(preview_edit(edit))
        reexported = preview_edit()

        assert reexported.diff.summary["total_changes"] == 0
        [item] = [i for i in reexported.diff.parts.unchanged if i.after.acr_sku == "ACR500"]
        assert item.after.part_type == "Disco"
        assert item.record_id == part_by_sku({"parts": fake_db.tables["parts"]}, "ACR500")["id"]

    def test_renamed_part_keeps_children(self, fake_db, catalog):
        acr200 = part_by_sku(catalog, "ACR200")

        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR200")["ACR_SKU"] = "ACR200-B"
            for row in sheets["Vehicle Applications"] + sheets["Cross References"]:
                if row["ACR_SKU"] == "ACR200":
                    row["ACR_SKU"] = "ACR200-B"

        preview = preview_edit(edit)
        assert preview.validation.valid
        apply(preview)

        assert sku_of(fake_db, acr200["id"]) == "ACR200-B"
        assert len([v for v in fake_db.tables["vehicle_applications"] if v["part_id"] == acr200["id"]]) == 2


# ===================
# GATES
# ===================

class TestGates:

    def test_errors_block_apply(self, fake_db, catalog):
        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = None

        with pytest.raises(ImportNotApplicableError):
            apply(preview_edit(edit))

        assert history_rows(fake_db) == []

    def test_warnings_require_acknowledgment(self, fake_db, catalog):
        def edit(sheets):
            sheets["Parts"] = [p for p in sheets["Parts"] if p["ACR_SKU"] != "ACR100"]

        preview = preview_edit(edit)

        with pytest.raises(AcknowledgmentRequiredError) as exc_info:
            apply(preview, acknowledged=False)

        assert exc_info.value.status_code == 409
        assert len(fake_db.tables["parts"]) == 3
        assert history_rows(fake_db) == []

    def test_rejected_while_lock_held(self, fake_db, catalog):
        preview = preview_edit()

        with get_operation_lock().hold(Operation.ROLLBACK):
            with pytest.raises(ImportInProgressError) as exc_info:
                apply(preview)

        assert exc_info.value.details["running_operation"] == "rollback"
        assert history_rows(fake_db) == []
        assert not get_operation_lock().status().running


# ===================
# FAILURES
# ===================

class TestFailures:

    def test_stale_preview_rejected(self, fake_db, catalog):
        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = "Tambor"

        preview = preview_edit(edit)
        # Someone edits the part between preview and execute
        part_by_sku({"parts": fake_db.tables["parts"]}, "ACR100")["part_type"] = "Rotor"

        with pytest.raises(StaleDiffError) as exc_info:
            apply(preview)

        error = exc_info.value
        assert error.status_code == 409
        assert error.details["stage"] == "validate"
        assert error.details["conflicts"]
        assert part_by_sku({"parts": fake_db.tables["parts"]}, "ACR100")["part_type"] == "Rotor"
        [row] = history_rows(fake_db)
        assert row["status"] == "failed"
        assert row["stage"] == "validate"

    def test_sku_added_since_preview_is_stale(self, fake_db, catalog):
        def edit(sheets):
            sheets["Parts"].append({"ACR_SKU": "ACR400", "Part_Type": "MAZA"})

        preview = preview_edit(edit)
        fake_db.insert_row("parts", {"acr_sku": "ACR400", "part_type": "MAZA", "workflow_status": "ACTIVE"})

        with pytest.raises(StaleDiffError):
            apply(preview)

    def test_child_created_since_preview_is_stale(self, fake_db, catalog):
        """A record the preview never saw would be cascaded without a warning."""
        def edit(sheets):
            sheets["Parts"] = [p for p in sheets["Parts"] if p["ACR_SKU"] != "ACR200"]

        preview = preview_edit(edit)
        kia = fake_db.insert_row("vehicle_applications", {
            "part_id": part_by_sku(catalog, "ACR200")["id"],
            "make": "KIA", "model": "RIO", "start_year": 2016, "end_year": 2020,
        })

        with pytest.raises(StaleDiffError) as exc_info:
            apply(preview)

        conflicts = exc_info.value.details["conflicts"]
        assert any(kia["id"] in c and "created since the preview" in c for c in conflicts)
        assert any(v["id"] == kia["id"] for v in fake_db.tables["vehicle_applications"])
        assert any(p["acr_sku"] == "ACR200" for p in fake_db.tables["parts"])

    def test_write_failure_reports_import_id(self, fake_db, catalog):
        def edit(sheets):
            sheets["Parts"].append({"ACR_SKU": "ACR400", "Part_Type": "MAZA"})
            sheets["Vehicle Applications"].append({
                "ACR_SKU": "ACR400", "Make": "FORD", "Model": "FOCUS",
                "Start_Year": 2012, "End_Year": 2018,
            })

        preview = preview_edit(edit)
        fake_db.fail_on("vehicle_applications", "insert")

        with pytest.raises(ImportExecutionError) as exc_info:
            apply(preview)

        error = exc_info.value
        assert error.code == "IMPORT_EXECUTION_FAILED"
        assert error.details["stage"] == "apply"
        assert error.details["rollback_available"] is True
        assert error.details["cause"] == "DATABASE_ERROR"
        [row] = history_rows(fake_db)
        assert error.details["import_id"] == row["id"]
        assert row["status"] == "failed"
        # The part insert before the failure stays until rolled back
        assert any(p["acr_sku"] == "ACR400" for p in fake_db.tables["parts"])
        assert not get_operation_lock().status().running

    def test_snapshot_failure_has_nothing_to_roll_back(self, fake_db, catalog):
        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = "Tambor"

        preview = preview_edit(edit)
        fake_db.fail_on("import_history", "insert")

        with pytest.raises(ImportExecutionError) as exc_info:
            apply(preview)

        assert exc_info.value.details["stage"] == "snapshot"
        assert exc_info.value.details["import_id"] is None
        assert exc_info.value.details["rollback_available"] is False
        assert part_by_sku({"parts": fake_db.tables["parts"]}, "ACR100")["part_type"] == "Disco"

    def test_timeout(self, fake_db, catalog):
        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = "Tambor"

        preview = preview_edit(edit)

        with pytest.raises(ImportExecutionError) as exc_info:
            apply(preview, timeout_seconds=1e-9)

        error = exc_info.value
        assert error.code == "IMPORT_TIMEOUT"
        assert error.status_code == 504
        assert error.details["import_id"] is not None
        assert history_rows(fake_db)[0]["status"] == "failed"

    def test_no_deadline_check_after_last_write(self, fake_db, catalog, monkeypatch):
        checked = []
        monkeypatch.setattr(Deadline, "check", lambda self, stage: checked.append(stage))

        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = "Tambor"

        apply(preview_edit(edit))

        assert "snapshot" in checked
        assert "history" not in checked
        assert history_rows(fake_db)[0]["status"] == "completed"


# ===================
# HISTORY RETENTION
# ===================

class TestHistoryRetention:

    def test_keeps_newest_three(self, fake_db, catalog):
        import_ids = []
        for part_type in ("T1", "T2", "T3", "T4"):
            def edit(sheets, part_type=part_type):
                row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = part_type

            import_ids.append(apply(preview_edit(edit)).import_id)

        remaining = {row["id"] for row in history_rows(fake_db)}
        assert remaining == set(import_ids[1:])

    def test_prune_failure_does_not_fail_import(self, fake_db, catalog):
        for _ in range(3):
            fake_db.insert_row("import_history", {"file_name": "old.xlsx", "snapshot_data": {}})

        def edit(sheets):
            row_where(sheets["Parts"], ACR_SKU="ACR100")["Part_Type"] = "Tambor"

        preview = preview_edit(edit)
        fake_db.fail_on("import_history", "delete")

        result = apply(preview)

        assert result.summary.total_updates == 1
        assert len(history_rows(fake_db)) == 4
