"""
Tests for import history records.
"""

from models.catalog_import import ImportMetadata, ImportSummary
from services.import_history_service import ImportHistoryService, compute_file_hash


def metadata(name="catalog.xlsx") -> ImportMetadata:
    return ImportMetadata(
        file_name=name,
        file_size_bytes=1024,
        file_hash=compute_file_hash(b"content"),
        imported_by="ana",
    )


class TestImportHistory:

    def test_create_and_complete(self, fake_db):
        service = ImportHistoryService()

        import_id = service.create({"parts": []}, metadata())
        service.mark_completed(import_id, ImportSummary(adds=2, deletes=1), rows_imported=3, execution_time_ms=40)

        row = service.get(import_id)
        assert row["status"] == "completed"
        assert row["stage"] == "history"
        assert row["rows_imported"] == 3
        assert row["import_summary"] == {"adds": 2, "updates": 0, "deletes": 1}
        assert row["snapshot_data"] == {"parts": []}

    def test_mark_failed_never_raises(self, fake_db):
        service = ImportHistoryService()
        import_id = service.create({}, metadata())
        fake_db.fail_on("import_history", "update")

        service.mark_failed(import_id, "apply", "boom")

        assert service.get(import_id)["status"] == "running"

    def test_newest_and_list(self, fake_db):
        service = ImportHistoryService()
        first = service.create({}, metadata("a.xlsx"))
        second = service.create({}, metadata("b.xlsx"))

        assert service.get_newest_id() == second
        entries = service.list_recent()
        assert [e.id for e in entries] == [second, first]
        assert entries[0].file_name == "b.xlsx"

    def test_prune_keeps_newest(self, fake_db):
        service = ImportHistoryService()
        ids = [service.create({}, metadata()) for _ in range(5)]

        deleted = service.prune(retain=3)

        assert deleted == 2
        assert {r["id"] for r in fake_db.tables["import_history"]} == set(ids[2:])

    def test_file_hash(self):
        assert compute_file_hash(b"abc") == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )
