"""
Import history: one row per bulk import, carrying the rollback snapshot.

A row is created when the snapshot is persisted, completed or failed at
the end of the apply, and deleted when a rollback consumes it or when it
falls outside the retention window.
"""

import hashlib
import structlog
from typing import Optional

from config import get_supabase_client
from config.settings import settings
from exceptions import DatabaseError
from models.catalog_import import (
    ImportHistoryEntry,
    ImportHistoryStatus,
    ImportMetadata,
    ImportStage,
    ImportSummary,
)

logger = structlog.get_logger(__name__)

# Everything except the snapshot payload
LIST_COLUMNS = (
    "id, file_name, file_size_bytes, file_hash, imported_by, rows_imported, "
    "import_summary, status, stage, error_message, execution_time_ms, created_at"
)


def compute_file_hash(content: bytes) -> str:
    """SHA-256 of the uploaded file, recorded for audit."""
    return hashlib.sha256(content).hexdigest()


class ImportHistoryService:
    def __init__(self):
        self.db = get_supabase_client()
        self.table = "import_history"

    def create(self, snapshot_data: dict, metadata: ImportMetadata) -> str:
        """
        Persist the snapshot for a starting import.

        Returns:
            The new import id

        Raises:
            DatabaseError: If the insert fails
        """
        try:
            result = self.db.table(self.table).insert({
                "file_name": metadata.file_name,
                "file_size_bytes": metadata.file_size_bytes,
                "file_hash": metadata.file_hash,
                "imported_by": metadata.imported_by,
                "snapshot_data": snapshot_data,
                "rows_imported": 0,
                "status": ImportHistoryStatus.RUNNING.value,
                "stage": ImportStage.SNAPSHOT.value,
            }).execute()
        except Exception as e:
            logger.error("import_history_create_failed", file_name=metadata.file_name, error=str(e))
            raise DatabaseError("insert", str(e), details={"table": self.table})

        if not result.data:
            raise DatabaseError("insert", "No row returned", details={"table": self.table})

        import_id = result.data[0]["id"]
        logger.info("import_snapshot_persisted", import_id=import_id, file_name=metadata.file_name)
        return import_id

    def mark_completed(
        self,
        import_id: str,
        summary: ImportSummary,
        rows_imported: int,
        execution_time_ms: int,
    ) -> None:
        try:
            self.db.table(self.table).update({
                "import_summary": summary.model_dump(),
                "rows_imported": rows_imported,
                "status": ImportHistoryStatus.COMPLETED.value,
                "stage": ImportStage.HISTORY.value,
                "execution_time_ms": execution_time_ms,
            }).eq("id", import_id).execute()
        except Exception as e:
            logger.error("import_history_complete_failed", import_id=import_id, error=str(e))
            raise DatabaseError("update", str(e), details={"table": self.table})

        logger.info("import_history_completed", import_id=import_id, rows_imported=rows_imported)

    def mark_failed(
        self,
        import_id: str,
        stage: str,
        error_message: str,
        execution_time_ms: int = 0,
    ) -> None:
        """Record a failed import. The snapshot stays for rollback."""
        truncated_msg = error_message[:2000] if error_message else "Unknown error"
        try:
            self.db.table(self.table).update({
                "status": ImportHistoryStatus.FAILED.value,
                "stage": stage,
                "error_message": truncated_msg,
                "execution_time_ms": execution_time_ms,
            }).eq("id", import_id).execute()
            logger.info("import_history_failed_recorded", import_id=import_id, stage=stage)
        except Exception as log_err:
            # Never let failure logging hide the original error
            logger.warning(
                "failed_to_record_import_failure",
                import_id=import_id,
                log_error=str(log_err),
            )

    def get(self, import_id: str) -> Optional[dict]:
        """Full history row including snapshot_data, or None."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", import_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("import_history_get_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e), details={"table": self.table})

        return result.data[0] if result.data else None

    def get_newest_id(self) -> Optional[str]:
        try:
            result = (
                self.db.table(self.table)
                .select("id, created_at")
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("import_history_newest_failed", error=str(e))
            raise DatabaseError("select", str(e), details={"table": self.table})

        return result.data[0]["id"] if result.data else None

    def list_recent(self, limit: int = 10) -> list[ImportHistoryEntry]:
        """Newest first, without snapshot payloads."""
        try:
            result = (
                self.db.table(self.table)
                .select(LIST_COLUMNS)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("import_history_list_failed", error=str(e))
            raise DatabaseError("select", str(e), details={"table": self.table})

        return [ImportHistoryEntry(**row) for row in result.data or []]

    def delete(self, import_id: str) -> None:
        try:
            self.db.table(self.table).delete().eq("id", import_id).execute()
        except Exception as e:
            logger.error("import_history_delete_failed", import_id=import_id, error=str(e))
            raise DatabaseError("delete", str(e), details={"table": self.table})

        logger.info("import_history_deleted", import_id=import_id)

    def prune(self, retain: Optional[int] = None) -> int:
        """
        Delete history rows beyond the newest `retain`.

        Returns:
            Number of rows deleted
        """
        retain = retain or settings.import_history_retention
        try:
            result = (
                self.db.table(self.table)
                .select("id, created_at")
                .order("created_at", desc=True)
                .execute()
            )
            stale_ids = [row["id"] for row in (result.data or [])[retain:]]
            if stale_ids:
                self.db.table(self.table).delete().in_("id", stale_ids).execute()
        except Exception as e:
            logger.error("import_history_prune_failed", error=str(e))
            raise DatabaseError("delete", str(e), details={"table": self.table})

        if stale_ids:
            logger.info("import_history_pruned", deleted=len(stale_ids), retained=retain)
        return len(stale_ids)


_service: Optional[ImportHistoryService] = None


def get_import_history_service() -> ImportHistoryService:
    global _service
    if _service is None:
        _service = ImportHistoryService()
    return _service
