"""
Rollback service.

Restores the governed tables from an import's snapshot and consumes the
snapshot. Only the newest import can be rolled back; older ones require
rolling back the newer imports first.
"""

import structlog
from typing import Optional

from config.settings import settings
from exceptions import (
    AppError,
    InvalidStateTransitionError,
    RestoreWriteFailedError,
    SequentialRollbackError,
    SnapshotNotFoundError,
)
from models.catalog import TABLE_DELETE_ORDER, TABLE_INSERT_ORDER
from models.catalog_import import (
    ImportHistoryStatus,
    ImportState,
    Operation,
    RollbackResult,
    is_valid_import_state_transition,
)
from services.catalog_repository import CatalogRepository, get_catalog_repository
from services.import_history_service import ImportHistoryService, get_import_history_service
from services.operation_lock import Deadline, OperationLock, get_operation_lock
from services.snapshot_service import ImportSnapshot

logger = structlog.get_logger(__name__)


def import_state_for(record: dict) -> ImportState:
    """
    Workflow state of a persisted import.

    A row still marked running while the lock is free belongs to an apply
    that died mid-way, so it counts as failed.
    """
    if record.get("status") == ImportHistoryStatus.COMPLETED.value:
        return ImportState.SUCCEEDED
    return ImportState.FAILED


class RollbackService:
    def __init__(
        self,
        repository: Optional[CatalogRepository] = None,
        history: Optional[ImportHistoryService] = None,
        lock: Optional[OperationLock] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.repository = repository or get_catalog_repository()
        self.history = history or get_import_history_service()
        self.lock = lock or get_operation_lock()
        self.timeout_seconds = timeout_seconds or settings.import_timeout_seconds

    def rollback_to_import(self, import_id: str) -> RollbackResult:
        """
        Restore the catalog to its state before the given import.

        The timeout is only enforced before the first delete. Once the
        tables are being cleared the restore runs to completion, since
        stopping there would leave the catalog empty.

        Raises:
            SnapshotNotFoundError: no history row (already rolled back or pruned)
            SequentialRollbackError: a newer import exists
            ImportInProgressError: another import or rollback is running
            ImportTimeoutError: the timeout passed before anything was written
            RestoreWriteFailedError: a delete/insert failed; snapshot kept for retry
        """
        with self.lock.hold(Operation.ROLLBACK) as handle:
            handle.set_stage("loading", import_id)
            deadline = Deadline(Operation.ROLLBACK, self.timeout_seconds)

            record = self.history.get(import_id)
            if record is None or not record.get("snapshot_data"):
                raise SnapshotNotFoundError(import_id)

            newest_id = self.history.get_newest_id()
            if newest_id != import_id:
                raise SequentialRollbackError(newest_id, import_id)

            state = import_state_for(record)
            if not is_valid_import_state_transition(state, ImportState.ROLLED_BACK):
                raise InvalidStateTransitionError(state.value, ImportState.ROLLED_BACK.value)

            snapshot = ImportSnapshot.from_dict(record["snapshot_data"])
            deadline.check("loading")
            logger.info("rollback_started", import_id=import_id, import_state=state.value, **snapshot.counts)

            handle.set_stage("deleting")
            for table in TABLE_DELETE_ORDER:
                try:
                    self.repository.delete_all(table)
                except AppError as e:
                    raise RestoreWriteFailedError(import_id, "deleting", table.value, e.message) from e

            handle.set_stage("restoring")
            for table in TABLE_INSERT_ORDER:
                try:
                    self.repository.bulk_insert(table, snapshot.rows(table))
                except AppError as e:
                    raise RestoreWriteFailedError(import_id, "restoring", table.value, e.message) from e

            handle.set_stage("consuming")
            try:
                self.history.delete(import_id)
            except AppError as e:
                raise RestoreWriteFailedError(import_id, "consuming", None, e.message) from e

            if deadline.elapsed_ms > self.timeout_seconds * 1000:
                logger.warning(
                    "rollback_exceeded_timeout",
                    import_id=import_id,
                    timeout_seconds=self.timeout_seconds,
                    execution_time_ms=deadline.elapsed_ms
                )
            logger.info("rollback_completed", import_id=import_id, execution_time_ms=deadline.elapsed_ms)

            return RollbackResult(
                import_id=import_id,
                state=ImportState.ROLLED_BACK,
                restored_counts=snapshot.counts,
                execution_time_ms=deadline.elapsed_ms,
            )


_service: Optional[RollbackService] = None


def get_rollback_service() -> RollbackService:
    global _service
    if _service is None:
        _service = RollbackService()
    return _service
