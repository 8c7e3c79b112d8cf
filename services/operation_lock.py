"""
Process-wide advisory lock for apply and rollback.

Only one of them may run at a time. A second caller fails fast with
ImportInProgressError instead of queueing. The holder reports its current
stage so GET /status can show progress.
"""

import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
import structlog

from exceptions import ImportInProgressError, ImportTimeoutError
from models.catalog_import import Operation, OperationStatusResponse

logger = structlog.get_logger(__name__)


class Deadline:
    """Cooperative timeout, checked between stages and write batches."""

    def __init__(self, operation: Operation, timeout_seconds: int):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        self.started = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def check(self, stage: str) -> None:
        if time.monotonic() - self.started > self.timeout_seconds:
            logger.error(
                "operation_timed_out",
                operation=self.operation.value,
                stage=stage,
                timeout_seconds=self.timeout_seconds
            )
            raise ImportTimeoutError(self.operation.value, stage, self.timeout_seconds)


class OperationHandle:
    """Handle given to the lock holder for stage reporting."""

    def __init__(self, lock: "OperationLock"):
        self._lock = lock

    def set_stage(self, stage: str, import_id: Optional[str] = None) -> None:
        self._lock._stage = stage
        if import_id is not None:
            self._lock._import_id = import_id
        logger.debug("operation_stage", operation=self._lock._operation, stage=stage)


class OperationLock:
    def __init__(self):
        self._lock = threading.Lock()
        self._operation: Optional[Operation] = None
        self._stage: Optional[str] = None
        self._import_id: Optional[str] = None
        self._started_at: Optional[datetime] = None

    @contextmanager
    def hold(self, operation: Operation) -> Iterator[OperationHandle]:
        """
        Acquire the lock without blocking.

        Raises:
            ImportInProgressError: another operation holds the lock
        """
        if not self._lock.acquire(blocking=False):
            running = self._operation.value if self._operation else None
            logger.warning("operation_rejected_lock_held", requested=operation.value, running=running)
            raise ImportInProgressError(running, self._stage)

        self._operation = operation
        self._stage = None
        self._import_id = None
        self._started_at = datetime.now(timezone.utc)
        logger.info("operation_lock_acquired", operation=operation.value)
        try:
            yield OperationHandle(self)
        finally:
            self._operation = None
            self._stage = None
            self._import_id = None
            self._started_at = None
            self._lock.release()
            logger.info("operation_lock_released", operation=operation.value)

    def status(self) -> OperationStatusResponse:
        return OperationStatusResponse(
            running=self._operation is not None,
            operation=self._operation,
            stage=self._stage,
            import_id=self._import_id,
            started_at=self._started_at,
        )


_lock = OperationLock()


def get_operation_lock() -> OperationLock:
    return _lock
