"""
Tests for the import/rollback operation lock and deadline.
"""

import pytest

from exceptions import ImportInProgressError, ImportTimeoutError
from models.catalog_import import Operation
from services.operation_lock import Deadline, OperationLock


class TestOperationLock:

    def test_status_idle(self):
        status = OperationLock().status()

        assert status.running is False
        assert status.operation is None

    def test_status_while_held(self):
        lock = OperationLock()

        with lock.hold(Operation.IMPORT) as handle:
            handle.set_stage("apply:part_adds", "abc")
            status = lock.status()
            assert status.running is True
            assert status.operation == Operation.IMPORT
            assert status.stage == "apply:part_adds"
            assert status.import_id == "abc"
            assert status.started_at is not None

        assert lock.status().running is False

    def test_second_holder_rejected(self):
        lock = OperationLock()

        with lock.hold(Operation.IMPORT):
            with pytest.raises(ImportInProgressError) as exc_info:
                with lock.hold(Operation.ROLLBACK):
                    pass

        assert exc_info.value.details["running_operation"] == "import"

    def test_released_on_error(self):
        lock = OperationLock()

        with pytest.raises(RuntimeError):
            with lock.hold(Operation.ROLLBACK):
                raise RuntimeError("boom")

        with lock.hold(Operation.IMPORT):
            assert lock.status().operation == Operation.IMPORT


class TestDeadline:

    def test_within_timeout(self):
        Deadline(Operation.IMPORT, 60).check("apply")

    def test_expired(self):
        deadline = Deadline(Operation.ROLLBACK, 1e-9)

        with pytest.raises(ImportTimeoutError) as exc_info:
            deadline.check("restoring")

        assert exc_info.value.status_code == 504
        assert exc_info.value.details == {
            "operation": "rollback",
            "stage": "restoring",
            "timeout_seconds": 1e-9,
        }
