"""
Catalog import workflow: preview → review → execute, and rollback.

Ties the parser, diff engine, validation engine, executor and rollback
service together behind the three API operations. Each preview carries
its workflow state so a preview can be executed at most once.
"""

from dataclasses import dataclass
from typing import Optional
import structlog

from config.settings import settings
from exceptions import (
    AcknowledgmentRequiredError,
    ImportInProgressError,
    ImportNotApplicableError,
    InvalidStateTransitionError,
    PreviewNotFoundError,
)
from models.catalog_import import (
    ImportMetadata,
    ImportPreviewResponse,
    ImportResult,
    ImportState,
    RollbackResult,
    is_valid_import_state_transition,
)
from parsers.workbook_parser import ParsedWorkbook, parse_catalog_workbook
from services import preview_cache_service
from services.catalog_repository import CatalogRepository, get_catalog_repository
from services.diff_engine import DiffResult, compute_diff, store_rows_from_records
from services.import_executor import ImportExecutor
from services.import_history_service import compute_file_hash
from services.rollback_service import RollbackService, get_rollback_service
from services.validation_engine import ValidationEngine, ValidationResult

logger = structlog.get_logger(__name__)


@dataclass
class ImportPreview:
    """Server-side state of one uploaded workbook."""
    workbook: ParsedWorkbook
    metadata: ImportMetadata
    diff: Optional[DiffResult] = None
    validation: Optional[ValidationResult] = None
    state: ImportState = ImportState.IDLE

    def transition(self, new_state: ImportState) -> None:
        if not is_valid_import_state_transition(self.state, new_state):
            raise InvalidStateTransitionError(self.state.value, new_state.value)
        logger.debug("import_state_changed", from_state=self.state.value, to_state=new_state.value)
        self.state = new_state


class CatalogImportService:
    def __init__(
        self,
        repository: Optional[CatalogRepository] = None,
        executor: Optional[ImportExecutor] = None,
        rollback: Optional[RollbackService] = None,
    ):
        self.repository = repository or get_catalog_repository()
        self.executor = executor or ImportExecutor(self.repository)
        self.rollback = rollback or get_rollback_service()

    def build_preview(
        self,
        content: bytes,
        file_name: str,
        imported_by: Optional[str] = None,
    ) -> ImportPreview:
        """Parse, diff and validate an uploaded workbook."""
        workbook = parse_catalog_workbook(
            content,
            file_name=file_name,
            max_size_bytes=settings.max_upload_size_bytes,
        )
        metadata = ImportMetadata(
            file_name=file_name,
            file_size_bytes=len(content),
            file_hash=compute_file_hash(content),
            imported_by=imported_by,
        )

        store = store_rows_from_records(self.repository.fetch_tables())
        preview = ImportPreview(workbook=workbook, metadata=metadata)
        preview.transition(ImportState.DIFFING)
        preview.diff = compute_diff(workbook, store)
        preview.validation = ValidationEngine().validate(preview.diff, workbook)
        preview.transition(ImportState.REVIEWING)
        return preview

    def preview(
        self,
        content: bytes,
        file_name: str,
        imported_by: Optional[str] = None,
    ) -> ImportPreviewResponse:
        """Build a preview and cache it for /execute."""
        preview = self.build_preview(content, file_name, imported_by)
        preview_id = preview_cache_service.store_preview(preview)

        logger.info(
            "import_preview_created",
            preview_id=preview_id,
            file_name=file_name,
            total_changes=preview.diff.summary["total_changes"],
            error_count=len(preview.validation.errors),
            warning_count=len(preview.validation.warnings),
        )

        return ImportPreviewResponse(
            preview_id=preview_id,
            state=preview.state,
            file_name=file_name,
            expires_in_minutes=settings.preview_ttl_minutes,
            diff=preview.diff.to_dict(),
            validation=preview.validation.to_dict(),
        )

    def execute(self, preview_id: str, acknowledged: bool) -> ImportResult:
        """
        Apply a cached preview.

        Gate failures (errors present, acknowledgment missing, lock held)
        leave the preview reviewable. Once executing starts the preview is
        spent either way.
        """
        preview: Optional[ImportPreview] = preview_cache_service.retrieve_preview(preview_id)
        if preview is None:
            raise PreviewNotFoundError(preview_id)
        if preview.state != ImportState.REVIEWING:
            raise InvalidStateTransitionError(preview.state.value, ImportState.EXECUTING.value)

        self._check_executable(preview, acknowledged)

        try:
            result = self.executor.apply(
                preview.diff,
                preview.validation,
                acknowledged,
                preview.metadata,
                on_started=lambda: preview.transition(ImportState.EXECUTING),
            )
        except Exception:
            if preview.state == ImportState.EXECUTING:
                preview.transition(ImportState.FAILED)
                preview_cache_service.delete_preview(preview_id)
            raise

        preview.transition(ImportState.SUCCEEDED)
        preview_cache_service.delete_preview(preview_id)
        return result

    def _check_executable(self, preview: ImportPreview, acknowledged: bool) -> None:
        """Check errors, acknowledgment and the lock without starting the apply."""
        if not preview.validation.valid:
            raise ImportNotApplicableError(len(preview.validation.errors))
        if preview.validation.requires_acknowledgment and not acknowledged:
            raise AcknowledgmentRequiredError(len(preview.validation.warnings))
        status = self.executor.lock.status()
        if status.running:
            raise ImportInProgressError(status.operation.value, status.stage)

    def rollback_import(self, import_id: str) -> RollbackResult:
        return self.rollback.rollback_to_import(import_id)


_service: Optional[CatalogImportService] = None


def get_catalog_import_service() -> CatalogImportService:
    global _service
    if _service is None:
        _service = CatalogImportService()
    return _service
