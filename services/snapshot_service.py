"""
Snapshot service: full copy of the governed tables taken right before an
import mutates them. The persisted copy is the rollback anchor.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import structlog

from models.catalog import CatalogTable
from models.catalog_import import ImportMetadata
from services.catalog_repository import CatalogRepository, get_catalog_repository
from services.import_history_service import ImportHistoryService, get_import_history_service

logger = structlog.get_logger(__name__)


@dataclass
class ImportSnapshot:
    """Every row of every governed table at one instant."""
    parts: list[dict] = field(default_factory=list)
    vehicle_applications: list[dict] = field(default_factory=list)
    cross_references: list[dict] = field(default_factory=list)
    vehicle_aliases: list[dict] = field(default_factory=list)
    timestamp: str = ""

    def rows(self, table: CatalogTable) -> list[dict]:
        return getattr(self, table.value)

    def tables(self) -> dict[CatalogTable, list[dict]]:
        return {table: self.rows(table) for table in CatalogTable}

    @property
    def counts(self) -> dict[str, int]:
        return {table.value: len(self.rows(table)) for table in CatalogTable}

    def to_dict(self) -> dict:
        return {
            "parts": self.parts,
            "vehicle_applications": self.vehicle_applications,
            "cross_references": self.cross_references,
            "vehicle_aliases": self.vehicle_aliases,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ImportSnapshot":
        return cls(
            parts=list(data.get("parts") or []),
            vehicle_applications=list(data.get("vehicle_applications") or []),
            cross_references=list(data.get("cross_references") or []),
            vehicle_aliases=list(data.get("vehicle_aliases") or []),
            timestamp=data.get("timestamp") or "",
        )


class SnapshotService:
    def __init__(
        self,
        repository: Optional[CatalogRepository] = None,
        history: Optional[ImportHistoryService] = None,
    ):
        self.repository = repository or get_catalog_repository()
        self.history = history or get_import_history_service()

    def capture(self) -> ImportSnapshot:
        """Read all governed tables (concurrently, paged)."""
        tables = self.repository.fetch_tables()
        snapshot = ImportSnapshot(
            parts=tables[CatalogTable.PARTS],
            vehicle_applications=tables[CatalogTable.VEHICLE_APPLICATIONS],
            cross_references=tables[CatalogTable.CROSS_REFERENCES],
            vehicle_aliases=tables[CatalogTable.VEHICLE_ALIASES],
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        logger.info("snapshot_captured", **snapshot.counts)
        return snapshot

    def persist(self, snapshot: ImportSnapshot, metadata: ImportMetadata) -> str:
        """Write the snapshot into a new history row. Returns the import id."""
        return self.history.create(snapshot.to_dict(), metadata)
