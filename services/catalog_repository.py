"""
Record repository for the governed catalog tables.

Bulk read/write over parts, vehicle_applications, cross_references and
vehicle_aliases. Reads page past the PostgREST max-rows ceiling; writes are
chunked so a large import never sends one oversized request.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Optional
import structlog

from config import get_supabase_client
from config.settings import settings
from exceptions import DatabaseError
from models.catalog import CatalogTable

logger = structlog.get_logger(__name__)

# PostgREST refuses unfiltered deletes; this id never exists
NIL_UUID = "00000000-0000-0000-0000-000000000000"

Checkpoint = Optional[Callable[[], None]]


def _chunks(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class CatalogRepository:
    """
    Paginated bulk access to the catalog tables.

    Every write method accepts an optional checkpoint callable, invoked
    before each batch. The import executor uses it to enforce its deadline.
    """

    def __init__(
        self,
        page_size: Optional[int] = None,
        batch_size: Optional[int] = None,
        workers: Optional[int] = None,
    ):
        self.db = get_supabase_client()
        self.page_size = page_size or settings.repository_page_size
        self.batch_size = batch_size or settings.repository_write_batch_size
        self.workers = workers or settings.fetch_workers

    # ===================
    # READ OPERATIONS
    # ===================

    def fetch_all(self, table: CatalogTable) -> list[dict]:
        """
        Read every row of a table, page by page, ordered by id.

        Raises:
            DatabaseError: If any page fails
        """
        rows: list[dict] = []
        offset = 0

        try:
            while True:
                result = (
                    self.db.table(table.value)
                    .select("*")
                    .order("id")
                    .range(offset, offset + self.page_size - 1)
                    .execute()
                )
                page = result.data or []
                rows.extend(page)
                if len(page) < self.page_size:
                    break
                offset += self.page_size
        except Exception as e:
            logger.error("fetch_all_failed", table=table.value, offset=offset, error=str(e))
            raise DatabaseError("select", str(e), details={"table": table.value})

        logger.debug("table_fetched", table=table.value, row_count=len(rows))
        return rows

    def fetch_tables(self, tables: Optional[list[CatalogTable]] = None) -> dict[CatalogTable, list[dict]]:
        """
        Read several tables concurrently.

        The tables are independent, so each read runs on its own worker.
        The first failure is raised once all reads have finished.
        """
        tables = tables or list(CatalogTable)
        results: dict[CatalogTable, list[dict]] = {}
        first_error: Optional[Exception] = None

        with ThreadPoolExecutor(max_workers=min(self.workers, len(tables))) as executor:
            futures = {executor.submit(self.fetch_all, table): table for table in tables}
            for future in as_completed(futures):
                table = futures[future]
                try:
                    results[table] = future.result()
                except Exception as e:
                    if first_error is None:
                        first_error = e

        if first_error is not None:
            raise first_error

        logger.info(
            "catalog_tables_fetched",
            **{table.value: len(rows) for table, rows in results.items()}
        )
        return results

    # ===================
    # WRITE OPERATIONS
    # ===================

    def bulk_insert(self, table: CatalogTable, records: list[dict], checkpoint: Checkpoint = None) -> list[dict]:
        """
        Insert records in batches.

        Returns:
            Inserted rows as returned by the database (with generated ids)
        """
        inserted: list[dict] = []
        for batch in _chunks(records, self.batch_size):
            if checkpoint:
                checkpoint()
            try:
                result = self.db.table(table.value).insert(batch).execute()
            except Exception as e:
                logger.error("bulk_insert_failed", table=table.value, error=str(e))
                raise DatabaseError(
                    "insert", str(e),
                    details={"table": table.value, "written": len(inserted)}
                )
            inserted.extend(result.data or [])

        logger.info("bulk_insert_complete", table=table.value, count=len(records))
        return inserted

    def bulk_update(self, table: CatalogTable, records: list[dict], checkpoint: Checkpoint = None) -> int:
        """
        Update records by id in batches (upsert on the primary key).

        Every record must carry its id.
        """
        written = 0
        for batch in _chunks(records, self.batch_size):
            if checkpoint:
                checkpoint()
            try:
                self.db.table(table.value).upsert(batch, on_conflict="id").execute()
            except Exception as e:
                logger.error("bulk_update_failed", table=table.value, error=str(e))
                raise DatabaseError(
                    "update", str(e),
                    details={"table": table.value, "written": written}
                )
            written += len(batch)

        logger.info("bulk_update_complete", table=table.value, count=written)
        return written

    def bulk_delete(self, table: CatalogTable, ids: list[str], checkpoint: Checkpoint = None) -> int:
        """Delete rows by id in batches."""
        deleted = 0
        for batch in _chunks(ids, self.batch_size):
            if checkpoint:
                checkpoint()
            try:
                self.db.table(table.value).delete().in_("id", batch).execute()
            except Exception as e:
                logger.error("bulk_delete_failed", table=table.value, error=str(e))
                raise DatabaseError(
                    "delete", str(e),
                    details={"table": table.value, "written": deleted}
                )
            deleted += len(batch)

        logger.info("bulk_delete_complete", table=table.value, count=deleted)
        return deleted

    def delete_all(self, table: CatalogTable) -> None:
        """Delete every row of a table."""
        try:
            self.db.table(table.value).delete().neq("id", NIL_UUID).execute()
        except Exception as e:
            logger.error("delete_all_failed", table=table.value, error=str(e))
            raise DatabaseError("delete", str(e), details={"table": table.value})

        logger.info("table_cleared", table=table.value)


_repository: Optional[CatalogRepository] = None


def get_catalog_repository() -> CatalogRepository:
    """Get or create the repository singleton."""
    global _repository
    if _repository is None:
        _repository = CatalogRepository()
    return _repository
