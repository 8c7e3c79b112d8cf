"""
Shared test fixtures.

The in-memory Supabase fake keeps real table state, so the repository,
executor and rollback can be exercised end to end. Write failures can be
injected per table and operation.
"""

import os
import sys
from pathlib import Path

# Add project directory to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import copy
import uuid
import pytest
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional


# ===================
# FAKE SUPABASE CLIENT
# ===================

class FakeAPIError(Exception):
    """Stands in for postgrest.exceptions.APIError."""


# Unique columns and foreign keys of the governed schema
UNIQUE_COLUMNS = {
    "parts": ["acr_sku"],
    "vehicle_aliases": ["alias"],
}
FOREIGN_KEYS = {
    "vehicle_applications": ("part_id", "parts"),
    "cross_references": ("acr_part_id", "parts"),
}


class FakeResponse:
    def __init__(self, data: list, count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable query builder over a FakeSupabase table."""

    def __init__(self, client: "FakeSupabase", table: str, op: str, payload=None, count=None, columns="*"):
        self.client = client
        self.table = table
        self.op = op
        self.payload = payload
        self.count_mode = count
        self.columns = columns
        self.filters = []
        self.order_by = []
        self.range_bounds = None
        self.limit_count = None

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda r: r.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def order(self, column, desc=False):
        self.order_by.append((column, desc))
        return self

    def range(self, start, end):
        self.range_bounds = (start, end)
        return self

    def limit(self, count):
        self.limit_count = count
        return self

    def _matches(self, row) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self) -> FakeResponse:
        self.client.calls.append((self.table, self.op))
        self.client.maybe_fail(self.table, self.op)
        rows = self.client.tables.setdefault(self.table, [])

        if self.op == "select":
            matched = [copy.deepcopy(r) for r in rows if self._matches(r)]
            for column, desc in reversed(self.order_by):
                matched.sort(key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
            total = len(matched)
            if self.range_bounds:
                matched = matched[self.range_bounds[0]:self.range_bounds[1] + 1]
            if self.limit_count is not None:
                matched = matched[:self.limit_count]
            if self.columns != "*":
                wanted = [c.strip() for c in self.columns.split(",")]
                matched = [{c: r.get(c) for c in wanted} for r in matched]
            return FakeResponse(matched, total if self.count_mode else None)

        if self.op == "insert":
            records = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.client.insert_row(self.table, r) for r in records]
            return FakeResponse(copy.deepcopy(inserted))

        if self.op == "upsert":
            records = self.payload if isinstance(self.payload, list) else [self.payload]
            written = []
            for record in records:
                existing = next((r for r in rows if r["id"] == record.get("id")), None)
                if existing is None:
                    written.append(self.client.insert_row(self.table, record))
                else:
                    self.client.check_constraints(self.table, {**existing, **record}, existing["id"])
                    existing.update(copy.deepcopy(record))
                    written.append(existing)
            return FakeResponse(copy.deepcopy(written))

        if self.op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(copy.deepcopy(self.payload))
                    updated.append(row)
            return FakeResponse(copy.deepcopy(updated))

        if self.op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.client.tables[self.table] = [r for r in rows if not self._matches(r)]
            if self.table == "parts":
                self.client.cascade_part_delete({r["id"] for r in removed})
            return FakeResponse(copy.deepcopy(removed))

        raise ValueError(f"Unknown op {self.op}")


class FakeTable:
    def __init__(self, client: "FakeSupabase", name: str):
        self.client = client
        self.name = name

    def select(self, columns="*", count=None):
        return FakeQuery(self.client, self.name, "select", count=count, columns=columns)

    def insert(self, data):
        return FakeQuery(self.client, self.name, "insert", payload=data)

    def upsert(self, data, on_conflict=None):
        return FakeQuery(self.client, self.name, "upsert", payload=data)

    def update(self, data):
        return FakeQuery(self.client, self.name, "update", payload=data)

    def delete(self):
        return FakeQuery(self.client, self.name, "delete")


class FakeSupabase:
    """
    Stateful in-memory Supabase client.

    Usage:
        fake.tables["parts"] = [{...}]
        fake.fail_on("parts", "insert", after=1)   # second insert call fails
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {
            "parts": [],
            "vehicle_applications": [],
            "cross_references": [],
            "vehicle_aliases": [],
            "import_history": [],
        }
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], list] = {}
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    # Failure injection

    def fail_on(self, table: str, op: str, after: int = 0, message: str = "injected failure") -> None:
        self._failures[(table, op)] = [after, message]

    def clear_failures(self) -> None:
        self._failures.clear()

    def maybe_fail(self, table: str, op: str) -> None:
        entry = self._failures.get((table, op))
        if entry is None:
            return
        if entry[0] > 0:
            entry[0] -= 1
            return
        del self._failures[(table, op)]
        raise FakeAPIError(entry[1])

    # Row handling

    def next_timestamp(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def insert_row(self, table: str, record: dict) -> dict:
        row = copy.deepcopy(record)
        row.setdefault("id", str(uuid.uuid4()))
        if table == "import_history":
            row.setdefault("created_at", self.next_timestamp())
        if any(r["id"] == row["id"] for r in self.tables[table]):
            raise FakeAPIError(f"duplicate key value violates unique constraint \"{table}_pkey\"")
        self.check_constraints(table, row, row["id"])
        self.tables[table].append(row)
        return row

    def check_constraints(self, table: str, row: dict, row_id: str) -> None:
        for column in UNIQUE_COLUMNS.get(table, []):
            if any(r.get(column) == row.get(column) and r["id"] != row_id for r in self.tables[table]):
                raise FakeAPIError(f"duplicate key value violates unique constraint \"{table}_{column}_key\"")
        if table in FOREIGN_KEYS:
            column, parent = FOREIGN_KEYS[table]
            if not any(p["id"] == row.get(column) for p in self.tables[parent]):
                raise FakeAPIError(f"insert or update on table \"{table}\" violates foreign key constraint")

    def cascade_part_delete(self, part_ids: set) -> None:
        for table, (column, _) in FOREIGN_KEYS.items():
            self.tables[table] = [r for r in self.tables[table] if r.get(column) not in part_ids]

    def catalog_state(self) -> dict:
        """Governed tables as comparable, id-sorted lists."""
        return {
            name: sorted(copy.deepcopy(self.tables[name]), key=lambda r: r["id"])
            for name in ("parts", "vehicle_applications", "cross_references", "vehicle_aliases")
        }


# ===================
# FIXTURES
# ===================

SUPABASE_CLIENT_TARGETS = (
    "services.catalog_repository.get_supabase_client",
    "services.import_history_service.get_supabase_client",
    "config.database.get_supabase_client",
)


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def fake_db(fake_supabase, monkeypatch) -> Generator[FakeSupabase, None, None]:
    """
    Patch every get_supabase_client() import with the fake and reset the
    service singletons so they pick it up.

    Usage:
        def test_something(fake_db):
            fake_db.tables["parts"].append({...})
    """
    import services.catalog_repository as catalog_repository
    import services.import_history_service as import_history_service
    import services.rollback_service as rollback_service
    import services.catalog_export_service as catalog_export_service
    import services.catalog_import_service as catalog_import_service
    from services import preview_cache_service

    for target in SUPABASE_CLIENT_TARGETS:
        monkeypatch.setattr(target, lambda: fake_supabase)

    monkeypatch.setattr(catalog_repository, "_repository", None)
    monkeypatch.setattr(import_history_service, "_service", None)
    monkeypatch.setattr(rollback_service, "_service", None)
    monkeypatch.setattr(catalog_export_service, "_service", None)
    monkeypatch.setattr(catalog_import_service, "_service", None)
    preview_cache_service.clear_previews()

    yield fake_supabase

    preview_cache_service.clear_previews()


@pytest.fixture
def test_client(fake_db):
    """
    FastAPI test client backed by the fake database.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/api/admin/import/history")
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
