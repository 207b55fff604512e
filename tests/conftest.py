"""
Shared test fixtures.

Services are tested against in-memory repositories; repositories are
tested against MockSupabaseClient.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

# Settings are loaded at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import itertools
import pytest
from unittest.mock import patch
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Generator, Optional
from uuid import uuid4

from models.boq import BOQItem, WorkMaterialLink
from models.mapping import Mapping, MappingChangeset, MappingStatus
from models.position import Position, PositionCreate
from models.tender import Tender
from exceptions import (
    DatabaseError,
    MappingConflictError,
    MappingNotFoundError,
    PositionNotFoundError,
    TenderNotFoundError,
    TransientStorageError,
)


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """
    Chainable query builder over an in-memory table.

    Supports the filters the repositories use (eq, neq, in_), ordering,
    range/limit paging, insert, upsert, update and delete.
    """

    def __init__(self, client: "MockSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._payload = None
        self._filters = []
        self._on_conflict: Optional[str] = None
        self._orders = []
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None

    def select(self, *args, **kwargs):
        self._op = "select"
        return self

    def insert(self, data):
        self._op = "insert"
        self._payload = data
        return self

    def upsert(self, data, on_conflict: Optional[str] = None, **kwargs):
        self._op = "upsert"
        self._payload = data
        self._on_conflict = on_conflict
        return self

    def update(self, data):
        self._op = "update"
        self._payload = data
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._orders.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self) -> MockSupabaseResponse:
        self._client.executed.append((self._table, self._op))
        if self._client.error is not None:
            raise self._client.error

        rows = self._client.rows(self._table)

        if self._op in ("insert", "upsert"):
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            keys = self._on_conflict.split(",") if self._on_conflict else ["id"]
            written, inserted = [], []
            for item in payload:
                existing = None
                if self._op == "upsert":
                    existing = next(
                        (row for row in rows if all(k in item and row.get(k) == item[k] for k in keys)),
                        None
                    )
                if existing is not None:
                    existing.update(item)
                    written.append(dict(existing))
                    continue
                row = dict(item)
                row.setdefault("id", str(uuid4()))
                row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
                rows.append(row)
                written.append(dict(row))
                inserted.append(dict(row))
            self._client.inserted.setdefault(self._table, []).extend(inserted)
            return MockSupabaseResponse(data=written)

        matched = [row for row in rows if all(f(row) for f in self._filters)]

        if self._op == "update":
            for row in matched:
                row.update(self._payload)
            return MockSupabaseResponse(data=[dict(row) for row in matched])

        if self._op == "delete":
            for row in matched:
                rows.remove(row)
            return MockSupabaseResponse(data=matched)

        for column, desc in reversed(self._orders):
            matched.sort(key=lambda row: row.get(column), reverse=desc)

        total = len(matched)
        if self._range is not None:
            start, end = self._range
            matched = matched[start:end + 1]
        if self._limit is not None:
            matched = matched[:self._limit]

        return MockSupabaseResponse(data=[dict(row) for row in matched], count=total)


class MockRpcCall:
    """Recorded call of a database function."""

    def __init__(self, client: "MockSupabaseClient", name: str, params: dict):
        self._client = client
        self.name = name
        self.params = params

    def execute(self) -> MockSupabaseResponse:
        if self._client.error is not None:
            raise self._client.error
        self._client.rpc_calls.append((self.name, self.params))
        return MockSupabaseResponse(data=[])


class MockSupabaseClient:
    """Mock Supabase client."""

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self.executed: list[tuple[str, str]] = []
        self.inserted: dict[str, list[dict]] = {}
        self.rpc_calls: list[tuple[str, dict]] = []
        self.error: Optional[Exception] = None

    def set_table_data(self, table_name: str, data: list):
        """Configure rows of a table."""
        self._tables[table_name] = [dict(row) for row in data]

    def rows(self, table_name: str) -> list[dict]:
        return self._tables.setdefault(table_name, [])

    def table(self, name: str) -> MockSupabaseQuery:
        return MockSupabaseQuery(self, name)

    def rpc(self, name: str, params: dict) -> MockRpcCall:
        return MockRpcCall(self, name, params)


# ===================
# IN-MEMORY REPOSITORIES
# ===================

_ids = itertools.count(1)


def _next_id(prefix: str) -> str:
    return f"{prefix}-{next(_ids)}"


class InMemoryTenderRepository:
    def __init__(self):
        self.rows: dict[str, Tender] = {}

    def add(self, tender: Tender) -> Tender:
        self.rows[tender.id] = tender
        return tender

    def get(self, tender_id: str) -> Tender:
        if tender_id not in self.rows:
            raise TenderNotFoundError(tender_id)
        return self.rows[tender_id].model_copy(deep=True)

    def create(self, data: dict) -> Tender:
        return self.add(Tender(id=_next_id("tender"), **data)).model_copy(deep=True)

    def delete(self, tender_id: str) -> None:
        self.rows.pop(tender_id, None)

    def list_children(self, parent_id: str) -> list[Tender]:
        children = [t for t in self.rows.values() if t.parent_version_id == parent_id]
        return sorted(children, key=lambda t: t.version)


class InMemoryPositionRepository:
    def __init__(self):
        self.rows: dict[str, Position] = {}
        self.fail_create = False

    def add(self, position: Position) -> Position:
        self.rows[position.id] = position
        return position

    def list(self, tender_id: str) -> list[Position]:
        positions = [p for p in self.rows.values() if p.tender_id == tender_id]
        return [p.model_copy(deep=True) for p in sorted(positions, key=lambda p: p.sort_order)]

    def get(self, position_id: str) -> Position:
        if position_id not in self.rows:
            raise PositionNotFoundError(position_id)
        return self.rows[position_id].model_copy(deep=True)

    def create(self, tender_id: str, data: PositionCreate) -> Position:
        if self.fail_create:
            raise DatabaseError("insert", "position insert rejected")
        position = Position(
            id=_next_id("pos"),
            tender_id=tender_id,
            number=data.number,
            name=data.name,
            unit=data.unit,
            volume=data.volume,
            note=data.note,
            kind=data.kind.value,
            is_additional=data.is_additional,
            sort_order=data.sort_order,
            hierarchy_level=data.hierarchy_level,
        )
        return self.add(position).model_copy(deep=True)

    def delete(self, position_id: str) -> None:
        self.rows.pop(position_id, None)

    def delete_for_tender(self, tender_id: str) -> None:
        for position in self.list(tender_id):
            self.rows.pop(position.id, None)


class InMemoryBOQItemRepository:
    """
    Items in insertion order.

    Item ids in failing_items always fail to copy. Ids in
    lost_acknowledgements write the copy, then fail once as if the
    response timed out.
    """

    def __init__(self):
        self.rows: dict[str, BOQItem] = {}
        self.failing_items: set[str] = set()
        self.lost_acknowledgements: set[str] = set()
        self.copy_attempts = 0

    def add(self, item: BOQItem) -> BOQItem:
        self.rows[item.id] = item
        return item

    def list(self, position_id: str) -> list[BOQItem]:
        return [i.model_copy(deep=True) for i in self.rows.values() if i.client_position_id == position_id]

    def copy(self, item: BOQItem, new_position_id: str, new_tender_id: str) -> BOQItem:
        self.copy_attempts += 1
        if item.id in self.failing_items:
            raise TransientStorageError("insert", "503 Service Unavailable")

        payload = item.copy_payload(new_position_id, new_tender_id)
        existing = next(
            (
                row for row in self.rows.values()
                if row.client_position_id == new_position_id
                and getattr(row, "source_item_id", None) == item.id
            ),
            None
        )
        if existing is not None:
            copied = BOQItem(id=existing.id, **payload)
        else:
            copied = BOQItem(id=_next_id("item"), **payload)
        self.add(copied)

        if item.id in self.lost_acknowledgements:
            self.lost_acknowledgements.discard(item.id)
            raise TransientStorageError("insert", "read timed out")

        return copied.model_copy(deep=True)

    def delete(self, item_ids: list[str]) -> None:
        for item_id in item_ids:
            self.rows.pop(item_id, None)


class InMemoryLinkRepository:
    def __init__(self):
        self.rows: dict[str, WorkMaterialLink] = {}

    def add(self, link: WorkMaterialLink) -> WorkMaterialLink:
        self.rows[link.id] = link
        return link

    def list(self, position_id: str) -> list[WorkMaterialLink]:
        return [l.model_copy(deep=True) for l in self.rows.values() if l.client_position_id == position_id]

    def copy(
        self,
        link: WorkMaterialLink,
        id_table: dict[str, str],
        new_position_id: str
    ) -> Optional[WorkMaterialLink]:
        payload = link.translated_payload(id_table, new_position_id)
        if payload is None:
            return None
        existing = next(
            (
                row for row in self.rows.values()
                if row.client_position_id == new_position_id
                and getattr(row, "source_link_id", None) == link.id
            ),
            None
        )
        link_id = existing.id if existing is not None else _next_id("link")
        return self.add(WorkMaterialLink(id=link_id, **payload)).model_copy(deep=True)

    def delete(self, link_ids: list[str]) -> None:
        for link_id in link_ids:
            self.rows.pop(link_id, None)


class InMemoryMappingRepository:
    """
    Mapping store with failure switches.

    fail_commit makes commit() raise before touching anything;
    failing_status_updates holds ids whose status updates always fail.
    """

    def __init__(self):
        self.rows: dict[str, Mapping] = {}
        self.fail_commit = False
        self.failing_status_updates: set[str] = set()
        self.commits: list[MappingChangeset] = []

    def add(self, mapping: Mapping) -> Mapping:
        if mapping.id is None:
            mapping = mapping.model_copy(update={"id": _next_id("map")})
        self.rows[mapping.id] = mapping
        return mapping

    def list(self, new_tender_id: str) -> list[Mapping]:
        mappings = [m for m in self.rows.values() if m.new_tender_id == new_tender_id]
        mappings.sort(key=lambda m: m.id)
        mappings.sort(key=lambda m: m.confidence, reverse=True)
        return [m.model_copy(deep=True) for m in mappings]

    def get(self, mapping_id: str) -> Mapping:
        if mapping_id not in self.rows:
            raise MappingNotFoundError(mapping_id)
        return self.rows[mapping_id].model_copy(deep=True)

    def find_predecessor(self, new_tender_id: str) -> Optional[str]:
        for mapping in self.rows.values():
            if mapping.new_tender_id == new_tender_id:
                return mapping.old_tender_id
        return None

    def insert_many(self, mappings: list[Mapping]) -> list[Mapping]:
        return [self.add(m.model_copy(deep=True)).model_copy(deep=True) for m in mappings]

    def update(self, mapping: Mapping) -> Mapping:
        if mapping.id not in self.rows:
            raise MappingNotFoundError(mapping.id)
        self.rows[mapping.id] = mapping.model_copy(deep=True)
        return mapping

    def update_status(self, mapping_id: str, status: MappingStatus) -> None:
        if mapping_id in self.failing_status_updates:
            raise TransientStorageError("update", "connection reset by peer")
        if mapping_id not in self.rows:
            raise MappingNotFoundError(mapping_id)
        self.rows[mapping_id].status = status

    def commit(self, changeset: MappingChangeset) -> None:
        """
        Apply a change set the way apply_version_mapping_changes does.

        Deletes first, then freeing rows, then claiming rows in change set
        order. The new-position unique index is checked after every row and
        a violation leaves the store untouched.
        """
        if self.fail_commit:
            raise DatabaseError("commit", "transaction aborted")

        rows = dict(self.rows)
        for mapping_id in changeset.deletes:
            rows.pop(mapping_id, None)

        ordered = sorted(changeset.upserts, key=lambda m: m.new_position_id is not None)
        for mapping in ordered:
            mapping = mapping.model_copy(deep=True)
            if mapping.id is None:
                mapping.id = _next_id("map")
            elif mapping.id not in rows:
                raise MappingNotFoundError(mapping.id)

            claimed = mapping.new_position_id
            if claimed is not None and not mapping.is_additional:
                for other in rows.values():
                    if other.id != mapping.id and not other.is_additional and other.new_position_id == claimed:
                        raise MappingConflictError(
                            "duplicate key value violates unique constraint \"uq_tvm_new_position\"",
                            details={"position_id": claimed}
                        )
            rows[mapping.id] = mapping

        self.rows = rows
        self.commits.append(changeset)

    def delete_for_tender(self, new_tender_id: str, keep_applied: bool = True) -> None:
        for mapping in self.list(new_tender_id):
            if keep_applied and mapping.status == MappingStatus.APPLIED:
                continue
            self.rows.pop(mapping.id, None)


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("client_positions", [
                {"id": "1", "tender_id": "t-1", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Any repository created without an explicit client gets the mock.
    """
    targets = [
        "repositories.position_repository.get_supabase_client",
        "repositories.boq_repository.get_supabase_client",
        "repositories.mapping_repository.get_supabase_client",
        "repositories.tender_repository.get_supabase_client",
    ]
    patchers = [patch(target, return_value=mock_supabase) for target in targets]
    for patcher in patchers:
        patcher.start()
    yield mock_supabase
    for patcher in patchers:
        patcher.stop()


@pytest.fixture
def repos() -> SimpleNamespace:
    """Fresh in-memory repositories."""
    return SimpleNamespace(
        tenders=InMemoryTenderRepository(),
        positions=InMemoryPositionRepository(),
        items=InMemoryBOQItemRepository(),
        links=InMemoryLinkRepository(),
        mappings=InMemoryMappingRepository(),
    )


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays = []
    return SimpleNamespace(delays=delays, sleep=delays.append)


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client():
    """
    Create FastAPI test client.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
