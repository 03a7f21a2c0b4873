import copy
import uuid
import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient
from callboard.api.dependencies import get_db, get_storage
from callboard.core.database import Database
from main import app


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """In-memory stand-in for a PostgREST query builder"""

    def __init__(self, store, table):
        self.store = store
        self.table = table
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.ordering = []
        self.row_limit = None

    def select(self, *columns):
        self.action = "select"
        return self

    def insert(self, values):
        self.action, self.payload = "insert", values
        return self

    def update(self, values):
        self.action, self.payload = "update", values
        return self

    def upsert(self, values, on_conflict=None):
        self.action, self.payload, self.on_conflict = "upsert", values, on_conflict
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def gt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] > value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def is_(self, column, value):
        self.filters.append(lambda row: row.get(column) is None if value == "null" else row.get(column) == value)
        return self

    def order(self, column, desc=False):
        self.ordering.append((column, desc))
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def _matches(self):
        return [row for row in self.store.rows(self.table) if all(f(row) for f in self.filters)]

    def _new_row(self, values):
        row = {"id": str(uuid.uuid4()), "created_at": datetime.now(timezone.utc).isoformat()}
        row.update(copy.deepcopy(values))
        return row

    def execute(self):
        rows = self.store.rows(self.table)
        if self.action == "insert":
            values = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self._new_row(v) for v in values]
            rows.extend(created)
            return FakeResult(copy.deepcopy(created))
        if self.action == "upsert":
            keys = self.on_conflict.split(",") if self.on_conflict else ["id"]
            values = self.payload if isinstance(self.payload, list) else [self.payload]
            result = []
            for value in values:
                existing = next((r for r in rows if all(r.get(k) == value.get(k) for k in keys)), None)
                if existing:
                    existing.update(copy.deepcopy(value))
                    result.append(existing)
                else:
                    row = self._new_row(value)
                    rows.append(row)
                    result.append(row)
            return FakeResult(copy.deepcopy(result))

        matched = self._matches()
        if self.action == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResult(copy.deepcopy(matched))
        if self.action == "delete":
            self.store.tables[self.table] = [r for r in rows if r not in matched]
            return FakeResult(copy.deepcopy(matched))

        for column, desc in reversed(self.ordering):
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        if self.row_limit is not None:
            matched = matched[:self.row_limit]
        return FakeResult(copy.deepcopy(matched))


class FakeSupabase:
    def __init__(self):
        self.tables = {}

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def table(self, name):
        return FakeQuery(self, name)

    def seed(self, table, *rows):
        for row in rows:
            record = {"id": str(uuid.uuid4()), "created_at": datetime.now(timezone.utc).isoformat()}
            record.update(row)
            self.rows(table).append(record)
        return rows


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def db(supabase):
    return Database(client=supabase)


@pytest.fixture
def workspace(supabase):
    supabase.seed("workspaces", {
        "id": "ws-1",
        "name": "Musa Clinic",
        "slug": "musa",
        "twilio_account_sid": "AC123",
        "twilio_auth_token": "secret-token",
        "elevenlabs_api_key": "xi-key",
        "settings": {},
    })
    return supabase.tables["workspaces"][0]


@pytest.fixture
def agent(supabase, workspace):
    supabase.seed("agents", {
        "id": "agent-1",
        "workspace_id": "ws-1",
        "name": "受付エージェント",
        "status": "published",
        "voice_id": "voice-1",
        "elevenlabs_agent_id": "el-agent-1",
        "icon_name": "Phone",
        "icon_color": "#ff0000",
        "created_at": "2024-03-01T00:00:00+00:00",
    })
    return supabase.tables["agents"][0]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()
