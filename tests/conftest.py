import sqlite3
import time
from typing import Any, Dict, List, Optional

import jwt
import pytest
from unittest.mock import MagicMock

from apiflow.adapter_sdk import Adapter, ConnectionConfig, Record, RecordNotFound
from apiflow.auth import SessionTokenVerifier, StoreApiKeyVerifier
from apiflow.cache import InMemoryCache
from apiflow.common.security import hash_api_key
from apiflow.datasources import AdapterRegistry, ConnectionConfigResolver
from apiflow.dispatch import RequestDispatcher
from apiflow.endpoints import Endpoint
from apiflow.endpoints.resolver import EndpointResolver
from apiflow.quota import InMemoryUsageStore, QuotaEnforcer
from apiflow.store import ApiKeyRecord, InMemoryConfigStore

SESSION_SECRET = "test-session-secret"
API_KEY = "ak_live_0123456789abcdef"


class FakeAdapter(Adapter):
    """In-memory adapter recording every call, shared across instances by ``tables``."""

    engine_type = "fake"

    def __init__(self, config: ConnectionConfig, statement_timeout_ms: Optional[int] = None, tables=None):
        super().__init__(config)
        self.tables: Dict[str, List[Record]] = tables if tables is not None else {}
        self.calls: List[str] = []
        self.connected = False
        self.next_id = 1

    def connect(self):
        self.calls.append("connect")
        self.connected = True
        return self

    def disconnect(self):
        self.calls.append("disconnect")
        self.connected = False

    def list_tables(self):
        return sorted(self.tables)

    def list_documents(self, table, limit=None):
        self.check_table(table)
        self.calls.append(f"list:{table}")
        return [dict(r) for r in self.tables.get(table, [])][: self.clamp_limit(limit)]

    def _find(self, table, id):
        for row in self.tables.get(table, []):
            if str(row.get("id")) == str(id):
                return row
        raise RecordNotFound(f"No record {id}")

    def read(self, table, id):
        self.calls.append(f"read:{table}")
        return dict(self._find(table, id))

    def create(self, table, record, id=None):
        self.calls.append(f"create:{table}")
        if id is None:
            id = self.next_id
            self.next_id += 1
        row = {"id": id, **record}
        self.tables.setdefault(table, []).append(row)
        return dict(row)

    def update(self, table, id, record):
        self.calls.append(f"update:{table}")
        row = self._find(table, id)
        row.update(record)
        return dict(row)

    def delete(self, table, id):
        self.calls.append(f"delete:{table}")
        row = self._find(table, id)
        self.tables[table].remove(row)
        return {"success": True, "id": id}


def make_session_token(caller_id: str, secret: str = SESSION_SECRET, ttl: int = 3600, **claims: Any) -> str:
    payload = {"sub": caller_id, "exp": int(time.time()) + ttl, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def store():
    store = InMemoryConfigStore()
    store.save_connection(ConnectionConfig(id="c1", engine="postgres", owner_id="u1", host="db", user="app", password="pw"))
    store.save_api_key(ApiKeyRecord(key_hash=hash_api_key(API_KEY), owner_id="u2", name="default", prefix=API_KEY[:8]))
    return store


@pytest.fixture
def fake_tables():
    return {"users": []}


@pytest.fixture
def adapters(fake_tables):
    """Every FakeAdapter the registry built, in order."""
    return []


@pytest.fixture
def adapter_factory(fake_tables, adapters):
    def factory(config, statement_timeout_ms=None):
        adapter = FakeAdapter(config, statement_timeout_ms=statement_timeout_ms, tables=fake_tables)
        adapters.append(adapter)
        return adapter
    return factory


@pytest.fixture
def registry(adapter_factory):
    return AdapterRegistry(adapter_factory=adapter_factory)


@pytest.fixture
def cache():
    return InMemoryCache(max_size=100, default_ttl_seconds=60)


@pytest.fixture
def usage():
    return InMemoryUsageStore()


@pytest.fixture
def analytics():
    return MagicMock()


@pytest.fixture
def dispatcher(store, registry, cache, usage, analytics):
    return RequestDispatcher(
        endpoint_resolver=EndpointResolver(store),
        connection_resolver=ConnectionConfigResolver(store),
        registry=registry,
        cache=cache,
        quota=QuotaEnforcer(usage, store.get_plan),
        session_verifier=SessionTokenVerifier(SESSION_SECRET),
        api_key_verifier=StoreApiKeyVerifier(store),
        analytics=analytics,
        cache_ttl_seconds=60,
    )


def add_endpoint(store, endpoint_id: str = "e1", **overrides) -> Endpoint:
    data = {
        "id": endpoint_id,
        "owner_id": "u1",
        "connection_id": "c1",
        "path": "/users",
        "method": "GET",
        "table_name": "users",
        "is_public": True,
    }
    data.update(overrides)
    endpoint = Endpoint(**data)
    store.save_endpoint(endpoint)
    return endpoint


@pytest.fixture
def sqlite_db(tmp_path):
    """A real SQLite file with a ``users`` table holding two rows."""
    path = tmp_path / "app.db"
    conn = sqlite3.connect(str(path))
    conn.executescript(
        """
        CREATE TABLE users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT UNIQUE,
            age INTEGER
        );
        INSERT INTO users (name, email, age) VALUES ('Ada', 'ada@example.com', 36);
        INSERT INTO users (name, email, age) VALUES ('Linus', 'linus@example.com', 28);
        """
    )
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def make_endpoint(store):
    def _make(endpoint_id: str = "e1", **overrides) -> Endpoint:
        return add_endpoint(store, endpoint_id, **overrides)
    return _make


@pytest.fixture
def session_token():
    return make_session_token
