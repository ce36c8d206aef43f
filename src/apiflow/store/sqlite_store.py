from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.endpoints.models import Endpoint, Visibility, normalize_path

from .models import KEY_ID_LENGTH, ApiKeyRecord

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("password", "connection_uri", "service_account")


def _connection_to_json(config: ConnectionConfig) -> str:
    data = config.model_dump(mode="json", exclude=set(SECRET_FIELDS))
    for name in SECRET_FIELDS:
        data[name] = config.secret(name)
    return json.dumps(data)


class SqliteConfigStore:
    """SQLite-backed config store.

    One shared connection guarded by a lock; WAL mode lets the CLI seed the
    file while a server is reading it.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._connection = self._connect()
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(str(self._path), check_same_thread=False)
        connection.execute("PRAGMA journal_mode=WAL;")
        return connection

    def _initialize_schema(self) -> None:
        with self._lock, self._connection:
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS connections (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT,
                    engine TEXT NOT NULL,
                    config_json TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS endpoints (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT,
                    path TEXT NOT NULL,
                    method TEXT NOT NULL,
                    is_public INTEGER NOT NULL,
                    is_active INTEGER NOT NULL,
                    endpoint_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_endpoints_route
                ON endpoints (path, method, is_public, is_active);
                CREATE INDEX IF NOT EXISTS idx_endpoints_owner
                ON endpoints (owner_id);
                CREATE TABLE IF NOT EXISTS api_keys (
                    key_hash TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    key_json TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS accounts (
                    caller_id TEXT PRIMARY KEY,
                    plan TEXT NOT NULL
                );
                """
            )

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    def _fetchone(self, sql: str, params: tuple):
        with self._lock:
            return self._connection.execute(sql, params).fetchone()

    def _write(self, sql: str, params: tuple) -> int:
        with self._lock, self._connection:
            return self._connection.execute(sql, params).rowcount

    def get_connection(self, connection_id: str) -> Optional[ConnectionConfig]:
        row = self._fetchone("SELECT config_json FROM connections WHERE id = ?;", (connection_id,))
        if not row:
            return None
        return ConnectionConfig.model_validate(json.loads(row[0]))

    def list_connections(self, owner_id: Optional[str] = None) -> List[ConnectionConfig]:
        with self._lock:
            if owner_id is None:
                rows = self._connection.execute(
                    "SELECT config_json FROM connections ORDER BY id;"
                ).fetchall()
            else:
                rows = self._connection.execute(
                    "SELECT config_json FROM connections WHERE owner_id = ? ORDER BY id;",
                    (owner_id,),
                ).fetchall()
        return [ConnectionConfig.model_validate(json.loads(row[0])) for row in rows]

    def save_connection(self, config: ConnectionConfig) -> None:
        self._write(
            """
            INSERT INTO connections (id, owner_id, engine, config_json) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                owner_id = excluded.owner_id,
                engine = excluded.engine,
                config_json = excluded.config_json;
            """,
            (config.id, config.owner_id, config.engine.value, _connection_to_json(config)),
        )

    def delete_connection(self, connection_id: str) -> bool:
        return self._write("DELETE FROM connections WHERE id = ?;", (connection_id,)) > 0

    def get_endpoint(self, path: str, method: str, visibility: Visibility) -> Optional[Endpoint]:
        row = self._fetchone(
            """
            SELECT endpoint_json FROM endpoints
            WHERE path = ? AND method = ? AND is_public = ? AND is_active = 1
            ORDER BY id
            LIMIT 1;
            """,
            (
                normalize_path(path),
                method.upper(),
                int(Visibility(visibility) == Visibility.PUBLIC),
            ),
        )
        return Endpoint.model_validate_json(row[0]) if row else None

    def get_endpoint_by_id(self, endpoint_id: str) -> Optional[Endpoint]:
        row = self._fetchone("SELECT endpoint_json FROM endpoints WHERE id = ?;", (endpoint_id,))
        return Endpoint.model_validate_json(row[0]) if row else None

    def save_endpoint(self, endpoint: Endpoint) -> None:
        self._write(
            """
            INSERT INTO endpoints (id, owner_id, path, method, is_public, is_active, endpoint_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                owner_id = excluded.owner_id,
                path = excluded.path,
                method = excluded.method,
                is_public = excluded.is_public,
                is_active = excluded.is_active,
                endpoint_json = excluded.endpoint_json;
            """,
            (
                endpoint.id,
                endpoint.owner_id,
                endpoint.path,
                endpoint.method.value,
                int(endpoint.is_public),
                int(endpoint.is_active),
                endpoint.model_dump_json(),
            ),
        )

    def list_endpoints(self, owner_id: Optional[str] = None) -> List[Endpoint]:
        with self._lock:
            if owner_id is None:
                rows = self._connection.execute(
                    "SELECT endpoint_json FROM endpoints ORDER BY path, method;"
                ).fetchall()
            else:
                rows = self._connection.execute(
                    "SELECT endpoint_json FROM endpoints WHERE owner_id = ? ORDER BY path, method;",
                    (owner_id,),
                ).fetchall()
        return [Endpoint.model_validate_json(row[0]) for row in rows]

    def get_api_key(self, key_hash: str) -> Optional[ApiKeyRecord]:
        row = self._fetchone("SELECT key_json FROM api_keys WHERE key_hash = ?;", (key_hash,))
        return ApiKeyRecord.model_validate_json(row[0]) if row else None

    def save_api_key(self, record: ApiKeyRecord) -> None:
        self._write(
            """
            INSERT INTO api_keys (key_hash, owner_id, key_json) VALUES (?, ?, ?)
            ON CONFLICT(key_hash) DO UPDATE SET
                owner_id = excluded.owner_id,
                key_json = excluded.key_json;
            """,
            (record.key_hash, record.owner_id, record.model_dump_json()),
        )

    def get_api_key_by_id(self, key_id: str) -> Optional[ApiKeyRecord]:
        row = self._fetchone(
            "SELECT key_json FROM api_keys WHERE substr(key_hash, 1, ?) = ?;",
            (KEY_ID_LENGTH, key_id),
        )
        return ApiKeyRecord.model_validate_json(row[0]) if row else None

    def list_api_keys(self, owner_id: Optional[str] = None) -> List[ApiKeyRecord]:
        with self._lock:
            if owner_id is None:
                rows = self._connection.execute("SELECT key_json FROM api_keys;").fetchall()
            else:
                rows = self._connection.execute(
                    "SELECT key_json FROM api_keys WHERE owner_id = ?;", (owner_id,)
                ).fetchall()
        return [ApiKeyRecord.model_validate_json(row[0]) for row in rows]

    def revoke_api_key(self, key_id: str) -> bool:
        record = self.get_api_key_by_id(key_id)
        if record is None or record.revoked:
            return False
        revoked = record.model_copy(update={"revoked": True, "revoked_at": datetime.now(timezone.utc)})
        return self._write(
            "UPDATE api_keys SET key_json = ? WHERE key_hash = ? AND json_extract(key_json, '$.revoked') = 0;",
            (revoked.model_dump_json(), record.key_hash),
        ) > 0

    def get_plan(self, caller_id: str) -> Optional[str]:
        row = self._fetchone("SELECT plan FROM accounts WHERE caller_id = ?;", (caller_id,))
        return row[0] if row else None

    def set_plan(self, caller_id: str, plan: str) -> None:
        self._write(
            """
            INSERT INTO accounts (caller_id, plan) VALUES (?, ?)
            ON CONFLICT(caller_id) DO UPDATE SET plan = excluded.plan;
            """,
            (caller_id, plan),
        )
        logger.info("Plan for %s set to %s", caller_id, plan)
