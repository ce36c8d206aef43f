from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.endpoints.models import Endpoint, Visibility, normalize_path

from .models import Account, ApiKeyRecord


class InMemoryConfigStore:
    """Dict-backed config store for tests and single-process demos."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, ConnectionConfig] = {}
        self._endpoints: Dict[str, Endpoint] = {}
        self._api_keys: Dict[str, ApiKeyRecord] = {}
        self._accounts: Dict[str, Account] = {}

    def get_connection(self, connection_id: str) -> Optional[ConnectionConfig]:
        with self._lock:
            return self._connections.get(connection_id)

    def list_connections(self, owner_id: Optional[str] = None) -> List[ConnectionConfig]:
        with self._lock:
            return [
                c for c in self._connections.values() if owner_id is None or c.owner_id == owner_id
            ]

    def save_connection(self, config: ConnectionConfig) -> None:
        with self._lock:
            self._connections[config.id] = config

    def delete_connection(self, connection_id: str) -> bool:
        with self._lock:
            return self._connections.pop(connection_id, None) is not None

    def get_endpoint(self, path: str, method: str, visibility: Visibility) -> Optional[Endpoint]:
        path = normalize_path(path)
        method = method.upper()
        want_public = Visibility(visibility) == Visibility.PUBLIC
        with self._lock:
            for endpoint in self._endpoints.values():
                if (
                    endpoint.is_active
                    and endpoint.is_public == want_public
                    and endpoint.path == path
                    and endpoint.method.value == method
                ):
                    return endpoint
        return None

    def get_endpoint_by_id(self, endpoint_id: str) -> Optional[Endpoint]:
        with self._lock:
            return self._endpoints.get(endpoint_id)

    def save_endpoint(self, endpoint: Endpoint) -> None:
        with self._lock:
            self._endpoints[endpoint.id] = endpoint

    def list_endpoints(self, owner_id: Optional[str] = None) -> List[Endpoint]:
        with self._lock:
            return [
                e for e in self._endpoints.values() if owner_id is None or e.owner_id == owner_id
            ]

    def get_api_key(self, key_hash: str) -> Optional[ApiKeyRecord]:
        with self._lock:
            return self._api_keys.get(key_hash)

    def save_api_key(self, record: ApiKeyRecord) -> None:
        with self._lock:
            self._api_keys[record.key_hash] = record

    def get_api_key_by_id(self, key_id: str) -> Optional[ApiKeyRecord]:
        with self._lock:
            return next((r for r in self._api_keys.values() if r.id == key_id), None)

    def list_api_keys(self, owner_id: Optional[str] = None) -> List[ApiKeyRecord]:
        with self._lock:
            return [
                r for r in self._api_keys.values() if owner_id is None or r.owner_id == owner_id
            ]

    def revoke_api_key(self, key_id: str) -> bool:
        with self._lock:
            for key_hash, record in self._api_keys.items():
                if record.id == key_id and not record.revoked:
                    self._api_keys[key_hash] = record.model_copy(
                        update={"revoked": True, "revoked_at": datetime.now(timezone.utc)}
                    )
                    return True
        return False

    def get_plan(self, caller_id: str) -> Optional[str]:
        with self._lock:
            account = self._accounts.get(caller_id)
            return account.plan if account else None

    def set_plan(self, caller_id: str, plan: str) -> None:
        with self._lock:
            account = self._accounts.get(caller_id) or Account(caller_id=caller_id)
            self._accounts[caller_id] = account.model_copy(update={"plan": plan})
