from __future__ import annotations

from typing import List, Optional, Protocol

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.endpoints.models import Endpoint, Visibility

from .models import ApiKeyRecord


class ConfigStore(Protocol):
    """Persistent configuration: connections, endpoints, API keys and plans."""

    def get_connection(self, connection_id: str) -> Optional[ConnectionConfig]:
        ...

    def list_connections(self, owner_id: Optional[str] = None) -> List[ConnectionConfig]:
        ...

    def save_connection(self, config: ConnectionConfig) -> None:
        ...

    def delete_connection(self, connection_id: str) -> bool:
        ...

    def get_endpoint(self, path: str, method: str, visibility: Visibility) -> Optional[Endpoint]:
        """Returns the active endpoint at (path, method) in one visibility class."""
        ...

    def get_endpoint_by_id(self, endpoint_id: str) -> Optional[Endpoint]:
        ...

    def save_endpoint(self, endpoint: Endpoint) -> None:
        ...

    def list_endpoints(self, owner_id: Optional[str] = None) -> List[Endpoint]:
        ...

    def get_api_key(self, key_hash: str) -> Optional[ApiKeyRecord]:
        ...

    def save_api_key(self, record: ApiKeyRecord) -> None:
        ...

    def get_api_key_by_id(self, key_id: str) -> Optional[ApiKeyRecord]:
        ...

    def list_api_keys(self, owner_id: Optional[str] = None) -> List[ApiKeyRecord]:
        ...

    def revoke_api_key(self, key_id: str) -> bool:
        """Marks the key revoked. False if unknown or already revoked."""
        ...

    def get_plan(self, caller_id: str) -> Optional[str]:
        ...

    def set_plan(self, caller_id: str, plan: str) -> None:
        ...
