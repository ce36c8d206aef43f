from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import ValidationError

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.common.errors import DispatchError, ErrorCode
from apiflow.common.logger import get_logger

from .config import ConnectionConfigResolver
from .registry import AdapterRegistry

if TYPE_CHECKING:
    from apiflow.store.protocol import ConfigStore

logger = get_logger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "owner_id", "engine", "created_at"})


class ConnectionService:
    """Owner-checked changes to stored connections.

    Every change evicts the live adapter so the next request reconnects with
    the current credentials.
    """

    def __init__(self, store: "ConfigStore", registry: AdapterRegistry):
        self._store = store
        self._registry = registry
        self._resolver = ConnectionConfigResolver(store)

    def delete_connection(self, connection_id: str, requester_id: Optional[str]) -> None:
        self._resolver.load_owned(connection_id, requester_id)
        self._store.delete_connection(connection_id)
        self._registry.evict(connection_id, reset_breaker=True)
        logger.info(f"Connection {connection_id} deleted by {requester_id}")

    def update_credentials(
        self, connection_id: str, requester_id: Optional[str], changes: Dict[str, Any]
    ) -> ConnectionConfig:
        current = self._resolver.load_owned(connection_id, requester_id)
        blocked = _IMMUTABLE_FIELDS.intersection(changes)
        if blocked:
            raise DispatchError(
                ErrorCode.INVALID_REQUEST, f"Fields cannot be changed: {', '.join(sorted(blocked))}"
            )
        data = current.model_dump()
        data.update(changes)
        try:
            updated = ConnectionConfig.model_validate(data)
        except ValidationError as e:
            raise DispatchError(ErrorCode.VALIDATION_FAILED, "Invalid connection settings", details=e.errors())
        self._store.save_connection(updated)
        self._registry.evict(connection_id, reset_breaker=True)
        logger.info(f"Credentials for connection {connection_id} updated by {requester_id}")
        return updated
