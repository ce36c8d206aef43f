from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.common.errors import DispatchError, ErrorCode

if TYPE_CHECKING:
    from apiflow.store.protocol import ConfigStore

INACTIVE_STATUSES = frozenset({"disabled", "deleted"})


class ConnectionConfigResolver:
    """Loads a connection's credentials for its owner only.

    The returned config holds secrets and must stay inside the server; it is
    handed to the Adapter Registry and never serialized into a response.
    """

    def __init__(self, store: "ConfigStore"):
        self._store = store

    def load_owned(self, connection_id: str, requester_id: Optional[str]) -> ConnectionConfig:
        config = self._store.get_connection(connection_id)
        if config is None or config.status in INACTIVE_STATUSES:
            raise DispatchError(ErrorCode.NOT_FOUND, "Connection not found")
        if config.owner_id and config.owner_id != requester_id:
            raise DispatchError(ErrorCode.FORBIDDEN, "Connection belongs to another account")
        return config

    def resolve(self, connection_id: str, requester_id: Optional[str]) -> ConnectionConfig:
        """Returns the config of ``connection_id`` if ``requester_id`` may use it.

        Raises:
            DispatchError: NOT_FOUND if unknown, FORBIDDEN if owned by someone
                else, INVALID_REQUEST if required fields are missing.
        """
        config = self.load_owned(connection_id, requester_id)
        missing = config.missing_fields()
        if missing:
            raise DispatchError(
                ErrorCode.INVALID_REQUEST,
                f"Connection is incomplete: missing {', '.join(missing)}",
            )
        return config
