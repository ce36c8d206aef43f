from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Tuple

from apiflow.common.errors import DispatchError, ErrorCode
from apiflow.common.logger import get_logger
from apiflow.common.security import hash_api_key, key_prefix
from apiflow.store.models import ApiKeyRecord

if TYPE_CHECKING:
    from apiflow.store.protocol import ConfigStore

logger = get_logger(__name__)

KEY_SCHEME = "ak_live_"
PREFIX_LENGTH = 16


class ApiKeyService:
    """Issues, lists and revokes the API keys callers use on the public surface.

    The plaintext key is returned once, from ``generate``. Only its SHA-256
    hash and a short display prefix are stored.
    """

    def __init__(self, store: "ConfigStore"):
        self._store = store

    def generate(self, owner_id: str, name: str) -> Tuple[str, ApiKeyRecord]:
        """Creates a key for ``owner_id``.

        Returns:
            (plaintext key, stored record)

        Raises:
            DispatchError: INVALID_REQUEST if ``name`` is blank.
        """
        name = (name or "").strip()
        if not name:
            raise DispatchError(ErrorCode.INVALID_REQUEST, "API key name is required")

        key = KEY_SCHEME + secrets.token_hex(32)
        record = ApiKeyRecord(
            key_hash=hash_api_key(key),
            owner_id=owner_id,
            name=name,
            prefix=key_prefix(key, PREFIX_LENGTH),
            created_at=datetime.now(timezone.utc),
        )
        self._store.save_api_key(record)
        logger.info(f"Issued API key {record.id} ({name}) for {owner_id}")
        return key, record

    def list(self, owner_id: str, include_revoked: bool = False) -> List[ApiKeyRecord]:
        """Keys owned by ``owner_id``, newest first."""
        records = [
            r for r in self._store.list_api_keys(owner_id) if include_revoked or not r.revoked
        ]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(records, key=lambda r: r.created_at or epoch, reverse=True)

    def revoke(self, key_id: str, requester_id: str) -> ApiKeyRecord:
        """Revokes a key. Revoking an already revoked key is a no-op.

        Raises:
            DispatchError: NOT_FOUND for an unknown id, FORBIDDEN if the
                requester does not own the key.
        """
        record = self._store.get_api_key_by_id(key_id)
        if record is None:
            raise DispatchError(ErrorCode.NOT_FOUND, "API key not found")
        if record.owner_id != requester_id:
            raise DispatchError(ErrorCode.FORBIDDEN, "You can only revoke your own API keys")
        if record.revoked:
            return record

        self._store.revoke_api_key(key_id)
        logger.info(f"Revoked API key {key_id} for {requester_id}")
        return self._store.get_api_key_by_id(key_id) or record
