from typing import Mapping, Optional

from apiflow.common.logger import get_logger
from apiflow.common.security import hash_api_key
from apiflow.store.protocol import ConfigStore

from .models import ApiKeyVerification
from .session import bearer_token

logger = get_logger(__name__)

API_KEY_PARAM = "key"


def extract_api_key(query: Mapping[str, str], authorization: Optional[str]) -> Optional[str]:
    """API key from ``?key=`` or, failing that, an ``Authorization: Bearer`` header."""
    return query.get(API_KEY_PARAM) or bearer_token(authorization)


class StoreApiKeyVerifier:
    """Looks presented API keys up by hash in the config store."""

    def __init__(self, store: ConfigStore):
        self._store = store

    def verify(self, key: Optional[str]) -> ApiKeyVerification:
        if not key:
            return ApiKeyVerification(valid=False, reason="missing")
        record = self._store.get_api_key(hash_api_key(key))
        if record is None:
            return ApiKeyVerification(valid=False, reason="unknown")
        if record.revoked:
            return ApiKeyVerification(valid=False, caller_id=record.owner_id, reason="revoked")
        return ApiKeyVerification(valid=True, caller_id=record.owner_id)
