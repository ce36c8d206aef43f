from datetime import datetime
from typing import Optional

from pydantic import BaseModel

KEY_ID_LENGTH = 16


class ApiKeyRecord(BaseModel):
    """A stored API key. Only the SHA-256 hash of the key is persisted."""

    key_hash: str
    owner_id: str
    name: Optional[str] = None
    prefix: Optional[str] = None
    revoked: bool = False
    created_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        """Public handle for the key: the first 16 hex digits of its hash."""
        return self.key_hash[:KEY_ID_LENGTH]


class Account(BaseModel):
    caller_id: str
    plan: str = "free"
    email: Optional[str] = None
