from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from apiflow.common.errors import ErrorResponse
from apiflow.store.models import ApiKeyRecord


class SuccessResponse(BaseModel):
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None


class VisibilityRequest(BaseModel):
    is_public: bool


class ApiKeyCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class ApiKeySummary(BaseModel):
    """An API key as shown to its owner. Never carries the key or its hash."""

    id: str
    name: Optional[str] = None
    prefix: Optional[str] = None
    revoked: bool = False
    created_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ApiKeyRecord) -> "ApiKeySummary":
        return cls(
            id=record.id,
            name=record.name,
            prefix=record.prefix,
            revoked=record.revoked,
            created_at=record.created_at,
            revoked_at=record.revoked_at,
        )


__all__ = [
    "ApiKeyCreateRequest",
    "ApiKeySummary",
    "ErrorResponse",
    "SuccessResponse",
    "VisibilityRequest",
]
