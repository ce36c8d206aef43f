import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_SLASHES = re.compile(r"/{2,}")


class Visibility(str, Enum):
    PUBLIC = "public"
    PROTECTED = "protected"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


def normalize_path(path: str) -> str:
    """Canonical endpoint path: one leading slash, no trailing or doubled slashes."""
    return _SLASHES.sub("/", "/" + (path or "").strip().strip("/"))


class EndpointFilter(BaseModel):
    field: str
    operator: FilterOperator
    value: Any = None


class Endpoint(BaseModel):
    """A declared (path, method) route bound to one table of one connection."""

    id: str
    owner_id: Optional[str] = None
    connection_id: str
    name: Optional[str] = None
    path: str
    method: HttpMethod
    table_name: str
    filters: List[EndpointFilter] = Field(default_factory=list)
    auth_required: bool = True
    is_public: bool = False
    is_active: bool = True
    rate_limit: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("path", mode="before")
    @classmethod
    def _canonical_path(cls, value: Any) -> Any:
        return normalize_path(value) if isinstance(value, str) else value

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @property
    def visibility(self) -> Visibility:
        return Visibility.PUBLIC if self.is_public else Visibility.PROTECTED
