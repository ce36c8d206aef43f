from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from apiflow.endpoints.models import Visibility


class DispatchState(str, Enum):
    RECEIVED = "RECEIVED"
    AUTHENTICATING = "AUTHENTICATING"
    QUOTA_CHECK = "QUOTA_CHECK"
    CACHE_LOOKUP = "CACHE_LOOKUP"
    RESOLVING_ENDPOINT = "RESOLVING_ENDPOINT"
    AUTHORIZING_OWNERSHIP = "AUTHORIZING_OWNERSHIP"
    ACQUIRING_ADAPTER = "ACQUIRING_ADAPTER"
    EXECUTING = "EXECUTING"
    POST_FILTERING = "POST_FILTERING"
    CACHE_WRITE = "CACHE_WRITE"
    LOGGING = "LOGGING"
    RESPONDING = "RESPONDING"
    ERROR = "ERROR"


@dataclass
class DispatchRequest:
    """One inbound request on either surface, stripped of framework types."""

    method: str
    path: str
    visibility: Visibility
    query: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    # Set by the transport when the raw body could not be parsed.
    body_error: Optional[str] = None
    authorization: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class DispatchResult:
    """Standardized result of one dispatch: HTTP status plus JSON body."""

    status: int
    body: Dict[str, Any]
    cached: bool = False
    caller_id: Optional[str] = None
    states: List[DispatchState] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return 200 <= self.status < 300
