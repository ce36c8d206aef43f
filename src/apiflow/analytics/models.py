from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsEvent(BaseModel):
    """One dispatched request, as recorded for usage analytics."""
    endpoint: str
    method: str
    status: int
    latency_ms: float
    caller_id: Optional[str] = None
    source: str
    api_key_prefix: Optional[str] = None
    cached: bool = False
    error: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
