from typing import Optional

from pydantic import BaseModel


class CallerIdentity(BaseModel):
    """Who is making a request, as established by a verifier."""
    caller_id: str
    email: Optional[str] = None


class ApiKeyVerification(BaseModel):
    valid: bool
    caller_id: Optional[str] = None
    reason: Optional[str] = None
