from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from apiflow.adapter_sdk.errors import AdapterError, AdapterErrorCode


class ErrorCode(str, Enum):
    """Error classes exposed at the HTTP boundary."""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    METHOD_NOT_SUPPORTED = "METHOD_NOT_SUPPORTED"
    CONFLICT = "CONFLICT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.VALIDATION_FAILED: 422,
    ErrorCode.METHOD_NOT_SUPPORTED: 405,
    ErrorCode.CONFLICT: 409,
    ErrorCode.QUOTA_EXCEEDED: 429,
    ErrorCode.UPSTREAM_ERROR: 502,
    ErrorCode.UPSTREAM_TIMEOUT: 504,
    ErrorCode.INTERNAL_ERROR: 500,
}

SAFE_ERROR_MESSAGES = {
    ErrorCode.UNAUTHENTICATED: "Unauthorized",
    ErrorCode.FORBIDDEN: "Forbidden",
    ErrorCode.NOT_FOUND: "Not found",
    ErrorCode.METHOD_NOT_SUPPORTED: "Method not supported",
    ErrorCode.QUOTA_EXCEEDED: "Monthly request limit reached. Please upgrade to continue.",
    ErrorCode.UPSTREAM_ERROR: "The database could not be reached or rejected the operation.",
    ErrorCode.UPSTREAM_TIMEOUT: "The database operation timed out.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred.",
}

# Upstream detail may carry driver text such as DSNs, so it is never echoed.
_OPAQUE_CODES = {ErrorCode.UPSTREAM_ERROR, ErrorCode.UPSTREAM_TIMEOUT, ErrorCode.INTERNAL_ERROR}

_ADAPTER_TO_BOUNDARY = {
    AdapterErrorCode.CONNECTION_FAILED: ErrorCode.UPSTREAM_ERROR,
    AdapterErrorCode.INVALID_IDENTIFIER: ErrorCode.INVALID_REQUEST,
    AdapterErrorCode.NOT_FOUND: ErrorCode.NOT_FOUND,
    AdapterErrorCode.CONSTRAINT_VIOLATION: ErrorCode.CONFLICT,
    AdapterErrorCode.TIMEOUT: ErrorCode.UPSTREAM_TIMEOUT,
    AdapterErrorCode.UNSUPPORTED: ErrorCode.METHOD_NOT_SUPPORTED,
    AdapterErrorCode.UNKNOWN: ErrorCode.UPSTREAM_ERROR,
}


class DispatchError(Exception):
    """A failure classified into the boundary taxonomy.

    Attributes:
        code (ErrorCode): The boundary error class.
        message (str): Human-readable message returned to the caller.
        details (Optional[Any]): Diagnostics kept server-side.
    """

    def __init__(self, code: ErrorCode, message: Optional[str] = None, details: Optional[Any] = None):
        self.code = code
        self.message = message or SAFE_ERROR_MESSAGES.get(code, code.value)
        self.details = details
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.code]

    def get_safe_message(self) -> str:
        """Returns the message that may be shown to the caller."""
        if self.code in _OPAQUE_CODES:
            return SAFE_ERROR_MESSAGES[self.code]
        return self.message


def from_adapter_error(exc: AdapterError) -> DispatchError:
    """Re-classifies an adapter failure into the boundary taxonomy."""
    code = _ADAPTER_TO_BOUNDARY.get(exc.code, ErrorCode.UPSTREAM_ERROR)
    return DispatchError(code, exc.detail, details={"adapter_code": exc.code.value})


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: ErrorCode
