from enum import Enum
from typing import Optional


class AdapterErrorCode(str, Enum):
    """Failure classes every adapter reports, independent of engine."""
    CONNECTION_FAILED = "CONNECTION_FAILED"
    INVALID_IDENTIFIER = "INVALID_IDENTIFIER"
    NOT_FOUND = "NOT_FOUND"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    TIMEOUT = "TIMEOUT"
    UNSUPPORTED = "UNSUPPORTED"
    UNKNOWN = "UNKNOWN"


class ConnectionFailureKind(str, Enum):
    TIMEOUT = "timeout"
    DNS = "dns"
    AUTH = "auth"
    TLS = "tls"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class AdapterError(Exception):
    """Base class for classified adapter failures.

    Attributes:
        code: The engine-independent failure class.
        detail: Diagnostic message. Never contains credentials.
        fatal: Whether the underlying handle is unusable and must be rebuilt.
    """

    code: AdapterErrorCode = AdapterErrorCode.UNKNOWN
    fatal: bool = False

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.code.value.replace("_", " ").lower()
        super().__init__(self.detail)


class ConnectionFailed(AdapterError):
    code = AdapterErrorCode.CONNECTION_FAILED
    fatal = True

    def __init__(self, detail: Optional[str] = None, kind: ConnectionFailureKind = ConnectionFailureKind.UNKNOWN):
        self.kind = ConnectionFailureKind(kind)
        super().__init__(detail or f"connection failed ({self.kind.value})")


class InvalidIdentifier(AdapterError):
    code = AdapterErrorCode.INVALID_IDENTIFIER


class RecordNotFound(AdapterError):
    code = AdapterErrorCode.NOT_FOUND


class ConstraintViolation(AdapterError):
    code = AdapterErrorCode.CONSTRAINT_VIOLATION


class OperationTimeout(AdapterError):
    code = AdapterErrorCode.TIMEOUT


class UnsupportedOperation(AdapterError):
    code = AdapterErrorCode.UNSUPPORTED


class UnknownAdapterError(AdapterError):
    code = AdapterErrorCode.UNKNOWN


def classify_connection_message(message: str) -> ConnectionFailureKind:
    """Best-effort mapping of a driver's connect failure text to a kind."""
    text = (message or "").lower()
    if "timed out" in text or "timeout" in text:
        return ConnectionFailureKind.TIMEOUT
    if (
        "name or service not known" in text
        or "nodename nor servname" in text
        or "could not translate host name" in text
        or "unknown host" in text
        or "getaddrinfo" in text
        or "dns" in text
    ):
        return ConnectionFailureKind.DNS
    if (
        "password authentication failed" in text
        or "access denied" in text
        or "login failed" in text
        or "authentication" in text
        or "noauth" in text
        or "permission denied" in text
    ):
        return ConnectionFailureKind.AUTH
    if "ssl" in text or "tls" in text or "certificate" in text:
        return ConnectionFailureKind.TLS
    if (
        "does not exist" in text
        or "unknown database" in text
        or "cannot open database" in text
        or "unable to open database" in text
        or "404" in text
    ):
        return ConnectionFailureKind.NOT_FOUND
    return ConnectionFailureKind.UNKNOWN
