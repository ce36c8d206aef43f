"""Key hashing and redaction helpers."""
import hashlib
from typing import Any, Mapping

SENSITIVE_KEYS = frozenset(
    {"password", "secret", "token", "authorization", "api_key", "apikey", "key", "connection_uri"}
)
REDACTED = "[REDACTED]"


def hash_api_key(key: str) -> str:
    """SHA-256 hex digest of an API key. Only the digest is ever stored."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def key_prefix(key: str, length: int = 8) -> str:
    """Short, non-secret key identifier suitable for logs and analytics."""
    return key[:length] if key else ""


def redact(data: Any) -> Any:
    """Returns a copy of ``data`` with values under sensitive keys replaced."""
    if isinstance(data, Mapping):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else redact(v)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(v) for v in data]
    return data
