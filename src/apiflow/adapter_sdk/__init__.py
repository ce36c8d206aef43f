from .interfaces import Adapter, DEFAULT_LIMIT
from .models import ConnectionConfig, Engine, Record, normalize_engine
from .errors import (
    AdapterError,
    AdapterErrorCode,
    ConnectionFailed,
    ConnectionFailureKind,
    InvalidIdentifier,
    RecordNotFound,
    ConstraintViolation,
    OperationTimeout,
    UnsupportedOperation,
    UnknownAdapterError,
)
from .identifiers import validate_identifier

__all__ = [
    "Adapter",
    "DEFAULT_LIMIT",
    "ConnectionConfig",
    "Engine",
    "Record",
    "normalize_engine",
    "AdapterError",
    "AdapterErrorCode",
    "ConnectionFailed",
    "ConnectionFailureKind",
    "InvalidIdentifier",
    "RecordNotFound",
    "ConstraintViolation",
    "OperationTimeout",
    "UnsupportedOperation",
    "UnknownAdapterError",
    "validate_identifier",
]
