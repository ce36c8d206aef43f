"""Persistent configuration storage."""
from .protocol import ConfigStore
from .models import Account, ApiKeyRecord
from .in_memory_store import InMemoryConfigStore
from .sqlite_store import SqliteConfigStore
from .seed import load_seed

__all__ = [
    "ConfigStore",
    "Account",
    "ApiKeyRecord",
    "InMemoryConfigStore",
    "SqliteConfigStore",
    "load_seed",
]
