import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from .errors import AdapterError, UnknownAdapterError
from .identifiers import validate_identifier, validate_identifiers
from .models import ConnectionConfig, Record

DEFAULT_LIMIT = 50


class Adapter(ABC):
    """Canonical CRUD contract every engine adapter implements.

    An adapter owns exactly one physical connection, pool or client for one
    registered connection. All public methods raise only ``AdapterError``
    subclasses; engine-native exceptions are classified by ``_classify``.
    """

    engine_type: str = ""
    max_limit: int = 100

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self.connection_id = config.id
        self.last_used_at = time.monotonic()

    def __str__(self):
        return f"{self.connection_id} ({self.engine_type})"

    @abstractmethod
    def connect(self) -> "Adapter":
        """Open the underlying handle. Raises ``ConnectionFailed``."""

    @abstractmethod
    def disconnect(self) -> None:
        """Release the underlying handle. Safe to call more than once."""

    @abstractmethod
    def list_tables(self) -> List[str]:
        """Return the tables, collections, key prefixes or worksheets."""

    @abstractmethod
    def list_documents(self, table: str, limit: Optional[int] = None) -> List[Record]:
        """Return up to ``limit`` records of ``table``."""

    @abstractmethod
    def read(self, table: str, id: Any) -> Record:
        """Return one record. Raises ``RecordNotFound``."""

    @abstractmethod
    def create(self, table: str, record: Record, id: Optional[Any] = None) -> Record:
        """Store ``record`` and return it with ``id`` populated."""

    @abstractmethod
    def update(self, table: str, id: Any, record: Record) -> Record:
        """Apply a partial update. Raises ``RecordNotFound``."""

    @abstractmethod
    def delete(self, table: str, id: Any) -> Record:
        """Remove a record. Raises ``RecordNotFound`` if it does not exist."""

    def _classify(self, exc: Exception) -> AdapterError:
        """Map an engine-native exception onto the adapter taxonomy."""
        return UnknownAdapterError(f"{type(exc).__name__} from {self.engine_type}")

    def _raise_classified(self, exc: Exception):
        if isinstance(exc, AdapterError):
            raise exc
        raise self._classify(exc) from exc

    def touch(self) -> None:
        self.last_used_at = time.monotonic()

    def clamp_limit(self, limit: Optional[int]) -> int:
        if not limit:
            limit = DEFAULT_LIMIT
        return max(1, min(int(limit), self.max_limit))

    @staticmethod
    def check_table(table: str) -> str:
        return validate_identifier(table, "table")

    @staticmethod
    def check_columns(record: Record) -> List[str]:
        return validate_identifiers(record.keys(), "column")
