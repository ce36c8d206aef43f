"""Connection resolution and the live adapter registry."""
from .registry import AdapterRegistry
from .config import ConnectionConfigResolver
from .service import ConnectionService

__all__ = ["AdapterRegistry", "ConnectionConfigResolver", "ConnectionService"]
