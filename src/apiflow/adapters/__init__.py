import importlib
from importlib.metadata import entry_points
from typing import Dict, Optional, Type

from apiflow.adapter_sdk import Adapter, ConnectionConfig, ConnectionFailed, Engine
from apiflow.common.logger import get_logger

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "apiflow.adapters"

BUILTIN_ADAPTERS: Dict[str, str] = {
    Engine.POSTGRES.value: "apiflow.adapters.postgres:PostgresAdapter",
    Engine.MYSQL.value: "apiflow.adapters.mysql:MysqlAdapter",
    Engine.MARIADB.value: "apiflow.adapters.mysql:MariadbAdapter",
    Engine.MSSQL.value: "apiflow.adapters.mssql:MssqlAdapter",
    Engine.SQLITE.value: "apiflow.adapters.sqlite:SqliteAdapter",
    Engine.MONGODB.value: "apiflow.adapters.mongodb:MongoAdapter",
    Engine.REDIS.value: "apiflow.adapters.redis_store:RedisAdapter",
    Engine.SHEETS.value: "apiflow.adapters.sheets:SheetsAdapter",
    Engine.DOCUMENT_STORE.value: "apiflow.adapters.document_store:DocumentStoreAdapter",
}


def discover_adapters() -> Dict[str, Type[Adapter]]:
    """Discovers third-party adapters via 'apiflow.adapters' entry points.

    Returns:
        Dict[str, Type[Adapter]]: Dict mapping engine tag to the Adapter class.
    """
    adapters = {}
    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            adapters[ep.name] = ep.load()
        except Exception as e:
            logger.error(f"Failed to load adapter {ep.name}: {e}")
    return adapters


def load_adapter_class(engine: str) -> Type[Adapter]:
    """Resolves the adapter class for an engine tag.

    Installed plugins take precedence over the built-in adapters.

    Raises:
        ConnectionFailed: If no adapter is available or its driver is missing.
    """
    plugins = discover_adapters()
    if engine in plugins:
        return plugins[engine]
    target = BUILTIN_ADAPTERS.get(engine)
    if target is None:
        raise ConnectionFailed(f"No adapter found for engine type: '{engine}'")
    module_name, _, class_name = target.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        logger.error(f"Driver for engine '{engine}' is not installed: {e}")
        raise ConnectionFailed(f"Driver for engine '{engine}' is not installed") from e
    return getattr(module, class_name)


def create_adapter(config: ConnectionConfig, statement_timeout_ms: Optional[int] = None) -> Adapter:
    """Instantiates an unconnected adapter for ``config``."""
    cls = load_adapter_class(config.engine.value)
    return cls(config, statement_timeout_ms=statement_timeout_ms)


__all__ = ["BUILTIN_ADAPTERS", "discover_adapters", "load_adapter_class", "create_adapter"]
