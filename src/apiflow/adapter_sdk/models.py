from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlsplit, parse_qs

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

Record = Dict[str, Any]


class Engine(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    MONGODB = "mongodb"
    MSSQL = "mssql"
    REDIS = "redis"
    SQLITE = "sqlite"
    SHEETS = "sheets"
    DOCUMENT_STORE = "document-store"


_ENGINE_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "sqlserver": "mssql",
    "mongo": "mongodb",
    "firestore": "document-store",
    "document_store": "document-store",
    "googlesheets": "sheets",
    "google-sheets": "sheets",
    "google_sheets": "sheets",
}

DEFAULT_PORTS = {
    Engine.POSTGRES: 5432,
    Engine.MYSQL: 3306,
    Engine.MARIADB: 3306,
    Engine.MSSQL: 1433,
    Engine.REDIS: 6379,
    Engine.MONGODB: 27017,
}


def normalize_engine(raw: str) -> str:
    """Normalizes engine aliases to the internal engine tag."""
    value = (raw or "").strip().lower()
    return _ENGINE_ALIASES.get(value, value)


def _parse_mysql_dsn(dsn: str) -> Dict[str, Any]:
    parts = urlsplit(dsn)
    if parts.scheme.split("+")[0] not in ("mysql", "mariadb"):
        return {}
    query = parse_qs(parts.query)
    ssl_flag = (query.get("ssl") or query.get("ssl-mode") or query.get("sslmode") or [None])[0]
    parsed: Dict[str, Any] = {
        "host": parts.hostname,
        "port": parts.port,
        "user": unquote(parts.username) if parts.username else None,
        "password": unquote(parts.password) if parts.password else None,
        "database": unquote(parts.path[1:]) if len(parts.path) > 1 else None,
    }
    if ssl_flag is not None:
        parsed["ssl"] = ssl_flag in ("require", "REQUIRED", "true", "1")
    return parsed


class ConnectionConfig(BaseModel):
    """Credentials and settings for one registered database target.

    Secrets are held as ``SecretStr`` so they never show up in reprs or logs.
    """

    id: str
    engine: Engine
    owner_id: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[SecretStr] = None
    database: Optional[str] = None
    ssl: bool = False
    connection_uri: Optional[SecretStr] = None
    blob_url: Optional[str] = None
    sheet_id: Optional[str] = None
    service_account: Optional[SecretStr] = None
    project_id: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    status: str = "active"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("engine", mode="before")
    @classmethod
    def _normalize_engine(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_engine(value)
        return value

    @model_validator(mode="after")
    def _fill_defaults(self) -> "ConnectionConfig":
        if self.engine in (Engine.MYSQL, Engine.MARIADB) and self.connection_uri and not (
            self.host and self.user and self.password
        ):
            parsed = _parse_mysql_dsn(self.connection_uri.get_secret_value())
            self.host = self.host or parsed.get("host")
            self.port = self.port or parsed.get("port")
            self.user = self.user or parsed.get("user")
            if not self.password and parsed.get("password"):
                self.password = SecretStr(parsed["password"])
            self.database = self.database or parsed.get("database")
            if not self.ssl and parsed.get("ssl"):
                self.ssl = True
        if self.port is None and self.engine in DEFAULT_PORTS:
            self.port = DEFAULT_PORTS[self.engine]
        return self

    def secret(self, name: str) -> Optional[str]:
        """Unwraps a ``SecretStr`` field. Only adapters call this."""
        value = getattr(self, name)
        if value is None:
            return None
        return value.get_secret_value()

    def missing_fields(self) -> list:
        """Returns the fields this engine needs that are not set."""
        if self.engine in (Engine.POSTGRES, Engine.MYSQL, Engine.MARIADB, Engine.MSSQL):
            if self.connection_uri:
                return []
            return [name for name in ("host", "user", "password") if not getattr(self, name)]
        if self.engine == Engine.MONGODB:
            return [] if (self.connection_uri or self.host) else ["connection_uri"]
        if self.engine == Engine.REDIS:
            return [] if (self.connection_uri or self.host) else ["host"]
        if self.engine == Engine.SQLITE:
            return [] if (self.database or self.blob_url) else ["database"]
        if self.engine == Engine.SHEETS:
            return [name for name in ("sheet_id", "service_account") if not getattr(self, name)]
        if self.engine == Engine.DOCUMENT_STORE:
            return [] if (self.service_account or self.project_id) else ["project_id"]
        return []
