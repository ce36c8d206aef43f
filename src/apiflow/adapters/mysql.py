from typing import Any, Dict, Optional

from apiflow.adapter_sdk import (
    AdapterError,
    ConnectionFailed,
    ConnectionFailureKind,
    ConstraintViolation,
    InvalidIdentifier,
    OperationTimeout,
    RecordNotFound,
)

from .sql_generic import BaseSQLAlchemyAdapter

_NOT_FOUND = {1146: "Table does not exist"}
_BAD_IDENTIFIER = {1054: "Unknown column"}
_CONSTRAINT = {1048, 1062, 1364, 1451, 1452}
_TIMEOUT = {1205, 3024}
_AUTH = {1044, 1045}
_CONNECT = {
    1049: ConnectionFailureKind.NOT_FOUND,
    2003: ConnectionFailureKind.UNKNOWN,
    2005: ConnectionFailureKind.DNS,
    2006: ConnectionFailureKind.UNKNOWN,
    2013: ConnectionFailureKind.UNKNOWN,
    2026: ConnectionFailureKind.TLS,
}


class MysqlAdapter(BaseSQLAlchemyAdapter):
    """MySQL and MariaDB via PyMySQL.

    Inserts are re-read by the generated key since RETURNING is not
    available on every server version.
    """

    engine_type = "mysql"
    drivername = "mysql+pymysql"

    def engine_kwargs(self) -> Dict[str, Any]:
        connect_args: Dict[str, Any] = {"connect_timeout": self.connect_timeout_sec}
        if self.statement_timeout_ms:
            seconds = max(1, int(self.statement_timeout_ms) // 1000)
            connect_args["read_timeout"] = seconds
            connect_args["write_timeout"] = seconds
        if self.config.ssl:
            connect_args["ssl"] = {"check_hostname": False}
        return {"connect_args": connect_args}

    def _classify_native(self, orig: Exception) -> Optional[AdapterError]:
        args = getattr(orig, "args", ())
        errno = args[0] if args and isinstance(args[0], int) else None
        if errno is None:
            return None
        if errno in _NOT_FOUND:
            return RecordNotFound(_NOT_FOUND[errno])
        if errno in _BAD_IDENTIFIER:
            return InvalidIdentifier(_BAD_IDENTIFIER[errno])
        if errno in _CONSTRAINT:
            return ConstraintViolation(f"Constraint violation ({errno})")
        if errno in _TIMEOUT:
            return OperationTimeout(f"Statement timed out ({errno})")
        if errno in _AUTH:
            return ConnectionFailed("Access denied", kind=ConnectionFailureKind.AUTH)
        if errno in _CONNECT:
            return ConnectionFailed(f"Connection error ({errno})", kind=_CONNECT[errno])
        return None


class MariadbAdapter(MysqlAdapter):
    engine_type = "mariadb"
