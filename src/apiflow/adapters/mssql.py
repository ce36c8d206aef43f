from typing import Any, Dict, List, Optional

from sqlalchemy import Connection, inspect, text

from apiflow.adapter_sdk import (
    AdapterError,
    ConnectionFailed,
    ConnectionFailureKind,
    ConstraintViolation,
    InvalidIdentifier,
    OperationTimeout,
    RecordNotFound,
)
from apiflow.adapter_sdk.errors import classify_connection_message

from .sql_generic import BaseSQLAlchemyAdapter


class MssqlAdapter(BaseSQLAlchemyAdapter):
    engine_type = "mssql"
    drivername = "mssql+pyodbc"
    odbc_driver = "ODBC Driver 18 for SQL Server"

    def url_query(self) -> Dict[str, str]:
        return {
            "driver": self.config.options.get("odbc_driver", self.odbc_driver),
            "Encrypt": "yes" if self.config.ssl else "no",
            "TrustServerCertificate": "yes",
        }

    def engine_kwargs(self) -> Dict[str, Any]:
        return {"connect_args": {"timeout": self.connect_timeout_sec}}

    def list_tables(self) -> List[str]:
        with self._operation() as conn:
            return [t for t in inspect(conn).get_table_names() if not t.startswith("#")]

    def _last_insert_id(self, conn: Connection, result) -> Optional[Any]:
        return conn.execute(text("SELECT CAST(SCOPE_IDENTITY() AS BIGINT)")).scalar()

    def _classify_native(self, orig: Exception) -> Optional[AdapterError]:
        args = getattr(orig, "args", ())
        state = args[0] if args and isinstance(args[0], str) else None
        if state is None:
            return None
        if state == "42S02":
            return RecordNotFound("Table does not exist")
        if state == "42S22":
            return InvalidIdentifier("Column does not exist")
        if state == "23000":
            return ConstraintViolation("Constraint violation")
        if state in ("HYT00", "HYT01"):
            return OperationTimeout("Statement timed out")
        if state == "28000":
            return ConnectionFailed("Login failed", kind=ConnectionFailureKind.AUTH)
        if state in ("08001", "08S01", "08004"):
            return ConnectionFailed(
                f"Connection error ({state})", kind=classify_connection_message(str(orig))
            )
        return None
