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
from apiflow.adapter_sdk.errors import classify_connection_message

from .sql_generic import BaseSQLAlchemyAdapter


class PostgresAdapter(BaseSQLAlchemyAdapter):
    engine_type = "postgres"
    drivername = "postgresql+psycopg2"
    use_returning = True

    def url_query(self) -> Dict[str, str]:
        return {"sslmode": "require"} if self.config.ssl else {}

    def engine_kwargs(self) -> Dict[str, Any]:
        connect_args: Dict[str, Any] = {"connect_timeout": self.connect_timeout_sec}
        if self.statement_timeout_ms:
            connect_args["options"] = f"-c statement_timeout={int(self.statement_timeout_ms)}"
        return {"connect_args": connect_args}

    def _classify_native(self, orig: Exception) -> Optional[AdapterError]:
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if not code:
            return None
        if code == "42P01":
            return RecordNotFound("Table does not exist")
        if code == "42703":
            return InvalidIdentifier("Column does not exist")
        if code == "57014":
            return OperationTimeout("Statement timeout exceeded")
        if code.startswith("23"):
            return ConstraintViolation(f"Constraint violation ({code})")
        if code.startswith("22"):
            return ConstraintViolation(f"Value rejected by column type ({code})")
        if code.startswith("28"):
            return ConnectionFailed("Authentication failed", kind=ConnectionFailureKind.AUTH)
        if code == "3D000":
            return ConnectionFailed("Database does not exist", kind=ConnectionFailureKind.NOT_FOUND)
        if code.startswith("08"):
            return ConnectionFailed(
                f"Connection exception ({code})", kind=classify_connection_message(str(orig))
            )
        return None
