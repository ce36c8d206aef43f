import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import httpx
from sqlalchemy import Connection, create_engine, literal_column, select, table as sa_table

from apiflow.adapter_sdk import (
    AdapterError,
    ConnectionConfig,
    ConnectionFailed,
    ConnectionFailureKind,
    ConstraintViolation,
    InvalidIdentifier,
    OperationTimeout,
    Record,
    RecordNotFound,
    UnsupportedOperation,
)
from apiflow.common.logger import get_logger

from .sql_generic import BaseSQLAlchemyAdapter

logger = get_logger(__name__)


class SqliteAdapter(BaseSQLAlchemyAdapter):
    """SQLite database file, either on local disk or fetched from blob storage.

    A blob-backed database is downloaded to a scratch file for every
    operation and the scratch file is removed afterwards, whatever the
    outcome. Blob-backed connections are read-only since writes to the
    scratch copy would be lost.
    """

    engine_type = "sqlite"
    drivername = "sqlite"
    use_returning = False
    blob_timeout_sec = 30.0

    def __init__(self, config: ConnectionConfig, statement_timeout_ms: Optional[int] = None):
        super().__init__(config, statement_timeout_ms=statement_timeout_ms)
        self.blob_url = config.blob_url
        self.http: Optional[httpx.Client] = None

    @property
    def is_blob(self) -> bool:
        return bool(self.blob_url) and not self.config.database

    def construct_uri(self) -> str:
        return f"sqlite:///{os.path.abspath(self.config.database)}"

    def engine_kwargs(self) -> Dict[str, Any]:
        busy = (self.statement_timeout_ms or 5000) / 1000
        return {"connect_args": {"timeout": busy}}

    def connect(self) -> "SqliteAdapter":
        if self.is_blob:
            if self.http is None:
                self.http = httpx.Client(timeout=self.blob_timeout_sec, follow_redirects=True)
            logger.info(f"Using blob-backed database for {self}")
            return self
        if not Path(self.config.database).is_file():
            raise ConnectionFailed(
                f"Database file not found for {self.connection_id}",
                kind=ConnectionFailureKind.NOT_FOUND,
            )
        return super().connect()

    def disconnect(self) -> None:
        super().disconnect()
        if self.http is not None:
            self.http.close()
            self.http = None

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[Connection]:
        if not self.is_blob:
            with super()._transaction(write=write) as conn:
                yield conn
            return
        if write:
            raise UnsupportedOperation("Blob-backed SQLite connections are read-only")
        if self.http is None:
            raise ConnectionFailed(f"Not connected to {self}")
        fd, scratch = tempfile.mkstemp(prefix="apiflow-", suffix=".db")
        engine = None
        try:
            with os.fdopen(fd, "wb") as fh:
                with self.http.stream("GET", self.blob_url) as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
            engine = create_engine(f"sqlite:///{scratch}", **self.engine_kwargs())
            with engine.begin() as conn:
                yield conn
        finally:
            if engine is not None:
                engine.dispose()
            try:
                os.unlink(scratch)
            except FileNotFoundError:
                pass

    def _reread_created(self, conn: Connection, table: str, result, values: Record) -> Record:
        if values.get(self.id_column) is not None or result.lastrowid is None:
            return super()._reread_created(conn, table, result, values)
        stmt = (
            select(literal_column("*"))
            .select_from(sa_table(table))
            .where(literal_column("rowid") == result.lastrowid)
        )
        row = conn.execute(stmt).mappings().first()
        return dict(row) if row is not None else {**values, self.id_column: result.lastrowid}

    def _classify_native(self, orig: Exception) -> Optional[AdapterError]:
        message = str(orig).lower()
        if "no such table" in message:
            return RecordNotFound("Table does not exist")
        if "no such column" in message or "has no column named" in message:
            return InvalidIdentifier("Column does not exist")
        if "constraint failed" in message:
            return ConstraintViolation("Record violates a table constraint")
        if "database is locked" in message:
            return OperationTimeout("Database is locked")
        if "unable to open database file" in message:
            return ConnectionFailed("Unable to open database file", kind=ConnectionFailureKind.NOT_FOUND)
        if "file is not a database" in message:
            return ConnectionFailed("File is not a database")
        return None

    def _classify(self, exc: Exception) -> AdapterError:
        if isinstance(exc, httpx.HTTPStatusError):
            kind = (
                ConnectionFailureKind.NOT_FOUND
                if exc.response.status_code == 404
                else ConnectionFailureKind.UNKNOWN
            )
            return ConnectionFailed(f"Blob download failed ({exc.response.status_code})", kind=kind)
        if isinstance(exc, httpx.TimeoutException):
            return OperationTimeout("Blob download timed out")
        if isinstance(exc, httpx.HTTPError):
            return ConnectionFailed("Blob download failed")
        return super()._classify(exc)
