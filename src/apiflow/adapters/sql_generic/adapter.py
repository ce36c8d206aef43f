from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    Connection,
    Engine,
    column,
    create_engine,
    delete as sa_delete,
    insert,
    inspect,
    literal_column,
    select,
    table as sa_table,
    text,
    update as sa_update,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import URL, make_url

from apiflow.adapter_sdk import (
    Adapter,
    AdapterError,
    ConnectionConfig,
    ConnectionFailed,
    ConstraintViolation,
    OperationTimeout,
    Record,
    RecordNotFound,
    UnknownAdapterError,
)
from apiflow.adapter_sdk.errors import classify_connection_message
from apiflow.common.logger import get_logger

logger = get_logger(__name__)


class BaseSQLAlchemyAdapter(Adapter):
    """
    Base class for all SQLAlchemy-based adapters.
    Implements connection handling, CRUD statement building and error
    classification shared by the relational engines.

    Statements are built from SQLAlchemy Core lightweight ``table()`` and
    ``column()`` constructs, so identifiers are quoted by the dialect and every
    value travels as a bound parameter.
    """

    drivername: str = ""
    use_returning: bool = False
    connect_timeout_sec: int = 10

    def __init__(self, config: ConnectionConfig, statement_timeout_ms: Optional[int] = None):
        super().__init__(config)
        self.id_column = config.options.get("id_column", "id")
        self.statement_timeout_ms = statement_timeout_ms
        self.engine: Optional[Engine] = None

    def construct_uri(self) -> str:
        cfg = self.config
        if cfg.connection_uri:
            url = make_url(cfg.secret("connection_uri"))
            if "+" not in url.drivername and self.drivername:
                url = url.set(drivername=self.drivername)
            return url.render_as_string(hide_password=False)
        return URL.create(
            self.drivername,
            username=cfg.user,
            password=cfg.secret("password"),
            host=cfg.host,
            port=cfg.port,
            database=cfg.database,
            query=self.url_query(),
        ).render_as_string(hide_password=False)

    def url_query(self) -> Dict[str, str]:
        return {}

    def engine_kwargs(self) -> Dict[str, Any]:
        return {}

    def connect(self) -> "BaseSQLAlchemyAdapter":
        if self.engine is not None:
            return self
        try:
            self.engine = create_engine(self.construct_uri(), pool_pre_ping=True, **self.engine_kwargs())
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            self.disconnect()
            error = self._classify(e)
            if not isinstance(error, ConnectionFailed):
                error = ConnectionFailed(error.detail, kind=classify_connection_message(str(e)))
            logger.error(f"Failed to connect to {self}: {error.detail}")
            raise error from e
        logger.info(f"Connected to {self}")
        return self

    def disconnect(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[Connection]:
        if self.engine is None:
            raise ConnectionFailed(f"Not connected to {self}")
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _operation(self, write: bool = False) -> Iterator[Connection]:
        self.touch()
        try:
            with self._transaction(write=write) as conn:
                yield conn
        except AdapterError:
            raise
        except Exception as e:
            self._raise_classified(e)

    def _table(self, name: str, columns: List[str]):
        names = list(dict.fromkeys([*columns, self.id_column]))
        return sa_table(name, *(column(c) for c in names))

    @staticmethod
    def _coerce_id(id: Any) -> Any:
        if isinstance(id, str) and id.isdigit():
            return int(id)
        return id

    @staticmethod
    def _rows(result) -> List[Record]:
        return [dict(row) for row in result.mappings().all()]

    def list_tables(self) -> List[str]:
        with self._operation() as conn:
            return inspect(conn).get_table_names()

    def list_documents(self, table: str, limit: Optional[int] = None) -> List[Record]:
        self.check_table(table)
        stmt = (
            select(literal_column("*"))
            .select_from(sa_table(table))
            .limit(self.clamp_limit(limit))
        )
        with self._operation() as conn:
            return self._rows(conn.execute(stmt))

    def _select_by(self, conn: Connection, table: str, key: str, value: Any) -> Optional[Record]:
        t = self._table(table, [key])
        stmt = select(literal_column("*")).select_from(t).where(t.c[key] == value).limit(1)
        row = conn.execute(stmt).mappings().first()
        return dict(row) if row is not None else None

    def read(self, table: str, id: Any) -> Record:
        self.check_table(table)
        with self._operation() as conn:
            row = self._select_by(conn, table, self.id_column, self._coerce_id(id))
        if row is None:
            raise RecordNotFound(f"No record with {self.id_column}={id} in {table}")
        return row

    def create(self, table: str, record: Record, id: Optional[Any] = None) -> Record:
        self.check_table(table)
        values = dict(record)
        if id is not None:
            values[self.id_column] = self._coerce_id(id)
        columns = self.check_columns(values)
        if not values:
            raise ConstraintViolation("Empty record")
        t = self._table(table, columns)
        stmt = insert(t).values(**values)
        if self.use_returning:
            stmt = stmt.returning(literal_column("*"))
        with self._operation(write=True) as conn:
            result = conn.execute(stmt)
            if self.use_returning:
                row = result.mappings().first()
                return dict(row) if row is not None else values
            return self._reread_created(conn, table, result, values)

    def _reread_created(self, conn: Connection, table: str, result, values: Record) -> Record:
        new_id = values.get(self.id_column)
        if new_id is None:
            new_id = self._last_insert_id(conn, result)
        if new_id is None:
            return values
        row = self._select_by(conn, table, self.id_column, new_id)
        return row if row is not None else {**values, self.id_column: new_id}

    def _last_insert_id(self, conn: Connection, result) -> Optional[Any]:
        return result.lastrowid

    def update(self, table: str, id: Any, record: Record) -> Record:
        self.check_table(table)
        values = {k: v for k, v in record.items() if k != self.id_column}
        columns = self.check_columns(values)
        key = self._coerce_id(id)
        with self._operation(write=True) as conn:
            if values:
                t = self._table(table, columns)
                result = conn.execute(sa_update(t).where(t.c[self.id_column] == key).values(**values))
                if result.rowcount == 0:
                    raise RecordNotFound(f"No record with {self.id_column}={id} in {table}")
            row = self._select_by(conn, table, self.id_column, key)
        if row is None:
            raise RecordNotFound(f"No record with {self.id_column}={id} in {table}")
        return row

    def delete(self, table: str, id: Any) -> Record:
        self.check_table(table)
        t = self._table(table, [])
        with self._operation(write=True) as conn:
            result = conn.execute(sa_delete(t).where(t.c[self.id_column] == self._coerce_id(id)))
            if result.rowcount == 0:
                raise RecordNotFound(f"No record with {self.id_column}={id} in {table}")
        return {"success": True, "id": id}

    def _classify_native(self, orig: Exception) -> Optional[AdapterError]:
        """Engine-specific mapping of DBAPI errors. Overridden per dialect."""
        return None

    def _classify(self, exc: Exception) -> AdapterError:
        orig = getattr(exc, "orig", None)
        if orig is not None:
            classified = self._classify_native(orig)
            if classified is not None:
                return classified
        if isinstance(exc, sa_exc.IntegrityError):
            return ConstraintViolation("Record violates a table constraint")
        if isinstance(exc, sa_exc.TimeoutError):
            return OperationTimeout("Timed out waiting for a pooled connection")
        if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
            return ConnectionFailed(f"Connection to {self} was lost")
        if isinstance(exc, (sa_exc.OperationalError, sa_exc.InterfaceError)):
            kind = classify_connection_message(str(orig if orig is not None else exc))
            return ConnectionFailed(f"{type(orig or exc).__name__} from {self.engine_label}", kind=kind)
        return UnknownAdapterError(f"{type(orig or exc).__name__} from {self.engine_label}")

    @property
    def engine_label(self) -> str:
        return self.engine.dialect.name if self.engine is not None else self.__class__.__name__
