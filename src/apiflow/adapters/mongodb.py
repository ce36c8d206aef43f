from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo import errors as mongo_errors

from apiflow.adapter_sdk import (
    Adapter,
    AdapterError,
    ConnectionConfig,
    ConnectionFailed,
    ConnectionFailureKind,
    ConstraintViolation,
    InvalidIdentifier,
    OperationTimeout,
    Record,
    RecordNotFound,
    UnknownAdapterError,
)
from apiflow.adapter_sdk.errors import classify_connection_message
from apiflow.common.logger import get_logger

logger = get_logger(__name__)

_AUTH_CODES = {13, 18}


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class MongoAdapter(Adapter):
    """MongoDB collections as tables.

    Documents are returned with ``_id`` renamed to ``id`` and every
    ``ObjectId`` rendered as its hex string.
    """

    engine_type = "mongodb"

    def __init__(self, config: ConnectionConfig, statement_timeout_ms: Optional[int] = None):
        super().__init__(config)
        self.timeout_ms = statement_timeout_ms or 15000
        self.client: Optional[MongoClient] = None
        self.db = None

    def connect(self) -> "MongoAdapter":
        if self.client is not None:
            return self
        cfg = self.config
        common = {
            "serverSelectionTimeoutMS": 10000,
            "socketTimeoutMS": self.timeout_ms,
            "appname": "apiflow",
        }
        try:
            if cfg.connection_uri:
                self.client = MongoClient(cfg.secret("connection_uri"), **common)
            else:
                auth: Dict[str, Any] = {}
                if cfg.user:
                    auth = {
                        "username": cfg.user,
                        "password": cfg.secret("password"),
                        "authSource": cfg.options.get("auth_source", "admin"),
                    }
                self.client = MongoClient(host=cfg.host, port=cfg.port, tls=cfg.ssl, **auth, **common)
            self.client.admin.command("ping")
            self.db = self.client.get_default_database(cfg.database or "test")
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
        if self.client is not None:
            self.client.close()
        self.client = None
        self.db = None

    def _collection(self, table: str):
        self.check_table(table)
        if self.db is None:
            raise ConnectionFailed(f"Not connected to {self}")
        self.touch()
        return self.db[table]

    @staticmethod
    def _match(id: Any) -> Dict[str, Any]:
        if isinstance(id, str) and ObjectId.is_valid(id):
            return {"_id": {"$in": [ObjectId(id), id]}}
        return {"_id": id}

    @staticmethod
    def _out(doc: Dict[str, Any]) -> Record:
        doc = dict(doc)
        if "_id" in doc:
            doc["id"] = doc.pop("_id")
        return _plain(doc)

    def list_tables(self) -> List[str]:
        if self.db is None:
            raise ConnectionFailed(f"Not connected to {self}")
        try:
            return sorted(self.db.list_collection_names())
        except Exception as e:
            self._raise_classified(e)

    def list_documents(self, table: str, limit: Optional[int] = None) -> List[Record]:
        coll = self._collection(table)
        try:
            return [self._out(doc) for doc in coll.find({}).limit(self.clamp_limit(limit))]
        except Exception as e:
            self._raise_classified(e)

    def read(self, table: str, id: Any) -> Record:
        coll = self._collection(table)
        try:
            doc = coll.find_one(self._match(id))
        except Exception as e:
            self._raise_classified(e)
        if doc is None:
            raise RecordNotFound(f"No document {id} in {table}")
        return self._out(doc)

    def create(self, table: str, record: Record, id: Optional[Any] = None) -> Record:
        coll = self._collection(table)
        doc = dict(record)
        key = id if id is not None else doc.pop("id", None)
        doc.pop("id", None)
        self.check_columns(doc)
        if key is not None:
            doc["_id"] = key
        try:
            result = coll.insert_one(doc)
        except Exception as e:
            self._raise_classified(e)
        doc["_id"] = result.inserted_id
        return self._out(doc)

    def update(self, table: str, id: Any, record: Record) -> Record:
        coll = self._collection(table)
        values = {k: v for k, v in record.items() if k not in ("id", "_id")}
        self.check_columns(values)
        if not values:
            return self.read(table, id)
        try:
            doc = coll.find_one_and_update(
                self._match(id), {"$set": values}, return_document=ReturnDocument.AFTER
            )
        except Exception as e:
            self._raise_classified(e)
        if doc is None:
            raise RecordNotFound(f"No document {id} in {table}")
        return self._out(doc)

    def delete(self, table: str, id: Any) -> Record:
        coll = self._collection(table)
        try:
            result = coll.delete_one(self._match(id))
        except Exception as e:
            self._raise_classified(e)
        if result.deleted_count == 0:
            raise RecordNotFound(f"No document {id} in {table}")
        return {"success": True, "id": id}

    def _classify(self, exc: Exception) -> AdapterError:
        if isinstance(exc, mongo_errors.DuplicateKeyError):
            return ConstraintViolation("Duplicate key")
        if isinstance(exc, mongo_errors.ExecutionTimeout):
            return OperationTimeout("Operation exceeded time limit")
        if isinstance(exc, mongo_errors.InvalidName):
            return InvalidIdentifier("Invalid collection name")
        if isinstance(exc, mongo_errors.WriteError):
            return ConstraintViolation("Document failed validation")
        if isinstance(exc, mongo_errors.OperationFailure):
            if exc.code in _AUTH_CODES:
                return ConnectionFailed("Authentication failed", kind=ConnectionFailureKind.AUTH)
            return UnknownAdapterError(f"Operation failed ({exc.code})")
        if isinstance(exc, mongo_errors.ServerSelectionTimeoutError):
            return ConnectionFailed("No reachable server", kind=classify_connection_message(str(exc)))
        if isinstance(exc, mongo_errors.NetworkTimeout):
            return OperationTimeout("Network timeout")
        if isinstance(exc, mongo_errors.ConnectionFailure):
            return ConnectionFailed("Connection lost", kind=classify_connection_message(str(exc)))
        if isinstance(exc, mongo_errors.ConfigurationError):
            return ConnectionFailed("Invalid connection settings", kind=classify_connection_message(str(exc)))
        return super()._classify(exc)
