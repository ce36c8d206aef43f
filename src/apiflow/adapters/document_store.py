import json
from typing import Any, Dict, List, Optional

from google.api_core import exceptions as google_errors
from google.auth import exceptions as google_auth_errors
from google.cloud import firestore

from apiflow.adapter_sdk import (
    Adapter,
    AdapterError,
    ConnectionConfig,
    ConnectionFailed,
    ConnectionFailureKind,
    ConstraintViolation,
    OperationTimeout,
    Record,
    RecordNotFound,
)
from apiflow.adapter_sdk.errors import classify_connection_message
from apiflow.common.logger import get_logger

logger = get_logger(__name__)


def _plain(value: Any) -> Any:
    if isinstance(value, firestore.DocumentReference):
        return value.path
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class DocumentStoreAdapter(Adapter):
    """Firestore collections as tables, document ids as record ids."""

    engine_type = "document-store"

    def __init__(self, config: ConnectionConfig, statement_timeout_ms: Optional[int] = None):
        super().__init__(config)
        self.timeout_sec = (statement_timeout_ms or 15000) / 1000
        self.client: Optional[firestore.Client] = None

    def connect(self) -> "DocumentStoreAdapter":
        if self.client is not None:
            return self
        cfg = self.config
        kwargs: Dict[str, Any] = {}
        if cfg.database:
            kwargs["database"] = cfg.database
        try:
            if cfg.service_account:
                info = json.loads(cfg.secret("service_account"))
                self.client = firestore.Client.from_service_account_info(
                    info, project=cfg.project_id or info.get("project_id"), **kwargs
                )
            else:
                self.client = firestore.Client(project=cfg.project_id, **kwargs)
            next(iter(self.client.collections()), None)
        except ValueError as e:
            self.disconnect()
            raise ConnectionFailed("Service account is not valid JSON", kind=ConnectionFailureKind.AUTH) from e
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

    def _collection(self, table: str):
        self.check_table(table)
        if self.client is None:
            raise ConnectionFailed(f"Not connected to {self}")
        self.touch()
        return self.client.collection(table)

    @staticmethod
    def _out(snapshot) -> Record:
        return {**_plain(snapshot.to_dict() or {}), "id": snapshot.id}

    def list_tables(self) -> List[str]:
        if self.client is None:
            raise ConnectionFailed(f"Not connected to {self}")
        try:
            return [c.id for c in self.client.collections()]
        except Exception as e:
            self._raise_classified(e)

    def list_documents(self, table: str, limit: Optional[int] = None) -> List[Record]:
        coll = self._collection(table)
        try:
            return [
                self._out(snap)
                for snap in coll.limit(self.clamp_limit(limit)).stream(timeout=self.timeout_sec)
            ]
        except Exception as e:
            self._raise_classified(e)

    def _existing(self, table: str, id: Any):
        ref = self._collection(table).document(str(id))
        try:
            snapshot = ref.get(timeout=self.timeout_sec)
        except Exception as e:
            self._raise_classified(e)
        if not snapshot.exists:
            raise RecordNotFound(f"No document {id} in {table}")
        return ref, snapshot

    def read(self, table: str, id: Any) -> Record:
        _, snapshot = self._existing(table, id)
        return self._out(snapshot)

    def create(self, table: str, record: Record, id: Optional[Any] = None) -> Record:
        coll = self._collection(table)
        data = {k: v for k, v in record.items() if k != "id"}
        self.check_columns(data)
        key = id if id is not None else record.get("id")
        try:
            if key is not None:
                ref = coll.document(str(key))
                ref.create(data, timeout=self.timeout_sec)
            else:
                _, ref = coll.add(data, timeout=self.timeout_sec)
        except Exception as e:
            self._raise_classified(e)
        return {**data, "id": ref.id}

    def update(self, table: str, id: Any, record: Record) -> Record:
        ref, snapshot = self._existing(table, id)
        values = {k: v for k, v in record.items() if k != "id"}
        self.check_columns(values)
        if values:
            try:
                ref.update(values, timeout=self.timeout_sec)
            except Exception as e:
                self._raise_classified(e)
        return {**_plain(snapshot.to_dict() or {}), **values, "id": ref.id}

    def delete(self, table: str, id: Any) -> Record:
        ref, _ = self._existing(table, id)
        try:
            ref.delete(timeout=self.timeout_sec)
        except Exception as e:
            self._raise_classified(e)
        return {"success": True, "id": ref.id}

    def _classify(self, exc: Exception) -> AdapterError:
        if isinstance(exc, (google_errors.AlreadyExists, google_errors.Conflict)):
            return ConstraintViolation("Document already exists")
        if isinstance(exc, google_errors.NotFound):
            return RecordNotFound("Document not found")
        if isinstance(exc, google_errors.InvalidArgument):
            return ConstraintViolation("Document rejected by the store")
        if isinstance(exc, google_errors.DeadlineExceeded):
            return OperationTimeout("Document store request timed out")
        if isinstance(exc, (google_errors.PermissionDenied, google_errors.Unauthenticated)):
            return ConnectionFailed("Access denied", kind=ConnectionFailureKind.AUTH)
        if isinstance(exc, google_auth_errors.GoogleAuthError):
            return ConnectionFailed("Credentials rejected", kind=ConnectionFailureKind.AUTH)
        if isinstance(exc, google_errors.ServiceUnavailable):
            return ConnectionFailed("Document store unavailable", kind=classify_connection_message(str(exc)))
        return super()._classify(exc)
