import json
import uuid
from typing import Any, List, Optional

import redis
from redis import exceptions as redis_errors

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
    UnsupportedOperation,
)
from apiflow.adapter_sdk.errors import classify_connection_message
from apiflow.common.logger import get_logger

logger = get_logger(__name__)

DEFAULT_COLLECTION = "default"


class RedisAdapter(Adapter):
    """Key-value store where ``collection:id`` keys hold JSON documents.

    Keys without a prefix belong to the ``default`` collection. Hashes are
    read as records; lists, sets and sorted sets come back under ``value``.
    """

    engine_type = "redis"
    scan_count = 500
    max_update_retries = 5

    def __init__(self, config: ConnectionConfig, statement_timeout_ms: Optional[int] = None):
        super().__init__(config)
        self.timeout_sec = (statement_timeout_ms or 15000) / 1000
        self.client: Optional[redis.Redis] = None

    def connect(self) -> "RedisAdapter":
        if self.client is not None:
            return self
        cfg = self.config
        common = {
            "decode_responses": True,
            "socket_timeout": self.timeout_sec,
            "socket_connect_timeout": 10,
        }
        try:
            if cfg.connection_uri:
                self.client = redis.from_url(cfg.secret("connection_uri"), **common)
            else:
                self.client = redis.Redis(
                    host=cfg.host,
                    port=cfg.port,
                    username=cfg.user,
                    password=cfg.secret("password"),
                    db=int(cfg.database or 0),
                    ssl=cfg.ssl,
                    **common,
                )
            self.client.ping()
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

    def _redis(self) -> redis.Redis:
        if self.client is None:
            raise ConnectionFailed(f"Not connected to {self}")
        self.touch()
        return self.client

    @staticmethod
    def _key(collection: str, id: Any) -> str:
        return str(id) if collection == DEFAULT_COLLECTION else f"{collection}:{id}"

    @staticmethod
    def _decode(id: str, raw: str) -> Record:
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {"id": id, "value": raw}
        if isinstance(parsed, dict):
            return {**parsed, "id": id}
        return {"id": id, "value": parsed}

    @staticmethod
    def _field(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        if isinstance(value, bool) or value is None:
            return json.dumps(value)
        return value

    def _load(self, client: redis.Redis, key: str, id: str) -> Optional[Record]:
        kind = client.type(key)
        if kind == "none":
            return None
        if kind == "string":
            raw = client.get(key)
            return None if raw is None else self._decode(id, raw)
        if kind == "hash":
            return {**client.hgetall(key), "id": id}
        if kind == "list":
            return {"id": id, "value": client.lrange(key, 0, -1)}
        if kind == "set":
            return {"id": id, "value": sorted(client.smembers(key))}
        if kind == "zset":
            members = client.zrange(key, 0, -1, withscores=True)
            return {"id": id, "value": [{"member": m, "score": s} for m, s in members]}
        return {"id": id, "type": kind}

    def list_tables(self) -> List[str]:
        client = self._redis()
        collections = set()
        try:
            for key in client.scan_iter(count=self.scan_count):
                prefix, sep, _ = key.partition(":")
                collections.add(prefix if sep and prefix else DEFAULT_COLLECTION)
        except Exception as e:
            self._raise_classified(e)
        return sorted(collections)

    def list_documents(self, table: str, limit: Optional[int] = None) -> List[Record]:
        self.check_table(table)
        client = self._redis()
        limit = self.clamp_limit(limit)
        pattern = "*" if table == DEFAULT_COLLECTION else f"{table}:*"
        offset = 0 if table == DEFAULT_COLLECTION else len(table) + 1
        records: List[Record] = []
        try:
            for key in client.scan_iter(match=pattern, count=self.scan_count):
                record = self._load(client, key, key[offset:])
                if record is None:
                    continue
                records.append(record)
                if len(records) >= limit:
                    break
        except Exception as e:
            self._raise_classified(e)
        return records

    def read(self, table: str, id: Any) -> Record:
        self.check_table(table)
        client = self._redis()
        try:
            record = self._load(client, self._key(table, id), str(id))
        except Exception as e:
            self._raise_classified(e)
        if record is None:
            raise RecordNotFound(f"No key {id} in {table}")
        return record

    def create(self, table: str, record: Record, id: Optional[Any] = None) -> Record:
        self.check_table(table)
        client = self._redis()
        doc = {k: v for k, v in record.items() if k != "id"}
        key_id = str(id if id is not None else record.get("id") or uuid.uuid4().hex)
        try:
            stored = client.set(self._key(table, key_id), json.dumps(doc, default=str), nx=True)
        except Exception as e:
            self._raise_classified(e)
        if not stored:
            raise ConstraintViolation(f"Key {key_id} already exists in {table}")
        return {**doc, "id": key_id}

    def update(self, table: str, id: Any, record: Record) -> Record:
        self.check_table(table)
        client = self._redis()
        key = self._key(table, id)
        changes = {k: v for k, v in record.items() if k != "id"}
        try:
            kind = client.type(key)
            if kind == "none":
                raise RecordNotFound(f"No key {id} in {table}")
            if kind == "hash":
                if changes:
                    client.hset(key, mapping={k: self._field(v) for k, v in changes.items()})
                return {**client.hgetall(key), "id": str(id)}
            if kind != "string":
                raise UnsupportedOperation(f"Cannot update a Redis {kind} as a record")
            return self._merge_string(client, key, str(id), changes)
        except AdapterError:
            raise
        except Exception as e:
            self._raise_classified(e)

    def _merge_string(self, client: redis.Redis, key: str, id: str, changes: Record) -> Record:
        for _ in range(self.max_update_retries):
            with client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        raise RecordNotFound(f"No key {id}")
                    current = self._decode(id, raw)
                    current.pop("id", None)
                    current.update(changes)
                    pipe.multi()
                    pipe.set(key, json.dumps(current, default=str), xx=True)
                    pipe.execute()
                    return {**current, "id": id}
                except redis_errors.WatchError:
                    continue
        raise OperationTimeout(f"Key {id} kept changing during update")

    def delete(self, table: str, id: Any) -> Record:
        self.check_table(table)
        client = self._redis()
        try:
            deleted = client.delete(self._key(table, id))
        except Exception as e:
            self._raise_classified(e)
        if deleted == 0:
            raise RecordNotFound(f"No key {id} in {table}")
        return {"success": True, "id": id}

    def _classify(self, exc: Exception) -> AdapterError:
        if isinstance(exc, redis_errors.AuthenticationError):
            return ConnectionFailed("Authentication failed", kind=ConnectionFailureKind.AUTH)
        if isinstance(exc, redis_errors.TimeoutError):
            return OperationTimeout("Redis command timed out")
        if isinstance(exc, redis_errors.ConnectionError):
            return ConnectionFailed("Redis connection error", kind=classify_connection_message(str(exc)))
        return super()._classify(exc)
