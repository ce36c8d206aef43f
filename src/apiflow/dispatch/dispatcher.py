from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic_core import to_jsonable_python

from apiflow.adapter_sdk import AdapterError, InvalidIdentifier, Record, validate_identifier
from apiflow.analytics.models import AnalyticsEvent
from apiflow.auth.api_keys import extract_api_key
from apiflow.auth.session import bearer_token
from apiflow.cache.keys import build_cache_key, path_prefix
from apiflow.common.errors import DispatchError, ErrorCode, from_adapter_error
from apiflow.common.logger import current_request_id, get_logger, request_context
from apiflow.common.security import key_prefix
from apiflow.endpoints.filters import apply_filters, matches
from apiflow.endpoints.models import Endpoint, Visibility, normalize_path

from .models import DispatchRequest, DispatchResult, DispatchState

if TYPE_CHECKING:
    from apiflow.analytics.dispatcher import AnalyticsDispatcher
    from apiflow.auth.api_keys import StoreApiKeyVerifier
    from apiflow.auth.session import SessionTokenVerifier
    from apiflow.cache.backends import CacheBackend
    from apiflow.datasources.config import ConnectionConfigResolver
    from apiflow.datasources.registry import AdapterRegistry
    from apiflow.endpoints.resolver import EndpointResolver
    from apiflow.quota.enforcer import QuotaEnforcer

logger = get_logger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def to_json_native(data: Any) -> Any:
    """Driver values (datetime, Decimal, UUID, bytes, ObjectId) as JSON types.

    Bytes become base64 text; types pydantic does not know fall back to str().
    """
    return to_jsonable_python(data, bytes_mode="base64", fallback=str)


class _Run:
    """Mutable bookkeeping for one dispatch."""

    def __init__(self, request: DispatchRequest):
        self.request = request
        self.method = request.method.upper()
        self.path = normalize_path(request.path)
        self.visibility = Visibility(request.visibility)
        self.started = time.perf_counter()
        self.states: List[DispatchState] = [DispatchState.RECEIVED]
        self.caller_id: Optional[str] = None
        self.api_key: Optional[str] = None
        self.cache_key: Optional[str] = None
        self.cache_checked = False

    def enter(self, state: DispatchState) -> None:
        self.states.append(state)

    @property
    def latency_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000, 2)


class RequestDispatcher:
    """
    Resolves and executes one inbound request against its endpoint's database.

    The public surface authenticates with API keys, the protected surface with
    session tokens; everything after authentication is shared. Collaborators
    are injected so tests can substitute fakes for any of them.
    """

    def __init__(
        self,
        endpoint_resolver: "EndpointResolver",
        connection_resolver: "ConnectionConfigResolver",
        registry: "AdapterRegistry",
        cache: "CacheBackend",
        quota: "QuotaEnforcer",
        session_verifier: "SessionTokenVerifier",
        api_key_verifier: "StoreApiKeyVerifier",
        analytics: Optional["AnalyticsDispatcher"] = None,
        cache_ttl_seconds: int = 60,
        public_cache_before_auth: bool = True,
    ):
        self.endpoint_resolver = endpoint_resolver
        self.connection_resolver = connection_resolver
        self.registry = registry
        self.cache = cache
        self.quota = quota
        self.session_verifier = session_verifier
        self.api_key_verifier = api_key_verifier
        self.analytics = analytics
        self.cache_ttl_seconds = cache_ttl_seconds
        self.public_cache_before_auth = public_cache_before_auth

    def dispatch(self, request: DispatchRequest) -> DispatchResult:
        """Runs the request through the dispatch states and never raises.

        Returns:
            DispatchResult: The HTTP status and JSON body to send.
        """
        with request_context(request.request_id or uuid.uuid4().hex):
            run = _Run(request)
            try:
                result = self._run(run)
            except DispatchError as e:
                result = self._failure(run, e)
            except AdapterError as e:
                result = self._failure(run, from_adapter_error(e))
            except Exception as e:
                logger.exception(f"Unhandled error dispatching {run.method} {run.path}: {e}")
                result = self._failure(run, DispatchError(ErrorCode.INTERNAL_ERROR, str(e)))

            self._log(run, result)
            if result.success:
                run.enter(DispatchState.RESPONDING)
            result.caller_id = run.caller_id
            result.states = run.states
            return result

    def _run(self, run: _Run) -> DispatchResult:
        if run.method not in SUPPORTED_METHODS:
            raise DispatchError(ErrorCode.METHOD_NOT_SUPPORTED, f"Method {run.method} is not supported")

        if run.visibility == Visibility.PUBLIC:
            run.api_key = extract_api_key(run.request.query, run.request.authorization)
            if not run.api_key:
                raise DispatchError(ErrorCode.UNAUTHENTICATED, "API key required")
            if run.method == "GET" and self.public_cache_before_auth:
                hit = self._cache_lookup(run)
                if hit is not None:
                    return hit

        self._authenticate(run)
        if run.request.body_error:
            raise DispatchError(ErrorCode.INVALID_REQUEST, run.request.body_error)

        run.enter(DispatchState.QUOTA_CHECK)
        self.quota.charge(run.caller_id)

        if run.method == "GET" and not run.cache_checked:
            hit = self._cache_lookup(run)
            if hit is not None:
                return hit

        run.enter(DispatchState.RESOLVING_ENDPOINT)
        endpoint = self.endpoint_resolver.resolve(run.path, run.method, run.caller_id, run.visibility)
        if endpoint is None:
            raise DispatchError(ErrorCode.NOT_FOUND, f"No endpoint configured for {run.method} {run.path}")
        try:
            table = validate_identifier(endpoint.table_name, "table")
        except InvalidIdentifier as e:
            raise DispatchError(ErrorCode.INVALID_REQUEST, e.detail)

        run.enter(DispatchState.AUTHORIZING_OWNERSHIP)
        requester = endpoint.owner_id or run.caller_id
        config = self.connection_resolver.resolve(endpoint.connection_id, requester)

        run.enter(DispatchState.ACQUIRING_ADAPTER)
        # Credentials are read again if the adapter has to be built.
        def current_config():
            return self.connection_resolver.resolve(endpoint.connection_id, requester)

        with self.registry.lease(config.id, current_config) as adapter:
            run.enter(DispatchState.EXECUTING)
            data = self._execute(run, adapter, endpoint, table)
        data = to_json_native(data)

        if run.method == "GET":
            run.enter(DispatchState.CACHE_WRITE)
            self._cache_write(run, data)
        else:
            self._invalidate(endpoint.path)

        body: Dict[str, Any] = {"success": True, "data": data}
        if run.method == "GET":
            body["cached"] = False
        return DispatchResult(status=201 if run.method == "POST" else 200, body=body)

    def _authenticate(self, run: _Run) -> None:
        run.enter(DispatchState.AUTHENTICATING)
        if run.visibility == Visibility.PUBLIC:
            verification = self.api_key_verifier.verify(run.api_key)
            if not verification.valid or not verification.caller_id:
                raise DispatchError(
                    ErrorCode.UNAUTHENTICATED,
                    f"Invalid API key ({verification.reason or 'unknown'})",
                )
            run.caller_id = verification.caller_id
        else:
            identity = self.session_verifier.verify(bearer_token(run.request.authorization))
            run.caller_id = identity.caller_id

    def _cache_lookup(self, run: _Run) -> Optional[DispatchResult]:
        run.enter(DispatchState.CACHE_LOOKUP)
        run.cache_checked = True
        run.cache_key = build_cache_key(run.path, run.request.query, run.visibility, run.caller_id)
        try:
            cached = self.cache.get(run.cache_key)
        except Exception as e:
            logger.warning(f"Cache lookup failed for {run.path}: {e}")
            return None
        if cached is None:
            return None
        return DispatchResult(status=200, body={"success": True, "data": cached, "cached": True}, cached=True)

    def _cache_write(self, run: _Run, data: Any) -> None:
        key = run.cache_key or build_cache_key(run.path, run.request.query, run.visibility, run.caller_id)
        try:
            self.cache.set(key, data, ttl_seconds=self.cache_ttl_seconds)
        except Exception as e:
            logger.warning(f"Cache write failed for {run.path}: {e}")

    def _invalidate(self, path: str) -> None:
        try:
            removed = self.cache.invalidate_prefix(path_prefix(path))
            logger.debug(f"Invalidated {removed} cache entries for {path}")
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {path}: {e}")

    def _execute(self, run: _Run, adapter, endpoint: Endpoint, table: str) -> Any:
        query = run.request.query
        if run.method == "GET":
            if query.get("id"):
                record = adapter.read(table, query["id"])
                run.enter(DispatchState.POST_FILTERING)
                if not matches(record, endpoint.filters):
                    raise DispatchError(ErrorCode.NOT_FOUND, "Record not found")
                return record
            records = adapter.list_documents(table, self._parse_limit(query.get("limit")))
            run.enter(DispatchState.POST_FILTERING)
            return apply_filters(records, endpoint.filters)

        body = self._body(run)
        if run.method == "POST":
            fields = {k: v for k, v in body.items() if k != "id"}
            return adapter.create(table, fields, id=body.get("id"))

        record_id = query.get("id") or body.get("id")
        if record_id in (None, ""):
            raise DispatchError(ErrorCode.INVALID_REQUEST, "Missing record id")
        if run.method == "DELETE":
            return adapter.delete(table, record_id)

        fields = {k: v for k, v in body.items() if k != "id"}
        if not fields:
            raise DispatchError(ErrorCode.INVALID_REQUEST, "No fields to update")
        return adapter.update(table, record_id, fields)

    @staticmethod
    def _body(run: _Run) -> Record:
        body = run.request.body
        if body is None and run.method == "DELETE":
            return {}
        if not isinstance(body, dict):
            raise DispatchError(ErrorCode.INVALID_REQUEST, "Request body must be a JSON object")
        return body

    @staticmethod
    def _parse_limit(raw: Optional[str]) -> Optional[int]:
        if raw in (None, ""):
            return None
        try:
            limit = int(raw)
        except (TypeError, ValueError):
            raise DispatchError(ErrorCode.INVALID_REQUEST, "limit must be an integer")
        if limit < 1:
            raise DispatchError(ErrorCode.INVALID_REQUEST, "limit must be positive")
        return limit

    @staticmethod
    def _failure(run: _Run, error: DispatchError) -> DispatchResult:
        run.enter(DispatchState.ERROR)
        if error.status_code >= 500:
            logger.error(f"{run.method} {run.path} failed: {error.code.value}: {error.message}")
        return DispatchResult(
            status=error.status_code,
            body={"success": False, "error": error.get_safe_message(), "code": error.code.value},
        )

    def _log(self, run: _Run, result: DispatchResult) -> None:
        """Best-effort request logging. Failures never alter ``result``."""
        if result.success:
            run.enter(DispatchState.LOGGING)
        try:
            logger.info(
                f"{run.method} {run.path} -> {result.status} "
                f"({run.latency_ms}ms, cached={result.cached})"
            )
            if self.analytics is None:
                return
            self.analytics.record(
                AnalyticsEvent(
                    endpoint=run.path,
                    method=run.method,
                    status=result.status,
                    latency_ms=run.latency_ms,
                    caller_id=run.caller_id,
                    source=run.visibility.value,
                    api_key_prefix=key_prefix(run.api_key) if run.api_key else None,
                    cached=result.cached,
                    error=None if result.success else result.body.get("error"),
                    request_id=current_request_id(),
                )
            )
        except Exception as e:
            logger.warning(f"Request logging failed: {e}")
