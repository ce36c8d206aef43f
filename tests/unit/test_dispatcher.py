from datetime import datetime
from decimal import Decimal
from uuid import UUID
from unittest.mock import MagicMock

import pytest

from apiflow.adapter_sdk import ConnectionConfig, ConnectionFailed
from apiflow.auth import SessionTokenVerifier, StoreApiKeyVerifier
from apiflow.common.security import hash_api_key
from apiflow.datasources import AdapterRegistry, ConnectionConfigResolver
from apiflow.dispatch import DispatchRequest, DispatchState, RequestDispatcher
from apiflow.dispatch.dispatcher import to_json_native
from apiflow.endpoints import EndpointFilter, Visibility
from apiflow.endpoints.resolver import EndpointResolver
from apiflow.quota import QuotaEnforcer, limit_for
from apiflow.store import ApiKeyRecord

from ..conftest import API_KEY, SESSION_SECRET


def public(method="GET", path="/users", query=None, body=None, key=API_KEY):
    query = dict(query or {})
    if key is not None:
        query["key"] = key
    return DispatchRequest(method=method, path=path, visibility=Visibility.PUBLIC, query=query, body=body)


def protected(token, method="GET", path="/orders", query=None, body=None):
    return DispatchRequest(
        method=method,
        path=path,
        visibility=Visibility.PROTECTED,
        query=dict(query or {}),
        body=body,
        authorization=f"Bearer {token}" if token else None,
    )


def test_public_get_is_cached_on_second_request(dispatcher, make_endpoint):
    # Arrange
    make_endpoint()

    # Act
    first = dispatcher.dispatch(public())
    second = dispatcher.dispatch(public())

    # Assert
    assert first.status == 200
    assert first.body == {"success": True, "data": [], "cached": False}
    assert second.body == {"success": True, "data": [], "cached": True}
    assert second.cached is True


def test_requests_differing_only_by_api_key_share_cache_entry(dispatcher, store, make_endpoint, adapters):
    # Arrange
    make_endpoint()
    other_key = "ak_live_other_key_9999"
    store.save_api_key(ApiKeyRecord(key_hash=hash_api_key(other_key), owner_id="u3", name="other", prefix="ak_live_"))
    dispatcher.dispatch(public(key=API_KEY))

    # Act
    result = dispatcher.dispatch(public(key=other_key))

    # Assert
    assert result.body["cached"] is True
    assert adapters[0].calls.count("list:users") == 1


def test_post_invalidates_cache_so_next_get_is_a_miss(dispatcher, make_endpoint):
    # Arrange
    make_endpoint("e-get")
    make_endpoint("e-post", method="POST")
    dispatcher.dispatch(public())

    # Act
    created = dispatcher.dispatch(public(method="POST", body={"name": "A"}))
    listed = dispatcher.dispatch(public())

    # Assert
    assert created.status == 201
    assert created.body == {"success": True, "data": {"id": 1, "name": "A"}}
    assert listed.body["cached"] is False
    assert listed.body["data"] == [{"id": 1, "name": "A"}]


def test_protected_endpoint_owned_by_another_user_is_forbidden(dispatcher, make_endpoint, session_token, adapters):
    # Arrange
    make_endpoint("orders", path="/orders", table_name="orders", is_public=False, owner_id="u1")

    # Act
    result = dispatcher.dispatch(protected(session_token("u2")))

    # Assert
    assert result.status == 403
    assert result.body["success"] is False
    assert result.body["code"] == "FORBIDDEN"
    assert adapters == []


def test_protected_endpoint_served_to_its_owner(dispatcher, make_endpoint, session_token, fake_tables):
    # Arrange
    fake_tables["orders"] = [{"id": 7, "total": 12}]
    make_endpoint("orders", path="/orders", table_name="orders", is_public=False, owner_id="u1")

    # Act
    result = dispatcher.dispatch(protected(session_token("u1")))

    # Assert
    assert result.status == 200
    assert result.body["data"] == [{"id": 7, "total": 12}]
    assert result.caller_id == "u1"


def test_public_endpoint_is_not_resolvable_on_protected_surface(dispatcher, make_endpoint, session_token):
    # Arrange
    make_endpoint(path="/orders", table_name="orders", is_public=True)

    # Act
    result = dispatcher.dispatch(protected(session_token("u1")))

    # Assert
    assert result.status == 404


def test_quota_allows_last_request_then_rejects_without_overshoot(dispatcher, make_endpoint, usage):
    # Arrange
    make_endpoint()
    limit = limit_for(None)
    usage.set_usage("u2", limit - 1)

    # Act
    allowed = dispatcher.dispatch(public(query={"limit": "5"}))
    rejected = dispatcher.dispatch(public(query={"limit": "6"}))

    # Assert
    assert allowed.status == 200
    assert rejected.status == 429
    assert rejected.body["code"] == "QUOTA_EXCEEDED"
    assert usage.get_usage("u2") == limit


@pytest.mark.parametrize("table_name", ["users;DROP TABLE users", "users name", "users'", 'users"'])
def test_unsafe_table_name_rejected_before_adapter_is_acquired(dispatcher, make_endpoint, adapters, table_name):
    # Arrange
    make_endpoint(table_name=table_name)

    # Act
    result = dispatcher.dispatch(public())

    # Assert
    assert result.status == 400
    assert result.body["code"] == "INVALID_REQUEST"
    assert adapters == []


def test_delete_of_missing_record_is_not_found_every_time(dispatcher, make_endpoint, fake_tables):
    # Arrange
    fake_tables["users"] = [{"id": 1, "name": "A"}]
    make_endpoint(method="DELETE")

    # Act
    first = dispatcher.dispatch(public(method="DELETE", query={"id": "1"}))
    second = dispatcher.dispatch(public(method="DELETE", query={"id": "1"}))
    third = dispatcher.dispatch(public(method="DELETE", body={"id": 1}))

    # Assert
    assert first.status == 200
    assert first.body["data"] == {"success": True, "id": "1"}
    assert second.status == 404
    assert third.status == 404
    assert second.body == third.body


def test_missing_api_key_is_rejected_before_cache(dispatcher, make_endpoint, cache):
    # Arrange
    make_endpoint()
    dispatcher.dispatch(public())

    # Act
    result = dispatcher.dispatch(public(key=None))

    # Assert
    assert result.status == 401
    assert result.body["code"] == "UNAUTHENTICATED"


def test_unknown_api_key_is_rejected_on_cache_miss(dispatcher, make_endpoint, adapters):
    # Arrange
    make_endpoint()

    # Act
    result = dispatcher.dispatch(public(key="not-a-key"))

    # Assert
    assert result.status == 401
    assert adapters == []


def test_revoked_api_key_is_rejected(dispatcher, store, make_endpoint):
    # Arrange
    make_endpoint()
    store.save_api_key(
        ApiKeyRecord(key_hash=hash_api_key(API_KEY), owner_id="u2", name="default", prefix=API_KEY[:8], revoked=True)
    )

    # Act
    result = dispatcher.dispatch(public())

    # Assert
    assert result.status == 401
    assert "revoked" in result.body["error"]


def test_protected_request_without_token_is_unauthenticated(dispatcher, make_endpoint):
    # Arrange
    make_endpoint(path="/orders", is_public=False)

    # Act
    result = dispatcher.dispatch(protected(None))

    # Assert
    assert result.status == 401
    assert result.body["error"] == "Authentication required"


def test_unsupported_method_returns_405(dispatcher):
    # Act
    result = dispatcher.dispatch(public(method="HEAD"))

    # Assert
    assert result.status == 405
    assert result.body["code"] == "METHOD_NOT_SUPPORTED"


def test_unknown_path_returns_404(dispatcher):
    # Act
    result = dispatcher.dispatch(public(path="/nothing-here"))

    # Assert
    assert result.status == 404
    assert "GET /nothing-here" in result.body["error"]


def test_filters_are_applied_to_listed_records(dispatcher, make_endpoint, fake_tables):
    # Arrange
    fake_tables["users"] = [
        {"id": 1, "name": "Ada", "age": 36},
        {"id": 2, "name": "Linus", "age": 28},
        {"id": 3, "name": "Grace", "age": 45},
    ]
    make_endpoint(
        filters=[
            EndpointFilter(field="age", operator="greater_than", value=30),
            EndpointFilter(field="name", operator="not_equals", value="Grace"),
        ]
    )

    # Act
    result = dispatcher.dispatch(public())

    # Assert
    assert result.body["data"] == [{"id": 1, "name": "Ada", "age": 36}]


def test_get_by_id_outside_filters_is_not_found(dispatcher, make_endpoint, fake_tables):
    # Arrange
    fake_tables["users"] = [{"id": 2, "name": "Linus", "age": 28}]
    make_endpoint(filters=[EndpointFilter(field="age", operator="greater_than", value=30)])

    # Act
    result = dispatcher.dispatch(public(query={"id": "2"}))

    # Assert
    assert result.status == 404


def test_patch_updates_record_and_put_requires_id(dispatcher, make_endpoint, fake_tables):
    # Arrange
    fake_tables["users"] = [{"id": 1, "name": "A"}]
    make_endpoint("e-patch", method="PATCH")
    make_endpoint("e-put", method="PUT")

    # Act
    patched = dispatcher.dispatch(public(method="PATCH", query={"id": "1"}, body={"name": "B"}))
    missing_id = dispatcher.dispatch(public(method="PUT", body={"name": "C"}))

    # Assert
    assert patched.status == 200
    assert patched.body["data"] == {"id": 1, "name": "B"}
    assert "cached" not in patched.body
    assert missing_id.status == 400


def test_post_with_non_object_body_is_invalid(dispatcher, make_endpoint):
    # Arrange
    make_endpoint(method="POST")

    # Act
    result = dispatcher.dispatch(public(method="POST", body=["not", "an", "object"]))

    # Assert
    assert result.status == 400


def test_non_integer_limit_is_invalid(dispatcher, make_endpoint):
    # Arrange
    make_endpoint()

    # Act
    result = dispatcher.dispatch(public(query={"limit": "ten"}))

    # Assert
    assert result.status == 400
    assert result.body["error"] == "limit must be an integer"


def test_disabled_connection_is_not_found(dispatcher, store, make_endpoint, adapters):
    # Arrange
    store.save_connection(ConnectionConfig(id="c1", engine="postgres", owner_id="u1", status="disabled"))
    make_endpoint()

    # Act
    result = dispatcher.dispatch(public())

    # Assert
    assert result.status == 404
    assert adapters == []


def test_connection_failure_is_opaque_upstream_error_and_skips_invalidation(store, usage, make_endpoint):
    # Arrange
    make_endpoint(method="POST")
    cache = MagicMock()
    cache.get.return_value = None

    def failing_factory(config, statement_timeout_ms=None):
        adapter = MagicMock()
        adapter.connect.side_effect = ConnectionFailed("could not connect to host db with password pw")
        return adapter

    dispatcher = RequestDispatcher(
        endpoint_resolver=EndpointResolver(store),
        connection_resolver=ConnectionConfigResolver(store),
        registry=AdapterRegistry(adapter_factory=failing_factory),
        cache=cache,
        quota=QuotaEnforcer(usage, store.get_plan),
        session_verifier=SessionTokenVerifier(SESSION_SECRET),
        api_key_verifier=StoreApiKeyVerifier(store),
    )

    # Act
    result = dispatcher.dispatch(public(method="POST", body={"name": "A"}))

    # Assert
    assert result.status == 502
    assert "pw" not in result.body["error"]
    cache.invalidate_prefix.assert_not_called()


def test_cache_and_analytics_failures_never_change_response(dispatcher, make_endpoint, analytics):
    # Arrange
    make_endpoint()
    dispatcher.cache = MagicMock()
    dispatcher.cache.get.side_effect = ConnectionError("cache down")
    dispatcher.cache.set.side_effect = ConnectionError("cache down")
    analytics.record.side_effect = RuntimeError("sink down")

    # Act
    result = dispatcher.dispatch(public())

    # Assert
    assert result.status == 200
    assert result.body == {"success": True, "data": [], "cached": False}


def test_analytics_event_records_request(dispatcher, make_endpoint, analytics):
    # Arrange
    make_endpoint()

    # Act
    dispatcher.dispatch(public())

    # Assert
    event = analytics.record.call_args.args[0]
    assert event.endpoint == "/users"
    assert event.status == 200
    assert event.source == "public"
    assert event.caller_id == "u2"
    assert event.api_key_prefix == API_KEY[:8]


def test_state_sequence_for_public_cache_miss(dispatcher, make_endpoint):
    # Arrange
    make_endpoint()

    # Act
    result = dispatcher.dispatch(public())

    # Assert
    assert result.states == [
        DispatchState.RECEIVED,
        DispatchState.CACHE_LOOKUP,
        DispatchState.AUTHENTICATING,
        DispatchState.QUOTA_CHECK,
        DispatchState.RESOLVING_ENDPOINT,
        DispatchState.AUTHORIZING_OWNERSHIP,
        DispatchState.ACQUIRING_ADAPTER,
        DispatchState.EXECUTING,
        DispatchState.POST_FILTERING,
        DispatchState.CACHE_WRITE,
        DispatchState.LOGGING,
        DispatchState.RESPONDING,
    ]


def test_protected_surface_authenticates_before_cache_lookup(dispatcher, make_endpoint, session_token):
    # Arrange
    make_endpoint(path="/orders", table_name="orders", is_public=False)

    # Act
    result = dispatcher.dispatch(protected(session_token("u1")))

    # Assert
    assert result.states[:4] == [
        DispatchState.RECEIVED,
        DispatchState.AUTHENTICATING,
        DispatchState.QUOTA_CHECK,
        DispatchState.CACHE_LOOKUP,
    ]


def test_public_cache_hit_before_auth_is_not_billed(dispatcher, make_endpoint, usage):
    # Arrange
    make_endpoint()
    dispatcher.dispatch(public())

    # Act
    dispatcher.dispatch(public())

    # Assert
    assert usage.get_usage("u2") == 1


def test_driver_values_are_served_and_cached_as_json_types(dispatcher, make_endpoint, fake_tables):
    # Arrange
    fake_tables["users"] = [
        {
            "id": 1,
            "joined": datetime(2024, 1, 1, 9, 30),
            "balance": Decimal("12.50"),
            "token": UUID("12345678-1234-5678-1234-567812345678"),
            "avatar": b"\x00\x01\x02binary",
        }
    ]
    make_endpoint()

    # Act
    first = dispatcher.dispatch(public())
    second = dispatcher.dispatch(public())

    # Assert
    expected = [
        {
            "id": 1,
            "joined": "2024-01-01T09:30:00",
            "balance": "12.50",
            "token": "12345678-1234-5678-1234-567812345678",
            "avatar": "AAECYmluYXJ5",
        }
    ]
    assert first.status == 200
    assert first.body["data"] == expected
    assert second.body["cached"] is True
    assert second.body["data"] == expected


def test_unknown_driver_type_falls_back_to_text():
    # Arrange
    class ObjectId:
        def __str__(self):
            return "65a1f0c2e4b0a1b2c3d4e5f6"

    # Act
    data = to_json_native({"_id": ObjectId(), "tags": ("a", "b")})

    # Assert
    assert data == {"_id": "65a1f0c2e4b0a1b2c3d4e5f6", "tags": ["a", "b"]}


def test_unparseable_body_is_rejected_after_authentication(dispatcher, make_endpoint, analytics, usage, adapters):
    # Arrange
    make_endpoint(method="POST")
    request = public(method="POST")
    request.body_error = "Request body must be valid JSON"

    # Act
    result = dispatcher.dispatch(request)

    # Assert
    assert result.status == 400
    assert result.body["code"] == "INVALID_REQUEST"
    assert usage.get_usage("u2") == 0
    assert adapters == []
    event = analytics.record.call_args.args[0]
    assert event.status == 400
    assert event.caller_id == "u2"


def test_unparseable_body_without_credentials_is_unauthenticated(dispatcher, make_endpoint, analytics):
    # Arrange
    make_endpoint(method="POST")
    request = public(method="POST", key=None)
    request.body_error = "Request body must be valid JSON"

    # Act
    result = dispatcher.dispatch(request)

    # Assert
    assert result.status == 401
    assert analytics.record.called
