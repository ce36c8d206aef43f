import sqlite3
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.api.container import Container
from apiflow.api.main import create_app
from apiflow.common.security import hash_api_key
from apiflow.common.settings import settings
from apiflow.store import ApiKeyRecord, InMemoryConfigStore

from ..conftest import API_KEY, SESSION_SECRET, add_endpoint, make_session_token

CRON_SECRET = "cron-secret"


@pytest.fixture
def http_store(sqlite_db):
    store = InMemoryConfigStore()
    store.save_connection(ConnectionConfig(id="db", engine="sqlite", owner_id="u1", database=str(sqlite_db)))
    store.save_api_key(ApiKeyRecord(key_hash=hash_api_key(API_KEY), owner_id="u2", prefix=API_KEY[:8]))
    add_endpoint(store, "list-users", connection_id="db")
    add_endpoint(store, "create-users", connection_id="db", method="POST")
    add_endpoint(store, "orders", connection_id="db", path="/orders", is_public=False)
    return store


@pytest.fixture
def client(http_store):
    config = settings.model_copy(
        update={
            "session_token_secret": SESSION_SECRET,
            "cron_secret": CRON_SECRET,
            "redis_url": None,
            "adapter_sweep_interval_sec": 3600,
        }
    )
    container = Container(config=config, store=http_store, analytics=MagicMock())
    with TestClient(create_app(container)) as test_client:
        yield test_client


def auth(caller_id):
    return {"Authorization": f"Bearer {make_session_token(caller_id)}"}


def test_public_list_is_served_then_cached(client):
    # Act
    first = client.get("/public/users", params={"key": API_KEY})
    second = client.get("/public/users", params={"key": API_KEY})

    # Assert
    assert first.status_code == 200
    assert first.json()["cached"] is False
    assert [row["name"] for row in first.json()["data"]] == ["Ada", "Linus"]
    assert second.json()["cached"] is True
    assert second.json()["data"] == first.json()["data"]


def test_public_create_invalidates_cached_list(client):
    # Arrange
    client.get("/public/users", params={"key": API_KEY})

    # Act
    created = client.post(
        "/public/users",
        params={"key": API_KEY},
        json={"name": "Grace", "email": "grace@example.com", "age": 45},
    )
    listed = client.get("/public/users", params={"key": API_KEY})

    # Assert
    assert created.status_code == 201
    assert created.json()["data"]["id"] == 3
    assert listed.json()["cached"] is False
    assert len(listed.json()["data"]) == 3


def test_duplicate_insert_is_conflict(client):
    response = client.post("/public/users", params={"key": API_KEY}, json={"name": "Ada2", "email": "ada@example.com"})
    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"


def test_api_key_in_bearer_header_is_accepted(client):
    response = client.get("/public/users", headers={"Authorization": f"Bearer {API_KEY}"})
    assert response.status_code == 200


@pytest.mark.parametrize("params", [{}, {"key": "ak_wrong"}])
def test_public_surface_requires_valid_key(client, params):
    response = client.get("/public/users", params=params)
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": response.json()["error"], "code": "UNAUTHENTICATED"}


def test_protected_surface_checks_ownership(client):
    # Act
    owner = client.get("/dynamic/orders", headers=auth("u1"))
    stranger = client.get("/dynamic/orders", headers=auth("u2"))
    anonymous = client.get("/dynamic/orders")

    # Assert
    assert owner.status_code == 200
    assert stranger.status_code == 403
    assert anonymous.status_code == 401


def test_protected_endpoint_is_not_reachable_publicly(client):
    response = client.get("/public/orders", params={"key": API_KEY})
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_unsupported_method_is_405(client):
    response = client.options("/public/users", params={"key": API_KEY})
    assert response.status_code == 405


def test_invalid_json_body_is_400(client):
    response = client.post(
        "/public/users",
        params={"key": API_KEY},
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_binary_column_is_served_as_base64(client, http_store, sqlite_db):
    # Arrange
    conn = sqlite3.connect(str(sqlite_db))
    conn.execute("CREATE TABLE files (id INTEGER PRIMARY KEY, body BLOB)")
    conn.execute("INSERT INTO files (body) VALUES (?)", (b"\x00\x01\x02binary",))
    conn.commit()
    conn.close()
    add_endpoint(http_store, "files", connection_id="db", path="/files", table_name="files")

    # Act
    first = client.get("/public/files", params={"key": API_KEY})
    second = client.get("/public/files", params={"key": API_KEY})

    # Assert
    assert first.status_code == 200
    assert first.json()["data"] == [{"id": 1, "body": "AAECYmluYXJ5"}]
    assert second.json()["cached"] is True
    assert second.json()["data"] == first.json()["data"]


def test_invalid_json_body_without_key_is_401(client):
    response = client.post(
        "/public/users",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


def test_request_id_is_echoed(client):
    response = client.get("/api/health", headers={"x-request-id": "req-123"})
    assert response.status_code == 200
    assert response.headers["x-request-id"] == "req-123"


def test_readiness_reports_live_adapters(client):
    client.get("/public/users", params={"key": API_KEY})
    response = client.get("/api/ready")
    assert response.json()["data"] == {"live_adapters": 1}


def test_visibility_toggle_moves_endpoint_between_surfaces(client):
    # Act
    denied = client.post("/api/endpoints/list-users/visibility", json={"is_public": False}, headers=auth("u2"))
    moved = client.post("/api/endpoints/list-users/visibility", json={"is_public": False}, headers=auth("u1"))
    public = client.get("/public/users", params={"key": API_KEY})
    protected = client.get("/dynamic/users", headers=auth("u1"))

    # Assert
    assert denied.status_code == 403
    assert moved.status_code == 200
    assert moved.json()["data"]["is_public"] is False
    assert public.status_code == 404
    assert protected.status_code == 200


def test_visibility_request_is_validated(client):
    response = client.post("/api/endpoints/list-users/visibility", json={}, headers=auth("u1"))
    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_FAILED"


def test_deleting_connection_stops_serving_it(client):
    # Arrange
    client.get("/public/users", params={"key": API_KEY})

    # Act
    denied = client.delete("/api/connections/db", headers=auth("u2"))
    deleted = client.delete("/api/connections/db", headers=auth("u1"))
    after = client.get("/public/users", params={"key": API_KEY, "limit": "1"})

    # Assert
    assert denied.status_code == 403
    assert deleted.status_code == 200
    assert after.status_code == 404
    assert client.get("/api/ready").json()["data"] == {"live_adapters": 0}


def test_cron_reset_requires_secret(client):
    # Arrange
    client.get("/public/users", params={"key": API_KEY})

    # Act
    rejected = client.get("/api/cron/reset-usage")
    reset = client.get("/api/cron/reset-usage", headers={"Authorization": f"Bearer {CRON_SECRET}"})

    # Assert
    assert rejected.status_code == 401
    assert reset.status_code == 200
    assert reset.json()["data"] == {"reset": 1}


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_api_key_lifecycle_over_management_routes(client):
    # Act
    created = client.post("/api/api-keys", json={"name": "ci"}, headers=auth("u1"))
    key = created.json()["data"]["key"]
    key_id = created.json()["data"]["id"]
    served = client.get("/public/users", params={"key": key})
    listed = client.get("/api/api-keys", headers=auth("u1"))
    revoked = client.delete(f"/api/api-keys/{key_id}", headers=auth("u1"))
    rejected = client.get("/public/users", params={"key": key})

    # Assert
    assert created.status_code == 201
    assert key.startswith("ak_live_")
    assert "key_hash" not in created.json()["data"]
    assert served.status_code == 200
    assert [k["id"] for k in listed.json()["data"]] == [key_id]
    assert all("key" not in k and "key_hash" not in k for k in listed.json()["data"])
    assert revoked.status_code == 200
    assert revoked.json()["data"]["revoked"] is True
    assert rejected.status_code == 401
    assert client.get("/api/api-keys", headers=auth("u1")).json()["data"] == []


def test_api_key_routes_require_session_and_ownership(client):
    # Arrange
    key_id = hash_api_key(API_KEY)[:16]

    # Act
    anonymous = client.get("/api/api-keys")
    foreign = client.delete(f"/api/api-keys/{key_id}", headers=auth("u1"))
    unnamed = client.post("/api/api-keys", json={"name": ""}, headers=auth("u1"))

    # Assert
    assert anonymous.status_code == 401
    assert foreign.status_code == 403
    assert unnamed.status_code == 422
    assert client.get("/public/users", params={"key": API_KEY}).status_code == 200
