import textwrap

import pytest

from apiflow.adapter_sdk import ConnectionConfig
from apiflow.common.security import hash_api_key
from apiflow.endpoints import Endpoint, Visibility
from apiflow.store import ApiKeyRecord, InMemoryConfigStore, SqliteConfigStore, load_seed


@pytest.fixture(params=["memory", "sqlite"])
def config_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryConfigStore()
        return
    store = SqliteConfigStore(tmp_path / "state" / "config.db")
    yield store
    store.close()


def _endpoint(endpoint_id, **overrides):
    data = {
        "id": endpoint_id,
        "owner_id": "u1",
        "connection_id": "c1",
        "path": "/users",
        "method": "GET",
        "table_name": "users",
    }
    data.update(overrides)
    return Endpoint(**data)


def test_connections_round_trip_with_secrets(config_store):
    # Arrange
    config = ConnectionConfig(
        id="c1",
        engine="postgres",
        owner_id="u1",
        host="db",
        user="app",
        password="pw",
        options={"sslmode": "require"},
    )

    # Act
    config_store.save_connection(config)
    loaded = config_store.get_connection("c1")

    # Assert
    assert loaded.secret("password") == "pw"
    assert loaded.options == {"sslmode": "require"}
    assert loaded.port == 5432


def test_list_connections_filters_by_owner(config_store):
    config_store.save_connection(ConnectionConfig(id="b", engine="redis", owner_id="u1", host="r"))
    config_store.save_connection(ConnectionConfig(id="a", engine="redis", owner_id="u2", host="r"))

    assert sorted(c.id for c in config_store.list_connections()) == ["a", "b"]
    assert [c.id for c in config_store.list_connections("u1")] == ["b"]


def test_delete_connection_reports_whether_it_existed(config_store):
    config_store.save_connection(ConnectionConfig(id="c1", engine="redis", host="r"))
    assert config_store.delete_connection("c1") is True
    assert config_store.delete_connection("c1") is False
    assert config_store.get_connection("c1") is None


def test_get_endpoint_matches_visibility_and_activity(config_store):
    # Arrange
    config_store.save_endpoint(_endpoint("pub", is_public=True))
    config_store.save_endpoint(_endpoint("prot", is_public=False))
    config_store.save_endpoint(_endpoint("off", path="/orders", is_public=True, is_active=False))

    # Act / Assert
    assert config_store.get_endpoint("/users/", "get", Visibility.PUBLIC).id == "pub"
    assert config_store.get_endpoint("/users", "GET", Visibility.PROTECTED).id == "prot"
    assert config_store.get_endpoint("/orders", "GET", Visibility.PUBLIC) is None
    assert config_store.get_endpoint("/users", "POST", Visibility.PUBLIC) is None


def test_save_endpoint_overwrites_by_id(config_store):
    config_store.save_endpoint(_endpoint("e1", is_public=True))
    config_store.save_endpoint(_endpoint("e1", is_public=False))

    assert config_store.get_endpoint_by_id("e1").is_public is False
    assert config_store.get_endpoint("/users", "GET", Visibility.PUBLIC) is None
    assert len(config_store.list_endpoints("u1")) == 1
    assert config_store.list_endpoints("u2") == []


def test_api_keys_are_looked_up_by_hash(config_store):
    record = ApiKeyRecord(key_hash=hash_api_key("ak_secret"), owner_id="u1", prefix="ak_secre")
    config_store.save_api_key(record)

    assert config_store.get_api_key(hash_api_key("ak_secret")).owner_id == "u1"
    assert config_store.get_api_key("ak_secret") is None


def test_api_keys_are_listed_by_owner_and_found_by_id(config_store):
    # Arrange
    mine = ApiKeyRecord(key_hash=hash_api_key("ak_one"), owner_id="u1", name="ci")
    theirs = ApiKeyRecord(key_hash=hash_api_key("ak_two"), owner_id="u2", name="prod")
    config_store.save_api_key(mine)
    config_store.save_api_key(theirs)

    # Act
    listed = config_store.list_api_keys("u1")
    found = config_store.get_api_key_by_id(theirs.id)

    # Assert
    assert [r.name for r in listed] == ["ci"]
    assert len(config_store.list_api_keys()) == 2
    assert found.owner_id == "u2"
    assert len(mine.id) == 16
    assert config_store.get_api_key_by_id("0" * 16) is None


def test_revoke_api_key_marks_it_once(config_store):
    # Arrange
    record = ApiKeyRecord(key_hash=hash_api_key("ak_secret"), owner_id="u1")
    config_store.save_api_key(record)

    # Act
    first = config_store.revoke_api_key(record.id)
    second = config_store.revoke_api_key(record.id)

    # Assert
    assert first is True
    assert second is False
    stored = config_store.get_api_key(record.key_hash)
    assert stored.revoked is True
    assert stored.revoked_at is not None
    assert config_store.revoke_api_key("f" * 16) is False


def test_plans_default_to_none_until_set(config_store):
    assert config_store.get_plan("u1") is None
    config_store.set_plan("u1", "pro")
    config_store.set_plan("u1", "enterprise")
    assert config_store.get_plan("u1") == "enterprise"


def test_sqlite_store_persists_across_instances(tmp_path):
    # Arrange
    path = tmp_path / "config.db"
    first = SqliteConfigStore(path)
    first.save_endpoint(_endpoint("e1", is_public=True))
    first.close()

    # Act
    second = SqliteConfigStore(path)

    # Assert
    assert second.get_endpoint("/users", "GET", Visibility.PUBLIC).id == "e1"
    second.close()


SEED = """
version: 1
connections:
  - id: c1
    engine: postgresql
    owner_id: u1
    host: db
    user: app
    password: ${env:APIFLOW_TEST_DB_PASSWORD}
endpoints:
  - id: e1
    owner_id: u1
    connection_id: c1
    path: users
    method: get
    table_name: users
    is_public: true
    filters:
      - {field: active, operator: equals, value: true}
api_keys:
  - key: ak_live_seeded_key
    owner_id: u1
    name: default
accounts:
  - caller_id: u1
    plan: pro
"""


def test_load_seed_populates_store(tmp_path, monkeypatch):
    # Arrange
    monkeypatch.setenv("APIFLOW_TEST_DB_PASSWORD", "from-env")
    path = tmp_path / "seed.yaml"
    path.write_text(textwrap.dedent(SEED), encoding="utf-8")
    store = InMemoryConfigStore()

    # Act
    counts = load_seed(store, path)

    # Assert
    assert counts == {"connections": 1, "endpoints": 1, "api_keys": 1, "accounts": 1}
    assert store.get_connection("c1").secret("password") == "from-env"
    endpoint = store.get_endpoint("/users", "GET", Visibility.PUBLIC)
    assert endpoint.filters[0].value is True
    key = store.get_api_key(hash_api_key("ak_live_seeded_key"))
    assert key.owner_id == "u1"
    assert key.prefix == "ak_live_"
    assert store.get_plan("u1") == "pro"


def test_load_seed_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_seed(InMemoryConfigStore(), tmp_path / "absent.yaml")


@pytest.mark.parametrize(
    "content",
    [
        "connections: [unclosed",
        "connections:\n  - id: c1\n    engine: oracle\n",
        "endpoints:\n  - id: e1\n",
    ],
)
def test_load_seed_rejects_invalid_documents(tmp_path, content):
    path = tmp_path / "seed.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        load_seed(InMemoryConfigStore(), path)
