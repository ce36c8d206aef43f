import pytest

import apiflow.adapters as adapters_module
from apiflow.adapter_sdk import ConnectionConfig, ConnectionFailed
from apiflow.adapters import BUILTIN_ADAPTERS, create_adapter, load_adapter_class
from apiflow.adapters.postgres import PostgresAdapter
from apiflow.adapters.sqlite import SqliteAdapter

from ..conftest import FakeAdapter


@pytest.fixture(autouse=True)
def no_plugins(monkeypatch):
    monkeypatch.setattr(adapters_module, "discover_adapters", lambda: {})


def test_every_engine_has_a_builtin_adapter():
    assert set(BUILTIN_ADAPTERS) == {
        "postgres", "mysql", "mariadb", "mssql", "sqlite", "mongodb", "redis", "sheets", "document-store",
    }


def test_builtin_adapter_is_loaded_by_engine_tag():
    assert load_adapter_class("postgres") is PostgresAdapter


def test_plugins_take_precedence(monkeypatch):
    monkeypatch.setattr(adapters_module, "discover_adapters", lambda: {"postgres": FakeAdapter})
    assert load_adapter_class("postgres") is FakeAdapter


def test_unknown_engine_fails_to_load():
    with pytest.raises(ConnectionFailed):
        load_adapter_class("oracle")


def test_missing_driver_is_connection_failure(monkeypatch):
    monkeypatch.setitem(BUILTIN_ADAPTERS, "mssql", "apiflow.adapters.not_installed:MssqlAdapter")
    with pytest.raises(ConnectionFailed) as exc_info:
        load_adapter_class("mssql")
    assert "not installed" in exc_info.value.detail


def test_create_adapter_returns_unconnected_instance(tmp_path):
    # Act
    adapter = create_adapter(
        ConnectionConfig(id="local", engine="sqlite", database=str(tmp_path / "x.db")), statement_timeout_ms=2000
    )

    # Assert
    assert isinstance(adapter, SqliteAdapter)
    assert adapter.engine is None
    assert adapter.statement_timeout_ms == 2000
