"""Command line interface for apiflow."""
import importlib.util
import pathlib
from typing import Optional

import typer
from typing_extensions import Annotated

from apiflow.adapters import BUILTIN_ADAPTERS, discover_adapters, load_adapter_class
from apiflow.common.settings import settings

from .console import (
    api_keys_table,
    checks_table,
    console,
    engines_table,
    print_error,
    print_success,
    seed_table,
    status_markup,
)
from .decorators import handle_cli_errors

app = typer.Typer(
    name="apiflow",
    help="Serve registered database connections as REST endpoints.",
    no_args_is_help=True,
    add_completion=False,
)

DRIVER_MODULES = {
    "postgres": "psycopg2",
    "mysql": "pymysql",
    "mariadb": "pymysql",
    "mssql": "pyodbc",
    "sqlite": "sqlite3",
    "mongodb": "pymongo",
    "redis": "redis",
    "sheets": "gspread",
    "document-store": "google.cloud.firestore",
}


def driver_installed(module: str) -> bool:
    try:
        return importlib.util.find_spec(module) is not None
    except ModuleNotFoundError:
        return False


@app.callback()
def global_callback(
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment name; loads .env.<name>.")] = None,
):
    """
    apiflow CLI entry point.
    """
    if env:
        settings.configure_env(env)


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Host to bind to")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to bind to")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Enable auto-reload (development)")] = False,
):
    """Start the HTTP server."""
    from apiflow.api.server import main as run_server

    run_server(host=host, port=port, reload=reload)


@app.command()
@handle_cli_errors
def seed(
    path: Annotated[pathlib.Path, typer.Argument(help="Seed YAML with connections, endpoints, keys and plans")],
):
    """Load a seed file into the config store."""
    from apiflow.store import SqliteConfigStore, load_seed

    store = SqliteConfigStore(pathlib.Path(settings.config_store_path))
    try:
        counts = load_seed(store, path)
    finally:
        store.close()

    console.print(seed_table(settings.config_store_path, counts))


@app.command()
def engines():
    """List the engines this installation can serve."""
    plugins = discover_adapters()
    rows = []
    for engine, target in BUILTIN_ADAPTERS.items():
        if engine in plugins:
            continue
        module = DRIVER_MODULES.get(engine, "")
        status = status_markup(driver_installed(module), "Installed", f"Missing ({module})")
        rows.append((engine, target.replace(":", "."), status))
    for engine, cls in plugins.items():
        rows.append((engine, f"{cls.__module__}.{cls.__name__}", "[ok]Plugin[/ok]"))

    console.print(engines_table(rows))


@app.command("reset-usage")
@handle_cli_errors
def reset_usage():
    """Zero every caller's monthly usage counter."""
    from apiflow.quota import QuotaEnforcer, RedisUsageStore
    from apiflow.cache import RedisCache

    if not settings.redis_url:
        print_error("REDIS_URL is not set; in-process counters live only inside the server.")
        raise typer.Exit(code=1)
    usage = RedisUsageStore(RedisCache(settings.redis_url).client)
    reset = QuotaEnforcer(usage, lambda caller_id: None).reset_all()
    print_success(f"Reset {reset} usage counters.")


@app.command()
@handle_cli_errors
def doctor(
    connection_id: Annotated[Optional[str], typer.Option("--id", help="Check one connection only")] = None,
):
    """Connect to stored connections and list their tables."""
    from apiflow.store import SqliteConfigStore

    store = SqliteConfigStore(pathlib.Path(settings.config_store_path))
    try:
        configs = store.list_connections()
    finally:
        store.close()
    if connection_id:
        configs = [c for c in configs if c.id == connection_id]
    if not configs:
        console.print("[note]No connections found.[/note]")
        return

    rows = [(config.id, config.engine.value, *_check_connection(config)) for config in configs]
    console.print(checks_table(rows))
    if not all(ok for _, _, ok, _ in rows):
        raise typer.Exit(code=1)


def _check_connection(config):
    from apiflow.adapter_sdk import AdapterError

    missing = config.missing_fields()
    if missing:
        return False, f"missing {', '.join(missing)}"
    try:
        cls = load_adapter_class(config.engine.value)
        adapter = cls(config, statement_timeout_ms=settings.statement_timeout_ms).connect()
    except AdapterError as e:
        return False, f"{e.code.value}: {e.detail}"
    try:
        tables = adapter.list_tables()
        return True, f"{len(tables)} tables: {', '.join(tables[:5])}"
    except AdapterError as e:
        return False, f"{e.code.value}: {e.detail}"
    finally:
        adapter.disconnect()


keys_app = typer.Typer(help="Issue, list and revoke API keys.", no_args_is_help=True)
app.add_typer(keys_app, name="keys")


@keys_app.command("create")
@handle_cli_errors
def create_key(
    owner: Annotated[str, typer.Argument(help="Caller id that will own the key")],
    name: Annotated[str, typer.Argument(help="Label shown when listing keys")],
):
    """Issue a new API key. The key is printed once."""
    from apiflow.auth import ApiKeyService
    from apiflow.store import SqliteConfigStore

    store = SqliteConfigStore(pathlib.Path(settings.config_store_path))
    try:
        key, record = ApiKeyService(store).generate(owner, name)
    finally:
        store.close()

    print_success(f"Created key {record.id} for {owner}.")
    console.print(key, markup=False)
    console.print("[note]Store this key now; it will not be shown again.[/note]")


@keys_app.command("list")
@handle_cli_errors
def list_keys(
    owner: Annotated[str, typer.Argument(help="Caller id whose keys to list")],
    all_keys: Annotated[bool, typer.Option("--all", help="Include revoked keys")] = False,
):
    """List the API keys a caller owns."""
    from apiflow.auth import ApiKeyService
    from apiflow.store import SqliteConfigStore

    store = SqliteConfigStore(pathlib.Path(settings.config_store_path))
    try:
        records = ApiKeyService(store).list(owner, include_revoked=all_keys)
    finally:
        store.close()

    console.print(api_keys_table(owner, records))


@keys_app.command("revoke")
@handle_cli_errors
def revoke_key(
    key_id: Annotated[str, typer.Argument(help="Key id as shown by `keys list`")],
    owner: Annotated[str, typer.Option("--owner", help="Caller id that owns the key")],
):
    """Revoke an API key."""
    from apiflow.auth import ApiKeyService
    from apiflow.store import SqliteConfigStore

    store = SqliteConfigStore(pathlib.Path(settings.config_store_path))
    try:
        ApiKeyService(store).revoke(key_id, owner)
    finally:
        store.close()

    print_success(f"Revoked key {key_id}.")


if __name__ == "__main__":
    app()
