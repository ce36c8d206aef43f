from typing import Dict, Iterable, Tuple

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

console = Console(theme=Theme({
    "ok": "green",
    "fail": "red",
    "note": "yellow",
    "ident": "cyan",
}))

# (connection id, engine, ok, details)
CheckRow = Tuple[str, str, bool, str]


def print_success(message: str) -> None:
    console.print(f"[ok]✔ {message}[/ok]")


def print_error(message: str) -> None:
    console.print(f"[bold fail]Error:[/bold fail] {message}")


def status_markup(ok: bool, label_ok: str = "OK", label_fail: str = "Failed") -> str:
    return f"[ok]{label_ok}[/ok]" if ok else f"[fail]{label_fail}[/fail]"


def seed_table(path: str, counts: Dict[str, int]) -> Table:
    table = Table(title=f"Seeded {path}")
    table.add_column("Section", style="ident")
    table.add_column("Items", justify="right")
    for section, count in counts.items():
        table.add_row(section, str(count))
    return table


def engines_table(rows: Iterable[Tuple[str, str, str]]) -> Table:
    """Rows are (engine, adapter class path, driver status markup)."""
    table = Table(title="Available Adapters")
    table.add_column("Engine", style="ident", no_wrap=True)
    table.add_column("Class", style="magenta")
    table.add_column("Driver")
    for row in rows:
        table.add_row(*row)
    return table


def checks_table(rows: Iterable[CheckRow]) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    for header in ("Connection", "Engine", "Status", "Details"):
        table.add_column(header)
    for connection_id, engine, ok, details in rows:
        table.add_row(connection_id, engine, status_markup(ok), details)
    return table


def api_keys_table(owner_id: str, records: Iterable) -> Table:
    table = Table(title=f"API keys for {owner_id}")
    table.add_column("Id", style="ident", no_wrap=True)
    table.add_column("Name")
    table.add_column("Prefix")
    table.add_column("Created")
    table.add_column("Status")
    for record in records:
        created = record.created_at.strftime("%Y-%m-%d %H:%M") if record.created_at else "-"
        status = status_markup(not record.revoked, "Active", "Revoked")
        table.add_row(record.id, record.name or "", record.prefix or "", created, status)
    return table
