"""
CLI for ``tdsbridge``: run statements against SQL Server from a shell.

Connection options come from ``--url`` or the ``TDSBRIDGE_*`` settings.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tdsbridge.adapters.mssql import TdsDatabase
from tdsbridge.connection import connect
from tdsbridge.errors import TdsBridgeError
from tdsbridge.logging import configure_logging
from tdsbridge.settings import get_settings

app = typer.Typer(
    name="tdsbridge",
    help="tdsbridge: SQL Server datasets over a TDS client.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        from tdsbridge import __version__

        typer.echo(f"tdsbridge {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """tdsbridge CLI: query, execute and ping SQL Server."""
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        sql_max_length=settings.log_sql_max_length,
    )


def _open(url: str | None) -> TdsDatabase:
    try:
        return connect(url)
    except TdsBridgeError as e:
        _fail(e)


def _fail(error: TdsBridgeError) -> NoReturn:
    err_console.print(f"[bold red]{type(error).__name__}:[/bold red] {escape(error.message)}")
    raise typer.Exit(code=1)


def _render_rows(rows: list[dict[str, Any]], columns: list[str]) -> None:
    table = Table(show_header=True, header_style="bold cyan")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("NULL" if row.get(c) is None else escape(str(row.get(c))) for c in columns))
    console.print(table)
    console.print(f"[dim]{len(rows)} row(s)[/dim]")


@app.command()
def query(
    sql: str = typer.Argument(..., help="SELECT statement to run"),
    url: str | None = typer.Option(None, "--url", "-u", help="mssql:// connection URL"),
    server: str | None = typer.Option(None, "--server", "-s", help="Shard / server tag"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Run a query and print its rows."""
    with _open(url) as db:
        ds = db.fetch(sql, server=server)
        try:
            rows = ds.all()
        except TdsBridgeError as e:
            _fail(e)
        if json_out:
            typer.echo(json.dumps(rows, default=str, indent=2))
        else:
            _render_rows(rows, ds.columns or [])


@app.command("exec")
def exec_(
    sql: str = typer.Argument(..., help="INSERT / UPDATE / DELETE / DDL statement"),
    url: str | None = typer.Option(None, "--url", "-u", help="mssql:// connection URL"),
    server: str | None = typer.Option(None, "--server", "-s", help="Shard / server tag"),
) -> None:
    """Execute a statement and print the affected row count."""
    with _open(url) as db:
        try:
            count = db.execute_dui(sql, server=server)
        except TdsBridgeError as e:
            _fail(e)
        console.print(f"{count} row(s) affected")


@app.command()
def ping(
    url: str | None = typer.Option(None, "--url", "-u", help="mssql:// connection URL"),
    server: str | None = typer.Option(None, "--server", "-s", help="Shard / server tag"),
) -> None:
    """Check connectivity with ``SELECT 1``."""
    with _open(url) as db:
        try:
            db.test_connection(server)
        except TdsBridgeError as e:
            _fail(e)
        console.print("[green]ok[/green]")


__all__ = ["app"]
