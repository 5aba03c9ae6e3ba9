from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.config_cmds import config_cmd
from .commands.store_cmds import pending_cmd, reset_cmd, retry_cmd, show_cmd, status_cmd
from .config import load_config
from .db import DEFAULT_DB_PATH
from .runtime import build_submitter
from .store import FieldStore
from .submit import HttpSubmitter

app = typer.Typer(help="fieldsync: offline-first form value storage and sync")


def _store(db_path: str | None) -> FieldStore:
    return FieldStore(db_path or load_config().db_path or DEFAULT_DB_PATH)


@app.command()
def status(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Show stored row counts and the last retry sweep."""

    store = _store(db_path)
    try:
        status_cmd(store)
    finally:
        store.close()


@app.command()
def pending(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    limit: int = typer.Option(50, help="Max rows to show"),
) -> None:
    """List rows that have not been acknowledged by the server."""

    store = _store(db_path)
    try:
        pending_cmd(store, limit=limit)
    finally:
        store.close()


@app.command()
def retry(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    endpoint: str = typer.Option(None, help="Submit endpoint (defaults to config)"),
    limit: int = typer.Option(None, help="Max rows to resubmit"),
) -> None:
    """Resubmit unsynced rows once."""

    config = load_config()
    if endpoint:
        submitter = HttpSubmitter(endpoint, timeout_s=float(config.submit_timeout_s))
    else:
        submitter = build_submitter(config)
    store = _store(db_path)
    try:
        retry_cmd(store, submitter=submitter, limit=limit)
    finally:
        store.close()


@app.command()
def reset(
    source: str = typer.Option(..., help="Org unit / source id"),
    period: str = typer.Option(..., help="Period id"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Delete stored values for a source and period."""

    store = _store(db_path)
    try:
        reset_cmd(store, source=source, period=period)
    finally:
        store.close()


@app.command()
def show(
    source: str = typer.Option(..., help="Org unit / source id"),
    period: str = typer.Option(..., help="Period id"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show the latest stored value per field."""

    store = _store(db_path)
    try:
        show_cmd(store, source=source, period=period)
    finally:
        store.close()


@app.command("config")
def config(
    updates: list[str] = typer.Option(
        None, "--set", help="Set key=value (repeatable, empty value unsets)"
    ),
) -> None:
    """Show the effective config, optionally updating the config file first."""

    config_cmd(updates=updates or [])


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
