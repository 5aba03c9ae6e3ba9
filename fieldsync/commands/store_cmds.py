from __future__ import annotations

import asyncio

import typer
from rich import print

from fieldsync.complete import latest_per_key
from fieldsync.coordinator import SyncCoordinator
from fieldsync.models import AnyRecord, RecordPayload, SyncContext
from fieldsync.retry import RetryScheduler
from fieldsync.store import FieldStore
from fieldsync.submit import Submitter


def _describe(record: AnyRecord) -> str:
    if isinstance(record, RecordPayload):
        value = ", ".join(f"{k}={v}" for k, v in sorted(record.data.items()))
    else:
        value = record.value
    coc = record.key.category_option_combo
    label = f"{record.key.data_element}/{coc}" if coc else record.key.data_element
    return f"{label} = {value!r}"


def status_cmd(store: FieldStore) -> None:
    """Print row counts and the last retry sweep."""

    counts = store.counts()
    print(
        f"[bold]Rows[/bold]: total={counts['total']} synced={counts['synced']} "
        f"unsynced={counts['unsynced']}"
    )
    state = store.get_retry_state()
    if state is None:
        print("Last retry: never")
        return
    if state["last_ok_at"]:
        print(
            f"Last retry: {state['last_ok_at']} attempted={state['last_attempted']} "
            f"succeeded={state['last_succeeded']} failed={state['last_failed']}"
        )
    if state["last_error"]:
        print(f"[red]Last retry error[/red]: {state['last_error']} ({state['last_error_at']})")


def pending_cmd(store: FieldStore, *, limit: int) -> None:
    """List rows still waiting for a successful submit."""

    rows = store.unsynced(limit=limit)
    if not rows:
        print("No unsynced rows")
        return
    for record in rows:
        print(
            f"- {record.key.source} {record.key.period} {_describe(record)} "
            f"updated={record.last_updated_at}"
        )


def retry_cmd(store: FieldStore, *, submitter: Submitter | None, limit: int | None) -> None:
    """Run a single retry sweep and print the aggregate."""

    if submitter is None:
        print("[red]No submit endpoint configured[/red]")
        raise typer.Exit(code=1)
    coordinator = SyncCoordinator(store, SyncContext(), submitter=submitter)
    scheduler = RetryScheduler(coordinator, limit=limit)
    result = asyncio.run(scheduler.tick())
    if result is None:
        print("[red]Retry sweep failed[/red]")
        raise typer.Exit(code=1)
    print(
        f"Retried {result.attempted} rows: succeeded={result.succeeded} failed={result.failed}"
    )


def reset_cmd(store: FieldStore, *, source: str, period: str) -> None:
    """Delete every stored value for one source/period."""

    removed = store.delete_for(source, period)
    print(f"Removed {removed} rows for {source} {period}")


def show_cmd(store: FieldStore, *, source: str, period: str) -> None:
    """Print the latest value per field for one source/period."""

    records = latest_per_key(store.records_for(source, period))
    if not records:
        print(f"No values for {source} {period}")
        return
    for record in records:
        marker = "[green]synced[/green]" if record.synced else "[yellow]pending[/yellow]"
        print(f"- {_describe(record)} {marker}")
