from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from fieldsync.coordinator import SyncCoordinator
from fieldsync.errors import NetworkError
from fieldsync.kv import FlatStore
from fieldsync.models import SyncContext
from fieldsync.store import FieldStore


class FakeSubmitter:
    """Records payloads; ``fail`` is read when a call finishes, gates hold calls in order."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict[str, Any]] = []
        self.gates: list[asyncio.Event] = []

    async def submit(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(payload)
        if self.gates:
            await self.gates.pop(0).wait()
        if self.fail:
            raise NetworkError("offline")
        return {"success": True}

    def values(self) -> list[Any]:
        return [call.get("value", call.get("data")) for call in self.calls]


async def wait_until(predicate: Callable[[], bool], *, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture(autouse=True)
def _isolate_fieldsync_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FIELDSYNC_CONFIG", str(tmp_path / "config.json"))
    for name in (
        "FIELDSYNC_DB",
        "FIELDSYNC_BACKUP_PATH",
        "FIELDSYNC_ENDPOINT",
        "FIELDSYNC_AUTO_SAVE_DELAY_MS",
        "FIELDSYNC_RETRY_ENABLED",
        "FIELDSYNC_RETRY_INTERVAL_S",
        "FIELDSYNC_SAVED_BY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path: Path):
    store = FieldStore(tmp_path / "fieldsync.sqlite")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def flat(tmp_path: Path) -> FlatStore:
    return FlatStore(tmp_path / "local-storage.json")


@pytest.fixture
def context() -> SyncContext:
    return SyncContext(source="ou-1", period="2024Q1", data_set="ds-1", saved_by="nurse")


@pytest.fixture
def submitter() -> FakeSubmitter:
    return FakeSubmitter()


@pytest.fixture
def coordinator(store: FieldStore, flat: FlatStore, context: SyncContext, submitter):
    return SyncCoordinator(store, context, backup=flat, submitter=submitter)
