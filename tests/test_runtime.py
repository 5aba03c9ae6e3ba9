from __future__ import annotations

import asyncio
from pathlib import Path

from conftest import FakeSubmitter

from fieldsync.config import FieldSyncConfig
from fieldsync.models import FieldSpec, SyncContext
from fieldsync.runtime import build_runtime, build_submitter
from fieldsync.submit import HttpSubmitter


def _config(tmp_path: Path, **overrides) -> FieldSyncConfig:
    cfg = FieldSyncConfig(
        db_path=str(tmp_path / "fieldsync.sqlite"),
        backup_path=str(tmp_path / "local-storage.json"),
        retry_interval_s=3600,
    )
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def test_build_submitter_follows_endpoint(tmp_path: Path) -> None:
    assert build_submitter(_config(tmp_path)) is None
    submitter = build_submitter(_config(tmp_path, endpoint="example.org/api"))
    assert isinstance(submitter, HttpSubmitter)
    assert submitter.url == "http://example.org/api"


def test_runtime_wires_save_retry_and_session_reset(tmp_path: Path) -> None:
    submitter = FakeSubmitter(fail=True)
    runtime = build_runtime(
        SyncContext(source="ou-1", period="2024Q1"),
        config=_config(tmp_path, saved_by="nurse"),
        submitter=submitter,
    )
    field = FieldSpec(data_element="de-1")

    async def scenario():
        await runtime.start()
        outcome = await runtime.coordinator.save(field, "42")
        submitter.fail = False
        result = await runtime.scheduler.trigger()
        await runtime.stop()
        return outcome, result

    outcome, result = asyncio.run(scenario())

    assert outcome.record.saved_by == "nurse"
    assert result.succeeded == 1
    assert any(n.message == "Successfully resubmitted 1 records." for n in runtime.notices)
    assert runtime.flat.get("form-data-de-1-HllvX50cXC0") is not None

    runtime.guard.touch(0)
    assert runtime.guard.check(now_ms=31 * 60 * 1000) is True
    assert runtime.coordinator.records() == []
    assert runtime.flat.keys("form-data-") == []
