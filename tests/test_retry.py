from __future__ import annotations

import asyncio
from unittest.mock import patch

from conftest import FakeSubmitter, wait_until

from fieldsync.coordinator import SyncCoordinator
from fieldsync.models import FieldSpec, SyncContext
from fieldsync.notices import SEVERITY_ERROR, SEVERITY_INFO, SEVERITY_SUCCESS
from fieldsync.retry import RetryScheduler, SweepResult, sweep_notice
from fieldsync.store import FieldStore


def _fill_offline(coordinator: SyncCoordinator, submitter: FakeSubmitter, count: int) -> None:
    submitter.fail = True

    async def scenario():
        for idx in range(count):
            await coordinator.save(FieldSpec(data_element=f"de-{idx}"), str(idx))

    asyncio.run(scenario())
    submitter.fail = False


def test_sweep_converges_once_online(
    coordinator: SyncCoordinator, store: FieldStore, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 3)
    scheduler = RetryScheduler(coordinator)
    assert store.counts()["unsynced"] == 3

    first = asyncio.run(scheduler.sweep())
    second = asyncio.run(scheduler.sweep())

    assert first == SweepResult(attempted=3, succeeded=3, failed=0, skipped=0)
    assert second == SweepResult()
    assert store.counts() == {"total": 3, "synced": 3, "unsynced": 0}


def test_sweep_counts_failures_and_keeps_rows(
    coordinator: SyncCoordinator, store: FieldStore, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 2)
    submitter.fail = True

    result = asyncio.run(RetryScheduler(coordinator).sweep())

    assert result.attempted == 2
    assert result.failed == 2
    assert store.counts()["unsynced"] == 2


def test_sweep_skips_key_with_user_save_in_flight(
    coordinator: SyncCoordinator, submitter: FakeSubmitter
) -> None:
    field = FieldSpec(data_element="de-1")

    async def scenario():
        gate = asyncio.Event()
        submitter.gates.append(gate)
        save = asyncio.ensure_future(coordinator.save(field, "1"))
        await wait_until(lambda: len(submitter.calls) == 1)
        result = await RetryScheduler(coordinator).sweep()
        gate.set()
        await save
        return result

    result = asyncio.run(scenario())

    assert result.skipped == 1
    assert result.attempted == 0
    assert len(submitter.calls) == 1


def test_sweep_without_submitter_is_a_noop(store: FieldStore, context: SyncContext) -> None:
    coordinator = SyncCoordinator(store, context)
    asyncio.run(coordinator.save(FieldSpec(data_element="de-1"), "1"))

    assert asyncio.run(RetryScheduler(coordinator).sweep()) == SweepResult()


def test_tick_records_state_and_notifies(
    coordinator: SyncCoordinator, store: FieldStore, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 2)
    notices = []

    asyncio.run(RetryScheduler(coordinator, notify=notices.append).tick())

    state = store.get_retry_state()
    assert state["last_succeeded"] == 2
    assert state["last_ok_at"]
    assert notices[0].message == "Successfully resubmitted 2 records."
    assert notices[0].severity == SEVERITY_SUCCESS


def test_tick_failure_is_recorded_with_traceback(
    coordinator: SyncCoordinator, store: FieldStore, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 1)
    notices = []
    scheduler = RetryScheduler(coordinator, notify=notices.append)

    with patch.object(coordinator, "resubmit", side_effect=RuntimeError("db gone")):
        result = asyncio.run(scheduler.tick())

    assert result is None
    state = store.get_retry_state()
    assert state["last_error"] == "db gone"
    assert "RuntimeError" in state["last_traceback"]
    assert notices[0].severity == SEVERITY_ERROR


def test_disabled_scheduler_does_nothing(
    coordinator: SyncCoordinator, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 1)
    scheduler = RetryScheduler(coordinator, enabled=False)

    async def scenario():
        return scheduler.start(), await scheduler.tick()

    assert asyncio.run(scenario()) == (None, None)
    assert len(submitter.calls) == 1


def test_start_sweeps_immediately_and_stop_ends_loop(
    coordinator: SyncCoordinator, store: FieldStore, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 1)
    scheduler = RetryScheduler(coordinator, interval_s=3600)

    async def scenario():
        task = scheduler.start()
        await wait_until(lambda: scheduler.last_result is not None)
        await scheduler.stop()
        return task

    task = asyncio.run(scenario())

    assert task.done()
    assert scheduler.last_result.succeeded == 1
    assert store.counts()["unsynced"] == 0


def test_sweep_notice_messages() -> None:
    assert sweep_notice(SweepResult()) is None
    failed = sweep_notice(SweepResult(attempted=2, failed=2))
    assert failed.message == "No failed submissions were resubmitted successfully."
    assert failed.severity == SEVERITY_INFO


def _sweep_around_edit(
    coordinator: SyncCoordinator, submitter: FakeSubmitter, value: str, *, offline: bool
) -> tuple[str, SweepResult]:
    """Hold the first resubmit open while the other field is edited again."""

    async def scenario():
        gate = asyncio.Event()
        submitter.gates.append(gate)
        sweep = asyncio.ensure_future(RetryScheduler(coordinator).sweep())
        await wait_until(lambda: len(submitter.calls) == 3)
        held = submitter.calls[2]["dataElement"]
        other = "de-1" if held == "de-0" else "de-0"
        submitter.fail = offline
        await coordinator.save(FieldSpec(data_element=other), value)
        submitter.fail = False
        gate.set()
        return other, await sweep

    return asyncio.run(scenario())


def _submitted_for(submitter: FakeSubmitter, data_element: str) -> list[str]:
    return [call["value"] for call in submitter.calls if call["dataElement"] == data_element]


def test_sweep_skips_row_synced_by_newer_edit(
    coordinator: SyncCoordinator, store: FieldStore, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 2)

    other, result = _sweep_around_edit(coordinator, submitter, "43", offline=False)

    original = other.removeprefix("de-")
    assert _submitted_for(submitter, other) == [original, "43"]
    assert result == SweepResult(attempted=1, succeeded=1, failed=0, skipped=1)
    rows = store.get_all(lambda r: r.key.data_element == other)
    assert [(r.value, r.synced) for r in rows] == [("43", True)]


def test_sweep_submits_latest_version_of_reedited_row(
    coordinator: SyncCoordinator, store: FieldStore, submitter: FakeSubmitter
) -> None:
    _fill_offline(coordinator, submitter, 2)

    other, result = _sweep_around_edit(coordinator, submitter, "43", offline=True)

    original = other.removeprefix("de-")
    assert _submitted_for(submitter, other) == [original, "43", "43"]
    assert result == SweepResult(attempted=2, succeeded=2, failed=0, skipped=0)
    assert store.counts() == {"total": 2, "synced": 2, "unsynced": 0}
