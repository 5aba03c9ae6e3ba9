from __future__ import annotations

import asyncio
import contextlib
import logging
import traceback
from dataclasses import dataclass

from .coordinator import SyncCoordinator
from .notices import SEVERITY_ERROR, SEVERITY_INFO, SEVERITY_SUCCESS, Notice, NoticeSink, emit

logger = logging.getLogger(__name__)

DEFAULT_RETRY_INTERVAL_S = 300


@dataclass(frozen=True)
class SweepResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


def sweep_notice(result: SweepResult) -> Notice | None:
    if result.attempted == 0:
        return None
    if result.succeeded > 0:
        return Notice(f"Successfully resubmitted {result.succeeded} records.", SEVERITY_SUCCESS)
    return Notice("No failed submissions were resubmitted successfully.", SEVERITY_INFO)


class RetryScheduler:
    """Periodically resubmit every row the local store holds as unsynced."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        *,
        interval_s: float = DEFAULT_RETRY_INTERVAL_S,
        limit: int | None = None,
        enabled: bool = True,
        notify: NoticeSink | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.interval_s = interval_s
        self.limit = limit
        self.enabled = enabled
        self.notify = notify
        self.last_result: SweepResult | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    async def sweep(self) -> SweepResult:
        """One pass over ``synced = false`` rows; failures wait for the next pass."""

        store = self.coordinator.store
        if store is None or self.coordinator.submitter is None:
            return SweepResult()
        attempted = succeeded = failed = skipped = 0
        for record in store.unsynced(limit=self.limit):
            outcome = await self.coordinator.resubmit(record)
            if outcome is None:
                skipped += 1
                continue
            attempted += 1
            if outcome:
                succeeded += 1
            else:
                failed += 1
        result = SweepResult(
            attempted=attempted, succeeded=succeeded, failed=failed, skipped=skipped
        )
        logger.info(
            "retry sweep attempted=%d succeeded=%d failed=%d skipped=%d",
            attempted,
            succeeded,
            failed,
            skipped,
        )
        return result

    async def tick(self) -> SweepResult | None:
        if not self.enabled:
            return None
        store = self.coordinator.store
        try:
            result = await self.sweep()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            tb = traceback.format_exc()
            logger.exception("retry sweep failed", exc_info=exc)
            if store is not None:
                try:
                    store.set_retry_error(str(exc), tb)
                except Exception as record_exc:
                    logger.warning("recording retry error failed", exc_info=record_exc)
            emit(
                self.notify,
                Notice(f"Error retrying failed submissions: {exc}", SEVERITY_ERROR),
            )
            return None
        self.last_result = result
        if store is not None:
            try:
                store.set_retry_ok(
                    attempted=result.attempted,
                    succeeded=result.succeeded,
                    failed=result.failed,
                )
            except Exception as exc:
                logger.warning("recording retry state failed", exc_info=exc)
        notice = sweep_notice(result)
        if notice is not None:
            emit(self.notify, notice)
        return result

    def start(self) -> asyncio.Task[None] | None:
        if not self.enabled:
            return None
        if self._task is not None and not self._task.done():
            return self._task
        self._stop = asyncio.Event()
        self._task = asyncio.ensure_future(self._run())
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def trigger(self) -> SweepResult | None:
        """Run a sweep now, e.g. when connectivity comes back."""

        return await self.tick()

    async def _wait_stop(self, timeout_s: float) -> bool:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        await self.tick()
        interval_s = max(1.0, float(self.interval_s))
        while not await self._wait_stop(interval_s):
            await self.tick()
