from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable

from .backup import clear_backups
from .errors import StorageError
from .kv import FlatStore
from .notices import SEVERITY_ERROR, Notice, NoticeSink, emit

logger = logging.getLogger(__name__)

ACTIVITY_KEY = "fieldsync-last-activity"
DEFAULT_SESSION_TIMEOUT_MINUTES = 30
DEFAULT_SESSION_CHECK_S = 60
SESSION_TIMEOUT_MESSAGE = "Your session timed out due to inactivity. Form data has been reset."


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionActivityGuard:
    """Reset in-memory form bookkeeping after a stretch of user inactivity.

    This is a data-hygiene policy: synced and unsynced rows in the durable
    store are left alone, only the submitted-record view and ``form-data-*``
    backup entries are dropped.
    """

    def __init__(
        self,
        flat: FlatStore,
        *,
        timeout_minutes: float = DEFAULT_SESSION_TIMEOUT_MINUTES,
        check_interval_s: float = DEFAULT_SESSION_CHECK_S,
        on_expire: list[Callable[[], None]] | None = None,
        notify: NoticeSink | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.flat = flat
        self.timeout_ms = int(timeout_minutes * 60 * 1000)
        self.check_interval_s = check_interval_s
        self.on_expire = list(on_expire or [])
        self.notify = notify
        self.clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    def last_activity_ms(self) -> int | None:
        raw = self.flat.get(ACTIVITY_KEY)
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    def touch(self, now_ms: int | None = None) -> None:
        stamp = self.clock() if now_ms is None else now_ms
        try:
            self.flat.set(ACTIVITY_KEY, str(stamp))
        except StorageError as exc:
            logger.warning("recording activity timestamp failed", exc_info=exc)

    def check(self, now_ms: int | None = None) -> bool:
        """Return True when the session expired and state was reset."""

        now = self.clock() if now_ms is None else now_ms
        last = self.last_activity_ms()
        if last is None:
            self.touch(now)
            return False
        if now - last <= self.timeout_ms:
            return False
        self._expire(now)
        return True

    def _expire(self, now: int) -> None:
        for callback in self.on_expire:
            try:
                callback()
            except Exception as exc:
                logger.warning("session expiry callback failed", exc_info=exc)
        try:
            removed = clear_backups(self.flat)
            logger.info("session expired; removed %d backup entries", removed)
        except StorageError as exc:
            logger.warning("clearing backup entries failed", exc_info=exc)
        self.touch(now)
        emit(self.notify, Notice(SESSION_TIMEOUT_MESSAGE, SEVERITY_ERROR))

    def start(self) -> asyncio.Task[None]:
        if self._task is not None and not self._task.done():
            return self._task
        self.touch()
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

    async def _run(self) -> None:
        interval_s = max(0.01, float(self.check_interval_s))
        while True:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval_s)
                return
            except asyncio.TimeoutError:
                self.check()
