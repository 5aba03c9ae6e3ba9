from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .activity import SessionActivityGuard
from .config import FieldSyncConfig, load_config
from .coordinator import SyncCoordinator
from .db import DEFAULT_DB_PATH
from .kv import DEFAULT_KV_PATH, FlatStore
from .models import SyncContext
from .notices import Notice, NoticeSink
from .retry import RetryScheduler
from .store import FieldStore
from .submit import HttpSubmitter, Submitter

logger = logging.getLogger(__name__)


@dataclass
class FieldSyncRuntime:
    """Everything one form session needs, wired from a :class:`FieldSyncConfig`."""

    config: FieldSyncConfig
    store: FieldStore
    flat: FlatStore
    coordinator: SyncCoordinator
    scheduler: RetryScheduler
    guard: SessionActivityGuard
    notices: list[Notice] = field(default_factory=list)

    async def start(self) -> None:
        self.scheduler.start()
        self.guard.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.guard.stop()
        self.store.close()


def build_submitter(config: FieldSyncConfig) -> Submitter | None:
    if not config.endpoint:
        return None
    return HttpSubmitter(config.endpoint, timeout_s=float(config.submit_timeout_s))


def build_runtime(
    context: SyncContext,
    *,
    config: FieldSyncConfig | None = None,
    submitter: Submitter | None = None,
    notify: NoticeSink | None = None,
) -> FieldSyncRuntime:
    cfg = config or load_config()
    store = FieldStore(Path(cfg.db_path or DEFAULT_DB_PATH).expanduser())
    flat = FlatStore(Path(cfg.backup_path or DEFAULT_KV_PATH).expanduser())
    if context.saved_by is None and cfg.saved_by:
        context = SyncContext(
            source=context.source,
            period=context.period,
            data_set=context.data_set,
            attribute_option_combo=context.attribute_option_combo,
            saved_by=cfg.saved_by,
        )
    coordinator = SyncCoordinator(
        store,
        context,
        backup=flat,
        submitter=submitter or build_submitter(cfg),
        auto_save_delay_ms=cfg.auto_save_delay_ms,
    )
    notices: list[Notice] = []

    def _notify(notice: Notice) -> None:
        notices.append(notice)
        if notify is not None:
            notify(notice)

    scheduler = RetryScheduler(
        coordinator,
        interval_s=cfg.retry_interval_s,
        enabled=cfg.retry_enabled,
        notify=_notify,
    )
    guard = SessionActivityGuard(
        flat,
        timeout_minutes=cfg.session_timeout_minutes,
        check_interval_s=cfg.session_check_s,
        on_expire=[coordinator.clear_submitted],
        notify=_notify,
    )
    if coordinator.submitter is None:
        logger.info("no submit endpoint configured; saves stay local")
    return FieldSyncRuntime(
        config=cfg,
        store=store,
        flat=flat,
        coordinator=coordinator,
        scheduler=scheduler,
        guard=guard,
        notices=notices,
    )
