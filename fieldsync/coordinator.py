from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from . import backup as backup_mod
from .complete import build_complete_payload
from .errors import MissingContextError, StorageError, ValidationError
from .kv import FlatStore
from .models import (
    DEFAULT_AUTO_SAVE_DELAY_MS,
    KIND_RECORD,
    AnyRecord,
    CompleteDatasetPayload,
    CompositeKey,
    FieldSpec,
    RecordPayload,
    SyncContext,
    ValueRecord,
    now_iso,
)
from .status import FieldStatus, StatusChange, StatusTracker
from .store import FieldStore
from .submit import Submitter, is_success
from .validation import serialize_value, validate_input, validate_object

logger = logging.getLogger(__name__)

RecordsListener = Callable[[list[AnyRecord]], None]

LOCAL_WRITE_FAILED = "Unable to save locally or remotely"


@dataclass(frozen=True)
class SaveOutcome:
    key: CompositeKey
    status: FieldStatus
    record: AnyRecord | None = None
    error: str | None = None
    stored_locally: bool = False


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, Mapping):
        return not any(v not in (None, "", False) for v in value.values())
    return False


class SyncCoordinator:
    """Validate, persist locally, submit remotely and reconcile field status.

    The coordinator is the only writer of the local store. It allows a single
    save per composite key at a time; the retry sweep goes through
    :meth:`resubmit` and never takes that guard.
    """

    def __init__(
        self,
        store: FieldStore | None,
        context: SyncContext,
        *,
        backup: FlatStore | None = None,
        submitter: Submitter | None = None,
        status: StatusTracker | None = None,
        auto_save_delay_ms: int = DEFAULT_AUTO_SAVE_DELAY_MS,
    ) -> None:
        self.store = store
        self.backup = backup
        self.submitter = submitter
        self.context = context
        self.status = status or StatusTracker()
        self.auto_save_delay_ms = auto_save_delay_ms
        self._in_flight: set[CompositeKey] = set()
        self._submitted: dict[CompositeKey, AnyRecord] = {}
        self._record_listeners: list[RecordsListener] = []
        self.load_submitted()

    # -- context and in-memory collection -------------------------------------------------

    def set_context(self, context: SyncContext) -> None:
        self.context = context
        self._submitted.clear()
        self.load_submitted()
        self._publish()

    def load_submitted(self) -> None:
        if self.store is None or not self.context.source or not self.context.period:
            return
        try:
            records = self.store.records_for(self.context.source, self.context.period)
        except StorageError as exc:
            logger.warning("loading stored values failed", exc_info=exc)
            return
        for record in records:
            self._submitted[record.key] = record

    def records(self) -> list[AnyRecord]:
        return sorted(
            self._submitted.values(),
            key=lambda r: (r.key.data_element, r.key.category_option_combo),
        )

    def record_for(self, key: CompositeKey) -> AnyRecord | None:
        return self._submitted.get(key)

    def clear_submitted(self) -> None:
        self._submitted.clear()
        self._publish()

    def subscribe_records(self, listener: RecordsListener) -> Callable[[], None]:
        self._record_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._record_listeners:
                self._record_listeners.remove(listener)

        return unsubscribe

    def block_values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for record in self._submitted.values():
            if isinstance(record, ValueRecord):
                values[record.key.data_element] = record.value
        return values

    def is_in_flight(self, key: CompositeKey) -> bool:
        return key in self._in_flight

    def _remember(self, record: AnyRecord) -> None:
        if record.key.source != self.context.source or record.key.period != self.context.period:
            return
        current = self._submitted.get(record.key)
        if current is not None and current.rev > record.rev and record.rev > 0:
            return
        self._submitted[record.key] = record

    def _publish(self) -> None:
        if not self._record_listeners:
            return
        records = self.records()
        for listener in list(self._record_listeners):
            try:
                listener(records)
            except Exception as exc:
                logger.warning("records listener failed", exc_info=exc)

    # -- validation and record building ---------------------------------------------------

    def validate(
        self,
        field: FieldSpec,
        raw_value: Any,
        *,
        block_values: Mapping[str, Any] | None = None,
    ) -> None:
        """Raise ``ValidationError`` when ``raw_value`` breaks the field's rules.

        Cross-field rules see the other values of the current block.
        """

        values = dict(self.block_values() if block_values is None else block_values)
        if field.kind == KIND_RECORD:
            data = raw_value if isinstance(raw_value, Mapping) else {}
            if _is_blank(data):
                if field.rules.required:
                    raise ValidationError("This field is required")
                return
            errors = validate_object(data, field.custom_logic, field.sub_rules)
            if errors:
                message = "; ".join(f"{name}: {msg}" for name, msg in sorted(errors.items()))
                raise ValidationError(message, field_errors=errors)
            return
        values.pop(field.data_element, None)
        message = validate_input(raw_value, field.rules, values, field.custom_logic)
        if message:
            raise ValidationError(message)

    def check(
        self,
        field: FieldSpec,
        raw_value: Any,
        *,
        block_values: Mapping[str, Any] | None = None,
    ) -> str | None:
        try:
            self.validate(field, raw_value, block_values=block_values)
        except ValidationError as exc:
            return exc.message
        return None

    def build_record(self, field: FieldSpec, raw_value: Any) -> AnyRecord:
        stamp = now_iso()
        common: dict[str, Any] = {
            "key": field.key(self.context),
            "comment": field.comment,
            "followup": False,
            "created_at": stamp,
            "last_updated_at": stamp,
            "synced": False,
            "saved_by": self.context.saved_by,
        }
        if field.kind == KIND_RECORD:
            data = dict(raw_value) if isinstance(raw_value, Mapping) else {}
            return RecordPayload(data=data, **common)
        return ValueRecord(value=serialize_value(raw_value, multi_select=field.multi_select), **common)

    # -- the save pipeline -----------------------------------------------------------------

    def bind(
        self,
        field: FieldSpec,
        *,
        on_status: Callable[[StatusChange], None] | None = None,
    ) -> FieldSync:
        return FieldSync(self, field, on_status=on_status)

    async def save(
        self,
        field: FieldSpec,
        raw_value: Any,
        *,
        block_values: Mapping[str, Any] | None = None,
    ) -> SaveOutcome | None:
        """Run validate -> write local -> submit -> reconcile for one field.

        Raises ``MissingContextError`` before touching storage when no
        source/period is selected. Returns ``None`` when a save for the same
        key is already running.
        """

        self.context.require()
        key = field.key(self.context)
        if key in self._in_flight:
            logger.debug("save already in flight for %s", key.label())
            return None
        self._in_flight.add(key)
        try:
            try:
                self.validate(field, raw_value, block_values=block_values)
            except ValidationError as exc:
                self.status.transition(key, FieldStatus.ERROR, exc.message)
                return SaveOutcome(key=key, status=FieldStatus.ERROR, error=exc.message)
            if _is_blank(raw_value) and not field.rules.required:
                self.status.reset(key)
                return SaveOutcome(key=key, status=FieldStatus.IDLE)

            self.status.transition(key, FieldStatus.SAVING)
            record = self.build_record(field, raw_value)
            stored, stored_locally = self._persist(record)
            current: AnyRecord = stored or record
            self._remember(current)
            self._publish()

            if self.submitter is None:
                self.status.transition(key, FieldStatus.SAVED)
                return SaveOutcome(
                    key=key,
                    status=FieldStatus.SAVED,
                    record=current,
                    stored_locally=stored_locally,
                )

            if await self._submit(current):
                current = self._reconcile(current, persisted=stored is not None)
                self._remember(current)
                final = FieldStatus.SAVED
            elif stored_locally:
                final = FieldStatus.WARNING
            else:
                final = FieldStatus.ERROR
            self._settle(key, final, LOCAL_WRITE_FAILED if final is FieldStatus.ERROR else None)
            self._publish()
            return SaveOutcome(
                key=key,
                status=final,
                record=current,
                error=LOCAL_WRITE_FAILED if final is FieldStatus.ERROR else None,
                stored_locally=stored_locally,
            )
        finally:
            self._in_flight.discard(key)

    async def resubmit(self, record: AnyRecord) -> bool | None:
        """Replay the submit/reconcile step for a stored unsynced row.

        Returns ``None`` when the row was skipped: a user save for the same
        key is running, or the row was deleted or synced since the sweep
        listed it. The current stored version is what gets submitted.
        """

        if self.submitter is None:
            return None
        key = record.key
        if key in self._in_flight:
            return None
        if self.store is not None:
            try:
                current = self.store.get(record.local_id)
            except StorageError as exc:
                logger.warning("re-reading %s before retry failed", key.label(), exc_info=exc)
                return None
            if current is None or current.synced:
                return None
            record = current
        if self.status.can_transition(key, FieldStatus.SAVING):
            self.status.transition(key, FieldStatus.SAVING)
        ok = await self._submit(record)
        if ok:
            self._remember(self._reconcile(record, persisted=True))
        if key not in self._in_flight:
            self._settle(key, FieldStatus.SAVED if ok else FieldStatus.WARNING)
        self._publish()
        return ok

    def _settle(self, key: CompositeKey, new: FieldStatus, message: str | None = None) -> None:
        # A fresh edit during the round trip already moved the field back to IDLE.
        if self.status.get(key) is FieldStatus.SAVING:
            self.status.transition(key, new, message)

    def _persist(self, record: AnyRecord) -> tuple[AnyRecord | None, bool]:
        """Write to the durable store and the flat backup; either may fail alone."""

        stored: AnyRecord | None = None
        backed_up = False
        if self.store is not None:
            try:
                stored = self.store.upsert_record(record)
            except StorageError as exc:
                logger.warning("local store write failed for %s", record.key.label(), exc_info=exc)
        if self.backup is not None:
            try:
                backup_mod.write_backup(self.backup, stored or record)
                backed_up = True
            except StorageError as exc:
                logger.warning("backup write failed for %s", record.key.label(), exc_info=exc)
        return stored, stored is not None or backed_up

    async def _submit(self, record: AnyRecord) -> bool:
        if self.submitter is None:
            return False
        try:
            response = await self.submitter.submit(record.payload())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "remote submit failed for %s, keeping local copy for retry",
                record.key.label(),
                exc_info=exc,
            )
            return False
        if not is_success(response):
            logger.warning("remote submit for %s was not acknowledged", record.key.label())
            return False
        return True

    def _reconcile(self, record: AnyRecord, *, persisted: bool) -> AnyRecord:
        if not persisted or self.store is None:
            return record.as_synced()
        try:
            flipped = self.store.mark_synced(record.local_id, record.rev)
        except StorageError as exc:
            logger.warning("marking %s synced failed", record.key.label(), exc_info=exc)
            return record
        if not flipped:
            # A newer version landed while this one was in transit; it keeps its own flag.
            return record
        return record.as_synced()

    # -- resets and final submission --------------------------------------------------------

    def reset_context(self) -> int:
        """Drop every stored value for the current source/period (org or dataset change)."""

        removed = 0
        if self.store is not None and self.context.source and self.context.period:
            removed = self.store.delete_for(self.context.source, self.context.period)
        if self.backup is not None:
            try:
                backup_mod.clear_backups(self.backup)
            except StorageError as exc:
                logger.warning("clearing backup entries failed", exc_info=exc)
        for key in list(self._submitted):
            self.status.forget(key)
        self._submitted.clear()
        self._publish()
        return removed

    def complete(self, *, completed_by: str | None = None) -> CompleteDatasetPayload:
        self.context.require()
        if not self.context.data_set:
            raise MissingContextError("Missing data set for completion")
        if self.store is not None:
            records = self.store.records_for(self.context.source, self.context.period)
        else:
            records = self.records()
        return build_complete_payload(
            records,
            source=self.context.source,
            period=self.context.period,
            data_set=self.context.data_set,
            completed_by=completed_by or self.context.saved_by,
        )


_UNSET: Any = object()


class FieldSync:
    """One input bound to a coordinator: draft edits, debounced commit on blur."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        field: FieldSpec,
        *,
        on_status: Callable[[StatusChange], None] | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.field = field
        self.on_status = on_status
        self.mounted = True
        self._draft: Any = None
        self._committed: Any = _UNSET
        self._task: asyncio.Task[SaveOutcome | None] | None = None
        self._unsubscribe = coordinator.status.subscribe(self._forward)

    @property
    def key(self) -> CompositeKey:
        return self.field.key(self.coordinator.context)

    @property
    def delay_ms(self) -> int:
        if self.field.auto_save_delay_ms is not None:
            return self.field.auto_save_delay_ms
        return self.coordinator.auto_save_delay_ms

    @property
    def status(self) -> FieldStatus:
        return self.coordinator.status.get(self.key)

    @property
    def helper_text(self) -> str:
        return self.coordinator.status.helper_text(self.key)

    @property
    def saving(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_change(self, value: Any) -> str | None:
        """Record a keystroke-level edit; status drops back to IDLE."""

        self._draft = value
        self.coordinator.status.reset(self.key)
        return self.coordinator.check(self.field, value)

    def on_blur(self, value: Any = _UNSET) -> asyncio.Task[SaveOutcome | None] | None:
        """Commit the current value; schedules one delayed save unless one is pending."""

        self._committed = self._draft if value is _UNSET else value
        if self.saving:
            return None
        self._task = asyncio.ensure_future(self._run())
        return self._task

    async def flush(self) -> SaveOutcome | None:
        if self._task is None:
            return None
        return await self._task

    def unmount(self) -> None:
        """Stop status delivery to the view; an in-flight save still completes."""

        self.mounted = False
        self._unsubscribe()

    async def _run(self) -> SaveOutcome | None:
        await asyncio.sleep(self.delay_ms / 1000.0)
        while True:
            value = self._committed
            try:
                outcome = await self.coordinator.save(self.field, value)
            except MissingContextError as exc:
                self.coordinator.status.transition(self.key, FieldStatus.ERROR, str(exc))
                return SaveOutcome(key=self.key, status=FieldStatus.ERROR, error=str(exc))
            # A commit that arrived during the round trip gets exactly one follow-up save.
            if self._committed == value:
                return outcome

    def _forward(self, change: StatusChange) -> None:
        if not self.mounted or self.on_status is None:
            return
        if change.key != self.key:
            return
        self.on_status(change)
