from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .errors import InvalidTransition
from .models import CompositeKey

logger = logging.getLogger(__name__)


class FieldStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"
    WARNING = "warning"


# IDLE is reachable from every state (a new local edit), so it is not listed.
ALLOWED_TRANSITIONS: dict[FieldStatus, frozenset[FieldStatus]] = {
    FieldStatus.IDLE: frozenset({FieldStatus.SAVING, FieldStatus.ERROR}),
    FieldStatus.SAVING: frozenset({FieldStatus.SAVED, FieldStatus.ERROR, FieldStatus.WARNING}),
    FieldStatus.SAVED: frozenset({FieldStatus.SAVING, FieldStatus.ERROR}),
    FieldStatus.WARNING: frozenset({FieldStatus.SAVING, FieldStatus.ERROR}),
    FieldStatus.ERROR: frozenset({FieldStatus.SAVING}),
}

HELPER_TEXT = {
    FieldStatus.IDLE: "",
    FieldStatus.SAVING: "Saving...",
    FieldStatus.SAVED: "Saved",
    FieldStatus.WARNING: "Saved locally, will sync later",
    FieldStatus.ERROR: "",
}


@dataclass(frozen=True)
class StatusChange:
    key: CompositeKey
    old: FieldStatus
    new: FieldStatus
    message: str | None = None


StatusListener = Callable[[StatusChange], None]


class StatusTracker:
    """Per-field status machine shared by every input bound to a coordinator."""

    def __init__(self) -> None:
        self._states: dict[CompositeKey, FieldStatus] = {}
        self._messages: dict[CompositeKey, str | None] = {}
        self._listeners: list[StatusListener] = []

    def get(self, key: CompositeKey) -> FieldStatus:
        return self._states.get(key, FieldStatus.IDLE)

    def message(self, key: CompositeKey) -> str | None:
        return self._messages.get(key)

    def helper_text(self, key: CompositeKey) -> str:
        message = self._messages.get(key)
        if message:
            return message
        return HELPER_TEXT[self.get(key)]

    def can_transition(self, key: CompositeKey, new: FieldStatus) -> bool:
        old = self.get(key)
        if new is FieldStatus.IDLE or new is old:
            return True
        return new in ALLOWED_TRANSITIONS[old]

    def transition(
        self, key: CompositeKey, new: FieldStatus, message: str | None = None
    ) -> StatusChange:
        old = self.get(key)
        if not self.can_transition(key, new):
            raise InvalidTransition(f"{key.label()}: {old.value} -> {new.value}")
        self._states[key] = new
        self._messages[key] = message
        change = StatusChange(key=key, old=old, new=new, message=message)
        self._emit(change)
        return change

    def reset(self, key: CompositeKey) -> StatusChange:
        return self.transition(key, FieldStatus.IDLE)

    def forget(self, key: CompositeKey) -> None:
        self._states.pop(key, None)
        self._messages.pop(key, None)

    def clear(self) -> None:
        self._states.clear()
        self._messages.clear()

    def snapshot(self) -> dict[CompositeKey, FieldStatus]:
        return dict(self._states)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, change: StatusChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as exc:
                logger.warning("status listener failed", exc_info=exc)
