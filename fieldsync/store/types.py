from __future__ import annotations

from typing import TypedDict


class RetryState(TypedDict):
    last_error: str | None
    last_traceback: str | None
    last_error_at: str | None
    last_ok_at: str | None
    last_attempted: int
    last_succeeded: int
    last_failed: int


class StoreCounts(TypedDict):
    total: int
    synced: int
    unsynced: int
