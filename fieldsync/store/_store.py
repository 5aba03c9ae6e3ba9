from __future__ import annotations

import contextlib
import sqlite3
from collections.abc import Callable, Iterator
from pathlib import Path

from .. import db
from ..errors import StorageError
from ..models import AnyRecord, CompositeKey, now_iso
from . import values as store_values
from .types import RetryState, StoreCounts


@contextlib.contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


class FieldStore:
    """Durable per-device store of field values, one row per composite key."""

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        with _storage_errors("open store"):
            self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
            db.initialize_schema(self.conn)

    def upsert(self, record: AnyRecord) -> None:
        """Write ``record`` under its own ``local_id`` without resolving the composite key."""

        with _storage_errors("upsert"):
            store_values.write_row(self.conn, record)

    def upsert_record(self, record: AnyRecord) -> AnyRecord:
        """Insert or wholly replace the row for ``record.key``; returns the stored version."""

        with _storage_errors("upsert"):
            return store_values.upsert_record(self.conn, record)

    def get(self, local_id: str) -> AnyRecord | None:
        with _storage_errors("get"):
            return store_values.get(self.conn, local_id)

    def get_all(self, predicate: Callable[[AnyRecord], bool] | None = None) -> list[AnyRecord]:
        with _storage_errors("get_all"):
            records = store_values.all_records(self.conn)
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    def find_by_key(self, key: CompositeKey) -> AnyRecord | None:
        with _storage_errors("find_by_key"):
            return store_values.find_by_key(self.conn, key)

    def unsynced(self, *, limit: int | None = None) -> list[AnyRecord]:
        with _storage_errors("unsynced"):
            return store_values.unsynced(self.conn, limit=limit)

    def mark_synced(self, local_id: str, rev: int) -> bool:
        with _storage_errors("mark_synced"):
            return store_values.mark_synced(self.conn, local_id, rev)

    def records_for(self, source: str, period: str) -> list[AnyRecord]:
        with _storage_errors("records_for"):
            return store_values.records_for(self.conn, source, period)

    def delete_for(self, source: str, period: str) -> int:
        with _storage_errors("delete_for"):
            return store_values.delete_for(self.conn, source, period)

    def counts(self) -> StoreCounts:
        with _storage_errors("counts"):
            data = store_values.counts(self.conn)
        return {"total": data["total"], "synced": data["synced"], "unsynced": data["unsynced"]}

    def get_retry_state(self) -> RetryState | None:
        row = self.conn.execute(
            """
            SELECT last_error, last_traceback, last_error_at, last_ok_at,
                   last_attempted, last_succeeded, last_failed
            FROM retry_state WHERE id = 1
            """
        ).fetchone()
        if row is None:
            return None
        return {
            "last_error": row["last_error"],
            "last_traceback": row["last_traceback"],
            "last_error_at": row["last_error_at"],
            "last_ok_at": row["last_ok_at"],
            "last_attempted": int(row["last_attempted"] or 0),
            "last_succeeded": int(row["last_succeeded"] or 0),
            "last_failed": int(row["last_failed"] or 0),
        }

    def set_retry_error(self, error: str, traceback_text: str) -> None:
        self.conn.execute(
            """
            INSERT INTO retry_state(id, last_error, last_traceback, last_error_at)
            VALUES (1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                last_error = excluded.last_error,
                last_traceback = excluded.last_traceback,
                last_error_at = excluded.last_error_at
            """,
            (error, traceback_text, now_iso()),
        )
        self.conn.commit()

    def set_retry_ok(self, *, attempted: int, succeeded: int, failed: int) -> None:
        self.conn.execute(
            """
            INSERT INTO retry_state(id, last_ok_at, last_attempted, last_succeeded, last_failed)
            VALUES (1, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                last_ok_at = excluded.last_ok_at,
                last_attempted = excluded.last_attempted,
                last_succeeded = excluded.last_succeeded,
                last_failed = excluded.last_failed
            """,
            (now_iso(), attempted, succeeded, failed),
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()
