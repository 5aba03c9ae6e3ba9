from __future__ import annotations

import sqlite3
from dataclasses import replace
from typing import Any

from .. import db
from ..models import AnyRecord, CompositeKey, RecordPayload, now_iso, record_from_row

_COLUMNS = (
    "local_id",
    "kind",
    "source",
    "period",
    "data_element",
    "category_option_combo",
    "attribute_option_combo",
    "value",
    "data_json",
    "comment",
    "followup",
    "saved_by",
    "created_at",
    "last_updated_at",
    "rev",
    "synced",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM field_values"
_KEY_WHERE = (
    "source = ? AND period = ? AND data_element = ? "
    "AND category_option_combo = ? AND attribute_option_combo = ?"
)


def _row_values(record: AnyRecord) -> tuple[Any, ...]:
    key = record.key
    if isinstance(record, RecordPayload):
        value = None
        data_json: str | None = db.to_json(record.data)
    else:
        value = record.value
        data_json = None
    return (
        record.local_id,
        record.kind,
        key.source,
        key.period,
        key.data_element,
        key.category_option_combo,
        key.attribute_option_combo,
        value,
        data_json,
        record.comment,
        1 if record.followup else 0,
        record.saved_by,
        record.created_at,
        record.last_updated_at,
        record.rev,
        1 if record.synced else 0,
    )


def _to_record(row: sqlite3.Row) -> AnyRecord:
    return record_from_row(row, data=db.from_json(row["data_json"]))


def write_row(conn: sqlite3.Connection, record: AnyRecord) -> None:
    updates = ", ".join(f"{col} = excluded.{col}" for col in _COLUMNS if col != "local_id")
    placeholders = ", ".join("?" for _ in _COLUMNS)
    conn.execute(
        f"""
        INSERT INTO field_values({", ".join(_COLUMNS)})
        VALUES ({placeholders})
        ON CONFLICT(local_id) DO UPDATE SET {updates}
        """,
        _row_values(record),
    )
    conn.commit()


def find_row_by_key(conn: sqlite3.Connection, key: CompositeKey) -> sqlite3.Row | None:
    return conn.execute(f"{_SELECT} WHERE {_KEY_WHERE}", tuple(key)).fetchone()


def find_by_key(conn: sqlite3.Connection, key: CompositeKey) -> AnyRecord | None:
    row = find_row_by_key(conn, key)
    return _to_record(row) if row is not None else None


def upsert_record(conn: sqlite3.Connection, record: AnyRecord) -> AnyRecord:
    existing = find_row_by_key(conn, record.key)
    stamp = record.last_updated_at or now_iso()
    if existing is None:
        stored = replace(
            record,
            created_at=record.created_at or stamp,
            last_updated_at=stamp,
            rev=1,
        )
    else:
        # Replace the existing row wholesale, keeping its row id so the key stays unique.
        stored = replace(
            record,
            local_id=str(existing["local_id"]),
            created_at=str(existing["created_at"]),
            last_updated_at=max(stamp, str(existing["last_updated_at"])),
            rev=int(existing["rev"] or 0) + 1,
        )
    write_row(conn, stored)
    return stored


def get(conn: sqlite3.Connection, local_id: str) -> AnyRecord | None:
    row = conn.execute(f"{_SELECT} WHERE local_id = ?", (local_id,)).fetchone()
    return _to_record(row) if row is not None else None


def all_records(conn: sqlite3.Connection) -> list[AnyRecord]:
    rows = conn.execute(f"{_SELECT} ORDER BY last_updated_at ASC").fetchall()
    return [_to_record(row) for row in rows]


def unsynced(conn: sqlite3.Connection, *, limit: int | None = None) -> list[AnyRecord]:
    sql = f"{_SELECT} WHERE synced = 0 ORDER BY last_updated_at ASC"
    params: tuple[Any, ...] = ()
    if limit is not None and limit > 0:
        sql += " LIMIT ?"
        params = (limit,)
    return [_to_record(row) for row in conn.execute(sql, params).fetchall()]


def mark_synced(conn: sqlite3.Connection, local_id: str, rev: int) -> bool:
    """Flip ``synced`` for exactly the version that was submitted."""

    cur = conn.execute(
        "UPDATE field_values SET synced = 1 WHERE local_id = ? AND rev = ? AND synced = 0",
        (local_id, rev),
    )
    conn.commit()
    return cur.rowcount > 0


def records_for(conn: sqlite3.Connection, source: str, period: str) -> list[AnyRecord]:
    rows = conn.execute(
        f"{_SELECT} WHERE source = ? AND period = ? ORDER BY data_element, category_option_combo",
        (source, period),
    ).fetchall()
    return [_to_record(row) for row in rows]


def delete_for(conn: sqlite3.Connection, source: str, period: str) -> int:
    cur = conn.execute(
        "DELETE FROM field_values WHERE source = ? AND period = ?",
        (source, period),
    )
    conn.commit()
    return int(cur.rowcount or 0)


def counts(conn: sqlite3.Connection) -> dict[str, int]:
    row = conn.execute(
        """
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(CASE WHEN synced = 1 THEN 1 ELSE 0 END), 0) AS synced
        FROM field_values
        """
    ).fetchone()
    total = int(row["total"] or 0) if row else 0
    synced_count = int(row["synced"] or 0) if row else 0
    return {"total": total, "synced": synced_count, "unsynced": total - synced_count}
