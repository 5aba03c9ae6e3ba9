from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

DEFAULT_DB_PATH = Path.home() / ".fieldsync" / "fieldsync.sqlite"


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS field_values (
            local_id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            source TEXT NOT NULL,
            period TEXT NOT NULL,
            data_element TEXT NOT NULL,
            category_option_combo TEXT NOT NULL DEFAULT '',
            attribute_option_combo TEXT NOT NULL DEFAULT '',
            value TEXT,
            data_json TEXT,
            comment TEXT,
            followup INTEGER NOT NULL DEFAULT 0,
            saved_by TEXT,
            created_at TEXT NOT NULL,
            last_updated_at TEXT NOT NULL,
            rev INTEGER NOT NULL DEFAULT 1,
            synced INTEGER NOT NULL DEFAULT 0
        );
        CREATE UNIQUE INDEX IF NOT EXISTS idx_field_values_key ON field_values(
            source, period, data_element, category_option_combo, attribute_option_combo
        );
        CREATE INDEX IF NOT EXISTS idx_field_values_synced
            ON field_values(synced, last_updated_at);
        CREATE INDEX IF NOT EXISTS idx_field_values_source_period
            ON field_values(source, period);

        CREATE TABLE IF NOT EXISTS retry_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            last_error TEXT,
            last_traceback TEXT,
            last_error_at TEXT,
            last_ok_at TEXT,
            last_attempted INTEGER NOT NULL DEFAULT 0,
            last_succeeded INTEGER NOT NULL DEFAULT 0,
            last_failed INTEGER NOT NULL DEFAULT 0
        );
        """
    )
    conn.commit()


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def from_json(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
