from __future__ import annotations

import json

from .kv import FlatStore
from .models import AnyRecord

BACKUP_PREFIX = "form-data-"


def backup_key(data_element: str, category_option_combo: str | None = None) -> str:
    if category_option_combo:
        return f"{BACKUP_PREFIX}{data_element}-{category_option_combo}"
    return f"{BACKUP_PREFIX}{data_element}"


def write_backup(flat: FlatStore, record: AnyRecord) -> str:
    key = backup_key(record.key.data_element, record.key.category_option_combo)
    flat.set(key, json.dumps(record.payload(), ensure_ascii=False))
    return key


def read_backup(
    flat: FlatStore, data_element: str, category_option_combo: str | None = None
) -> dict | None:
    raw = flat.get(backup_key(data_element, category_option_combo))
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def clear_backups(flat: FlatStore) -> int:
    return flat.remove_prefix(BACKUP_PREFIX)
