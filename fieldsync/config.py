from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/fieldsync/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "FIELDSYNC_DB",
    "backup_path": "FIELDSYNC_BACKUP_PATH",
    "endpoint": "FIELDSYNC_ENDPOINT",
    "auto_save_delay_ms": "FIELDSYNC_AUTO_SAVE_DELAY_MS",
    "retry_enabled": "FIELDSYNC_RETRY_ENABLED",
    "retry_interval_s": "FIELDSYNC_RETRY_INTERVAL_S",
    "session_timeout_minutes": "FIELDSYNC_SESSION_TIMEOUT_MINUTES",
    "session_check_s": "FIELDSYNC_SESSION_CHECK_S",
    "submit_timeout_s": "FIELDSYNC_SUBMIT_TIMEOUT_S",
    "saved_by": "FIELDSYNC_SAVED_BY",
}

INT_KEYS = {
    "auto_save_delay_ms",
    "retry_interval_s",
    "session_timeout_minutes",
    "session_check_s",
    "submit_timeout_s",
}
BOOL_KEYS = {"retry_enabled"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("FIELDSYNC_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class FieldSyncConfig:
    db_path: str | None = None
    backup_path: str | None = None
    # Without an endpoint, saves stay local and the retry loop has nothing to do.
    endpoint: str | None = None
    auto_save_delay_ms: int = 400
    retry_enabled: bool = True
    retry_interval_s: int = 300
    session_timeout_minutes: int = 30
    session_check_s: int = 60
    submit_timeout_s: int = 10
    saved_by: str | None = None


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> FieldSyncConfig:
    cfg = FieldSyncConfig()
    config_path = get_config_path(path)
    try:
        data = read_config_file(config_path)
    except ValueError as exc:
        warnings.warn(f"Ignoring {config_path}: {exc}", RuntimeWarning, stacklevel=2)
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: FieldSyncConfig, data: dict[str, Any]) -> FieldSyncConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if value is not None and not isinstance(value, str):
            value = str(value)
        setattr(cfg, key, value or None)
    return cfg
