from __future__ import annotations

import dataclasses
from typing import NoReturn

import typer
from rich import print

from fieldsync.config import (
    BOOL_KEYS,
    INT_KEYS,
    FieldSyncConfig,
    get_config_path,
    load_config,
    read_config_file,
    write_config_file,
)

_ALLOWED_KEYS = {f.name for f in dataclasses.fields(FieldSyncConfig)}


def _fail(message: str) -> NoReturn:
    print(f"[red]{message}[/red]")
    raise typer.Exit(code=1)


def _parse_update(item: str) -> tuple[str, str]:
    key, sep, value = item.partition("=")
    key = key.strip()
    if not sep or not key:
        _fail(f"Expected key=value, got {item!r}")
    if key not in _ALLOWED_KEYS:
        _fail(f"Unknown config key: {key}")
    return key, value.strip()


def _coerce(key: str, value: str) -> object:
    if key in INT_KEYS:
        try:
            number = int(value)
        except ValueError:
            _fail(f"{key} must be int")
        if number < 0 or (number == 0 and key != "auto_save_delay_ms"):
            _fail(f"{key} must be positive")
        return number
    if key in BOOL_KEYS:
        lowered = value.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        _fail(f"{key} must be boolean")
    return value


def config_cmd(*, updates: list[str]) -> None:
    """Apply ``key=value`` updates to the config file, then print the effective config.

    An empty value removes the key so the default (or env override) applies.
    """

    config_path = get_config_path()
    try:
        config_data = read_config_file(config_path)
    except ValueError as exc:
        _fail(f"{exc}: {config_path}")

    if updates:
        for item in updates:
            key, value = _parse_update(item)
            if value == "":
                config_data.pop(key, None)
                continue
            config_data[key] = _coerce(key, value)
        try:
            write_config_file(config_data, config_path)
        except OSError as exc:
            _fail(f"Failed to write {config_path}: {exc}")
        print(f"[green]Updated {config_path}[/green]")

    print(f"[bold]Config[/bold]: {config_path}")
    for key, value in dataclasses.asdict(load_config(config_path)).items():
        print(f"- {key}: {value}")
