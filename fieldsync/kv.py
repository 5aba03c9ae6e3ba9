from __future__ import annotations

import json
import os
from pathlib import Path

from .errors import StorageError

DEFAULT_KV_PATH = Path.home() / ".fieldsync" / "local-storage.json"


class FlatStore:
    """String key/value entries persisted to one JSON file.

    Every write rewrites the file, so entries survive a restart the moment the
    call returns. It shares nothing with the SQLite store.
    """

    def __init__(self, path: Path | str = DEFAULT_KV_PATH) -> None:
        self.path = Path(path).expanduser()
        self._entries = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"read {self.path} failed: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"invalid flat store json in {self.path}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"flat store {self.path} must hold an object")
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(self._entries, ensure_ascii=False, indent=2) + "\n",
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"write {self.path} failed: {exc}") from exc

    def get(self, key: str) -> str | None:
        return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        previous = self._entries.get(key)
        self._entries[key] = value
        try:
            self._flush()
        except StorageError:
            if previous is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = previous
            raise

    def remove(self, key: str) -> bool:
        if key not in self._entries:
            return False
        previous = self._entries.pop(key)
        try:
            self._flush()
        except StorageError:
            self._entries[key] = previous
            raise
        return True

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._entries if key.startswith(prefix))

    def remove_prefix(self, prefix: str) -> int:
        doomed = self.keys(prefix)
        if not doomed:
            return 0
        removed = {key: self._entries.pop(key) for key in doomed}
        try:
            self._flush()
        except StorageError:
            self._entries.update(removed)
            raise
        return len(doomed)
