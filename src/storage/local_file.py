from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from .base import BackendError, KeyValueBackend


DEFAULT_STATE_FILE_ENV = "TAVERN_STATE_FILE"


def _default_state_file() -> Path:
    # Prefer explicit env var, else project-local .cache folder
    base = os.environ.get(DEFAULT_STATE_FILE_ENV)
    if base:
        return Path(base)
    return Path(".cache") / "tavern_save.json"


class LocalFileBackend(KeyValueBackend):
    """
    Development fallback: every key lives in one JSON object on disk.

    - File layout: { key: value, ... } with string values only.
    - A missing file is an empty store; an unreadable or malformed file is a
      `BackendError` (never silently discarded).
    - Writes go to a sibling temp file and are renamed into place.
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else _default_state_file()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as ex:
            raise BackendError(f"Failed to read {self._path}") from ex
        if not isinstance(raw, dict):
            raise BackendError(f"{self._path} does not contain a JSON object")
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
            os.replace(tmp, self._path)
        except OSError as ex:
            raise BackendError(f"Failed to write {self._path}") from ex

    def _set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def _remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    async def get(self, key: str) -> Optional[str]:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def list_keys(self) -> List[str]:
        data = await asyncio.to_thread(self._read)
        return sorted(data)
