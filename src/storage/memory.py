from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

from .base import BackendError, KeyValueBackend


DEFAULT_MAX_VALUE_BYTES = 4096


class InMemoryBackend(KeyValueBackend):
    """
    Dict-backed store mirroring the limits of the hosted cloud storage.

    - Values larger than `max_value_bytes` (UTF-8) are rejected, like the real
      per-key ceiling. Pass None to disable the check.
    - `fail_on` holds `(op, key)` pairs ("get", "set" or "remove") that raise
      `BackendError`, which lets callers exercise mid-sequence failures.
    """

    def __init__(
        self,
        initial: Optional[Dict[str, str]] = None,
        *,
        max_value_bytes: Optional[int] = DEFAULT_MAX_VALUE_BYTES,
    ) -> None:
        self.data: Dict[str, str] = dict(initial or {})
        self.max_value_bytes = max_value_bytes
        self.fail_on: Set[Tuple[str, str]] = set()
        self.calls: List[Tuple[str, str]] = []

    def _check(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if (op, key) in self.fail_on:
            raise BackendError(f"{op} failed for key {key!r}")

    async def get(self, key: str) -> Optional[str]:
        self._check("get", key)
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._check("set", key)
        if not isinstance(value, str):
            raise BackendError(f"value for {key!r} must be a string")
        if self.max_value_bytes is not None:
            size = len(value.encode("utf-8"))
            if size > self.max_value_bytes:
                raise BackendError(
                    f"value for {key!r} is {size} bytes; limit is {self.max_value_bytes}"
                )
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self._check("remove", key)
        self.data.pop(key, None)

    async def list_keys(self) -> List[str]:
        self.calls.append(("list_keys", ""))
        return sorted(self.data)
