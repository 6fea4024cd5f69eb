from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional


class BackendError(RuntimeError):
    """A single get/set/remove/list call against the store failed."""


class KeyValueBackend(ABC):
    """
    Asynchronous string key-value store.

    Contract
    - `get` returns None for a missing key.
    - A failed `set` must be treated as if nothing was written.
    - Every failure surfaces as `BackendError`.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        ...

    @abstractmethod
    async def list_keys(self) -> List[str]:
        ...

    async def aclose(self) -> None:
        """Release any underlying resources. No-op by default."""
