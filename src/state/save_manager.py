from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from storage.base import BackendError, KeyValueBackend

from .migrations import MigrationError, migrate
from .models import (
    CURRENT_VERSION,
    GameState,
    StateDecodeError,
    deserialize,
    encode_tree,
    serialize,
)


logger = logging.getLogger(__name__)

# Environment variable names for convenience configuration
ENV_PREFIX = "TAVERN_SAVE_PREFIX"
ENV_CHUNK_SIZE = "TAVERN_SAVE_CHUNK_SIZE"
ENV_VERSION = "TAVERN_SAVE_VERSION"

DEFAULT_KEY_PREFIX = "gameState_"
# Safety margin below the 4KB per-key ceiling of the cloud store
DEFAULT_CHUNK_SIZE = 3500


class CorruptSaveError(ValueError):
    """Metadata points at data that is missing or cannot be decoded."""


class LoadStatus(str, Enum):
    LOADED = "loaded"
    NO_SAVE = "no_save"
    CORRUPT = "corrupt"
    UNSUPPORTED_VERSION = "unsupported_version"
    BACKEND_ERROR = "backend_error"


@dataclass
class LoadResult:
    status: LoadStatus
    state: Optional[GameState] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.LOADED


@dataclass(frozen=True)
class SaveConfig:
    key_prefix: str = DEFAULT_KEY_PREFIX
    chunk_size: int = DEFAULT_CHUNK_SIZE
    current_version: str = CURRENT_VERSION

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if not self.current_version:
            raise ValueError("current_version is required")

    @classmethod
    def from_env(cls) -> "SaveConfig":
        raw_size = os.environ.get(ENV_CHUNK_SIZE)
        try:
            chunk_size = int(raw_size) if raw_size else DEFAULT_CHUNK_SIZE
        except ValueError as ex:
            raise RuntimeError(f"{ENV_CHUNK_SIZE} must be an integer, got {raw_size!r}") from ex
        return cls(
            key_prefix=os.environ.get(ENV_PREFIX) or DEFAULT_KEY_PREFIX,
            chunk_size=chunk_size,
            current_version=os.environ.get(ENV_VERSION) or CURRENT_VERSION,
        )


class SaveMeta(BaseModel):
    """Layout record written after the data keys; never handed to callers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str
    chunks: int = Field(..., ge=1, description="1 means stored unsplit under the main key")
    saved_at: int = Field(..., description="Epoch milliseconds")


def split_into_chunks(text: str, size: int) -> List[str]:
    """Fixed-size slices of `text` in order. Empty text yields no chunks."""
    if size <= 0:
        raise ValueError("size must be > 0")
    return [text[i:i + size] for i in range(0, len(text), size)]


def join_chunks(chunks: Sequence[str]) -> str:
    return "".join(chunks)


class SaveManager:
    """
    Persists a GameState through a size-limited key-value backend.

    Key layout under `config.key_prefix`
    - `main`:      whole encoded state when it fits below `chunk_size` bytes
    - `chunk_{i}`: i-th `chunk_size`-character slice otherwise
    - `meta`:      `{version, chunks, savedAt}`, written last, read first

    `save`, `load` and `clear` never raise; failures come back as False, None
    or a `LoadResult` status. Calls are sequential and unguarded, so callers
    must not overlap operations on the same prefix.
    """

    def __init__(self, backend: KeyValueBackend, config: Optional[SaveConfig] = None) -> None:
        self._backend = backend
        self._config = config or SaveConfig()

    @property
    def config(self) -> SaveConfig:
        return self._config

    @property
    def main_key(self) -> str:
        return f"{self._config.key_prefix}main"

    @property
    def meta_key(self) -> str:
        return f"{self._config.key_prefix}meta"

    def chunk_key(self, index: int) -> str:
        return f"{self._config.key_prefix}chunk_{index}"

    def _data_keys(self, chunks: int) -> List[str]:
        if chunks > 1:
            return [self.chunk_key(i) for i in range(chunks)]
        return [self.main_key]

    # -------- Save --------
    async def save(self, state: GameState) -> bool:
        # Payload and meta carry the same writer version
        payload = encode_tree({**serialize(state), "version": self._config.current_version})
        size = len(payload.encode("utf-8"))
        logger.info("Saving state: %d bytes (threshold %d)", size, self._config.chunk_size)

        try:
            if size < self._config.chunk_size:
                await self._backend.set(self.main_key, payload)
                chunks = 1
            else:
                parts = split_into_chunks(payload, self._config.chunk_size)
                # Every chunk must land before meta is touched
                for i, part in enumerate(parts):
                    await self._backend.set(self.chunk_key(i), part)
                chunks = len(parts)
            await self._write_meta(chunks)
        except BackendError:
            logger.exception("Save aborted; metadata left unchanged")
            return False

        logger.info("Save complete (%d chunk%s)", chunks, "" if chunks == 1 else "s")
        return True

    async def _write_meta(self, chunks: int) -> None:
        meta = SaveMeta(
            version=self._config.current_version,
            chunks=chunks,
            saved_at=int(time.time() * 1000),
        )
        await self._backend.set(self.meta_key, meta.model_dump_json(by_alias=True))

    # -------- Load --------
    async def load(self) -> Optional[GameState]:
        """Return the saved state, or None when there is no usable save."""
        return (await self.load_detailed()).state

    async def load_detailed(self) -> LoadResult:
        try:
            meta = await self._read_meta()
            if meta is None:
                logger.info("No saved data")
                return LoadResult(LoadStatus.NO_SAVE)
            payload = await self._read_payload(meta.chunks)
            state = self._decode(payload)
        except BackendError as ex:
            logger.exception("Load failed: backend error")
            return LoadResult(LoadStatus.BACKEND_ERROR, detail=str(ex))
        except CorruptSaveError as ex:
            logger.warning("Load failed: corrupt save: %s", ex)
            return LoadResult(LoadStatus.CORRUPT, detail=str(ex))
        except MigrationError as ex:
            logger.warning("Load failed: %s", ex)
            return LoadResult(LoadStatus.UNSUPPORTED_VERSION, detail=str(ex))

        logger.info("Load complete (version %s)", state.version)
        return LoadResult(LoadStatus.LOADED, state=state)

    async def _read_meta(self) -> Optional[SaveMeta]:
        raw = await self._backend.get(self.meta_key)
        if raw is None:
            return None
        try:
            return SaveMeta.model_validate_json(raw)
        except ValidationError as ex:
            raise CorruptSaveError("metadata record is malformed") from ex

    async def _read_payload(self, chunks: int) -> str:
        if chunks == 1:
            payload = await self._backend.get(self.main_key)
            if payload is None:
                raise CorruptSaveError(f"{self.main_key} is missing")
            return payload

        parts: List[str] = []
        for i in range(chunks):
            part = await self._backend.get(self.chunk_key(i))
            if part is None:
                raise CorruptSaveError(f"chunk {i} of {chunks} is missing")
            parts.append(part)
        return join_chunks(parts)

    def _decode(self, payload: str) -> GameState:
        try:
            tree = json.loads(payload)
        except ValueError as ex:
            raise CorruptSaveError("payload is not valid JSON") from ex
        if not isinstance(tree, dict):
            raise CorruptSaveError("payload is not a JSON object")
        stored_version = tree.get("version")
        if stored_version is not None and not isinstance(stored_version, str):
            raise CorruptSaveError(f"version field is not a string: {stored_version!r}")

        logger.info(
            "Save data version %s, current version %s",
            tree.get("version") or "(none)",
            self._config.current_version,
        )
        tree = migrate(tree, self._config.current_version)
        try:
            return deserialize(tree)
        except StateDecodeError as ex:
            raise CorruptSaveError(str(ex)) from ex

    # -------- Clear --------
    async def clear(self) -> bool:
        try:
            try:
                meta = await self._read_meta()
            except CorruptSaveError:
                logger.warning("Metadata unreadable; clearing every data key under prefix")
                keys = await self._prefixed_keys()
                data_keys = [k for k in keys if k != self.meta_key]
            else:
                if meta is None:
                    logger.info("Nothing to clear")
                    return True
                data_keys = self._data_keys(meta.chunks)

            for key in data_keys:
                await self._backend.remove(key)
            # Meta goes last so an interrupted clear reads as corrupt, not as a save
            await self._backend.remove(self.meta_key)
        except BackendError:
            logger.exception("Clear failed")
            return False

        logger.info("Cleared %d data key(s)", len(data_keys))
        return True

    # -------- Diagnostics --------
    async def orphaned_keys(self) -> List[str]:
        """Keys under the prefix that the current metadata does not reference.

        These are stale chunks left by an aborted or shrinking save. Raises
        `BackendError` if the listing itself fails.
        """
        keys = await self._prefixed_keys()
        try:
            meta = await self._read_meta()
        except CorruptSaveError:
            meta = None
        if meta is None:
            return [k for k in keys if k != self.meta_key]
        referenced = set(self._data_keys(meta.chunks))
        referenced.add(self.meta_key)
        return [k for k in keys if k not in referenced]

    async def _prefixed_keys(self) -> List[str]:
        keys = await self._backend.list_keys()
        return sorted(k for k in keys if k.startswith(self._config.key_prefix))
