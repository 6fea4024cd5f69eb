from __future__ import annotations

import os
from typing import Optional

from .base import KeyValueBackend
from .local_file import LocalFileBackend
from .memory import InMemoryBackend


ENV_BACKEND = "TAVERN_STORAGE_BACKEND"
DEFAULT_BACKEND = "file"

BACKENDS = ("memory", "file", "s3", "http")


def backend_from_env(name: Optional[str] = None) -> KeyValueBackend:
    """Build the backend named by `name` or `TAVERN_STORAGE_BACKEND`.

    Which store is used is purely configuration; the save manager only sees
    the `KeyValueBackend` contract.
    """
    kind = (name or os.environ.get(ENV_BACKEND) or DEFAULT_BACKEND).strip().lower()
    if kind == "memory":
        return InMemoryBackend()
    if kind == "file":
        return LocalFileBackend()
    if kind == "s3":
        # Imported lazily so boto3 is only loaded when actually selected
        from .s3 import S3Backend

        return S3Backend.from_env()
    if kind == "http":
        from .http_kv import HttpKeyValueBackend

        return HttpKeyValueBackend.from_env()
    raise RuntimeError(
        f"Unknown storage backend {kind!r}; expected one of: {', '.join(BACKENDS)}"
    )
