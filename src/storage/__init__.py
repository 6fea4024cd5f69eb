"""
Key-value backends the save manager persists through.

Modules:
- base: the async get/set/remove/list_keys contract and `BackendError`
- memory: dict-backed store with the cloud per-key size ceiling
- local_file: JSON-file development fallback
- s3: boto3-backed store, one object per key
- http_kv: httpx client for a REST key-value service
- factory: backend selection from the environment
"""

from .base import BackendError, KeyValueBackend
from .factory import backend_from_env
from .local_file import LocalFileBackend
from .memory import InMemoryBackend

__all__ = [
    "BackendError",
    "KeyValueBackend",
    "InMemoryBackend",
    "LocalFileBackend",
    "backend_from_env",
]
