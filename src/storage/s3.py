from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .base import BackendError, KeyValueBackend


# Environment variable names for convenience configuration
ENV_BUCKET = "TAVERN_STATE_BUCKET"
ENV_KEY_PREFIX = "TAVERN_STATE_KEY_PREFIX"

DEFAULT_KEY_PREFIX = "tavern-save/"


@dataclass
class S3Location:
    bucket: str
    prefix: str

    def object_key(self, key: str) -> str:
        return f"{self.prefix}{key}"


def _error_code(e: ClientError) -> Optional[str]:
    return e.response.get("Error", {}).get("Code")


class S3Backend(KeyValueBackend):
    """
    S3-backed key-value store: one object per key under `prefix`.

    Usage
    - Provide a bucket (and optionally a prefix) or build from env.
    - Calls are made with a blocking boto3 client in a worker thread.
    - A missing object reads as None; other S3 errors become `BackendError`.

    Environment variables (optional)
    - `TAVERN_STATE_BUCKET`:     S3 bucket holding the save objects
    - `TAVERN_STATE_KEY_PREFIX`: object key prefix (default "tavern-save/")
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        prefix: str = DEFAULT_KEY_PREFIX,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._loc = S3Location(bucket=bucket, prefix=prefix)

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "S3Backend":
        bucket = os.environ.get(ENV_BUCKET)
        if not bucket:
            raise RuntimeError(
                f"Missing required environment variables for S3 backend: {ENV_BUCKET}"
            )
        prefix = os.environ.get(ENV_KEY_PREFIX) or DEFAULT_KEY_PREFIX
        return cls(bucket=bucket, prefix=prefix)

    # -------- Blocking primitives --------
    def _get(self, key: str) -> Optional[str]:
        try:
            resp = self._s3.get_object(Bucket=self._loc.bucket, Key=self._loc.object_key(key))
        except ClientError as e:
            if _error_code(e) in ("NoSuchKey", "404"):
                return None
            raise BackendError(f"S3 get failed for {key!r}") from e
        except BotoCoreError as e:
            raise BackendError(f"S3 get failed for {key!r}") from e
        try:
            return resp["Body"].read().decode("utf-8")
        except UnicodeDecodeError as e:
            raise BackendError(f"S3 object for {key!r} is not UTF-8 text") from e

    def _set(self, key: str, value: str) -> None:
        try:
            self._s3.put_object(
                Bucket=self._loc.bucket,
                Key=self._loc.object_key(key),
                Body=value.encode("utf-8"),
                ContentType="text/plain; charset=utf-8",
            )
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"S3 put failed for {key!r}") from e

    def _remove(self, key: str) -> None:
        try:
            self._s3.delete_object(Bucket=self._loc.bucket, Key=self._loc.object_key(key))
        except (ClientError, BotoCoreError) as e:
            raise BackendError(f"S3 delete failed for {key!r}") from e

    def _list_keys(self) -> List[str]:
        keys: List[str] = []
        kwargs = {"Bucket": self._loc.bucket, "Prefix": self._loc.prefix}
        try:
            while True:
                resp = self._s3.list_objects_v2(**kwargs)
                for item in resp.get("Contents", []):
                    keys.append(item["Key"][len(self._loc.prefix):])
                if not resp.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = resp["NextContinuationToken"]
        except (ClientError, BotoCoreError) as e:
            raise BackendError("S3 list failed") from e
        return sorted(keys)

    # -------- Async contract --------
    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def list_keys(self) -> List[str]:
        return await asyncio.to_thread(self._list_keys)
