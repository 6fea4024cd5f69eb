from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
from urllib.parse import quote

import httpx

from .base import BackendError, KeyValueBackend


ENV_KV_URL = "TAVERN_KV_URL"
ENV_KV_TOKEN = "TAVERN_KV_TOKEN"

_RETRY_STATUSES = (429, 500, 502, 503, 504)


class RequestThrottle:
    """Lets at most `max_calls` requests start within any `per_seconds` span.

    Waiters queue on a lock, so requests are released in arrival order.
    """

    def __init__(
        self,
        max_calls: int,
        *,
        per_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_calls <= 0 or per_seconds <= 0:
            raise ValueError("max_calls and per_seconds must be positive")
        self._max_calls = max_calls
        self._per_seconds = per_seconds
        self._clock = clock
        self._sleep = sleep
        self._started: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._started and now - self._started[0] >= self._per_seconds:
                    self._started.popleft()
                if len(self._started) < self._max_calls:
                    self._started.append(now)
                    return
                await self._sleep(self._started[0] + self._per_seconds - now)


class HttpKeyValueBackend(KeyValueBackend):
    """
    Client for a REST key-value service.

    Endpoints (relative to `base_url`)
    - GET    /keys/{key}  -> 200 with the raw value, 404 when missing
    - PUT    /keys/{key}  -> 2xx; body is the raw value
    - DELETE /keys/{key}  -> 2xx, 404 tolerated
    - GET    /keys        -> JSON list of keys, or {"keys": [...]}

    Notes
    - Transient failures (transport errors, 429, 5xx) are retried with
      exponential backoff, honoring a numeric `Retry-After` header.
    - A local request throttle keeps bursts (e.g. many chunk writes)
      under `max_per_second`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 15.0,
        max_per_second: int = 10,
        max_attempts: int = 5,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        headers: Dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )
        self._throttle = RequestThrottle(max_per_second, per_seconds=1.0)
        self._max_attempts = max_attempts
        self._sleep = sleep

    @classmethod
    def from_env(cls) -> "HttpKeyValueBackend":
        url = os.environ.get(ENV_KV_URL)
        if not url:
            raise RuntimeError(
                f"Missing required environment variables for HTTP backend: {ENV_KV_URL}"
            )
        return cls(url, token=os.environ.get(ENV_KV_TOKEN) or None)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpKeyValueBackend":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Public API ---------------
    async def get(self, key: str) -> Optional[str]:
        resp = await self._request("GET", _key_path(key), allow={404})
        if resp.status_code == 404:
            return None
        return resp.text

    async def set(self, key: str, value: str) -> None:
        await self._request(
            "PUT",
            _key_path(key),
            content=value.encode("utf-8"),
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )

    async def remove(self, key: str) -> None:
        await self._request("DELETE", _key_path(key), allow={404})

    async def list_keys(self) -> List[str]:
        resp = await self._request("GET", "/keys")
        try:
            body = resp.json()
        except ValueError as exc:
            raise BackendError("Failed to parse key listing JSON") from exc
        if isinstance(body, dict):
            body = body.get("keys")
        if not isinstance(body, list) or not all(isinstance(k, str) for k in body):
            raise BackendError("Malformed key listing from key-value service")
        return sorted(body)

    # --------------- Internal ---------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow: frozenset[int] | set[int] = frozenset(),
        **kwargs: Any,
    ) -> httpx.Response:
        await self._throttle.wait()

        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = await self._client.request(method, path, **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.is_success or resp.status_code in allow:
                    return resp

                if resp.status_code in _RETRY_STATUSES:
                    delay = _retry_after(resp)
                    await self._sleep(min(delay if delay is not None else backoff, 10.0))
                    backoff = min(backoff * 2, 8.0)
                    attempt += 1
                    continue

                # Non-retryable HTTP error
                raise BackendError(
                    f"HTTP {resp.status_code} for {method} {path}: {resp.text[:200]}"
                )

            # Transport error path
            attempt += 1
            await self._sleep(backoff)
            backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            raise BackendError(f"{method} {path} failed after retries") from last_exc
        raise BackendError(f"{method} {path} failed after retries")


def _key_path(key: str) -> str:
    return f"/keys/{quote(key, safe='')}"


def _retry_after(resp: httpx.Response) -> Optional[float]:
    raw = resp.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None
