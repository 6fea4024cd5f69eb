from __future__ import annotations

import json

import pytest

from storage.base import BackendError
from storage.factory import backend_from_env
from storage.local_file import LocalFileBackend
from storage.memory import InMemoryBackend


@pytest.mark.asyncio
async def test_memory_backend_basic_contract():
    backend = InMemoryBackend()

    assert await backend.get("k") is None
    await backend.set("k", "v")
    await backend.set("a", "1")
    assert await backend.get("k") == "v"
    assert await backend.list_keys() == ["a", "k"]
    await backend.remove("k")
    await backend.remove("k")  # missing key is fine
    assert await backend.get("k") is None


@pytest.mark.asyncio
async def test_memory_backend_enforces_value_size_in_bytes():
    backend = InMemoryBackend(max_value_bytes=4)

    await backend.set("ok", "abcd")
    with pytest.raises(BackendError):
        await backend.set("wide", "ééé")  # 3 chars, 6 bytes
    assert await backend.get("wide") is None


@pytest.mark.asyncio
async def test_memory_backend_fault_injection():
    backend = InMemoryBackend({"k": "v"})
    backend.fail_on.add(("get", "k"))

    with pytest.raises(BackendError):
        await backend.get("k")
    await backend.remove("k")


@pytest.mark.asyncio
async def test_local_file_backend_persists_between_instances(tmp_path):
    path = tmp_path / "nested" / "save.json"
    first = LocalFileBackend(path)

    assert await first.get("x") is None
    assert await first.list_keys() == []
    await first.set("x", '{"a":1}')
    await first.set("y", "ü")

    second = LocalFileBackend(path)
    assert await second.get("x") == '{"a":1}'
    assert await second.get("y") == "ü"
    assert await second.list_keys() == ["x", "y"]

    await second.remove("x")
    assert json.loads(path.read_text(encoding="utf-8")) == {"y": "ü"}


@pytest.mark.asyncio
async def test_local_file_backend_reports_corrupt_file(tmp_path):
    path = tmp_path / "save.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(BackendError):
        await LocalFileBackend(path).get("x")


def test_local_file_backend_path_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TAVERN_STATE_FILE", str(tmp_path / "env.json"))
    assert LocalFileBackend().path == tmp_path / "env.json"


def test_factory_selects_backend(monkeypatch):
    monkeypatch.setenv("TAVERN_STORAGE_BACKEND", "memory")
    assert isinstance(backend_from_env(), InMemoryBackend)
    assert isinstance(backend_from_env("file"), LocalFileBackend)


def test_factory_unknown_backend_raises(monkeypatch):
    monkeypatch.delenv("TAVERN_STORAGE_BACKEND", raising=False)
    with pytest.raises(RuntimeError):
        backend_from_env("redis")


def test_factory_s3_requires_bucket(monkeypatch):
    monkeypatch.delenv("TAVERN_STATE_BUCKET", raising=False)
    with pytest.raises(RuntimeError):
        backend_from_env("s3")


def test_factory_http_requires_url(monkeypatch):
    monkeypatch.delenv("TAVERN_KV_URL", raising=False)
    with pytest.raises(RuntimeError):
        backend_from_env("http")
