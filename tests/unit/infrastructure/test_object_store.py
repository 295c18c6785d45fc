"""Unit tests for LocalObjectStore."""

import hashlib

import pytest

from refstore.infrastructure.storage.object_store import LocalObjectStore


@pytest.fixture
def store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(str(tmp_path))


class TestLocalObjectStore:
    @pytest.mark.asyncio
    async def test_put_returns_md5_of_written_bytes(self, store: LocalObjectStore):
        md5 = await store.put("org/p1/1.0/p1.json", b"{}", "application/json")
        assert md5 == hashlib.md5(b"{}").hexdigest()
        assert await store.get("org/p1/1.0/p1.json") == b"{}"
        assert await store.exists("org/p1/1.0/p1.json")

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store: LocalObjectStore):
        await store.put("a/b", b"one", "text/plain")
        await store.put("a/b", b"two", "text/plain")
        assert await store.get("a/b") == b"two"

    @pytest.mark.asyncio
    async def test_missing_key(self, store: LocalObjectStore):
        assert not await store.exists("nope")
        with pytest.raises(FileNotFoundError):
            await store.get("nope")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["../escape", "/abs/path", "a//b", "", "a/../../b"])
    async def test_rejects_keys_outside_base(self, store: LocalObjectStore, key):
        with pytest.raises(ValueError):
            await store.put(key, b"x", "text/plain")
