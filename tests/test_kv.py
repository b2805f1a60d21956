"""Tests for the key-value store implementations."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from community_rpc.storage.kv import MemoryKeyValueStore, RedisKeyValueStore


class TestMemoryKeyValueStore:
    @pytest.mark.asyncio
    async def test_put_then_get(self, kv):
        await kv.put("k", "v")
        assert await kv.get("k") == "v"

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self, kv):
        assert await kv.get("nope") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, kv, clock):
        await kv.put("k", "v", ttl_seconds=10)
        clock.advance(9.9)
        assert await kv.get("k") == "v"
        clock.advance(0.1)
        assert await kv.get("k") is None

    @pytest.mark.asyncio
    async def test_zero_ttl_is_already_expired(self, kv):
        await kv.put("k", "v", ttl_seconds=0)
        assert await kv.get("k") is None

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, kv, clock):
        await kv.put("k", "v")
        clock.advance(10**9)
        assert await kv.get("k") == "v"

    @pytest.mark.asyncio
    async def test_delete_missing_is_fine(self, kv):
        await kv.delete("nope")
        await kv.put("k", "v")
        await kv.delete("k")
        assert await kv.get("k") is None

    @pytest.mark.asyncio
    async def test_list_by_prefix_skips_expired(self, kv, clock):
        await kv.put("down:a", "1", ttl_seconds=5)
        await kv.put("down:b", "1")
        await kv.put("lastChecked:a", "1")
        clock.advance(6)
        assert await kv.list("down:") == ["down:b"]

    @pytest.mark.asyncio
    async def test_overwrite_resets_ttl(self, clock):
        kv = MemoryKeyValueStore(clock=clock)
        await kv.put("k", "old", ttl_seconds=5)
        clock.advance(4)
        await kv.put("k", "new", ttl_seconds=5)
        clock.advance(4)
        assert await kv.get("k") == "new"


def _redis_mock(get_val=None, keys=()):
    client = MagicMock()
    client.get = AsyncMock(return_value=get_val)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)

    async def scan_iter(match=None, count=None):
        for key in keys:
            yield key

    client.scan_iter = MagicMock(side_effect=scan_iter)
    return client


class TestRedisKeyValueStore:
    @pytest.mark.asyncio
    async def test_put_passes_ttl_as_ex(self):
        client = _redis_mock()
        kv = RedisKeyValueStore(client)
        await kv.put("down:x", "v", ttl_seconds=300)
        client.set.assert_awaited_once_with("community-rpc:down:x", "v", ex=300)

    @pytest.mark.asyncio
    async def test_get_decodes_bytes(self):
        kv = RedisKeyValueStore(_redis_mock(get_val=b"hello"))
        assert await kv.get("k") == "hello"

    @pytest.mark.asyncio
    async def test_get_passes_str_through(self):
        kv = RedisKeyValueStore(_redis_mock(get_val="hello"))
        assert await kv.get("k") == "hello"

    @pytest.mark.asyncio
    async def test_delete_namespaces_key(self):
        client = _redis_mock()
        await RedisKeyValueStore(client, namespace="ns:").delete("k")
        client.delete.assert_awaited_once_with("ns:k")

    @pytest.mark.asyncio
    async def test_list_strips_namespace(self):
        client = _redis_mock(keys=[b"community-rpc:down:b", "community-rpc:down:a"])
        kv = RedisKeyValueStore(client)
        assert await kv.list("down:") == ["down:a", "down:b"]
        client.scan_iter.assert_called_once_with(match="community-rpc:down:*", count=500)
