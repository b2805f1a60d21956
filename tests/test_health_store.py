"""Tests for the health store: down markers, metadata, snapshot, fail-open."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from community_rpc.models import HealthSnapshot
from community_rpc.resilience.circuit_breaker import CircuitBreaker
from community_rpc.storage.health_store import SNAPSHOT_KEY, HealthStore

URL = "https://a.example/rpc"


def _broken_kv() -> AsyncMock:
    kv = AsyncMock()
    kv.get.side_effect = ConnectionError("store down")
    kv.put.side_effect = ConnectionError("store down")
    kv.delete.side_effect = ConnectionError("store down")
    return kv


class TestDownMarkers:
    @pytest.mark.asyncio
    async def test_mark_down_records_reason_and_window(self, store, clock):
        await store.mark_down(URL, "HTTP 500", 300)
        marker = await store.get_down(URL)
        assert marker.reason == "HTTP 500"
        assert marker.since == clock.now
        assert marker.expires_at == clock.now + 300

    @pytest.mark.asyncio
    async def test_cooldown_expiry(self, store, clock):
        start = clock.now
        await store.mark_down(URL, "HTTP 500", 300)
        for t in (1, 150, 299.9):
            clock.now = start + t
            assert await store.is_down(URL), t
        for t in (300, 301, 10_000):
            clock.now = start + t
            assert not await store.is_down(URL), t

    @pytest.mark.asyncio
    async def test_marker_expiry_checked_even_if_store_keeps_key(self, clock):
        # A store that never expires anything
        kv = AsyncMock()
        kv.get.return_value = json.dumps({"reason": "x", "since": clock.now, "expires_at": clock.now + 10})
        store = HealthStore(kv, clock=clock)
        assert await store.is_down(URL)
        clock.advance(10)
        assert not await store.is_down(URL)

    @pytest.mark.asyncio
    async def test_clear_down(self, store):
        await store.mark_down(URL, "HTTP 500", 300)
        await store.clear_down(URL)
        assert await store.get_down(URL) is None

    @pytest.mark.asyncio
    async def test_down_backends_subset(self, store, backends):
        await store.mark_down(backends[1], "boom", 300)
        assert await store.down_backends(backends) == {backends[1]}

    @pytest.mark.asyncio
    async def test_malformed_marker_is_ignored(self, store, kv):
        await kv.put("down:" + URL, "not json at all")
        assert await store.get_down(URL) is None
        await kv.put("down:" + URL, json.dumps({"unexpected": True}))
        assert await store.get_down(URL) is None


class TestSnapshotInvalidation:
    @pytest.mark.asyncio
    async def test_mark_down_invalidates_snapshot(self, store, kv):
        await store.save_snapshot(HealthSnapshot(timestamp="2024-01-01T00:00:00Z"), 300)
        await store.mark_down(URL, "boom", 300)
        assert await kv.get(SNAPSHOT_KEY) is None

    @pytest.mark.asyncio
    async def test_clear_down_invalidates_snapshot(self, store, kv):
        await store.mark_down(URL, "boom", 300)
        await store.save_snapshot(HealthSnapshot(timestamp="2024-01-01T00:00:00Z"), 300)
        await store.clear_down(URL)
        assert await store.load_snapshot() is None

    @pytest.mark.asyncio
    async def test_snapshot_round_trip_and_ttl(self, store, clock):
        snap = HealthSnapshot(timestamp="2024-01-01T00:00:00Z")
        await store.save_snapshot(snap, 300)
        assert await store.load_snapshot() == snap
        clock.advance(300)
        assert await store.load_snapshot() is None


class TestMetadata:
    @pytest.mark.asyncio
    async def test_record_of_unknown_backend(self, store):
        record = await store.get_record(URL)
        assert record.down is False
        assert record.block_height is None
        assert record.last_checked_at is None
        assert record.validator_address is None

    @pytest.mark.asyncio
    async def test_metadata_independent_of_down_state(self, store):
        await store.mark_down(URL, "syncing", 300)
        await store.set_block_height(URL, 1234)
        stamp = await store.touch_last_checked(URL)
        record = await store.get_record(URL)
        assert record.down is True
        assert record.down_reason == "syncing"
        assert record.block_height == 1234
        assert record.last_checked_at == stamp
        assert stamp.endswith("Z")

    @pytest.mark.asyncio
    async def test_validator_none_is_distinct_from_unset(self, store):
        assert await store.load_validator_address(URL) is None
        await store.set_validator_address(URL, None, 86_400)
        entry = await store.load_validator_address(URL)
        assert entry is not None
        assert entry.address is None

    @pytest.mark.asyncio
    async def test_validator_address_expires(self, store, clock):
        await store.set_validator_address(URL, "0xabc", 86_400)
        assert (await store.get_record(URL)).validator_address == "0xabc"
        clock.advance(86_400)
        assert (await store.get_record(URL)).validator_address is None


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_reads_fail_open(self, clock):
        store = HealthStore(_broken_kv(), clock=clock)
        assert await store.get_down(URL) is None
        assert await store.down_backends([URL]) == set()
        assert await store.load_snapshot() is None

    @pytest.mark.asyncio
    async def test_writes_report_false(self, clock):
        store = HealthStore(_broken_kv(), clock=clock)
        assert await store.mark_down(URL, "x", 300) is False
        assert await store.clear_down(URL) is False
        assert await store.set_block_height(URL, 1) is False

    @pytest.mark.asyncio
    async def test_circuit_opens_and_skips_store(self, clock):
        kv = _broken_kv()
        breaker = CircuitBreaker("test", failure_threshold=3, recovery_timeout=30, clock=clock)
        store = HealthStore(kv, circuit_breaker=breaker, clock=clock)
        for _ in range(3):
            await store.get_down(URL)
        assert kv.get.await_count == 3
        await store.get_down(URL)
        assert kv.get.await_count == 3

        clock.advance(30)
        kv.get.side_effect = None
        kv.get.return_value = None
        assert await store.get_down(URL) is None
        assert kv.get.await_count == 4
        assert breaker.allow_request()
