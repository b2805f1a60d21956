"""Tests for backend selection and the healthy-set policy."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from community_rpc.proxy.selector import BackendSelector
from community_rpc.registry import NetworkRegistry


class TestRoundRobin:
    def test_cycles_in_order(self, selector, backends):
        picks = [selector.select(backends) for _ in range(6)]
        assert picks == backends + backends

    def test_skips_excluded(self, selector, backends):
        a, b, c = backends
        assert selector.select(backends, {a}) == b
        assert selector.select(backends, {a}) == c
        assert selector.select(backends, {a}) == b

    def test_exhausted_returns_none(self, selector, backends):
        assert selector.select(backends, set(backends)) is None
        assert selector.select([], set()) is None

    def test_cursor_is_per_instance(self, registry, store, backends):
        first = BackendSelector(registry, store)
        second = BackendSelector(registry, store)
        first.select(backends)
        first.select(backends)
        assert second.select(backends) == backends[0]

    def test_reset(self, selector, backends):
        selector.select(backends)
        selector.reset()
        assert selector.cursor == 0
        assert selector.select(backends) == backends[0]

    @given(
        n=st.integers(min_value=1, max_value=8),
        excluded_idx=st.sets(st.integers(min_value=0, max_value=7)),
        calls=st.integers(min_value=1, max_value=20),
    )
    def test_never_returns_excluded(self, n, excluded_idx, calls):
        candidates = [f"https://n{i}.example/rpc" for i in range(n)]
        excluded = {candidates[i] for i in excluded_idx if i < n}
        sel = BackendSelector(NetworkRegistry({"x": candidates}), store=None)
        for _ in range(calls):
            pick = sel.select(candidates, excluded)
            if len(excluded) == n:
                assert pick is None
            else:
                assert pick in candidates and pick not in excluded

    @given(n=st.integers(min_value=1, max_value=8))
    def test_even_distribution(self, n):
        candidates = [f"https://n{i}.example/rpc" for i in range(n)]
        sel = BackendSelector(NetworkRegistry({"x": candidates}), store=None)
        picks = [sel.select(candidates) for _ in range(n * 5)]
        assert all(picks.count(c) == 5 for c in candidates)


class TestHealthyBackends:
    @pytest.mark.asyncio
    async def test_all_healthy(self, selector, network, backends):
        assert await selector.healthy_backends(network) == backends

    @pytest.mark.asyncio
    async def test_excludes_marked_down(self, selector, store, network, backends):
        await store.mark_down(backends[0], "HTTP 502", 300)
        assert await selector.healthy_backends(network) == backends[1:]

    @pytest.mark.asyncio
    async def test_fail_open_when_all_down(self, selector, store, network, backends):
        for b in backends:
            await store.mark_down(b, "HTTP 502", 300)
        assert await selector.healthy_backends(network) == backends

    @pytest.mark.asyncio
    async def test_reinstated_after_cooldown(self, selector, store, clock, network, backends):
        await store.mark_down(backends[0], "HTTP 502", 300)
        clock.advance(299)
        assert backends[0] not in await selector.healthy_backends(network)
        clock.advance(1)
        assert backends[0] in await selector.healthy_backends(network)

    @pytest.mark.asyncio
    async def test_unknown_network(self, selector):
        with pytest.raises(KeyError):
            await selector.healthy_backends("nope")
