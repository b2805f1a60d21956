"""Scheduled health checker for every registered backend.

A probe cycle:
1. Refresh validator addresses from static content (best effort)
2. Probe every backend of every network, at most ``concurrency`` at a time
3. Mark failing backends down, clear recovered ones, record metadata
4. Rebuild the aggregate snapshot and purge the status page from the edge cache
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from community_rpc.config import (
    DEFAULT_COOLDOWN_SECONDS,
    PROBE_CONCURRENCY,
    PROBE_TIMEOUT_SECONDS,
    SNAPSHOT_TTL_SECONDS,
    VALIDATOR_TTL_SECONDS,
)
from community_rpc.models import (
    BackendInfo,
    HealthSnapshot,
    NetworkHealth,
    UnhealthyBackendInfo,
)
from community_rpc.monitor.probe import ProbeResult, probe_backend
from community_rpc.proxy.upstream import UpstreamClient
from community_rpc.registry import NetworkRegistry
from community_rpc.storage.edge_cache import EdgeCache
from community_rpc.storage.health_store import HealthStore
from community_rpc.storage.static_content import StaticContentStore

logger = logging.getLogger(__name__)

STATUS_CACHE_KEY = "status:/"


@dataclass(frozen=True)
class CheckOutcome:
    network: str
    backend: str
    healthy: bool
    was_down: bool
    reason: str | None = None


class HealthMonitor:
    """Probes the registry and maintains the health snapshot."""

    def __init__(
        self,
        registry: NetworkRegistry,
        store: HealthStore,
        upstream: UpstreamClient,
        edge_cache: EdgeCache | None = None,
        static_content: StaticContentStore | None = None,
        *,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        concurrency: int = PROBE_CONCURRENCY,
        snapshot_ttl: int = SNAPSHOT_TTL_SECONDS,
        validator_ttl: int = VALIDATOR_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.store = store
        self.upstream = upstream
        self.edge_cache = edge_cache
        self.static_content = static_content
        self.cooldown_seconds = cooldown_seconds
        self.probe_timeout = probe_timeout
        self.concurrency = concurrency
        self.snapshot_ttl = snapshot_ttl
        self.validator_ttl = validator_ttl
        self._clock = clock

    # -- probing --------------------------------------------------------------

    async def run_probe_cycle(self) -> list[CheckOutcome]:
        """Probe every backend, update the store, then refresh the snapshot."""
        await self.refresh_validator_addresses()

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(network: str, backend: str) -> CheckOutcome:
            async with semaphore:
                return await self.check_backend(network, backend)

        outcomes = await asyncio.gather(
            *(
                bounded(network, backend)
                for network, backends in self.registry.items()
                for backend in backends
            )
        )

        healthy = sum(1 for o in outcomes if o.healthy)
        logger.info("Health check summary: %d/%d backends are healthy", healthy, len(outcomes))
        for o in outcomes:
            if not o.healthy:
                logger.info("- %s: %s (%s)", o.network, o.backend, o.reason)

        await self.get_snapshot(force_refresh=True)
        await self._purge_edge_cache()
        return list(outcomes)

    async def check_backend(self, network: str, backend: str) -> CheckOutcome:
        """Probe one backend and apply the result to the health store."""
        marker = await self.store.get_down(backend)
        result: ProbeResult = await probe_backend(self.upstream, backend, self.probe_timeout)

        await self.store.touch_last_checked(backend)
        if result.block_height is not None:
            await self.store.set_block_height(backend, result.block_height)

        if marker is not None:
            if result.healthy:
                logger.info("Backend %s has recovered", backend)
                await self.store.clear_down(backend)
            elif result.reason != marker.reason:
                await self.store.mark_down(backend, result.reason or "Failed active health check", self.cooldown_seconds)
            else:
                logger.info("Backend %s is still unhealthy", backend)
        elif not result.healthy:
            logger.error("Active check: backend %s marked unhealthy", backend)
            await self.store.mark_down(backend, result.reason or "Failed active health check", self.cooldown_seconds)

        return CheckOutcome(
            network=network,
            backend=backend,
            healthy=result.healthy,
            was_down=marker is not None,
            reason=result.reason,
        )

    # -- validator enrichment -------------------------------------------------

    async def refresh_validator_addresses(self) -> None:
        """Copy validator addresses from static content into the health store.

        Networks whose address map cannot be read get ``None`` for every
        backend so stale identities do not linger.
        """
        for network, backends in self.registry.items():
            addresses = await self._read_validator_map(network)
            if addresses is None:
                logger.warning("No validator addresses for %s, falling back to null", network)
                addresses = {backend: None for backend in backends}

            updated = 0
            for url, address in addresses.items():
                current = await self.store.load_validator_address(url)
                if current is not None and current.address == address:
                    continue
                if await self.store.set_validator_address(url, address, self.validator_ttl):
                    updated += 1
            logger.info("Updated %d validator addresses for %s", updated, network)

    async def _read_validator_map(self, network: str) -> dict[str, str | None] | None:
        if self.static_content is None:
            return None
        key = f"{network}/validator-addresses.json"
        try:
            content = await self.static_content.get(key)
            if content is None:
                logger.warning("No static content at %s", key)
                return None
            data = json.loads(content)
        except Exception as exc:
            logger.warning("Could not read %s: %s", key, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring %s: expected an object", key)
            return None
        return {str(url): (str(addr) if addr else None) for url, addr in data.items()}

    # -- snapshot -------------------------------------------------------------

    async def build_snapshot(self) -> HealthSnapshot:
        """Assemble a fresh snapshot from the health store."""
        timestamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        snapshot = HealthSnapshot(timestamp=timestamp.isoformat().replace("+00:00", "Z"))
        for network, backends in self.registry.items():
            records = await asyncio.gather(*(self.store.get_record(b) for b in backends))
            health = NetworkHealth()
            for record in records:
                info = dict(
                    url=record.url,
                    block_height=record.block_height,
                    last_checked=record.last_checked_at,
                    validator_address=record.validator_address,
                )
                if record.down:
                    health.unhealthy.append(UnhealthyBackendInfo(**info, reason=record.down_reason or ""))
                else:
                    health.healthy.append(BackendInfo(**info))
            snapshot.networks[network] = health
        return snapshot

    async def get_snapshot(self, force_refresh: bool = False) -> HealthSnapshot:
        """Return the cached snapshot, building and caching one if needed."""
        if not force_refresh:
            cached = await self.store.load_snapshot()
            if cached is not None:
                return cached
        snapshot = await self.build_snapshot()
        await self.store.save_snapshot(snapshot, self.snapshot_ttl)
        return snapshot

    async def _purge_edge_cache(self) -> None:
        if self.edge_cache is None:
            return
        try:
            deleted = await self.edge_cache.delete(STATUS_CACHE_KEY)
        except Exception as exc:
            logger.warning("Error purging edge cache: %s", exc)
            return
        if deleted:
            logger.info("Purged edge cache for status page")
