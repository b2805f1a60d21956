"""Backend selection: healthy-set computation and round-robin picking."""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence

from community_rpc.registry import NetworkRegistry
from community_rpc.storage.health_store import HealthStore

logger = logging.getLogger(__name__)


class BackendSelector:
    """Round-robin selector over one network's backends.

    The cursor belongs to the instance and only spreads load within this
    process; it is not persisted.
    """

    def __init__(self, registry: NetworkRegistry, store: HealthStore) -> None:
        self._registry = registry
        self._store = store
        self._cursor = 0

    @property
    def cursor(self) -> int:
        return self._cursor

    def reset(self) -> None:
        self._cursor = 0

    async def healthy_backends(self, network: str) -> list[str]:
        """Backends of *network* without a live down marker, in registry order.

        If every backend is down the full registry is returned.
        """
        backends = list(self._registry.backends(network))
        down = await self._store.down_backends(backends)
        healthy = [b for b in backends if b not in down]
        if not healthy:
            logger.warning(
                "All %d %s backends are marked down, using the full list", len(backends), network
            )
            return backends
        return healthy

    def select(self, candidates: Sequence[str], excluded: Collection[str] = ()) -> str | None:
        """Pick the next candidate not in *excluded*; ``None`` when exhausted."""
        n = len(candidates)
        for offset in range(n):
            backend = candidates[(self._cursor + offset) % n]
            if backend not in excluded:
                self._cursor += offset + 1
                return backend
        return None
