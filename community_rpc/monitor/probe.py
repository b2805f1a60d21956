"""Active health probe for a single backend.

Two sequential calls: ``eth_syncing`` (any object result means the node is
still catching up) then ``eth_blockNumber`` (hex height).  Any failure at
either step makes the backend unhealthy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from community_rpc.config import PROBE_TIMEOUT_SECONDS
from community_rpc.proxy.upstream import UpstreamClient, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    backend: str
    healthy: bool
    block_height: int | None = None
    reason: str | None = None


async def probe_backend(
    upstream: UpstreamClient,
    backend: str,
    timeout: float = PROBE_TIMEOUT_SECONDS,
) -> ProbeResult:
    """Check sync status and block height of *backend*."""
    try:
        syncing = await upstream.call(backend, "eth_syncing", timeout=timeout)
        if isinstance(syncing, dict):
            logger.info("Backend %s is still syncing", backend)
            return ProbeResult(backend, healthy=False, reason="Node is syncing")

        raw_height = await upstream.call(backend, "eth_blockNumber", timeout=timeout)
    except UpstreamError as exc:
        logger.warning("Health check failed for %s: %s", backend, exc.reason)
        return ProbeResult(backend, healthy=False, reason=exc.reason)

    try:
        height = int(raw_height, 16)
    except (TypeError, ValueError):
        logger.warning("Backend %s returned a bad block number: %r", backend, raw_height)
        return ProbeResult(backend, healthy=False, reason=f"Invalid block number: {raw_height!r}")

    logger.debug("Backend %s is at block %d", backend, height)
    return ProbeResult(backend, healthy=True, block_height=height)
