"""Service wiring and CLI.

Usage:
    community-rpc proxy --network mainnet --port 8545
    community-rpc monitor --port 8080
    community-rpc check
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from redis import asyncio as redis_asyncio

from community_rpc.config import ProxySettings
from community_rpc.monitor.app import create_status_app
from community_rpc.monitor.checker import HealthMonitor
from community_rpc.proxy.app import create_proxy_app
from community_rpc.proxy.handler import ProxyHandler
from community_rpc.proxy.ratelimit import RedisRateLimiter
from community_rpc.proxy.selector import BackendSelector
from community_rpc.proxy.upstream import UpstreamClient
from community_rpc.registry import NetworkRegistry
from community_rpc.scheduler.health_schedule import HealthCheckScheduler
from community_rpc.storage.edge_cache import MemoryEdgeCache
from community_rpc.storage.health_store import HealthStore
from community_rpc.storage.kv import KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore
from community_rpc.storage.static_content import DirectoryContentStore

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def build_kv_store(settings: ProxySettings):
    """Return ``(store, redis_client)``; the client is ``None`` for memory."""
    if settings.kv_backend == "redis":
        client = redis_asyncio.from_url(settings.redis_url, decode_responses=True)
        return RedisKeyValueStore(client), client
    if settings.kv_backend == "memory":
        logger.info("Using in-process key-value store (state is not shared)")
        return MemoryKeyValueStore(), None
    raise ValueError(f"Unknown kv_backend: {settings.kv_backend!r}")


def build_monitor(
    settings: ProxySettings,
    registry: NetworkRegistry,
    kv: KeyValueStore,
    http: httpx.AsyncClient,
) -> HealthMonitor:
    static_content = None
    if settings.static_content_dir:
        static_content = DirectoryContentStore(Path(settings.static_content_dir))
    return HealthMonitor(
        registry,
        HealthStore(kv),
        UpstreamClient(http, settings.probe_timeout),
        edge_cache=MemoryEdgeCache(),
        static_content=static_content,
        cooldown_seconds=settings.cooldown_seconds,
        probe_timeout=settings.probe_timeout,
        concurrency=settings.probe_concurrency,
        snapshot_ttl=settings.snapshot_ttl,
        validator_ttl=settings.validator_ttl,
    )


def build_proxy_app(network: str, settings: ProxySettings | None = None) -> FastAPI:
    """Wire a proxy for *network* from settings."""
    settings = settings or ProxySettings()
    registry = NetworkRegistry.from_yaml(settings.registry_path)
    if network not in registry:
        raise ValueError(f"Unknown network {network!r}; known: {', '.join(registry.networks)}")

    kv, redis_client = build_kv_store(settings)
    store = HealthStore(kv)
    http = httpx.AsyncClient(timeout=settings.upstream_timeout)

    limiter = None
    if settings.rate_limit_per_minute > 0:
        if redis_client is None:
            logger.warning("Rate limiting needs kv_backend=redis; running without a limiter")
        else:
            limiter = RedisRateLimiter(redis_client, settings.rate_limit_per_minute)

    handler = ProxyHandler(
        network,
        BackendSelector(registry, store),
        store,
        UpstreamClient(http, settings.upstream_timeout),
        limiter=limiter,
        max_retries=settings.max_retries,
        cooldown_seconds=settings.cooldown_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Proxy for %s ready (%d backends)", network, len(registry.backends(network)))
        yield
        await http.aclose()
        if redis_client is not None:
            await redis_client.aclose()

    return create_proxy_app(handler, lifespan)


def build_status_app(settings: ProxySettings | None = None) -> FastAPI:
    """Wire the status service and its probe scheduler from settings.

    When TESTING=1 the scheduler is not started.
    """
    settings = settings or ProxySettings()
    registry = NetworkRegistry.from_yaml(settings.registry_path)
    kv, redis_client = build_kv_store(settings)
    http = httpx.AsyncClient(timeout=settings.probe_timeout)
    monitor = build_monitor(settings, registry, kv, http)
    scheduler = HealthCheckScheduler(monitor, settings.probe_interval_minutes)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if os.environ.get("TESTING") == "1":
            logger.info("TESTING=1: skipping health check scheduler")
            yield
        else:
            scheduler.start()
            yield
            scheduler.stop()
        await http.aclose()
        if redis_client is not None:
            await redis_client.aclose()

    return create_status_app(monitor, monitor.edge_cache, lifespan)


async def run_check(settings: ProxySettings) -> int:
    """Run one probe cycle, print a summary, return the unhealthy count."""
    registry = NetworkRegistry.from_yaml(settings.registry_path)
    kv, redis_client = build_kv_store(settings)
    async with httpx.AsyncClient(timeout=settings.probe_timeout) as http:
        monitor = build_monitor(settings, registry, kv, http)
        outcomes = await monitor.run_probe_cycle()
    if redis_client is not None:
        await redis_client.aclose()

    unhealthy = 0
    for network in registry.networks:
        rows = [o for o in outcomes if o.network == network]
        print(f"{network}: {sum(o.healthy for o in rows)}/{len(rows)} healthy")
        for o in rows:
            if not o.healthy:
                unhealthy += 1
                print(f"  DOWN {o.backend}: {o.reason}")
    return unhealthy


def cmd_proxy(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run(build_proxy_app(args.network), host=args.host, port=args.port)


def cmd_monitor(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run(build_status_app(), host=args.host, port=args.port)


def cmd_check(args: argparse.Namespace) -> None:
    unhealthy = asyncio.run(run_check(ProxySettings()))
    raise SystemExit(1 if unhealthy else 0)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="community-rpc",
        description="Fault-tolerant JSON-RPC proxy and backend health monitor",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_proxy = sub.add_parser("proxy", help="Serve the JSON-RPC proxy for one network")
    p_proxy.add_argument("--network", required=True, help="Network name from the registry")
    p_proxy.add_argument("--host", default="0.0.0.0")
    p_proxy.add_argument("--port", type=int, default=8545)
    p_proxy.set_defaults(func=cmd_proxy)

    p_monitor = sub.add_parser("monitor", help="Serve the status page and run scheduled probes")
    p_monitor.add_argument("--host", default="0.0.0.0")
    p_monitor.add_argument("--port", type=int, default=8080)
    p_monitor.set_defaults(func=cmd_monitor)

    p_check = sub.add_parser("check", help="Probe every backend once and print a summary")
    p_check.set_defaults(func=cmd_check)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
