"""FastAPI surface for the public health status page."""

from __future__ import annotations

import logging
from datetime import datetime
from email.utils import format_datetime, parsedate_to_datetime

from fastapi import FastAPI, Request
from fastapi.responses import Response

from community_rpc.models import HealthSnapshot
from community_rpc.monitor.checker import STATUS_CACHE_KEY, HealthMonitor
from community_rpc.proxy.handler import CORS_HEADERS
from community_rpc.storage.edge_cache import CachedResponse, EdgeCache

logger = logging.getLogger(__name__)


def render_snapshot(snapshot: HealthSnapshot, ttl_seconds: int) -> CachedResponse:
    """Serialize *snapshot* with validators derived from its timestamp."""
    generated = datetime.fromisoformat(snapshot.timestamp.replace("Z", "+00:00"))
    headers = {
        "Content-Type": "application/json",
        **CORS_HEADERS,
        "Cache-Control": f"public, max-age={ttl_seconds}, s-maxage={ttl_seconds}",
        "ETag": f'"{snapshot.timestamp}"',
        "Last-Modified": format_datetime(generated, usegmt=True),
        "Vary": "Accept-Encoding, Origin",
    }
    return CachedResponse(body=snapshot.to_json().encode("utf-8"), headers=headers)


def is_not_modified(request: Request, headers: dict[str, str]) -> bool:
    """Evaluate If-None-Match / If-Modified-Since against cached *headers*."""
    if_none_match = request.headers.get("if-none-match")
    if if_none_match:
        # A present If-None-Match decides alone; If-Modified-Since is ignored
        return if_none_match == headers.get("ETag")

    if_modified_since = request.headers.get("if-modified-since")
    last_modified = headers.get("Last-Modified")
    if if_modified_since and last_modified:
        try:
            return parsedate_to_datetime(if_modified_since) >= parsedate_to_datetime(last_modified)
        except (TypeError, ValueError):
            return False
    return False


def create_status_app(
    monitor: HealthMonitor,
    edge_cache: EdgeCache | None = None,
    lifespan=None,
) -> FastAPI:
    """Build the status service app around *monitor*."""
    app = FastAPI(
        title="Community RPC health",
        description="Backend health for every proxied network",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    ttl = monitor.snapshot_ttl

    @app.middleware("http")
    async def cors_everywhere(request: Request, call_next):
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.options("/")
    async def preflight() -> Response:
        return Response(status_code=204, headers=CORS_HEADERS)

    @app.get("/")
    async def status(request: Request) -> Response:
        no_cache = "no-cache" in request.headers.get("cache-control", "").lower()

        cached = None
        if no_cache:
            logger.info("Bypassing cache for status page (no-cache)")
        elif edge_cache is not None:
            try:
                cached = await edge_cache.match(STATUS_CACHE_KEY)
            except Exception as exc:
                logger.warning("Error reading edge cache: %s", exc)

        if cached is None:
            snapshot = await monitor.get_snapshot(force_refresh=no_cache)
            cached = render_snapshot(snapshot, ttl)
            if edge_cache is not None and not no_cache:
                try:
                    await edge_cache.put(STATUS_CACHE_KEY, cached, ttl)
                except Exception as exc:
                    logger.warning("Error storing status page in edge cache: %s", exc)

        if is_not_modified(request, cached.headers):
            keep = ("ETag", "Last-Modified", "Cache-Control")
            return Response(
                status_code=304,
                headers={**CORS_HEADERS, **{k: cached.headers[k] for k in keep}},
            )
        return Response(content=cached.body, status_code=cached.status_code, headers=cached.headers)

    return app
