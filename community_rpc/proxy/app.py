"""FastAPI surface for one network's proxy endpoint."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from community_rpc.jsonrpc import INTERNAL_ERROR, error_response
from community_rpc.proxy.handler import CORS_HEADERS, ProxyHandler

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE", "HEAD"]


def client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def create_proxy_app(handler: ProxyHandler, lifespan=None) -> FastAPI:
    """Build the ASGI app that exposes *handler* at ``/``."""
    app = FastAPI(
        title=f"Community RPC ({handler.network})",
        description="Fault-tolerant JSON-RPC proxy",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.middleware("http")
    async def cors_everywhere(request: Request, call_next):
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    # Unexpected failures still answer in JSON-RPC shape, with CORS
    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error proxying %s %s", request.method, handler.network)
        return JSONResponse(
            error_response(INTERNAL_ERROR, "Internal error"),
            status_code=500,
            headers=CORS_HEADERS,
        )

    @app.api_route("/", methods=ALL_METHODS)
    async def rpc(request: Request) -> Response:
        body = await request.body()
        result = await handler.handle(request.method, body, client_ip(request))
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=result.headers,
        )

    return app
