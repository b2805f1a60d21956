"""Proxy request handler: validation, backend retry loop, batch fan-out.

Single requests get up to ``max_retries + 1`` attempts, each on a backend not
yet tried for this request.  Batch items get exactly one attempt each and run
concurrently.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from community_rpc.config import DEFAULT_COOLDOWN_SECONDS, MAX_RETRIES
from community_rpc.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    RATE_LIMITED,
    error_response,
    request_id_of,
    validate_request,
)
from community_rpc.proxy.ratelimit import RateLimiter
from community_rpc.proxy.selector import BackendSelector
from community_rpc.proxy.upstream import AttemptResult, UpstreamClient
from community_rpc.storage.health_store import HealthStore

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Cache-Control, X-Requested-With",
    "Access-Control-Max-Age": "86400",
}

BACKEND_HEADER = "X-Backend-Server"
BATCH_BACKENDS_HEADER = "X-Backend-Servers"


@dataclass
class ProxyResponse:
    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


def _respond(status_code: int, body: bytes, headers: dict[str, str] | None = None) -> ProxyResponse:
    merged = {**CORS_HEADERS, **(headers or {})}
    if body:
        merged.setdefault("Content-Type", "application/json")
    return ProxyResponse(status_code, body, merged)


def _json(status_code: int, payload: Any, headers: dict[str, str] | None = None) -> ProxyResponse:
    return _respond(status_code, json.dumps(payload).encode("utf-8"), headers)


def _error(status_code: int, code: int, message: str, request_id: Any = None) -> ProxyResponse:
    return _json(status_code, error_response(code, message, request_id))


class ProxyHandler:
    """Turns one network's pool of unreliable backends into a single endpoint."""

    def __init__(
        self,
        network: str,
        selector: BackendSelector,
        store: HealthStore,
        upstream: UpstreamClient,
        limiter: RateLimiter | None = None,
        max_retries: int = MAX_RETRIES,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        self.network = network
        self._selector = selector
        self._store = store
        self._upstream = upstream
        self._limiter = limiter
        self.max_retries = max_retries
        self.cooldown_seconds = cooldown_seconds

    async def handle(self, method: str, body: bytes, client_ip: str | None = None) -> ProxyResponse:
        """Route one HTTP request to the matching behaviour."""
        method = method.upper()
        if method == "OPTIONS":
            return _respond(204, b"")
        if method == "GET":
            return _json(200, {"status": "ok"})
        if method != "POST":
            return _error(405, INVALID_REQUEST, f"Method {method} not allowed")

        if self._limiter is not None and not await self._allowed(client_ip):
            return _error(429, RATE_LIMITED, "Rate limit exceeded")

        try:
            request = json.loads(body)
        except ValueError:
            return _error(400, PARSE_ERROR, "Parse error")

        if isinstance(request, list):
            if not request:
                return _error(400, INVALID_REQUEST, "Invalid Request: empty batch")
            return await self.handle_batch(request)

        problem = validate_request(request)
        if problem:
            return _error(400, INVALID_REQUEST, f"Invalid Request: {problem}", request_id_of(request))
        return await self.handle_single(request)

    async def _allowed(self, client_ip: str | None) -> bool:
        try:
            result = await self._limiter.limit(client_ip or "unknown")
        except Exception as exc:
            logger.warning("Rate limiter unavailable, allowing request: %s", exc)
            return True
        if not result.success:
            logger.info("Rate limit exceeded for %s", client_ip)
        return result.success

    async def _record_failure(self, result: AttemptResult) -> None:
        await self._store.mark_down(result.backend, result.error or result.outcome.value, self.cooldown_seconds)

    async def handle_single(self, request: dict[str, Any]) -> ProxyResponse:
        """Forward one request, failing over until a backend answers."""
        healthy = await self._selector.healthy_backends(self.network)
        attempts = self.max_retries + 1
        attempted: set[str] = set()
        last: AttemptResult | None = None

        for attempt in range(1, attempts + 1):
            # Repeats are only allowed once every healthy backend has had a go.
            excluded = () if attempted.issuperset(healthy) else attempted
            backend = self._selector.select(healthy, excluded)
            if backend is None:
                break
            attempted.add(backend)

            result = await self._upstream.forward(backend, request)
            if not result.is_health_failure:
                logger.debug("%s %s served by %s", self.network, request.get("method"), backend)
                return _respond(200, result.body, {BACKEND_HEADER: backend})

            last = result
            logger.warning(
                "%s attempt %d/%d via %s failed: %s",
                self.network, attempt, attempts, backend, result.error,
            )
            await self._record_failure(result)

        detail = last.error if last else "no backends configured"
        return _error(
            500,
            INTERNAL_ERROR,
            f"All backends failed. Last error: {detail}",
            request_id_of(request),
        )

    async def handle_batch(self, batch: list[Any]) -> ProxyResponse:
        """Forward every batch item concurrently, one attempt each."""
        healthy = await self._selector.healthy_backends(self.network)
        outcomes = await asyncio.gather(
            *(self._forward_item(item, healthy) for item in batch),
            return_exceptions=True,
        )

        responses: list[Any] = []
        served_by: list[str] = []
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Batch item crashed: %r", outcome)
                responses.append(error_response(INTERNAL_ERROR, "Internal error", request_id_of(item)))
                continue
            payload, backend = outcome
            responses.append(payload)
            if backend:
                served_by.append(backend)

        headers = {BATCH_BACKENDS_HEADER: ", ".join(served_by)} if served_by else None
        return _json(200, responses, headers)

    async def _forward_item(self, item: Any, healthy: list[str]) -> tuple[Any, str | None]:
        problem = validate_request(item)
        if problem:
            return error_response(INVALID_REQUEST, f"Invalid Request: {problem}", request_id_of(item)), None

        backend = self._selector.select(healthy)
        if backend is None:
            return error_response(INTERNAL_ERROR, "No backends available", request_id_of(item)), None

        result = await self._upstream.forward(backend, item)
        if result.is_health_failure:
            logger.warning("%s batch item via %s failed: %s", self.network, backend, result.error)
            await self._record_failure(result)
            return error_response(INTERNAL_ERROR, f"Backend failed: {result.error}", request_id_of(item)), None
        return result.payload, backend
