"""Upstream RPC calls and classification of their outcome."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from community_rpc.config import UPSTREAM_TIMEOUT_SECONDS
from community_rpc.jsonrpc import error_message_of, is_health_error

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class AttemptOutcome(str, Enum):
    """Terminal states of one forwarded attempt (all start as PENDING)."""

    PENDING = "pending"
    SUCCESS = "success"
    HTTP_FAILURE = "http_failure"
    RPC_HEALTH_FAILURE = "rpc_health_failure"
    RPC_OTHER_ERROR = "rpc_other_error"
    TIMEOUT = "timeout"


# Outcomes that mark the backend down and advance the retry loop
HEALTH_FAILURES = frozenset(
    {AttemptOutcome.HTTP_FAILURE, AttemptOutcome.RPC_HEALTH_FAILURE, AttemptOutcome.TIMEOUT}
)


@dataclass
class AttemptResult:
    backend: str
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    body: bytes = b""
    payload: Any = None
    error: str | None = None

    @property
    def is_health_failure(self) -> bool:
        return self.outcome in HEALTH_FAILURES


class UpstreamError(Exception):
    """A backend failed a call made on our own behalf (e.g. a health probe)."""

    def __init__(self, backend: str, reason: str) -> None:
        super().__init__(f"{backend}: {reason}")
        self.backend = backend
        self.reason = reason


class UpstreamClient:
    """Posts JSON-RPC payloads to backends over a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = UPSTREAM_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self.timeout = timeout
        self._ids = itertools.count(1)

    async def forward(
        self, backend: str, payload: Any, timeout: float | None = None
    ) -> AttemptResult:
        """Send *payload* to *backend* and classify the response.

        Never raises for upstream problems; the outcome says what happened.
        """
        timeout = self.timeout if timeout is None else timeout
        content = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        try:
            resp = await asyncio.wait_for(
                self._client.post(backend, content=content, headers=JSON_HEADERS, timeout=timeout),
                timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return AttemptResult(backend, AttemptOutcome.TIMEOUT, error=f"Timeout after {timeout:g}s")
        except httpx.HTTPError as exc:
            return AttemptResult(
                backend, AttemptOutcome.HTTP_FAILURE, error=f"{type(exc).__name__}: {exc}"
            )

        if not resp.is_success:
            return AttemptResult(
                backend, AttemptOutcome.HTTP_FAILURE, body=resp.content, error=f"HTTP {resp.status_code}"
            )
        try:
            data = resp.json()
        except ValueError:
            return AttemptResult(
                backend, AttemptOutcome.HTTP_FAILURE, body=resp.content, error="Invalid JSON response"
            )

        message = error_message_of(data)
        if message is not None:
            outcome = (
                AttemptOutcome.RPC_HEALTH_FAILURE
                if is_health_error(message)
                else AttemptOutcome.RPC_OTHER_ERROR
            )
            return AttemptResult(backend, outcome, body=resp.content, payload=data, error=f"RPC error: {message}")
        return AttemptResult(backend, AttemptOutcome.SUCCESS, body=resp.content, payload=data)

    async def call(
        self,
        backend: str,
        method: str,
        params: list[Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Invoke *method* on *backend* and return its ``result``.

        Raises:
            UpstreamError: on any HTTP, RPC or timeout failure.
        """
        payload = {"jsonrpc": "2.0", "method": method, "params": params or [], "id": next(self._ids)}
        result = await self.forward(backend, payload, timeout=timeout)
        if result.outcome is not AttemptOutcome.SUCCESS:
            raise UpstreamError(backend, result.error or result.outcome.value)
        if not isinstance(result.payload, dict):
            raise UpstreamError(backend, "Response is not a JSON-RPC object")
        return result.payload.get("result")
