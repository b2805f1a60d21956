"""Shared test fixtures for community-rpc."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from community_rpc.proxy.handler import ProxyHandler
from community_rpc.proxy.selector import BackendSelector
from community_rpc.proxy.upstream import UpstreamClient
from community_rpc.registry import NetworkRegistry
from community_rpc.storage.health_store import HealthStore
from community_rpc.storage.kv import MemoryKeyValueStore

NETWORK = "testnet"
BACKENDS = ["https://a.example/rpc", "https://b.example/rpc", "https://c.example/rpc"]


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UpstreamPool:
    """Scripted upstream nodes behind an ``httpx.MockTransport``.

    Unscripted URLs answer HTTP 404.  Every request is recorded in ``calls``
    as ``(url, payload)``.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[httpx.Request], Any]] = {}
        self.calls: list[tuple[str, Any]] = []

    def __call__(self, request: httpx.Request):
        url = str(request.url)
        self.calls.append((url, json.loads(request.content)))
        handler = self._handlers.get(url)
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    def urls_called(self) -> list[str]:
        return [url for url, _ in self.calls]

    def on(self, url: str, handler: Callable[[httpx.Request], Any]) -> None:
        self._handlers[url] = handler

    def result(self, url: str, value: Any) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            rid = json.loads(request.content).get("id")
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": rid, "result": value})

        self.on(url, handler)

    def error(self, url: str, message: str, code: int = -32000) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            rid = json.loads(request.content).get("id")
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": rid, "error": {"code": code, "message": message}},
            )

        self.on(url, handler)

    def status(self, url: str, status_code: int) -> None:
        self.on(url, lambda request: httpx.Response(status_code, text="upstream says no"))

    def raw(self, url: str, body: bytes, status_code: int = 200) -> None:
        self.on(url, lambda request: httpx.Response(status_code, content=body))

    def refuse(self, url: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        self.on(url, handler)

    def node(self, url: str, *, syncing: Any = False, block: Any = "0x10") -> None:
        """A node answering the health probe methods."""

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            result = syncing if payload["method"] == "eth_syncing" else block
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

        self.on(url, handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backends() -> list[str]:
    return list(BACKENDS)


@pytest.fixture
def network() -> str:
    return NETWORK


@pytest.fixture
def registry(backends) -> NetworkRegistry:
    return NetworkRegistry({NETWORK: backends})


@pytest.fixture
def kv(clock) -> MemoryKeyValueStore:
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def store(kv, clock) -> HealthStore:
    return HealthStore(kv, clock=clock)


@pytest.fixture
def pool() -> UpstreamPool:
    return UpstreamPool()


@pytest.fixture
def upstream(pool) -> UpstreamClient:
    return UpstreamClient(httpx.AsyncClient(transport=httpx.MockTransport(pool)), timeout=2.0)


@pytest.fixture
def selector(registry, store) -> BackendSelector:
    return BackendSelector(registry, store)


@pytest.fixture
def handler(selector, store, upstream) -> ProxyHandler:
    return ProxyHandler(NETWORK, selector, store, upstream)
