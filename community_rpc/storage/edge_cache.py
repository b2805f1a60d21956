"""Edge cache for rendered status-page responses.

Purely a performance layer: callers must behave correctly when it is absent
or erroring.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Protocol


@dataclass(frozen=True)
class CachedResponse:
    body: bytes
    headers: dict[str, str]
    status_code: int = 200


class EdgeCache(Protocol):
    async def match(self, key: str) -> CachedResponse | None: ...

    async def put(self, key: str, response: CachedResponse, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> bool: ...


@dataclass
class MemoryEdgeCache:
    """Process-local ``EdgeCache`` with per-entry TTL."""

    clock: Callable[[], float] = time.time
    _entries: dict[str, tuple[CachedResponse, float]] = field(
        default_factory=dict, init=False, repr=False
    )

    async def match(self, key: str) -> CachedResponse | None:
        hit = self._entries.get(key)
        if hit is None:
            return None
        response, expires_at = hit
        if self.clock() >= expires_at:
            del self._entries[key]
            return None
        return response

    async def put(self, key: str, response: CachedResponse, ttl_seconds: int) -> None:
        self._entries[key] = (response, self.clock() + ttl_seconds)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None
