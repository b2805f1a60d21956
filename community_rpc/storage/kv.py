"""Key-value store layer for shared health state.

Both the proxy and the monitor read and write backend health through a single
``KeyValueStore`` abstraction.  The concrete implementation is chosen by the
caller at construction time:

  RedisKeyValueStore   durable, shared across processes (SET EX / SCAN)
  MemoryKeyValueStore  in-process dict with TTL bookkeeping, for single-process
                       deployments and tests

Every key may carry a TTL; expired keys read as absent.  Atomicity is per key
only and concurrent writers are last-writer-wins.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Protocol


# ---------------------------------------------------------------------------
# KeyValueStore: the contract the core depends on
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Minimal async key-value interface with per-key expiry."""

    async def get(self, key: str) -> str | None:
        """Return the value at *key*, or ``None`` if absent or expired."""
        ...

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Set *key* to *value*, expiring after *ttl_seconds* when given."""
        ...

    async def delete(self, key: str) -> None:
        """Remove *key*; missing keys are not an error."""
        ...

    async def list(self, prefix: str = "") -> list[str]:
        """Return live keys starting with *prefix*."""
        ...


# ---------------------------------------------------------------------------
# RedisClientProto: the subset of redis.asyncio.Redis we call
# ---------------------------------------------------------------------------


class RedisClientProto(Protocol):
    async def get(self, name: str) -> bytes | str | None: ...

    async def set(self, name: str, value: str, ex: int | None = None) -> object: ...

    async def delete(self, *names: str) -> int: ...

    def scan_iter(self, match: str | None = None, count: int | None = None): ...


@dataclass
class RedisKeyValueStore:
    """``KeyValueStore`` backed by Redis; TTLs are enforced server-side.

    Attributes:
        client:    A ``redis.asyncio.Redis`` (or compatible) client.
        namespace: Prefix applied to every key so several deployments can
                   share one Redis database.
    """

    client: RedisClientProto
    namespace: str = "community-rpc:"

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> str | None:
        value = await self.client.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self.client.set(self._key(key), value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def list(self, prefix: str = "") -> list[str]:
        keys = []
        strip = len(self.namespace)
        async for raw in self.client.scan_iter(match=f"{self._key(prefix)}*", count=500):
            name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            keys.append(name[strip:])
        return sorted(keys)


@dataclass
class _Entry:
    value: str
    expires_at: float | None


@dataclass
class MemoryKeyValueStore:
    """In-process ``KeyValueStore``; expiry is evaluated lazily on read.

    Attributes:
        clock: Returns the current epoch time; injectable for tests.
    """

    clock: Callable[[], float] = time.time
    _data: dict[str, _Entry] = field(default_factory=dict, init=False, repr=False)

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self.clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry else None

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self.clock() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = _Entry(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(self, prefix: str = "") -> list[str]:
        return sorted(k for k in list(self._data) if k.startswith(prefix) and self._live(k))
