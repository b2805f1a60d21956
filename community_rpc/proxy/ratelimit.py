"""Per-client rate limiting for the proxy."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol


@dataclass(frozen=True)
class RateLimitResult:
    success: bool


class RateLimiter(Protocol):
    async def limit(self, key: str) -> RateLimitResult: ...


class RedisRateLimiter:
    """Fixed-window limiter: at most *limit* calls per *window_seconds* per key.

    Counters live in Redis (``INCR`` + ``EXPIRE``) so every proxy process
    shares them.
    """

    def __init__(
        self,
        client,
        limit: int,
        window_seconds: int = 60,
        prefix: str = "community-rpc:ratelimit:",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self.limit_per_window = limit
        self.window_seconds = window_seconds
        self._prefix = prefix
        self._clock = clock

    async def limit(self, key: str) -> RateLimitResult:
        window = int(self._clock() // self.window_seconds)
        counter = f"{self._prefix}{key}:{window}"
        count = await self._client.incr(counter)
        if count == 1:
            await self._client.expire(counter, self.window_seconds)
        return RateLimitResult(success=count <= self.limit_per_window)
