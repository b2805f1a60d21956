"""Health store: per-backend health state over a ``KeyValueStore``.

Key layout (values are JSON documents):

  down:<url>           DownMarker, written with the cooldown as TTL
  blockHeight:<url>    last observed block height
  lastChecked:<url>    ISO-8601 time of the last probe
  validator:<url>      {"address": <str | null>}, long TTL
  health_status_cache  serialized HealthSnapshot, short TTL

Every call fails open: when the underlying store errors (or the circuit is
open after repeated errors) reads return ``None`` and writes return ``False``.
A backend whose down marker cannot be read is therefore treated as healthy.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from pydantic import BaseModel, ValidationError

from community_rpc.models import DownMarker, HealthRecord, HealthSnapshot
from community_rpc.resilience.circuit_breaker import CircuitBreaker
from community_rpc.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

DOWN_PREFIX = "down:"
BLOCK_HEIGHT_PREFIX = "blockHeight:"
LAST_CHECKED_PREFIX = "lastChecked:"
VALIDATOR_PREFIX = "validator:"
SNAPSHOT_KEY = "health_status_cache"


class ValidatorEntry(BaseModel):
    """Stored validator identity; ``address`` is ``None`` when unknown."""

    address: str | None = None


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class HealthStore:
    """Reads and writes backend health records.

    Attributes:
        kv:              Shared key-value store.
        circuit_breaker: Short-circuits store calls after repeated failures.
        clock:           Epoch-seconds clock used for marker timestamps.
    """

    kv: KeyValueStore
    circuit_breaker: CircuitBreaker = field(
        default_factory=lambda: CircuitBreaker("health-store")
    )
    clock: Callable[[], float] = time.time

    # -- fail-open primitives -------------------------------------------------

    async def _get(self, key: str) -> str | None:
        return await self.circuit_breaker.guard(
            f"store.get({key})", lambda: self.kv.get(key), None
        )

    async def _put(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        async def put() -> bool:
            await self.kv.put(key, value, ttl_seconds=ttl_seconds)
            return True

        return await self.circuit_breaker.guard(f"store.put({key})", put, False)

    async def _delete(self, key: str) -> bool:
        async def delete() -> bool:
            await self.kv.delete(key)
            return True

        return await self.circuit_breaker.guard(f"store.delete({key})", delete, False)

    async def _get_json(self, key: str) -> object | None:
        raw = await self._get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring undecodable value at %s: %r", key, raw)
            return None

    # -- down markers ---------------------------------------------------------

    async def get_down(self, url: str) -> DownMarker | None:
        """Return the live down marker for *url*, or ``None``."""
        raw = await self._get_json(DOWN_PREFIX + url)
        if raw is None:
            return None
        try:
            marker = DownMarker.model_validate(raw)
        except ValidationError:
            logger.warning("Ignoring malformed down marker for %s", url)
            return None
        # Stores with coarse expiry may hand back a marker a little late.
        if marker.expires_at <= self.clock():
            return None
        return marker

    async def is_down(self, url: str) -> bool:
        return await self.get_down(url) is not None

    async def down_backends(self, urls: Iterable[str]) -> set[str]:
        """Return the subset of *urls* currently marked down."""
        urls = list(urls)
        markers = await asyncio.gather(*(self.get_down(u) for u in urls))
        return {u for u, m in zip(urls, markers) if m is not None}

    async def mark_down(self, url: str, reason: str, ttl_seconds: int) -> bool:
        """Mark *url* down for *ttl_seconds* and invalidate the snapshot."""
        now = self.clock()
        marker = DownMarker(reason=reason, since=now, expires_at=now + ttl_seconds)
        ok = await self._put(DOWN_PREFIX + url, marker.model_dump_json(), ttl_seconds)
        if ok:
            logger.info("Backend %s marked down for %ds: %s", url, ttl_seconds, reason)
            await self.invalidate_snapshot()
        return ok

    async def clear_down(self, url: str) -> bool:
        """Remove the down marker for *url* and invalidate the snapshot."""
        ok = await self._delete(DOWN_PREFIX + url)
        if ok:
            logger.info("Backend %s cleared from down list", url)
            await self.invalidate_snapshot()
        return ok

    # -- metadata -------------------------------------------------------------

    async def set_block_height(self, url: str, height: int) -> bool:
        return await self._put(BLOCK_HEIGHT_PREFIX + url, json.dumps(height))

    async def touch_last_checked(self, url: str) -> str:
        """Record a probe of *url* at the current time; returns the timestamp."""
        stamp = _iso(self.clock())
        await self._put(LAST_CHECKED_PREFIX + url, json.dumps(stamp))
        return stamp

    async def load_validator_address(self, url: str) -> ValidatorEntry | None:
        """Return the stored validator entry, or ``None`` if never written."""
        raw = await self._get_json(VALIDATOR_PREFIX + url)
        if raw is None:
            return None
        try:
            return ValidatorEntry.model_validate(raw)
        except ValidationError:
            return None

    async def set_validator_address(
        self, url: str, address: str | None, ttl_seconds: int
    ) -> bool:
        entry = ValidatorEntry(address=address)
        return await self._put(VALIDATOR_PREFIX + url, entry.model_dump_json(), ttl_seconds)

    async def get_record(self, url: str) -> HealthRecord:
        """Assemble the full health record of *url*."""
        marker, height, checked, validator = await asyncio.gather(
            self.get_down(url),
            self._get_json(BLOCK_HEIGHT_PREFIX + url),
            self._get_json(LAST_CHECKED_PREFIX + url),
            self.load_validator_address(url),
        )
        return HealthRecord(
            url=url,
            down=marker is not None,
            down_reason=marker.reason if marker else None,
            down_since=marker.since if marker else None,
            expires_at=marker.expires_at if marker else None,
            block_height=height if isinstance(height, int) else None,
            last_checked_at=checked if isinstance(checked, str) else None,
            validator_address=validator.address if validator else None,
        )

    # -- snapshot -------------------------------------------------------------

    async def load_snapshot(self) -> HealthSnapshot | None:
        raw = await self._get(SNAPSHOT_KEY)
        if raw is None:
            return None
        try:
            return HealthSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed cached snapshot")
            return None

    async def save_snapshot(self, snapshot: HealthSnapshot, ttl_seconds: int) -> bool:
        return await self._put(SNAPSHOT_KEY, snapshot.to_json(), ttl_seconds)

    async def invalidate_snapshot(self) -> bool:
        return await self._delete(SNAPSHOT_KEY)
