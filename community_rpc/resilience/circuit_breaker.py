"""Circuit breaker for the shared health store.

After ``failure_threshold`` consecutive errors the breaker opens and
store calls are skipped, so callers immediately take their fail-open default.
After ``recovery_timeout`` seconds one trial call is let through: success
closes the breaker, failure re-opens it for another full window.

    CLOSED --(threshold errors)--> OPEN --(timeout)--> HALF_OPEN
    HALF_OPEN --(success)--> CLOSED
    HALF_OPEN --(error)----> OPEN
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Counts consecutive store errors and short-circuits while open."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if (
                self._state is CircuitState.OPEN
                and self._clock() - self._opened_at >= self.recovery_timeout
            ):
                self._state = CircuitState.HALF_OPEN
                logger.info("%s breaker half-open, trying the store again", self.name)
            return self._state

    def allow_request(self) -> bool:
        return self.state is not CircuitState.OPEN

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("%s breaker closed, store reachable again", self.name)
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            if self._state is CircuitState.HALF_OPEN:
                self._open()
                logger.warning("%s breaker re-opened: trial call failed", self.name)
            elif (
                self._state is CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._open()
                logger.warning(
                    "%s breaker opened after %d consecutive errors; skipping store for %.0fs",
                    self.name, self._consecutive_failures, self.recovery_timeout,
                )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0

    async def guard(self, operation: str, call: Callable[[], Awaitable[T]], fallback: Any) -> T | Any:
        """Await *call* unless the breaker is open; return *fallback* on error.

        Errors are logged with *operation* and counted; they never propagate.
        """
        if not self.allow_request():
            logger.debug("%s skipped: %s breaker open", operation, self.name)
            return fallback
        try:
            result = await call()
        except Exception as exc:
            self.record_failure()
            logger.warning("%s failed (non-fatal): %s", operation, exc)
            return fallback
        self.record_success()
        return result
