"""
Quota circuit breaker.

When the backing store signals rate limiting (or times out) the guard
opens and every read is served from the cache, stale or not, until the
cool-down elapses. There is no half-open probe: once the window is over
the next real request either succeeds or trips the breaker again.

State is process-local. Each instance of a horizontally scaled deployment
trips and resets on its own.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from chessclub.config import Config
from chessclub.utils.exceptions import QuotaExceededError

logger = logging.getLogger(__name__)

_NO_FALLBACK = object()


class BreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True)
class GuardedRead:
    """Result of a read made through the guard."""
    data: Any
    from_cache: bool
    quota_exceeded: bool


class QuotaGuard:
    """Closed/Open breaker with compare-and-swap transitions."""

    def __init__(self, cooldown_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = cooldown_seconds if cooldown_seconds is not None else Config.QUOTA_COOLDOWN_SECONDS
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._opened_at: Optional[float] = None
        self.trip_count = 0

    def _compare_and_set(self, expected: BreakerState, new: BreakerState,
                         opened_at: Optional[float]) -> bool:
        with self._lock:
            if self._state is not expected:
                return False
            self._state = new
            self._opened_at = opened_at
            return True

    @property
    def state(self) -> BreakerState:
        with self._lock:
            state, opened_at = self._state, self._opened_at
        if state is BreakerState.OPEN and self._clock() - opened_at >= self.cooldown_seconds:
            if self._compare_and_set(BreakerState.OPEN, BreakerState.CLOSED, None):
                logger.info("Quota cool-down elapsed, breaker closed")
            return self.state
        return state

    def is_open(self) -> bool:
        return self.state is BreakerState.OPEN

    def trip(self, reason: str = None) -> bool:
        """Open the breaker. Returns False if it was already open."""
        if self._compare_and_set(BreakerState.CLOSED, BreakerState.OPEN, self._clock()):
            self.trip_count += 1
            logger.warning(f"Quota breaker OPEN for {self.cooldown_seconds}s: {reason or 'quota exceeded'}")
            return True
        return False

    def reset(self) -> bool:
        """Administrative reset. Returns False if the breaker was already closed."""
        if self._compare_and_set(BreakerState.OPEN, BreakerState.CLOSED, None):
            logger.info("Quota breaker manually reset")
            return True
        return False

    def time_remaining_ms(self) -> int:
        if not self.is_open():
            return 0
        with self._lock:
            opened_at = self._opened_at
        if opened_at is None:
            return 0
        remaining = self.cooldown_seconds - (self._clock() - opened_at)
        return max(0, int(remaining * 1000))

    def status(self) -> Dict[str, Any]:
        return {
            'quotaExceeded': self.is_open(),
            'timeRemainingMs': self.time_remaining_ms(),
        }

    async def read(
        self,
        cache,
        key: str,
        ttl: int,
        tags: Iterable[str],
        producer: Callable[[], Awaitable[Any]],
        empty: Any = _NO_FALLBACK
    ) -> GuardedRead:
        """
        Read ``key`` through the cache, respecting the breaker.

        Closed: normal get-or-populate. A quota error or timeout from the
        producer trips the breaker and the read falls back as if it were open.

        Open: the cached entry is returned even when expired. With no entry
        the ``empty`` fallback is returned when given, otherwise
        QuotaExceededError propagates.
        """
        if self.is_open():
            return await self._fallback(cache, key, empty)

        try:
            value, hit = await cache.fetch(key, ttl, tags, producer)
            return GuardedRead(data=value, from_cache=hit, quota_exceeded=False)
        except QuotaExceededError as e:
            self.trip(str(e))
            return await self._fallback(cache, key, empty, e)

    async def _fallback(self, cache, key: str, empty: Any,
                        error: Optional[QuotaExceededError] = None) -> GuardedRead:
        entry = await cache.lookup(key, allow_stale=True)
        if entry is not None:
            logger.info(f"Serving {key} from cache while quota breaker is open")
            return GuardedRead(data=entry.value, from_cache=True, quota_exceeded=True)
        if empty is not _NO_FALLBACK:
            logger.info(f"No cached data for {key}, returning empty result")
            return GuardedRead(data=empty, from_cache=False, quota_exceeded=True)
        if error is not None:
            raise error
        raise QuotaExceededError(f"no cached data for {key}")
