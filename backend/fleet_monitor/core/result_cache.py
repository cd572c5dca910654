"""In-memory TTL cache for aggregated query results.

Freshness depends on how recent the requested window is: every request whose
window ends within the last few minutes shares the ``vehicles_realtime`` entry,
while historical windows are cached under their exact bounds. Expiry is checked
lazily in ``get``; nothing sweeps entries in the background.
"""

import asyncio
import datetime
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

RECENT_WINDOW = datetime.timedelta(minutes=5)

DEVICE_TTL_SECONDS = 10
RECENT_TTL_SECONDS = 30
HISTORICAL_TTL_SECONDS = 5 * 60

REALTIME_KEY = "vehicles_realtime"


class Tier(str, enum.Enum):
    RECENT = "recent"
    HISTORICAL = "historical"


def classify(
    window_end: datetime.datetime | None,
    now: datetime.datetime,
    recent_window: datetime.timedelta = RECENT_WINDOW,
) -> Tier:
    """Recent if the window ends within the last ``recent_window`` up to now.

    A missing end is an implicit live request. A window ending in the future
    is historical: it is cached under its own bounds.
    """
    if window_end is None or now - recent_window <= window_end <= now:
        return Tier.RECENT
    return Tier.HISTORICAL


def key_for(
    tier: Tier,
    start: str | None,
    end: str | None,
    device_id: str | None = None,
) -> str:
    """Cache key for a vehicles query, built from the raw request bounds."""
    start_part = start or "default"
    end_part = end or "default"
    if device_id:
        return f"vehicle_{device_id}_{start_part}_{end_part}"
    if tier is Tier.RECENT:
        return REALTIME_KEY
    return f"vehicles_{start_part}_{end_part}"


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    created_at: float
    expires_at: float


class TieredResultCache:
    """Key -> CacheEntry store with per-entry TTL."""

    def __init__(
        self,
        device_ttl: float = DEVICE_TTL_SECONDS,
        recent_ttl: float = RECENT_TTL_SECONDS,
        historical_ttl: float = HISTORICAL_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.device_ttl = device_ttl
        self.recent_ttl = recent_ttl
        self.historical_ttl = historical_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def ttl_for(self, tier: Tier, device_scoped: bool = False) -> float:
        if device_scoped:
            return self.device_ttl
        if tier is Tier.RECENT:
            return self.recent_ttl
        return self.historical_ttl

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired (expired entries are evicted)."""
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss for key: %s", key)
            return None
        if self._clock() > entry.expires_at:
            logger.debug("Cache expired for key: %s", key)
            self._entries.pop(key, None)
            return None
        logger.debug("Cache hit for key: %s", key)
        return entry.data

    def set(self, key: str, value: Any, ttl: float) -> None:
        created = self._clock()
        self._entries[key] = CacheEntry(data=value, created_at=created, expires_at=created + max(ttl, 0))
        logger.debug("Cached data for key: %s (ttl %ss)", key, ttl)

    def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info("Cache invalidated for key: %s", key)
        return removed

    def invalidate_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.info("All cache entries invalidated (%d)", count)
        return count


class SingleFlight:
    """Concurrent callers for the same key share one in-flight computation."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.debug("Joining in-flight query for key: %s", key)
        # A cancelled caller must not cancel the work other callers wait on.
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
