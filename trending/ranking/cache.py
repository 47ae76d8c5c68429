import asyncio
from datetime import timedelta
from typing import Generic, Optional, TypeVar

from trending.errors import StoreUnavailableError
from trending.models import RankedSnapshot
from trending.utils.clock import Clock, system_clock
from trending.utils.logging_config import logger

T = TypeVar("T")


class SnapshotCache(Generic[T]):
    """
    Single-value cache with a TTL and explicit invalidation.

    The TTL is a ceiling for quiet periods; writers invalidate proactively.
    Every invalidation bumps `generation` so a rebuild that raced with a write
    can tell its result is already outdated.
    """

    def __init__(self, ttl: timedelta, clock: Clock = system_clock):
        self.ttl = ttl
        self.clock = clock
        self._value: Optional[T] = None
        self._stored_at = None
        self.last_good: Optional[T] = None
        self.generation = 0

    def get(self) -> Optional[T]:
        if self._value is None:
            return None
        if self.clock.now() - self._stored_at >= self.ttl:
            return None
        return self._value

    def put(self, value: T):
        self._value = value
        self._stored_at = self.clock.now()
        self.last_good = value

    def invalidate(self):
        self._value = None
        self._stored_at = None
        self.generation += 1


class RankingCache:
    """Serves the ranked order, rebuilding it wholesale from the Score Store on a miss."""

    def __init__(self, store, cache: SnapshotCache[RankedSnapshot], clock: Clock = system_clock):
        self.store = store
        self.cache = cache
        self.clock = clock
        self._rebuild_lock = asyncio.Lock()

    async def get_ranked_order(self) -> RankedSnapshot:
        snapshot = self.cache.get()
        if snapshot is not None:
            return snapshot

        async with self._rebuild_lock:
            # Another caller may have rebuilt while we waited
            snapshot = self.cache.get()
            if snapshot is not None:
                return snapshot
            return await self._rebuild()

    async def _rebuild(self) -> RankedSnapshot:
        generation = self.cache.generation
        try:
            records = await self.store.load_all()
        except StoreUnavailableError as e:
            fallback = self.cache.last_good
            logger.warning(
                "Score store unavailable during ranking rebuild",
                error=str(e),
                fallback="previous" if fallback is not None else "empty",
            )
            return fallback if fallback is not None else RankedSnapshot.empty()

        snapshot = RankedSnapshot.build(records, self.clock.now())
        if generation == self.cache.generation:
            self.cache.put(snapshot)
            logger.debug("Ranking rebuilt", tokens=len(snapshot))
        else:
            logger.debug("Ranking rebuilt during a write; not caching", tokens=len(snapshot))
        return snapshot

    def invalidate(self, address: Optional[str] = None):
        self.cache.invalidate()
