# tests/unit/test_ranking_cache.py
"""
Unit tests for SnapshotCache and RankingCache
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import START
from trending.errors import StoreUnavailableError
from trending.models import RankedSnapshot, TokenScoreRecord
from trending.ranking.cache import RankingCache, SnapshotCache


def record(address, score):
    return TokenScoreRecord(address=address, name="", symbol="", onchain_score=score, last_updated=START)


@pytest.fixture
def fake_store():
    store = AsyncMock()
    store.load_all.return_value = [record("C", 50), record("A", 80), record("B", 80)]
    return store


@pytest.mark.unit
class TestSnapshotCache:

    def test_expires_after_ttl(self, clock):
        cache = SnapshotCache(timedelta(minutes=2), clock)
        cache.put("value")
        clock.advance(minutes=1, seconds=59)
        assert cache.get() == "value"
        clock.advance(seconds=1)
        assert cache.get() is None
        assert cache.last_good == "value"

    def test_invalidate_clears_and_bumps_generation(self, clock):
        cache = SnapshotCache(timedelta(minutes=2), clock)
        cache.put("value")
        cache.invalidate()
        assert cache.get() is None
        assert cache.generation == 1
        assert cache.last_good == "value"


@pytest.mark.unit
class TestRankingCache:

    @pytest.mark.asyncio
    async def test_tie_broken_by_address(self, fake_store, snapshot_cache, clock):
        ranking = RankingCache(fake_store, snapshot_cache, clock)
        snapshot = await ranking.get_ranked_order()
        assert snapshot.addresses == ["A", "B", "C"]
        assert snapshot.built_at == clock.now()

    @pytest.mark.asyncio
    async def test_serves_cached_snapshot_within_ttl(self, fake_store, snapshot_cache, clock):
        ranking = RankingCache(fake_store, snapshot_cache, clock)
        first = await ranking.get_ranked_order()
        clock.advance(seconds=90)
        second = await ranking.get_ranked_order()
        assert first is second
        assert fake_store.load_all.await_count == 1

    @pytest.mark.asyncio
    async def test_rebuilds_after_ttl(self, fake_store, snapshot_cache, clock):
        ranking = RankingCache(fake_store, snapshot_cache, clock)
        await ranking.get_ranked_order()
        clock.advance(minutes=2)
        await ranking.get_ranked_order()
        assert fake_store.load_all.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_rebuild(self, fake_store, snapshot_cache, clock):
        ranking = RankingCache(fake_store, snapshot_cache, clock)
        await ranking.get_ranked_order()
        fake_store.load_all.return_value = [record("C", 99), record("A", 80)]
        ranking.invalidate("C")
        snapshot = await ranking.get_ranked_order()
        assert snapshot.addresses == ["C", "A"]

    @pytest.mark.asyncio
    async def test_store_down_without_prior_snapshot_returns_empty(self, fake_store, snapshot_cache, clock):
        fake_store.load_all.side_effect = StoreUnavailableError("down")
        ranking = RankingCache(fake_store, snapshot_cache, clock)
        snapshot = await ranking.get_ranked_order()
        assert len(snapshot) == 0

    @pytest.mark.asyncio
    async def test_store_down_returns_previous_snapshot(self, fake_store, snapshot_cache, clock):
        ranking = RankingCache(fake_store, snapshot_cache, clock)
        good = await ranking.get_ranked_order()
        ranking.invalidate()
        fake_store.load_all.side_effect = StoreUnavailableError("down")
        assert await ranking.get_ranked_order() is good

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_rebuild(self, fake_store, snapshot_cache, clock):
        ranking = RankingCache(fake_store, snapshot_cache, clock)
        results = await asyncio.gather(*(ranking.get_ranked_order() for _ in range(5)))
        assert fake_store.load_all.await_count == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_rebuild_racing_a_write_is_not_cached(self, snapshot_cache, clock):
        ranking = None

        async def load_all():
            # A write lands while the scan is in flight
            ranking.invalidate()
            return [record("A", 1)]

        store = AsyncMock()
        store.load_all.side_effect = load_all
        ranking = RankingCache(store, snapshot_cache, clock)

        snapshot = await ranking.get_ranked_order()
        assert snapshot.addresses == ["A"]
        assert snapshot_cache.get() is None
        await ranking.get_ranked_order()
        assert store.load_all.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_store_gives_empty_snapshot(self, snapshot_cache, clock):
        store = AsyncMock()
        store.load_all.return_value = []
        snapshot = await RankingCache(store, snapshot_cache, clock).get_ranked_order()
        assert snapshot == RankedSnapshot((), clock.now())
