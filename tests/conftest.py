# tests/conftest.py
"""
Global pytest configuration and fixtures
"""
import json
import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock

import pytest

# Required credentials must exist before trending.config is imported
os.environ.setdefault("TWITTER_BEARER_TOKEN", "test-bearer-token")
os.environ.setdefault("AI_PROVIDER", "none")

from fakeredis import FakeServer, aioredis  # noqa: E402

from trending.models import OnChainMetrics, SocialSignals, Tier, TokenScoreRecord  # noqa: E402
from trending.ranking.cache import RankingCache, SnapshotCache  # noqa: E402
from trending.refresh.onchain import OnChainRefresher  # noqa: E402
from trending.refresh.social import SocialRefresher  # noqa: E402
from trending.service import TrendingService  # noqa: E402
from trending.store.score_store import ScoreStore  # noqa: E402
from trending.utils.clock import FrozenClock  # noqa: E402

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

# activity=80, liquidity=60, distribution=50, momentum=20, risk=30 -> on-chain score 66
SCENARIO_METRICS = OnChainMetrics(activity=80, liquidity=60, distribution=50, momentum=20, risk=30)


def metrics_for(score: float) -> OnChainMetrics:
    """Metrics whose on-chain score is exactly `score`."""
    # With distribution=0, momentum=0, risk=0: score = a*0.3 + l*0.2 + 15 + 10
    base = score - 25
    return OnChainMetrics(activity=base / 0.5, liquidity=base / 0.5, distribution=0, momentum=0, risk=0)


def signals(**overrides) -> SocialSignals:
    data = dict(
        sentiment_score=0.0,
        trending_score=50.0,
        mention_count=10,
        avg_engagement=100.0,
        confidence=0.5,
        risk_level="low",
    )
    data.update(overrides)
    return SocialSignals(**data)


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def redis_server():
    return FakeServer()


@pytest.fixture
def fake_redis(redis_server):
    return aioredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def store(fake_redis):
    return ScoreStore(client=fake_redis, prefix="token:")


@pytest.fixture
def seed(store, fake_redis, clock):
    """Writes a record straight into Redis, bypassing write listeners."""

    async def _seed(address: str, onchain_score: float, social_score: Optional[float] = None,
                    symbol: str = "", last_updated: Optional[datetime] = None,
                    social_last_updated: Optional[datetime] = None) -> TokenScoreRecord:
        record = TokenScoreRecord(
            address=address,
            name=f"{address} token",
            symbol=symbol or address.upper(),
            onchain_score=onchain_score,
            last_updated=last_updated or clock.now(),
            social_score=social_score,
            social_last_updated=social_last_updated,
        )
        await fake_redis.set(store.key(address), json.dumps(record.to_dict()))
        return record

    return _seed


@pytest.fixture
def snapshot_cache(clock):
    return SnapshotCache(timedelta(minutes=2), clock)


@pytest.fixture
def ranking(store, snapshot_cache, clock):
    return RankingCache(store, snapshot_cache, clock)


@pytest.fixture
def onchain_analyzer():
    analyzer = AsyncMock()
    analyzer.analyze.return_value = SCENARIO_METRICS
    return analyzer


@pytest.fixture
def social_aggregator():
    aggregator = AsyncMock()
    aggregator.search_and_analyze.return_value = {}
    return aggregator


@pytest.fixture
def service(store, ranking, onchain_analyzer, social_aggregator, clock):
    return TrendingService(
        store,
        ranking,
        OnChainRefresher(store, onchain_analyzer, clock, timeout=1, concurrency=4),
        SocialRefresher(store, social_aggregator, clock, timeout=1),
        clock,
        onchain_intervals={
            Tier.HIGH: timedelta(minutes=5),
            Tier.MEDIUM: timedelta(minutes=30),
            Tier.LOW: timedelta(hours=2),
        },
        social_intervals={
            Tier.HIGH: timedelta(minutes=5),
            Tier.MEDIUM: timedelta(minutes=20),
            Tier.LOW: timedelta(minutes=30),
        },
        social_eligible_tiers={Tier.HIGH, Tier.MEDIUM, Tier.LOW},
    )
