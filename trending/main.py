import asyncio
from datetime import timedelta

from aiohttp import web

from trending.config import settings
from trending.utils.logging_config import configure_logging, logger
from trending.store.score_store import ScoreStore
from trending.ranking.cache import RankingCache, SnapshotCache
from trending.analysis.onchain import DexScreenerAnalyzer
from trending.analysis.social import SocialMediaAggregator
from trending.refresh.onchain import OnChainRefresher
from trending.refresh.social import SocialRefresher
from trending.service import TrendingService
from trending.scheduler import Scheduler
from trending.api.server import create_app


async def main():
    # 1. Config & Logging
    configure_logging()
    logger.info("Starting Trending Ranking Service", env=settings.ENV)

    # 2. Infrastructure Init
    store = ScoreStore()
    await store.connect()
    dex_analyzer = DexScreenerAnalyzer()
    await dex_analyzer.start()
    social_aggregator = SocialMediaAggregator()
    await social_aggregator.start()

    # 3. Ranking core
    ranking = RankingCache(store, SnapshotCache(timedelta(seconds=settings.RANKING_CACHE_TTL_SECONDS)))
    service = TrendingService(
        store,
        ranking,
        OnChainRefresher(store, dex_analyzer),
        SocialRefresher(store, social_aggregator, missing_score=settings.SOCIAL_MISSING_SCORE),
    )
    scheduler = Scheduler(service)

    # 4. HTTP API
    runner = web.AppRunner(create_app(service))
    await runner.setup()
    site = web.TCPSite(runner, settings.API_HOST, settings.API_PORT)
    await site.start()
    logger.info("API listening", host=settings.API_HOST, port=settings.API_PORT)

    # 5. Start Scheduler and run until interrupted
    try:
        await scheduler.start()
        await asyncio.Event().wait()
    finally:
        logger.info("Stopping...")
        await scheduler.stop()
        await runner.cleanup()
        await social_aggregator.close()
        await dex_analyzer.close()
        await store.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
