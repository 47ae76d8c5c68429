import asyncio
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from trending.config import settings
from trending.utils.logging_config import configure_logging, logger
from trending.store.score_store import ScoreStore
from trending.analysis.onchain import DexScreenerAnalyzer
from trending.analysis.sentiment import SentimentEngine
from trending.analysis.social import SocialMediaAggregator
from trending.errors import FetchError, StoreUnavailableError

configure_logging()

# Wrapped SOL, always listed on DexScreener
KNOWN_TOKEN = "So11111111111111111111111111111111111111112"


async def check_redis():
    logger.info("--- Checking Score Store ---")
    store = ScoreStore()
    try:
        await store.connect()
        await store.ping()
        records = await store.load_all()
        logger.info(f"✅ Score store reachable, {len(records)} tracked tokens")
    except StoreUnavailableError as e:
        logger.error(f"❌ Score store failed: {e}")
    finally:
        await store.close()


async def check_dexscreener():
    logger.info("--- Checking DexScreener ---")
    analyzer = DexScreenerAnalyzer()
    await analyzer.start()
    try:
        metrics = await analyzer.analyze(KNOWN_TOKEN)
        logger.info("✅ DexScreener working", **metrics.to_dict())
    except FetchError as e:
        logger.error(f"❌ DexScreener failed: {e}")
    finally:
        await analyzer.close()


async def check_sentiment():
    provider = settings.AI_PROVIDER.upper()
    logger.info(f"--- Checking Sentiment ({provider}) ---")
    engine = SentimentEngine()
    if not engine.available:
        logger.warning(f"⚠️ No API key found for {provider}. Social scores will use neutral sentiment.")
        return
    res = await engine.analyze({"DOGE": ["DOGE to the moon, devs shipping daily"]})
    logger.info(f"✅ Sentiment ({provider}) responded", **res["DOGE"])


async def check_social():
    logger.info("--- Checking Twitter / Reddit ---")
    aggregator = SocialMediaAggregator(SentimentEngine())
    await aggregator.start()
    try:
        posts = await aggregator.fetch_posts(["DOGE"])
        by_platform = {}
        for p in posts:
            by_platform[p.platform] = by_platform.get(p.platform, 0) + 1
        logger.info("✅ Social sources working", **by_platform)
    except FetchError as e:
        logger.error(f"❌ Social sources failed: {e}")
    finally:
        await aggregator.close()


async def main():
    logger.info("🚀 STARTING SYSTEM HEALTH CHECK")
    await check_redis()
    await check_dexscreener()
    await check_sentiment()
    await check_social()
    logger.info("🏁 HEALTH CHECK COMPLETE")

if __name__ == "__main__":
    asyncio.run(main())
