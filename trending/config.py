from datetime import timedelta
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from trending.ranking.tiers import Tier


class Settings(BaseSettings):
    # General
    LOG_LEVEL: str = "INFO"
    ENV: str = "development"

    # Score Store (Redis)
    REDIS_URL: str = "redis://localhost:6379/0"
    SCORE_KEY_PREFIX: str = "token:"
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Ranking Cache
    RANKING_CACHE_TTL_SECONDS: int = 120

    # On-chain staleness per tier
    ONCHAIN_CYCLE_SECONDS: int = 60
    ONCHAIN_INTERVAL_HIGH_SECONDS: int = 5 * 60
    ONCHAIN_INTERVAL_MEDIUM_SECONDS: int = 30 * 60
    ONCHAIN_INTERVAL_LOW_SECONDS: int = 2 * 60 * 60

    # Social refresh per tier
    SOCIAL_INTERVAL_HIGH_SECONDS: int = 5 * 60
    SOCIAL_INTERVAL_MEDIUM_SECONDS: int = 20 * 60
    SOCIAL_INTERVAL_LOW_SECONDS: int = 30 * 60
    SOCIAL_ELIGIBLE_TIERS: str = "HIGH,MEDIUM,LOW"
    # Score written for tickers without social results. None leaves the record untouched.
    SOCIAL_MISSING_SCORE: Optional[float] = None

    # Bootstrap catch-up after process start (HIGH, MEDIUM, LOW)
    BOOTSTRAP_DELAYS_SECONDS: Tuple[float, float, float] = (2.0, 15.0, 30.0)
    BOOTSTRAP_LOW_TIER_LIMIT: int = 300

    # External fetches
    FETCH_TIMEOUT_SECONDS: float = 15.0
    SOCIAL_FETCH_TIMEOUT_SECONDS: float = 120.0
    # Tickers per social search; SOCIAL_FETCH_TIMEOUT_SECONDS applies to each batch
    SOCIAL_BATCH_TICKERS: int = 30
    REFRESH_CONCURRENCY: int = 5

    # DexScreener
    DEXSCREENER_API_URL: str = "https://api.dexscreener.com/latest/dex/tokens"
    DEXSCREENER_CALLS_PER_MINUTE: int = 60
    # Three attempts plus backoff must fit inside FETCH_TIMEOUT_SECONDS
    DEXSCREENER_ATTEMPT_TIMEOUT_SECONDS: float = 4.0

    # Social sources
    TWITTER_BEARER_TOKEN: str
    TWITTER_MAX_RESULTS: int = 50
    REDDIT_USER_AGENT: str = "TrendingRanker/1.0"
    REDDIT_SUBREDDITS: str = "CryptoCurrency,SatoshiStreetBets,CryptoMoonShots"
    SOCIAL_CONTEXT_TERMS: str = "meme coin,crypto,pump,moon"

    # AI sentiment
    OPENAI_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    DEEPSEEK_API_KEY: Optional[str] = None
    AI_PROVIDER: str = "gemini"  # 'openai', 'gemini', or 'deepseek'
    AI_MODEL: str = "gemini-2.0-flash"

    # HTTP API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3002
    DEFAULT_TOP_LIMIT: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def onchain_intervals(self) -> Dict[Tier, timedelta]:
        return {
            Tier.HIGH: timedelta(seconds=self.ONCHAIN_INTERVAL_HIGH_SECONDS),
            Tier.MEDIUM: timedelta(seconds=self.ONCHAIN_INTERVAL_MEDIUM_SECONDS),
            Tier.LOW: timedelta(seconds=self.ONCHAIN_INTERVAL_LOW_SECONDS),
        }

    def social_intervals(self) -> Dict[Tier, timedelta]:
        return {
            Tier.HIGH: timedelta(seconds=self.SOCIAL_INTERVAL_HIGH_SECONDS),
            Tier.MEDIUM: timedelta(seconds=self.SOCIAL_INTERVAL_MEDIUM_SECONDS),
            Tier.LOW: timedelta(seconds=self.SOCIAL_INTERVAL_LOW_SECONDS),
        }

    def social_eligible_tiers(self) -> FrozenSet[Tier]:
        names = [n.strip().upper() for n in self.SOCIAL_ELIGIBLE_TIERS.split(",") if n.strip()]
        return frozenset(Tier[n] for n in names)

    def subreddits(self) -> list:
        return [s.strip() for s in self.REDDIT_SUBREDDITS.split(",") if s.strip()]

    def context_terms(self) -> list:
        return [t.strip() for t in self.SOCIAL_CONTEXT_TERMS.split(",") if t.strip()]


settings = Settings()
