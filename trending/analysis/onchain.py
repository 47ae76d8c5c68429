import asyncio
import math
import time
from typing import Dict, List, Optional

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from trending.config import settings
from trending.errors import FetchError, TokenNotFoundError
from trending.models import OnChainMetrics
from trending.ranking.scoring import clamp
from trending.utils.logging_config import logger
from trending.utils.rate_limiter import AsyncRateLimiter

# Log-scale ceilings: values at or above these map to 100
ACTIVITY_TXNS_CEILING = 5_000
LIQUIDITY_USD_CEILING = 1_000_000
YOUNG_PAIR_HOURS = 24


def _log_scale(value: float, ceiling: float) -> float:
    if value <= 0:
        return 0.0
    return clamp(math.log10(1 + value) / math.log10(1 + ceiling) * 100)


def _section(data: Dict, key: str) -> Dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _num(value, default: float = 0.0) -> float:
    try:
        return float(value if value is not None else default)
    except (TypeError, ValueError):
        return default


class DexScreenerAnalyzer:
    """
    On-chain metrics from DexScreener market data.

    The most liquid pair of the token drives the five 0-100 metrics consumed by the
    on-chain score:
      activity      24h transaction count (log scale)
      liquidity     pooled USD liquidity (log scale)
      distribution  buy share of 24h transactions
      momentum      24h price change, clamped to [-100, 100]
      risk          thin liquidity against market cap, plus a penalty for young pairs
    """

    def __init__(self, rate_limiter: Optional[AsyncRateLimiter] = None):
        self.api_url = settings.DEXSCREENER_API_URL.rstrip("/")
        self.session: Optional[aiohttp.ClientSession] = None
        self.rate_limiter = rate_limiter or AsyncRateLimiter(
            max_calls=settings.DEXSCREENER_CALLS_PER_MINUTE, period=60, name="dexscreener"
        )

    async def start(self):
        self.session = aiohttp.ClientSession(
            headers={"User-Agent": "TrendingRanker/1.0"},
            timeout=aiohttp.ClientTimeout(total=settings.DEXSCREENER_ATTEMPT_TIMEOUT_SECONDS)
        )

    async def close(self):
        if self.session:
            await self.session.close()

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    async def _fetch_pairs(self, address: str) -> List[Dict]:
        if not self.session:
            raise RuntimeError("Client not started")

        async with self.rate_limiter, self.session.get(f"{self.api_url}/{address}") as response:
            if response.status == 404:
                raise TokenNotFoundError("dexscreener", address)
            if response.status == 429:
                logger.warning("DexScreener Rate Limit 429")
            response.raise_for_status()
            data = await response.json(content_type=None)
            if not isinstance(data, dict):
                raise FetchError("dexscreener", f"unexpected response body for {address}")
            pairs = data.get("pairs") or []
            if not isinstance(pairs, list):
                raise FetchError("dexscreener", f"unexpected pairs payload for {address}")
            return [p for p in pairs if isinstance(p, dict)]

    async def analyze(self, address: str) -> OnChainMetrics:
        try:
            pairs = await self._fetch_pairs(address)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError("dexscreener", f"{address}: {e}") from e
        except ValueError as e:
            # Body was not JSON
            raise FetchError("dexscreener", f"undecodable response for {address}: {e}") from e

        if not pairs:
            raise TokenNotFoundError("dexscreener", address)

        try:
            pair = max(pairs, key=lambda p: _num(_section(p, "liquidity").get("usd")))
            return self.metrics_from_pair(pair)
        except (TypeError, ValueError, AttributeError) as e:
            raise FetchError("dexscreener", f"malformed pair data for {address}: {e}") from e

    @staticmethod
    def metrics_from_pair(pair: Dict, now_ms: Optional[float] = None) -> OnChainMetrics:
        txns = _section(_section(pair, "txns"), "h24")
        buys = _num(txns.get("buys"))
        sells = _num(txns.get("sells"))
        total_txns = buys + sells

        liquidity_usd = _num(_section(pair, "liquidity").get("usd"))
        market_cap = _num(pair.get("marketCap") or pair.get("fdv"))
        price_change = _num(_section(pair, "priceChange").get("h24"))

        activity = _log_scale(total_txns, ACTIVITY_TXNS_CEILING)
        liquidity = _log_scale(liquidity_usd, LIQUIDITY_USD_CEILING)
        distribution = (buys / total_txns * 100) if total_txns else 50.0
        momentum = clamp(price_change, -100, 100)

        # 20% liquidity/market-cap and above is treated as fully backed
        if market_cap > 0:
            risk = 100 - clamp(liquidity_usd / market_cap * 500)
        else:
            risk = 100.0 if liquidity_usd <= 0 else 50.0

        created_at = pair.get("pairCreatedAt")
        if created_at:
            now_ms = now_ms if now_ms is not None else time.time() * 1000
            age_hours = (now_ms - _num(created_at)) / 3_600_000
            if age_hours < YOUNG_PAIR_HOURS:
                risk += 20

        return OnChainMetrics(
            activity=round(activity, 2),
            liquidity=round(liquidity, 2),
            distribution=round(distribution, 2),
            momentum=round(momentum, 2),
            risk=round(clamp(risk), 2),
        )
