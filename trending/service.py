import asyncio
from datetime import timedelta
from typing import Collection, Dict, List, Optional, Sequence, Tuple

from trending.config import settings
from trending.errors import FetchError, StoreUnavailableError
from trending.models import Tier
from trending.ranking.cache import RankingCache
from trending.ranking.due_set import select_onchain_due, select_social_due, select_window
from trending.ranking.scoring import ScoringEngine
from trending.refresh.onchain import OnChainRefresher
from trending.refresh.report import RefreshReport
from trending.refresh.social import SocialRefresher
from trending.store.score_store import ScoreStore
from trending.utils.clock import Clock, system_clock
from trending.utils.logging_config import logger

REFRESH_PATHS = ("onchain", "social")


class TrendingService:
    """Read and administrative surface of the ranking core, plus the cycle bodies the Scheduler runs."""

    def __init__(
        self,
        store: ScoreStore,
        ranking: RankingCache,
        onchain: OnChainRefresher,
        social: SocialRefresher,
        clock: Clock = system_clock,
        onchain_intervals: Optional[Dict[Tier, timedelta]] = None,
        social_intervals: Optional[Dict[Tier, timedelta]] = None,
        social_eligible_tiers: Optional[Collection[Tier]] = None,
    ):
        self.store = store
        self.ranking = ranking
        self.onchain = onchain
        self.social = social
        self.clock = clock
        self.onchain_intervals = onchain_intervals or settings.onchain_intervals()
        self.social_intervals = social_intervals or settings.social_intervals()
        self.social_eligible_tiers = (
            social_eligible_tiers if social_eligible_tiers is not None
            else settings.social_eligible_tiers()
        )
        store.add_write_listener(ranking.invalidate)

    # --- Reads ---

    async def get_top_tokens(self, limit: int) -> List[dict]:
        snapshot = await self.ranking.get_ranked_order()
        top = snapshot.top(limit)
        if not top:
            return []
        try:
            records = await self.store.get_many(e.address for e in top)
        except StoreUnavailableError as e:
            logger.warning("Top tokens unavailable, store unreachable", error=str(e))
            return []

        ranked = []
        for record in records:
            position = snapshot.position_of(record.address)
            data = record.with_tier(snapshot.tier_of(position)).to_dict()
            data["rank"] = position + 1
            ranked.append(data)
        return ranked

    async def get_token(self, address: str) -> Optional[dict]:
        """The record with its current rank and tier, or None if untracked.

        Raises StoreUnavailableError when the store cannot be reached, so callers can
        tell an outage apart from an unknown token.
        """
        record = await self.store.get(address)
        if record is None:
            return None

        snapshot = await self.ranking.get_ranked_order()
        position = snapshot.position_of(address)
        if position is None:
            return record.to_dict()
        data = record.with_tier(snapshot.tier_of(position)).to_dict()
        data["rank"] = position + 1
        return data

    def invalidate_cache(self):
        self.ranking.invalidate()
        logger.info("Ranking cache invalidated")

    # --- Cycles ---

    async def _load_ranked(self):
        snapshot = await self.ranking.get_ranked_order()
        if not snapshot:
            return snapshot, {}
        records = await self.store.load_all()
        return snapshot, {r.address: r for r in records}

    async def run_onchain_cycle(self) -> RefreshReport:
        try:
            snapshot, records = await self._load_ranked()
        except StoreUnavailableError as e:
            logger.warning("Skipping on-chain cycle, store unavailable", error=str(e))
            return RefreshReport(path="onchain")

        due = select_onchain_due(snapshot, records, self.clock.now(), self.onchain_intervals)
        if not due:
            logger.debug("On-chain cycle: nothing due")
            return RefreshReport(path="onchain")

        report = await self.onchain.refresh(due)
        logger.info("On-chain cycle complete", due=len(due), **report.summary())
        return report

    async def run_social_cycle(self, tier: Tier, end: Optional[int] = None) -> RefreshReport:
        try:
            snapshot, records = await self._load_ranked()
        except StoreUnavailableError as e:
            logger.warning("Skipping social cycle, store unavailable", tier=tier.value, error=str(e))
            return RefreshReport(path="social")

        due = select_social_due(
            snapshot, records, self.clock.now(), tier,
            self.social_intervals, self.social_eligible_tiers, end=end,
        )
        if not due:
            logger.debug("Social cycle: nothing due", tier=tier.value)
            return RefreshReport(path="social")

        report = await self.social.refresh(due)
        logger.info("Social cycle complete", tier=tier.value, due=len(due), **report.summary())
        return report

    # --- Administration ---

    async def trigger_refresh(self, start_rank: int, end_rank: Optional[int] = None,
                              paths: Sequence[str] = REFRESH_PATHS) -> Dict[str, dict]:
        """Refreshes ranks [start_rank, end_rank) right now, ignoring staleness."""
        unknown = set(paths) - set(REFRESH_PATHS)
        if unknown:
            raise ValueError(f"unknown refresh paths: {sorted(unknown)}")

        logger.info("Manual refresh", start_rank=start_rank, end_rank=end_rank, paths=list(paths))
        results = {}
        for path in REFRESH_PATHS:
            if path not in paths:
                continue
            # Re-read the window per path so social sees the post-on-chain ranking
            try:
                snapshot, records = await self._load_ranked()
            except StoreUnavailableError as e:
                logger.warning("Manual refresh skipped, store unavailable", path=path, error=str(e))
                results[path] = RefreshReport(path=path).summary()
                continue
            selected = select_window(snapshot, records, start_rank, end_rank)
            refresher = self.onchain if path == "onchain" else self.social
            report = await refresher.refresh(selected)
            results[path] = report.summary()
        return results

    async def track_token(self, address: str, name: str = "", symbol: str = "") -> dict:
        record = await self.onchain.bootstrap(address, name, symbol)
        return record.to_dict()

    # --- Ad-hoc social queries ---

    async def social_posts(self, tickers: Sequence[str]) -> List[dict]:
        """Recent posts for arbitrary tickers. Nothing is written to the store."""
        posts = await self._social_call(self.social.aggregator.fetch_posts(tickers))
        return [p.to_dict() for p in posts]

    async def social_analytics(self, tickers: Sequence[str]) -> Tuple[Dict[str, dict], int]:
        """Social signals and social score per ticker, plus the number of posts analysed."""
        posts = await self._social_call(self.social.aggregator.fetch_posts(tickers))
        signals = await self._social_call(self.social.aggregator.analyze_posts(tickers, posts))
        analysis = {}
        for ticker, ticker_signals in signals.items():
            data = ticker_signals.to_dict()
            data["socialScore"] = ScoringEngine.social_score(ticker_signals)
            analysis[ticker] = data
        return analysis, len(posts)

    async def _social_call(self, call):
        try:
            return await asyncio.wait_for(call, self.social.timeout)
        except asyncio.TimeoutError as e:
            raise FetchError("social", f"timed out after {self.social.timeout}s") from e
