import asyncio
from typing import Dict, List, Optional, Sequence

from trending.analysis.base import SocialAggregator
from trending.config import settings
from trending.errors import FetchError, RecordNotFoundError, StoreUnavailableError
from trending.models import SocialSignals, TokenScoreRecord
from trending.ranking.scoring import ScoringEngine
from trending.refresh.report import RefreshReport
from trending.store.score_store import ScoreStore
from trending.utils.clock import Clock, system_clock
from trending.utils.logging_config import logger


class SocialRefresher:
    """
    Refreshes social sub-scores for a due-set in batches of tickers.

    Each batch is one social search under its own timeout; a failed batch leaves only
    its own records stale and the remaining batches still run.

    Tickers missing from the search result count as "no social data this cycle":
    the record is left alone unless a fallback score is configured.
    """

    def __init__(
        self,
        store: ScoreStore,
        aggregator: SocialAggregator,
        clock: Clock = system_clock,
        timeout: float = None,
        missing_score: Optional[float] = None,
        batch_size: int = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.clock = clock
        self.timeout = timeout or settings.SOCIAL_FETCH_TIMEOUT_SECONDS
        self.missing_score = missing_score
        self.batch_size = batch_size or settings.SOCIAL_BATCH_TICKERS

    async def refresh(self, records: Sequence[TokenScoreRecord]) -> RefreshReport:
        report = RefreshReport(path="social")

        by_ticker: Dict[str, List[TokenScoreRecord]] = {}
        for record in records:
            ticker = record.ticker.strip()
            if not ticker:
                report.skipped.append(record.address)
                continue
            by_ticker.setdefault(ticker.lower(), []).append(record)

        keys = list(by_ticker)
        for i in range(0, len(keys), self.batch_size):
            batch = {key: by_ticker[key] for key in keys[i:i + self.batch_size]}
            await self._refresh_batch(batch, report)

        return report

    async def _refresh_batch(self, batch: Dict[str, List[TokenScoreRecord]], report: RefreshReport):
        tickers = [group[0].ticker.strip() for group in batch.values()]
        try:
            results = await asyncio.wait_for(
                self.aggregator.search_and_analyze(tickers), self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Social batch timed out", tickers=len(tickers), timeout=self.timeout)
            report.failed.extend(r.address for group in batch.values() for r in group)
            return
        except FetchError as e:
            logger.warning("Social batch failed", tickers=len(tickers), error=str(e))
            report.failed.extend(r.address for group in batch.values() for r in group)
            return
        except Exception as e:
            logger.error("Social batch crashed", tickers=len(tickers), error=str(e), exc_info=True)
            report.failed.extend(r.address for group in batch.values() for r in group)
            return

        signals_by_key = {ticker.lower(): signals for ticker, signals in results.items()}
        now = self.clock.now()

        for key, group in batch.items():
            signals = signals_by_key.get(key)
            for record in group:
                await self._apply(record, signals, now, report)

    async def _apply(self, record: TokenScoreRecord, signals: Optional[SocialSignals],
                     now, report: RefreshReport):
        if signals is not None:
            score = ScoringEngine.social_score(signals)
            analysis = signals.to_dict()
        elif self.missing_score is not None:
            score = self.missing_score
            analysis = {"reasoning": "No recent social media mentions"}
        else:
            report.skipped.append(record.address)
            return

        try:
            await self.store.apply_social(record.address, score, analysis, now)
        except RecordNotFoundError:
            report.skipped.append(record.address)
        except StoreUnavailableError as e:
            logger.warning("Dropping social write, store unavailable",
                           address=record.address, error=str(e))
            report.failed.append(record.address)
        else:
            report.refreshed.append(record.address)
