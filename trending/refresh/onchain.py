import asyncio
from typing import Sequence

from trending.analysis.base import OnChainAnalyzer
from trending.config import settings
from trending.errors import (
    FetchError,
    RecordNotFoundError,
    StoreUnavailableError,
    TokenNotFoundError,
)
from trending.models import TokenScoreRecord
from trending.refresh.report import RefreshReport
from trending.store.score_store import ScoreStore
from trending.utils.clock import Clock, system_clock
from trending.utils.logging_config import logger


class OnChainRefresher:
    """
    Refreshes on-chain sub-scores for a due-set.

    Each token is fetched under its own timeout; a failure leaves that token's
    timestamps untouched so it stays due for the next cycle.
    """

    def __init__(
        self,
        store: ScoreStore,
        analyzer: OnChainAnalyzer,
        clock: Clock = system_clock,
        timeout: float = None,
        concurrency: int = None,
    ):
        self.store = store
        self.analyzer = analyzer
        self.clock = clock
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self.concurrency = concurrency or settings.REFRESH_CONCURRENCY

    async def refresh(self, records: Sequence[TokenScoreRecord]) -> RefreshReport:
        report = RefreshReport(path="onchain")
        if not records:
            return report

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_with_sem(record: TokenScoreRecord):
            async with semaphore:
                await self._refresh_one(record, report)

        await asyncio.gather(*(run_with_sem(r) for r in records))
        return report

    async def _refresh_one(self, record: TokenScoreRecord, report: RefreshReport):
        address = record.address
        try:
            metrics = await asyncio.wait_for(self.analyzer.analyze(address), self.timeout)
        except TokenNotFoundError:
            logger.info("Token has no on-chain data, leaving stale", address=address)
            report.failed.append(address)
            return
        except asyncio.TimeoutError:
            logger.warning("On-chain fetch timed out", address=address, timeout=self.timeout)
            report.failed.append(address)
            return
        except FetchError as e:
            logger.warning("On-chain fetch failed", address=address, error=str(e))
            report.failed.append(address)
            return
        except Exception as e:
            # Unexpected adapter errors stay confined to this token
            logger.error("On-chain analysis crashed", address=address, error=str(e), exc_info=True)
            report.failed.append(address)
            return

        try:
            await self.store.apply_onchain(address, metrics, self.clock.now())
        except RecordNotFoundError:
            logger.info("Record disappeared before on-chain write", address=address)
            report.skipped.append(address)
        except StoreUnavailableError as e:
            logger.warning("Dropping on-chain write, store unavailable", address=address, error=str(e))
            report.failed.append(address)
        else:
            report.refreshed.append(address)

    async def bootstrap(self, address: str, name: str = "", symbol: str = "") -> TokenScoreRecord:
        """Creates the record for a newly tracked token. Fetch and store errors propagate."""
        try:
            metrics = await asyncio.wait_for(self.analyzer.analyze(address), self.timeout)
        except asyncio.TimeoutError as e:
            raise FetchError("onchain", f"timed out after {self.timeout}s for {address}") from e
        record = await self.store.create(address, name, symbol, metrics, self.clock.now())
        logger.info("Token bootstrapped", address=address, symbol=symbol,
                    onchain_score=record.onchain_score)
        return record
