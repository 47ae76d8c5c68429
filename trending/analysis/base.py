from typing import Any, Dict, List, Protocol, Sequence

from trending.models import OnChainMetrics, SocialSignals


class OnChainAnalyzer(Protocol):
    async def analyze(self, address: str) -> OnChainMetrics:
        """Raises FetchError (retry next cycle) or TokenNotFoundError (delisted)."""
        ...


class SocialAggregator(Protocol):
    async def search_and_analyze(self, tickers: Sequence[str]) -> Dict[str, SocialSignals]:
        """Keyed by ticker. Tickers without results are absent from the mapping."""
        ...

    async def fetch_posts(self, tickers: Sequence[str]) -> List[Any]:
        """Raw posts mentioning any of the tickers. Raises FetchError when every source fails."""
        ...

    async def analyze_posts(self, tickers: Sequence[str], posts: Sequence[Any]) -> Dict[str, SocialSignals]:
        ...
