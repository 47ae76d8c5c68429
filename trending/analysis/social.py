import asyncio
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from trending.analysis.sentiment import SentimentEngine
from trending.config import settings
from trending.errors import FetchError
from trending.models import SocialSignals
from trending.utils.logging_config import logger
from trending.utils.rate_limiter import AsyncRateLimiter

TWITTER_SEARCH_URL = "https://api.twitter.com/2/tweets/search/recent"
REDDIT_SEARCH_URL = "https://www.reddit.com/r/{subreddit}/search.json"
# Twitter caps recent-search queries at 512 characters
TICKERS_PER_QUERY = 10
REDDIT_LIMIT = 25

twitter_limiter = AsyncRateLimiter(max_calls=60, period=15 * 60, name="twitter")
reddit_limiter = AsyncRateLimiter(max_calls=60, period=60, name="reddit")


@dataclass
class SocialPost:
    id: str
    platform: str  # 'twitter' | 'reddit'
    content: str
    author: str
    timestamp: str
    engagement: Dict[str, int] = field(default_factory=dict)
    url: Optional[str] = None

    @property
    def total_engagement(self) -> int:
        return sum(self.engagement.values())

    def to_dict(self) -> Dict:
        return asdict(self)


def _chunks(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _context_clause(terms: Sequence[str]) -> str:
    if not terms:
        return ""
    quoted = [f'"{t}"' if " " in t else t for t in terms]
    return " (" + " OR ".join(quoted) + ")"


def mentions(post: SocialPost, ticker: str) -> bool:
    pattern = rf"(?<![\w$])\$?{re.escape(ticker)}(?!\w)"
    return re.search(pattern, post.content, flags=re.IGNORECASE) is not None


class SocialMediaAggregator:
    """
    Searches Twitter and Reddit for a batch of tickers and summarises the chatter.

    Mention counts and engagement are computed locally from the matched posts; the
    qualitative fields (sentiment, trend, confidence, risk) come from the SentimentEngine.
    Tickers nobody is talking about are left out of the result.
    """

    def __init__(self, sentiment: Optional[SentimentEngine] = None):
        self.sentiment = sentiment or SentimentEngine()
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.FETCH_TIMEOUT_SECONDS)
        )

    async def close(self):
        if self.session:
            await self.session.close()

    async def search_and_analyze(self, tickers: Sequence[str]) -> Dict[str, SocialSignals]:
        tickers = [t for t in dict.fromkeys(t.strip() for t in tickers) if t]
        if not tickers:
            return {}

        posts = await self.fetch_posts(tickers)
        return await self.analyze_posts(tickers, posts)

    async def analyze_posts(self, tickers: Sequence[str], posts: Sequence[SocialPost]) -> Dict[str, SocialSignals]:
        """Signals for every ticker mentioned in `posts`."""
        matched: Dict[str, List[SocialPost]] = {}
        for ticker in tickers:
            hits = [p for p in posts if mentions(p, ticker)]
            if hits:
                matched[ticker] = hits

        if not matched:
            logger.info("No social mentions found", tickers=len(tickers), posts=len(posts))
            return {}

        ratings = await self.sentiment.analyze(
            {ticker: [p.content for p in hits] for ticker, hits in matched.items()}
        )

        results = {}
        for ticker, hits in matched.items():
            rating = dict(ratings.get(ticker) or SentimentEngine.fallback_result("NOT_RATED"))
            rating["mentionCount"] = len(hits)
            rating["avgEngagement"] = sum(p.total_engagement for p in hits) / len(hits)
            results[ticker] = SocialSignals.from_dict(rating)

        logger.info("Social analysis complete", tickers=len(tickers), matched=len(results), posts=len(posts))
        return results

    async def fetch_posts(self, tickers: Sequence[str]) -> List[SocialPost]:
        """Posts from every source, de-duplicated. Fails only if every source fails."""
        if not self.session:
            raise RuntimeError("Client not started")

        sources = await asyncio.gather(
            self._fetch_twitter(tickers),
            self._fetch_reddit(tickers),
            return_exceptions=True,
        )
        posts: List[SocialPost] = []
        errors = []
        for name, result in zip(("twitter", "reddit"), sources):
            if isinstance(result, Exception):
                logger.warning("Social source failed", source=name, error=str(result))
                errors.append(f"{name}: {result}")
            else:
                posts.extend(result)

        if len(errors) == len(sources):
            raise FetchError("social", "; ".join(errors))

        unique = {(p.platform, p.id): p for p in posts}
        return list(unique.values())

    # --- Twitter ---

    async def _fetch_twitter(self, tickers: Sequence[str]) -> List[SocialPost]:
        posts = []
        context = _context_clause(settings.context_terms())
        for chunk in _chunks(tickers, TICKERS_PER_QUERY):
            query = "(" + " OR ".join(f'"{t}"' for t in chunk) + ")" + context + " -is:retweet lang:en"
            posts.extend(await self._search_tweets(query))
        return posts

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _search_tweets(self, query: str) -> List[SocialPost]:
        await twitter_limiter.acquire()
        params = {
            "query": query,
            "max_results": str(max(10, min(settings.TWITTER_MAX_RESULTS, 100))),
            "tweet.fields": "id,text,created_at,author_id,public_metrics",
        }
        headers = {"Authorization": f"Bearer {settings.TWITTER_BEARER_TOKEN}"}
        async with self.session.get(TWITTER_SEARCH_URL, params=params, headers=headers) as response:
            if response.status == 429:
                logger.warning("Twitter Rate Limit 429")
            response.raise_for_status()
            data = await response.json()
        return [self._tweet_to_post(t) for t in data.get("data") or []]

    @staticmethod
    def _tweet_to_post(tweet: Dict) -> SocialPost:
        metrics = tweet.get("public_metrics") or {}
        return SocialPost(
            id=str(tweet["id"]),
            platform="twitter",
            content=tweet.get("text", ""),
            author=tweet.get("author_id") or "unknown",
            timestamp=tweet.get("created_at") or datetime.now(timezone.utc).isoformat(),
            engagement={
                "likes": metrics.get("like_count", 0) or 0,
                "retweets": metrics.get("retweet_count", 0) or 0,
                "comments": metrics.get("reply_count", 0) or 0,
            },
            url=f"https://twitter.com/i/web/status/{tweet['id']}",
        )

    # --- Reddit ---

    async def _fetch_reddit(self, tickers: Sequence[str]) -> List[SocialPost]:
        posts = []
        for subreddit in settings.subreddits():
            for chunk in _chunks(tickers, TICKERS_PER_QUERY):
                query = " OR ".join(chunk)
                try:
                    posts.extend(await self._search_subreddit(subreddit, query))
                except aiohttp.ClientResponseError as e:
                    # A private or banned subreddit should not sink the others
                    if e.status in (403, 404):
                        logger.warning("Subreddit unavailable", subreddit=subreddit, status=e.status)
                        break
                    raise
        return posts

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _search_subreddit(self, subreddit: str, query: str) -> List[SocialPost]:
        await reddit_limiter.acquire()
        params = {
            "q": query,
            "restrict_sr": "1",
            "sort": "new",
            "t": "week",
            "limit": str(REDDIT_LIMIT),
        }
        headers = {"User-Agent": settings.REDDIT_USER_AGENT}
        url = REDDIT_SEARCH_URL.format(subreddit=subreddit)
        async with self.session.get(url, params=params, headers=headers) as response:
            response.raise_for_status()
            data = await response.json()
        children = (data.get("data") or {}).get("children") or []
        return [self._reddit_to_post(c.get("data") or {}) for c in children if c.get("data")]

    @staticmethod
    def _reddit_to_post(post: Dict) -> SocialPost:
        created = post.get("created_utc")
        timestamp = (
            datetime.fromtimestamp(created, tz=timezone.utc).isoformat()
            if created else datetime.now(timezone.utc).isoformat()
        )
        return SocialPost(
            id=str(post.get("id")),
            platform="reddit",
            content=f"{post.get('title', '')}\n\n{post.get('selftext') or ''}".strip(),
            author=post.get("author") or "unknown",
            timestamp=timestamp,
            engagement={
                "upvotes": post.get("ups", 0) or 0,
                "comments": post.get("num_comments", 0) or 0,
            },
            url=f"https://reddit.com{post.get('permalink', '')}",
        )
