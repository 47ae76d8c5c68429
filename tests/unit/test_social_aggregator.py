# tests/unit/test_social_aggregator.py
"""
Unit tests for the Twitter/Reddit social aggregator
"""
import json
from unittest.mock import AsyncMock

import pytest

from trending.analysis.sentiment import SentimentEngine
from trending.analysis.social import SocialMediaAggregator, SocialPost, _context_clause, mentions
from trending.errors import FetchError
from trending.refresh.social import SocialRefresher


def post(content, pid="1", platform="twitter", **engagement):
    return SocialPost(
        id=pid,
        platform=platform,
        content=content,
        author="someone",
        timestamp="2024-06-01T12:00:00+00:00",
        engagement=engagement,
    )


@pytest.fixture
def sentiment():
    engine = AsyncMock()
    engine.analyze.return_value = {
        "PEPE": {
            "sentiment": "bullish",
            "sentimentScore": 0.8,
            "trendingScore": 70,
            "confidence": 0.9,
            "riskLevel": "low",
            "recommendation": "buy",
            "reasoning": "lots of frogs",
        }
    }
    return engine


@pytest.mark.unit
class TestMentions:

    def test_cashtag_and_bare_word(self):
        assert mentions(post("loading up on $PEPE today"), "PEPE")
        assert mentions(post("pepe is pumping"), "PEPE")

    def test_no_match_inside_other_words(self):
        assert not mentions(post("PEPES are not the same"), "PEPE")
        assert not mentions(post("xpepe"), "PEPE")

    def test_context_clause_quotes_phrases(self):
        assert _context_clause(["meme coin", "crypto"]) == ' ("meme coin" OR crypto)'
        assert _context_clause([]) == ""


@pytest.mark.unit
class TestSearchAndAnalyze:

    @pytest.mark.asyncio
    async def test_counts_mentions_and_engagement_locally(self, sentiment):
        aggregator = SocialMediaAggregator(sentiment=sentiment)
        aggregator.fetch_posts = AsyncMock(return_value=[
            post("$PEPE to the moon", pid="1", likes=10, retweets=5),
            post("pepe pepe pepe", pid="2", platform="reddit", upvotes=25),
            post("unrelated $DOGE", pid="3", likes=100),
        ])

        results = await aggregator.search_and_analyze(["PEPE", "WIF"])

        assert set(results) == {"PEPE"}
        signals = results["PEPE"]
        assert signals.mention_count == 2
        assert signals.avg_engagement == 20
        assert signals.sentiment_score == 0.8
        assert signals.risk_level == "low"
        sentiment.analyze.assert_awaited_once()
        (posts_by_ticker,), _ = sentiment.analyze.await_args
        assert list(posts_by_ticker) == ["PEPE"]

    @pytest.mark.asyncio
    async def test_unrated_ticker_gets_neutral_signals(self, sentiment):
        sentiment.analyze.return_value = {}
        aggregator = SocialMediaAggregator(sentiment=sentiment)
        aggregator.fetch_posts = AsyncMock(return_value=[post("BONK everywhere")])
        results = await aggregator.search_and_analyze(["BONK"])
        assert results["BONK"].mention_count == 1
        assert results["BONK"].confidence == 0
        assert results["BONK"].risk_level == "medium"

    @pytest.mark.asyncio
    async def test_nobody_talking_skips_sentiment(self, sentiment):
        aggregator = SocialMediaAggregator(sentiment=sentiment)
        aggregator.fetch_posts = AsyncMock(return_value=[post("gm")])
        assert await aggregator.search_and_analyze(["PEPE"]) == {}
        sentiment.analyze.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_tickers_short_circuit(self, sentiment):
        aggregator = SocialMediaAggregator(sentiment=sentiment)
        aggregator.fetch_posts = AsyncMock()
        assert await aggregator.search_and_analyze(["", "  "]) == {}
        aggregator.fetch_posts.assert_not_called()


@pytest.mark.unit
class TestFetchPosts:

    @pytest.fixture
    def aggregator(self, sentiment):
        aggregator = SocialMediaAggregator(sentiment=sentiment)
        aggregator.session = object()
        return aggregator

    @pytest.mark.asyncio
    async def test_one_source_down_is_tolerated(self, aggregator):
        aggregator._fetch_twitter = AsyncMock(side_effect=RuntimeError("401"))
        aggregator._fetch_reddit = AsyncMock(return_value=[post("a", pid="r1", platform="reddit")])
        posts = await aggregator.fetch_posts(["PEPE"])
        assert [p.id for p in posts] == ["r1"]

    @pytest.mark.asyncio
    async def test_every_source_down_raises(self, aggregator):
        aggregator._fetch_twitter = AsyncMock(side_effect=RuntimeError("401"))
        aggregator._fetch_reddit = AsyncMock(side_effect=RuntimeError("503"))
        with pytest.raises(FetchError):
            await aggregator.fetch_posts(["PEPE"])

    @pytest.mark.asyncio
    async def test_duplicates_collapsed(self, aggregator):
        aggregator._fetch_twitter = AsyncMock(return_value=[post("a", pid="1"), post("a", pid="1")])
        aggregator._fetch_reddit = AsyncMock(return_value=[post("a", pid="1", platform="reddit")])
        posts = await aggregator.fetch_posts(["PEPE"])
        assert sorted((p.platform, p.id) for p in posts) == [("reddit", "1"), ("twitter", "1")]

    @pytest.mark.asyncio
    async def test_requires_started_session(self, sentiment):
        with pytest.raises(RuntimeError):
            await SocialMediaAggregator(sentiment=sentiment).fetch_posts(["PEPE"])


@pytest.mark.unit
class TestPostMapping:

    def test_tweet_engagement(self):
        tweet = {
            "id": "42",
            "text": "$PEPE",
            "author_id": "7",
            "created_at": "2024-06-01T12:00:00Z",
            "public_metrics": {"like_count": 3, "retweet_count": 2, "reply_count": 1},
        }
        mapped = SocialMediaAggregator._tweet_to_post(tweet)
        assert mapped.total_engagement == 6
        assert mapped.url.endswith("/42")

    def test_reddit_title_and_body(self):
        mapped = SocialMediaAggregator._reddit_to_post({
            "id": "abc", "title": "PEPE", "selftext": "thoughts?", "ups": 12,
            "num_comments": 4, "created_utc": 1717243200, "permalink": "/r/x/abc",
        })
        assert mapped.content == "PEPE\n\nthoughts?"
        assert mapped.total_engagement == 16
        assert mapped.timestamp.startswith("2024-06-01T12:00:00")


@pytest.mark.unit
class TestSentimentEngine:

    @pytest.mark.asyncio
    async def test_without_provider_everything_is_neutral(self):
        engine = SentimentEngine()
        assert not engine.available
        results = await engine.analyze({"PEPE": ["gm"]})
        assert results["PEPE"]["riskLevel"] == "medium"
        assert "NO_PROVIDER" in results["PEPE"]["reasoning"]

    @pytest.mark.asyncio
    async def test_parses_fenced_json_and_normalises(self, monkeypatch):
        engine = SentimentEngine()
        monkeypatch.setattr(engine, "openai_client", object())
        engine._complete = AsyncMock(return_value="""```json
        {"tokens": [
          {"ticker": "pepe", "sentimentScore": 0.5, "trendingScore": 60,
           "confidence": 0.7, "riskLevel": "HIGH", "sentiment": "bullish"}
        ]}
        ```""")
        results = await engine.analyze({"PEPE": ["gm"], "WIF": ["hat"]})
        assert results["PEPE"]["riskLevel"] == "high"
        assert results["PEPE"]["trendingScore"] == 60
        assert "NOT_RATED" in results["WIF"]["reasoning"]

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self, monkeypatch):
        engine = SentimentEngine()
        monkeypatch.setattr(engine, "openai_client", object())
        engine._complete = AsyncMock(side_effect=RuntimeError("boom"))
        results = await engine.analyze({"PEPE": ["gm"]})
        assert "AI_ERROR" in results["PEPE"]["reasoning"]

    @pytest.mark.asyncio
    async def test_bad_row_only_affects_its_ticker(self, monkeypatch):
        engine = SentimentEngine()
        monkeypatch.setattr(engine, "openai_client", object())
        engine._complete = AsyncMock(return_value=json.dumps({"tokens": [
            {"ticker": "PEPE", "sentimentScore": "bullish"},
            {"ticker": "DOGE", "sentimentScore": 0.4, "trendingScore": 55, "confidence": 0.6, "riskLevel": "low"},
        ]}))
        results = await engine.analyze({"PEPE": ["gm"], "DOGE": ["wow"]})
        assert "BAD_ROW" in results["PEPE"]["reasoning"]
        assert results["DOGE"]["trendingScore"] == 55

    @pytest.mark.asyncio
    async def test_non_list_tokens_falls_back(self, monkeypatch):
        engine = SentimentEngine()
        monkeypatch.setattr(engine, "openai_client", object())
        engine._complete = AsyncMock(return_value='{"tokens": 5}')
        results = await engine.analyze({"PEPE": ["gm"]})
        assert "AI_ERROR" in results["PEPE"]["reasoning"]


@pytest.mark.unit
class TestMalformedRatingsThroughRefresh:

    @pytest.mark.asyncio
    async def test_good_ticker_written_despite_bad_row(self, store, seed, clock, monkeypatch):
        pepe = await seed("0xpepe", 50, symbol="PEPE")
        doge = await seed("0xdoge", 50, symbol="DOGE")

        engine = SentimentEngine()
        monkeypatch.setattr(engine, "openai_client", object())
        engine._complete = AsyncMock(return_value=json.dumps({"tokens": [
            {"ticker": "PEPE", "sentimentScore": "bullish"},
            {"ticker": "DOGE", "sentimentScore": 0.4, "trendingScore": 55, "confidence": 0.6, "riskLevel": "low"},
        ]}))
        aggregator = SocialMediaAggregator(sentiment=engine)
        aggregator.fetch_posts = AsyncMock(return_value=[
            post("$PEPE pumping", pid="1"), post("DOGE forever", pid="2"),
        ])

        report = await SocialRefresher(store, aggregator, clock, timeout=1).refresh([pepe, doge])

        assert sorted(report.refreshed) == ["0xdoge", "0xpepe"]
        stored = await store.get("0xdoge")
        assert stored.social_analysis["trendingScore"] == 55
        assert stored.social_score is not None
