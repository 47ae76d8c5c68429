import json
from typing import Any, Dict, List

from google import genai
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from trending.config import settings
from trending.ranking.scoring import RiskLevel
from trending.utils.logging_config import logger

MAX_SNIPPETS_PER_TICKER = 8
SNIPPET_CHARS = 280


def _is_quota_error(exc: BaseException) -> bool:
    text = str(exc)
    return "429" in text or "RESOURCE_EXHAUSTED" in text


def _strip_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```json"):
        content = content.replace("```json", "").replace("```", "").strip()
    elif content.startswith("```"):
        content = content.replace("```", "").strip()
    return content


class SentimentEngine:
    """
    Rates the social chatter around a batch of tickers with an LLM (OpenAI, DeepSeek or Gemini).

    Returns, per ticker: sentimentScore [-1, 1], trendingScore [0, 100], confidence [0, 1],
    riskLevel (low|medium|high|extreme), sentiment, recommendation and reasoning.
    """

    def __init__(self):
        self.provider = settings.AI_PROVIDER.lower()
        self.openai_client = None
        self.gemini_client = None

        if self.provider == "openai" and settings.OPENAI_API_KEY:
            self.openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        elif self.provider == "deepseek" and settings.DEEPSEEK_API_KEY:
            self.openai_client = AsyncOpenAI(
                api_key=settings.DEEPSEEK_API_KEY,
                base_url="https://api.deepseek.com"
            )
        elif self.provider == "gemini" and settings.GEMINI_API_KEY:
            self.gemini_client = genai.Client(api_key=settings.GEMINI_API_KEY)

    @property
    def available(self) -> bool:
        return self.openai_client is not None or self.gemini_client is not None

    async def analyze(self, posts_by_ticker: Dict[str, List[str]]) -> Dict[str, Dict[str, Any]]:
        tickers = list(posts_by_ticker)
        if not tickers:
            return {}
        if not self.available:
            logger.warning("No sentiment provider configured. Using neutral sentiment.",
                           provider=self.provider)
            return {t: self.fallback_result("NO_PROVIDER") for t in tickers}

        prompt = self._build_prompt(posts_by_ticker)
        try:
            content = await self._complete(prompt)
            parsed = json.loads(_strip_fences(content))
        except Exception as e:
            logger.error(f"Sentiment analysis failed ({self.provider})", error=str(e))
            return {t: self.fallback_result("AI_ERROR") for t in tickers}

        rows = parsed.get("tokens", []) if isinstance(parsed, dict) else parsed
        if not isinstance(rows, list):
            logger.error("Sentiment response has no token list", provider=self.provider)
            return {t: self.fallback_result("AI_ERROR") for t in tickers}

        by_key = {str(row.get("ticker", "")).lower(): row for row in rows if isinstance(row, dict)}
        results = {}
        for ticker in tickers:
            row = by_key.get(ticker.lower())
            if not row:
                results[ticker] = self.fallback_result("NOT_RATED")
                continue
            try:
                results[ticker] = self._normalise(row)
            except (TypeError, ValueError) as e:
                logger.warning("Discarding malformed sentiment row", ticker=ticker, error=str(e))
                results[ticker] = self.fallback_result("BAD_ROW")
        return results

    def _build_prompt(self, posts_by_ticker: Dict[str, List[str]]) -> str:
        sample = {
            ticker: [p[:SNIPPET_CHARS] for p in posts[:MAX_SNIPPETS_PER_TICKER]]
            for ticker, posts in posts_by_ticker.items()
        }
        return f"""
        You are a crypto social-media analyst. Rate the recent chatter about each meme coin ticker.

        POSTS BY TICKER:
        {json.dumps(sample, indent=2)}

        TASK:
        Return a valid JSON object strictly following this schema:
        {{
          "tokens": [
            {{
              "ticker": "<ticker exactly as given>",
              "sentiment": "<bullish|bearish|neutral>",
              "sentimentScore": <-1..1 float>,
              "trendingScore": <0-100 integer, how fast attention is growing>,
              "confidence": <0-1 float>,
              "riskLevel": "<low|medium|high|extreme>",
              "recommendation": "<buy|hold|sell|avoid>",
              "reasoning": "<max 2 sentences>"
            }}
          ]
        }}

        CRITERIA:
        - extreme risk: coordinated shilling, rug or scam reports.
        - high trendingScore: many distinct authors, rising engagement.
        """

    @retry(
        retry=retry_if_exception(_is_quota_error),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=15, min=15, max=30),
        reraise=True,
    )
    async def _complete(self, prompt: str) -> str:
        if self.openai_client is not None:
            response = await self.openai_client.chat.completions.create(
                model=settings.AI_MODEL,
                messages=[
                    {"role": "system", "content": "You are a JSON-only API. Output ONLY raw JSON."},
                    {"role": "user", "content": prompt}
                ],
                temperature=0.2,
                response_format={"type": "json_object"}
            )
            return response.choices[0].message.content

        response = await self.gemini_client.aio.models.generate_content(
            model=settings.AI_MODEL,
            contents=f"Output strictly VALID JSON. {prompt}",
            config={"response_mime_type": "application/json"}
        )
        return response.text

    @staticmethod
    def _normalise(row: Dict[str, Any]) -> Dict[str, Any]:
        level = RiskLevel.parse(row.get("riskLevel"))
        return {
            "sentiment": row.get("sentiment", "neutral"),
            "sentimentScore": float(row.get("sentimentScore", 0) or 0),
            "trendingScore": float(row.get("trendingScore", 0) or 0),
            "confidence": float(row.get("confidence", 0) or 0),
            # Unknown labels pass through; the scorer applies its default penalty
            "riskLevel": level.value if level else row.get("riskLevel"),
            "recommendation": row.get("recommendation", "hold"),
            "reasoning": row.get("reasoning", ""),
        }

    @staticmethod
    def fallback_result(reason: str) -> Dict[str, Any]:
        return {
            "sentiment": "neutral",
            "sentimentScore": 0.0,
            "trendingScore": 0.0,
            "confidence": 0.0,
            "riskLevel": RiskLevel.MEDIUM.value,
            "recommendation": "hold",
            "reasoning": f"Sentiment analysis skipped: {reason}",
        }
