"""
News & Sentiment Service

Fetches headlines from Google News RSS and classifies their sentiment for a
trading horizon with one JSON completion.

News is context, not a required input: fetch or classification failures
degrade to neutral sentiment instead of failing the analysis.
"""

import logging
import time
import xml.etree.ElementTree as ET
from typing import Optional
from urllib.parse import quote_plus

import aiohttp

from swingsetups.core.config import settings
from swingsetups.schemas.stages import StageUsage
from swingsetups.schemas.strategy import SentimentContext
from swingsetups.services.base import ServiceError
from swingsetups.services.cache.redis_client import JsonCache, get_json_cache
from swingsetups.services.llm.client import CompletionClient, get_completion_client
from swingsetups.services.llm.parsing import parse_json_content
from swingsetups.services.llm.prompts import format_sentiment_prompt

logger = logging.getLogger(__name__)

GOOGLE_NEWS_RSS = "https://news.google.com/rss/search?q={query}&hl=en-IN&gl=IN&ceid=IN:en"

SENTIMENT_LABELS = {"positive", "neutral", "negative"}


def news_query(symbol: str, stock_name: str = "") -> str:
    return f"{stock_name or symbol} stock NSE"


class NewsService:
    """
    Headlines + sentiment.

    Sources:
    - Google News RSS (free, no API key needed)
    """

    def __init__(
        self,
        completion_client: Optional[CompletionClient] = None,
        cache: Optional[JsonCache] = None,
    ):
        self._session: Optional[aiohttp.ClientSession] = None
        self._client = completion_client
        self._cache = cache or get_json_cache()

    @property
    def client(self) -> CompletionClient:
        return self._client or get_completion_client()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure we have an active HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.news_timeout_seconds),
                headers={
                    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
                },
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    # ============ Headlines ============

    async def fetch_news(self, query: str, num_results: int = 10) -> list[str]:
        """Headline titles for a search query, newest first as RSS orders them."""
        session = await self._ensure_session()
        url = GOOGLE_NEWS_RSS.format(query=quote_plus(query))

        try:
            async with session.get(url) as response:
                if response.status != 200:
                    logger.warning(f"Google News returned status {response.status}")
                    return []
                content = await response.text()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning(f"Error fetching Google News for '{query}': {e}")
            return []

        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            logger.warning(f"Unparsable RSS for '{query}': {e}")
            return []

        headlines = []
        for item in root.findall(".//item")[:num_results]:
            title = item.find("title")
            if title is not None and title.text:
                headlines.append(title.text.strip())
        return headlines

    # ============ Sentiment ============

    async def classify_sentiment(
        self,
        symbol: str,
        headlines: list[str],
        horizon: str,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> tuple[SentimentContext, Optional[StageUsage]]:
        """Classify the top 5 headlines. Neutral with zero confidence when there is nothing to read."""
        if not headlines:
            return SentimentContext(reasoning="No recent headlines"), None

        model = model or settings.sentiment_model
        started = time.perf_counter()
        try:
            completion = await self.client.complete(
                model,
                format_sentiment_prompt(symbol, headlines, horizon),
                json_only=True,
                stage="sentiment",
                timeout=timeout,
                max_tokens=400,
            )
            data = parse_json_content(completion.content, stage="sentiment")
        except ServiceError as e:
            logger.warning(f"[sentiment] {symbol}: {e.message}; defaulting to neutral")
            return SentimentContext(reasoning="Sentiment unavailable", headlines=headlines[:5]), None

        label = str(data.get("sentiment", "neutral")).lower()
        if label not in SENTIMENT_LABELS:
            label = "neutral"
        try:
            confidence = min(1.0, max(0.0, float(data.get("confidence", 0.5))))
        except (TypeError, ValueError):
            confidence = 0.5

        signals = data.get("signals") or []
        context = SentimentContext(
            sentiment=label,
            confidence=confidence,
            reasoning=str(data.get("reasoning", "")),
            signals=[str(s) for s in signals][:5] if isinstance(signals, list) else [],
            headlines=headlines[:5],
        )
        usage = StageUsage(
            stage="sentiment",
            model=completion.model,
            tokens=completion.token_usage,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return context, usage

    async def cached_sentiment(self, symbol: str, horizon: str) -> Optional[SentimentContext]:
        cached = await self._cache.get_json(self._cache_key(symbol, horizon))
        if cached is None:
            return None
        return SentimentContext.model_validate(cached)

    async def store_sentiment(self, symbol: str, horizon: str, context: SentimentContext) -> None:
        await self._cache.set_json(
            self._cache_key(symbol, horizon), context.model_dump(), ttl=settings.sentiment_cache_ttl_seconds
        )

    @staticmethod
    def _cache_key(symbol: str, horizon: str) -> str:
        return f"sentiment:{symbol.upper()}:{horizon}"

    async def get_sentiment(
        self,
        symbol: str,
        stock_name: str,
        horizon: str,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> tuple[SentimentContext, Optional[StageUsage]]:
        """Fetch + classify, cached per (symbol, horizon)."""
        cached = await self.cached_sentiment(symbol, horizon)
        if cached is not None:
            return cached, None

        headlines = await self.fetch_news(news_query(symbol, stock_name))
        context, usage = await self.classify_sentiment(symbol, headlines, horizon, model, timeout)

        # Only real classifications are cached; neutral defaults are retried next time
        if usage is not None:
            await self.store_sentiment(symbol, horizon, context)
        return context, usage


# Singleton instance
_news_service: Optional[NewsService] = None


def get_news_service() -> NewsService:
    """Get the news service singleton."""
    global _news_service
    if _news_service is None:
        _news_service = NewsService()
    return _news_service
