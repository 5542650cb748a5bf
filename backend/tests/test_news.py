"""Tests for headline sentiment classification and its cache."""

import json

from swingsetups.schemas.strategy import Trend
from swingsetups.services.base import ExternalServiceError
from swingsetups.services.news.service import news_query

from conftest import FakeCompletionClient, FakeNewsService


class TestSentiment:
    """News is optional context: failures degrade to neutral."""

    async def test_classification(self):
        client = FakeCompletionClient()
        news = FakeNewsService(client)

        context, usage = await news.get_sentiment("RELIANCE", "Reliance Industries", "swing")

        assert context.sentiment == "positive"
        assert context.bias == Trend.BULLISH
        assert context.confidence == 0.7
        assert len(context.headlines) == 2
        assert usage.stage == "sentiment"

    async def test_cached_per_symbol_and_horizon(self):
        client = FakeCompletionClient()
        news = FakeNewsService(client)

        await news.get_sentiment("RELIANCE", "", "swing")
        cached, usage = await news.get_sentiment("reliance", "", "swing")
        await news.get_sentiment("RELIANCE", "", "intraday")

        assert usage is None
        assert cached.sentiment == "positive"
        assert client.stages_called() == ["sentiment", "sentiment"]

    async def test_no_headlines_is_neutral_without_a_call(self):
        client = FakeCompletionClient()
        news = FakeNewsService(client, headlines=[])

        context, usage = await news.get_sentiment("RELIANCE", "", "swing")

        assert context.sentiment == "neutral"
        assert context.confidence == 0.0
        assert usage is None
        assert client.calls == []

    async def test_completion_failure_is_neutral_and_not_cached(self):
        client = FakeCompletionClient(responses={"sentiment": ExternalServiceError("completion", "timed out")})
        news = FakeNewsService(client)

        context, usage = await news.get_sentiment("RELIANCE", "", "swing")

        assert context.sentiment == "neutral"
        assert usage is None
        assert await news.cached_sentiment("RELIANCE", "swing") is None

    async def test_unknown_label_and_bad_confidence(self):
        reply = json.dumps({"sentiment": "euphoric", "confidence": "very", "signals": "not a list"})
        news = FakeNewsService(FakeCompletionClient(responses={"sentiment": reply}))

        context, _ = await news.get_sentiment("RELIANCE", "", "swing")

        assert context.sentiment == "neutral"
        assert context.confidence == 0.5
        assert context.signals == []

    def test_query_prefers_company_name(self):
        assert news_query("RELIANCE", "Reliance Industries") == "Reliance Industries stock NSE"
        assert news_query("TCS") == "TCS stock NSE"
