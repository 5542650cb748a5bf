"""Pytest configuration and fixtures."""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Optional, Union

import pytest
import pytest_asyncio

from swingsetups.db.database import close_db, init_db
from swingsetups.schemas.analysis import AnalysisRecord
from swingsetups.schemas.market import (
    AnalysisType,
    IndicatorSnapshot,
    MarketPayload,
    OHLCV,
    VolumeClass,
)
from swingsetups.schemas.stages import TokenUsage
from swingsetups.services.analysis.orchestrator import AnalysisOrchestrator
from swingsetups.services.analysis.repository import AnalysisRepository
from swingsetups.services.base import ExternalServiceError
from swingsetups.services.cache.redis_client import JsonCache
from swingsetups.services.llm.client import Completion, LLMProvider
from swingsetups.services.news.service import NewsService
from swingsetups.services.notifications.dispatcher import NotificationDispatcher
from swingsetups.services.quota.guard import QuotaGuard
from swingsetups.services.usage.ledger import UsageLedger


# =============================================================================
# FAKES
# =============================================================================


SENTIMENT_JSON = json.dumps(
    {
        "sentiment": "positive",
        "confidence": 0.7,
        "reasoning": "Quarterly results beat estimates",
        "signals": ["earnings beat", "order wins"],
    }
)

PREFLIGHT_JSON = json.dumps({"notes": ["Daily trend intact above all averages"]})

SKELETON_BUY_JSON = json.dumps(
    {
        "type": "BUY",
        "archetype": "pullback",
        "entryType": "limit",
        "entry": 100.0,
        "target": 103.0,
        "stopLoss": 98.5,
        "rationale": "Pullback to EMA50 inside an uptrend",
    }
)

FINALIZE_JSON = json.dumps(
    {
        "title": "Pullback buy near 100",
        "reasoning": ["EMA20 above EMA50", {"because": "Price holding above SMA200"}],
        "beginner_summary": "The stock is in an uptrend and has dipped to a support area.",
        "warnings": ["Broader market weak"],
        "triggers": [
            {"id": "T1", "timeframe": "1h", "left": {"ref": "close"}, "op": ">=", "right": {"ref": "entry"}},
            {"id": "T2", "timeframe": "1h", "left": {"ref": "madeUpField"}, "op": ">", "right": {"value": 1}},
        ],
        "invalidations_pre_entry": [
            {"id": "I1", "timeframe": "1h", "left": {"ref": "close"}, "op": "<=", "right": {"ref": "stopLoss"}},
        ],
    }
)


class FakeCompletionClient:
    """Canned completions keyed by stage. A value may be an exception to raise."""

    def __init__(
        self,
        responses: Optional[dict[str, Union[str, Exception]]] = None,
        delay: float = 0.0,
        model: str = "o4-mini",
    ):
        self.responses = {
            "sentiment": SENTIMENT_JSON,
            "preflight": PREFLIGHT_JSON,
            "skeleton": SKELETON_BUY_JSON,
            "finalize": FINALIZE_JSON,
        }
        self.responses.update(responses or {})
        self.delay = delay
        self.model = model
        self.calls: list[dict] = []

    async def complete(
        self,
        model: str,
        messages: list[dict],
        json_only: bool = True,
        *,
        stage: str = "completion",
        timeout: Optional[float] = None,
        max_tokens: int = 4096,
    ) -> Completion:
        self.calls.append({"model": model, "stage": stage, "messages": messages})
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses[stage]
        if isinstance(response, Exception):
            raise response
        return Completion(
            content=response,
            model=model,
            provider=LLMProvider.OPENAI,
            token_usage=TokenUsage(input_tokens=1000, output_tokens=200, cached_tokens=100),
        )

    async def health_check(self) -> bool:
        return True

    def stages_called(self) -> list[str]:
        return [c["stage"] for c in self.calls]


class FakeMarketData:
    """Returns a prepared payload instead of calling the broker API."""

    def __init__(self, payload: Optional[MarketPayload] = None, error: Optional[Exception] = None):
        self.payload = payload
        self.error = error
        self.calls = 0

    async def build_payload(self, instrument_key, symbol, analysis_type, current_price=None, sector=None, timeout=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.payload.model_copy(
            update={"instrument_key": instrument_key, "symbol": symbol, "analysis_type": analysis_type}
        )

    async def close(self) -> None:
        pass


class FakeNewsService(NewsService):
    """Real sentiment classification over canned headlines."""

    def __init__(self, completion_client, headlines: Optional[list[str]] = None):
        super().__init__(completion_client=completion_client, cache=JsonCache())
        self.headlines = headlines if headlines is not None else [
            "Reliance Q2 profit beats estimates",
            "Reliance Jio adds record subscribers",
        ]

    async def fetch_news(self, query: str, num_results: int = 10) -> list[str]:
        return list(self.headlines)


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.completed: list[tuple[str, AnalysisRecord]] = []
        self.failed: list[tuple[str, AnalysisRecord]] = []

    async def notify_complete(self, user_id: str, record: AnalysisRecord) -> None:
        self.completed.append((user_id, record))

    async def notify_failure(self, user_id: str, record: AnalysisRecord) -> None:
        self.failed.append((user_id, record))


# =============================================================================
# PAYLOADS
# =============================================================================


def make_bars(closes: list[float], start: Optional[datetime] = None, step: timedelta = timedelta(hours=1)) -> list[OHLCV]:
    start = start or datetime(2025, 8, 11, 9, 15)
    return [
        OHLCV(
            timestamp=start + i * step,
            open=c,
            high=c + 0.5,
            low=c - 0.5,
            close=c,
            volume=10_000 + i,
        )
        for i, c in enumerate(closes)
    ]


def make_payload(**overrides) -> MarketPayload:
    """Bullish setup: EMA20=105 > EMA50=100 > SMA200=95, last=100, ATR14=2."""
    fields = dict(
        instrument_key="NSE_EQ|INE002A01018",
        symbol="RELIANCE",
        analysis_type=AnalysisType.SWING,
        last=100.0,
        indicators=IndicatorSnapshot(
            ema20_1D=105.0,
            ema50_1D=100.0,
            sma200_1D=95.0,
            atr14_1D=2.0,
            atr14_1h=0.8,
            rsi14_1h=60.0,
        ),
        volume_class=VolumeClass.ABOVE_AVERAGE,
        volume_ratio=1.6,
        bars={
            "1h": make_bars([99.2, 99.6, 100.4]),
            "1D": make_bars([97.0, 98.5, 100.0], step=timedelta(days=1)),
        },
    )
    fields.update(overrides)
    return MarketPayload(**fields)


@pytest.fixture
def payload() -> MarketPayload:
    return make_payload()


@pytest.fixture
def empty_payload() -> MarketPayload:
    """No last price, no indicators, no bars."""
    return make_payload(
        last=None,
        indicators=IndicatorSnapshot(),
        volume_class=VolumeClass.UNKNOWN,
        volume_ratio=None,
        bars={},
        missing_frames=["15m", "1h", "1D"],
    )


# =============================================================================
# DATABASE / SERVICES
# =============================================================================


@pytest_asyncio.fixture
async def db(tmp_path):
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    yield
    await close_db()


@pytest.fixture
def completion_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_orchestrator(db, dispatcher):
    """Build an orchestrator around fakes; share the quota guard across calls."""
    guard = QuotaGuard()

    def _make(
        payload: Optional[MarketPayload] = None,
        client: Optional[FakeCompletionClient] = None,
        market_error: Optional[ExternalServiceError] = None,
        headlines: Optional[list[str]] = None,
    ) -> AnalysisOrchestrator:
        client = client or FakeCompletionClient()
        return AnalysisOrchestrator(
            repository=AnalysisRepository(),
            market_data=FakeMarketData(payload or make_payload(), error=market_error),
            news=FakeNewsService(client, headlines),
            completion_client=client,
            quota=guard,
            ledger=UsageLedger(),
            dispatcher=dispatcher,
        )

    return _make
