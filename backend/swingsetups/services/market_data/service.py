"""
Market Data Service

CONTRACT:
    Input: instrument key, symbol, analysis type, optional current price
    Output: MarketPayload

RESPONSIBILITIES:
- Fetch every timeframe for the horizon concurrently (cached briefly)
- Compute indicators with NumPy (no LLM involvement)
- Record frames that could not be fetched instead of failing outright

A frame with no candles is "missing"; an upstream failure aborts the stage.
"""

import asyncio
import logging
from typing import Optional

import numpy as np

from swingsetups.core.config import settings
from swingsetups.core.market_hours import get_ist_now, is_market_open
from swingsetups.schemas.market import (
    AnalysisType,
    IndicatorSnapshot,
    MarketPayload,
    OHLCV,
    TIMEFRAMES_BY_TYPE,
    Timeframe,
    VolumeClass,
)
from swingsetups.services.base import BaseService, ExternalServiceError, InsufficientDataError
from swingsetups.services.cache.redis_client import JsonCache, get_json_cache
from swingsetups.services.market_data import calculations as calc
from swingsetups.services.market_data.upstox import CandleProvider, UpstoxCandleProvider

logger = logging.getLogger(__name__)

# Bars kept per frame in the payload snapshot (triggers need two for crosses)
SNAPSHOT_BARS = 20

CANDLE_TTL = {
    Timeframe.M1: 30,
    Timeframe.M3: 60,
    Timeframe.M15: 120,
    Timeframe.H1: 300,
    Timeframe.D1: 900,
}


def build_market_payload(
    instrument_key: str,
    symbol: str,
    analysis_type: AnalysisType,
    frames: dict[Timeframe, list[OHLCV]],
    current_price: Optional[float] = None,
    missing_frames: Optional[list[str]] = None,
    sector: Optional[str] = None,
) -> MarketPayload:
    """Turn raw candles into the normalized payload. Pure."""
    indicators = IndicatorSnapshot()
    volume_class, volume_ratio = VolumeClass.UNKNOWN, None

    daily = frames.get(Timeframe.D1) or []
    if daily:
        closes = np.array([c.close for c in daily], dtype=float)
        highs = np.array([c.high for c in daily], dtype=float)
        lows = np.array([c.low for c in daily], dtype=float)
        volumes = np.array([c.volume for c in daily], dtype=float)
        indicators.ema20_1D = calc.get_last_valid(calc.ema(closes, 20))
        indicators.ema50_1D = calc.get_last_valid(calc.ema(closes, 50))
        indicators.sma200_1D = calc.get_last_valid(calc.sma(closes, 200))
        indicators.atr14_1D = calc.get_last_valid(calc.atr(highs, lows, closes, 14))
        volume_class, volume_ratio = calc.classify_volume(volumes)

    hourly = frames.get(Timeframe.H1) or []
    if hourly:
        closes = np.array([c.close for c in hourly], dtype=float)
        highs = np.array([c.high for c in hourly], dtype=float)
        lows = np.array([c.low for c in hourly], dtype=float)
        indicators.atr14_1h = calc.get_last_valid(calc.atr(highs, lows, closes, 14))
        indicators.rsi14_1h = calc.get_last_valid(calc.rsi(closes, 14))

    last = current_price
    if last is None:
        # Finest available frame carries the freshest close
        for tf in TIMEFRAMES_BY_TYPE[analysis_type]:
            if frames.get(tf):
                last = frames[tf][-1].close
                break

    return MarketPayload(
        instrument_key=instrument_key,
        symbol=symbol,
        analysis_type=analysis_type,
        last=last,
        indicators=indicators,
        volume_class=volume_class,
        volume_ratio=volume_ratio,
        bars={tf.value: bars[-SNAPSHOT_BARS:] for tf, bars in frames.items() if bars},
        missing_frames=list(missing_frames or []),
        sector=sector,
        fetched_at=get_ist_now(),
    )


class MarketDataService(BaseService[dict, MarketPayload]):
    """Builds MarketPayloads from a CandleProvider."""

    def __init__(self, provider: Optional[CandleProvider] = None, cache: Optional[JsonCache] = None):
        self._provider = provider or UpstoxCandleProvider()
        self._cache = cache or get_json_cache()

    @property
    def name(self) -> str:
        return "market_data"

    async def execute(self, input_data: dict) -> MarketPayload:
        return await self.build_payload(**input_data)

    async def _candles(self, instrument_key: str, timeframe: Timeframe, skip_intraday: bool) -> list[OHLCV]:
        cache_key = f"candles:{instrument_key}:{timeframe.value}"
        cached = await self._cache.get_json(cache_key)
        if cached is not None:
            return [OHLCV.model_validate(c) for c in cached]

        candles = await self._provider.get_candles(instrument_key, timeframe, skip_intraday=skip_intraday)
        await self._cache.set_json(
            cache_key,
            [c.model_dump(mode="json") for c in candles],
            ttl=CANDLE_TTL.get(timeframe, 120),
        )
        return candles

    async def build_payload(
        self,
        instrument_key: str,
        symbol: str,
        analysis_type: AnalysisType,
        current_price: Optional[float] = None,
        sector: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> MarketPayload:
        timeframes = TIMEFRAMES_BY_TYPE[analysis_type]
        skip_intraday = not is_market_open()

        try:
            results = await asyncio.wait_for(
                asyncio.gather(
                    *(self._candles(instrument_key, tf, skip_intraday) for tf in timeframes),
                    return_exceptions=True,
                ),
                timeout=timeout or settings.market_data_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                self.name, "Market data fetch timed out", stage="market_data", key=instrument_key
            ) from e

        frames: dict[Timeframe, list[OHLCV]] = {}
        missing: list[str] = []
        for tf, result in zip(timeframes, results):
            if isinstance(result, InsufficientDataError):
                missing.append(tf.value)
            elif isinstance(result, BaseException):
                raise result
            else:
                frames[tf] = result

        if missing:
            logger.info(f"[market_data] {instrument_key} missing frames: {missing}")

        return build_market_payload(
            instrument_key=instrument_key,
            symbol=symbol,
            analysis_type=analysis_type,
            frames=frames,
            current_price=current_price,
            missing_frames=missing,
            sector=sector,
        )

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        await self._provider.close()


# Singleton instance
_market_data_service: Optional[MarketDataService] = None


def get_market_data_service() -> MarketDataService:
    """Get the market data service singleton."""
    global _market_data_service
    if _market_data_service is None:
        _market_data_service = MarketDataService()
    return _market_data_service
