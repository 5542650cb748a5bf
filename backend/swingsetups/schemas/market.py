"""
CONTRACT 1: Market Data

Input: instrument key + analysis type
Output: MarketPayload

Normalized candles and the indicator snapshot every stage reads from.
Stages may only reference values that exist in MarketPayload.reference_table().
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================


class Timeframe(str, Enum):
    M1 = "1m"
    M3 = "3m"
    M15 = "15m"
    H1 = "1h"
    D1 = "1D"


class AnalysisType(str, Enum):
    SWING = "swing"
    INTRADAY = "intraday"


class VolumeClass(str, Enum):
    ABOVE_AVERAGE = "ABOVE_AVERAGE"
    AVERAGE = "AVERAGE"
    BELOW_AVERAGE = "BELOW_AVERAGE"
    UNKNOWN = "UNKNOWN"


# Candle sets fetched per horizon
TIMEFRAMES_BY_TYPE: dict[AnalysisType, list[Timeframe]] = {
    AnalysisType.SWING: [Timeframe.M15, Timeframe.H1, Timeframe.D1],
    AnalysisType.INTRADAY: [Timeframe.M1, Timeframe.M3, Timeframe.M15, Timeframe.H1, Timeframe.D1],
}

# Scalar references a trigger may point at
PAYLOAD_REFS = {
    "priceContext.last": "last",
    "trendMomentum.ema20_1D.ema20": "ema20_1D",
    "trendMomentum.ema50_1D.ema50": "ema50_1D",
    "trendMomentum.sma200_1D.sma200": "sma200_1D",
    "trendMomentum.atr14_1D": "atr14_1D",
    "trendMomentum.atr14_1h": "atr14_1h",
    "trendMomentum.rsi14_1h": "rsi14_1h",
}

# Bar fields resolved on the trigger's timeframe
BAR_REFS = {"open", "high", "low", "close", "volume"}

# Strategy levels
LEVEL_REFS = {"entry", "target", "stopLoss"}


# =============================================================================
# CANDLES
# =============================================================================


class OHLCV(BaseModel):
    """Single candlestick data point."""

    timestamp: datetime
    open: float = Field(..., gt=0)
    high: float = Field(..., gt=0)
    low: float = Field(..., gt=0)
    close: float = Field(..., gt=0)
    volume: int = Field(..., ge=0)


# =============================================================================
# OUTPUT: MarketPayload
# =============================================================================


class IndicatorSnapshot(BaseModel):
    """Latest indicator values. None means the frame did not have enough bars."""

    ema20_1D: Optional[float] = None
    ema50_1D: Optional[float] = None
    sma200_1D: Optional[float] = None
    atr14_1D: Optional[float] = None
    atr14_1h: Optional[float] = None
    rsi14_1h: Optional[float] = None


class MarketPayload(BaseModel):
    """
    Normalized market payload passed to every stage.
    Sent by: Market Data Service
    Received by: Stage Pipeline, Scoring Engine
    """

    instrument_key: str
    symbol: str
    analysis_type: AnalysisType = AnalysisType.SWING
    last: Optional[float] = None
    indicators: IndicatorSnapshot = Field(default_factory=IndicatorSnapshot)
    volume_class: VolumeClass = VolumeClass.UNKNOWN
    volume_ratio: Optional[float] = None
    bars: dict[str, list[OHLCV]] = Field(
        default_factory=dict,
        description="Most recent bars per timeframe, oldest first",
    )
    missing_frames: list[str] = Field(default_factory=list)
    sector: Optional[str] = None
    fetched_at: Optional[datetime] = None

    def atr(self) -> Optional[float]:
        """ATR that drives target/stop distances for this horizon."""
        if self.analysis_type == AnalysisType.INTRADAY:
            return self.indicators.atr14_1h or self.indicators.atr14_1D
        return self.indicators.atr14_1D

    def reference_table(self) -> dict[str, Optional[float]]:
        """Flat map of every scalar reference a trigger may use."""
        table: dict[str, Optional[float]] = {"priceContext.last": self.last}
        for ref, field in PAYLOAD_REFS.items():
            if field != "last":
                table[ref] = getattr(self.indicators, field)
        return table

    def bar_series(self, timeframe: str, field: str) -> list[float]:
        bars = self.bars.get(timeframe) or []
        return [float(getattr(bar, field)) for bar in bars]

    def to_prompt_dict(self) -> dict:
        """Compact view for prompts: no raw history beyond the last few bars."""
        return {
            "priceContext": {"last": self.last},
            "trendMomentum": {
                "ema20_1D": {"ema20": self.indicators.ema20_1D},
                "ema50_1D": {"ema50": self.indicators.ema50_1D},
                "sma200_1D": {"sma200": self.indicators.sma200_1D},
                "atr14_1D": self.indicators.atr14_1D,
                "atr14_1h": self.indicators.atr14_1h,
                "rsi14_1h": self.indicators.rsi14_1h,
            },
            "volume": {"class": self.volume_class.value, "ratio": self.volume_ratio},
            "snapshots": {
                f"lastBars{tf}": [
                    [b.timestamp.isoformat(), b.open, b.high, b.low, b.close, b.volume]
                    for b in bars[-5:]
                ]
                for tf, bars in self.bars.items()
            },
            "missingFrames": self.missing_frames,
            "sector": self.sector,
        }
