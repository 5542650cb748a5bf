"""
Stage 1: Preflight (deterministic part)

Input: MarketPayload
Output: PreflightResult

RULES:
- Trend: BULLISH if ema20_1D > ema50_1D and last > sma200_1D; BEARISH if the reverse
- Volatility: ATR / last in percent, bucketed by configured thresholds
- Missing last price or ATR => insufficientData, nothing downstream runs
"""

from typing import Optional

from swingsetups.core.config import settings
from swingsetups.schemas.market import MarketPayload
from swingsetups.schemas.stages import DataHealth, PreflightResult
from swingsetups.schemas.strategy import MarketSummary, Trend, Volatility


def classify_trend(
    last: Optional[float],
    ema20: Optional[float],
    ema50: Optional[float],
    sma200: Optional[float],
) -> Trend:
    if None in (last, ema20, ema50, sma200):
        return Trend.NEUTRAL
    if ema20 > ema50 and last > sma200:
        return Trend.BULLISH
    if ema20 < ema50 and last < sma200:
        return Trend.BEARISH
    return Trend.NEUTRAL


def classify_volatility(
    atr: Optional[float],
    last: Optional[float],
    low_pct: float = None,
    high_pct: float = None,
) -> Optional[Volatility]:
    if not atr or not last:
        return None
    low_pct = settings.volatility_low_pct if low_pct is None else low_pct
    high_pct = settings.volatility_high_pct if high_pct is None else high_pct

    pct = atr / last * 100
    if pct < low_pct:
        return Volatility.LOW
    if pct > high_pct:
        return Volatility.HIGH
    return Volatility.MEDIUM


def summarize_market(payload: MarketPayload) -> PreflightResult:
    """Everything stage 1 decides without the completion service."""
    ind = payload.indicators
    atr = payload.atr()

    missing = []
    if payload.last is None:
        missing.append("priceContext.last")
    if atr is None:
        missing.append("atr14_1h" if payload.analysis_type.value == "intraday" else "atr14_1D")
    have_ma = None not in (ind.ema20_1D, ind.ema50_1D, ind.sma200_1D)
    if not have_ma:
        missing.extend(
            name for name, value in (
                ("ema20_1D", ind.ema20_1D),
                ("ema50_1D", ind.ema50_1D),
                ("sma200_1D", ind.sma200_1D),
            ) if value is None
        )

    summary = MarketSummary(
        last=payload.last,
        trend=classify_trend(payload.last, ind.ema20_1D, ind.ema50_1D, ind.sma200_1D),
        volatility=classify_volatility(atr, payload.last),
        volume=payload.volume_class.value,
    )

    insufficient = payload.last is None or atr is None
    return PreflightResult(
        market_summary=summary,
        data_health=DataHealth(
            have_last=payload.last is not None,
            have_atr14_1D=ind.atr14_1D is not None,
            have_ma=have_ma,
            missing=missing,
        ),
        insufficientData=insufficient,
        notes=[f"Missing inputs: {', '.join(missing)}"] if insufficient else [],
    )
