"""
Scoring Engine

CONTRACT:
    Input: Strategy + ScoringContext (+ ScoringConfig)
    Output: ScoreResult {score, band, risk_meter, components}

RULES:
- Pure functions only: no I/O, no clock, no randomness
- Identical inputs always produce identical outputs
- Weights and band thresholds come from ScoringConfig, never hard-coded at call sites
"""

from dataclasses import dataclass, field
from typing import Optional

from swingsetups.core.config import settings
from swingsetups.schemas.market import AnalysisType, VolumeClass
from swingsetups.schemas.strategy import (
    Alignment,
    IndicatorReading,
    IndicatorSignal,
    ScoreBand,
    ScoreComponents,
    ScoreResult,
    Strategy,
    StrategyType,
    Trend,
)


# Ideal ATR multiple bands per horizon: (k_min, k_max), (m_min, m_max)
ATR_BANDS: dict[AnalysisType, tuple[tuple[float, float], tuple[float, float]]] = {
    AnalysisType.SWING: ((0.8, 1.6), (0.5, 1.2)),
    AnalysisType.INTRADAY: ((0.6, 1.2), (0.4, 0.8)),
}

VOLUME_SCORES = {
    VolumeClass.ABOVE_AVERAGE: 0.8,
    VolumeClass.AVERAGE: 0.6,
    VolumeClass.BELOW_AVERAGE: 0.4,
    VolumeClass.UNKNOWN: 0.5,
}

ALIGNMENT_SCORES = {
    Alignment.WITH_TREND: 0.8,
    Alignment.NEUTRAL: 0.6,
    Alignment.COUNTER_TREND: 0.4,
}

# Score band -> risk label (inverse)
RISK_METER = {
    ScoreBand.HIGH: "Low",
    ScoreBand.MEDIUM: "Medium",
    ScoreBand.LOW: "High",
}


@dataclass(frozen=True)
class ScoringConfig:
    weights: dict[str, float] = field(default_factory=lambda: dict(settings.scoring_weights))
    band_high: float = settings.score_band_high
    band_medium: float = settings.score_band_medium
    min_risk_reward: float = settings.min_risk_reward


@dataclass(frozen=True)
class ScoringContext:
    """Everything besides the strategy that influences the score."""

    analysis_type: AnalysisType = AnalysisType.SWING
    trend: Trend = Trend.NEUTRAL
    atr: Optional[float] = None
    ema20: Optional[float] = None
    ema50: Optional[float] = None
    sma200: Optional[float] = None
    indicators: tuple[IndicatorReading, ...] = ()
    volume: VolumeClass = VolumeClass.UNKNOWN
    sentiment: Trend = Trend.NEUTRAL
    missing_frames: int = 0
    has_last: bool = True


# =============================================================================
# HELPERS
# =============================================================================


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def lerp(x: float, x0: float, x1: float, y0: float, y1: float) -> float:
    """Linear map of x from [x0, x1] onto [y0, y1], clamped to the segment."""
    if x1 == x0:
        return y0
    t = clamp((x - x0) / (x1 - x0))
    return y0 + t * (y1 - y0)


def _direction(strategy_type: StrategyType) -> Optional[IndicatorSignal]:
    if strategy_type == StrategyType.BUY:
        return IndicatorSignal.BUY
    if strategy_type == StrategyType.SELL:
        return IndicatorSignal.SELL
    return None


# =============================================================================
# SUB-SCORES
# =============================================================================


def risk_reward_score(rr: float, min_rr: float = 1.5) -> float:
    """0.2 below min_rr, ramps 0.5 -> 0.9 up to rr=3.5, 0.95 beyond."""
    if rr < min_rr:
        return 0.2
    if rr >= 3.5:
        return 0.95
    return lerp(rr, min_rr, 3.5, 0.5, 0.9)


def trend_score(alignment: Alignment, ctx: ScoringContext) -> float:
    base = ALIGNMENT_SCORES.get(alignment, 0.6)
    if ctx.ema20 is not None and ctx.ema50 is not None and ctx.sma200 is not None:
        if ctx.ema20 > ctx.ema50 > ctx.sma200:
            base += 0.05
        elif ctx.ema20 < ctx.ema50 < ctx.sma200:
            base -= 0.05
    return clamp(base)


def volatility_fit_score(strategy: Strategy, ctx: ScoringContext) -> float:
    """
    How close the chosen target/stop distances (in ATRs) sit to the centre of
    the ideal band for the horizon. Floored at 0.3; 0.5 without ATR.
    """
    if not ctx.atr or ctx.atr <= 0:
        return 0.5
    if strategy.entry is None or strategy.target is None or strategy.stopLoss is None:
        return 0.5

    k = abs(strategy.target - strategy.entry) / ctx.atr
    m = abs(strategy.entry - strategy.stopLoss) / ctx.atr
    (k_lo, k_hi), (m_lo, m_hi) = ATR_BANDS[ctx.analysis_type]

    def fit(x: float, lo: float, hi: float) -> float:
        center = (lo + hi) / 2
        half = (hi - lo) / 2
        return clamp(1 - abs(x - center) / half)

    return max(0.3, 0.5 * fit(k, k_lo, k_hi) + 0.5 * fit(m, m_lo, m_hi))


def confluence_score(strategy_type: StrategyType, indicators: tuple[IndicatorReading, ...]) -> float:
    if not indicators:
        return 0.5
    direction = _direction(strategy_type)
    total = 0.0
    for reading in indicators:
        if reading.signal == IndicatorSignal.NEUTRAL or direction is None:
            total += 0.5
        elif reading.signal == direction:
            total += 1.0
    return total / len(indicators)


def volume_score(volume: VolumeClass) -> float:
    return VOLUME_SCORES.get(volume, 0.5)


def sentiment_score(strategy_type: StrategyType, sentiment: Trend) -> float:
    if strategy_type == StrategyType.NO_TRADE or sentiment == Trend.NEUTRAL:
        return 0.5
    aligned = (strategy_type == StrategyType.BUY and sentiment == Trend.BULLISH) or (
        strategy_type == StrategyType.SELL and sentiment == Trend.BEARISH
    )
    return 0.7 if aligned else 0.3


def data_quality_score(missing_frames: int, has_last: bool) -> float:
    q = 0.8 - min(0.5, 0.1 * missing_frames)
    if not has_last:
        q -= 0.2
    return clamp(q)


def band_for(score_value: float, config: ScoringConfig) -> ScoreBand:
    if score_value >= config.band_high:
        return ScoreBand.HIGH
    if score_value >= config.band_medium:
        return ScoreBand.MEDIUM
    return ScoreBand.LOW


# =============================================================================
# SCORE
# =============================================================================


def score(
    strategy: Strategy,
    context: ScoringContext,
    config: Optional[ScoringConfig] = None,
) -> ScoreResult:
    """Weighted multi-factor score for one strategy."""
    config = config or ScoringConfig()
    w = config.weights

    components = ScoreComponents(
        risk_reward=round(risk_reward_score(strategy.riskReward, config.min_risk_reward), 4),
        trend=round(trend_score(strategy.alignment, context), 4),
        volatility_fit=round(volatility_fit_score(strategy, context), 4),
        confluence=round(confluence_score(strategy.type, context.indicators), 4),
        volume=round(volume_score(context.volume), 4),
        sentiment=round(sentiment_score(strategy.type, context.sentiment), 4),
        data_quality=round(data_quality_score(context.missing_frames, context.has_last), 4),
    )

    raw = (
        w.get("risk_reward", 0) * components.risk_reward
        + w.get("trend", 0) * components.trend
        + w.get("volatility_fit", 0) * components.volatility_fit
        + w.get("confluence", 0) * components.confluence
        + w.get("volume", 0) * components.volume
        + w.get("sentiment", 0) * components.sentiment
        + w.get("data_quality", 0) * components.data_quality
    )
    unrounded = clamp(raw)
    value = round(unrounded, 2)
    # Band on the unrounded value so 0.596 stays Low
    band = band_for(unrounded, config)

    return ScoreResult(
        score=value,
        band=band,
        risk_meter=RISK_METER[band],
        components=components,
    )
