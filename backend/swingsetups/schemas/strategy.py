"""
CONTRACT 2: Strategy

The single best-fit strategy attached to a completed analysis, plus the
trigger/invalidation objects and the order gate computed from them.

RULES:
- BUY  => stopLoss < entry < target
- SELL => target < entry < stopLoss
- NO_TRADE => no levels, riskReward 0, quantity 0, monitor_only
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator


# =============================================================================
# ENUMS
# =============================================================================


class Trend(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Volatility(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class StrategyType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NO_TRADE = "NO_TRADE"


class Alignment(str, Enum):
    WITH_TREND = "with_trend"
    COUNTER_TREND = "counter_trend"
    NEUTRAL = "neutral"


class Archetype(str, Enum):
    BREAKOUT = "breakout"
    PULLBACK = "pullback"
    TREND_FOLLOW = "trend-follow"
    MEAN_REVERSION = "mean-reversion"
    RANGE_FADE = "range-fade"


class EntryType(str, Enum):
    LIMIT = "limit"
    MARKET = "market"
    RANGE = "range"
    STOP = "stop"
    STOP_LIMIT = "stop-limit"


class TriggerScope(str, Enum):
    ENTRY = "entry"
    PRE_ENTRY = "pre_entry"
    POST_ENTRY = "post_entry"


class Operator(str, Enum):
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"


class Actionability(str, Enum):
    ACTIONABLE_NOW = "actionable_now"
    ACTIONABLE_ON_TRIGGER = "actionable_on_trigger"
    MONITOR_ONLY = "monitor_only"


class ScoreBand(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class IndicatorSignal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"


# =============================================================================
# MARKET SUMMARY / CONTEXT
# =============================================================================


class MarketSummary(BaseModel):
    last: Optional[float] = None
    trend: Trend = Trend.NEUTRAL
    volatility: Optional[Volatility] = None
    volume: str = "UNKNOWN"


class SentimentContext(BaseModel):
    sentiment: str = Field(default="neutral", description="positive | neutral | negative")
    confidence: float = Field(default=0.0, ge=0, le=1)
    reasoning: str = ""
    signals: list[str] = Field(default_factory=list)
    headlines: list[str] = Field(default_factory=list)

    @property
    def bias(self) -> Trend:
        if self.sentiment == "positive":
            return Trend.BULLISH
        if self.sentiment == "negative":
            return Trend.BEARISH
        return Trend.NEUTRAL


class IndicatorReading(BaseModel):
    name: str
    timeframe: str
    value: Optional[float] = None
    signal: IndicatorSignal = IndicatorSignal.NEUTRAL


# =============================================================================
# TRIGGERS / INVALIDATIONS
# =============================================================================


class ValueRef(BaseModel):
    """One side of a comparison: a named reference, a literal, or both with an offset."""

    ref: Optional[str] = None
    value: Optional[float] = None
    offset: float = 0.0


class Trigger(BaseModel):
    id: str
    scope: TriggerScope = TriggerScope.ENTRY
    timeframe: str = "1h"
    left: ValueRef
    op: Operator
    right: ValueRef
    occurrences: int = Field(default=1, ge=1)
    within_sessions: Optional[int] = None
    expiry_bars: Optional[int] = None
    action: Optional[str] = None
    # Filled by evaluation
    left_value: Optional[float] = None
    right_value: Optional[float] = None
    evaluable: bool = False
    passed: bool = False


class Invalidation(Trigger):
    scope: TriggerScope = TriggerScope.PRE_ENTRY
    action: Optional[str] = "cancel_entry"


# =============================================================================
# VALIDITY / SIZING
# =============================================================================


class EntryValidity(BaseModel):
    type: str = "GTD"
    trading_sessions_soft: int = 5
    trading_sessions_hard: int = 8
    expire_calendar_cap_days: int = 10
    expires_on: Optional[str] = None


class PositionValidity(BaseModel):
    time_stop_sessions: int = 7
    gap_policy: str = "exit_at_open_if_beyond_stop"


class Validity(BaseModel):
    entry: EntryValidity = Field(default_factory=EntryValidity)
    position: PositionValidity = Field(default_factory=PositionValidity)
    non_trading_policy: str = "pause_clock"


class PositionSize(BaseModel):
    risk_budget: float
    risk_per_share: Optional[float] = None
    quantity: int = 0
    capital_required: float = 0.0
    alternatives: list[dict] = Field(default_factory=list)


# =============================================================================
# RUNTIME / ORDER GATE
# =============================================================================


class Runtime(BaseModel):
    triggers_evaluated: list[Trigger] = Field(default_factory=list)
    pre_entry_invalidations_hit: list[str] = Field(default_factory=list)


class OrderGate(BaseModel):
    all_triggers_true: bool = False
    no_pre_entry_invalidations: bool = True
    actionability_status: Actionability = Actionability.MONITOR_ONLY
    entry_type_sane: bool = False
    can_place_order: bool = False


class ScoreComponents(BaseModel):
    risk_reward: float
    trend: float
    volatility_fit: float
    confluence: float
    volume: float
    sentiment: float
    data_quality: float


class ScoreResult(BaseModel):
    score: float = Field(..., ge=0, le=1)
    band: ScoreBand
    risk_meter: str
    components: ScoreComponents


# =============================================================================
# STRATEGY
# =============================================================================


class Strategy(BaseModel):
    id: str
    type: StrategyType
    archetype: Optional[Archetype] = None
    alignment: Alignment = Alignment.NEUTRAL
    title: str = ""
    entryType: Optional[EntryType] = None
    entry: Optional[float] = None
    entryRange: Optional[list[float]] = None
    target: Optional[float] = None
    stopLoss: Optional[float] = None
    riskReward: float = 0.0
    timeframe: str = ""
    indicators: list[IndicatorReading] = Field(default_factory=list)
    triggers: list[Trigger] = Field(default_factory=list)
    invalidations: list[Invalidation] = Field(default_factory=list)
    validity: Validity = Field(default_factory=Validity)
    position_size: Optional[PositionSize] = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    score: float = Field(default=0.0, ge=0, le=1)
    score_band: ScoreBand = ScoreBand.LOW
    score_components: Optional[ScoreComponents] = None
    risk_meter: str = "High"
    actionability: Actionability = Actionability.MONITOR_ONLY
    reasoning: list[str] = Field(default_factory=list)
    beginner_summary: str = ""
    warnings: list[str] = Field(default_factory=list)
    fallback: bool = False

    @model_validator(mode="after")
    def check_bounds(self) -> "Strategy":
        if self.type == StrategyType.NO_TRADE:
            return self
        if self.entry is None or self.target is None or self.stopLoss is None:
            raise ValueError(f"{self.type.value} strategy requires entry, target and stopLoss")
        if self.type == StrategyType.BUY and not (self.stopLoss < self.entry < self.target):
            raise ValueError("BUY requires stopLoss < entry < target")
        if self.type == StrategyType.SELL and not (self.target < self.entry < self.stopLoss):
            raise ValueError("SELL requires target < entry < stopLoss")
        return self
