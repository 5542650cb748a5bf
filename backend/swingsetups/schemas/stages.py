"""
CONTRACT 3: Stage Results

Tagged results passed between the three pipeline stages:

    PreflightResult (kind="preflight") -> SkeletonResult (kind="skeleton") -> FinalResult (kind="final")

Each result is validated before the next stage trusts it. Draft models describe
what the completion service is asked to return; anything outside them is dropped.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from swingsetups.schemas.strategy import (
    Alignment,
    Archetype,
    EntryType,
    MarketSummary,
    OrderGate,
    Runtime,
    Strategy,
    StrategyType,
)


# =============================================================================
# USAGE
# =============================================================================


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
        )


class StageUsage(BaseModel):
    """Token and timing record for one completion call."""

    stage: str
    model: str
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    duration_ms: int = 0


# =============================================================================
# STAGE 1: PREFLIGHT
# =============================================================================


class DataHealth(BaseModel):
    have_last: bool = False
    have_atr14_1D: bool = False
    have_ma: bool = False
    missing: list[str] = Field(default_factory=list)


class PreflightDraft(BaseModel):
    """Model output for stage 1. Notes, plus a flag that halts the run when inputs are missing."""

    notes: list[str] = Field(default_factory=list)
    insufficientData: bool = False

    @field_validator("notes", mode="before")
    @classmethod
    def coerce_notes(cls, v):
        if isinstance(v, str):
            return [v]
        return v or []


class PreflightResult(BaseModel):
    kind: Literal["preflight"] = "preflight"
    market_summary: MarketSummary
    data_health: DataHealth
    insufficientData: bool = False
    notes: list[str] = Field(default_factory=list)
    fallback: bool = False
    fallback_reason: Optional[str] = None


# =============================================================================
# STAGE 2: SKELETON
# =============================================================================


class SkeletonDraft(BaseModel):
    """Model output for stage 2."""

    type: StrategyType
    archetype: Optional[Archetype] = None
    entryType: Optional[EntryType] = None
    entry: Optional[float] = None
    entryRange: Optional[list[float]] = None
    target: Optional[float] = None
    stopLoss: Optional[float] = None
    rationale: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            v = v.strip().upper().replace("-", "_").replace(" ", "_")
            # HOLD is treated as "no actionable trade"
            if v in ("HOLD", "NOTRADE"):
                return "NO_TRADE"
        return v

    @field_validator("archetype", "entryType", mode="before")
    @classmethod
    def drop_unknown_enum(cls, v, info):
        if v is None:
            return None
        enum = Archetype if info.field_name == "archetype" else EntryType
        value = str(v).strip().lower()
        return value if value in {e.value for e in enum} else None


class SkeletonResult(BaseModel):
    kind: Literal["skeleton"] = "skeleton"
    type: StrategyType
    archetype: Optional[Archetype] = None
    alignment: Alignment = Alignment.NEUTRAL
    entryType: Optional[EntryType] = None
    entry: Optional[float] = None
    entryRange: Optional[list[float]] = None
    target: Optional[float] = None
    stopLoss: Optional[float] = None
    riskReward: float = 0.0
    k: Optional[float] = Field(default=None, description="Target distance in ATRs")
    m: Optional[float] = Field(default=None, description="Stop distance in ATRs")
    retuned: bool = False
    no_trade_reason: Optional[str] = None
    fallback: bool = False
    fallback_reason: Optional[str] = None


# =============================================================================
# STAGE 3: FINALIZE
# =============================================================================


class ConditionDraft(BaseModel):
    id: Optional[str] = None
    scope: Optional[str] = None
    timeframe: Optional[str] = None
    left: dict = Field(default_factory=dict)
    op: str
    right: dict = Field(default_factory=dict)
    occurrences: int = 1
    within_sessions: Optional[int] = None
    expiry_bars: Optional[int] = None
    action: Optional[str] = None


class FinalizeDraft(BaseModel):
    """Model output for stage 3. Levels are never taken from here."""

    title: str = ""
    reasoning: list[str] = Field(default_factory=list)
    beginner_summary: str = ""
    warnings: list[str] = Field(default_factory=list)
    triggers: list[ConditionDraft] = Field(default_factory=list)
    invalidations_pre_entry: list[ConditionDraft] = Field(default_factory=list)

    @field_validator("reasoning", "warnings", mode="before")
    @classmethod
    def coerce_list(cls, v):
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            return [item.get("because", str(item)) if isinstance(item, dict) else str(item) for item in v]
        return v or []


class FinalResult(BaseModel):
    kind: Literal["final"] = "final"
    insufficientData: bool = False
    market_summary: MarketSummary
    strategies: list[Strategy] = Field(default_factory=list)
    runtime: Runtime = Field(default_factory=Runtime)
    order_gate: OrderGate = Field(default_factory=OrderGate)
    disclaimer: str = "AI-generated educational analysis. Not investment advice."
    fallback: bool = False
    fallback_reason: Optional[str] = None

    @property
    def strategy(self) -> Optional[Strategy]:
        return self.strategies[0] if self.strategies else None
