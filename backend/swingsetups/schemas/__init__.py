"""
SwingSetups Schemas

Each stage of the analysis pipeline has a strict input/output contract.
"""

from swingsetups.schemas.market import (
    AnalysisType,
    IndicatorSnapshot,
    MarketPayload,
    OHLCV,
    Timeframe,
    VolumeClass,
)
from swingsetups.schemas.strategy import (
    Actionability,
    Alignment,
    MarketSummary,
    OrderGate,
    Runtime,
    ScoreBand,
    ScoreResult,
    SentimentContext,
    Strategy,
    StrategyType,
    Trend,
    Trigger,
    Invalidation,
    Volatility,
)
from swingsetups.schemas.stages import (
    FinalResult,
    PreflightResult,
    SkeletonResult,
    StageUsage,
    TokenUsage,
)
from swingsetups.schemas.analysis import (
    AnalysisRecord,
    AnalysisRequest,
    AnalysisResponse,
    AnalysisStatus,
    NotificationPolicy,
    PipelineConfig,
    Progress,
    QuotaDecision,
    RequestOptions,
    ResponseStatus,
)

__all__ = [
    "AnalysisType",
    "IndicatorSnapshot",
    "MarketPayload",
    "OHLCV",
    "Timeframe",
    "VolumeClass",
    "Actionability",
    "Alignment",
    "MarketSummary",
    "OrderGate",
    "Runtime",
    "ScoreBand",
    "ScoreResult",
    "SentimentContext",
    "Strategy",
    "StrategyType",
    "Trend",
    "Trigger",
    "Invalidation",
    "Volatility",
    "FinalResult",
    "PreflightResult",
    "SkeletonResult",
    "StageUsage",
    "TokenUsage",
    "AnalysisRecord",
    "AnalysisRequest",
    "AnalysisResponse",
    "AnalysisStatus",
    "NotificationPolicy",
    "PipelineConfig",
    "Progress",
    "QuotaDecision",
    "RequestOptions",
    "ResponseStatus",
]
