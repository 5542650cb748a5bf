"""
CONTRACT 4: Analysis Requests and Records

Input: AnalysisRequest (+ per-call PipelineConfig / NotificationPolicy)
Output: AnalysisResponse wrapping an AnalysisRecord

AnalysisRecord is keyed by (instrument_key, analysis_type). It is written only
by the orchestrator and read by every other caller.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from swingsetups.schemas.market import AnalysisType


# =============================================================================
# ENUMS
# =============================================================================


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ResponseStatus(str, Enum):
    CACHED = "cached"
    IN_PROGRESS = "inProgress"
    FRESH = "fresh"


# =============================================================================
# PER-CALL CONFIGURATION
# =============================================================================


class PipelineConfig(BaseModel):
    """
    Immutable configuration for one pipeline run.

    Built once per request from the user's plan and passed down explicitly;
    no stage reads or mutates shared model selection.
    """

    model_config = ConfigDict(frozen=True)

    analysis_type: AnalysisType
    analysis_model: str
    sentiment_model: str
    llm_timeout_seconds: float = 90.0
    market_data_timeout_seconds: float = 20.0
    news_timeout_seconds: float = 10.0
    risk_budget_inr: float = 1000.0
    alternative_risk_budgets_inr: tuple[float, ...] = (500.0, 1000.0, 2500.0)
    min_risk_reward: float = 1.5
    max_tokens: int = 4096


class NotificationPolicy(BaseModel):
    """Single value object describing side effects for one request."""

    model_config = ConfigDict(frozen=True)

    notify_on_complete: bool = True
    notify_on_failure: bool = False
    scheduled_release_time: Optional[datetime] = None

    @classmethod
    def silent(cls) -> "NotificationPolicy":
        return cls(notify_on_complete=False, notify_on_failure=False)


class RequestOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    background: bool = False
    notification: NotificationPolicy = Field(default_factory=NotificationPolicy)
    sector: Optional[str] = None


# =============================================================================
# RECORD
# =============================================================================


class Progress(BaseModel):
    percentage: int = Field(default=0, ge=0, le=100)
    current_step: str = "Queued"
    steps_completed: int = 0
    total_steps: int = 8
    estimated_time_remaining: Optional[int] = Field(
        default=None, description="Seconds until completion (estimate)"
    )
    last_updated: Optional[datetime] = None


class AnalysisRecord(BaseModel):
    id: str
    instrument_key: str
    analysis_type: AnalysisType
    stock_symbol: str
    stock_name: str = ""
    status: AnalysisStatus
    current_price: Optional[float] = None
    progress: Progress = Field(default_factory=Progress)
    analysis_data: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    requested_by: Optional[str] = None
    valid_until: Optional[datetime] = None
    scheduled_release_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return f"{self.instrument_key}:{self.analysis_type.value}"

    @property
    def in_flight(self) -> bool:
        return self.status in (AnalysisStatus.PENDING, AnalysisStatus.IN_PROGRESS)


# =============================================================================
# API I/O
# =============================================================================


class AnalysisRequest(BaseModel):
    """Request body for POST /analysis."""

    instrument_key: str = Field(..., min_length=1, description="e.g. NSE_EQ|INE002A01018")
    stock_name: str = Field(default="")
    stock_symbol: str = Field(..., min_length=1, description="e.g. RELIANCE")
    current_price: Optional[float] = Field(default=None, gt=0)
    analysis_type: AnalysisType = AnalysisType.SWING
    user_id: str = Field(..., min_length=1)
    background: bool = False
    notify: bool = True
    scheduled_release_time: Optional[datetime] = None
    sector: Optional[str] = None

    @field_validator("stock_symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.strip().upper()


class AnalysisResponse(BaseModel):
    success: bool
    status: Optional[ResponseStatus] = None
    cached: bool = False
    inProgress: bool = False
    data: Optional[AnalysisRecord] = None
    error: Optional[str] = None
    errorCode: Optional[str] = None


class QuotaDecision(BaseModel):
    allowed: bool
    reason: str
    symbol: str
    used: int
    limit: int
    resetsAt: datetime
