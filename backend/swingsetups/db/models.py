"""
SQLAlchemy models for the SwingSetups database.

Uses SQLite for local persistence of:
- Analysis records (one live record per instrument/analysis type)
- Token usage ledger (per computation and per cached access)
- Quota usage (distinct symbols per user per trading window)
- User plans
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    String,
    Float,
    Integer,
    DateTime,
    Boolean,
    Text,
    Index,
    JSON,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class AnalysisRecordRow(Base):
    """
    Result of one pipeline run for (instrument_key, analysis_type).

    Older records are flagged superseded instead of deleted. The partial unique
    index allows exactly one live record per key, which makes the pending claim
    atomic across processes.
    """
    __tablename__ = "analysis_records"

    id = Column(String(36), primary_key=True, default=_new_id)
    instrument_key = Column(String(64), nullable=False)
    analysis_type = Column(String(16), nullable=False)
    stock_symbol = Column(String(32), nullable=False)
    stock_name = Column(String(128), default="")

    status = Column(String(16), nullable=False, default="pending")  # pending, in_progress, completed, failed
    current_price = Column(Float, nullable=True)

    # Progress
    progress_percentage = Column(Integer, default=0)
    progress_step = Column(String(200), default="Queued")
    steps_completed = Column(Integer, default=0)
    total_steps = Column(Integer, default=8)
    estimated_time_remaining = Column(Integer, nullable=True)
    progress_updated_at = Column(DateTime, nullable=True)

    analysis_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    error_code = Column(String(50), nullable=True)

    requested_by = Column(String(50), nullable=True)
    valid_until = Column(DateTime, nullable=True)  # UTC
    scheduled_release_time = Column(DateTime, nullable=True)
    superseded = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index(
            "ux_analysis_live_key",
            "instrument_key",
            "analysis_type",
            unique=True,
            sqlite_where=text("superseded = 0"),
            postgresql_where=text("NOT superseded"),
        ),
        Index("ix_analysis_key_created", "instrument_key", "analysis_type", "created_at"),
    )


class TokenUsageLedgerRow(Base):
    """
    Token usage and cost for one analysis.

    The originating computation carries the billed cost. Cached accesses by
    other users are separate rows with zero cost and source_ledger_id set.
    """
    __tablename__ = "token_usage_ledger"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(50), nullable=False, index=True)
    analysis_id = Column(String(36), nullable=True, index=True)
    instrument_key = Column(String(64), nullable=False)
    analysis_type = Column(String(16), nullable=False)
    stock_symbol = Column(String(32), nullable=False)

    is_cached_analysis = Column(Boolean, nullable=False, default=False)
    source_ledger_id = Column(String(36), nullable=True)

    # Per-stage breakdown: [{stage, model, input_tokens, output_tokens, cached_tokens, cost_usd, duration_ms}]
    stages = Column(JSON, default=list)
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    cached_tokens = Column(Integer, default=0)
    total_tokens = Column(Integer, default=0)

    cost_usd = Column(Float, default=0.0)
    cost_inr = Column(Float, default=0.0)

    total_duration_ms = Column(Integer, default=0)
    cache_hit_rate = Column(Float, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class QuotaUsageRow(Base):
    """One distinct symbol analyzed by a user inside one quota window."""
    __tablename__ = "quota_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(50), nullable=False)
    symbol = Column(String(32), nullable=False)
    window_start = Column(DateTime, nullable=False)  # UTC
    window_end = Column(DateTime, nullable=False)  # UTC
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "symbol", "window_end", name="uq_quota_user_symbol_window"),
        Index("ix_quota_user_window", "user_id", "window_end"),
    )


class UserPlanRow(Base):
    """Subscription plan per user. Users without a row get the default plan."""
    __tablename__ = "user_plans"

    user_id = Column(String(50), primary_key=True)
    plan = Column(String(20), nullable=False, default="free")
    stock_limit = Column(Integer, nullable=True)  # overrides the plan table when set
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
