"""
Application Configuration

All settings loaded from environment variables.
Scoring weights and thresholds live here so they can be tuned without code changes.
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "SwingSetups Backend"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # SQLite (local persistence)
    database_url: Optional[str] = None  # Defaults to ./data/swingsetups.db

    # Redis
    redis_url: str = "redis://localhost:6379"

    # CORS (Frontend URL)
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Upstox API (candles)
    upstox_access_token: Optional[str] = None
    upstox_base_url: str = "https://api.upstox.com/v3"

    # LLM Providers
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    analysis_model_advanced: str = "gpt-5"
    analysis_model_basic: str = "o4-mini"
    sentiment_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 4096

    # Timeouts (seconds)
    llm_timeout_seconds: float = 90.0
    market_data_timeout_seconds: float = 20.0
    news_timeout_seconds: float = 10.0
    sentiment_cache_ttl_seconds: int = 1800

    # Scoring weights (must sum to 1.0)
    scoring_weights: dict[str, float] = {
        "risk_reward": 0.35,
        "trend": 0.20,
        "volatility_fit": 0.15,
        "confluence": 0.15,
        "volume": 0.05,
        "sentiment": 0.05,
        "data_quality": 0.05,
    }
    score_band_high: float = 0.75
    score_band_medium: float = 0.60
    min_risk_reward: float = 1.5

    # Volatility buckets on ATR14 / last, in percent
    volatility_low_pct: float = 1.0
    volatility_high_pct: float = 2.0

    # Market calendar cutoffs (IST, HH:MM:SS)
    valid_until_cutoff: str = "15:59:59"
    quota_cutoff: str = "16:00:00"

    # Quota
    default_plan: str = "free"
    default_stock_limit: int = 3
    plan_stock_limits: dict[str, int] = {
        "free": 3,
        "basic": 20,
        "advanced": 30,
    }
    advanced_plans: list[str] = ["advanced"]

    # Usage ledger
    usd_to_inr: float = 83.0
    # USD per 1M tokens: input, cached input, output
    model_pricing: dict[str, dict[str, float]] = {
        "gpt-5": {"input": 1.25, "cached_input": 0.125, "output": 10.0},
        "gpt-5-mini": {"input": 0.25, "cached_input": 0.025, "output": 2.0},
        "gpt-4o": {"input": 2.50, "cached_input": 1.25, "output": 10.0},
        "gpt-4o-mini": {"input": 0.15, "cached_input": 0.075, "output": 0.60},
        "o4-mini": {"input": 1.10, "cached_input": 0.275, "output": 4.40},
        "claude-3-5-haiku": {"input": 0.80, "cached_input": 0.08, "output": 4.0},
        "gemini-2.5-flash": {"input": 0.30, "cached_input": 0.075, "output": 2.50},
    }

    # Position sizing (INR)
    risk_budget_inr: float = 1000.0
    alternative_risk_budgets_inr: list[float] = [500.0, 1000.0, 2500.0]

    # Notifications
    notification_webhook_url: Optional[str] = None
    notification_timeout_seconds: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
