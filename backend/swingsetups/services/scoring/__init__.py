"""
Scoring Engine

Deterministic weighted scoring of a single strategy.
"""

from swingsetups.services.scoring.engine import (
    ATR_BANDS,
    ScoringConfig,
    ScoringContext,
    score,
)

__all__ = ["ATR_BANDS", "ScoringConfig", "ScoringContext", "score"]
