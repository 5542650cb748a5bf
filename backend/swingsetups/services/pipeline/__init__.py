"""
Stage Pipeline

Preflight -> Skeleton -> Finalize, each with a validated result type.
"""

from swingsetups.services.pipeline.finalize import apply_score, build_final, insufficient_result
from swingsetups.services.pipeline.preflight import summarize_market
from swingsetups.services.pipeline.runner import (
    StagePipeline,
    finalize_fallback,
    preflight_fallback,
    skeleton_fallback,
)
from swingsetups.services.pipeline.skeleton import build_skeleton
from swingsetups.services.pipeline.triggers import evaluate

__all__ = [
    "StagePipeline",
    "apply_score",
    "build_final",
    "build_skeleton",
    "evaluate",
    "finalize_fallback",
    "insufficient_result",
    "preflight_fallback",
    "skeleton_fallback",
    "summarize_market",
]
