"""
Analysis Service

Request handling, single-flight claims and the end-to-end pipeline run.
"""

from swingsetups.services.analysis.orchestrator import (
    AnalysisOrchestrator,
    PROGRESS_STEPS,
    get_orchestrator,
)
from swingsetups.services.analysis.repository import AnalysisRepository, get_analysis_repository

__all__ = [
    "AnalysisOrchestrator",
    "AnalysisRepository",
    "PROGRESS_STEPS",
    "get_analysis_repository",
    "get_orchestrator",
]
