"""
Stage Pipeline

Three ordered completion calls with strict contracts:

    Preflight -> Skeleton -> Finalize

Each call returns JSON that is parsed (one repair attempt), validated against
the stage's draft schema, then passed through the deterministic rules of that
stage. Errors propagate as typed exceptions; the orchestrator decides on
fallbacks.

Raises:
    ExternalServiceError: completion call failed or timed out
    SchemaViolationError: output unparsable or failed validation
"""

import logging
import time
from datetime import date

from swingsetups.schemas.analysis import PipelineConfig
from swingsetups.schemas.market import MarketPayload
from swingsetups.schemas.stages import (
    FinalizeDraft,
    FinalResult,
    PreflightDraft,
    PreflightResult,
    SkeletonDraft,
    SkeletonResult,
    StageUsage,
)
from swingsetups.schemas.strategy import SentimentContext
from swingsetups.services.llm.client import CompletionClient
from swingsetups.services.llm.parsing import parse_json_content, validate_stage_output
from swingsetups.services.llm.prompts import (
    format_finalize_prompt,
    format_preflight_prompt,
    format_skeleton_prompt,
)
from swingsetups.services.pipeline.finalize import build_final
from swingsetups.services.pipeline.preflight import summarize_market
from swingsetups.services.pipeline.skeleton import build_skeleton
from swingsetups.services.scoring.engine import ATR_BANDS

logger = logging.getLogger(__name__)


class StagePipeline:
    """Runs the three completion stages for one analysis."""

    def __init__(self, client: CompletionClient):
        self._client = client

    async def _call(
        self,
        stage: str,
        messages: list[dict],
        config: PipelineConfig,
        usage: list[StageUsage],
    ) -> dict:
        started = time.perf_counter()
        completion = await self._client.complete(
            config.analysis_model,
            messages,
            json_only=True,
            stage=stage,
            timeout=config.llm_timeout_seconds,
            max_tokens=config.max_tokens,
        )
        # Tokens are spent even if the output turns out unusable
        usage.append(
            StageUsage(
                stage=stage,
                model=completion.model,
                tokens=completion.token_usage,
                duration_ms=int((time.perf_counter() - started) * 1000),
            )
        )
        return parse_json_content(completion.content, stage=stage)

    async def preflight(
        self,
        payload: MarketPayload,
        sector_context: str,
        config: PipelineConfig,
        usage: list[StageUsage],
    ) -> PreflightResult:
        result = summarize_market(payload)
        if result.insufficientData:
            logger.info(f"[preflight] {payload.instrument_key}: insufficient data {result.data_health.missing}")
            return result

        data = await self._call(
            "preflight",
            format_preflight_prompt(payload, result.market_summary.model_dump(mode="json"), sector_context),
            config,
            usage,
        )
        draft = validate_stage_output(PreflightDraft, data, "preflight")
        result.notes = draft.notes
        if draft.insufficientData:
            # A missing input reported by the model halts the run like a computed one
            result.insufficientData = True
            result.data_health.missing.extend(draft.notes or ["model_reported_missing_inputs"])
            logger.info(f"[preflight] {payload.instrument_key}: model reported missing inputs {draft.notes}")
        return result

    async def skeleton(
        self,
        payload: MarketPayload,
        preflight: PreflightResult,
        config: PipelineConfig,
        usage: list[StageUsage],
    ) -> SkeletonResult:
        k_bounds, m_bounds = ATR_BANDS[payload.analysis_type]
        data = await self._call(
            "skeleton",
            format_skeleton_prompt(payload, preflight, k_bounds, m_bounds),
            config,
            usage,
        )
        draft = validate_stage_output(SkeletonDraft, data, "skeleton")
        result = build_skeleton(draft, preflight, payload, config.min_risk_reward)
        logger.info(
            f"[skeleton] {payload.instrument_key}: {result.type.value} "
            f"entry={result.entry} target={result.target} stop={result.stopLoss} rr={result.riskReward}"
        )
        return result

    async def finalize(
        self,
        payload: MarketPayload,
        preflight: PreflightResult,
        skeleton: SkeletonResult,
        sentiment: SentimentContext,
        sector_context: str,
        config: PipelineConfig,
        usage: list[StageUsage],
        strategy_id: str,
        today: date,
    ) -> FinalResult:
        data = await self._call(
            "finalize",
            format_finalize_prompt(payload, preflight, skeleton, sentiment, sector_context),
            config,
            usage,
        )
        draft = validate_stage_output(FinalizeDraft, data, "finalize")
        return build_final(preflight, skeleton, payload, sentiment, draft, config, strategy_id, today)


# =============================================================================
# FALLBACKS (applied by the orchestrator)
# =============================================================================


def preflight_fallback(payload: MarketPayload, reason: str) -> PreflightResult:
    result = summarize_market(payload)
    result.fallback = True
    result.fallback_reason = reason
    result.notes.append("Fallback: model review unavailable, computed summary only")
    return result


def skeleton_fallback(reason: str) -> SkeletonResult:
    return SkeletonResult(
        type="NO_TRADE",
        no_trade_reason="Fallback: strategy generation returned malformed output",
        fallback=True,
        fallback_reason=reason,
    )


def finalize_fallback(
    payload: MarketPayload,
    preflight: PreflightResult,
    skeleton: SkeletonResult,
    sentiment: SentimentContext,
    config: PipelineConfig,
    strategy_id: str,
    today: date,
    reason: str,
) -> FinalResult:
    """Standard triggers/invalidations around the skeleton levels, no narrative."""
    final = build_final(preflight, skeleton, payload, sentiment, None, config, strategy_id, today)
    final.fallback = True
    final.fallback_reason = reason
    for strategy in final.strategies:
        strategy.fallback = True
        strategy.warnings.append("Fallback: explanation unavailable, default triggers applied")
    return final
