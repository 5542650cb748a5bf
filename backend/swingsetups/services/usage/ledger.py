"""
Token Usage Ledger

Append-only record of what each analysis cost.

RULES:
- The computation that produced a record gets one row with the billed cost
- Every cached access by a requester gets its own row: zero cost,
  is_cached_analysis=True, source_ledger_id -> originating row
- Totals per user never include cached rows, so nothing is billed twice
"""

import logging
from typing import Optional

from sqlalchemy import func, select

from swingsetups.core.config import settings
from swingsetups.db.database import SessionFactory, get_db_context
from swingsetups.db.models import TokenUsageLedgerRow
from swingsetups.schemas.analysis import AnalysisRecord
from swingsetups.schemas.stages import StageUsage, TokenUsage

logger = logging.getLogger(__name__)


def price_for(model: str) -> Optional[dict[str, float]]:
    """Price table entry for a model; dated or suffixed names match their base name."""
    pricing = settings.model_pricing
    if model in pricing:
        return pricing[model]
    matches = [name for name in pricing if model.startswith(name)]
    if not matches:
        return None
    return pricing[max(matches, key=len)]


def stage_cost_usd(usage: StageUsage) -> float:
    price = price_for(usage.model)
    if price is None:
        logger.warning(f"[ledger] No pricing for model {usage.model}, cost recorded as 0")
        return 0.0
    tokens = usage.tokens
    uncached = max(0, tokens.input_tokens - tokens.cached_tokens)
    cost = (
        uncached * price["input"]
        + tokens.cached_tokens * price.get("cached_input", price["input"])
        + tokens.output_tokens * price["output"]
    )
    return cost / 1_000_000


class UsageLedger:
    def __init__(self, session_factory: SessionFactory = get_db_context):
        self._session_factory = session_factory

    async def record_computation(
        self,
        user_id: str,
        record: AnalysisRecord,
        stages: list[StageUsage],
    ) -> str:
        """Write the billed row for a fresh computation. Returns the ledger row id."""
        totals = TokenUsage()
        breakdown = []
        cost_usd = 0.0
        for usage in stages:
            cost = stage_cost_usd(usage)
            cost_usd += cost
            totals = totals + usage.tokens
            breakdown.append(
                {
                    "stage": usage.stage,
                    "model": usage.model,
                    "input_tokens": usage.tokens.input_tokens,
                    "output_tokens": usage.tokens.output_tokens,
                    "cached_tokens": usage.tokens.cached_tokens,
                    "cost_usd": round(cost, 6),
                    "duration_ms": usage.duration_ms,
                }
            )

        row = TokenUsageLedgerRow(
            user_id=user_id,
            analysis_id=record.id,
            instrument_key=record.instrument_key,
            analysis_type=record.analysis_type.value,
            stock_symbol=record.stock_symbol,
            is_cached_analysis=False,
            stages=breakdown,
            input_tokens=totals.input_tokens,
            output_tokens=totals.output_tokens,
            cached_tokens=totals.cached_tokens,
            total_tokens=totals.total_tokens,
            cost_usd=round(cost_usd, 6),
            cost_inr=round(cost_usd * settings.usd_to_inr, 4),
            total_duration_ms=sum(u.duration_ms for u in stages),
            cache_hit_rate=(
                round(totals.cached_tokens / totals.input_tokens, 4) if totals.input_tokens else 0.0
            ),
        )
        async with self._session_factory() as session:
            session.add(row)
        logger.info(
            f"[ledger] {record.key}: {len(stages)} call(s), {totals.total_tokens} tokens, "
            f"${row.cost_usd:.4f} / ₹{row.cost_inr:.2f}"
        )
        return row.id

    async def _originating_row(self, analysis_id: str) -> Optional[TokenUsageLedgerRow]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TokenUsageLedgerRow)
                .where(
                    TokenUsageLedgerRow.analysis_id == analysis_id,
                    TokenUsageLedgerRow.is_cached_analysis.is_(False),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def record_cached_access(self, user_id: str, record: AnalysisRecord) -> str:
        """Attribute a cache hit to the requester without billing compute again."""
        source = await self._originating_row(record.id)
        row = TokenUsageLedgerRow(
            user_id=user_id,
            analysis_id=record.id,
            instrument_key=record.instrument_key,
            analysis_type=record.analysis_type.value,
            stock_symbol=record.stock_symbol,
            is_cached_analysis=True,
            source_ledger_id=source.id if source else None,
            stages=source.stages if source else [],
            input_tokens=source.input_tokens if source else 0,
            output_tokens=source.output_tokens if source else 0,
            cached_tokens=source.cached_tokens if source else 0,
            total_tokens=source.total_tokens if source else 0,
            cost_usd=0.0,
            cost_inr=0.0,
            total_duration_ms=0,
            cache_hit_rate=1.0,
        )
        async with self._session_factory() as session:
            session.add(row)
        logger.info(f"[ledger] {record.key}: cached access by {user_id}")
        return row.id

    async def summarize_user(self, user_id: str) -> dict:
        async with self._session_factory() as session:
            billed = await session.execute(
                select(
                    func.count(TokenUsageLedgerRow.id),
                    func.coalesce(func.sum(TokenUsageLedgerRow.total_tokens), 0),
                    func.coalesce(func.sum(TokenUsageLedgerRow.cost_usd), 0.0),
                    func.coalesce(func.sum(TokenUsageLedgerRow.cost_inr), 0.0),
                ).where(
                    TokenUsageLedgerRow.user_id == user_id,
                    TokenUsageLedgerRow.is_cached_analysis.is_(False),
                )
            )
            computations, tokens, cost_usd, cost_inr = billed.one()

            cached = await session.execute(
                select(func.count(TokenUsageLedgerRow.id)).where(
                    TokenUsageLedgerRow.user_id == user_id,
                    TokenUsageLedgerRow.is_cached_analysis.is_(True),
                )
            )
            cached_accesses = cached.scalar_one()

        return {
            "userId": user_id,
            "computations": computations,
            "cachedAccesses": cached_accesses,
            "totalTokens": int(tokens),
            "costUsd": round(float(cost_usd), 6),
            "costInr": round(float(cost_inr), 4),
        }


_ledger: Optional[UsageLedger] = None


def get_usage_ledger() -> UsageLedger:
    global _ledger
    if _ledger is None:
        _ledger = UsageLedger()
    return _ledger
