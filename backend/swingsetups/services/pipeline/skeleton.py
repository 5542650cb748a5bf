"""
Stage 2: Skeleton (deterministic part)

Input: SkeletonDraft (model proposal) + PreflightResult + MarketPayload
Output: SkeletonResult

RULES:
- target = entry ± k*ATR, stop = entry ∓ m*ATR with k, m inside the horizon bounds
- riskReward = |target - entry| / |entry - stop|
- riskReward below the minimum: retune k, m once inside the bounds; still below => NO_TRADE
- BUY => stop < entry < target; SELL => target < entry < stop, or NO_TRADE
"""

import logging
from typing import Optional

from swingsetups.schemas.market import MarketPayload
from swingsetups.schemas.stages import PreflightResult, SkeletonDraft, SkeletonResult
from swingsetups.schemas.strategy import (
    Alignment,
    Archetype,
    EntryType,
    StrategyType,
    Trend,
)
from swingsetups.services.scoring.engine import ATR_BANDS

logger = logging.getLogger(__name__)

# Proposed entries further than this many ATRs from last are replaced by last
MAX_ENTRY_DISTANCE_ATR = 1.5


def alignment_for(strategy_type: StrategyType, trend: Trend) -> Alignment:
    if strategy_type == StrategyType.NO_TRADE or trend == Trend.NEUTRAL:
        return Alignment.NEUTRAL
    bullish = strategy_type == StrategyType.BUY
    if (bullish and trend == Trend.BULLISH) or (not bullish and trend == Trend.BEARISH):
        return Alignment.WITH_TREND
    return Alignment.COUNTER_TREND


def risk_reward(entry: float, target: float, stop: float) -> float:
    risk = abs(entry - stop)
    if risk == 0:
        return 0.0
    return round(abs(target - entry) / risk, 2)


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _multiple(level: Optional[float], entry: float, atr: float, direction: int, default: float) -> float:
    """Distance of a proposed level from entry in ATRs; direction +1 means the level belongs above entry."""
    if level is None or level <= 0:
        return default
    distance = (level - entry) * direction / atr
    return distance if distance > 0 else default


def no_trade(reason: str, **extra) -> SkeletonResult:
    return SkeletonResult(
        type=StrategyType.NO_TRADE,
        alignment=Alignment.NEUTRAL,
        no_trade_reason=reason,
        **extra,
    )


def build_skeleton(
    draft: SkeletonDraft,
    preflight: PreflightResult,
    payload: MarketPayload,
    min_rr: float = 1.5,
) -> SkeletonResult:
    trend = preflight.market_summary.trend
    if draft.type == StrategyType.NO_TRADE:
        return no_trade(draft.rationale or "No clean setup", archetype=draft.archetype)

    last = preflight.market_summary.last
    atr = payload.atr()
    if not last or not atr or atr <= 0:
        return no_trade("Missing last price or ATR")

    sign = 1 if draft.type == StrategyType.BUY else -1
    (k_lo, k_hi), (m_lo, m_hi) = ATR_BANDS[payload.analysis_type]

    entry = draft.entry
    if entry is None or entry <= 0 or abs(entry - last) > MAX_ENTRY_DISTANCE_ATR * atr:
        entry = last
    entry = round(entry, 2)

    k = _clamp(_multiple(draft.target, entry, atr, sign, (k_lo + k_hi) / 2), k_lo, k_hi)
    m = _clamp(_multiple(draft.stopLoss, entry, atr, -sign, (m_lo + m_hi) / 2), m_lo, m_hi)

    def levels(k_: float, m_: float) -> tuple[float, float, float]:
        target_ = round(entry + sign * k_ * atr, 2)
        stop_ = round(entry - sign * m_ * atr, 2)
        return target_, stop_, risk_reward(entry, target_, stop_)

    target, stop, rr = levels(k, m)
    retuned = False
    if rr < min_rr:
        # One retune: widen target first, then tighten stop
        k = min(k_hi, max(k, min_rr * m))
        if k / m < min_rr:
            m = max(m_lo, k / min_rr)
        target, stop, rr = levels(k, m)
        retuned = True
        logger.info(f"[skeleton] {payload.symbol} retuned k={k:.2f} m={m:.2f} rr={rr}")

    if rr < min_rr:
        return no_trade(f"Risk-reward {rr} below {min_rr} after retune", retuned=True)

    if draft.type == StrategyType.BUY and not (stop < entry < target):
        return no_trade("BUY levels out of order")
    if draft.type == StrategyType.SELL and not (target < entry < stop):
        return no_trade("SELL levels out of order")

    entry_range = None
    if draft.entryRange and len(draft.entryRange) == 2:
        lo, hi = sorted(round(float(x), 2) for x in draft.entryRange)
        if lo <= entry <= hi and hi - lo <= atr:
            entry_range = [lo, hi]

    archetype = draft.archetype or Archetype.TREND_FOLLOW
    entry_type = draft.entryType
    if entry_type is None:
        entry_type = EntryType.STOP if archetype == Archetype.BREAKOUT else EntryType.LIMIT
    if entry_type == EntryType.RANGE and entry_range is None:
        entry_type = EntryType.LIMIT

    return SkeletonResult(
        type=draft.type,
        archetype=archetype,
        alignment=alignment_for(draft.type, trend),
        entryType=entry_type,
        entry=entry,
        entryRange=entry_range,
        target=target,
        stopLoss=stop,
        riskReward=rr,
        k=round(k, 4),
        m=round(m, 4),
        retuned=retuned,
    )
