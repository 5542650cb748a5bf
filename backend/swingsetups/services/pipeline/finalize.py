"""
Stage 3: Finalize (deterministic part)

Input: PreflightResult + SkeletonResult + MarketPayload + SentimentContext
       (+ optional FinalizeDraft with model-written triggers and explanations)
Output: FinalResult with exactly one Strategy

RESPONSIBILITIES:
- Keep only triggers that reference known payload fields
- Evaluate every trigger and pre-entry invalidation against the payload
- Validity windows, position size, actionability and the order gate
- Score the strategy (confidence, band, risk meter)

RULES:
- Levels always come from the skeleton, never from the model
- can_place_order only when: not NO_TRADE, every entry trigger passed,
  no pre-entry invalidation fired, actionable_now
"""

import logging
import math
from datetime import date, timedelta
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from swingsetups.core.market_hours import (
    add_trading_sessions,
    get_next_trading_day,
    get_previous_trading_day,
    is_trading_day,
)
from swingsetups.schemas.analysis import PipelineConfig
from swingsetups.schemas.market import AnalysisType, MarketPayload, Timeframe
from swingsetups.schemas.stages import (
    ConditionDraft,
    FinalizeDraft,
    FinalResult,
    PreflightResult,
    SkeletonResult,
)
from swingsetups.schemas.strategy import (
    Actionability,
    EntryType,
    EntryValidity,
    IndicatorReading,
    IndicatorSignal,
    Invalidation,
    Operator,
    OrderGate,
    PositionSize,
    PositionValidity,
    Runtime,
    SentimentContext,
    Strategy,
    StrategyType,
    Trigger,
    TriggerScope,
    Validity,
    ValueRef,
)
from swingsetups.services.pipeline.triggers import ALLOWED_TIMEFRAMES, evaluate, is_known_ref
from swingsetups.services.scoring.engine import ScoringConfig, ScoringContext, score

logger = logging.getLogger(__name__)

TIMEFRAME_TEXT = {
    AnalysisType.SWING: "3-7 days",
    AnalysisType.INTRADAY: "1-4 hours",
}

TRIGGER_TIMEFRAME = {
    AnalysisType.SWING: Timeframe.H1.value,
    AnalysisType.INTRADAY: Timeframe.M15.value,
}

# Entry tolerance (in ATRs) used to judge whether the entry type makes sense
ENTRY_TOLERANCE_ATR = 0.1
MARKET_ENTRY_TOLERANCE_ATR = 0.5


# =============================================================================
# INDICATORS
# =============================================================================


def indicator_readings(payload: MarketPayload) -> list[IndicatorReading]:
    ind = payload.indicators
    readings = []

    if ind.rsi14_1h is not None:
        signal = IndicatorSignal.NEUTRAL
        if ind.rsi14_1h >= 55:
            signal = IndicatorSignal.BUY
        elif ind.rsi14_1h <= 45:
            signal = IndicatorSignal.SELL
        readings.append(IndicatorReading(name="RSI14", timeframe="1h", value=ind.rsi14_1h, signal=signal))

    if ind.ema20_1D is not None and ind.ema50_1D is not None:
        signal = IndicatorSignal.NEUTRAL
        if ind.ema20_1D > ind.ema50_1D:
            signal = IndicatorSignal.BUY
        elif ind.ema20_1D < ind.ema50_1D:
            signal = IndicatorSignal.SELL
        readings.append(IndicatorReading(name="EMA20/EMA50", timeframe="1D", value=ind.ema20_1D, signal=signal))

    if payload.last is not None and ind.sma200_1D is not None:
        signal = IndicatorSignal.NEUTRAL
        if payload.last > ind.sma200_1D:
            signal = IndicatorSignal.BUY
        elif payload.last < ind.sma200_1D:
            signal = IndicatorSignal.SELL
        readings.append(IndicatorReading(name="Price/SMA200", timeframe="1D", value=ind.sma200_1D, signal=signal))

    return readings


# =============================================================================
# TRIGGERS
# =============================================================================


def _price_ref(payload: MarketPayload, timeframe: str) -> ValueRef:
    """Latest close on the timeframe, or the last price when that frame has no bars."""
    if payload.bars.get(timeframe):
        return ValueRef(ref="close")
    return ValueRef(ref="priceContext.last")


def default_entry_triggers(strategy_type: StrategyType, payload: MarketPayload, timeframe: str) -> list[Trigger]:
    op = Operator.GTE if strategy_type == StrategyType.BUY else Operator.LTE
    return [
        Trigger(
            id="T1",
            scope=TriggerScope.ENTRY,
            timeframe=timeframe,
            left=_price_ref(payload, timeframe),
            op=op,
            right=ValueRef(ref="entry"),
            within_sessions=3,
        )
    ]


def default_pre_entry_invalidations(strategy_type: StrategyType, payload: MarketPayload, timeframe: str) -> list[Invalidation]:
    op = Operator.LTE if strategy_type == StrategyType.BUY else Operator.GTE
    return [
        Invalidation(
            id="I1",
            scope=TriggerScope.PRE_ENTRY,
            timeframe=timeframe,
            left=_price_ref(payload, timeframe),
            op=op,
            right=ValueRef(ref="stopLoss"),
            action="cancel_entry",
        )
    ]


def post_entry_invalidation(strategy_type: StrategyType) -> Invalidation:
    """Standard stop: close through stopLoss on 1h closes the position."""
    op = Operator.LTE if strategy_type == StrategyType.BUY else Operator.GTE
    return Invalidation(
        id="P1",
        scope=TriggerScope.POST_ENTRY,
        timeframe=Timeframe.H1.value,
        left=ValueRef(ref="close"),
        op=op,
        right=ValueRef(ref="stopLoss"),
        action="close_position",
    )


def _sanitize(
    draft: ConditionDraft,
    index: int,
    prefix: str,
    scope: TriggerScope,
    default_timeframe: str,
) -> Optional[dict]:
    """Normalize a model-written condition; None when it is unusable."""
    try:
        op = Operator(draft.op.strip().lower())
    except ValueError:
        return None

    try:
        left = ValueRef.model_validate({k: v for k, v in (draft.left or {}).items() if v is not None})
        right = ValueRef.model_validate({k: v for k, v in (draft.right or {}).items() if v is not None})
    except PydanticValidationError:
        return None
    if not left.ref and left.value is None:
        return None
    if not right.ref and right.value is None:
        return None
    if not is_known_ref(left.ref) or not is_known_ref(right.ref):
        return None

    timeframe = draft.timeframe if draft.timeframe in ALLOWED_TIMEFRAMES else default_timeframe
    return {
        "id": draft.id or f"{prefix}{index}",
        "scope": scope,
        "timeframe": timeframe,
        "left": left,
        "op": op,
        "right": right,
        "occurrences": max(1, draft.occurrences),
        "within_sessions": draft.within_sessions,
        "expiry_bars": draft.expiry_bars,
    }


# =============================================================================
# VALIDITY / SIZING / GATE
# =============================================================================


def build_validity(analysis_type: AnalysisType, today: date) -> Validity:
    if analysis_type == AnalysisType.INTRADAY:
        entry = EntryValidity(
            type="DAY", trading_sessions_soft=1, trading_sessions_hard=1, expire_calendar_cap_days=1
        )
        position = PositionValidity(time_stop_sessions=1, gap_policy="square_off_same_session")
    else:
        entry = EntryValidity()
        position = PositionValidity()

    if analysis_type == AnalysisType.INTRADAY:
        expires = today if is_trading_day(today) else get_next_trading_day(today)
    else:
        hard = add_trading_sessions(today, entry.trading_sessions_hard)
        cap = today + timedelta(days=entry.expire_calendar_cap_days)
        if not is_trading_day(cap):
            cap = get_previous_trading_day(cap)
        expires = min(hard, cap)
    entry.expires_on = expires.isoformat()
    return Validity(entry=entry, position=position)


def position_size(entry: float, stop: float, budget: float, alternatives: tuple[float, ...]) -> PositionSize:
    risk_per_share = round(abs(entry - stop), 2)

    def qty_for(b: float) -> int:
        return math.floor(b / risk_per_share) if risk_per_share > 0 else 0

    qty = qty_for(budget)
    return PositionSize(
        risk_budget=budget,
        risk_per_share=risk_per_share,
        quantity=qty,
        capital_required=round(qty * entry, 2),
        alternatives=[
            {"risk_budget": b, "quantity": qty_for(b), "capital_required": round(qty_for(b) * entry, 2)}
            for b in alternatives
        ],
    )


def entry_type_sane(skeleton: SkeletonResult, last: Optional[float], atr: Optional[float]) -> bool:
    if skeleton.entry is None or skeleton.entryType is None or not last or not atr:
        return False
    entry, tol = skeleton.entry, ENTRY_TOLERANCE_ATR * atr
    buy = skeleton.type == StrategyType.BUY

    if skeleton.entryType == EntryType.MARKET:
        return abs(entry - last) <= MARKET_ENTRY_TOLERANCE_ATR * atr
    if skeleton.entryType == EntryType.LIMIT:
        return entry <= last + tol if buy else entry >= last - tol
    if skeleton.entryType in (EntryType.STOP, EntryType.STOP_LIMIT):
        return entry >= last - tol if buy else entry <= last + tol
    if skeleton.entryType == EntryType.RANGE:
        return bool(skeleton.entryRange) and skeleton.entryRange[0] <= entry <= skeleton.entryRange[1]
    return False


def actionability_for(entry_triggers: list[Trigger], fired: list[str]) -> Actionability:
    if fired:
        return Actionability.MONITOR_ONLY
    if entry_triggers and all(t.passed for t in entry_triggers):
        return Actionability.ACTIONABLE_NOW
    if any(t.evaluable for t in entry_triggers):
        return Actionability.ACTIONABLE_ON_TRIGGER
    return Actionability.MONITOR_ONLY


# =============================================================================
# RESULTS
# =============================================================================


def insufficient_result(preflight: PreflightResult) -> FinalResult:
    """Terminal result when stage 1 reports missing inputs."""
    return FinalResult(
        insufficientData=True,
        market_summary=preflight.market_summary,
        strategies=[],
        runtime=Runtime(),
        order_gate=OrderGate(),
        fallback=preflight.fallback,
        fallback_reason=preflight.fallback_reason,
    )


def no_trade_strategy(strategy_id: str, skeleton: SkeletonResult, analysis_type: AnalysisType, budget: float) -> Strategy:
    return Strategy(
        id=strategy_id,
        type=StrategyType.NO_TRADE,
        archetype=skeleton.archetype,
        alignment=skeleton.alignment,
        title="No trade",
        timeframe=TIMEFRAME_TEXT[analysis_type],
        riskReward=0.0,
        position_size=PositionSize(risk_budget=budget, quantity=0),
        actionability=Actionability.MONITOR_ONLY,
        reasoning=[skeleton.no_trade_reason] if skeleton.no_trade_reason else [],
        fallback=skeleton.fallback,
    )


def build_final(
    preflight: PreflightResult,
    skeleton: SkeletonResult,
    payload: MarketPayload,
    sentiment: SentimentContext,
    draft: Optional[FinalizeDraft],
    config: PipelineConfig,
    strategy_id: str,
    today: date,
) -> FinalResult:
    if preflight.insufficientData:
        return insufficient_result(preflight)

    analysis_type = payload.analysis_type
    indicators = indicator_readings(payload)

    if skeleton.type == StrategyType.NO_TRADE:
        strategy = no_trade_strategy(strategy_id, skeleton, analysis_type, config.risk_budget_inr)
        strategy.indicators = indicators
        if draft is not None:
            strategy.reasoning.extend(draft.reasoning)
            strategy.beginner_summary = draft.beginner_summary
        return FinalResult(
            market_summary=preflight.market_summary,
            strategies=[strategy],
            runtime=Runtime(),
            order_gate=OrderGate(),
            fallback=skeleton.fallback,
        )

    timeframe = TRIGGER_TIMEFRAME[analysis_type]
    draft = draft or FinalizeDraft()

    entry_triggers = [
        Trigger(**fields)
        for i, d in enumerate(draft.triggers, start=1)
        if (fields := _sanitize(d, i, "T", TriggerScope.ENTRY, timeframe))
    ]
    dropped = len(draft.triggers) - len(entry_triggers)
    if dropped:
        logger.info(f"[finalize] {payload.symbol}: dropped {dropped} trigger(s) with unknown refs/ops")
    if not entry_triggers:
        entry_triggers = default_entry_triggers(skeleton.type, payload, timeframe)

    pre_entry = [
        Invalidation(**fields, action="cancel_entry")
        for i, d in enumerate(draft.invalidations_pre_entry, start=1)
        if (fields := _sanitize(d, i, "I", TriggerScope.PRE_ENTRY, timeframe))
    ]
    if not pre_entry:
        pre_entry = default_pre_entry_invalidations(skeleton.type, payload, timeframe)

    levels = {"entry": skeleton.entry, "target": skeleton.target, "stopLoss": skeleton.stopLoss}
    entry_triggers = [evaluate(t, payload, levels) for t in entry_triggers]
    pre_entry = [evaluate(inv, payload, levels) for inv in pre_entry]
    post_entry = [post_entry_invalidation(skeleton.type)]

    fired = [inv.id for inv in pre_entry if inv.passed]
    actionability = actionability_for(entry_triggers, fired)
    all_true = bool(entry_triggers) and all(t.passed for t in entry_triggers)
    sane = entry_type_sane(skeleton, payload.last, payload.atr())

    order_gate = OrderGate(
        all_triggers_true=all_true,
        no_pre_entry_invalidations=not fired,
        actionability_status=actionability,
        entry_type_sane=sane,
        can_place_order=(
            all_true and not fired and sane and actionability == Actionability.ACTIONABLE_NOW
        ),
    )

    archetype_name = skeleton.archetype.value if skeleton.archetype else "setup"
    title = draft.title or f"{archetype_name.replace('-', ' ').title()} {skeleton.type.value}"
    strategy = Strategy(
        id=strategy_id,
        type=skeleton.type,
        archetype=skeleton.archetype,
        alignment=skeleton.alignment,
        title=title,
        entryType=skeleton.entryType,
        entry=skeleton.entry,
        entryRange=skeleton.entryRange,
        target=skeleton.target,
        stopLoss=skeleton.stopLoss,
        riskReward=skeleton.riskReward,
        timeframe=TIMEFRAME_TEXT[analysis_type],
        indicators=indicators,
        triggers=entry_triggers,
        invalidations=pre_entry + post_entry,
        validity=build_validity(analysis_type, today),
        position_size=position_size(
            skeleton.entry, skeleton.stopLoss, config.risk_budget_inr, config.alternative_risk_budgets_inr
        ),
        actionability=actionability,
        reasoning=draft.reasoning,
        beginner_summary=draft.beginner_summary,
        warnings=draft.warnings,
        fallback=skeleton.fallback,
    )

    return FinalResult(
        market_summary=preflight.market_summary,
        strategies=[strategy],
        runtime=Runtime(
            triggers_evaluated=entry_triggers + pre_entry,
            pre_entry_invalidations_hit=fired,
        ),
        order_gate=order_gate,
    )


def apply_score(
    final: FinalResult,
    payload: MarketPayload,
    sentiment: SentimentContext,
    scoring_config: Optional[ScoringConfig] = None,
) -> FinalResult:
    """Attach score, band, risk meter and confidence to the strategy."""
    strategy = final.strategy
    if strategy is None:
        return final

    ind = payload.indicators
    context = ScoringContext(
        analysis_type=payload.analysis_type,
        trend=final.market_summary.trend,
        atr=payload.atr(),
        ema20=ind.ema20_1D,
        ema50=ind.ema50_1D,
        sma200=ind.sma200_1D,
        indicators=tuple(strategy.indicators),
        volume=payload.volume_class,
        sentiment=sentiment.bias,
        missing_frames=len(payload.missing_frames),
        has_last=payload.last is not None,
    )
    result = score(strategy, context, scoring_config)

    strategy.score = result.score
    strategy.confidence = result.score
    strategy.score_band = result.band
    strategy.risk_meter = result.risk_meter
    strategy.score_components = result.components
    return final
