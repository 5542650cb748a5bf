"""
Trigger evaluation.

A trigger compares a left value with a right value (+ offset) using one of
<, <=, >, >=, crosses_above, crosses_below. Values come from the market
payload, the latest bar of the trigger's timeframe, or the strategy levels.

A side that cannot be resolved makes the trigger non-evaluable, and a
non-evaluable trigger never passes.
"""

from typing import Optional, TypeVar

from swingsetups.schemas.market import BAR_REFS, LEVEL_REFS, PAYLOAD_REFS, MarketPayload, Timeframe
from swingsetups.schemas.strategy import Operator, Trigger, ValueRef

TriggerT = TypeVar("TriggerT", bound=Trigger)

ALLOWED_REFS = set(PAYLOAD_REFS) | BAR_REFS | LEVEL_REFS
ALLOWED_TIMEFRAMES = {tf.value for tf in Timeframe}


def is_known_ref(ref: Optional[str]) -> bool:
    return ref is None or ref in ALLOWED_REFS


def _resolve(
    side: ValueRef,
    timeframe: str,
    payload: MarketPayload,
    levels: dict[str, Optional[float]],
) -> tuple[Optional[float], list[float]]:
    """(current value, series for crossing checks)."""
    series: list[float] = []
    if side.ref:
        if side.ref in BAR_REFS:
            series = payload.bar_series(timeframe, side.ref)
            value = series[-1] if series else None
        elif side.ref in LEVEL_REFS:
            value = levels.get(side.ref)
        else:
            value = payload.reference_table().get(side.ref)
    else:
        value = side.value

    if value is None:
        return None, []
    return value + side.offset, [v + side.offset for v in series]


def _compare(op: Operator, left: float, right: float) -> bool:
    if op == Operator.LT:
        return left < right
    if op == Operator.LTE:
        return left <= right
    if op == Operator.GT:
        return left > right
    if op == Operator.GTE:
        return left >= right
    raise ValueError(f"Not a scalar comparison: {op}")


def evaluate(
    trigger: TriggerT,
    payload: MarketPayload,
    levels: dict[str, Optional[float]],
) -> TriggerT:
    """Return a copy of the trigger with left/right values, evaluable and passed filled in."""
    left, left_series = _resolve(trigger.left, trigger.timeframe, payload, levels)
    right, right_series = _resolve(trigger.right, trigger.timeframe, payload, levels)

    evaluated = trigger.model_copy(
        update={"left_value": left, "right_value": right, "evaluable": False, "passed": False}
    )
    if left is None or right is None:
        return evaluated

    if trigger.op in (Operator.CROSSES_ABOVE, Operator.CROSSES_BELOW):
        if len(left_series) < 2:
            return evaluated
        prev_left = left_series[-2]
        prev_right = right_series[-2] if len(right_series) >= 2 else right
        if trigger.op == Operator.CROSSES_ABOVE:
            passed = prev_left <= prev_right and left > right
        else:
            passed = prev_left >= prev_right and left < right
    else:
        passed = _compare(trigger.op, left, right)

    evaluated.evaluable = True
    evaluated.passed = passed
    return evaluated
