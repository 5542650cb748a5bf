"""
LLM Prompt Templates

Prompts for the sentiment call and the three analysis stages.

CRITICAL RULES (enforced in all prompts):
- LLM does NO math - trend, volatility, ATR distances and risk-reward are
  computed by the pipeline and override whatever the model returns
- Output is a single JSON object
- Triggers may only reference fields present in MARKET DATA
"""

import json

from swingsetups.schemas.market import PAYLOAD_REFS, BAR_REFS, LEVEL_REFS, MarketPayload
from swingsetups.schemas.stages import PreflightResult, SkeletonResult
from swingsetups.schemas.strategy import SentimentContext

# =============================================================================
# SENTIMENT
# =============================================================================

SENTIMENT_SYSTEM_PROMPT = """You classify Indian equity news headlines for a trading horizon.
Return JSON only: {"sentiment": "positive"|"neutral"|"negative", "confidence": 0..1,
"reasoning": "<one sentence>", "signals": ["<short phrase>", ...]}.
If headlines are mixed or unrelated to the company, answer neutral."""


def format_sentiment_prompt(symbol: str, headlines: list[str], horizon: str) -> list[dict]:
    listing = "\n".join(f"{i + 1}. {h}" for i, h in enumerate(headlines[:5]))
    user = f"Company: {symbol}\nHorizon: {horizon}\nHeadlines:\n{listing}"
    return [
        {"role": "system", "content": SENTIMENT_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


# =============================================================================
# SHARED
# =============================================================================

ANALYST_SYSTEM_PROMPT = """You are a disciplined technical analyst for NSE cash equities.

CRITICAL RULES:
1. NEVER invent data. Use only MARKET DATA provided.
2. All prices are INR. No guarantees, no certainty language.
3. Respond with one JSON object matching the requested shape exactly.
4. If inputs are missing, say so instead of guessing."""

ALLOWED_REFS = sorted(PAYLOAD_REFS) + sorted(BAR_REFS) + sorted(LEVEL_REFS)


def _market_block(payload: MarketPayload) -> str:
    return json.dumps(payload.to_prompt_dict(), default=str)


# =============================================================================
# STAGE 1: PREFLIGHT
# =============================================================================

PREFLIGHT_SHAPE = """{
  "insufficientData": false,
  "notes": ["<short observation about data health or regime>"]
}"""


def format_preflight_prompt(payload: MarketPayload, summary: dict, sector_context: str) -> list[dict]:
    user = (
        f"STAGE 1 PREFLIGHT for {payload.symbol} ({payload.analysis_type.value}).\n"
        f"MARKET DATA: {_market_block(payload)}\n"
        f"COMPUTED SUMMARY: {json.dumps(summary)}\n"
        f"SECTOR: {sector_context or 'unknown'}\n\n"
        "Review data health and note anything that makes a setup unreliable "
        "(stale bars, missing frames, extreme gaps).\n"
        f"OUTPUT JSON:\n{PREFLIGHT_SHAPE}"
    )
    return [
        {"role": "system", "content": ANALYST_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


# =============================================================================
# STAGE 2: SKELETON
# =============================================================================

SKELETON_SHAPE = """{
  "type": "BUY"|"SELL"|"NO_TRADE",
  "archetype": "breakout"|"pullback"|"trend-follow"|"mean-reversion"|"range-fade",
  "entryType": "limit"|"market"|"range"|"stop"|"stop-limit",
  "entry": <number>,
  "entryRange": [<number>, <number>] | null,
  "target": <number>,
  "stopLoss": <number>,
  "rationale": "<one sentence>"
}"""


def format_skeleton_prompt(
    payload: MarketPayload,
    preflight: PreflightResult,
    k_bounds: tuple[float, float],
    m_bounds: tuple[float, float],
) -> list[dict]:
    atr_name = "atr14_1h" if payload.analysis_type.value == "intraday" else "atr14_1D"
    user = (
        f"STAGE 2 SKELETON for {payload.symbol} ({payload.analysis_type.value}).\n"
        f"MARKET SUMMARY: {preflight.market_summary.model_dump_json()}\n"
        f"MARKET DATA: {_market_block(payload)}\n\n"
        "Propose exactly ONE best-fit setup.\n"
        f"- target = entry ± k*{atr_name}, k in [{k_bounds[0]}, {k_bounds[1]}]\n"
        f"- stop = entry ∓ m*{atr_name}, m in [{m_bounds[0]}, {m_bounds[1]}]\n"
        "- BUY: stopLoss < entry < target. SELL: target < entry < stopLoss.\n"
        "- Prefer NO_TRADE when there is no clean edge.\n"
        f"OUTPUT JSON:\n{SKELETON_SHAPE}"
    )
    return [
        {"role": "system", "content": ANALYST_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


# =============================================================================
# STAGE 3: FINALIZE
# =============================================================================

FINALIZE_SHAPE = """{
  "title": "<short title>",
  "reasoning": [{"because": "<fact from MARKET DATA> -> <implication>"}],
  "beginner_summary": "<two sentences for a new trader>",
  "warnings": ["<risk>"],
  "triggers": [
    {"id": "T1", "scope": "entry", "timeframe": "1h",
     "left": {"ref": "close"}, "op": ">"|">="|"<"|"<="|"crosses_above"|"crosses_below",
     "right": {"ref": "entry", "offset": 0}, "occurrences": 1, "within_sessions": 3}
  ],
  "invalidations_pre_entry": [
    {"id": "I1", "timeframe": "1h", "left": {"ref": "close"}, "op": "<",
     "right": {"ref": "stopLoss"}}
  ]
}"""


def format_finalize_prompt(
    payload: MarketPayload,
    preflight: PreflightResult,
    skeleton: SkeletonResult,
    sentiment: SentimentContext,
    sector_context: str,
) -> list[dict]:
    user = (
        f"STAGE 3 FINALIZE for {payload.symbol} ({payload.analysis_type.value}).\n"
        f"MARKET SUMMARY: {preflight.market_summary.model_dump_json()}\n"
        f"SKELETON (levels are final, do not change them): "
        f"{skeleton.model_dump_json(include={'type', 'archetype', 'entryType', 'entry', 'target', 'stopLoss', 'riskReward', 'alignment'})}\n"
        f"SENTIMENT: {sentiment.model_dump_json(include={'sentiment', 'confidence', 'reasoning'})}\n"
        f"SECTOR: {sector_context or 'unknown'}\n"
        f"MARKET DATA: {_market_block(payload)}\n\n"
        "Write entry triggers and pre-entry invalidations for this setup.\n"
        f"Refs may ONLY be one of: {', '.join(ALLOWED_REFS)}.\n"
        "Timeframes: 1m, 3m, 15m, 1h, 1D.\n"
        f"OUTPUT JSON:\n{FINALIZE_SHAPE}"
    )
    return [
        {"role": "system", "content": ANALYST_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]
