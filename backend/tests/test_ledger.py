"""Tests for token usage accounting."""

import pytest
from sqlalchemy import select

from swingsetups.db.database import get_db_context
from swingsetups.db.models import TokenUsageLedgerRow
from swingsetups.schemas.analysis import AnalysisRecord, AnalysisStatus
from swingsetups.schemas.market import AnalysisType
from swingsetups.schemas.stages import StageUsage, TokenUsage
from swingsetups.services.usage.ledger import UsageLedger, price_for, stage_cost_usd


def usage(stage: str, model: str = "o4-mini") -> StageUsage:
    return StageUsage(
        stage=stage,
        model=model,
        tokens=TokenUsage(input_tokens=1000, output_tokens=200, cached_tokens=100),
        duration_ms=1200,
    )


@pytest.fixture
def record() -> AnalysisRecord:
    return AnalysisRecord(
        id="rec-1",
        instrument_key="NSE_EQ|INE002A01018",
        analysis_type=AnalysisType.SWING,
        stock_symbol="RELIANCE",
        status=AnalysisStatus.COMPLETED,
    )


@pytest.fixture
def ledger(db) -> UsageLedger:
    return UsageLedger()


async def all_rows() -> list[TokenUsageLedgerRow]:
    async with get_db_context() as session:
        result = await session.execute(select(TokenUsageLedgerRow))
        return list(result.scalars().all())


class TestPricing:
    def test_dated_model_matches_longest_prefix(self):
        assert price_for("gpt-4o-mini-2024-07-18") == price_for("gpt-4o-mini")
        assert price_for("gpt-4o-2024-08-06") == price_for("gpt-4o")

    def test_unknown_model(self):
        assert price_for("mystery-model") is None
        assert stage_cost_usd(usage("skeleton", model="mystery-model")) == 0.0

    def test_cached_input_priced_separately(self):
        # 900 uncached * 1.10 + 100 cached * 0.275 + 200 output * 4.40, per 1M
        assert stage_cost_usd(usage("skeleton")) == pytest.approx(0.0018975)


class TestUsageLedger:
    """One billed row per computation; cached accesses are free."""

    async def test_computation_row(self, ledger, record):
        row_id = await ledger.record_computation("u1", record, [usage("preflight"), usage("skeleton")])
        rows = await all_rows()
        assert len(rows) == 1
        row = rows[0]
        assert row.id == row_id
        assert not row.is_cached_analysis
        assert row.input_tokens == 2000
        assert row.output_tokens == 200 * 2
        assert row.total_tokens == 2400
        assert row.cost_usd == pytest.approx(0.003795)
        assert row.cost_inr == pytest.approx(0.315, abs=1e-4)
        assert [s["stage"] for s in row.stages] == ["preflight", "skeleton"]
        assert row.cache_hit_rate == pytest.approx(0.1)

    async def test_cached_access_is_zero_cost(self, ledger, record):
        source_id = await ledger.record_computation("u1", record, [usage("skeleton")])
        cached_id = await ledger.record_cached_access("u2", record)

        rows = {row.id: row for row in await all_rows()}
        cached = rows[cached_id]
        assert cached.is_cached_analysis
        assert cached.user_id == "u2"
        assert cached.cost_usd == 0.0
        assert cached.cost_inr == 0.0
        assert cached.source_ledger_id == source_id
        assert cached.cache_hit_rate == 1.0

    async def test_cached_access_without_source(self, ledger, record):
        cached_id = await ledger.record_cached_access("u2", record)
        rows = {row.id: row for row in await all_rows()}
        assert rows[cached_id].source_ledger_id is None
        assert rows[cached_id].total_tokens == 0

    async def test_summary_excludes_cached_rows(self, ledger, record):
        await ledger.record_computation("u1", record, [usage("skeleton")])
        await ledger.record_cached_access("u1", record)
        await ledger.record_cached_access("u1", record)

        summary = await ledger.summarize_user("u1")
        assert summary["computations"] == 1
        assert summary["cachedAccesses"] == 2
        assert summary["totalTokens"] == 1200
        assert summary["costUsd"] == pytest.approx(0.0018975, abs=1e-6)

    async def test_summary_for_unknown_user(self, ledger):
        summary = await ledger.summarize_user("nobody")
        assert summary["computations"] == 0
        assert summary["costUsd"] == 0.0
