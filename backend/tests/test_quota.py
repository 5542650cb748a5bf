"""Tests for the distinct-symbol quota guard."""

from datetime import datetime

import pytest

from swingsetups.core.market_hours import IST
from swingsetups.services.base import QuotaExceededError
from swingsetups.services.quota.guard import QuotaGuard, normalize_symbol

MORNING = IST.localize(datetime(2025, 8, 14, 10, 0))
EVENING = IST.localize(datetime(2025, 8, 14, 17, 0))


@pytest.fixture
def guard(db) -> QuotaGuard:
    return QuotaGuard()


class TestNormalizeSymbol:
    def test_case_and_separators(self):
        assert normalize_symbol(" bajaj-auto ") == "BAJAJAUTO"
        assert normalize_symbol("Tata Motors") == "TATAMOTORS"


class TestQuotaGuard:
    """At most N distinct symbols per user per window."""

    async def test_default_plan(self, guard):
        assert await guard.get_plan("u1") == ("free", 3)

    async def test_fourth_symbol_rejected(self, guard):
        for symbol in ("RELIANCE", "TCS", "INFY"):
            decision = await guard.consume("u1", symbol, now=MORNING)
            assert decision.allowed

        with pytest.raises(QuotaExceededError) as exc_info:
            await guard.consume("u1", "HDFCBANK", now=MORNING)

        error = exc_info.value
        assert error.error_code == "daily_limit_reached"
        assert error.resets_at == IST.localize(datetime(2025, 8, 14, 16, 0))
        assert error.details["used"] == 3
        assert error.to_dict()["resetsAt"].startswith("2025-08-14T16:00:00")

    async def test_repeat_symbol_always_allowed(self, guard):
        for symbol in ("RELIANCE", "TCS", "INFY"):
            await guard.consume("u1", symbol, now=MORNING)

        decision = await guard.consume("u1", "reliance", now=MORNING)
        assert decision.allowed
        assert decision.reason == "already_analyzed"
        assert decision.used == 3

    async def test_repeat_symbol_counted_once(self, guard):
        first = await guard.consume("u1", "TCS", now=MORNING)
        second = await guard.consume("u1", "tcs", now=MORNING)
        assert first.used == 1
        assert second.used == 1
        assert (await guard.usage("u1", now=MORNING))["used"] == 1

    async def test_new_window_resets(self, guard):
        for symbol in ("RELIANCE", "TCS", "INFY"):
            await guard.consume("u1", symbol, now=MORNING)

        decision = await guard.consume("u1", "HDFCBANK", now=EVENING)
        assert decision.allowed
        assert decision.used == 1

    async def test_check_quota_is_read_only(self, guard):
        decision = await guard.check_quota("u1", "TCS", now=MORNING)
        assert decision.allowed
        assert decision.reason == "within_limit"
        assert (await guard.usage("u1", now=MORNING))["used"] == 0

    async def test_users_are_independent(self, guard):
        for symbol in ("RELIANCE", "TCS", "INFY"):
            await guard.consume("u1", symbol, now=MORNING)
        decision = await guard.consume("u2", "HDFCBANK", now=MORNING)
        assert decision.allowed

    async def test_plan_override(self, guard):
        await guard.set_plan("u1", "basic")
        assert await guard.get_plan("u1") == ("basic", 20)

        await guard.set_plan("u1", "free", stock_limit=1)
        await guard.consume("u1", "TCS", now=MORNING)
        with pytest.raises(QuotaExceededError):
            await guard.consume("u1", "INFY", now=MORNING)

    async def test_usage_summary(self, guard):
        await guard.consume("u1", "TCS", now=MORNING)
        await guard.consume("u1", "INFY", now=MORNING)
        usage = await guard.usage("u1", now=MORNING)
        assert sorted(usage["symbols"]) == ["INFY", "TCS"]
        assert usage["limit"] == 3
        assert usage["resetsAt"].startswith("2025-08-14T16:00:00")
