"""
Quota Guard

CONTRACT:
    check_quota(user_id, symbol) -> QuotaDecision   (read-only)
    consume(user_id, symbol) -> QuotaDecision       (raises QuotaExceededError)

RULES:
- Window: quota cutoff of one trading day -> quota cutoff of the next trading day (IST)
- At most N distinct symbols per window, N from the user's plan
- A symbol already used in the window is always allowed and never counted twice
"""

import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from swingsetups.core.config import settings
from swingsetups.core.market_hours import quota_window
from swingsetups.db.database import SessionFactory, get_db_context, to_db_time, utc_now
from swingsetups.db.models import QuotaUsageRow, UserPlanRow
from swingsetups.schemas.analysis import QuotaDecision
from swingsetups.services.base import KeyedLocks, QuotaExceededError

logger = logging.getLogger(__name__)

_SYMBOL_NOISE = re.compile(r"[\s\-]+")


def normalize_symbol(symbol: str) -> str:
    return _SYMBOL_NOISE.sub("", symbol or "").upper()


class QuotaGuard:
    """Distinct-symbol quota per user per trading window."""

    def __init__(self, session_factory: SessionFactory = get_db_context):
        self._session_factory = session_factory
        self._locks = KeyedLocks()

    async def get_plan(self, user_id: str) -> tuple[str, int]:
        """(plan name, distinct-symbol limit) for a user."""
        async with self._session_factory() as session:
            row = await session.get(UserPlanRow, user_id)
        plan = row.plan if row else settings.default_plan
        if row and row.stock_limit is not None:
            return plan, row.stock_limit
        return plan, settings.plan_stock_limits.get(plan, settings.default_stock_limit)

    async def set_plan(self, user_id: str, plan: str, stock_limit: Optional[int] = None) -> None:
        async with self._session_factory() as session:
            row = await session.get(UserPlanRow, user_id)
            if row is None:
                session.add(UserPlanRow(user_id=user_id, plan=plan, stock_limit=stock_limit))
            else:
                row.plan = plan
                row.stock_limit = stock_limit

    async def _used_symbols(self, user_id: str, window_end: datetime) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(QuotaUsageRow.symbol)
                .where(
                    QuotaUsageRow.user_id == user_id,
                    QuotaUsageRow.window_end == to_db_time(window_end),
                )
                .order_by(QuotaUsageRow.created_at)
            )
            return list(result.scalars().all())

    async def check_quota(self, user_id: str, symbol: str, now: Optional[datetime] = None) -> QuotaDecision:
        symbol = normalize_symbol(symbol)
        _, window_end = quota_window(now or utc_now())
        _, limit = await self.get_plan(user_id)
        used = await self._used_symbols(user_id, window_end)

        if symbol in used:
            reason = "already_analyzed"
            allowed = True
        elif len(used) < limit:
            reason = "within_limit"
            allowed = True
        else:
            reason = "daily_limit_reached"
            allowed = False

        return QuotaDecision(
            allowed=allowed,
            reason=reason,
            symbol=symbol,
            used=len(used),
            limit=limit,
            resetsAt=window_end,
        )

    async def consume(self, user_id: str, symbol: str, now: Optional[datetime] = None) -> QuotaDecision:
        """Count the symbol against the user's window. Idempotent per (user, symbol, window)."""
        now = now or utc_now()
        async with self._locks.hold(user_id):
            decision = await self.check_quota(user_id, symbol, now)
            if not decision.allowed:
                logger.info(
                    f"[quota] {user_id}: {decision.symbol} rejected "
                    f"({decision.used}/{decision.limit}, resets {decision.resetsAt.isoformat()})"
                )
                raise QuotaExceededError(
                    "quota",
                    f"Daily limit of {decision.limit} stocks reached",
                    resets_at=decision.resetsAt,
                    details={"used": decision.used, "limit": decision.limit, "symbol": decision.symbol},
                )
            if decision.reason == "already_analyzed":
                return decision

            start, end = quota_window(now)
            try:
                async with self._session_factory() as session:
                    session.add(
                        QuotaUsageRow(
                            user_id=user_id,
                            symbol=decision.symbol,
                            window_start=to_db_time(start),
                            window_end=to_db_time(end),
                        )
                    )
            except IntegrityError:
                # Counted already by a concurrent writer
                logger.debug(f"[quota] {user_id}: {decision.symbol} already recorded")
                return decision.model_copy(update={"reason": "already_analyzed"})

            return decision.model_copy(update={"used": decision.used + 1})

    async def usage(self, user_id: str, now: Optional[datetime] = None) -> dict:
        start, end = quota_window(now or utc_now())
        plan, limit = await self.get_plan(user_id)
        used = await self._used_symbols(user_id, end)
        return {
            "userId": user_id,
            "plan": plan,
            "used": len(used),
            "limit": limit,
            "symbols": used,
            "windowStart": start.isoformat(),
            "resetsAt": end.isoformat(),
        }


_guard: Optional[QuotaGuard] = None


def get_quota_guard() -> QuotaGuard:
    global _guard
    if _guard is None:
        _guard = QuotaGuard()
    return _guard
