"""
Quota & Usage API Endpoints
"""

from fastapi import APIRouter, Depends, Query

from swingsetups.schemas.analysis import QuotaDecision
from swingsetups.services.quota import QuotaGuard, get_quota_guard
from swingsetups.services.usage import UsageLedger, get_usage_ledger

router = APIRouter()


@router.get("/quota/{user_id}", response_model=QuotaDecision)
async def check_quota(
    user_id: str,
    symbol: str = Query(..., min_length=1),
    guard: QuotaGuard = Depends(get_quota_guard),
):
    """Would analyzing `symbol` now be allowed? Read-only."""
    return await guard.check_quota(user_id, symbol)


@router.get("/usage/{user_id}")
async def get_usage(
    user_id: str,
    guard: QuotaGuard = Depends(get_quota_guard),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """Quota window usage plus billed token totals."""
    return {
        "quota": await guard.usage(user_id),
        "billing": await ledger.summarize_user(user_id),
    }
