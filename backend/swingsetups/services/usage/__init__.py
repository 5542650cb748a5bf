"""Token usage ledger."""

from swingsetups.services.usage.ledger import UsageLedger, get_usage_ledger, price_for, stage_cost_usd

__all__ = ["UsageLedger", "get_usage_ledger", "price_for", "stage_cost_usd"]
