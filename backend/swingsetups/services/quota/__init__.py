"""Per-user distinct-symbol quota."""

from swingsetups.services.quota.guard import QuotaGuard, get_quota_guard, normalize_symbol

__all__ = ["QuotaGuard", "get_quota_guard", "normalize_symbol"]
