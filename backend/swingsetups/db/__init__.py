"""
Database module for SwingSetups.

Provides SQLite database connection and models.
"""

from swingsetups.db.database import close_db, get_db_context, init_db
from swingsetups.db.models import (
    AnalysisRecordRow,
    Base,
    QuotaUsageRow,
    TokenUsageLedgerRow,
    UserPlanRow,
)

__all__ = [
    "get_db_context",
    "init_db",
    "close_db",
    "Base",
    "AnalysisRecordRow",
    "TokenUsageLedgerRow",
    "QuotaUsageRow",
    "UserPlanRow",
]
