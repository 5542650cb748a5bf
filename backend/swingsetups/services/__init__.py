"""
SwingSetups Services

Service layer containing all business logic.
Each service has a defined interface (contract) and implementation.
"""

from swingsetups.services.base import (
    BaseService,
    ServiceError,
    ValidationError,
    ExternalServiceError,
    InsufficientDataError,
    SchemaViolationError,
    QuotaExceededError,
)

__all__ = [
    "BaseService",
    "ServiceError",
    "ValidationError",
    "ExternalServiceError",
    "InsufficientDataError",
    "SchemaViolationError",
    "QuotaExceededError",
]
