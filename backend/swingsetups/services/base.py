"""
Base Service Interface

All services inherit from this base class. Errors raised anywhere in the
analysis pipeline derive from ServiceError and carry stage/key context.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class BaseService(ABC, Generic[InputT, OutputT]):
    """
    Base class for all services.

    Each service:
    - Has a defined input type
    - Has a defined output type
    - Can check its health
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Service name for logging."""
        pass

    @abstractmethod
    async def execute(self, input_data: InputT) -> OutputT:
        """
        Execute the service's main function.

        Raises:
            ServiceError: If execution fails
        """
        pass

    async def health_check(self) -> bool:
        """Check if service is healthy and can process requests."""
        return True


class ServiceError(Exception):
    """Base exception for service errors."""

    error_code = "service_error"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: dict = None,
        stage: Optional[str] = None,
        key: Optional[str] = None,
    ):
        self.service_name = service_name
        self.message = message
        self.details = details or {}
        if stage:
            self.details.setdefault("stage", stage)
        if key:
            self.details.setdefault("key", key)
        super().__init__(f"[{service_name}] {message}")

    @property
    def stage(self) -> Optional[str]:
        return self.details.get("stage")

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "errorCode": self.error_code,
            "details": self.details,
        }


class ValidationError(ServiceError):
    """Input validation error."""

    error_code = "validation_error"


class ExternalServiceError(ServiceError):
    """Upstream call (market data, news, completion service) timed out or failed."""

    error_code = "external_service_error"


class InsufficientDataError(ServiceError):
    """Required price or indicator inputs are missing. Not retried automatically."""

    error_code = "insufficient_data"


class SchemaViolationError(ServiceError):
    """A stage returned output that could not be parsed or validated."""

    error_code = "schema_violation"

    def __init__(self, service_name: str, message: str, raw: str = "", **kwargs):
        super().__init__(service_name, message, **kwargs)
        self.raw = raw


class QuotaExceededError(ServiceError):
    """User hit their distinct-symbol cap for the current quota window."""

    error_code = "daily_limit_reached"

    def __init__(self, service_name: str, message: str, resets_at: datetime, **kwargs):
        super().__init__(service_name, message, **kwargs)
        self.resets_at = resets_at

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["resetsAt"] = self.resets_at.isoformat()
        return payload


class KeyedLocks:
    """Per-key asyncio locks, dropped once no task holds or waits on them."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
