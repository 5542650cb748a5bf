"""
Notification Dispatcher

Fire-and-forget delivery of "your analysis is ready" messages.
Delivery never affects the analysis: every error is logged and dropped.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import aiohttp

from swingsetups.core.config import settings
from swingsetups.db.database import utc_now
from swingsetups.schemas.analysis import AnalysisRecord

logger = logging.getLogger(__name__)

# Keeps scheduled deliveries referenced until they finish
_pending: set[asyncio.Task] = set()


class NotificationDispatcher(ABC):
    @abstractmethod
    async def notify_complete(self, user_id: str, record: AnalysisRecord) -> None:
        ...

    async def notify_failure(self, user_id: str, record: AnalysisRecord) -> None:
        """Optional; default dispatchers only report completions."""
        return None

    async def close(self) -> None:
        return None


class LoggingDispatcher(NotificationDispatcher):
    """Writes notifications to the log. Used when no webhook is configured."""

    async def notify_complete(self, user_id: str, record: AnalysisRecord) -> None:
        logger.info(f"[notify] {user_id}: analysis ready for {record.stock_symbol} ({record.key})")

    async def notify_failure(self, user_id: str, record: AnalysisRecord) -> None:
        logger.info(f"[notify] {user_id}: analysis failed for {record.stock_symbol} ({record.key}): {record.error_message}")


class WebhookDispatcher(NotificationDispatcher):
    """POSTs a JSON event to a webhook."""

    def __init__(self, url: str, timeout_seconds: float = 5.0):
        self.url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _post(self, event: str, user_id: str, record: AnalysisRecord) -> None:
        session = await self._ensure_session()
        body = {
            "event": event,
            "userId": user_id,
            "analysisId": record.id,
            "instrumentKey": record.instrument_key,
            "analysisType": record.analysis_type.value,
            "symbol": record.stock_symbol,
            "status": record.status.value,
            "validUntil": record.valid_until.isoformat() if record.valid_until else None,
        }
        async with session.post(self.url, json=body) as response:
            if response.status >= 400:
                logger.warning(f"[notify] webhook returned {response.status} for {record.key}")

    async def notify_complete(self, user_id: str, record: AnalysisRecord) -> None:
        await self._post("analysis.completed", user_id, record)

    async def notify_failure(self, user_id: str, record: AnalysisRecord) -> None:
        await self._post("analysis.failed", user_id, record)


async def _deliver(
    dispatcher: NotificationDispatcher,
    user_id: str,
    record: AnalysisRecord,
    failed: bool,
    release_at: Optional[datetime],
) -> None:
    try:
        if release_at is not None:
            delay = (release_at - utc_now()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
        if failed:
            await dispatcher.notify_failure(user_id, record)
        else:
            await dispatcher.notify_complete(user_id, record)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"[notify] delivery failed for {record.key} to {user_id}: {e}")


def fire_and_forget(
    dispatcher: NotificationDispatcher,
    user_id: str,
    record: AnalysisRecord,
    failed: bool = False,
    release_at: Optional[datetime] = None,
) -> asyncio.Task:
    """Schedule delivery and return immediately."""
    task = asyncio.create_task(_deliver(dispatcher, user_id, record, failed, release_at))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        if settings.notification_webhook_url:
            _dispatcher = WebhookDispatcher(
                settings.notification_webhook_url, settings.notification_timeout_seconds
            )
        else:
            _dispatcher = LoggingDispatcher()
    return _dispatcher
