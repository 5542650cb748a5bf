"""Tests for fire-and-forget notification delivery."""

import asyncio
from datetime import timedelta

import pytest

from swingsetups.db.database import utc_now
from swingsetups.schemas.analysis import AnalysisRecord, AnalysisStatus
from swingsetups.schemas.market import AnalysisType
from swingsetups.services.notifications.dispatcher import (
    LoggingDispatcher,
    NotificationDispatcher,
    fire_and_forget,
)

from conftest import RecordingDispatcher


class ExplodingDispatcher(NotificationDispatcher):
    async def notify_complete(self, user_id, record):
        raise ConnectionError("webhook unreachable")


@pytest.fixture
def record() -> AnalysisRecord:
    return AnalysisRecord(
        id="rec-1",
        instrument_key="NSE_EQ|INE002A01018",
        analysis_type=AnalysisType.SWING,
        stock_symbol="RELIANCE",
        status=AnalysisStatus.COMPLETED,
    )


class TestFireAndForget:
    async def test_delivers_completion(self, record):
        dispatcher = RecordingDispatcher()
        await fire_and_forget(dispatcher, "u1", record)
        assert dispatcher.completed == [("u1", record)]

    async def test_delivers_failure(self, record):
        dispatcher = RecordingDispatcher()
        await fire_and_forget(dispatcher, "u1", record, failed=True)
        assert dispatcher.failed == [("u1", record)]
        assert dispatcher.completed == []

    async def test_delivery_errors_are_swallowed(self, record):
        task = fire_and_forget(ExplodingDispatcher(), "u1", record)
        await task
        assert task.exception() is None

    async def test_release_time_delays_delivery(self, record):
        dispatcher = RecordingDispatcher()
        task = fire_and_forget(dispatcher, "u1", record, release_at=utc_now() + timedelta(seconds=0.2))

        await asyncio.sleep(0.05)
        assert dispatcher.completed == []

        await task
        assert len(dispatcher.completed) == 1

    async def test_past_release_time_delivers_immediately(self, record):
        dispatcher = RecordingDispatcher()
        await fire_and_forget(dispatcher, "u1", record, release_at=utc_now() - timedelta(hours=1))
        assert len(dispatcher.completed) == 1

    async def test_logging_dispatcher(self, record):
        dispatcher = LoggingDispatcher()
        await dispatcher.notify_complete("u1", record)
        await dispatcher.notify_failure("u1", record)
        await dispatcher.close()
