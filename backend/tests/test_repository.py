"""Tests for the analysis record store and its single-flight claim."""

from datetime import timedelta

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.schema import CreateIndex

from swingsetups.core.market_hours import to_ist
from swingsetups.db.database import utc_now
from swingsetups.db.models import AnalysisRecordRow
from swingsetups.schemas.analysis import AnalysisStatus, ResponseStatus
from swingsetups.schemas.market import AnalysisType
from swingsetups.services.analysis.repository import AnalysisRepository

KEY = "NSE_EQ|INE002A01018"


@pytest.fixture
def repository(db) -> AnalysisRepository:
    return AnalysisRepository()


async def claim(repository, now=None, analysis_type=AnalysisType.SWING):
    return await repository.claim(KEY, analysis_type, "RELIANCE", "Reliance Industries", requested_by="u1", now=now)


class TestClaim:
    """cached / inProgress / fresh resolution per (instrument_key, analysis_type)."""

    async def test_first_claim_is_fresh(self, repository):
        status, record = await claim(repository)
        assert status == ResponseStatus.FRESH
        assert record.status == AnalysisStatus.PENDING
        assert record.progress.percentage == 0

    async def test_claim_lock_released_after_use(self, repository):
        await claim(repository)
        await claim(repository, analysis_type=AnalysisType.INTRADAY)
        assert len(repository._locks) == 0

    async def test_pending_claim_is_in_progress(self, repository):
        _, first = await claim(repository)
        status, second = await claim(repository)
        assert status == ResponseStatus.IN_PROGRESS
        assert second.id == first.id

    async def test_completed_and_valid_is_cached(self, repository):
        _, record = await claim(repository)
        await repository.mark_completed(record.id, {"strategies": []}, utc_now() + timedelta(hours=1))

        status, cached = await claim(repository)
        assert status == ResponseStatus.CACHED
        assert cached.id == record.id
        assert cached.analysis_data == {"strategies": []}

    async def test_expired_record_is_superseded(self, repository):
        _, record = await claim(repository)
        valid_until = utc_now() + timedelta(hours=1)
        await repository.mark_completed(record.id, {"strategies": []}, valid_until)

        status, fresh = await claim(repository, now=valid_until + timedelta(seconds=1))
        assert status == ResponseStatus.FRESH
        assert fresh.id != record.id
        assert (await repository.find_live(KEY, AnalysisType.SWING)).id == fresh.id
        # Old record kept for history
        assert (await repository.get(record.id)).status == AnalysisStatus.COMPLETED

    async def test_failed_record_is_retryable(self, repository):
        _, record = await claim(repository)
        await repository.mark_failed(record.id, "Upstox returned 503", "external_service_error")

        status, fresh = await claim(repository)
        assert status == ResponseStatus.FRESH
        assert fresh.id != record.id

    async def test_analysis_types_are_separate_keys(self, repository):
        await claim(repository)
        status, _ = await claim(repository, analysis_type=AnalysisType.INTRADAY)
        assert status == ResponseStatus.FRESH


class TestProgress:
    async def test_progress_moves_forward_only(self, repository):
        _, record = await claim(repository)
        await repository.update_progress(record.id, steps_completed=3, step="Preflight market review")
        await repository.update_progress(record.id, steps_completed=2, step="Analyzing sentiment")

        current = await repository.get(record.id)
        assert current.status == AnalysisStatus.IN_PROGRESS
        assert current.progress.steps_completed == 3
        assert current.progress.current_step == "Preflight market review"
        assert current.progress.percentage == 37

    async def test_progress_capped_below_completion(self, repository):
        _, record = await claim(repository)
        await repository.update_progress(record.id, steps_completed=8, step="Saving analysis")
        assert (await repository.get(record.id)).progress.percentage == 99

    async def test_terminal_record_ignores_progress(self, repository):
        _, record = await claim(repository)
        await repository.mark_completed(record.id, {}, utc_now() + timedelta(hours=1))
        await repository.update_progress(record.id, steps_completed=8, step="Saving analysis")

        current = await repository.get(record.id)
        assert current.status == AnalysisStatus.COMPLETED
        assert current.progress.percentage == 100
        assert current.progress.current_step == "Completed"

    async def test_failed_record_reports_cause(self, repository):
        _, record = await claim(repository)
        failed = await repository.mark_failed(record.id, "Upstox returned 503", "external_service_error")
        assert failed.status == AnalysisStatus.FAILED
        assert failed.error_code == "external_service_error"
        assert failed.progress.current_step == "Failed: Upstox returned 503"

    async def test_times_round_trip_as_utc(self, repository):
        _, record = await claim(repository)
        valid_until = utc_now() + timedelta(hours=1)
        completed = await repository.mark_completed(record.id, {}, valid_until)
        assert completed.valid_until.tzinfo is not None
        assert completed.valid_until == valid_until
        assert to_ist(completed.valid_until).utcoffset() == timedelta(hours=5, minutes=30)


class TestLiveKeyIndex:
    """Only non-superseded rows are unique per key, on every supported backend."""

    @pytest.mark.parametrize(
        "dialect, predicate",
        [(sqlite.dialect(), "WHERE superseded = 0"), (postgresql.dialect(), "WHERE NOT superseded")],
    )
    def test_index_is_partial(self, dialect, predicate):
        index = next(i for i in AnalysisRecordRow.__table__.indexes if i.name == "ux_analysis_live_key")
        ddl = str(CreateIndex(index).compile(dialect=dialect))
        assert "UNIQUE" in ddl
        assert predicate in ddl
