"""
Analysis Record Store

CONTRACT:
    claim(key, ...) -> (ResponseStatus, AnalysisRecord)

RULES:
- One live (non-superseded) record per (instrument_key, analysis_type)
- completed + unexpired => cached; pending/in_progress => inProgress
- anything else (missing, failed, expired) => supersede and insert a pending record
- The claim runs under a per-key asyncio.Lock; the partial unique index turns a
  race with another process into IntegrityError, resolved as inProgress
- Progress never moves backwards
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from swingsetups.db.database import (
    SessionFactory,
    from_db_time,
    get_db_context,
    to_db_time,
    utc_now,
)
from swingsetups.db.models import AnalysisRecordRow
from swingsetups.schemas.analysis import (
    AnalysisRecord,
    AnalysisStatus,
    Progress,
    ResponseStatus,
)
from swingsetups.schemas.market import AnalysisType
from swingsetups.services.base import KeyedLocks

logger = logging.getLogger(__name__)


def row_to_record(row: AnalysisRecordRow) -> AnalysisRecord:
    return AnalysisRecord(
        id=row.id,
        instrument_key=row.instrument_key,
        analysis_type=row.analysis_type,
        stock_symbol=row.stock_symbol,
        stock_name=row.stock_name or "",
        status=row.status,
        current_price=row.current_price,
        progress=Progress(
            percentage=row.progress_percentage or 0,
            current_step=row.progress_step or "",
            steps_completed=row.steps_completed or 0,
            total_steps=row.total_steps or 8,
            estimated_time_remaining=row.estimated_time_remaining,
            last_updated=from_db_time(row.progress_updated_at),
        ),
        analysis_data=row.analysis_data,
        error_message=row.error_message,
        error_code=row.error_code,
        requested_by=row.requested_by,
        valid_until=from_db_time(row.valid_until),
        scheduled_release_time=from_db_time(row.scheduled_release_time),
        created_at=from_db_time(row.created_at),
        updated_at=from_db_time(row.updated_at),
    )


class AnalysisRepository:
    """Persistence for AnalysisRecord. Only the orchestrator writes through it."""

    def __init__(self, session_factory: SessionFactory = get_db_context):
        self._session_factory = session_factory
        self._locks = KeyedLocks()

    @staticmethod
    def _live_query(instrument_key: str, analysis_type: AnalysisType):
        return select(AnalysisRecordRow).where(
            AnalysisRecordRow.instrument_key == instrument_key,
            AnalysisRecordRow.analysis_type == analysis_type.value,
            AnalysisRecordRow.superseded.is_(False),
        )

    async def find_live(self, instrument_key: str, analysis_type: AnalysisType) -> Optional[AnalysisRecord]:
        async with self._session_factory() as session:
            result = await session.execute(self._live_query(instrument_key, analysis_type))
            row = result.scalar_one_or_none()
            return row_to_record(row) if row else None

    async def get(self, record_id: str) -> Optional[AnalysisRecord]:
        async with self._session_factory() as session:
            row = await session.get(AnalysisRecordRow, record_id)
            return row_to_record(row) if row else None

    async def claim(
        self,
        instrument_key: str,
        analysis_type: AnalysisType,
        stock_symbol: str,
        stock_name: str = "",
        current_price: Optional[float] = None,
        requested_by: Optional[str] = None,
        scheduled_release_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> tuple[ResponseStatus, AnalysisRecord]:
        """
        Resolve a request for the key to cached / inProgress / fresh.

        fresh means the caller now owns a new pending record and must drive it
        to a terminal status.
        """
        now = now or utc_now()
        key = f"{instrument_key}:{analysis_type.value}"

        async with self._locks.hold(key):
            async with self._session_factory() as session:
                result = await session.execute(self._live_query(instrument_key, analysis_type))
                row = result.scalar_one_or_none()

                if row is not None:
                    if row.status == AnalysisStatus.COMPLETED.value:
                        valid_until = from_db_time(row.valid_until)
                        if valid_until and valid_until > now:
                            logger.info(f"[claim] {key}: cache hit (valid until {valid_until.isoformat()})")
                            return ResponseStatus.CACHED, row_to_record(row)
                    elif row.status in (AnalysisStatus.PENDING.value, AnalysisStatus.IN_PROGRESS.value):
                        logger.info(f"[claim] {key}: already {row.status}")
                        return ResponseStatus.IN_PROGRESS, row_to_record(row)

                    row.superseded = True
                    await session.flush()

                pending = AnalysisRecordRow(
                    instrument_key=instrument_key,
                    analysis_type=analysis_type.value,
                    stock_symbol=stock_symbol,
                    stock_name=stock_name,
                    status=AnalysisStatus.PENDING.value,
                    current_price=current_price,
                    requested_by=requested_by,
                    scheduled_release_time=to_db_time(scheduled_release_time),
                    progress_updated_at=to_db_time(now),
                )
                session.add(pending)
                try:
                    await session.commit()
                except IntegrityError:
                    # Another writer inserted the live record first
                    await session.rollback()
                    logger.info(f"[claim] {key}: lost pending-record race")
                    existing = await self.find_live(instrument_key, analysis_type)
                    if existing is None:
                        raise
                    return ResponseStatus.IN_PROGRESS, existing

                logger.info(f"[claim] {key}: created pending record {pending.id}")
                return ResponseStatus.FRESH, row_to_record(pending)

    async def _update(self, record_id: str, values: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(AnalysisRecordRow).where(AnalysisRecordRow.id == record_id).values(**values)
            )

    async def update_progress(
        self,
        record_id: str,
        steps_completed: int,
        step: str,
        total_steps: int = 8,
        estimated_time_remaining: Optional[int] = None,
    ) -> None:
        percentage = min(99, int(steps_completed * 100 / total_steps))
        async with self._session_factory() as session:
            await session.execute(
                update(AnalysisRecordRow)
                .where(
                    AnalysisRecordRow.id == record_id,
                    AnalysisRecordRow.steps_completed <= steps_completed,
                    AnalysisRecordRow.status.in_(
                        [AnalysisStatus.PENDING.value, AnalysisStatus.IN_PROGRESS.value]
                    ),
                )
                .values(
                    status=AnalysisStatus.IN_PROGRESS.value,
                    steps_completed=steps_completed,
                    total_steps=total_steps,
                    progress_percentage=percentage,
                    progress_step=step,
                    estimated_time_remaining=estimated_time_remaining,
                    progress_updated_at=to_db_time(utc_now()),
                )
            )

    async def mark_completed(
        self,
        record_id: str,
        analysis_data: dict,
        valid_until: datetime,
        total_steps: int = 8,
    ) -> Optional[AnalysisRecord]:
        await self._update(
            record_id,
            {
                "status": AnalysisStatus.COMPLETED.value,
                "analysis_data": analysis_data,
                "valid_until": to_db_time(valid_until),
                "progress_percentage": 100,
                "progress_step": "Completed",
                "steps_completed": total_steps,
                "estimated_time_remaining": 0,
                "progress_updated_at": to_db_time(utc_now()),
                "error_message": None,
                "error_code": None,
            },
        )
        return await self.get(record_id)

    async def mark_failed(
        self,
        record_id: str,
        message: str,
        error_code: str,
        analysis_data: Optional[dict] = None,
    ) -> Optional[AnalysisRecord]:
        await self._update(
            record_id,
            {
                "status": AnalysisStatus.FAILED.value,
                "analysis_data": analysis_data,
                "progress_step": f"Failed: {message}"[:200],
                "estimated_time_remaining": None,
                "progress_updated_at": to_db_time(utc_now()),
                "error_message": message,
                "error_code": error_code,
            },
        )
        return await self.get(record_id)


_repository: Optional[AnalysisRepository] = None


def get_analysis_repository() -> AnalysisRepository:
    global _repository
    if _repository is None:
        _repository = AnalysisRepository()
    return _repository
