"""
Analysis API Endpoints

Request an analysis and poll its status.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from swingsetups.schemas.analysis import AnalysisRequest, AnalysisResponse
from swingsetups.schemas.market import AnalysisType
from swingsetups.services.analysis import AnalysisOrchestrator, get_orchestrator
from swingsetups.services.base import QuotaExceededError, ServiceError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=AnalysisResponse)
async def request_analysis(
    request: AnalysisRequest,
    x_user_id: Optional[str] = Header(default=None),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Request an analysis for (instrument_key, analysis_type).

    Returns one of:
    - cached: a completed, unexpired analysis (no recomputation)
    - inProgress: another request is already computing it; poll GET /analysis/{instrument_key}
    - fresh: computed now (or scheduled, with background=true)
    """
    if x_user_id and x_user_id != request.user_id:
        error = ValidationError("api", "X-User-Id header does not match user_id")
        return JSONResponse(status_code=400, content=error.to_dict())

    try:
        return await orchestrator.execute(request)
    except QuotaExceededError as e:
        return JSONResponse(status_code=429, content=e.to_dict())
    except ValidationError as e:
        return JSONResponse(status_code=400, content=e.to_dict())
    except ServiceError as e:
        logger.error(f"Analysis request failed for {request.instrument_key}: {e}")
        return JSONResponse(status_code=502, content=e.to_dict())


@router.get("/{instrument_key}", response_model=AnalysisResponse)
async def get_analysis_status(
    instrument_key: str,
    analysis_type: AnalysisType = Query(default=AnalysisType.SWING),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Current record for the key, for polling."""
    record = await orchestrator.get_analysis_status(instrument_key, analysis_type)
    if record is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "No analysis found", "errorCode": "not_found"},
        )
    return AnalysisResponse(success=True, inProgress=record.in_flight, data=record)
