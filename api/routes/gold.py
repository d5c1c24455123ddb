"""
Gold aggregate retrieval (current published snapshot only)
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db
from schemas.api import APIResponse, Strategy, DemographicsRow, SurveyResultsRow
from models.staging import StagedEmployee, DynamicStagedEmployee
from models.gold import (
    EmployeeDemographicsByDepartment,
    SurveyResultsByDepartment,
    DynamicEmployeeDemographicsByDepartment,
    DynamicSurveyResultsByDepartment,
)
from pipeline.materializer import AggregateMaterializer
from typing import List
import time
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/gold", tags=["Gold"])

MODELS = {
    Strategy.STREAM: (StagedEmployee, EmployeeDemographicsByDepartment, SurveyResultsByDepartment),
    Strategy.DYNAMIC: (DynamicStagedEmployee, DynamicEmployeeDemographicsByDepartment, DynamicSurveyResultsByDepartment),
}


def _materializer(db: AsyncSession, strategy: Strategy) -> AggregateMaterializer:
    staged, demographics, survey = MODELS[strategy]
    return AggregateMaterializer(db, staged_model=staged, demographics_model=demographics, survey_model=survey)


@router.get("/demographics", response_model=APIResponse[List[DemographicsRow]])
async def get_demographics(
    request: Request,
    strategy: Strategy = Query(Strategy.STREAM, description="stream (MERGE) or dynamic (recompute) tables"),
    db: AsyncSession = Depends(get_db)
):
    """Employee demographics by department"""
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    materializer = _materializer(db, strategy)
    rows = await materializer.current_rows(materializer.demographics_model)

    logger.info(f"[{request_id}] GET /gold/demographics strategy={strategy.value}: {len(rows)} rows")
    return APIResponse[List[DemographicsRow]](
        request_id=request_id,
        api_latency_ms=int((time.time() - start_time) * 1000),
        data=[DemographicsRow.from_orm(row) for row in rows]
    )


@router.get("/survey", response_model=APIResponse[List[SurveyResultsRow]])
async def get_survey_results(
    request: Request,
    strategy: Strategy = Query(Strategy.STREAM, description="stream (MERGE) or dynamic (recompute) tables"),
    db: AsyncSession = Depends(get_db)
):
    """Survey score averages by department"""
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    materializer = _materializer(db, strategy)
    rows = await materializer.current_rows(materializer.survey_model)

    logger.info(f"[{request_id}] GET /gold/survey strategy={strategy.value}: {len(rows)} rows")
    return APIResponse[List[SurveyResultsRow]](
        request_id=request_id,
        api_latency_ms=int((time.time() - start_time) * 1000),
        data=[SurveyResultsRow.from_orm(row) for row in rows]
    )
