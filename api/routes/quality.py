"""
Data quality results endpoint
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db
from schemas.api import APIResponse, QualityResultEntry
from pipeline.monitoring import PipelineMonitor
from typing import List, Optional
import time
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/quality", tags=["Quality"])


@router.get("/results", response_model=APIResponse[List[QualityResultEntry]])
async def get_quality_results(
    request: Request,
    check_name: Optional[str] = Query(None, description="null_employee_number or invalid_survey_range"),
    limit: int = Query(50, ge=1, le=500, description="Most recent results to return"),
    db: AsyncSession = Depends(get_db)
):
    """Latest quality check results, newest first"""
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    rows = await PipelineMonitor(db).quality_results(check_name=check_name, limit=limit)

    logger.info(f"[{request_id}] GET /quality/results check_name={check_name}: {len(rows)} rows")
    return APIResponse[List[QualityResultEntry]](
        request_id=request_id,
        api_latency_ms=int((time.time() - start_time) * 1000),
        data=[QualityResultEntry.from_orm(row) for row in rows]
    )
