"""
Pipeline invocation and run inspection endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db, get_pipeline_config, get_task_graph
from schemas.api import (
    APIResponse,
    RunStageRequest,
    DynamicRefreshRequest,
    RunDetailResponse,
    RunLogEntry,
    TaskRunEntry,
    PipelineSummaryResponse,
    StageSummaryEntry,
    QualitySummaryEntry,
    RefreshHistoryEntry,
)
from schemas.pipeline import StageResult, GraphRunResult, RefreshResult
from pipeline.runner import PipelineRunner
from pipeline.tasks import TaskGraph
from pipeline.dynamic_tables import DynamicTablePipeline
from pipeline.monitoring import PipelineMonitor
from core.config import PipelineConfig
from core.exceptions import StageExecutionError
from typing import List, Optional
import time
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pipeline", tags=["Pipeline"])

STAGES = ("load_staging", "materialize_aggregates", "run_quality_checks")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")


def _latency_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


@router.post("/stages/{stage}", response_model=APIResponse[StageResult])
async def run_stage(
    stage: str,
    request: Request,
    body: Optional[RunStageRequest] = None,
    db: AsyncSession = Depends(get_db),
    config: PipelineConfig = Depends(get_pipeline_config)
):
    """
    Run one stage now.

    A failed stage answers 500 with the failed StageResult; the failure is
    already in the run log under the same etl_run_id.
    """
    start_time = time.time()
    request_id = _request_id(request)

    if stage not in STAGES:
        raise HTTPException(status_code=404, detail=f"Unknown stage '{stage}'. Expected one of: {', '.join(STAGES)}")

    body = body or RunStageRequest()
    etl_run_id = body.etl_run_id or str(uuid.uuid4())
    logger.info(f"[{request_id}] POST /pipeline/stages/{stage} etl_run_id={etl_run_id}")

    runner = PipelineRunner(db, config)
    try:
        if stage == "load_staging":
            result = await runner.load_staging(etl_run_id, full_refresh=body.full_refresh)
        elif stage == "materialize_aggregates":
            result = await runner.materialize_aggregates(etl_run_id)
        else:
            result = await runner.run_quality_checks(etl_run_id)

    except StageExecutionError as e:
        logger.error(f"[{request_id}] {e.result.message}")
        payload = APIResponse[StageResult](
            request_id=request_id,
            api_latency_ms=_latency_ms(start_time),
            data=e.result
        )
        return JSONResponse(status_code=500, content=jsonable_encoder(payload))

    return APIResponse[StageResult](
        request_id=request_id,
        api_latency_ms=_latency_ms(start_time),
        data=result
    )


@router.post("/runs", response_model=APIResponse[GraphRunResult])
async def run_task_graph(
    request: Request,
    graph: TaskGraph = Depends(get_task_graph)
):
    """Run the stream task graph once (silver if the feed has data, then gold)"""
    start_time = time.time()
    request_id = _request_id(request)
    logger.info(f"[{request_id}] POST /pipeline/runs")

    result = await graph.run()

    return APIResponse[GraphRunResult](
        request_id=request_id,
        api_latency_ms=_latency_ms(start_time),
        data=result
    )


@router.post("/dynamic/refresh", response_model=APIResponse[List[RefreshResult]])
async def refresh_dynamic_tables(
    request: Request,
    body: Optional[DynamicRefreshRequest] = None,
    db: AsyncSession = Depends(get_db),
    config: PipelineConfig = Depends(get_pipeline_config)
):
    """Refresh the dynamic tables if bronze changed (or always with force)"""
    start_time = time.time()
    request_id = _request_id(request)
    force = body.force if body else False
    logger.info(f"[{request_id}] POST /pipeline/dynamic/refresh force={force}")

    results = await DynamicTablePipeline(db, config).refresh(force=force)

    return APIResponse[List[RefreshResult]](
        request_id=request_id,
        api_latency_ms=_latency_ms(start_time),
        data=results
    )


@router.get("/dynamic/history", response_model=APIResponse[List[RefreshHistoryEntry]])
async def dynamic_refresh_history(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    start_time = time.time()
    rows = await PipelineMonitor(db).dynamic_table_refreshes(limit=limit)
    return APIResponse[List[RefreshHistoryEntry]](
        request_id=_request_id(request),
        api_latency_ms=_latency_ms(start_time),
        data=[RefreshHistoryEntry.from_orm(row) for row in rows]
    )


@router.get("/runs/{run_id}", response_model=APIResponse[RunDetailResponse])
async def get_run(
    run_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """Run log events and task history recorded under one correlation id"""
    start_time = time.time()
    monitor = PipelineMonitor(db)

    events = await monitor.events_for_run(run_id)
    tasks = await monitor.task_history(run_id=run_id)
    if not events and not tasks:
        raise HTTPException(status_code=404, detail=f"No pipeline events for run_id={run_id}")

    return APIResponse[RunDetailResponse](
        request_id=_request_id(request),
        api_latency_ms=_latency_ms(start_time),
        data=RunDetailResponse(
            run_id=run_id,
            events=[RunLogEntry.from_orm(event) for event in events],
            tasks=[TaskRunEntry.from_orm(task) for task in reversed(tasks)]
        )
    )


@router.get("/summary", response_model=APIResponse[PipelineSummaryResponse])
async def get_summary(
    request: Request,
    days: int = Query(7, ge=1, le=365, description="Window in days"),
    db: AsyncSession = Depends(get_db)
):
    """Stage counts and durations plus quality check totals"""
    start_time = time.time()
    monitor = PipelineMonitor(db)

    stages = await monitor.stage_summary(days=days)
    checks = await monitor.quality_summary(days=days)

    return APIResponse[PipelineSummaryResponse](
        request_id=_request_id(request),
        api_latency_ms=_latency_ms(start_time),
        data=PipelineSummaryResponse(
            days=days,
            stages=[StageSummaryEntry(**row) for row in stages],
            quality_checks=[QualitySummaryEntry(**row) for row in checks]
        )
    )
