"""
Pipeline run log writer and monitoring queries over the ops tables
"""

from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from models.etl_run import PipelineRunLog, TaskRun
from models.data_quality import DataQualityResult
from models.refresh_history import DynamicTableRefresh
from models.base import StageStatus
import logging

logger = logging.getLogger(__name__)


class PipelineRunLogger:
    """
    Append stage lifecycle events to ops_pipeline_run_log.

    Every event is committed on its own and mirrored as a log line with the
    same fields, so the table and the logs always agree.
    """

    def __init__(self, db_session: AsyncSession, pipeline_name: str, component: str):
        self.db = db_session
        self.pipeline_name = pipeline_name
        self.component = component

    async def log(
        self,
        run_id: str,
        stage: str,
        status: StageStatus,
        source: Optional[str] = None,
        target: Optional[str] = None,
        procedure: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        result: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None
    ):
        event = {
            "run_id": run_id,
            "pipeline": self.pipeline_name,
            "component": self.component,
            "stage": stage,
            "status": status.value,
            "source": source,
            "target": target,
            "procedure": procedure,
            "duration_seconds": duration_seconds,
            "result": result,
            "error_code": error_code,
            "error_message": error_message,
        }

        self.db.add(PipelineRunLog(**dict(event, status=status), logged_at=datetime.utcnow()))
        await self.db.commit()

        line = f"[{run_id}] {stage} {status.value}"
        if status == StageStatus.FAILED:
            logger.error(f"{line}: {error_code} {error_message}", extra={"pipeline_event": event})
        else:
            logger.info(f"{line}{': ' + result if result else ''}", extra={"pipeline_event": event})


class PipelineMonitor:
    """Read-only queries over the run log, task history and quality results"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def events_for_run(self, run_id: str) -> List[PipelineRunLog]:
        """All run log entries sharing a correlation id, in write order"""
        result = await self.db.execute(
            select(PipelineRunLog)
            .where(PipelineRunLog.run_id == run_id)
            .order_by(PipelineRunLog.id)
        )
        return list(result.scalars().all())

    async def recent_events(self, limit: int = 50) -> List[PipelineRunLog]:
        result = await self.db.execute(
            select(PipelineRunLog).order_by(PipelineRunLog.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def stage_summary(self, days: int = 7) -> List[Dict[str, Any]]:
        """
        Event count and average duration per (stage, status) over ``days``.
        """
        since = datetime.utcnow() - timedelta(days=days)
        result = await self.db.execute(
            select(
                PipelineRunLog.stage,
                PipelineRunLog.status,
                func.count().label("count"),
                func.avg(PipelineRunLog.duration_seconds).label("avg_duration_seconds"),
                func.max(PipelineRunLog.logged_at).label("last_logged_at"),
            )
            .where(PipelineRunLog.logged_at >= since)
            .group_by(PipelineRunLog.stage, PipelineRunLog.status)
            .order_by(PipelineRunLog.stage, PipelineRunLog.status)
        )
        return [
            {
                "stage": row.stage,
                "status": row.status.value,
                "count": int(row.count),
                "avg_duration_seconds": (
                    float(row.avg_duration_seconds) if row.avg_duration_seconds is not None else None
                ),
                "last_logged_at": row.last_logged_at,
            }
            for row in result
        ]

    async def task_history(
        self,
        graph_name: Optional[str] = None,
        run_id: Optional[str] = None,
        limit: int = 50
    ) -> List[TaskRun]:
        query = select(TaskRun)
        if graph_name:
            query = query.where(TaskRun.graph_name == graph_name)
        if run_id:
            query = query.where(TaskRun.run_id == run_id)
        result = await self.db.execute(query.order_by(TaskRun.id.desc()).limit(limit))
        return list(result.scalars().all())

    async def quality_results(
        self,
        check_name: Optional[str] = None,
        limit: int = 50
    ) -> List[DataQualityResult]:
        query = select(DataQualityResult)
        if check_name:
            query = query.where(DataQualityResult.check_name == check_name)
        result = await self.db.execute(query.order_by(DataQualityResult.id.desc()).limit(limit))
        return list(result.scalars().all())

    async def quality_summary(self, days: int = 7) -> List[Dict[str, Any]]:
        """Runs and issue totals per check over ``days``"""
        since = datetime.utcnow() - timedelta(days=days)
        result = await self.db.execute(
            select(
                DataQualityResult.check_name,
                DataQualityResult.table_name,
                func.count().label("runs"),
                func.sum(DataQualityResult.issue_count).label("total_issues"),
                func.max(DataQualityResult.checked_at).label("last_checked_at"),
            )
            .where(DataQualityResult.checked_at >= since)
            .group_by(DataQualityResult.check_name, DataQualityResult.table_name)
            .order_by(DataQualityResult.check_name)
        )
        return [
            {
                "check_name": row.check_name,
                "table_name": row.table_name,
                "runs": int(row.runs),
                "total_issues": int(row.total_issues or 0),
                "last_checked_at": row.last_checked_at,
            }
            for row in result
        ]

    async def dynamic_table_refreshes(
        self,
        name: Optional[str] = None,
        limit: int = 50
    ) -> List[DynamicTableRefresh]:
        query = select(DynamicTableRefresh)
        if name:
            query = query.where(DynamicTableRefresh.name == name)
        result = await self.db.execute(query.order_by(DynamicTableRefresh.id.desc()).limit(limit))
        return list(result.scalars().all())
