"""
Dynamic tables: silver and gold recomputed from bronze on a freshness target.

Instead of merging individual changes, the dynamic table layer is a cache
invalidated by the bronze change log. A refresh is needed once the log has
moved past the watermark of the last successful refresh; the scheduler checks
at half the target lag so staleness stays within it.
"""

from typing import List, Dict, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from models.raw_data import BronzeEmployee
from models.change_log import BronzeChangeLog
from models.staging import DynamicStagedEmployee
from models.gold import DynamicEmployeeDemographicsByDepartment, DynamicSurveyResultsByDepartment
from models.refresh_history import DynamicTableRefresh
from models.base import TaskState, RefreshAction, StageStatus
from pipeline.change_feed import ChangeFeed
from pipeline.loaders.staging_merger import UpsertMerger
from pipeline.materializer import AggregateMaterializer
from pipeline.runner import describe_error
from schemas.pipeline import RefreshResult
from core.config import PipelineConfig
import logging
import uuid

logger = logging.getLogger(__name__)

DYNAMIC_TABLES = (
    DynamicStagedEmployee.OBJECT_NAME,
    DynamicEmployeeDemographicsByDepartment.OBJECT_NAME,
    DynamicSurveyResultsByDepartment.OBJECT_NAME,
)


class DynamicTablePipeline:
    """Refresh the dt silver table and its two gold aggregates"""

    def __init__(self, db_session: AsyncSession, config: Optional[PipelineConfig] = None):
        self.db = db_session
        self.config = config or PipelineConfig()
        self.feed = ChangeFeed(db_session)

    async def watermarks(self) -> Dict[str, Optional[int]]:
        """Source watermark of the last successful refresh per table"""
        result = await self.db.execute(
            select(DynamicTableRefresh.name, func.max(DynamicTableRefresh.source_watermark))
            .where(DynamicTableRefresh.state == TaskState.SUCCEEDED)
            .group_by(DynamicTableRefresh.name)
        )
        found = {name: int(watermark) for name, watermark in result}
        return {name: found.get(name) for name in DYNAMIC_TABLES}

    async def needs_refresh(self, latest: Optional[int] = None) -> bool:
        """True if a table was never refreshed or bronze changed since"""
        if latest is None:
            latest = await self.feed.latest_sequence()
        for watermark in (await self.watermarks()).values():
            if watermark is None or latest > watermark:
                return True
        return False

    async def lag_seconds(self, now: Optional[datetime] = None) -> float:
        """
        Age of the oldest bronze change not yet reflected in every dt table.

        Returns 0 when the dt layer is up to date.
        """
        now = now or datetime.utcnow()
        marks = list((await self.watermarks()).values())
        watermark = 0 if any(mark is None for mark in marks) else min(marks)

        result = await self.db.execute(
            select(func.min(BronzeChangeLog.changed_at)).where(BronzeChangeLog.sequence > watermark)
        )
        oldest_pending = result.scalar()
        if oldest_pending is None:
            return 0.0
        return max(0.0, (now - oldest_pending).total_seconds())

    async def within_target_lag(self, now: Optional[datetime] = None) -> bool:
        return await self.lag_seconds(now) <= self.config.target_lag_seconds

    async def refresh(self, force: bool = False) -> List[RefreshResult]:
        """
        Recompute the dt tables if bronze changed (or ``force``).

        Returns:
            One RefreshResult per dt table refreshed or found up to date
        """
        refresh_id = str(uuid.uuid4())
        data_timestamp = datetime.utcnow()
        latest = await self.feed.latest_sequence()

        if not force and not await self.needs_refresh(latest):
            results = [
                self._result(name, TaskState.SUCCEEDED, RefreshAction.NO_DATA, latest, None,
                             "No changes since last refresh")
                for name in DYNAMIC_TABLES
            ]
            await self._record(results, refresh_id, data_timestamp, duration=0.0)
            logger.info("Dynamic tables up to date (NO_DATA)")
            return results

        started = datetime.utcnow()
        try:
            rows = (await self.db.execute(select(BronzeEmployee).order_by(BronzeEmployee.id))).scalars().all()
            merger = UpsertMerger(self.db, model=DynamicStagedEmployee, source_object=BronzeEmployee.OBJECT_NAME)
            merged = await merger.full_refresh([row.to_payload() for row in rows], refresh_id)
            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            error_message = describe_error(e)
            logger.error(f"Dynamic table refresh of {DynamicStagedEmployee.OBJECT_NAME} failed: {error_message}")
            results = [
                self._result(DynamicStagedEmployee.OBJECT_NAME, TaskState.FAILED, RefreshAction.FULL,
                             latest, None, error_message)
            ]
            await self._record(results, refresh_id, data_timestamp,
                               duration=(datetime.utcnow() - started).total_seconds())
            return results

        results = [
            self._result(DynamicStagedEmployee.OBJECT_NAME, TaskState.SUCCEEDED, RefreshAction.FULL,
                         latest, merged.inserted, f"Recomputed {merged.inserted} rows")
        ]

        summary = await AggregateMaterializer(
            self.db,
            staged_model=DynamicStagedEmployee,
            demographics_model=DynamicEmployeeDemographicsByDepartment,
            survey_model=DynamicSurveyResultsByDepartment
        ).rebuild(refresh_id)

        for build in summary.builds:
            succeeded = build.status == StageStatus.SUCCESS.value
            results.append(self._result(
                build.aggregate_name,
                TaskState.SUCCEEDED if succeeded else TaskState.FAILED,
                RefreshAction.FULL,
                latest,
                build.row_count if succeeded else None,
                build.message
            ))

        await self._record(results, refresh_id, data_timestamp,
                           duration=(datetime.utcnow() - started).total_seconds())
        logger.info(
            f"Dynamic tables refreshed up to change {latest}: "
            + ", ".join(f"{r.name}={r.state}" for r in results)
        )
        return results

    @staticmethod
    def _result(
        name: str,
        state: TaskState,
        action: RefreshAction,
        watermark: int,
        row_count: Optional[int],
        message: str
    ) -> RefreshResult:
        return RefreshResult(
            name=name,
            state=state,
            refresh_action=action,
            source_watermark=watermark,
            row_count=row_count,
            message=message
        )

    async def _record(
        self,
        results: List[RefreshResult],
        refresh_id: str,
        data_timestamp: datetime,
        duration: float
    ):
        for result in results:
            self.db.add(DynamicTableRefresh(
                name=result.name,
                refresh_id=refresh_id,
                state=TaskState(result.state),
                refresh_action=RefreshAction(result.refresh_action),
                source_watermark=result.source_watermark,
                row_count=result.row_count,
                duration_seconds=duration,
                state_message=result.message,
                data_timestamp=data_timestamp
            ))
        await self.db.commit()
