# ============================================================================
# File: pipeline/runner.py
# Description: Stage entry points with run logging and failure propagation
# ============================================================================
"""
Pipeline Runner - the invocation surface of the ELT stages.

Each stage is callable on its own with a caller supplied ``etl_run_id``:
- load_staging: change feed -> parse -> MERGE into silver, checkpoint advance
- materialize_aggregates: full recompute of the gold aggregates
- run_quality_checks: report-only checks on bronze and silver

Every stage writes STARTED and then SUCCESS or FAILED to the pipeline run
log. A failed stage rolls back its work, logs the failure and raises
StageExecutionError carrying the same result the log recorded.
"""

from typing import Dict, Any, Optional, Tuple, Callable, Awaitable
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from pipeline.change_feed import ChangeFeed
from pipeline.loaders.staging_merger import UpsertMerger
from pipeline.materializer import AggregateMaterializer
from pipeline.quality import QualityChecker
from pipeline.monitoring import PipelineRunLogger
from models.raw_data import BronzeEmployee
from models.change_log import BronzeChangeLog
from models.staging import StagedEmployee
from models.gold import EmployeeDemographicsByDepartment, SurveyResultsByDepartment
from models.base import StageStatus
from schemas.pipeline import StageResult, MergeResult
from core.config import PipelineConfig
from core.exceptions import ETLException, MaterializationError, StageExecutionError

logger = logging.getLogger(__name__)

STAGE_SILVER = "silver_load"
STAGE_GOLD = "gold_materialize"
STAGE_QUALITY = "quality_checks"

StageWork = Callable[[], Awaitable[Tuple[str, int, Dict[str, Any]]]]


def describe_error(error: Exception) -> str:
    """Error message for the run log: the wrapped message plus its cause"""
    if isinstance(error, ETLException):
        if error.original_exception is not None:
            return f"{error.message}: {error.original_exception}"
        return error.message
    return str(error) or type(error).__name__


class PipelineRunner:
    """
    Run pipeline stages against one session.

    Responsibilities:
    - Couple the silver MERGE with the checkpoint advance (one commit)
    - Thread etl_run_id through every row and run log entry
    - Convert stage failures into FAILED log entries and StageExecutionError
    """

    def __init__(self, db_session: AsyncSession, config: Optional[PipelineConfig] = None):
        self.db = db_session
        self.config = config or PipelineConfig()
        self.run_logger = PipelineRunLogger(
            db_session,
            pipeline_name=self.config.pipeline_name,
            component=self.config.component
        )

    async def load_staging(self, etl_run_id: str, full_refresh: bool = False) -> StageResult:
        """
        Merge pending bronze changes into silver.employee_data_stg.

        Args:
            etl_run_id: Correlation id
            full_refresh: Reload silver from the whole bronze table instead

        Raises:
            StageExecutionError: the load failed (already logged)
        """
        return await self._run_stage(
            etl_run_id,
            stage=STAGE_SILVER,
            label="silver load",
            source=BronzeEmployee.OBJECT_NAME if full_refresh else BronzeChangeLog.OBJECT_NAME,
            target=StagedEmployee.OBJECT_NAME,
            procedure="silver.load_employee_staging",
            work=lambda: self._load_staging(etl_run_id, full_refresh)
        )

    async def materialize_aggregates(self, etl_run_id: str) -> StageResult:
        """
        Rebuild the gold aggregates from silver.

        Raises:
            StageExecutionError: any aggregate failed to build
        """
        return await self._run_stage(
            etl_run_id,
            stage=STAGE_GOLD,
            label="gold materialization",
            source=StagedEmployee.OBJECT_NAME,
            target=f"{EmployeeDemographicsByDepartment.OBJECT_NAME},{SurveyResultsByDepartment.OBJECT_NAME}",
            procedure="gold.materialize_core_models",
            work=lambda: self._materialize(etl_run_id)
        )

    async def run_quality_checks(self, etl_run_id: str) -> StageResult:
        """Run both quality checks; findings never fail the stage"""
        return await self._run_stage(
            etl_run_id,
            stage=STAGE_QUALITY,
            label="quality checks",
            source=f"{BronzeEmployee.OBJECT_NAME},{StagedEmployee.OBJECT_NAME}",
            target="ops.data_quality_results",
            procedure="ops.run_quality_checks",
            work=lambda: self._quality(etl_run_id)
        )

    async def _run_stage(
        self,
        etl_run_id: str,
        stage: str,
        label: str,
        source: str,
        target: str,
        procedure: str,
        work: StageWork
    ) -> StageResult:
        started = datetime.utcnow()

        await self.run_logger.log(
            etl_run_id, stage, StageStatus.STARTED,
            source=source, target=target, procedure=procedure
        )

        try:
            message, rows_affected, details = await work()

        except Exception as e:
            await self.db.rollback()
            duration = (datetime.utcnow() - started).total_seconds()
            error_code = getattr(e, "error_code", type(e).__name__)
            error_message = describe_error(e)
            message = f"ERROR in {label}: {error_message}"

            await self.run_logger.log(
                etl_run_id, stage, StageStatus.FAILED,
                procedure=procedure,
                duration_seconds=duration,
                error_code=error_code,
                error_message=error_message
            )

            result = StageResult(
                run_id=etl_run_id,
                stage=stage,
                status=StageStatus.FAILED,
                message=message,
                duration_seconds=duration,
                error_code=error_code
            )
            raise StageExecutionError(
                message,
                result=result,
                context={"run_id": etl_run_id, "stage": stage},
                original_exception=e
            )

        duration = (datetime.utcnow() - started).total_seconds()
        await self.run_logger.log(
            etl_run_id, stage, StageStatus.SUCCESS,
            procedure=procedure,
            duration_seconds=duration,
            result=message
        )

        return StageResult(
            run_id=etl_run_id,
            stage=stage,
            status=StageStatus.SUCCESS,
            message=message,
            rows_affected=rows_affected,
            duration_seconds=duration,
            details=details
        )

    # --------------------------------------------------
    # STAGE BODIES
    # --------------------------------------------------

    async def _load_staging(self, etl_run_id: str, full_refresh: bool) -> Tuple[str, int, Dict[str, Any]]:
        feed = ChangeFeed(self.db)
        consumer = self.config.feed_consumer
        checkpoint = await feed.get_checkpoint(consumer)
        expected = checkpoint.checkpoint_value

        try:
            if full_refresh:
                total = await self._full_refresh(feed, consumer, expected, etl_run_id)
                message = (
                    f"Loaded {total.inserted} rows into {StagedEmployee.OBJECT_NAME} "
                    f"with etl_run_id={etl_run_id}"
                )
            else:
                total = await self._merge_pending(feed, consumer, expected, etl_run_id)
                message = (
                    f"Processed stream records (INSERT/UPDATE/DELETE) into "
                    f"{StagedEmployee.OBJECT_NAME} with etl_run_id={etl_run_id}. "
                    f"Rows affected: {total.rows_affected}"
                )
        except Exception as e:
            await self.db.rollback()
            await feed.record_failure(consumer, describe_error(e))
            raise

        return message, total.rows_affected, total.dict()

    async def _merge_pending(
        self,
        feed: ChangeFeed,
        consumer: str,
        checkpoint: int,
        etl_run_id: str
    ) -> MergeResult:
        merger = UpsertMerger(self.db)
        total = MergeResult()

        # Each batch commits the merge together with its checkpoint advance
        while True:
            events, new_checkpoint = await feed.poll(checkpoint, max_changes=self.config.batch_size)
            if new_checkpoint == checkpoint:
                break

            result = await merger.apply(events, etl_run_id)
            await feed.advance(consumer, checkpoint, new_checkpoint, result.rows_affected)
            await self.db.commit()

            total.inserted += result.inserted
            total.updated += result.updated
            total.deleted += result.deleted
            total.skipped += result.skipped
            checkpoint = new_checkpoint

        return total

    async def _full_refresh(
        self,
        feed: ChangeFeed,
        consumer: str,
        checkpoint: int,
        etl_run_id: str
    ) -> MergeResult:
        latest = await feed.latest_sequence()
        rows = (await self.db.execute(select(BronzeEmployee).order_by(BronzeEmployee.id))).scalars().all()

        merger = UpsertMerger(self.db, source_object=BronzeEmployee.OBJECT_NAME)
        result = await merger.full_refresh([row.to_payload() for row in rows], etl_run_id)

        # Everything up to ``latest`` is now reflected in silver
        if latest != checkpoint:
            await feed.advance(consumer, checkpoint, latest, result.inserted)
        await self.db.commit()
        return result

    async def _materialize(self, etl_run_id: str) -> Tuple[str, int, Dict[str, Any]]:
        summary = await AggregateMaterializer(self.db).rebuild(etl_run_id)
        text = summary.summary_text()

        if summary.error_count:
            failures = "; ".join(
                build.message for build in summary.builds if build.status == StageStatus.FAILED.value
            )
            raise MaterializationError(
                failures,
                context={"etl_run_id": etl_run_id, "errors": summary.error_count}
            )

        rows = sum(build.row_count for build in summary.builds)
        return text, rows, {"builds": [build.dict() for build in summary.builds]}

    async def _quality(self, etl_run_id: str) -> Tuple[str, int, Dict[str, Any]]:
        results = await QualityChecker(self.db, self.config).run_all(etl_run_id)
        message = "; ".join(result.message for result in results)
        return message, 0, {
            "checks": [
                {"check_name": r.check_name, "issue_count": r.issue_count, "table_name": r.table_name}
                for r in results
            ]
        }
