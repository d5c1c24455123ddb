import logging
import uuid
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import PipelineConfig
from core.exceptions import StageExecutionError
from pipeline.tasks import TaskGraph, build_stream_task_graph
from pipeline.dynamic_tables import DynamicTablePipeline
from pipeline.runner import PipelineRunner

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """
    Schedules the three independent jobs:
    - stream task graph (silver when the feed has data, then gold)
    - dynamic table refresh at half the target lag
    - quality checks on their own interval
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        config: Optional[PipelineConfig] = None,
        silver_cron: str = "0 6 * * *",
        silver_interval_seconds: Optional[int] = None,
        quality_interval_minutes: int = 60,
        graph: Optional[TaskGraph] = None
    ):
        self.session_maker = session_maker
        self.config = config or PipelineConfig()
        self.silver_cron = silver_cron
        self.silver_interval_seconds = silver_interval_seconds
        self.quality_interval_minutes = quality_interval_minutes
        self.graph = graph or build_stream_task_graph(session_maker, self.config)
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    async def run_stream_graph(self):
        """Job to run the stream task graph"""
        logger.info("Scheduler: Starting stream task graph")
        result = await self.graph.run()
        for outcome in result.outcomes:
            logger.info(f"Scheduler: {outcome.task_name} {outcome.state}")
        return result

    async def refresh_dynamic_tables(self):
        """Job to refresh the dynamic tables if bronze changed"""
        async with self.session_maker() as session:
            return await DynamicTablePipeline(session, self.config).refresh()

    async def run_quality_checks(self):
        """Job to run the quality checks"""
        run_id = str(uuid.uuid4())
        async with self.session_maker() as session:
            try:
                return await PipelineRunner(session, self.config).run_quality_checks(run_id)
            except StageExecutionError as e:
                logger.error(f"Scheduler: quality check job failed - {e.result.message}")
                return e.result

    def silver_trigger(self):
        """Fixed interval polling if configured, otherwise the cron schedule (UTC)"""
        if self.silver_interval_seconds:
            return IntervalTrigger(seconds=self.silver_interval_seconds)
        return CronTrigger.from_crontab(self.silver_cron, timezone="UTC")

    def dynamic_refresh_interval_seconds(self) -> int:
        return max(1, self.config.target_lag_seconds // 2)

    def start(self):
        """Start the scheduler"""
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        self.scheduler.add_job(
            self.run_stream_graph,
            trigger=self.silver_trigger(),
            id="stream_task_graph",
            **job_defaults
        )
        self.scheduler.add_job(
            self.refresh_dynamic_tables,
            trigger=IntervalTrigger(seconds=self.dynamic_refresh_interval_seconds()),
            id="dynamic_table_refresh",
            **job_defaults
        )
        self.scheduler.add_job(
            self.run_quality_checks,
            trigger=IntervalTrigger(minutes=self.quality_interval_minutes),
            id="quality_checks",
            **job_defaults
        )
        self.scheduler.start()
        logger.info("Pipeline Scheduler started")

    def stop(self):
        self.scheduler.shutdown(wait=False)
        logger.info("Pipeline Scheduler stopped")
