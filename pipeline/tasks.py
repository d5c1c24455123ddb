"""
Task graph: conditional root tasks and completion-chained children
"""

from typing import List, Dict, Any, Optional, Callable, Awaitable
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from models.etl_run import TaskRun
from models.base import TaskState
from schemas.pipeline import TaskOutcome, GraphRunResult, StageResult
from pipeline.change_feed import ChangeFeed
from pipeline.runner import PipelineRunner, describe_error
from core.config import PipelineConfig
from core.exceptions import StageExecutionError
import asyncio
import logging
import uuid

logger = logging.getLogger(__name__)

TaskAction = Callable[[AsyncSession, str], Awaitable[Any]]
TaskCondition = Callable[[AsyncSession], Awaitable[bool]]

SILVER_TASK = "t_silver_from_bronze_stream"
GOLD_TASK = "t_gold_refresh_after_silver"


class Task:
    """
    One node of a task graph.

    Args:
        name: Unique task name
        action: Coroutine taking (session, run_id)
        after: Name of the task this one runs after (None for a root)
        when: Condition checked before running; False skips the task and
            everything after it
    """

    def __init__(
        self,
        name: str,
        action: TaskAction,
        after: Optional[str] = None,
        when: Optional[TaskCondition] = None
    ):
        self.name = name
        self.action = action
        self.after = after
        self.when = when


class TaskGraph:
    """
    Run tasks in dependency order.

    Rules:
    - A child starts strictly after its parent finished successfully
    - A failed or skipped task's children are never invoked
    - One run_id is shared by every task of a graph run
    - Runs of the same graph are serialized
    """

    def __init__(self, name: str, session_maker: async_sessionmaker, tasks: List[Task]):
        self.name = name
        self.session_maker = session_maker
        self.tasks: Dict[str, Task] = {}
        for task in tasks:
            if task.name in self.tasks:
                raise ValueError(f"Duplicate task name: {task.name}")
            self.tasks[task.name] = task
        for task in tasks:
            if task.after is not None and task.after not in self.tasks:
                raise ValueError(f"Task {task.name} runs after unknown task {task.after}")
        self._lock = asyncio.Lock()

    def roots(self) -> List[Task]:
        return [task for task in self.tasks.values() if task.after is None]

    def children(self, name: str) -> List[Task]:
        return [task for task in self.tasks.values() if task.after == name]

    async def run(self, run_id: Optional[str] = None) -> GraphRunResult:
        """Run every root task and, on success, its descendants"""
        run_id = run_id or str(uuid.uuid4())

        async with self._lock:
            logger.info(f"Task graph {self.name} run {run_id} started")
            result = GraphRunResult(graph_name=self.name, run_id=run_id)
            for task in self.roots():
                await self._run_task(task, run_id, result)

        logger.info(
            f"Task graph {self.name} run {run_id} finished: "
            + ", ".join(f"{o.task_name}={o.state}" for o in result.outcomes)
        )
        return result

    async def _run_task(self, task: Task, run_id: str, result: GraphRunResult):
        scheduled_at = datetime.utcnow()

        async with self.session_maker() as session:
            try:
                if task.when is not None and not await task.when(session):
                    logger.info(f"Task {task.name} skipped: condition not met")
                    await self._record(session, task, run_id, TaskState.SKIPPED, scheduled_at)
                    result.outcomes.append(TaskOutcome(task_name=task.name, state=TaskState.SKIPPED))
                    return

                value = await task.action(session, run_id)

            except Exception as e:
                await session.rollback()
                error_code = getattr(e, "error_code", type(e).__name__)
                if isinstance(e, StageExecutionError):
                    error_message = e.result.message
                else:
                    error_message = describe_error(e)

                logger.error(f"Task {task.name} failed: {error_message}")
                await self._record(
                    session, task, run_id, TaskState.FAILED, scheduled_at,
                    error_code=error_code, error_message=error_message
                )
                result.outcomes.append(TaskOutcome(
                    task_name=task.name,
                    state=TaskState.FAILED,
                    error_message=error_message
                ))
                return

            return_value = value.message if isinstance(value, StageResult) else (
                str(value) if value is not None else None
            )
            await self._record(
                session, task, run_id, TaskState.SUCCEEDED, scheduled_at,
                return_value=return_value
            )
            result.outcomes.append(TaskOutcome(
                task_name=task.name,
                state=TaskState.SUCCEEDED,
                return_value=return_value
            ))

        for child in self.children(task.name):
            await self._run_task(child, run_id, result)

    async def _record(
        self,
        session: AsyncSession,
        task: Task,
        run_id: str,
        state: TaskState,
        scheduled_at: datetime,
        return_value: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None
    ):
        session.add(TaskRun(
            graph_name=self.name,
            task_name=task.name,
            run_id=run_id,
            state=state,
            scheduled_at=scheduled_at,
            completed_at=datetime.utcnow(),
            return_value=return_value,
            error_code=error_code,
            error_message=error_message
        ))
        await session.commit()


def build_stream_task_graph(
    session_maker: async_sessionmaker,
    config: Optional[PipelineConfig] = None
) -> TaskGraph:
    """
    The streams/tasks pipeline: silver when the change feed has data, then
    gold after silver succeeded.
    """
    config = config or PipelineConfig()

    async def stream_has_data(session: AsyncSession) -> bool:
        feed = ChangeFeed(session)
        checkpoint = await feed.get_checkpoint(config.feed_consumer)
        return await feed.has_pending_changes(checkpoint.checkpoint_value)

    async def load_silver(session: AsyncSession, run_id: str) -> StageResult:
        return await PipelineRunner(session, config).load_staging(run_id)

    async def refresh_gold(session: AsyncSession, run_id: str) -> StageResult:
        return await PipelineRunner(session, config).materialize_aggregates(run_id)

    return TaskGraph(
        config.pipeline_name,
        session_maker,
        [
            Task(SILVER_TASK, load_silver, when=stream_has_data),
            Task(GOLD_TASK, refresh_gold, after=SILVER_TASK),
        ]
    )
