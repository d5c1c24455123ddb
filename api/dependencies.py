"""
FastAPI dependencies (database session, pipeline configuration, task graph)
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings, PipelineConfig
from core.database import async_session_maker
from pipeline.tasks import TaskGraph


async def get_db() -> AsyncSession:
    """Yield a database session per request"""
    async with async_session_maker() as session:
        yield session


def get_pipeline_config() -> PipelineConfig:
    return settings.pipeline_config()


def get_task_graph(request: Request) -> TaskGraph:
    """The application's stream task graph (shared with the scheduler)"""
    return request.app.state.task_graph
