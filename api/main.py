"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, pipeline, gold, quality
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
from pipeline.scheduler import PipelineScheduler
from pipeline.tasks import build_stream_task_graph
import logging

# Configure logging
setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Employee Medallion ELT API",
    description="Incremental bronze/silver/gold pipeline for employee engagement data",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# One task graph per process: API triggered and scheduled runs share its lock
pipeline_config = settings.pipeline_config()
app.state.task_graph = build_stream_task_graph(async_session_maker, pipeline_config)

# Initialize Scheduler
scheduler = PipelineScheduler(
    async_session_maker,
    pipeline_config,
    silver_cron=settings.SILVER_TASK_CRON,
    silver_interval_seconds=settings.SILVER_POLL_INTERVAL_SECONDS,
    quality_interval_minutes=settings.QUALITY_CHECK_INTERVAL_MINUTES,
    graph=app.state.task_graph
)


# Include routers
app.include_router(health.router)
app.include_router(pipeline.router)
app.include_router(gold.router)
app.include_router(quality.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Employee Medallion ELT API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Scheduler disabled")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Employee Medallion ELT API")
    if scheduler.scheduler.running:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Employee Medallion ELT API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "pipeline": "/pipeline",
            "gold": "/gold",
            "quality": "/quality/results"
        }
    }
