"""
Health check endpoint with database and change feed status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, text
from api.dependencies import get_db, get_pipeline_config
from schemas.api import HealthCheckResponse, CheckpointInfo
from models.checkpoint import ETLCheckpoint
from models.base import CheckpointStatus
from pipeline.change_feed import ChangeFeed
from core.config import PipelineConfig
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    config: PipelineConfig = Depends(get_pipeline_config)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Checkpoint status for every change feed consumer
    - Whether the silver consumer has changes waiting
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {str(e)}")

    checkpoints = []
    failed_consumers = 0
    pending_changes = None

    if db_connected:
        try:
            result = await db.execute(select(ETLCheckpoint).order_by(ETLCheckpoint.id))
            for checkpoint in result.scalars().all():
                if checkpoint.status == CheckpointStatus.FAILED:
                    failed_consumers += 1
                checkpoints.append(CheckpointInfo.from_orm(checkpoint))

                if checkpoint.consumer_name == config.feed_consumer:
                    pending_changes = await ChangeFeed(db, checkpoint.feed_name).has_pending_changes(
                        checkpoint.checkpoint_value
                    )
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch checkpoints: {str(e)}")

    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        checkpoints=checkpoints,
        pending_changes=pending_changes,
        total_consumers=len(checkpoints),
        failed_consumers=failed_consumers
    )
