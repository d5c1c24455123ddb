"""
Reset the pipeline to an empty state between runs
"""

from typing import Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete
from models.raw_data import BronzeEmployee
from models.change_log import BronzeChangeLog
from models.checkpoint import ETLCheckpoint
from models.load_history import BronzeLoadHistory
from models.staging import StagedEmployee, DynamicStagedEmployee
from models.gold import (
    GoldSnapshot,
    EmployeeDemographicsByDepartment,
    SurveyResultsByDepartment,
    DynamicEmployeeDemographicsByDepartment,
    DynamicSurveyResultsByDepartment,
)
import logging

logger = logging.getLogger(__name__)

# Data tables only; the ops audit tables are append-only and survive a reset
RESET_ORDER = (
    GoldSnapshot,
    EmployeeDemographicsByDepartment,
    SurveyResultsByDepartment,
    DynamicEmployeeDemographicsByDepartment,
    DynamicSurveyResultsByDepartment,
    StagedEmployee,
    DynamicStagedEmployee,
    ETLCheckpoint,
    BronzeChangeLog,
    BronzeLoadHistory,
    BronzeEmployee,
)


async def reset_environment(db: AsyncSession) -> Dict[str, int]:
    """
    Empty bronze, silver and gold, recreate the change feed and forget
    loaded files.

    Returns:
        Rows deleted per table
    """
    deleted: Dict[str, int] = {}
    for model in RESET_ORDER:
        result = await db.execute(
            delete(model).execution_options(synchronize_session=False)
        )
        deleted[model.__tablename__] = result.rowcount or 0
    await db.commit()

    # Bulk deletes bypass the identity map
    db.expunge_all()

    logger.info(f"Pipeline reset: {sum(deleted.values())} rows deleted across {len(deleted)} tables")
    return deleted
