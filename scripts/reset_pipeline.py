"""
Script to reset bronze, silver, gold and the change feed between demo runs
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import build_engine, build_session_maker
from core.logging import setup_logging
from pipeline.maintenance import reset_environment

setup_logging()
logger = logging.getLogger(__name__)


async def reset():
    engine = build_engine(settings.DATABASE_URL)
    session_maker = build_session_maker(engine)

    try:
        async with session_maker() as session:
            deleted = await reset_environment(session)
        for table, count in deleted.items():
            logger.info(f"{table}: {count} rows deleted")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(reset())
