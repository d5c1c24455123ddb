"""
Script to run the pipeline once: load the raw zone, then silver, gold and
quality checks under one etl_run_id
"""

import argparse
import asyncio
import sys
import os
import uuid
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import build_engine, build_session_maker
from core.exceptions import StageExecutionError
from core.logging import setup_logging
from pipeline.loaders.file_loader import BronzeFileLoader
from pipeline.runner import PipelineRunner
from pipeline.dynamic_tables import DynamicTablePipeline

setup_logging()
logger = logging.getLogger(__name__)


async def run_pipeline(etl_run_id: str, full_refresh: bool, skip_files: bool, dynamic: bool) -> int:
    """Run every stage in order; returns the process exit code"""
    engine = build_engine(settings.DATABASE_URL)
    session_maker = build_session_maker(engine)
    config = settings.pipeline_config()

    try:
        async with session_maker() as session:
            if not skip_files:
                loaded = await BronzeFileLoader(
                    session,
                    settings.RAW_ZONE_PATH,
                    pattern=settings.RAW_FILE_PATTERN,
                    batch_size=config.batch_size
                ).refresh()
                logger.info(
                    f"Raw zone: {len(loaded.files_loaded)} files loaded, "
                    f"{len(loaded.files_skipped)} skipped, {len(loaded.files_failed)} failed"
                )

            runner = PipelineRunner(session, config)
            try:
                for result in (
                    await runner.load_staging(etl_run_id, full_refresh=full_refresh),
                    await runner.materialize_aggregates(etl_run_id),
                    await runner.run_quality_checks(etl_run_id),
                ):
                    logger.info(result.message)
            except StageExecutionError as e:
                logger.error(e.result.message)
                return 1

            if dynamic:
                for refresh in await DynamicTablePipeline(session, config).refresh():
                    logger.info(f"{refresh.name}: {refresh.state} {refresh.refresh_action} {refresh.message}")

        logger.info(f"Pipeline run {etl_run_id} completed")
        return 0
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Run the medallion ELT pipeline once")
    parser.add_argument("--etl-run-id", default=None, help="Correlation id (generated if omitted)")
    parser.add_argument("--full-refresh", action="store_true", help="Reload silver from all of bronze")
    parser.add_argument("--skip-files", action="store_true", help="Do not load the raw zone first")
    parser.add_argument("--dynamic", action="store_true", help="Also refresh the dynamic tables")
    args = parser.parse_args()

    etl_run_id = args.etl_run_id or str(uuid.uuid4())
    sys.exit(asyncio.run(run_pipeline(etl_run_id, args.full_refresh, args.skip_files, args.dynamic)))


if __name__ == "__main__":
    main()
