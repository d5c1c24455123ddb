"""
Unit tests for the environment reset
"""

import pytest
from sqlalchemy import select, func
from pipeline.maintenance import reset_environment
from pipeline.loaders.bronze_loader import BronzeLoader
from pipeline.runner import PipelineRunner
from pipeline.change_feed import ChangeFeed
from models.raw_data import BronzeEmployee
from models.staging import StagedEmployee
from models.etl_run import PipelineRunLog


async def _count(db_session, model):
    return (await db_session.execute(select(func.count()).select_from(model))).scalar()


@pytest.mark.asyncio
async def test_reset_empties_data_tables_and_keeps_audit(db_session, pipeline_config, employee_records):
    await BronzeLoader(db_session).load_records(employee_records)
    runner = PipelineRunner(db_session, pipeline_config)
    await runner.load_staging("run-1")
    await runner.materialize_aggregates("run-1")

    deleted = await reset_environment(db_session)

    assert deleted["bronze_employee_data"] == 4
    assert deleted["silver_employee_data_stg"] == 4
    assert deleted["etl_checkpoints"] == 1
    assert await _count(db_session, BronzeEmployee) == 0
    assert await _count(db_session, StagedEmployee) == 0
    assert await _count(db_session, PipelineRunLog) == 4


@pytest.mark.asyncio
async def test_pipeline_restarts_after_reset(db_session, pipeline_config, employee_records):
    """Test a reset feed starts from a fresh checkpoint"""
    loader = BronzeLoader(db_session)
    await loader.load_records(employee_records)
    await PipelineRunner(db_session, pipeline_config).load_staging("run-1")
    await reset_environment(db_session)

    await loader.load_records(employee_records[:2])
    result = await PipelineRunner(db_session, pipeline_config).load_staging("run-2")

    assert result.rows_affected == 2
    assert await _count(db_session, StagedEmployee) == 2
    checkpoint = await ChangeFeed(db_session).get_checkpoint(pipeline_config.feed_consumer)
    assert checkpoint.checkpoint_value == await ChangeFeed(db_session).latest_sequence()
