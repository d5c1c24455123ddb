"""
Tests for stage failures: rollback, run log, checkpoint and task graph behavior
"""

import pytest
from unittest.mock import patch
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from pipeline.runner import PipelineRunner, STAGE_SILVER, STAGE_GOLD
from pipeline.loaders.bronze_loader import BronzeLoader
from pipeline.loaders.staging_merger import UpsertMerger
from pipeline.change_feed import ChangeFeed
from pipeline.materializer import AggregateMaterializer
from pipeline.quality import QualityChecker
from pipeline.monitoring import PipelineMonitor
from pipeline.tasks import build_stream_task_graph, SILVER_TASK, GOLD_TASK
from models.staging import StagedEmployee
from models.gold import EmployeeDemographicsByDepartment, SurveyResultsByDepartment
from models.etl_run import TaskRun
from models.base import StageStatus, CheckpointStatus, TaskState
from core.exceptions import StageExecutionError, CheckpointConflictError, QualityCheckError


async def _silver_keys(db_session):
    result = await db_session.execute(select(StagedEmployee.employee_number).order_by(StagedEmployee.employee_number))
    return [row[0] for row in result]


@pytest.mark.asyncio
async def test_silver_failure_logged_and_raised(db_session, pipeline_config, employee_records):
    """
    Test: a merge error rolls silver back, logs FAILED, marks the checkpoint
    FAILED without moving it and raises with the logged result
    """
    await BronzeLoader(db_session).load_records(employee_records)
    runner = PipelineRunner(db_session, pipeline_config)

    with patch.object(UpsertMerger, "_apply_event", side_effect=SQLAlchemyError("constraint violated")):
        with pytest.raises(StageExecutionError) as exc_info:
            await runner.load_staging("run-1")

    result = exc_info.value.result
    assert result.status == StageStatus.FAILED.value
    assert result.error_code == "LOD-330"
    assert result.message == "ERROR in silver load: Failed to apply change event: constraint violated"

    assert await _silver_keys(db_session) == []

    events = await PipelineMonitor(db_session).events_for_run("run-1")
    assert [(e.stage, e.status) for e in events] == [
        (STAGE_SILVER, StageStatus.STARTED),
        (STAGE_SILVER, StageStatus.FAILED),
    ]
    assert events[1].error_code == "LOD-330"
    assert events[1].error_message == "Failed to apply change event: constraint violated"

    checkpoint = await ChangeFeed(db_session).get_checkpoint(pipeline_config.feed_consumer)
    assert checkpoint.status == CheckpointStatus.FAILED
    assert checkpoint.checkpoint_value == 0
    assert "constraint violated" in checkpoint.error_message


@pytest.mark.asyncio
async def test_failure_mid_stream_keeps_committed_batches(db_session, pipeline_config, employee_records):
    """
    Test: batches committed before a failure stay, the retry picks up the rest
    """
    await BronzeLoader(db_session).load_records(employee_records)
    runner = PipelineRunner(db_session, pipeline_config)
    original = UpsertMerger._apply_event

    async def flaky(self, event, *args):
        if event.employee_number == "1004":
            raise SQLAlchemyError("deadlock detected")
        return await original(self, event, *args)

    with patch.object(UpsertMerger, "_apply_event", flaky):
        with pytest.raises(StageExecutionError):
            await runner.load_staging("run-1")

    assert await _silver_keys(db_session) == ["1001", "1002", "1003"]
    feed = ChangeFeed(db_session)
    assert (await feed.get_checkpoint(pipeline_config.feed_consumer)).checkpoint_value == 3

    retry = await runner.load_staging("run-2")

    assert retry.rows_affected == 1
    assert await _silver_keys(db_session) == ["1001", "1002", "1003", "1004"]
    checkpoint = await feed.get_checkpoint(pipeline_config.feed_consumer)
    assert checkpoint.status == CheckpointStatus.SUCCESS
    assert checkpoint.error_message is None


@pytest.mark.asyncio
async def test_checkpoint_conflict_rolls_back_merge(db_session, pipeline_config, employee_records):
    """
    Test: losing the checkpoint race discards the merge it would have confirmed
    """
    await BronzeLoader(db_session).load_records(employee_records)
    runner = PipelineRunner(db_session, pipeline_config)

    conflict = CheckpointConflictError("Checkpoint moved by another consumer")
    with patch.object(ChangeFeed, "advance", side_effect=conflict):
        with pytest.raises(StageExecutionError) as exc_info:
            await runner.load_staging("run-1")

    assert exc_info.value.result.error_code == "CDC-111"
    assert await _silver_keys(db_session) == []


@pytest.mark.asyncio
async def test_gold_failure_reports_failed_aggregate(db_session, pipeline_config, employee_records):
    """
    Test: one aggregate failing fails the stage; the other aggregate still builds
    """
    await BronzeLoader(db_session).load_records(employee_records)
    runner = PipelineRunner(db_session, pipeline_config)
    await runner.load_staging("run-1")

    with patch.object(AggregateMaterializer, "_survey_rows", side_effect=RuntimeError("division by zero")):
        with pytest.raises(StageExecutionError) as exc_info:
            await runner.materialize_aggregates("run-1")

    result = exc_info.value.result
    assert result.stage == STAGE_GOLD
    assert result.error_code == "GLD-400"
    assert result.message == (
        "ERROR in gold materialization: "
        "ERROR: Failed to build survey_results_by_department - division by zero"
    )

    materializer = AggregateMaterializer(db_session)
    assert len(await materializer.current_rows(EmployeeDemographicsByDepartment)) == 2
    assert await materializer.current_rows(SurveyResultsByDepartment) == []

    events = await PipelineMonitor(db_session).events_for_run("run-1")
    assert (events[-1].stage, events[-1].status) == (STAGE_GOLD, StageStatus.FAILED)


@pytest.mark.asyncio
async def test_quality_failure_raises(db_session, pipeline_config):
    """
    Test: a check that cannot run fails the quality stage
    """
    runner = PipelineRunner(db_session, pipeline_config)
    error = QualityCheckError("Quality check invalid_survey_range could not run")

    with patch.object(QualityChecker, "check", side_effect=error):
        with pytest.raises(StageExecutionError) as exc_info:
            await runner.run_quality_checks("run-1")

    assert exc_info.value.result.error_code == "DQ-500"
    assert exc_info.value.result.message.startswith("ERROR in quality checks: ")


@pytest.mark.asyncio
async def test_failed_silver_task_never_starts_gold(session_maker, pipeline_config, employee_records):
    """
    Test: in the task graph a failed silver task leaves no gold invocation
    """
    async with session_maker() as session:
        await BronzeLoader(session).load_records(employee_records)
    graph = build_stream_task_graph(session_maker, pipeline_config)

    with patch.object(UpsertMerger, "_apply_event", side_effect=SQLAlchemyError("constraint violated")):
        with patch.object(AggregateMaterializer, "rebuild") as rebuild:
            result = await graph.run("run-1")

    rebuild.assert_not_called()
    assert result.state_of(SILVER_TASK) == TaskState.FAILED.value
    assert result.state_of(GOLD_TASK) is None

    async with session_maker() as session:
        history = (await session.execute(select(TaskRun).order_by(TaskRun.id))).scalars().all()
        events = await PipelineMonitor(session).events_for_run("run-1")

    assert [(h.task_name, h.state) for h in history] == [(SILVER_TASK, TaskState.FAILED)]
    assert history[0].error_code == "STG-900"
    assert history[0].error_message == (
        "ERROR in silver load: Failed to apply change event: constraint violated"
    )
    assert STAGE_GOLD not in {e.stage for e in events}
