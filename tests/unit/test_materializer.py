"""
Unit tests for gold aggregate materialization
"""

import pytest
from unittest.mock import patch
from sqlalchemy import select, func
from pipeline.materializer import AggregateMaterializer
from pipeline.loaders.staging_merger import UpsertMerger
from models.gold import GoldSnapshot, EmployeeDemographicsByDepartment, SurveyResultsByDepartment
from models.base import ChangeAction, StageStatus
from schemas.employee import ChangeEvent


async def _stage(db_session, records):
    events = [
        ChangeEvent(sequence=i, raw_record_id=i, employee_number=r["employee_number"],
                    action=ChangeAction.INSERT, after=r)
        for i, r in enumerate(records, 1)
    ]
    await UpsertMerger(db_session).apply(events, etl_run_id="stage-run")
    await db_session.commit()


class TestDemographics:
    """Test the per-department demographics aggregate"""

    @pytest.mark.asyncio
    async def test_one_row_per_department(self, db_session, employee_records):
        await _stage(db_session, employee_records)
        materializer = AggregateMaterializer(db_session)

        build = await materializer.build_demographics("run-1")
        rows = await materializer.current_rows(EmployeeDemographicsByDepartment)

        assert build.status == StageStatus.SUCCESS.value
        assert build.row_count == 2
        assert [r.department for r in rows] == ["Finance", "Produce"]
        assert sum(r.num_employees for r in rows) == len(employee_records)

        finance, produce = rows
        assert finance.avg_age == pytest.approx(40.0)
        assert finance.avg_length_of_service == pytest.approx(8.75)
        assert (finance.num_male, finance.num_female, finance.num_other_gender) == (1, 1, 0)
        # "male" matches case-insensitively, "Nonbinary" counts as other
        assert (produce.num_male, produce.num_female, produce.num_other_gender) == (1, 0, 1)
        assert produce.etl_run_id == "run-1"
        assert produce.source_object == "silver.employee_data_stg"

    @pytest.mark.asyncio
    async def test_gender_buckets_sum_to_headcount(self, db_session, employee_records):
        records = employee_records + [
            {"employee_number": "1005", "department": "Produce", "gender": None},
            {"employee_number": "1006", "department": "Produce", "gender": " female"},
        ]
        await _stage(db_session, records)
        materializer = AggregateMaterializer(db_session)

        await materializer.build_demographics("run-1")
        rows = await materializer.current_rows(EmployeeDemographicsByDepartment)

        for row in rows:
            assert row.num_male + row.num_female + row.num_other_gender == row.num_employees

    @pytest.mark.asyncio
    async def test_empty_staging(self, db_session):
        materializer = AggregateMaterializer(db_session)

        build = await materializer.build_demographics("run-1")

        assert build.status == StageStatus.SUCCESS.value
        assert build.row_count == 0
        assert build.message.startswith("SUCCESS: Built employee_demographics_by_department with 0 rows in ")
        assert await materializer.current_rows(EmployeeDemographicsByDepartment) == []


class TestSurveyResults:
    """Test the per-department survey aggregate"""

    @pytest.mark.asyncio
    async def test_zero_and_null_scores_excluded(self, db_session, employee_records):
        await _stage(db_session, employee_records)
        materializer = AggregateMaterializer(db_session)

        await materializer.build_survey_results("run-1")
        finance, produce = await materializer.current_rows(SurveyResultsByDepartment)

        assert finance.avg_satisfaction_score == pytest.approx(3.0)
        assert finance.avg_work_life_balance_score == pytest.approx(2.5)
        # 1002 answered 0 for communication
        assert finance.avg_communication_score == pytest.approx(4.0)
        assert finance.num_responses == 2
        # 1004 has no parsable survey
        assert produce.avg_satisfaction_score == pytest.approx(5.0)
        assert produce.avg_career_growth_score == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_all_zero_scores_average_to_null(self, db_session, survey):
        await _stage(db_session, [
            {"employee_number": "1", "department": "Deli", "engagement_survey": survey(0, 0, 0, 0, 0)},
        ])
        materializer = AggregateMaterializer(db_session)

        await materializer.build_survey_results("run-1")
        (deli,) = await materializer.current_rows(SurveyResultsByDepartment)

        assert deli.avg_satisfaction_score is None
        assert deli.avg_teamwork_score is None


class TestSnapshots:
    """Test snapshot replacement and failure isolation"""

    @pytest.mark.asyncio
    async def test_rebuild_replaces_previous_snapshot(self, db_session, employee_records):
        await _stage(db_session, employee_records)
        materializer = AggregateMaterializer(db_session)

        first = await materializer.rebuild("run-1")
        second = await materializer.rebuild("run-2")

        assert first.error_count == 0
        assert second.error_count == 0
        count = (await db_session.execute(
            select(func.count()).select_from(EmployeeDemographicsByDepartment)
        )).scalar()
        assert count == 2

        pointer = await db_session.get(GoldSnapshot, EmployeeDemographicsByDepartment.OBJECT_NAME)
        assert pointer.snapshot_id == second.builds[0].snapshot_id
        assert pointer.etl_run_id == "run-2"
        assert pointer.row_count == 2

    @pytest.mark.asyncio
    async def test_summary_text(self, db_session, employee_records):
        await _stage(db_session, employee_records)

        summary = await AggregateMaterializer(db_session).rebuild("run-1")
        text = summary.summary_text()

        assert text.startswith("=== GOLD LAYER BUILD SUMMARY ===")
        assert "Errors encountered: 0" in text
        assert "SUCCESS: Built survey_results_by_department with 2 rows" in text

    @pytest.mark.asyncio
    async def test_failed_build_keeps_previous_snapshot(self, db_session, employee_records):
        """Test a failing build rolls back and the old rows stay published"""
        await _stage(db_session, employee_records[:2])
        materializer = AggregateMaterializer(db_session)
        await materializer.rebuild("run-1")
        await _stage(db_session, employee_records[2:])

        with patch.object(db_session, "commit", side_effect=RuntimeError("connection lost")):
            build = await materializer.build_demographics("run-2")

        assert build.status == StageStatus.FAILED.value
        assert build.message == (
            "ERROR: Failed to build employee_demographics_by_department - connection lost"
        )
        rows = await materializer.current_rows(EmployeeDemographicsByDepartment)
        assert [r.department for r in rows] == ["Finance"]
        assert rows[0].etl_run_id == "run-1"
