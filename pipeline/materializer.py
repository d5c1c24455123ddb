"""
Rebuild gold department aggregates from the current staging table
"""

from typing import List, Dict, Any, Optional, Type, Callable, Awaitable
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, case, null, Float, cast
from models.staging import StagedEmployee, StagedEmployeeColumns, SCORE_COLUMNS
from models.gold import (
    GoldSnapshot,
    DemographicsColumns,
    SurveyResultsColumns,
    AggregateRowColumns,
    EmployeeDemographicsByDepartment,
    SurveyResultsByDepartment,
)
from models.base import StageStatus
from schemas.pipeline import AggregateBuildResult, MaterializationSummary
import logging
import uuid

logger = logging.getLogger(__name__)


def _as_float(value) -> Optional[float]:
    # PostgreSQL returns NUMERIC averages as Decimal
    return float(value) if value is not None else None


class AggregateMaterializer:
    """
    Full recompute of the department aggregates.

    Each aggregate is written as a complete new snapshot: rows are inserted
    under a fresh snapshot_id, the ``gold_snapshots`` pointer is swapped and
    the previous rows are deleted, all in one transaction. A failed build
    rolls back and leaves the previous snapshot published.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        staged_model: Type[StagedEmployeeColumns] = StagedEmployee,
        demographics_model: Type[DemographicsColumns] = EmployeeDemographicsByDepartment,
        survey_model: Type[SurveyResultsColumns] = SurveyResultsByDepartment
    ):
        self.db = db_session
        self.staged_model = staged_model
        self.demographics_model = demographics_model
        self.survey_model = survey_model

    async def rebuild(self, etl_run_id: Optional[str]) -> MaterializationSummary:
        """
        Rebuild both aggregates; the builds are independent.

        Returns:
            MaterializationSummary with one entry per aggregate
        """
        started = datetime.utcnow()
        summary = MaterializationSummary(etl_run_id=etl_run_id or "")

        summary.builds.append(await self.build_demographics(etl_run_id))
        summary.builds.append(await self.build_survey_results(etl_run_id))

        summary.duration_seconds = (datetime.utcnow() - started).total_seconds()
        logger.info(summary.summary_text())
        return summary

    async def build_demographics(self, etl_run_id: Optional[str]) -> AggregateBuildResult:
        """Headcount, averages and gender split per department"""
        return await self._build(self.demographics_model, self._demographics_rows, etl_run_id)

    async def build_survey_results(self, etl_run_id: Optional[str]) -> AggregateBuildResult:
        """Average survey scores per department, zero and NULL excluded"""
        return await self._build(self.survey_model, self._survey_rows, etl_run_id)

    async def _demographics_rows(self) -> List[Dict[str, Any]]:
        staged = self.staged_model
        gender = func.upper(func.coalesce(staged.gender, ""))
        is_male = gender == "MALE"
        is_female = gender == "FEMALE"

        result = await self.db.execute(
            select(
                staged.department,
                func.count().label("num_employees"),
                cast(func.avg(staged.age), Float).label("avg_age"),
                cast(func.avg(staged.length_of_service), Float).label("avg_length_of_service"),
                func.sum(case((is_male, 1), else_=0)).label("num_male"),
                func.sum(case((is_female, 1), else_=0)).label("num_female"),
                func.sum(case((is_male | is_female, 0), else_=1)).label("num_other_gender"),
            ).group_by(staged.department)
        )

        return [
            {
                "department": row.department,
                "num_employees": int(row.num_employees),
                "avg_age": _as_float(row.avg_age),
                "avg_length_of_service": _as_float(row.avg_length_of_service),
                "num_male": int(row.num_male or 0),
                "num_female": int(row.num_female or 0),
                "num_other_gender": int(row.num_other_gender or 0),
            }
            for row in result
        ]

    async def _survey_rows(self) -> List[Dict[str, Any]]:
        staged = self.staged_model
        averages = [
            cast(
                func.avg(case((getattr(staged, column) == 0, null()), else_=getattr(staged, column))),
                Float
            ).label(f"avg_{column}")
            for column in SCORE_COLUMNS
        ]

        result = await self.db.execute(
            select(staged.department, *averages, func.count().label("num_responses"))
            .group_by(staged.department)
        )

        rows = []
        for row in result:
            values = {"department": row.department, "num_responses": int(row.num_responses)}
            for column in SCORE_COLUMNS:
                values[f"avg_{column}"] = _as_float(getattr(row, f"avg_{column}"))
            rows.append(values)
        return rows

    async def _build(
        self,
        model: Type[AggregateRowColumns],
        compute: Callable[[], Awaitable[List[Dict[str, Any]]]],
        etl_run_id: Optional[str]
    ) -> AggregateBuildResult:
        name = model.OBJECT_NAME
        table = name.split(".", 1)[-1]
        started = datetime.utcnow()
        snapshot_id = uuid.uuid4().hex

        try:
            rows = await compute()
            materialized_at = datetime.utcnow()

            self.db.add_all([
                model(
                    **values,
                    snapshot_id=snapshot_id,
                    materialized_at=materialized_at,
                    source_object=self.staged_model.OBJECT_NAME,
                    etl_run_id=etl_run_id
                )
                for values in rows
            ])

            pointer = await self.db.get(GoldSnapshot, name)
            if pointer is None:
                pointer = GoldSnapshot(aggregate_name=name)
                self.db.add(pointer)
            pointer.snapshot_id = snapshot_id
            pointer.row_count = len(rows)
            pointer.materialized_at = materialized_at
            pointer.source_object = self.staged_model.OBJECT_NAME
            pointer.etl_run_id = etl_run_id
            await self.db.flush()

            await self.db.execute(
                delete(model)
                .where(model.snapshot_id != snapshot_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            duration = (datetime.utcnow() - started).total_seconds()
            logger.error(f"Failed to build {name}: {str(e)}", exc_info=True)
            return AggregateBuildResult(
                aggregate_name=name,
                status=StageStatus.FAILED,
                duration_seconds=duration,
                message=f"ERROR: Failed to build {table} - {str(e)}"
            )

        duration = (datetime.utcnow() - started).total_seconds()
        logger.info(f"Built {name}: {len(rows)} rows in {duration:.2f}s (snapshot {snapshot_id})")
        return AggregateBuildResult(
            aggregate_name=name,
            status=StageStatus.SUCCESS,
            row_count=len(rows),
            duration_seconds=duration,
            snapshot_id=snapshot_id,
            message=f"SUCCESS: Built {table} with {len(rows)} rows in {duration:.2f} seconds"
        )

    async def current_rows(self, model: Type[AggregateRowColumns]) -> List[AggregateRowColumns]:
        """Rows of the published snapshot of ``model`` (empty if never built)"""
        pointer = await self.db.execute(
            select(GoldSnapshot.snapshot_id).where(GoldSnapshot.aggregate_name == model.OBJECT_NAME)
        )
        snapshot_id = pointer.scalar_one_or_none()
        if snapshot_id is None:
            return []

        result = await self.db.execute(
            select(model)
            .where(model.snapshot_id == snapshot_id)
            .order_by(model.department)
        )
        return list(result.scalars().all())
