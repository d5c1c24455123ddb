"""
Report-only data quality checks on bronze and silver
"""

from typing import List, Dict, Any, Optional, Sequence
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, func, or_
from models.raw_data import BronzeEmployee
from models.staging import StagedEmployee, SCORE_COLUMNS
from models.data_quality import DataQualityResult
from models.base import Layer
from schemas.pipeline import QualityCheckResult
from core.config import PipelineConfig
from core.exceptions import QualityCheckError
import logging

logger = logging.getLogger(__name__)


class QualityRule:
    """
    A named assertion over one table.

    ``condition`` selects the offending rows; ``sample_columns`` are copied
    into the sample evidence under ``sample_key``.
    """

    def __init__(
        self,
        name: str,
        layer: Layer,
        model,
        condition,
        sample_columns: Sequence[str],
        sample_key: str,
        label: str
    ):
        self.name = name
        self.layer = layer
        self.model = model
        self.condition = condition
        self.sample_columns = tuple(sample_columns)
        self.sample_key = sample_key
        self.label = label


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class QualityChecker:
    """
    Run quality rules and append one result row per run.

    Findings are data: a check with issues still succeeds. Only a failure
    to execute the check raises.
    """

    def __init__(self, db_session: AsyncSession, config: Optional[PipelineConfig] = None):
        self.db = db_session
        self.config = config or PipelineConfig()

    def null_employee_number_rule(self) -> QualityRule:
        return QualityRule(
            name="null_employee_number",
            layer=Layer.BRONZE,
            model=BronzeEmployee,
            condition=BronzeEmployee.employee_number.is_(None),
            sample_columns=("employee_name",),
            sample_key="sample_rows",
            label="Null check"
        )

    def survey_range_rule(self) -> QualityRule:
        low = self.config.survey_score_min
        high = self.config.survey_score_max
        out_of_range = []
        for column in SCORE_COLUMNS:
            score = func.coalesce(getattr(StagedEmployee, column), 0)
            out_of_range.append(or_(score < low, score > high))

        return QualityRule(
            name="invalid_survey_range",
            layer=Layer.SILVER,
            model=StagedEmployee,
            condition=or_(*out_of_range),
            sample_columns=(
                "employee_number",
                "department",
                *SCORE_COLUMNS,
                "staged_at",
                "source_object",
                "etl_run_id",
            ),
            sample_key="bad_rows",
            label="Survey range check"
        )

    async def check(self, rule: QualityRule, etl_run_id: Optional[str] = None) -> QualityCheckResult:
        """
        Count and sample the rows violating ``rule`` and record the result.

        Raises:
            QualityCheckError: the check itself could not run
        """
        model = rule.model
        try:
            count_result = await self.db.execute(
                select(func.count()).select_from(model).where(rule.condition)
            )
            issue_count = int(count_result.scalar() or 0)

            columns = [getattr(model, name) for name in rule.sample_columns]
            sample_result = await self.db.execute(
                select(*columns).where(rule.condition).limit(self.config.quality_sample_limit)
            )
            sample_rows: List[Dict[str, Any]] = [
                {name: _json_safe(value) for name, value in zip(rule.sample_columns, row)}
                for row in sample_result
            ]

            checked_at = datetime.utcnow()
            self.db.add(DataQualityResult(
                check_name=rule.name,
                layer=rule.layer.value,
                table_name=model.OBJECT_NAME,
                issue_count=issue_count,
                sample_details={rule.sample_key: sample_rows},
                etl_run_id=etl_run_id,
                checked_at=checked_at
            ))
            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            raise QualityCheckError(
                f"Quality check {rule.name} could not run",
                context={"check_name": rule.name, "table_name": model.OBJECT_NAME},
                original_exception=e
            )

        message = f"{rule.label} complete. Issues={issue_count}"
        if issue_count:
            logger.warning(f"{rule.name} on {model.OBJECT_NAME}: {issue_count} issues")
        logger.info(message)

        return QualityCheckResult(
            check_name=rule.name,
            layer=rule.layer.value,
            table_name=model.OBJECT_NAME,
            issue_count=issue_count,
            sample_rows=sample_rows,
            checked_at=checked_at,
            message=message
        )

    async def check_nulls_in_bronze_employee_number(self, etl_run_id: Optional[str] = None) -> QualityCheckResult:
        """Bronze rows without the natural key"""
        return await self.check(self.null_employee_number_rule(), etl_run_id)

    async def check_silver_survey_ranges(self, etl_run_id: Optional[str] = None) -> QualityCheckResult:
        """Silver rows with any score (NULL as 0) outside the valid range"""
        return await self.check(self.survey_range_rule(), etl_run_id)

    async def run_all(self, etl_run_id: Optional[str] = None) -> List[QualityCheckResult]:
        return [
            await self.check_nulls_in_bronze_employee_number(etl_run_id),
            await self.check_silver_survey_ranges(etl_run_id),
        ]
