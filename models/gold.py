from sqlalchemy import Column, String, Float, Integer, DateTime, Index
from sqlalchemy.orm import declared_attr
from datetime import datetime
from models.base import Base, BigIntPK


class GoldSnapshot(Base):
    """
    Pointer to the published snapshot of each gold aggregate.

    A rebuild writes a complete new set of rows under a fresh snapshot_id and
    then swaps this pointer, so readers see either the old or the new set.
    """
    __tablename__ = "gold_snapshots"

    aggregate_name = Column(String(200), primary_key=True)
    snapshot_id = Column(String(64), nullable=False)
    row_count = Column(Integer, nullable=False, default=0)
    materialized_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    source_object = Column(String(200), nullable=True)
    etl_run_id = Column(String(64), nullable=True)


class AggregateRowColumns:
    """Lineage columns shared by every gold row"""

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    snapshot_id = Column(String(64), nullable=False)
    department = Column(String(100), nullable=True)

    materialized_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    source_object = Column(String(200), nullable=False)
    etl_run_id = Column(String(64), nullable=True)

    @declared_attr
    def __table_args__(cls):
        return (
            Index(f"idx_{cls.__tablename__}_snapshot", "snapshot_id", "department"),
        )


class DemographicsColumns(AggregateRowColumns):
    num_employees = Column(Integer, nullable=False, default=0)
    avg_age = Column(Float, nullable=True)
    avg_length_of_service = Column(Float, nullable=True)
    num_male = Column(Integer, nullable=False, default=0)
    num_female = Column(Integer, nullable=False, default=0)
    num_other_gender = Column(Integer, nullable=False, default=0)


class SurveyResultsColumns(AggregateRowColumns):
    avg_satisfaction_score = Column(Float, nullable=True)
    avg_work_life_balance_score = Column(Float, nullable=True)
    avg_career_growth_score = Column(Float, nullable=True)
    avg_communication_score = Column(Float, nullable=True)
    avg_teamwork_score = Column(Float, nullable=True)
    num_responses = Column(Integer, nullable=False, default=0)


class EmployeeDemographicsByDepartment(DemographicsColumns, Base):
    __tablename__ = "gold_employee_demographics_by_department"
    OBJECT_NAME = "gold.employee_demographics_by_department"


class SurveyResultsByDepartment(SurveyResultsColumns, Base):
    __tablename__ = "gold_survey_results_by_department"
    OBJECT_NAME = "gold.survey_results_by_department"


class DynamicEmployeeDemographicsByDepartment(DemographicsColumns, Base):
    __tablename__ = "gold_dt_employee_demographics_by_department"
    OBJECT_NAME = "gold.dt_employee_demographics_by_department"


class DynamicSurveyResultsByDepartment(SurveyResultsColumns, Base):
    __tablename__ = "gold_dt_survey_results_by_department"
    OBJECT_NAME = "gold.dt_survey_results_by_department"
