from sqlalchemy import Column, String, Float, Integer, Text, DateTime, Index
from sqlalchemy.orm import declared_attr
from datetime import datetime
from models.base import Base

SCORE_COLUMNS = (
    "satisfaction_score",
    "work_life_balance_score",
    "career_growth_score",
    "communication_score",
    "teamwork_score",
)


class StagedEmployeeColumns:
    """
    Column set shared by both silver staging tables.

    Schema Design:
    - All bronze business columns, keyed uniquely by employee_number
    - Five survey scores parsed out of engagement_survey; valid domain is 1..5
      but the schema does not constrain them (the quality checker does)
    - Lineage metadata: staged_at, source_object, etl_run_id
    """

    employee_number = Column(String(50), primary_key=True)

    employee_name = Column(String(200), nullable=True)
    gender = Column(String(50), nullable=True)
    city = Column(String(100), nullable=True)
    job_title = Column(String(200), nullable=True)
    department = Column(String(100), nullable=True)
    store_location = Column(String(100), nullable=True)
    business_unit = Column(String(100), nullable=True)
    division = Column(String(100), nullable=True)
    age = Column(Float, nullable=True)
    length_of_service = Column(Float, nullable=True)
    hours_absent = Column(Float, nullable=True)
    engagement_survey = Column(Text, nullable=True)

    # Parsed survey scores
    satisfaction_score = Column(Integer, nullable=True)
    work_life_balance_score = Column(Integer, nullable=True)
    career_growth_score = Column(Integer, nullable=True)
    communication_score = Column(Integer, nullable=True)
    teamwork_score = Column(Integer, nullable=True)

    # Lineage
    staged_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    source_object = Column(String(200), nullable=False)
    etl_run_id = Column(String(64), nullable=True, index=True)

    @declared_attr
    def __table_args__(cls):
        return (
            Index(f"idx_{cls.__tablename__}_department", "department"),
        )


class StagedEmployee(StagedEmployeeColumns, Base):
    """Silver staging table maintained by the change feed MERGE"""
    __tablename__ = "silver_employee_data_stg"
    OBJECT_NAME = "silver.employee_data_stg"


class DynamicStagedEmployee(StagedEmployeeColumns, Base):
    """Silver staging table fully recomputed by the dynamic table refresher"""
    __tablename__ = "silver_dt_employee_data_stg"
    OBJECT_NAME = "silver.dt_employee_data_stg"
