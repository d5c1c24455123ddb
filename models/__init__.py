"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and shared enums (ChangeAction, StageStatus, ...)
    raw_data: Bronze employee records as ingested
    change_log: Append-only change log backing the change feed
    checkpoint: Per-consumer change feed checkpoints
    staging: Silver staging tables (stream MERGE and dynamic refresh)
    gold: Department aggregates and their snapshot pointers
    etl_run: Pipeline run log and task history
    data_quality: Data quality check results
    refresh_history: Dynamic table refresh history
    load_history: Raw zone file load history

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere, so the same schema runs on
    SQLite for local development and tests.

Usage:
    from models import Base, BronzeEmployee, StagedEmployee
    from models.base import ChangeAction, StageStatus

Relationships:
    - BronzeEmployee → BronzeChangeLog (every write appends a change)
    - BronzeChangeLog → ETLCheckpoint (consumers checkpoint on sequence)
    - StagedEmployee → gold aggregates (full recompute per snapshot)
    - PipelineRunLog / TaskRun / DataQualityResult correlate on run_id
"""

from models.base import Base
from models.raw_data import BronzeEmployee
from models.change_log import BronzeChangeLog
from models.checkpoint import ETLCheckpoint
from models.staging import StagedEmployee, DynamicStagedEmployee
from models.gold import (
    GoldSnapshot,
    EmployeeDemographicsByDepartment,
    SurveyResultsByDepartment,
    DynamicEmployeeDemographicsByDepartment,
    DynamicSurveyResultsByDepartment,
)
from models.etl_run import PipelineRunLog, TaskRun
from models.data_quality import DataQualityResult
from models.refresh_history import DynamicTableRefresh
from models.load_history import BronzeLoadHistory

__all__ = [
    "Base",
    "BronzeEmployee",
    "BronzeChangeLog",
    "ETLCheckpoint",
    "StagedEmployee",
    "DynamicStagedEmployee",
    "GoldSnapshot",
    "EmployeeDemographicsByDepartment",
    "SurveyResultsByDepartment",
    "DynamicEmployeeDemographicsByDepartment",
    "DynamicSurveyResultsByDepartment",
    "PipelineRunLog",
    "TaskRun",
    "DataQualityResult",
    "DynamicTableRefresh",
    "BronzeLoadHistory",
]
