from sqlalchemy import Column, String, Enum, DateTime, Float, Text, Index
from datetime import datetime
from models.base import Base, BigIntPK, StageStatus, TaskState


class PipelineRunLog(Base):
    """
    Append-only record of stage lifecycle events.

    Purpose:
    - Audit trail of every stage start, success and failure
    - Cross-stage correlation through run_id (the caller supplied etl_run_id)
    - Duration monitoring per stage

    Rows are written once and never updated or deleted.
    """
    __tablename__ = "ops_pipeline_run_log"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    run_id = Column(String(64), nullable=False, index=True)

    pipeline = Column(String(100), nullable=False)
    component = Column(String(100), nullable=False)
    stage = Column(String(100), nullable=False)
    status = Column(Enum(StageStatus), nullable=False)

    source = Column(String(500), nullable=True)
    target = Column(String(500), nullable=True)
    procedure = Column(String(200), nullable=True)

    duration_seconds = Column(Float, nullable=True)
    result = Column(Text, nullable=True)

    # Error tracking
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)

    logged_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_run_log_stage_status", "stage", "status", "logged_at"),
    )


class TaskRun(Base):
    """
    Task graph history: one row per executed or skipped task.

    Tasks whose predecessor failed are never invoked and leave no row.
    """
    __tablename__ = "ops_task_history"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    graph_name = Column(String(100), nullable=False)
    task_name = Column(String(100), nullable=False, index=True)
    run_id = Column(String(64), nullable=False, index=True)

    state = Column(Enum(TaskState), nullable=False)
    scheduled_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    return_value = Column(Text, nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
