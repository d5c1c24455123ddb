from sqlalchemy import Column, String, Integer, DateTime
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class DataQualityResult(Base):
    """
    Append-only result of one quality check execution.

    Checks are observational: a monitoring query aggregates these rows over
    time, nothing here ever blocks the pipeline.
    """
    __tablename__ = "ops_data_quality_results"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    check_name = Column(String(100), nullable=False, index=True)
    layer = Column(String(20), nullable=False)
    table_name = Column(String(200), nullable=False)
    issue_count = Column(Integer, nullable=False, default=0)
    sample_details = Column(JSONType, nullable=True)
    etl_run_id = Column(String(64), nullable=True)
    checked_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
