from sqlalchemy import Column, String, Integer, Enum, DateTime, BigInteger, Float, Text
from datetime import datetime
from models.base import Base, BigIntPK, TaskState, RefreshAction


class DynamicTableRefresh(Base):
    """
    Refresh history of the dynamic (recompute-on-change) tables.

    ``source_watermark`` is the bronze change log sequence the refresh read up
    to; the next refresh is only needed once the log moves past it.
    ``data_timestamp`` is the moment the refreshed data reflects, used to
    measure lag against the target.
    """
    __tablename__ = "ops_dynamic_table_refresh_history"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, index=True)
    refresh_id = Column(String(64), nullable=False, index=True)

    state = Column(Enum(TaskState), nullable=False)
    refresh_action = Column(Enum(RefreshAction), nullable=False)
    source_watermark = Column(BigInteger, nullable=False, default=0)
    row_count = Column(Integer, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    state_message = Column(Text, nullable=True)

    data_timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
