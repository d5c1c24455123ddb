from sqlalchemy import Column, String, Integer, Enum, DateTime, Text, Index
from datetime import datetime
from models.base import Base, BigIntPK, LoadStatus


class BronzeLoadHistory(Base):
    """
    One row per raw zone file the loader attempted.

    A file whose name and content hash were already LOADED is skipped on the
    next refresh, so re-running the loader over the same raw zone is a no-op.
    """
    __tablename__ = "bronze_load_history"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    file_name = Column(String(500), nullable=False)
    content_hash = Column(String(64), nullable=False)  # SHA-256 of the file bytes

    status = Column(Enum(LoadStatus), nullable=False)
    row_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    loaded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_load_history_file_hash", "file_name", "content_hash"),
    )
