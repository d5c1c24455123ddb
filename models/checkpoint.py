from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, Index, BigInteger
from datetime import datetime
from models.base import Base, CheckpointStatus


class ETLCheckpoint(Base):
    """
    Tracks how far each consumer has read a change feed.

    Purpose:
    - Resume consumption from the last confirmed change
    - Avoid reprocessing changes that were already merged
    - Serialize consumers: advancing is a compare-and-swap on checkpoint_value

    Design:
    - One row per (feed, consumer)
    - checkpoint_value stores the last change log sequence confirmed
    """
    __tablename__ = "etl_checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Feed identification
    feed_name = Column(String(100), nullable=False)
    consumer_name = Column(String(100), nullable=False)

    # Checkpoint data
    checkpoint_value = Column(BigInteger, nullable=False, default=0)

    # Statistics
    last_run_at = Column(DateTime, nullable=True, index=True)
    last_success_at = Column(DateTime, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)

    total_runs = Column(Integer, default=0)
    total_records_processed = Column(BigInteger, default=0)
    last_records_processed = Column(Integer, default=0)

    # Status
    status = Column(Enum(CheckpointStatus), default=CheckpointStatus.PENDING, nullable=False)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Constraints
    __table_args__ = (
        Index("idx_checkpoint_feed_consumer", "feed_name", "consumer_name", unique=True),
    )
