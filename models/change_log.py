from sqlalchemy import Column, String, Enum, DateTime, BigInteger, Index
from datetime import datetime
from models.base import Base, BigIntPK, JSONType, ChangeAction


class BronzeChangeLog(Base):
    """
    Append-only log of every row change committed to the bronze table.

    Purpose:
    - Backing store of the change feed
    - ``sequence`` is the monotonically increasing offset consumers checkpoint on

    Design:
    - One row per raw row write, keyed by the raw row identity
    - ``before_payload`` / ``after_payload`` hold the business columns
      (NULL before an insert, NULL after a delete)
    """
    __tablename__ = "bronze_employee_changes"
    OBJECT_NAME = "bronze.employee_data_stream"

    sequence = Column(BigIntPK, primary_key=True, autoincrement=True)

    raw_record_id = Column(BigInteger, nullable=False, index=True)
    employee_number = Column(String(50), nullable=True)
    action = Column(Enum(ChangeAction), nullable=False)

    before_payload = Column(JSONType, nullable=True)
    after_payload = Column(JSONType, nullable=True)

    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_change_log_raw_sequence", "raw_record_id", "sequence"),
    )
