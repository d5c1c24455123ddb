from sqlalchemy import Column, String, Float, Text, DateTime, Index
from datetime import datetime
from models.base import Base, BigIntPK

# Business columns carried from bronze into silver, in table order
RAW_COLUMNS = (
    "employee_number",
    "employee_name",
    "gender",
    "city",
    "job_title",
    "department",
    "store_location",
    "business_unit",
    "division",
    "age",
    "length_of_service",
    "hours_absent",
    "engagement_survey",
)


class BronzeEmployee(Base):
    """
    Raw employee records as ingested.

    Purpose:
    - Landing table for the batch loader
    - Source of the change feed (every write is mirrored into the change log)
    - Input of the data quality null check

    Design Decisions:
    - Surrogate ``id`` is the row identity; ``employee_number`` is the natural
      key but stays nullable because raw data may lack it
    - ``engagement_survey`` is kept as the raw semi-structured text
    """
    __tablename__ = "bronze_employee_data"
    OBJECT_NAME = "bronze.employee_data"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    employee_number = Column(String(50), nullable=True, index=True)
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

    # Metadata
    source_file = Column(String(500), nullable=True)
    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_bronze_employee_department", "department"),
    )

    def to_payload(self) -> dict:
        """Business columns as a plain dict (the change log payload)"""
        return {column: getattr(self, column) for column in RAW_COLUMNS}
