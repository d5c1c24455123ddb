"""
Pydantic schemas for employee records as they move bronze -> silver
"""

from pydantic import BaseModel, validator
from typing import Optional, Dict, Any
from models.base import ChangeAction
import json
import math


def _missing_to_none(value: Any) -> Any:
    """Empty strings and NaN (pandas missing values) mean NULL"""
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


class RawEmployeeRecord(BaseModel):
    """
    Schema for one record handed to the bronze loader.

    Only shape is enforced here: every field is optional and values are kept
    close to what arrived, so malformed data still lands in bronze where the
    quality checks can see it.
    """

    employee_number: Optional[str] = None
    employee_name: Optional[str] = None
    gender: Optional[str] = None
    city: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    store_location: Optional[str] = None
    business_unit: Optional[str] = None
    division: Optional[str] = None
    age: Optional[float] = None
    length_of_service: Optional[float] = None
    hours_absent: Optional[float] = None
    engagement_survey: Optional[str] = None

    @validator("employee_number", pre=True)
    def normalize_employee_number(cls, v):
        """Integral numbers become their integer text ("123.0" -> "123")"""
        v = _missing_to_none(v)
        if v is None:
            return None
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v).strip()

    @validator("age", "length_of_service", "hours_absent", pre=True)
    def lenient_number(cls, v):
        """Unparseable numbers land as NULL rather than rejecting the row"""
        v = _missing_to_none(v)
        if v is None or isinstance(v, bool):
            return None
        try:
            number = float(v)
        except (TypeError, ValueError):
            return None
        return None if math.isnan(number) or math.isinf(number) else number

    @validator("engagement_survey", pre=True)
    def survey_as_text(cls, v):
        """Structured survey payloads are stored as their JSON text"""
        if isinstance(v, (dict, list)):
            return json.dumps(v)
        v = _missing_to_none(v)
        if v is not None and not isinstance(v, str):
            return str(v)
        return v

    @validator(
        "employee_name", "gender", "city", "job_title", "department",
        "store_location", "business_unit", "division", pre=True
    )
    def text_fields(cls, v):
        v = _missing_to_none(v)
        if v is not None and not isinstance(v, str):
            return str(v)
        return v


class StagedEmployeeCandidate(BaseModel):
    """
    Output of the transform stage: one silver row before lineage stamping.

    Scores are unconstrained on purpose; out-of-range values are reported by
    the quality checker, not rejected here.
    """

    employee_number: Optional[str] = None
    employee_name: Optional[str] = None
    gender: Optional[str] = None
    city: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    store_location: Optional[str] = None
    business_unit: Optional[str] = None
    division: Optional[str] = None
    age: Optional[float] = None
    length_of_service: Optional[float] = None
    hours_absent: Optional[float] = None
    engagement_survey: Optional[str] = None

    satisfaction_score: Optional[int] = None
    work_life_balance_score: Optional[int] = None
    career_growth_score: Optional[int] = None
    communication_score: Optional[int] = None
    teamwork_score: Optional[int] = None


class ChangeEvent(BaseModel):
    """
    Net change of one bronze row between two checkpoints.

    ``is_update`` mirrors the change feed's own update flag; the merger does
    not rely on it and decides insert vs update by key existence.
    """

    sequence: int
    raw_record_id: int
    employee_number: Optional[str] = None
    action: ChangeAction
    is_update: bool = False
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
