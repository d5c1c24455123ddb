"""
Transform raw bronze payloads into typed silver candidates
"""

from typing import Dict, Any, Optional, Union
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from schemas.employee import StagedEmployeeCandidate
from models.staging import SCORE_COLUMNS
import json
import logging
import math

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "employee_name",
    "gender",
    "city",
    "job_title",
    "department",
    "store_location",
    "business_unit",
    "division",
)

NUMERIC_FIELDS = ("age", "length_of_service", "hours_absent")

# Scores land in INTEGER columns
SCORE_MIN = -2 ** 31
SCORE_MAX = 2 ** 31 - 1


class EmployeeRecordParser:
    """
    Parse one raw employee payload into a staged candidate.

    Handles:
    - Parsing the engagement_survey blob (dict, JSON text, or JSON text
      wrapped in another JSON string)
    - Try-parse of each survey score: a missing, malformed or non-numeric
      score becomes None without touching its siblings
    - Null-safe coercion of the remaining columns
    """

    def parse(self, raw_record: Union[Dict[str, Any], Any]) -> StagedEmployeeCandidate:
        """
        Parse a raw record.

        Returns:
            StagedEmployeeCandidate; never raises for bad field values
        """
        if not isinstance(raw_record, dict):
            raw_record = dict(raw_record)

        survey_text = raw_record.get("engagement_survey")
        survey = self.parse_survey(survey_text)

        fields: Dict[str, Any] = {
            "employee_number": self._parse_key(raw_record.get("employee_number")),
            "engagement_survey": self._survey_text(survey_text),
        }
        for name in TEXT_FIELDS:
            fields[name] = self._parse_str(raw_record.get(name))
        for name in NUMERIC_FIELDS:
            fields[name] = self._parse_float(raw_record.get(name))
        for name in SCORE_COLUMNS:
            fields[name] = self.try_parse_score(survey.get(name))

        return StagedEmployeeCandidate(**fields)

    @staticmethod
    def parse_survey(value: Any) -> Dict[str, Any]:
        """Decode the survey blob; anything that is not an object yields {}"""
        for _ in range(2):
            if isinstance(value, dict):
                return value
            if not isinstance(value, str):
                break
            try:
                value = json.loads(value)
            except ValueError:
                logger.debug("Unparseable engagement_survey treated as empty")
                return {}
        return value if isinstance(value, dict) else {}

    @staticmethod
    def try_parse_score(value: Any) -> Optional[int]:
        """
        Best-effort integer coercion of a survey score.

        Numbers round half away from zero; booleans, containers, NaN/inf,
        non-numeric text and values too large for an INTEGER column give None.
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if SCORE_MIN <= value <= SCORE_MAX else None
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                return None
            value = repr(value)
        if not isinstance(value, str):
            return None
        try:
            number = Decimal(value.strip())
            if not number.is_finite():
                return None
            if not SCORE_MIN <= number <= SCORE_MAX:
                return None
            return int(number.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        except (InvalidOperation, ValueError):
            return None

    @staticmethod
    def _survey_text(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    @staticmethod
    def _parse_key(value: Any) -> Optional[str]:
        """Normalize the natural key to text ("123.0" -> "123")"""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, float):
            if math.isnan(value):
                return None
            if value.is_integer():
                return str(int(value))
        text = str(value).strip()
        return text or None

    @staticmethod
    def _parse_str(value: Any) -> Optional[str]:
        """Safely parse text value"""
        if value is None:
            return None
        if isinstance(value, float) and math.isnan(value):
            return None
        text = str(value).strip()
        return text or None

    @staticmethod
    def _parse_float(value: Any) -> Optional[float]:
        """Safely parse float value"""
        if value is None or value == "" or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (ValueError, TypeError):
            return None
        if math.isnan(number) or math.isinf(number):
            return None
        return number
