"""
Pydantic schemas for data validation and serialization.

Schemas:
    employee: Raw bronze records, staged silver candidates and change events
    pipeline: Results returned by pipeline components (merge, build, stage, task)
    api: API endpoint request/response schemas

Usage:
    from schemas.employee import RawEmployeeRecord, ChangeEvent
    from schemas.pipeline import StageResult
    from schemas.api import HealthCheckResponse

Validation:
    Raw records are validated for shape only: every field is optional and
    unparseable numbers land as NULL, so malformed data still reaches bronze
    where the quality checks report it.
"""

__all__ = [
    "RawEmployeeRecord",
    "StagedEmployeeCandidate",
    "ChangeEvent",
    "MergeResult",
    "StageResult",
    "HealthCheckResponse",
]
