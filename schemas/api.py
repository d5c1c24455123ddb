"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime
from models.base import CheckpointStatus, StageStatus, TaskState, RefreshAction
import enum

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    request_id: str
    api_latency_ms: int
    data: T


class Strategy(str, enum.Enum):
    """Which silver/gold tables to read"""
    STREAM = "stream"
    DYNAMIC = "dynamic"


# ============================================================================
# Health Check Schemas
# ============================================================================

class CheckpointInfo(BaseModel):
    """Change feed checkpoint information for health check"""
    feed_name: str
    consumer_name: str
    status: CheckpointStatus
    checkpoint_value: int
    last_run_at: Optional[datetime]
    last_success_at: Optional[datetime]
    last_failure_at: Optional[datetime]
    total_runs: int = 0
    total_records_processed: int
    last_records_processed: int
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    checkpoints: List[CheckpointInfo] = Field(default_factory=list)
    pending_changes: Optional[bool] = None
    total_consumers: int = 0
    failed_consumers: int = 0
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        failed = values.get("failed_consumers", 0)
        total = values.get("total_consumers", 0)

        if total == 0 or failed == 0:
            return "healthy"
        elif failed < total:
            return "degraded"
        else:
            return "unhealthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "pending_changes": False,
                "total_consumers": 1,
                "failed_consumers": 0,
                "checkpoints": [
                    {
                        "feed_name": "bronze.employee_data_stream",
                        "consumer_name": "silver_staging",
                        "status": "success",
                        "checkpoint_value": 1250,
                        "last_run_at": "2024-01-15T06:00:00Z",
                        "last_success_at": "2024-01-15T06:00:00Z",
                        "total_records_processed": 1250,
                        "last_records_processed": 25
                    }
                ]
            }
        }


# ============================================================================
# Pipeline Schemas
# ============================================================================

class RunStageRequest(BaseModel):
    """Body of a stage invocation; a run id is generated when omitted"""
    etl_run_id: Optional[str] = Field(None, max_length=64)
    full_refresh: bool = Field(False, description="load_staging only: reload silver from all of bronze")


class DynamicRefreshRequest(BaseModel):
    force: bool = False


class RunLogEntry(BaseModel):
    """One pipeline run log event"""
    id: int
    run_id: str
    pipeline: str
    component: str
    stage: str
    status: StageStatus
    source: Optional[str] = None
    target: Optional[str] = None
    procedure: Optional[str] = None
    duration_seconds: Optional[float] = None
    result: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    logged_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


class TaskRunEntry(BaseModel):
    """One task history row"""
    graph_name: str
    task_name: str
    run_id: str
    state: TaskState
    scheduled_at: datetime
    completed_at: Optional[datetime] = None
    return_value: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class RunDetailResponse(BaseModel):
    """Everything recorded under one correlation id"""
    run_id: str
    events: List[RunLogEntry]
    tasks: List[TaskRunEntry] = Field(default_factory=list)


class StageSummaryEntry(BaseModel):
    stage: str
    status: str
    count: int
    avg_duration_seconds: Optional[float] = None
    last_logged_at: Optional[datetime] = None


class QualitySummaryEntry(BaseModel):
    check_name: str
    table_name: str
    runs: int
    total_issues: int
    last_checked_at: Optional[datetime] = None


class PipelineSummaryResponse(BaseModel):
    """Stage and quality check activity over a time window"""
    days: int
    stages: List[StageSummaryEntry]
    quality_checks: List[QualitySummaryEntry] = Field(default_factory=list)


class RefreshHistoryEntry(BaseModel):
    name: str
    refresh_id: str
    state: TaskState
    refresh_action: RefreshAction
    source_watermark: int
    row_count: Optional[int] = None
    duration_seconds: Optional[float] = None
    state_message: Optional[str] = None
    data_timestamp: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


# ============================================================================
# Gold Schemas
# ============================================================================

class DemographicsRow(BaseModel):
    """One department of the demographics aggregate"""
    department: Optional[str]
    num_employees: int
    avg_age: Optional[float]
    avg_length_of_service: Optional[float]
    num_male: int
    num_female: int
    num_other_gender: int
    snapshot_id: str
    materialized_at: datetime
    source_object: str
    etl_run_id: Optional[str] = None

    class Config:
        from_attributes = True


class SurveyResultsRow(BaseModel):
    """One department of the survey results aggregate"""
    department: Optional[str]
    avg_satisfaction_score: Optional[float]
    avg_work_life_balance_score: Optional[float]
    avg_career_growth_score: Optional[float]
    avg_communication_score: Optional[float]
    avg_teamwork_score: Optional[float]
    num_responses: int
    snapshot_id: str
    materialized_at: datetime
    source_object: str
    etl_run_id: Optional[str] = None

    class Config:
        from_attributes = True


# ============================================================================
# Quality Schemas
# ============================================================================

class QualityResultEntry(BaseModel):
    """One stored quality check result"""
    id: int
    check_name: str
    layer: str
    table_name: str
    issue_count: int
    sample_details: Optional[Dict[str, Any]] = None
    etl_run_id: Optional[str] = None
    checked_at: datetime

    class Config:
        from_attributes = True
