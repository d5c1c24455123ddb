"""
Pydantic schemas for results returned by pipeline components
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import StageStatus, TaskState, RefreshAction


class MergeResult(BaseModel):
    """Counts produced by applying one changeset to the staging table"""
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0

    @property
    def rows_affected(self) -> int:
        return self.inserted + self.updated + self.deleted


class BronzeLoadResult(BaseModel):
    """Counts produced by one bronze load call"""
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0

    @property
    def changes_logged(self) -> int:
        return self.inserted + self.updated + self.deleted


class FileLoadResult(BaseModel):
    """Outcome of one raw zone refresh"""
    files_loaded: List[str] = Field(default_factory=list)
    files_skipped: List[str] = Field(default_factory=list)
    files_failed: Dict[str, str] = Field(default_factory=dict)
    rows_loaded: int = 0


class AggregateBuildResult(BaseModel):
    """Outcome of rebuilding one gold aggregate"""
    aggregate_name: str
    status: StageStatus
    row_count: int = 0
    duration_seconds: float = 0.0
    snapshot_id: Optional[str] = None
    message: str

    class Config:
        use_enum_values = True


class MaterializationSummary(BaseModel):
    """Outcome of rebuilding every gold aggregate of one strategy"""
    etl_run_id: str
    builds: List[AggregateBuildResult] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def error_count(self) -> int:
        return sum(1 for build in self.builds if build.status == StageStatus.FAILED.value)

    def summary_text(self) -> str:
        lines = [
            "=== GOLD LAYER BUILD SUMMARY ===",
            f"Total execution time: {self.duration_seconds:.2f} seconds",
            f"Errors encountered: {self.error_count}",
            "",
        ]
        lines.extend(f"{build.aggregate_name}: {build.message}" for build in self.builds)
        return "\n".join(lines)


class QualityCheckResult(BaseModel):
    """Outcome of one quality check run; findings are data, not errors"""
    check_name: str
    layer: str
    table_name: str
    issue_count: int
    sample_rows: List[Dict[str, Any]] = Field(default_factory=list)
    checked_at: datetime
    message: str


class StageResult(BaseModel):
    """
    What a stage entry point reports back to its caller.

    ``message`` is the human readable status; it always agrees with the
    status written to the pipeline run log.
    """
    run_id: str
    stage: str
    status: StageStatus
    message: str
    rows_affected: int = 0
    duration_seconds: float = 0.0
    error_code: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        use_enum_values = True

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCESS.value


class TaskOutcome(BaseModel):
    """Outcome of one task inside a task graph run"""
    task_name: str
    state: TaskState
    return_value: Optional[str] = None
    error_message: Optional[str] = None

    class Config:
        use_enum_values = True


class GraphRunResult(BaseModel):
    """Outcome of one task graph run; tasks never invoked are absent"""
    graph_name: str
    run_id: str
    outcomes: List[TaskOutcome] = Field(default_factory=list)

    def state_of(self, task_name: str) -> Optional[str]:
        for outcome in self.outcomes:
            if outcome.task_name == task_name:
                return outcome.state
        return None


class RefreshResult(BaseModel):
    """Outcome of one dynamic table refresh for one table"""
    name: str
    state: TaskState
    refresh_action: RefreshAction
    source_watermark: int
    row_count: Optional[int] = None
    message: str

    class Config:
        use_enum_values = True
