"""
Custom exceptions for the ELT pipeline with structured error context.

This module provides the exception hierarchy used at every stage boundary.
Each exception includes context information for debugging and monitoring,
and an ``error_code`` that is written to the pipeline run log when a stage
fails.

Exception Hierarchy:
    ETLException (base)
    ├── ChangeFeedError
    │   └── CheckpointError
    │       └── CheckpointConflictError
    ├── LoadError
    │   ├── BronzeLoadError
    │   └── MergeError
    ├── MaterializationError
    ├── QualityCheckError
    └── StageExecutionError

Malformed survey data is never an exception: the parser degrades it to NULL.
Quality check findings are data, not errors.
"""

from typing import Optional, Dict, Any, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from schemas.pipeline import StageResult


class ETLException(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (stage, table, run id, etc.)
        original_exception: The original exception that was caught (if any)
    """

    error_code = "ETL-000"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg


# ============================================================================
# Change Feed Errors
# ============================================================================

class ChangeFeedError(ETLException):
    """Base exception for change feed failures."""
    error_code = "CDC-100"


class CheckpointError(ChangeFeedError):
    """
    Exception raised when checkpoint management fails.

    Context should include:
        - feed_name: Name of the change feed
        - consumer_name: Name of the consuming stage
        - checkpoint_value: The checkpoint value involved
        - operation: Operation that failed (read, advance)
    """
    error_code = "CDC-110"


class CheckpointConflictError(CheckpointError):
    """
    Raised when a compare-and-swap advance finds the checkpoint already moved.

    Another consumer committed past the same changeset first; the caller must
    roll back the merge it was about to confirm.
    """
    error_code = "CDC-111"


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for data loading failures."""
    error_code = "LOD-300"


class BronzeLoadError(LoadError):
    """
    Exception raised when raw records or files cannot be loaded into bronze.

    Context should include:
        - file_name: Raw zone file (if file based)
        - record_index: Index of the offending record (if applicable)
    """
    error_code = "LOD-320"


class MergeError(LoadError):
    """
    Exception raised when applying a changeset to the staging table fails.

    Context should include:
        - employee_number: Key of the event being applied
        - action: Change action of the event
        - sequence: Change log sequence of the event
    """
    error_code = "LOD-330"


# ============================================================================
# Gold / Quality Errors
# ============================================================================

class MaterializationError(ETLException):
    """Raised when one or more gold aggregates could not be rebuilt."""
    error_code = "GLD-400"


class QualityCheckError(ETLException):
    """Raised when a quality check could not be executed (not for findings)."""
    error_code = "DQ-500"


# ============================================================================
# Stage Errors
# ============================================================================

class StageExecutionError(ETLException):
    """
    Raised by a stage entry point after its failure has been logged.

    Carries the failed ``StageResult`` so callers and the task graph can
    report the same outcome the run log recorded.
    """
    error_code = "STG-900"

    def __init__(
        self,
        message: str,
        result: "StageResult",
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.result = result
