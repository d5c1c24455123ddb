"""
Core utilities and configuration for the medallion ELT service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Settings from the environment and the explicit PipelineConfig
    database: Async engine and session factories
    exceptions: Custom exception hierarchy with error codes for the run log
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import StageExecutionError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Components receive their configuration explicitly
    config = settings.pipeline_config()
    async with async_session_maker() as session:
        runner = PipelineRunner(session, config)
"""

__all__ = [
    "settings",
    "PipelineConfig",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "ETLException",
    "ChangeFeedError",
    "CheckpointError",
    "CheckpointConflictError",
    "LoadError",
    "BronzeLoadError",
    "MergeError",
    "MaterializationError",
    "QualityCheckError",
    "StageExecutionError",
]
