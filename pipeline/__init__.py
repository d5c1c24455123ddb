"""
ELT pipeline components for the bronze -> silver -> gold flow.

This package contains every stage of the incremental pipeline:

Modules:
    change_feed: Net row changes on bronze since a checkpoint, CAS checkpoint advance
    runner: Stage entry points (load_staging, materialize_aggregates, run_quality_checks)
    materializer: Department aggregates rebuilt as atomically swapped snapshots
    quality: Report-only null and range checks
    tasks: Task graph (conditional root, completion-chained children)
    scheduler: APScheduler jobs for the task graph, dynamic tables and quality checks
    dynamic_tables: Recompute-on-change silver/gold with a target lag
    monitoring: Run log writer and monitoring queries
    maintenance: Environment reset between runs

Subpackages:
    loaders: Bronze record/file loaders and the silver staging merger
    transformers: Raw payload -> typed silver candidate (survey parsing)

Architecture:
    Two strategies keep gold in step with bronze:

    1. Streams/tasks - the change feed drives a MERGE into silver, and gold
       is rebuilt after every successful silver load
    2. Dynamic tables - silver and gold are fully recomputed whenever bronze
       changed, checked at half the target lag

Usage:
    from pipeline.runner import PipelineRunner

    runner = PipelineRunner(session, settings.pipeline_config())
    result = await runner.load_staging(etl_run_id)
    print(result.message)

Error Handling:
    Stage failures are logged to the run log and raised as
    StageExecutionError; see core.exceptions for the hierarchy.
"""

__all__ = [
    "ChangeFeed",
    "PipelineRunner",
    "AggregateMaterializer",
    "QualityChecker",
    "TaskGraph",
    "PipelineScheduler",
    "DynamicTablePipeline",
    "PipelineMonitor",
    "BronzeLoader",
    "BronzeFileLoader",
    "UpsertMerger",
    "EmployeeRecordParser",
]
