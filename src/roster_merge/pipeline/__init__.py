"""Pipeline orchestration, progress, results, storage and sinks."""

from roster_merge.pipeline.orchestrator import ImportPipeline, ImportResult, order_entity_types
from roster_merge.pipeline.progress import ProgressEvent, ProgressReporter
from roster_merge.pipeline.result import AnalysisResult, ImportPlan, PlannedRecord
from roster_merge.pipeline.sink import ImportSink, JsonLinesSink
from roster_merge.pipeline.store import (
    AnalysisStore,
    InMemoryAnalysisStore,
    SqlAlchemyAnalysisStore,
)
from roster_merge.pipeline.summary import RunSummary

__all__ = [
    "AnalysisResult",
    "AnalysisStore",
    "ImportPipeline",
    "ImportPlan",
    "ImportResult",
    "ImportSink",
    "InMemoryAnalysisStore",
    "JsonLinesSink",
    "PlannedRecord",
    "ProgressEvent",
    "ProgressReporter",
    "RunSummary",
    "SqlAlchemyAnalysisStore",
    "order_entity_types",
]
