"""Data model for RosterMerge."""

from roster_merge.models.analysis_run import AnalysisRun
from roster_merge.models.base import Base
from roster_merge.models.conflicts import ConflictResolution, ConflictSource, FieldConflict
from roster_merge.models.entities import LinkedEntity, MergedEntity, Provenance, RejectedRecord
from roster_merge.models.enums import (
    INDEX_CASCADE,
    MATCH_CONFIDENCE,
    ConflictSeverity,
    ImportPhase,
    MatchMethod,
    RecommendedAction,
    ResolutionStrategy,
    ResolvedBy,
)
from roster_merge.models.groups import EntityTypeGroup, TargetSchema
from roster_merge.models.records import (
    DuplicateAnnotation,
    EntityIdentity,
    RecordMatch,
    SourceRecord,
    SourceRef,
)

__all__ = [
    "AnalysisRun",
    "Base",
    "INDEX_CASCADE",
    "MATCH_CONFIDENCE",
    "ConflictResolution",
    "ConflictSeverity",
    "ConflictSource",
    "DuplicateAnnotation",
    "EntityIdentity",
    "EntityTypeGroup",
    "FieldConflict",
    "ImportPhase",
    "LinkedEntity",
    "MatchMethod",
    "MergedEntity",
    "Provenance",
    "RecommendedAction",
    "RecordMatch",
    "RejectedRecord",
    "ResolutionStrategy",
    "ResolvedBy",
    "SourceRecord",
    "SourceRef",
    "TargetSchema",
]
