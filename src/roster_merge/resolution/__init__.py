"""Entity resolution: indexing, matching, conflicts, arbitration, merge, linkage."""

from roster_merge.resolution.arbitration import (
    ArbitrationOutcome,
    ConflictArbiter,
    SourceQualityReport,
    analyze_source_quality,
    apply_recency_rule,
    resolve_by_user,
)
from roster_merge.resolution.conflicts import ConflictDetector, classify_severity
from roster_merge.resolution.index import CandidateKeys, EntityIndex, IndexMatch
from roster_merge.resolution.linkage import LinkageFilter, LinkageOutcome, build_linkage_index
from roster_merge.resolution.matcher import RecordMatcher
from roster_merge.resolution.merge import EntityMergeBuilder, compute_completeness

__all__ = [
    "ArbitrationOutcome",
    "CandidateKeys",
    "ConflictArbiter",
    "ConflictDetector",
    "EntityIndex",
    "EntityMergeBuilder",
    "IndexMatch",
    "LinkageFilter",
    "LinkageOutcome",
    "RecordMatcher",
    "SourceQualityReport",
    "analyze_source_quality",
    "apply_recency_rule",
    "build_linkage_index",
    "classify_severity",
    "compute_completeness",
    "resolve_by_user",
]
