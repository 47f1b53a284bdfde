"""Run summary, duplicate statistics and per-entity-type previews."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from roster_merge.models.entities import MergedEntity
from roster_merge.models.enums import RecommendedAction
from roster_merge.models.groups import EntityTypeGroup
from roster_merge.models.records import RecordMatch
from roster_merge.normalization.values import is_empty

PREVIEW_FIELDS_PER_CATEGORY = 4
PREVIEW_ENTITIES = 5
IMPORT_ENTITIES_PER_SECOND = 10
HIGH_COMPLETENESS = 90
MEDIUM_COMPLETENESS = 70


@dataclass
class DuplicateStats:
    total_duplicates: int = 0
    will_update: int = 0
    will_skip: int = 0
    requires_user_decision: int = 0
    new_entities: int = 0


@dataclass
class EntityPreview:
    entity_id: str
    description: str
    completeness: int
    fields: dict[str, dict[str, Any]]
    """Category → up to four field/value pairs."""


@dataclass
class EntityTypePreview:
    entity_type: str
    display_name: str
    target_table: str | None
    count: int
    average_completeness: int
    completeness_distribution: dict[str, int]
    entities_with_conflicts: int
    linked: int = 0
    rejected: int = 0
    samples: list[EntityPreview] = field(default_factory=list)


@dataclass
class RunSummary:
    """Counts surfaced to the operator at the end of an analysis."""

    run_id: str
    entity_types: int = 0
    total_records: int = 0
    total_entities: int = 0
    linked: int = 0
    rejected: int = 0
    auto_resolved_conflicts: int = 0
    review_conflicts: int = 0
    oracle_failures: int = 0
    duplicates: DuplicateStats = field(default_factory=DuplicateStats)
    source_quality: dict[str, int] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)
    estimated_import_time: str = ""


def describe_entity(data: dict[str, Any]) -> str:
    """One-line label: ``LASTNAME Firstname - EMP001`` or the best fallback."""

    def text(name: str) -> str | None:
        value = data.get(name)
        return None if is_empty(value) else str(value).strip()

    first, last, number = text("firstName"), text("lastName"), text("employeeNumber")
    name = " ".join(p for p in ((last.upper() if last else None), first) if p) or text("fullName")
    if name and number:
        return f"{name} - {number}"
    return name or number or text("email") or "unnamed entity"


def build_entity_preview(entity: MergedEntity) -> EntityPreview:
    fields = {
        category: {name: entity.data[name] for name in names[:PREVIEW_FIELDS_PER_CATEGORY]}
        for category, names in entity.provenance.categories.items()
    }
    return EntityPreview(
        entity_id=entity.entity_id,
        description=describe_entity(entity.data),
        completeness=entity.provenance.completeness,
        fields=fields,
    )


def build_type_preview(
    group: EntityTypeGroup,
    entities: Sequence[MergedEntity],
    *,
    linked: int = 0,
    rejected: int = 0,
) -> EntityTypePreview:
    """Aggregate completeness and conflict counts for one entity type."""
    scores = [e.provenance.completeness for e in entities]
    distribution = {
        "high": sum(s >= HIGH_COMPLETENESS for s in scores),
        "medium": sum(MEDIUM_COMPLETENESS <= s < HIGH_COMPLETENESS for s in scores),
        "low": sum(s < MEDIUM_COMPLETENESS for s in scores),
    }
    return EntityTypePreview(
        entity_type=group.entity_type,
        display_name=group.display_name,
        target_table=group.target_table,
        count=len(entities),
        average_completeness=int(sum(scores) / len(scores) + 0.5) if scores else 0,
        completeness_distribution=distribution,
        entities_with_conflicts=sum(e.has_open_conflicts for e in entities),
        linked=linked,
        rejected=rejected,
        samples=[build_entity_preview(e) for e in entities[:PREVIEW_ENTITIES]],
    )


def compute_duplicate_stats(matches: Iterable[RecordMatch]) -> DuplicateStats:
    stats = DuplicateStats()
    for record_match in matches:
        duplicate = record_match.duplicate
        if duplicate is None:
            stats.new_entities += 1
            continue
        stats.total_duplicates += 1
        if duplicate.recommended_action == RecommendedAction.UPDATE:
            stats.will_update += 1
        elif duplicate.recommended_action == RecommendedAction.SKIP:
            stats.will_skip += 1
        else:
            stats.requires_user_decision += 1
    return stats


def estimate_import_time(entity_count: int) -> str:
    """Rough import duration at ten entities per second."""
    seconds = math.ceil(entity_count / IMPORT_ENTITIES_PER_SECOND)
    if seconds < 60:
        return f"about {seconds} second(s)"
    return f"about {math.ceil(seconds / 60)} minute(s)"
