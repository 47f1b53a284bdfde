"""Analysis results and the import plan derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field
from pydantic_core import to_jsonable_python

from roster_merge.models.conflicts import FieldConflict
from roster_merge.models.entities import MergedEntity, RejectedRecord
from roster_merge.models.enums import RecommendedAction, ResolutionStrategy
from roster_merge.models.groups import EntityTypeGroup
from roster_merge.models.records import RecordMatch
from roster_merge.pipeline.summary import EntityTypePreview, RunSummary


def _jsonable_fallback(value: Any) -> Any:
    if isinstance(value, MappingProxyType):
        return dict(value)
    msg = f"Cannot serialize {type(value).__name__}"
    raise TypeError(msg)


def to_jsonable(value: Any) -> Any:
    """JSON-compatible form of dataclasses, enums, dates and decimals."""
    return to_jsonable_python(value, fallback=_jsonable_fallback)


class PlannedRecord(BaseModel):
    """One merged record as the sink receives it (provenance stripped)."""

    entity_id: str
    data: dict[str, Any]
    existing_entity_id: str | None = Field(
        default=None, description="Set when the record updates an existing employee"
    )
    linked_entity_ref: str | None = Field(
        default=None, description="Employee id (or provisional id) a non-primary record links to"
    )
    requires_review: bool = False


class PlannedEntityType(BaseModel):
    entity_type: str
    display_name: str
    target_table: str | None = None
    required_fields: list[str] = Field(default_factory=list)
    records: list[PlannedRecord] = Field(default_factory=list)


class ImportPlan(BaseModel):
    """Everything the import step needs, in dependency order."""

    run_id: str
    entity_types: list[PlannedEntityType] = Field(default_factory=list)
    rejected: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ImportPlan:
        return cls.model_validate(payload["import_plan"])


@dataclass
class AnalysisResult:
    """Outcome of one analysis run, before anything is imported."""

    run_id: str
    strategy: ResolutionStrategy
    country_code: str
    created_at: datetime
    groups: list[EntityTypeGroup] = field(default_factory=list)
    """Entity types in processing order."""

    matches: dict[str, list[RecordMatch]] = field(default_factory=dict)
    entities: dict[str, list[MergedEntity]] = field(default_factory=dict)
    auto_resolved: list[FieldConflict] = field(default_factory=list)
    requires_review: list[FieldConflict] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)
    previews: list[EntityTypePreview] = field(default_factory=list)
    summary: RunSummary | None = None

    def to_import_plan(self) -> ImportPlan:
        """Records to import per entity type.

        ``skip`` duplicates and rejected records are left out. Records with a
        conflict in requires-review or an ``ask_user`` duplicate decision are
        flagged ``requires_review``.
        """
        review_ids = {c.conflict_id for c in self.requires_review}
        planned: list[PlannedEntityType] = []
        for group in self.groups:
            duplicates = {
                m.entity_id: m.duplicate
                for m in self.matches.get(group.entity_type, [])
                if m.duplicate is not None
            }
            records: list[PlannedRecord] = []
            for entity in self.entities.get(group.entity_type, []):
                if entity.rejection_reason is not None:
                    continue
                duplicate = duplicates.get(entity.entity_id)
                if duplicate and duplicate.recommended_action == RecommendedAction.SKIP:
                    continue
                link = entity.linked_entity
                needs_review = any(
                    c.conflict_id in review_ids for c in entity.provenance.conflicts
                ) or bool(duplicate and duplicate.recommended_action == RecommendedAction.ASK_USER)
                records.append(
                    PlannedRecord(
                        entity_id=entity.entity_id,
                        data=to_jsonable(entity.data),
                        existing_entity_id=duplicate.existing_entity_id if duplicate else None,
                        linked_entity_ref=(link.entity_id or link.provisional_id) if link else None,
                        requires_review=needs_review,
                    )
                )
            schema = group.target_schema
            planned.append(
                PlannedEntityType(
                    entity_type=group.entity_type,
                    display_name=group.display_name,
                    target_table=group.target_table,
                    required_fields=list(schema.required_fields) if schema else [],
                    records=records,
                )
            )
        return ImportPlan(
            run_id=self.run_id,
            entity_types=planned,
            rejected=[to_jsonable(r) for r in self.rejected],
        )

    def to_payload(self) -> dict[str, Any]:
        """JSON form kept in the analysis store."""
        return {
            "run_id": self.run_id,
            "strategy": self.strategy.value,
            "country_code": self.country_code,
            "created_at": self.created_at.isoformat(),
            "summary": to_jsonable(self.summary),
            "previews": to_jsonable(self.previews),
            "requires_review": to_jsonable(self.requires_review),
            "rejected": to_jsonable(self.rejected),
            "import_plan": self.to_import_plan().model_dump(mode="json"),
        }
