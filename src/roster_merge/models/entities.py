"""Merged entities, linkage annotations and rejections."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from roster_merge.models.conflicts import FieldConflict
from roster_merge.models.enums import MatchMethod
from roster_merge.models.records import SourceRef


@dataclass(frozen=True)
class Provenance:
    """Where every merged field came from."""

    sources: dict[str, str]
    """Field name → ``file::sheet`` of the source that supplied it."""

    conflicts: tuple[FieldConflict, ...]
    completeness: int
    """0-100."""

    categories: dict[str, list[str]]
    """Display category → fields. Presentation only."""


@dataclass(frozen=True)
class LinkedEntity:
    """Attachment of a non-primary record to a known employee."""

    entity_id: str | None
    provisional_id: str | None
    employee_number: str | None
    display_name: str | None
    is_new: bool
    match_method: MatchMethod
    match_confidence: int


@dataclass(frozen=True)
class MergedEntity:
    """One canonical record built from a ``RecordMatch``. Read-only downstream."""

    entity_id: str
    entity_type: str
    data: dict[str, Any]
    provenance: Provenance
    origins: tuple[SourceRef, ...] = field(default=())
    linked_entity: LinkedEntity | None = None
    rejection_reason: str | None = None

    @property
    def has_open_conflicts(self) -> bool:
        """True when a conflict is unresolved or awaits user confirmation."""
        return any(
            not c.resolved
            or (c.resolution is not None and c.resolution.requires_user_confirmation)
            for c in self.provenance.conflicts
        )


@dataclass(frozen=True)
class RejectedRecord:
    """Terminal outcome for a record that could not be linked."""

    entity_type: str
    entity_type_data: dict[str, Any]
    source_file: str
    source_sheet: str
    reason: str
