"""Field-level conflicts and their resolutions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from roster_merge.models.enums import ConflictSeverity, ResolvedBy


@dataclass(frozen=True)
class ConflictSource:
    """One observed value for the conflicting field."""

    source_file: str
    source_sheet: str
    value: Any
    observed_at: datetime

    @property
    def source_key(self) -> str:
        return f"{self.source_file}::{self.source_sheet}"


@dataclass(frozen=True)
class ConflictResolution:
    """Outcome attached 1:1 to a resolved conflict."""

    chosen_source: str
    """``file::sheet`` of the winning source."""

    chosen_value: Any
    confidence: int
    requires_user_confirmation: bool
    resolved_by: ResolvedBy
    reasoning: str = ""


@dataclass(frozen=True)
class FieldConflict:
    """Disagreement between >= 2 sources on one field of one record group."""

    conflict_id: str
    entity_id: str
    entity_type: str
    field: str
    sources: tuple[ConflictSource, ...]
    severity: ConflictSeverity
    resolved: bool = False
    resolution: ConflictResolution | None = None
    notes: tuple[str, ...] = field(default=())

    def source_keys(self) -> list[str]:
        return [s.source_key for s in self.sources]
