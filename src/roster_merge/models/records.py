"""Source records, entity identities and record groups."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Mapping

from roster_merge.models.enums import MatchMethod, RecommendedAction


@dataclass(frozen=True)
class SourceRef:
    """One (file, sheet) pair contributing rows of one data type."""

    source_file: str
    source_sheet: str
    data_type: str
    ingested_at: datetime

    def __post_init__(self) -> None:
        if self.ingested_at.tzinfo is None:
            object.__setattr__(self, "ingested_at", self.ingested_at.replace(tzinfo=UTC))

    @property
    def key(self) -> str:
        """Stable textual reference, ``file::sheet``."""
        return f"{self.source_file}::{self.source_sheet}"


@dataclass(frozen=True)
class SourceRecord:
    """One raw row in uniform shape. Immutable for the life of a run."""

    source_file: str
    source_sheet: str
    data_type: str
    fields: Mapping[str, Any]
    ingested_at: datetime
    row_number: int | None = None

    def __post_init__(self) -> None:
        # Freeze the field map so downstream phases cannot mutate it
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        # Naive timestamps are UTC
        if self.ingested_at.tzinfo is None:
            object.__setattr__(self, "ingested_at", self.ingested_at.replace(tzinfo=UTC))

    @property
    def source_key(self) -> str:
        return f"{self.source_file}::{self.source_sheet}"


@dataclass(frozen=True)
class EntityIdentity:
    """A known or provisional primary entity (an employee).

    ``entity_id`` is set for the pre-existing population and for incoming
    employees that duplicate one of them; it is ``None`` for employees first
    discovered in this run, which carry a ``provisional_id`` instead.
    """

    entity_id: str | None = None
    employee_number: str | None = None
    email: str | None = None
    cnps_number: str | None = None
    phone_number: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    provisional_id: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_new(self) -> bool:
        return self.entity_id is None

    @property
    def display_name(self) -> str | None:
        """Name used for indexing: first + last, else the full name."""
        parts = [p for p in (self.first_name, self.last_name) if p]
        if parts:
            return " ".join(str(p) for p in parts)
        return self.full_name

    @property
    def reference(self) -> str | None:
        """Identifier to attach when something links to this identity."""
        return self.entity_id or self.provisional_id

    @classmethod
    def from_fields(
        cls,
        fields: Mapping[str, Any],
        *,
        entity_id: str | None = None,
        provisional_id: str | None = None,
    ) -> EntityIdentity:
        """Build an identity from a canonical field map."""

        def text(name: str) -> str | None:
            value = fields.get(name)
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        return cls(
            entity_id=entity_id,
            employee_number=text("employeeNumber"),
            email=text("email"),
            cnps_number=text("cnpsNumber"),
            phone_number=text("phoneNumber"),
            first_name=text("firstName"),
            last_name=text("lastName"),
            full_name=text("fullName"),
            provisional_id=provisional_id,
            attributes=MappingProxyType(dict(fields)),
        )


@dataclass
class DuplicateAnnotation:
    """Set on a primary-type group that matches a pre-existing entity."""

    existing_entity_id: str
    existing_employee_number: str | None
    existing_display_name: str | None
    match_method: MatchMethod
    match_confidence: int
    recommended_action: RecommendedAction
    reasoning: str


@dataclass
class RecordMatch:
    """Records believed to describe one entity."""

    entity_id: str
    """Temporary id for this group during the run."""

    entity_type: str
    source_records: list[SourceRecord]
    match_strategy: MatchMethod
    match_confidence: int
    duplicate: DuplicateAnnotation | None = None

    @property
    def source_count(self) -> int:
        return len(self.source_records)
