"""Entity-type groupings handed to the core by the classification service."""

from __future__ import annotations

from dataclasses import dataclass, field

from roster_merge.models.enums import INDEX_CASCADE, MatchMethod
from roster_merge.models.records import SourceRef


@dataclass(frozen=True)
class TargetSchema:
    """Fields the target table expects."""

    required_fields: tuple[str, ...] = ()
    optional_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntityTypeGroup:
    """One entity type with its contributing sources.

    ``priority`` orders the import (1 = first). The primary identity type is
    always processed first regardless of its declared priority.
    """

    entity_type: str
    display_name: str
    sources: tuple[SourceRef, ...]
    target_table: str | None = None
    target_schema: TargetSchema | None = None
    priority: int = 10
    dependencies: tuple[str, ...] = ()
    matching_keys: tuple[MatchMethod, ...] = field(default=INDEX_CASCADE)
    discriminator_fields: tuple[str, ...] = ()
    """Fields that must also agree for two records to match (e.g. ``period``)."""

    is_primary: bool = False
