"""JSON manifests describing already-classified sources, and the existing population.

A manifest is what the classification service hands over: entity types with
their target schema and contributing sources, each source carrying its raw
rows.

    {
      "country_code": "CI",
      "entity_types": [
        {
          "entity_type": "employee",
          "display_name": "Employees",
          "is_primary": true,
          "target_schema": {"required_fields": ["employeeNumber"]},
          "sources": [
            {"file": "paie.xlsx", "sheet": "Salariés",
             "ingested_at": "2024-06-01T00:00:00Z", "rows": [{"Matricule": "EMP001"}]}
          ]
        }
      ]
    }
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter

from roster_merge.models.enums import INDEX_CASCADE, MatchMethod
from roster_merge.models.groups import EntityTypeGroup, TargetSchema
from roster_merge.models.records import EntityIdentity, SourceRecord, SourceRef
from roster_merge.normalization.records import SourceRecordNormalizer


class ManifestSchema(BaseModel):
    required_fields: list[str] = Field(default_factory=list)
    optional_fields: list[str] = Field(default_factory=list)


class ManifestSource(BaseModel):
    file: str
    sheet: str
    ingested_at: datetime
    data_type: str | None = Field(
        default=None, description="Defaults to the enclosing entity type"
    )
    rows: list[dict[str, Any]] = Field(default_factory=list)


class ManifestEntityType(BaseModel):
    entity_type: str
    display_name: str | None = None
    is_primary: bool = False
    priority: int = 10
    target_table: str | None = None
    target_schema: ManifestSchema | None = None
    dependencies: list[str] = Field(default_factory=list)
    matching_keys: list[MatchMethod] = Field(default_factory=lambda: list(INDEX_CASCADE))
    discriminator_fields: list[str] = Field(default_factory=list)
    sources: list[ManifestSource] = Field(default_factory=list)


class Manifest(BaseModel):
    country_code: str | None = None
    entity_types: list[ManifestEntityType]


@dataclass
class LoadedManifest:
    country_code: str | None
    groups: list[EntityTypeGroup]
    records_by_type: dict[str, list[SourceRecord]]


def build_inputs(
    manifest: Manifest, normalizer: SourceRecordNormalizer | None = None
) -> LoadedManifest:
    """Turn a manifest into entity-type groups and normalized records."""
    normalizer = normalizer or SourceRecordNormalizer()
    groups: list[EntityTypeGroup] = []
    records_by_type: dict[str, list[SourceRecord]] = {}

    for entry in manifest.entity_types:
        refs: list[SourceRef] = []
        records = records_by_type.setdefault(entry.entity_type, [])
        for source in entry.sources:
            ref = SourceRef(
                source_file=source.file,
                source_sheet=source.sheet,
                data_type=source.data_type or entry.entity_type,
                ingested_at=source.ingested_at,
            )
            refs.append(ref)
            records.extend(normalizer.normalize_rows(source.rows, ref))

        schema = entry.target_schema
        groups.append(
            EntityTypeGroup(
                entity_type=entry.entity_type,
                display_name=entry.display_name or entry.entity_type,
                sources=tuple(refs),
                target_table=entry.target_table,
                target_schema=(
                    TargetSchema(
                        required_fields=tuple(schema.required_fields),
                        optional_fields=tuple(schema.optional_fields),
                    )
                    if schema
                    else None
                ),
                priority=entry.priority,
                dependencies=tuple(entry.dependencies),
                matching_keys=tuple(entry.matching_keys),
                discriminator_fields=tuple(entry.discriminator_fields),
                is_primary=entry.is_primary,
            )
        )

    return LoadedManifest(
        country_code=manifest.country_code, groups=groups, records_by_type=records_by_type
    )


def load_manifest(path: Path) -> LoadedManifest:
    manifest = Manifest.model_validate_json(path.read_text(encoding="utf-8"))
    return build_inputs(manifest)


class ExistingEmployee(BaseModel):
    """One employee of the current system of record."""

    id: str
    fields: dict[str, Any] = Field(default_factory=dict)


_EXISTING_LIST = TypeAdapter(list[ExistingEmployee])


def load_existing(path: Path) -> list[EntityIdentity]:
    """Read the pre-existing population: a JSON list of ``{"id", "fields"}`` objects."""
    normalizer = SourceRecordNormalizer()
    entries = _EXISTING_LIST.validate_json(path.read_text(encoding="utf-8"))
    return [
        EntityIdentity.from_fields(normalizer.normalize_fields(e.fields), entity_id=e.id)
        for e in entries
    ]
