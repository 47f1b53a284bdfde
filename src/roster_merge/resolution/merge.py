"""Entity Merge Builder: one canonical record per record group.

For every field seen in any source:

1. a resolved conflict on the field supplies the value and its source;
2. otherwise the most recently ingested non-empty value wins, the earliest
   arrived source winning timestamp ties.

Completeness is ``70 × required present + 30 × optional present`` against
the target schema, or the non-empty share of observed fields without one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from roster_merge.models.conflicts import FieldConflict
from roster_merge.models.entities import MergedEntity, Provenance
from roster_merge.models.groups import TargetSchema
from roster_merge.models.records import RecordMatch, SourceRecord, SourceRef
from roster_merge.normalization.values import is_empty

logger = logging.getLogger(__name__)

REQUIRED_WEIGHT = 70
OPTIONAL_WEIGHT = 30

# Display categories, in presentation order. "other" catches the rest.
FIELD_CATEGORIES: dict[str, frozenset[str]] = {
    "personal_identity": frozenset({
        "employeeNumber",
        "firstName",
        "lastName",
        "fullName",
        "dateOfBirth",
        "placeOfBirth",
        "gender",
        "nationality",
        "maritalStatus",
    }),
    "contact": frozenset({
        "email",
        "phoneNumber",
        "address",
        "city",
        "emergencyContact",
    }),
    "employment": frozenset({
        "hireDate",
        "startDate",
        "endDate",
        "position",
        "jobTitle",
        "department",
        "contractType",
        "reportingManagerId",
        "status",
    }),
    "compensation": frozenset({
        "baseSalary",
        "salary",
        "grossSalary",
        "netSalary",
        "amount",
        "bonus",
        "allowances",
    }),
    "statutory_tax": frozenset({
        "cnpsNumber",
        "cnpsEmployee",
        "cnpsEmployer",
        "taxId",
        "tax",
        "bankAccountNumber",
        "iban",
    }),
}


def field_category(name: str) -> str:
    for category, fields in FIELD_CATEGORIES.items():
        if name in fields:
            return category
    if name.endswith(("Salary", "Amount")):
        return "compensation"
    return "other"


def categorize_fields(names: Iterable[str]) -> dict[str, list[str]]:
    """Group field names by display category, dropping empty categories."""
    grouped: dict[str, list[str]] = {c: [] for c in (*FIELD_CATEGORIES, "other")}
    for name in names:
        grouped[field_category(name)].append(name)
    return {c: fields for c, fields in grouped.items() if fields}


def compute_completeness(
    data: Mapping[str, Any],
    schema: TargetSchema | None = None,
    observed_fields: Iterable[str] | None = None,
) -> int:
    """Score 0-100 of how complete ``data`` is.

    Args:
        data: Merged field values.
        schema: Target schema; enables the weighted formula.
        observed_fields: Every field seen in the sources (default: ``data``'s keys).

    Returns:
        The score rounded half up to an integer.
    """

    def present(name: str) -> bool:
        return not is_empty(data.get(name))

    if schema is None:
        observed = list(dict.fromkeys(observed_fields if observed_fields is not None else data))
        if not observed:
            return 0
        return int(100 * sum(present(f) for f in observed) / len(observed) + 0.5)

    required, optional = schema.required_fields, schema.optional_fields
    required_part = (
        REQUIRED_WEIGHT * sum(present(f) for f in required) / len(required)
        if required
        else REQUIRED_WEIGHT
    )
    optional_part = (
        OPTIONAL_WEIGHT * sum(present(f) for f in optional) / len(optional)
        if optional
        else OPTIONAL_WEIGHT
    )
    return int(required_part + optional_part + 0.5)


def _origins(records: Sequence[SourceRecord]) -> tuple[SourceRef, ...]:
    refs: dict[str, SourceRef] = {}
    for record in records:
        refs.setdefault(
            record.source_key,
            SourceRef(
                source_file=record.source_file,
                source_sheet=record.source_sheet,
                data_type=record.data_type,
                ingested_at=record.ingested_at,
            ),
        )
    return tuple(refs.values())


class EntityMergeBuilder:
    """Builds ``MergedEntity`` objects from record groups and their conflicts."""

    def build(
        self,
        record_match: RecordMatch,
        conflicts: Sequence[FieldConflict] = (),
        *,
        schema: TargetSchema | None = None,
    ) -> MergedEntity:
        """Merge every source of ``record_match`` into one record.

        Args:
            record_match: The group to merge.
            conflicts: Arbitrated conflicts of this group.
            schema: Target schema for completeness.

        Returns:
            The merged entity with field-level provenance.
        """
        own_conflicts = tuple(c for c in conflicts if c.entity_id == record_match.entity_id)
        resolutions = {
            c.field: c.resolution for c in own_conflicts if c.resolved and c.resolution is not None
        }

        observed: list[str] = []
        for record in record_match.source_records:
            for name in record.fields:
                if name not in observed:
                    observed.append(name)

        data: dict[str, Any] = {}
        sources: dict[str, str] = {}
        for name in observed:
            resolution = resolutions.get(name)
            if resolution is not None:
                data[name] = resolution.chosen_value
                sources[name] = resolution.chosen_source
                continue

            winner: SourceRecord | None = None
            for record in record_match.source_records:
                if is_empty(record.fields.get(name)):
                    continue
                # Strictly newer only: the first arrival keeps timestamp ties
                if winner is None or record.ingested_at > winner.ingested_at:
                    winner = record
            if winner is not None:
                data[name] = winner.fields[name]
                sources[name] = winner.source_key

        provenance = Provenance(
            sources=sources,
            conflicts=own_conflicts,
            completeness=compute_completeness(data, schema, observed),
            categories=categorize_fields(data),
        )
        return MergedEntity(
            entity_id=record_match.entity_id,
            entity_type=record_match.entity_type,
            data=data,
            provenance=provenance,
            origins=_origins(record_match.source_records),
        )

    def build_all(
        self,
        matches: Sequence[RecordMatch],
        conflicts: Sequence[FieldConflict] = (),
        *,
        schema: TargetSchema | None = None,
    ) -> list[MergedEntity]:
        by_entity: dict[str, list[FieldConflict]] = {}
        for conflict in conflicts:
            by_entity.setdefault(conflict.entity_id, []).append(conflict)
        entities = [
            self.build(m, by_entity.get(m.entity_id, ()), schema=schema) for m in matches
        ]
        logger.debug("Built %d merged entit(ies)", len(entities))
        return entities
