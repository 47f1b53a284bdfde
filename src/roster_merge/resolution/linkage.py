"""Linkage & Rejection Filter for non-primary entity types.

Every merged record is either linked to exactly one employee of the linkage
index or rejected with a reason naming its best identifying value. A
rejection is final for the run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from roster_merge.models.entities import LinkedEntity, MergedEntity, RejectedRecord
from roster_merge.models.enums import RecommendedAction
from roster_merge.models.records import DuplicateAnnotation, EntityIdentity
from roster_merge.normalization.values import is_empty
from roster_merge.resolution.index import EntityIndex

logger = logging.getLogger(__name__)

UNKNOWN_IDENTIFIER = "unknown identifier"

# Temporal keys that identify payroll-like rows when no person is named
_TEMPORAL_FIELDS = ("period", "payPeriod", "month", "date", "startDate")


def build_linkage_index(
    existing: Iterable[EntityIdentity],
    primary_entities: Iterable[MergedEntity],
    duplicates: Mapping[str, DuplicateAnnotation] | None = None,
) -> EntityIndex:
    """Index the existing population plus this run's primary entities.

    The existing population goes in first and keeps its keys. Entities
    flagged as ``skip`` duplicates are left out; ``update`` and ``ask_user``
    duplicates are indexed under the existing entity's id; everything else
    gets a provisional id.
    """
    duplicates = duplicates or {}
    index = EntityIndex()
    for identity in existing:
        index.index_entity(identity)

    for entity in primary_entities:
        duplicate = duplicates.get(entity.entity_id)
        if duplicate is None:
            identity = EntityIdentity.from_fields(entity.data, provisional_id=entity.entity_id)
        elif duplicate.recommended_action == RecommendedAction.SKIP:
            continue
        else:
            identity = EntityIdentity.from_fields(
                entity.data, entity_id=duplicate.existing_entity_id
            )
        index.index_entity(identity)
    return index


def _text(data: Mapping[str, Any], name: str) -> str | None:
    value = data.get(name)
    return None if is_empty(value) else str(value).strip()


def describe_identifier(data: Mapping[str, Any]) -> str:
    """Best identifying value of a record, for rejection messages.

    Order: employee number › email › display name › first + last name ›
    temporal key › a fixed fallback.
    """
    employee_ref = _text(data, "employee")
    ref_is_token = bool(employee_ref) and "@" not in employee_ref and " " not in employee_ref

    number = _text(data, "employeeNumber") or _text(data, "employeeId")
    if number is None and ref_is_token:
        number = employee_ref
    if number:
        return f"employee number '{number}'"

    email = _text(data, "email") or (employee_ref if employee_ref and "@" in employee_ref else None)
    if email:
        return f"email '{email}'"

    name = _text(data, "fullName") or _text(data, "employeeName")
    if name is None and employee_ref and len(employee_ref.split()) > 1:
        name = employee_ref
    if name:
        return f"name '{name}'"

    first, last = _text(data, "firstName"), _text(data, "lastName")
    if first or last:
        return f"name '{' '.join(p for p in (first, last) if p)}'"

    for temporal in _TEMPORAL_FIELDS:
        value = _text(data, temporal)
        if value:
            return f"{temporal} '{value}'"

    return UNKNOWN_IDENTIFIER


@dataclass
class LinkageOutcome:
    """Every input entity lands in exactly one of the two lists."""

    linked: list[MergedEntity] = field(default_factory=list)
    rejected: list[MergedEntity] = field(default_factory=list)
    rejections: list[RejectedRecord] = field(default_factory=list)

    @property
    def entities(self) -> list[MergedEntity]:
        return [*self.linked, *self.rejected]


class LinkageFilter:
    """Attaches non-primary merged records to employees of ``index``."""

    def __init__(self, index: EntityIndex) -> None:
        self._index = index

    def link(self, entities: Sequence[MergedEntity]) -> LinkageOutcome:
        outcome = LinkageOutcome()
        for entity in entities:
            hit = self._index.find_match(entity.data)
            if hit is not None:
                identity = hit.entity
                outcome.linked.append(
                    replace(
                        entity,
                        linked_entity=LinkedEntity(
                            entity_id=identity.entity_id,
                            provisional_id=identity.provisional_id,
                            employee_number=identity.employee_number,
                            display_name=identity.display_name,
                            is_new=identity.is_new,
                            match_method=hit.method,
                            match_confidence=hit.confidence,
                        ),
                    )
                )
                continue

            reason = f"No employee found for {describe_identifier(entity.data)}"
            origin = entity.origins[0] if entity.origins else None
            outcome.rejected.append(replace(entity, rejection_reason=reason))
            outcome.rejections.append(
                RejectedRecord(
                    entity_type=entity.entity_type,
                    entity_type_data=dict(entity.data),
                    source_file=origin.source_file if origin else "",
                    source_sheet=origin.source_sheet if origin else "",
                    reason=reason,
                )
            )
            logger.debug("Rejected %s %s: %s", entity.entity_type, entity.entity_id, reason)

        logger.info(
            "Linked %d record(s), rejected %d", len(outcome.linked), len(outcome.rejected)
        )
        return outcome
