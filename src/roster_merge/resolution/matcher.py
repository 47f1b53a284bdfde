"""Record Matcher: group incoming records that describe the same entity.

Matching runs the index cascade among the incoming records themselves.
Records sharing a key end up in one group (union-find), with two guards:

- two groups only join on a weaker key when no stronger key has values in
  both groups that never overlap;
- two groups carrying different employee numbers are never combined.

A group's confidence is that of the weakest key used to assemble it.
Primary-type groups are then checked against the pre-existing population
to flag duplicates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any
from uuid import uuid4

from roster_merge.config import settings
from roster_merge.models.enums import (
    INDEX_CASCADE,
    MATCH_CONFIDENCE,
    MatchMethod,
    RecommendedAction,
)
from roster_merge.models.groups import EntityTypeGroup
from roster_merge.models.records import DuplicateAnnotation, RecordMatch, SourceRecord
from roster_merge.normalization.values import is_empty, normalize_value
from roster_merge.resolution.index import CandidateKeys, EntityIndex

logger = logging.getLogger(__name__)


def first_values(records: Sequence[SourceRecord]) -> dict[str, Any]:
    """First non-empty value per field across ``records``, in record order."""
    fields: dict[str, Any] = {}
    for record in records:
        for name, value in record.fields.items():
            if name not in fields and not is_empty(value):
                fields[name] = value
    return fields


def differing_fields(candidate: Mapping[str, Any], existing: Mapping[str, Any]) -> list[str]:
    """Fields of ``candidate`` whose value does not normalize to the existing one."""
    return [
        name
        for name, value in candidate.items()
        if normalize_value(value) != normalize_value(existing.get(name))
    ]


class _Forest:
    """Union-find over record positions, tracking each set's key values."""

    def __init__(self, keys: Sequence[CandidateKeys]) -> None:
        self._parent = list(range(len(keys)))
        self._values: list[dict[MatchMethod, set[str]]] = [
            {m: set(k.values_for(m)) for m in INDEX_CASCADE} for k in keys
        ]
        self._weakest: list[MatchMethod | None] = [None] * len(keys)

    def find(self, i: int) -> int:
        while self._parent[i] != i:
            self._parent[i] = self._parent[self._parent[i]]
            i = self._parent[i]
        return i

    def union(
        self, a: int, b: int, method: MatchMethod, stronger: Sequence[MatchMethod] = ()
    ) -> bool:
        """Merge the sets of ``a`` and ``b`` joined on ``method``.

        Refused when the sets would hold two employee numbers, or when both
        sets carry values for a stronger key and those values never overlap.
        """
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return True
        va, vb = self._values[ra], self._values[rb]
        if len(va[MatchMethod.EMPLOYEE_NUMBER] | vb[MatchMethod.EMPLOYEE_NUMBER]) > 1:
            return False
        for m in stronger:
            if va[m] and vb[m] and va[m].isdisjoint(vb[m]):
                return False
        self._parent[rb] = ra
        for m, values in vb.items():
            va[m] |= values
        candidates = [m for m in (self._weakest[ra], self._weakest[rb], method) if m is not None]
        self._weakest[ra] = min(candidates, key=lambda m: MATCH_CONFIDENCE[m])
        return True

    def weakest(self, i: int) -> MatchMethod | None:
        return self._weakest[self.find(i)]


class RecordMatcher:
    """Groups ``SourceRecord``s of one entity type into ``RecordMatch``es.

    Usage:
        matcher = RecordMatcher()
        matches = matcher.match(records, group, existing=existing_index)
    """

    def __init__(
        self,
        *,
        ask_user_below: int | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the matcher.

        Args:
            ask_user_below: Duplicate matches under this confidence are
                ``ask_user`` (default: settings.duplicate_ask_user_below).
            id_factory: Generates temporary group ids (default: uuid4).
        """
        self._ask_user_below = (
            ask_user_below if ask_user_below is not None else settings.duplicate_ask_user_below
        )
        self._new_id = id_factory or (lambda: str(uuid4()))

    def match(
        self,
        records: Sequence[SourceRecord],
        group: EntityTypeGroup,
        *,
        existing: EntityIndex | None = None,
    ) -> list[RecordMatch]:
        """Group ``records`` and annotate duplicates for the primary type.

        Args:
            records: All records of one entity type, in arrival order.
            group: The entity type the records belong to.
            existing: Index over the pre-existing population only.

        Returns:
            Groups ordered by their first record.
        """
        if not records:
            return []

        if len({r.source_key for r in records}) == 1:
            # Rows of one sheet are distinct entities
            matches = [
                RecordMatch(
                    entity_id=self._new_id(),
                    entity_type=group.entity_type,
                    source_records=[record],
                    match_strategy=MatchMethod.SINGLE_SOURCE,
                    match_confidence=MATCH_CONFIDENCE[MatchMethod.SINGLE_SOURCE],
                )
                for record in records
            ]
        else:
            matches = self._match_across_sources(records, group)

        if group.is_primary and existing is not None and len(existing):
            for record_match in matches:
                record_match.duplicate = self.detect_duplicate(record_match, existing)

        logger.info(
            "Matched %d %s record(s) into %d group(s)",
            len(records),
            group.entity_type,
            len(matches),
        )
        return matches

    def detect_duplicate(
        self, record_match: RecordMatch, existing: EntityIndex
    ) -> DuplicateAnnotation | None:
        """Check a primary-type group against the pre-existing population."""
        candidate = first_values(record_match.source_records)
        hit = existing.find_match(candidate)
        if hit is None or hit.entity.entity_id is None:
            return None

        found = (
            f"Matches existing employee {hit.entity.employee_number or hit.entity.entity_id}"
            f" ({hit.entity.display_name or 'unnamed'}) by {hit.method.value}"
            f" with confidence {hit.confidence}"
        )
        if hit.confidence < self._ask_user_below:
            action = RecommendedAction.ASK_USER
            reasoning = f"{found}; confidence too low to decide automatically"
        else:
            changed = differing_fields(candidate, hit.entity.attributes)
            if changed:
                action = RecommendedAction.UPDATE
                reasoning = f"{found}; {len(changed)} field(s) differ: {', '.join(changed)}"
            else:
                action = RecommendedAction.SKIP
                reasoning = f"{found}; all fields identical"

        logger.debug("Duplicate %s → %s", record_match.entity_id, action.value)
        return DuplicateAnnotation(
            existing_entity_id=hit.entity.entity_id,
            existing_employee_number=hit.entity.employee_number,
            existing_display_name=hit.entity.display_name,
            match_method=hit.method,
            match_confidence=hit.confidence,
            recommended_action=action,
            reasoning=reasoning,
        )

    def _match_across_sources(
        self, records: Sequence[SourceRecord], group: EntityTypeGroup
    ) -> list[RecordMatch]:
        allowed = set(group.matching_keys)
        methods = [m for m in INDEX_CASCADE if m in allowed]
        keys = [CandidateKeys.from_fields(r.fields) for r in records]
        discriminators = [
            tuple(normalize_value(r.fields.get(f)) for f in group.discriminator_fields)
            for r in records
        ]
        forest = _Forest(keys)

        for position, method in enumerate(methods):
            stronger = methods[:position]
            buckets: dict[tuple[str, tuple[str, ...]], list[int]] = {}
            for i, record_keys in enumerate(keys):
                for value in record_keys.values_for(method):
                    members = buckets.setdefault((value, discriminators[i]), [])
                    if i not in members:
                        members.append(i)

            for members in buckets.values():
                for j, other in enumerate(members[1:], start=1):
                    for anchor in members[:j]:
                        if not forest.union(anchor, other, method, stronger):
                            logger.debug(
                                "Refused %s match of records %d and %d: stronger keys differ",
                                method.value,
                                anchor,
                                other,
                            )

        grouped: dict[int, list[int]] = {}
        for i in range(len(records)):
            grouped.setdefault(forest.find(i), []).append(i)

        matches: list[RecordMatch] = []
        for root, members in grouped.items():
            if len(members) > 1:
                method = forest.weakest(root) or MatchMethod.UNMATCHED
            else:
                method = next(
                    (m for m in methods if keys[members[0]].values_for(m)),
                    MatchMethod.UNMATCHED,
                )
            matches.append(
                RecordMatch(
                    entity_id=self._new_id(),
                    entity_type=group.entity_type,
                    source_records=[records[i] for i in members],
                    match_strategy=method,
                    match_confidence=MATCH_CONFIDENCE[method],
                )
            )
        return matches
