"""Conflict Detector: field-level disagreements inside one record group."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from uuid import uuid4

from roster_merge.models.conflicts import ConflictSource, FieldConflict
from roster_merge.models.enums import ConflictSeverity
from roster_merge.models.records import RecordMatch
from roster_merge.normalization.values import is_empty, normalize_value

logger = logging.getLogger(__name__)

# Identity-defining attributes
CRITICAL_FIELDS = frozenset({
    "employeeNumber",
    "firstName",
    "lastName",
    "hireDate",
    "startDate",
    "cnpsNumber",
    "email",
    "dateOfBirth",
})

# Operationally important attributes
MEDIUM_FIELDS = frozenset({
    "baseSalary",
    "salary",
    "grossSalary",
    "netSalary",
    "amount",
    "position",
    "department",
    "contractType",
    "bankAccountNumber",
    "iban",
    "taxId",
})


def classify_severity(field: str) -> ConflictSeverity:
    """Static severity by field name. Values never influence it."""
    if field in CRITICAL_FIELDS:
        return ConflictSeverity.CRITICAL
    if field in MEDIUM_FIELDS or field.endswith(("Salary", "Amount")):
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


class ConflictDetector:
    """Finds fields whose normalized values disagree across a group's sources."""

    def __init__(self, *, id_factory: Callable[[], str] | None = None) -> None:
        self._new_id = id_factory or (lambda: str(uuid4()))

    def detect(self, record_match: RecordMatch) -> list[FieldConflict]:
        """Return one conflict per disagreeing field, in field order of first appearance.

        Groups with fewer than two records never conflict. Values that
        normalize identically (``"500,000"`` vs ``500000``) are not recorded.
        """
        if record_match.source_count < 2:
            return []

        observed: dict[str, list[ConflictSource]] = {}
        for record in record_match.source_records:
            for name, value in record.fields.items():
                if is_empty(value):
                    continue
                observed.setdefault(name, []).append(
                    ConflictSource(
                        source_file=record.source_file,
                        source_sheet=record.source_sheet,
                        value=value,
                        observed_at=record.ingested_at,
                    )
                )

        conflicts: list[FieldConflict] = []
        for name, sources in observed.items():
            if len(sources) < 2:
                continue
            if len({normalize_value(s.value) for s in sources}) < 2:
                continue
            conflicts.append(
                FieldConflict(
                    conflict_id=self._new_id(),
                    entity_id=record_match.entity_id,
                    entity_type=record_match.entity_type,
                    field=name,
                    sources=tuple(sources),
                    severity=classify_severity(name),
                )
            )

        if conflicts:
            logger.debug(
                "Group %s: %d conflict(s) on %s",
                record_match.entity_id,
                len(conflicts),
                ", ".join(c.field for c in conflicts),
            )
        return conflicts

    def detect_all(self, matches: Iterable[RecordMatch]) -> list[FieldConflict]:
        return [c for m in matches for c in self.detect(m)]
