"""Entity Index: O(1) lookup of known employees by any matchable attribute.

The index holds one map per matching strategy. Lookups walk the strategies in
strict priority order and return the first hit with that strategy's fixed
confidence:

    employee_number (100) → email (95) → cnps_number (90)
        → phone_number (85) → full_name (75)

No lookup ever goes beyond these five; a miss is a normal outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from roster_merge.models.enums import INDEX_CASCADE, MATCH_CONFIDENCE, MatchMethod
from roster_merge.models.records import EntityIdentity
from roster_merge.normalization.values import (
    is_empty,
    normalize_business_number,
    normalize_cnps,
    normalize_email,
    normalize_name,
    normalize_phone,
)

logger = logging.getLogger(__name__)

# Fields non-primary records use to name the employee they belong to
REFERENCE_FIELDS = ("employee", "employeeName", "employeeId")


@dataclass(frozen=True)
class CandidateKeys:
    """Normalized lookup keys extracted from a field map or an identity."""

    employee_numbers: tuple[str, ...] = ()
    emails: tuple[str, ...] = ()
    cnps_numbers: tuple[str, ...] = ()
    phone_numbers: tuple[str, ...] = ()
    names: tuple[str, ...] = ()

    def values_for(self, method: MatchMethod) -> tuple[str, ...]:
        if method == MatchMethod.EMPLOYEE_NUMBER:
            return self.employee_numbers
        if method == MatchMethod.EMAIL:
            return self.emails
        if method == MatchMethod.CNPS_NUMBER:
            return self.cnps_numbers
        if method == MatchMethod.PHONE_NUMBER:
            return self.phone_numbers
        if method == MatchMethod.FULL_NAME:
            return self.names
        return ()

    @property
    def is_empty(self) -> bool:
        return not any(self.values_for(m) for m in INDEX_CASCADE)

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> CandidateKeys:
        """Extract keys from a canonical field map.

        Generic employee references (``employee``, ``employeeName``,
        ``employeeId``) are tried as whatever they look like: an address
        containing ``@`` is an email, a single token is a business number
        (and a name), anything else is a name.
        """
        numbers: list[str] = []
        emails: list[str] = []
        cnps: list[str] = []
        phones: list[str] = []
        names: list[str] = []

        def text(name: str) -> str | None:
            value = fields.get(name)
            if is_empty(value):
                return None
            return str(value).strip()

        if number := text("employeeNumber"):
            numbers.append(normalize_business_number(number))
        if email := text("email"):
            emails.append(normalize_email(email))
        if cnps_number := text("cnpsNumber"):
            cnps.append(normalize_cnps(cnps_number))
        if phone := text("phoneNumber"):
            phones.append(normalize_phone(phone))

        first, last = text("firstName"), text("lastName")
        if first or last:
            names.append(normalize_name(" ".join(p for p in (first, last) if p)))
        if full := text("fullName"):
            names.append(normalize_name(full))

        for ref_field in REFERENCE_FIELDS:
            ref = text(ref_field)
            if ref is None:
                continue
            if "@" in ref:
                emails.append(normalize_email(ref))
            elif ref_field == "employeeId" or len(ref.split()) == 1:
                numbers.append(normalize_business_number(ref))
                if ref_field != "employeeId":
                    names.append(normalize_name(ref))
            else:
                names.append(normalize_name(ref))

        return cls(
            employee_numbers=_unique(numbers),
            emails=_unique(emails),
            cnps_numbers=_unique(cnps),
            phone_numbers=_unique(p for p in phones if p),
            names=_unique(n for n in names if n),
        )

    @classmethod
    def from_identity(cls, identity: EntityIdentity) -> CandidateKeys:
        names = []
        if identity.first_name or identity.last_name:
            parts = (identity.first_name, identity.last_name)
            names.append(normalize_name(" ".join(p for p in parts if p)))
        if identity.full_name:
            names.append(normalize_name(identity.full_name))
        return cls(
            employee_numbers=_maybe(identity.employee_number, normalize_business_number),
            emails=_maybe(identity.email, normalize_email),
            cnps_numbers=_maybe(identity.cnps_number, normalize_cnps),
            phone_numbers=_maybe(identity.phone_number, normalize_phone),
            names=_unique(n for n in names if n),
        )


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def _maybe(value: str | None, normalizer: Any) -> tuple[str, ...]:
    if is_empty(value):
        return ()
    normalized = normalizer(value)
    return (normalized,) if normalized else ()


@dataclass(frozen=True)
class IndexMatch:
    """Result of a successful lookup."""

    entity: EntityIdentity
    method: MatchMethod
    confidence: int


class EntityIndex:
    """Multi-key lookup over known and provisional employees.

    Built once per run and read-only afterwards. The first identity inserted
    under a key keeps it, so the pre-existing population (inserted first)
    stays authoritative over newly discovered entities.

    Usage:
        index = EntityIndex.build(existing_identities)
        match = index.find_match({"employee": "Jean KOUASSI"})
    """

    def __init__(self) -> None:
        self._maps: dict[MatchMethod, dict[str, EntityIdentity]] = {m: {} for m in INDEX_CASCADE}
        self._size = 0

    @classmethod
    def build(cls, identities: Iterable[EntityIdentity]) -> EntityIndex:
        index = cls()
        for identity in identities:
            index.index_entity(identity)
        return index

    def __len__(self) -> int:
        return self._size

    def index_entity(self, identity: EntityIdentity) -> None:
        """Insert one entry per non-empty attribute of ``identity``."""
        keys = CandidateKeys.from_identity(identity)
        for method in INDEX_CASCADE:
            table = self._maps[method]
            for value in keys.values_for(method):
                table.setdefault(value, identity)
        self._size += 1

    def find_match(
        self,
        candidate: Mapping[str, Any] | CandidateKeys,
        *,
        methods: Iterable[MatchMethod] = INDEX_CASCADE,
    ) -> IndexMatch | None:
        """Look up ``candidate`` through the strategy cascade.

        Args:
            candidate: Canonical field map or pre-extracted keys.
            methods: Strategies to try; always walked in cascade order.

        Returns:
            The first hit, or ``None`` when no strategy matches.
        """
        if isinstance(candidate, CandidateKeys):
            keys = candidate
        else:
            keys = CandidateKeys.from_fields(candidate)
        allowed = set(methods)
        for method in INDEX_CASCADE:
            if method not in allowed:
                continue
            table = self._maps[method]
            for value in keys.values_for(method):
                identity = table.get(value)
                if identity is not None:
                    return IndexMatch(identity, method, MATCH_CONFIDENCE[method])
        return None
