"""Source Record Normalizer.

Turns raw per-source rows (header → cell maps as produced by the spreadsheet
parser) into uniform ``SourceRecord`` objects with canonical field names.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from roster_merge.errors import MalformedRecordError
from roster_merge.models.records import SourceRecord, SourceRef
from roster_merge.normalization.values import (
    is_empty,
    parse_date,
    parse_number,
    strip_diacritics,
    to_number,
)

logger = logging.getLogger(__name__)

# Canonical field → known header variations (French and English exports)
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "employeeNumber": ("employee_number", "matricule", "N° Employé", "N° matricule"),
    "email": ("courriel", "e-mail", "mail", "adresse email"),
    "phoneNumber": ("phone", "telephone", "téléphone", "tel", "mobile", "phone number"),
    "cnpsNumber": ("cnps", "N° CNPS", "Numero CNPS", "numéro cnps", "cnps_number"),
    "firstName": ("first_name", "prenom", "prénom", "prénoms", "First Name"),
    "lastName": ("last_name", "nom", "Last Name", "family_name", "nom de famille"),
    "fullName": ("full_name", "nom complet", "nom et prénoms", "name"),
    "dateOfBirth": ("date_of_birth", "date de naissance", "birth date", "birthdate"),
    "hireDate": ("hire_date", "date_embauche", "dateEmbauche", "Date d'embauche"),
    "startDate": ("start_date", "date_debut", "dateDebut", "Date début"),
    "endDate": ("end_date", "date_fin", "dateFin", "Date fin"),
    "position": ("poste", "job_title", "fonction", "job title"),
    "department": ("departement", "département", "direction"),
    "contractType": ("type_contrat", "typeContrat", "Contract Type", "type de contrat"),
    "baseSalary": ("base_salary", "salaire", "salaire de base", "salary"),
    "grossSalary": ("gross_salary", "salaire_brut", "Salaire brut", "Brut"),
    "netSalary": ("net_salary", "salaire_net", "Salaire net", "Net Pay"),
    "period": ("periode", "période", "mois", "month", "date_paie", "payPeriod"),
    "bankAccountNumber": ("bank_account", "rib", "compte bancaire", "numéro de compte"),
    "taxId": ("tax_id", "numero fiscal", "numéro fiscal", "nif"),
    "employee": ("employé", "employe", "salarié", "salarie"),
}

# Fields stored as numbers on the record
NUMBER_FIELDS = frozenset({"salary", "amount", "baseSalary", "grossSalary", "netSalary"})
# Fields stored as calendar dates on the record
DATE_FIELDS = frozenset({"dateOfBirth", "hireDate", "startDate", "endDate"})


def header_key(header: str) -> str:
    """Accent/case/punctuation-insensitive form of a column header."""
    text = strip_diacritics(header).lower()
    return "".join(ch for ch in text if ch.isalnum())


def _build_alias_lookup(aliases: Mapping[str, Iterable[str]]) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for canonical, variations in aliases.items():
        lookup[header_key(canonical)] = canonical
        for variation in variations:
            lookup.setdefault(header_key(variation), canonical)
    return lookup


def is_number_field(name: str) -> bool:
    return name in NUMBER_FIELDS or name.endswith(("Salary", "Amount"))


def is_date_field(name: str) -> bool:
    return name in DATE_FIELDS or name.endswith("Date")


class SourceRecordNormalizer:
    """Converts raw rows into ``SourceRecord``s.

    Usage:
        normalizer = SourceRecordNormalizer()
        records = normalizer.normalize_rows(rows, source_ref)
    """

    def __init__(self, aliases: Mapping[str, Iterable[str]] | None = None) -> None:
        self._lookup = _build_alias_lookup(aliases if aliases is not None else FIELD_ALIASES)

    def canonical_field(self, header: str) -> str:
        """Map a raw header to its canonical field name (unknown headers pass through)."""
        return self._lookup.get(header_key(header), header.strip())

    def normalize_fields(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Rename headers, drop empty cells and coerce numbers and dates."""
        fields: dict[str, Any] = {}
        for header, raw in row.items():
            if header is None or is_empty(raw):
                continue
            name = self.canonical_field(str(header))
            if not name or name in fields:
                continue
            fields[name] = self._coerce(name, raw)
        return fields

    def normalize_row(
        self,
        row: Mapping[str, Any],
        *,
        source_file: str,
        source_sheet: str,
        data_type: str | None,
        ingested_at: datetime,
        row_number: int | None = None,
    ) -> SourceRecord | None:
        """Build one ``SourceRecord`` from a raw row.

        Args:
            row: Header → cell value map.
            source_file: File the row came from.
            source_sheet: Sheet the row came from.
            data_type: Entity-type tag assigned by the classifier.
            ingested_at: When the source was produced. Naive values are UTC.
            row_number: Optional position of the row in its sheet.

        Returns:
            The record, or ``None`` when the row has no non-empty cell.

        Raises:
            MalformedRecordError: If the row carries no entity-type tag.
        """
        if not data_type or not str(data_type).strip():
            msg = f"{source_file}::{source_sheet} row {row_number}: missing entity-type tag"
            raise MalformedRecordError(msg)
        if not isinstance(row, Mapping):
            kind = type(row).__name__
            msg = f"{source_file}::{source_sheet} row {row_number}: expected a mapping, got {kind}"
            raise MalformedRecordError(msg)

        fields = self.normalize_fields(row)
        if not fields:
            logger.debug("Skipping empty row %s in %s::%s", row_number, source_file, source_sheet)
            return None

        return SourceRecord(
            source_file=source_file,
            source_sheet=source_sheet,
            data_type=str(data_type).strip(),
            fields=fields,
            ingested_at=ingested_at,
            row_number=row_number,
        )

    def normalize_rows(
        self, rows: Iterable[Mapping[str, Any]], source: SourceRef
    ) -> list[SourceRecord]:
        """Normalize every row of one source, skipping empty rows."""
        records: list[SourceRecord] = []
        for i, row in enumerate(rows, start=1):
            record = self.normalize_row(
                row,
                source_file=source.source_file,
                source_sheet=source.source_sheet,
                data_type=source.data_type,
                ingested_at=source.ingested_at,
                row_number=i,
            )
            if record is not None:
                records.append(record)
        logger.debug("Normalized %d record(s) from %s", len(records), source.key)
        return records

    @staticmethod
    def _coerce(name: str, raw: Any) -> Any:
        if isinstance(raw, str):
            raw = raw.strip()
        if is_number_field(name):
            number = parse_number(raw)
            if number is not None:
                return to_number(number)
        elif is_date_field(name):
            parsed = parse_date(raw)
            if parsed is not None:
                return parsed
        return raw
