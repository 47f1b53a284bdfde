"""Tests for the source record normalizer."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from roster_merge.errors import MalformedRecordError
from roster_merge.models import SourceRef
from roster_merge.normalization.records import SourceRecordNormalizer, header_key


@pytest.fixture
def normalizer() -> SourceRecordNormalizer:
    return SourceRecordNormalizer()


class TestHeaderMapping:
    """Tests for alias-based header mapping."""

    def test_header_key_ignores_accents_case_punctuation(self) -> None:
        assert header_key("N° CNPS") == header_key("n cnps") == "ncnps"
        assert header_key("Prénom") == "prenom"

    @pytest.mark.parametrize(
        ("header", "canonical"),
        [
            ("Matricule", "employeeNumber"),
            ("N° Employé", "employeeNumber"),
            ("COURRIEL", "email"),
            ("N° CNPS", "cnpsNumber"),
            ("Prénom", "firstName"),
            ("Nom", "lastName"),
            ("Salaire de base", "baseSalary"),
            ("Date d'embauche", "hireDate"),
            ("employeeNumber", "employeeNumber"),
        ],
    )
    def test_known_aliases(
        self, normalizer: SourceRecordNormalizer, header: str, canonical: str
    ) -> None:
        assert normalizer.canonical_field(header) == canonical

    def test_unknown_header_passes_through_trimmed(
        self, normalizer: SourceRecordNormalizer
    ) -> None:
        assert normalizer.canonical_field("  Badge  ") == "Badge"

    def test_custom_aliases(self) -> None:
        normalizer = SourceRecordNormalizer({"employeeNumber": ("code agent",)})
        assert normalizer.canonical_field("Code Agent") == "employeeNumber"
        assert normalizer.canonical_field("Matricule") == "Matricule"


class TestNormalizeRow:
    """Tests for building SourceRecords from raw rows."""

    def _row(self, normalizer: SourceRecordNormalizer, row: dict, **kwargs):
        params = {
            "source_file": "paie.xlsx",
            "source_sheet": "Janvier",
            "data_type": "employee",
            "ingested_at": datetime(2024, 6, 1, tzinfo=UTC),
        }
        params.update(kwargs)
        return normalizer.normalize_row(row, **params)

    def test_fields_renamed_and_coerced(self, normalizer: SourceRecordNormalizer) -> None:
        record = self._row(
            normalizer,
            {
                "Matricule": " EMP001 ",
                "Salaire de base": "500,000",
                "Date d'embauche": "15/01/2020",
                "Poste": "Comptable",
            },
        )
        assert record is not None
        assert record.fields == {
            "employeeNumber": "EMP001",
            "baseSalary": 500000,
            "hireDate": date(2020, 1, 15),
            "position": "Comptable",
        }

    def test_unparseable_number_kept_as_text(self, normalizer: SourceRecordNormalizer) -> None:
        record = self._row(normalizer, {"Salaire de base": "à définir"})
        assert record is not None
        assert record.fields["baseSalary"] == "à définir"

    def test_empty_cells_dropped(self, normalizer: SourceRecordNormalizer) -> None:
        record = self._row(normalizer, {"Matricule": "EMP001", "Courriel": "  ", "Nom": None})
        assert record is not None
        assert record.fields == {"employeeNumber": "EMP001"}

    def test_all_empty_row_yields_nothing(self, normalizer: SourceRecordNormalizer) -> None:
        assert self._row(normalizer, {"Matricule": "", "Nom": None}) is None

    def test_missing_data_type_raises(self, normalizer: SourceRecordNormalizer) -> None:
        with pytest.raises(MalformedRecordError):
            self._row(normalizer, {"Matricule": "EMP001"}, data_type=None)
        with pytest.raises(MalformedRecordError):
            self._row(normalizer, {"Matricule": "EMP001"}, data_type="  ")

    def test_non_mapping_row_raises(self, normalizer: SourceRecordNormalizer) -> None:
        with pytest.raises(MalformedRecordError):
            self._row(normalizer, ["EMP001", "KOUASSI"])  # type: ignore[arg-type]

    def test_naive_timestamp_becomes_utc(self, normalizer: SourceRecordNormalizer) -> None:
        record = self._row(
            normalizer, {"Matricule": "EMP001"}, ingested_at=datetime(2024, 6, 1, 8, 0)
        )
        assert record is not None
        assert record.ingested_at.tzinfo is UTC

    def test_record_fields_are_read_only(self, normalizer: SourceRecordNormalizer) -> None:
        record = self._row(normalizer, {"Matricule": "EMP001"})
        assert record is not None
        with pytest.raises(TypeError):
            record.fields["employeeNumber"] = "EMP002"  # type: ignore[index]


class TestNormalizeRows:
    def test_skips_empty_rows_and_numbers_rows(self, normalizer: SourceRecordNormalizer) -> None:
        source = SourceRef(
            source_file="rh.xlsx",
            source_sheet="Personnel",
            data_type="employee",
            ingested_at=datetime(2024, 1, 1, tzinfo=UTC),
        )
        records = normalizer.normalize_rows(
            [{"Matricule": "EMP001"}, {"Matricule": ""}, {"Matricule": "EMP002"}], source
        )
        assert [r.fields["employeeNumber"] for r in records] == ["EMP001", "EMP002"]
        assert [r.row_number for r in records] == [1, 3]
        assert all(r.source_key == "rh.xlsx::Personnel" for r in records)
