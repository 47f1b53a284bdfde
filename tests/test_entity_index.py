"""Tests for the entity index and its lookup cascade."""

from __future__ import annotations

import pytest

from roster_merge.models import EntityIdentity, MatchMethod
from roster_merge.resolution.index import CandidateKeys, EntityIndex


@pytest.fixture
def kouassi(make_identity) -> EntityIdentity:
    return make_identity(
        "emp-1",
        employeeNumber="EMP001",
        email="Jean.Kouassi@Example.ci",
        cnpsNumber="1234 567 890",
        phoneNumber="+225 07 01 02 03 04",
        firstName="Jean",
        lastName="KOUASSI",
    )


@pytest.fixture
def index(kouassi: EntityIdentity) -> EntityIndex:
    return EntityIndex.build([kouassi])


class TestCandidateKeys:
    """Tests for key extraction."""

    def test_from_fields(self) -> None:
        keys = CandidateKeys.from_fields(
            {
                "employeeNumber": " emp001 ",
                "email": "A@B.CI",
                "phoneNumber": "07-01-02",
                "firstName": "Jean",
                "lastName": "KOUASSI",
                "fullName": "KOUASSI Jean",
            }
        )
        assert keys.employee_numbers == ("EMP001",)
        assert keys.emails == ("a@b.ci",)
        assert keys.phone_numbers == ("070102",)
        assert keys.names == ("jean kouassi",)

    def test_generic_reference_single_token(self) -> None:
        keys = CandidateKeys.from_fields({"employee": "EMP999"})
        assert keys.employee_numbers == ("EMP999",)
        assert keys.names == ("emp999",)

    def test_generic_reference_name(self) -> None:
        keys = CandidateKeys.from_fields({"employee": "Jean KOUASSI"})
        assert keys.employee_numbers == ()
        assert keys.names == ("jean kouassi",)

    def test_generic_reference_email(self) -> None:
        keys = CandidateKeys.from_fields({"employeeName": "jean.kouassi@example.ci"})
        assert keys.emails == ("jean.kouassi@example.ci",)

    def test_employee_id_is_a_number_only(self) -> None:
        keys = CandidateKeys.from_fields({"employeeId": "emp001"})
        assert keys.employee_numbers == ("EMP001",)
        assert keys.names == ()

    def test_empty(self) -> None:
        assert CandidateKeys.from_fields({"period": "2024-01"}).is_empty


class TestFindMatch:
    """Tests for the priority cascade."""

    @pytest.mark.parametrize(
        ("fields", "method", "confidence"),
        [
            ({"employeeNumber": "emp001"}, MatchMethod.EMPLOYEE_NUMBER, 100),
            ({"email": "JEAN.KOUASSI@example.ci"}, MatchMethod.EMAIL, 95),
            ({"cnpsNumber": "1234567890"}, MatchMethod.CNPS_NUMBER, 90),
            ({"phoneNumber": "+225 0701020304"}, MatchMethod.PHONE_NUMBER, 85),
            ({"phoneNumber": "225-07-01-02-03-04"}, MatchMethod.PHONE_NUMBER, 85),
            ({"employee": "Jean KOUASSI"}, MatchMethod.FULL_NAME, 75),
            ({"fullName": "kouassi jean"}, MatchMethod.FULL_NAME, 75),
        ],
    )
    def test_each_strategy(
        self,
        index: EntityIndex,
        kouassi: EntityIdentity,
        fields: dict,
        method: MatchMethod,
        confidence: int,
    ) -> None:
        match = index.find_match(fields)
        assert match is not None
        assert match.entity is kouassi
        assert match.method == method
        assert match.confidence == confidence

    def test_stronger_key_wins(self, index: EntityIndex) -> None:
        match = index.find_match(
            {"employeeNumber": "EMP001", "email": "jean.kouassi@example.ci", "fullName": "x y"}
        )
        assert match is not None
        assert match.method == MatchMethod.EMPLOYEE_NUMBER

    def test_falls_through_to_weaker_key(self, index: EntityIndex) -> None:
        match = index.find_match({"employeeNumber": "EMP404", "email": "jean.kouassi@example.ci"})
        assert match is not None
        assert match.method == MatchMethod.EMAIL

    def test_miss_returns_none(self, index: EntityIndex) -> None:
        assert index.find_match({"employee": "EMP999"}) is None
        assert index.find_match({}) is None

    def test_methods_filter(self, index: EntityIndex) -> None:
        assert index.find_match({"fullName": "Jean KOUASSI"}, methods=[MatchMethod.EMAIL]) is None

    def test_deterministic(self, index: EntityIndex) -> None:
        fields = {"email": "jean.kouassi@example.ci", "fullName": "Jean Kouassi"}
        first = index.find_match(fields)
        for _ in range(5):
            assert index.find_match(fields) == first


class TestIndexEntity:
    """Tests for insertion semantics."""

    def test_first_inserted_keeps_key(self, make_identity) -> None:
        existing = make_identity("emp-1", employeeNumber="EMP001", fullName="Aya Konan")
        newcomer = EntityIdentity.from_fields(
            {"employeeNumber": "EMP001", "fullName": "Other Person"}, provisional_id="new-1"
        )
        index = EntityIndex.build([existing, newcomer])

        match = index.find_match({"employeeNumber": "EMP001"})
        assert match is not None
        assert match.entity is existing
        # The newcomer is still reachable through its own keys
        by_name = index.find_match({"fullName": "Person Other"})
        assert by_name is not None
        assert by_name.entity is newcomer
        assert len(index) == 2

    def test_identity_without_keys(self) -> None:
        index = EntityIndex.build([EntityIdentity(entity_id="emp-x")])
        assert index.find_match({"employee": "anything"}) is None
