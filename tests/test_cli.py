"""Tests for the roster-merge command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from roster_merge.cli import app
from roster_merge.config import settings

runner = CliRunner()


@pytest.fixture
def manifest_path(tmp_path: Path) -> Path:
    manifest = {
        "country_code": "CI",
        "entity_types": [
            {
                "entity_type": "employee",
                "display_name": "Employees",
                "is_primary": True,
                "priority": 1,
                "target_table": "employees",
                "target_schema": {
                    "required_fields": ["employeeNumber"],
                    "optional_fields": ["firstName", "lastName", "baseSalary"],
                },
                "sources": [
                    {
                        "file": "rh_2023.xlsx",
                        "sheet": "Personnel",
                        "ingested_at": "2023-01-15T08:00:00Z",
                        "rows": [
                            {
                                "Matricule": "EMP001",
                                "Prénom": "Jean",
                                "Nom": "KOUASSI",
                                "Salaire de base": "450 000",
                            },
                            {"Matricule": "EMP002", "Prénom": "Aya", "Nom": "KONAN"},
                        ],
                    },
                    {
                        "file": "paie_2024.xlsx",
                        "sheet": "Paie",
                        "ingested_at": "2024-06-15T08:00:00Z",
                        "rows": [{"N° matricule": "EMP001", "Salaire": "500,000"}],
                    },
                ],
            },
            {
                "entity_type": "contract",
                "display_name": "Contracts",
                "priority": 2,
                "dependencies": ["employee"],
                "target_table": "contracts",
                "sources": [
                    {
                        "file": "contrats.xlsx",
                        "sheet": "Contrats",
                        "ingested_at": "2024-01-10T08:00:00Z",
                        "rows": [
                            {"Employé": "EMP002", "Type de contrat": "CDI"},
                            {"Employé": "EMP999", "Type de contrat": "CDD"},
                        ],
                    }
                ],
            },
        ],
    }
    path = tmp_path / "manifest.json"
    path.write_text(json.dumps(manifest, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def existing_path(tmp_path: Path) -> Path:
    path = tmp_path / "existing.json"
    path.write_text(
        json.dumps([{"id": "emp-1", "fields": {"Matricule": "EMP001", "Nom": "KOUASSI"}}]),
        encoding="utf-8",
    )
    return path


class TestAnalyzeCommand:
    def test_rules_strategy(self, manifest_path: Path, existing_path: Path, tmp_path: Path):
        out = tmp_path / "analysis.json"
        result = runner.invoke(
            app,
            [
                "analyze",
                str(manifest_path),
                "--existing",
                str(existing_path),
                "--strategy",
                "rules",
                "--json-out",
                str(out),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Rejected Records" in result.output
        assert "EMP999" in result.output

        payload = json.loads(out.read_text(encoding="utf-8"))
        assert payload["strategy"] == "rules"
        assert payload["summary"]["rejected"] == 1
        assert payload["summary"]["review_conflicts"] == 1
        assert payload["summary"]["duplicates"]["will_update"] == 1

    def test_missing_oracle_credentials(self, manifest_path: Path, monkeypatch):
        monkeypatch.setattr(settings, "llm_api_key", "")

        result = runner.invoke(app, ["analyze", str(manifest_path), "--strategy", "hybrid"])

        assert result.exit_code == 1
        assert "--strategy rules" in result.output


class TestImportCommand:
    def test_writes_jsonl_files(self, manifest_path: Path, tmp_path: Path):
        out = tmp_path / "out"
        result = runner.invoke(
            app, ["import", str(manifest_path), "--out", str(out), "--strategy", "rules"]
        )

        assert result.exit_code == 0, result.output
        assert "held for review" in result.output
        employees = (out / "employee.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["data"]["employeeNumber"] for line in employees] == ["EMP002"]
        [contract] = (out / "contract.jsonl").read_text(encoding="utf-8").splitlines()
        assert json.loads(contract)["data"]["contractType"] == "CDI"

    def test_include_pending_review(self, manifest_path: Path, tmp_path: Path):
        out = tmp_path / "out"
        result = runner.invoke(
            app,
            [
                "import",
                str(manifest_path),
                "--out",
                str(out),
                "--strategy",
                "rules",
                "--include-pending-review",
            ],
        )

        assert result.exit_code == 0, result.output
        employees = (out / "employee.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(employees) == 2
