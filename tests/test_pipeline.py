"""End-to-end tests for the analysis and import pipeline."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import JUN_2024, ScriptedOracle
from roster_merge.errors import (
    AnalysisNotFoundError,
    OracleUnavailableError,
    PartialImportDisallowedError,
)
from roster_merge.models import ImportPhase, MatchMethod, RecommendedAction, ResolutionStrategy
from roster_merge.pipeline import (
    ImportPipeline,
    InMemoryAnalysisStore,
    JsonLinesSink,
    order_entity_types,
)
from roster_merge.resolution.matcher import RecordMatcher


@pytest.fixture
def groups(make_group):
    return [
        make_group(
            "leave", priority=3, dependencies=("employee",), optional=("startDate", "days")
        ),
        make_group(
            "employee",
            priority=1,
            required=("employeeNumber",),
            optional=("firstName", "lastName", "baseSalary", "email"),
        ),
        make_group("contract", priority=2, dependencies=("employee",), required=("contractType",)),
    ]


@pytest.fixture
def records_by_type(make_record):
    def payroll(fields):
        return make_record(fields, file="paie.xlsx", sheet="Paie", ingested_at=JUN_2024)

    return {
        "employee": [
            make_record(
                {
                    "employeeNumber": "EMP001",
                    "firstName": "Jean",
                    "lastName": "KOUASSI",
                    "baseSalary": 450000,
                }
            ),
            make_record(
                {
                    "employeeNumber": "EMP002",
                    "firstName": "Aya",
                    "lastName": "KONAN",
                    "baseSalary": "500,000",
                }
            ),
            payroll({"employeeNumber": "EMP001", "baseSalary": 500000}),
            payroll({"employeeNumber": "EMP002", "baseSalary": 500000}),
        ],
        "contract": [
            make_record(
                {"employee": "EMP999", "contractType": "CDI"},
                file="contrats.xlsx",
                sheet="Contrats",
                data_type="contract",
            ),
            make_record(
                {"employee": "EMP002", "contractType": "CDD"},
                file="contrats.xlsx",
                sheet="Contrats",
                data_type="contract",
            ),
        ],
        "leave": [
            make_record(
                {"employee": "Jean KOUASSI", "startDate": "2024-03-01", "days": 5},
                file="conges.xlsx",
                sheet="Conges",
                data_type="leave",
            ),
        ],
    }


@pytest.fixture
def existing(make_identity):
    return [make_identity("emp-1", employeeNumber="EMP001", firstName="Jean", lastName="KOUASSI")]


@pytest.fixture
def store() -> InMemoryAnalysisStore:
    return InMemoryAnalysisStore(ttl_seconds=60)


@pytest.fixture
def make_pipeline(sequential_ids, store):
    def _make(oracle=None, **kwargs) -> ImportPipeline:
        kwargs.setdefault("strategy", ResolutionStrategy.ORACLE)
        kwargs.setdefault("store", store)
        kwargs.setdefault("country_code", "CI")
        kwargs.setdefault("matcher", RecordMatcher(ask_user_below=80, id_factory=sequential_ids))
        return ImportPipeline(oracle, **kwargs)

    return _make


class TestAnalyze:
    async def test_full_run(self, make_pipeline, groups, records_by_type, existing, oracle):
        result = await make_pipeline(oracle).analyze(
            groups, records_by_type, existing, run_id="run-1"
        )

        assert result.run_id == "run-1"
        assert [g.entity_type for g in result.groups] == ["employee", "contract", "leave"]

        employees = {e.data["employeeNumber"]: e for e in result.entities["employee"]}
        # Formatting-only differences merge cleanly
        assert employees["EMP002"].data["baseSalary"] == 500000
        assert employees["EMP002"].provenance.conflicts == ()
        # The salary disagreement is arbitrated but still needs review
        assert employees["EMP001"].data["baseSalary"] == 500000
        [conflict] = result.requires_review
        assert conflict.field == "baseSalary"
        assert conflict.severity.value == "medium"
        assert result.auto_resolved == []
        assert len(oracle.calls) == 1

        [dup_match, new_match] = result.matches["employee"]
        assert dup_match.duplicate is not None
        assert dup_match.duplicate.existing_entity_id == "emp-1"
        assert dup_match.duplicate.recommended_action == RecommendedAction.UPDATE
        assert new_match.duplicate is None

    async def test_linkage_and_rejection(
        self, make_pipeline, groups, records_by_type, existing, oracle
    ):
        result = await make_pipeline(oracle).analyze(groups, records_by_type, existing)

        [leave] = result.entities["leave"]
        assert leave.linked_entity is not None
        assert leave.linked_entity.entity_id == "emp-1"
        assert leave.linked_entity.match_method == MatchMethod.FULL_NAME
        assert leave.linked_entity.match_confidence == 75

        contracts = {e.data["employee"]: e for e in result.entities["contract"]}
        assert contracts["EMP002"].linked_entity is not None
        assert contracts["EMP002"].linked_entity.is_new
        assert contracts["EMP002"].linked_entity.provisional_id == "id-2"
        assert contracts["EMP999"].linked_entity is None

        [rejected] = result.rejected
        assert rejected.entity_type == "contract"
        assert "EMP999" in rejected.reason

    async def test_summary(self, make_pipeline, groups, records_by_type, existing, oracle):
        result = await make_pipeline(oracle).analyze(groups, records_by_type, existing)

        summary = result.summary
        assert summary is not None
        assert summary.entity_types == 3
        assert summary.total_records == 7
        assert summary.total_entities == 5
        assert summary.linked == 2
        assert summary.rejected == 1
        assert summary.auto_resolved_conflicts == 0
        assert summary.review_conflicts == 1
        assert summary.oracle_failures == 0
        assert summary.duplicates.total_duplicates == 1
        assert summary.duplicates.will_update == 1
        assert summary.duplicates.new_entities == 1
        assert summary.estimated_import_time == "about 1 second(s)"

        previews = {p.entity_type: p for p in result.previews}
        assert previews["contract"].linked == 1
        assert previews["contract"].rejected == 1
        assert previews["employee"].count == 2

    async def test_progress_is_monotonic(self, make_pipeline, groups, records_by_type, oracle):
        events = []
        await make_pipeline(oracle).analyze(groups, records_by_type, on_progress=events.append)

        percents = [e.percent for e in events]
        assert percents == sorted(percents)
        assert percents[-1] == 100
        phases = {e.phase for e in events}
        assert {
            ImportPhase.LOAD_EXISTING,
            ImportPhase.MATCH_RECORDS,
            ImportPhase.DETECT_CONFLICTS,
            ImportPhase.RESOLVE_CONFLICTS,
            ImportPhase.BUILD_ENTITIES,
            ImportPhase.LINK_ENTITIES,
            ImportPhase.SUMMARIZE,
        } <= phases

    async def test_unavailable_oracle_fails_before_any_phase(
        self, make_pipeline, groups, records_by_type, store
    ):
        events = []
        pipeline = make_pipeline(ScriptedOracle(available=False))

        with pytest.raises(OracleUnavailableError):
            await pipeline.analyze(groups, records_by_type, on_progress=events.append)
        assert events == []
        assert len(store) == 0

    async def test_oracle_failure_degrades_to_review(
        self, make_pipeline, groups, records_by_type
    ):
        oracle = ScriptedOracle({"baseSalary": ConnectionError("gateway down")})
        result = await make_pipeline(oracle).analyze(groups, records_by_type)

        [conflict] = result.requires_review
        assert not conflict.resolved
        assert result.summary is not None
        assert result.summary.oracle_failures == 1

    async def test_rules_strategy_runs_without_oracle(
        self, make_pipeline, groups, records_by_type
    ):
        pipeline = make_pipeline(None, strategy=ResolutionStrategy.RULES)
        result = await pipeline.analyze(groups, records_by_type)

        [conflict] = result.requires_review
        assert conflict.resolved
        assert conflict.resolution is not None
        assert conflict.resolution.chosen_value == 500000
        assert conflict.resolution.requires_user_confirmation

    async def test_hybrid_strategy_skips_oracle_when_rule_applies(
        self, make_pipeline, groups, records_by_type, oracle
    ):
        pipeline = make_pipeline(oracle, strategy=ResolutionStrategy.HYBRID)
        await pipeline.analyze(groups, records_by_type)
        assert oracle.calls == []

    async def test_result_is_stored(self, make_pipeline, groups, records_by_type, store, oracle):
        result = await make_pipeline(oracle).analyze(groups, records_by_type, run_id="run-7")

        payload = await store.get("run-7")
        assert payload is not None
        assert payload["run_id"] == "run-7"
        assert payload["strategy"] == "oracle"
        assert payload["summary"]["rejected"] == 1
        assert payload["rejected"][0]["entity_type"] == "contract"
        assert len(payload["import_plan"]["entity_types"]) == len(result.groups)
        json.dumps(payload)


class TestImportPlan:
    async def test_plan_contents(self, make_pipeline, groups, records_by_type, existing, oracle):
        result = await make_pipeline(oracle).analyze(groups, records_by_type, existing)
        plan = result.to_import_plan()

        by_type = {p.entity_type: p for p in plan.entity_types}
        assert [p.entity_type for p in plan.entity_types] == ["employee", "contract", "leave"]

        update, new = by_type["employee"].records
        assert update.existing_entity_id == "emp-1"
        assert update.requires_review
        assert new.existing_entity_id is None
        assert not new.requires_review
        assert by_type["employee"].required_fields == ["employeeNumber"]

        [contract] = by_type["contract"].records
        assert contract.data["employee"] == "EMP002"
        assert contract.linked_entity_ref == "id-2"
        [leave] = by_type["leave"].records
        assert leave.linked_entity_ref == "emp-1"
        assert len(plan.rejected) == 1

    async def test_skip_duplicates_are_left_out(
        self, make_pipeline, make_identity, groups, records_by_type
    ):
        existing = [
            make_identity(
                "emp-1",
                employeeNumber="EMP001",
                firstName="Jean",
                lastName="KOUASSI",
                baseSalary=450000,
            )
        ]
        employees_only = {"employee": records_by_type["employee"][:2]}
        result = await make_pipeline(None, strategy=ResolutionStrategy.RULES).analyze(
            groups[1:2], employees_only, existing
        )

        [dup_match, _] = result.matches["employee"]
        assert dup_match.duplicate is not None
        assert dup_match.duplicate.recommended_action == RecommendedAction.SKIP
        [planned] = result.to_import_plan().entity_types
        assert [r.data["employeeNumber"] for r in planned.records] == ["EMP002"]


def read_jsonl(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestExecute:
    async def test_imports_in_dependency_order(
        self, make_pipeline, groups, records_by_type, existing, oracle, tmp_path
    ):
        pipeline = make_pipeline(oracle)
        result = await pipeline.analyze(groups, records_by_type, existing)

        outcome = await pipeline.execute(result, JsonLinesSink(tmp_path))

        assert outcome.success
        assert outcome.errors == []
        assert outcome.held_for_review == 1
        assert outcome.by_entity_type == {"employee": 1, "contract": 1, "leave": 1}
        assert outcome.records_imported == 3

        [employee] = read_jsonl(tmp_path / "employee.jsonl")
        assert employee["target_table"] == "employees"
        assert employee["data"]["employeeNumber"] == "EMP002"
        [contract] = read_jsonl(tmp_path / "contract.jsonl")
        assert contract["linked_entity_ref"] == employee["entity_id"]
        assert not list(tmp_path.glob("*.part"))

    async def test_include_pending_review(
        self, make_pipeline, groups, records_by_type, existing, oracle, tmp_path
    ):
        pipeline = make_pipeline(oracle)
        result = await pipeline.analyze(groups, records_by_type, existing)

        outcome = await pipeline.execute(
            result, JsonLinesSink(tmp_path), include_pending_review=True
        )

        assert outcome.held_for_review == 0
        assert outcome.by_entity_type["employee"] == 2

    async def test_failed_entity_type_keeps_the_others(
        self, make_pipeline, make_group, groups, records_by_type, oracle, tmp_path
    ):
        groups[2] = make_group(
            "contract", priority=2, dependencies=("employee",), required=("signedOn",)
        )
        pipeline = make_pipeline(oracle)
        result = await pipeline.analyze(groups, records_by_type)

        outcome = await pipeline.execute(result, JsonLinesSink(tmp_path))

        assert not outcome.success
        [error] = outcome.errors
        assert "signedOn" in error
        assert "contract" not in outcome.by_entity_type
        assert (tmp_path / "employee.jsonl").exists()
        assert (tmp_path / "leave.jsonl").exists()
        assert not (tmp_path / "contract.jsonl").exists()

    async def test_partial_import_disallowed_rolls_back(
        self, make_pipeline, make_group, groups, records_by_type, oracle, tmp_path
    ):
        groups[2] = make_group(
            "contract", priority=2, dependencies=("employee",), required=("signedOn",)
        )
        pipeline = make_pipeline(oracle, allow_partial_import=False)
        result = await pipeline.analyze(groups, records_by_type)

        with pytest.raises(PartialImportDisallowedError):
            await pipeline.execute(result, JsonLinesSink(tmp_path))
        assert list(tmp_path.iterdir()) == []

    async def test_execute_by_run_id(
        self, make_pipeline, groups, records_by_type, oracle, tmp_path
    ):
        pipeline = make_pipeline(oracle)
        result = await pipeline.analyze(groups, records_by_type)

        outcome = await pipeline.execute(result.run_id, JsonLinesSink(tmp_path))

        assert outcome.run_id == result.run_id
        assert outcome.records_imported > 0

    async def test_unknown_run_id(self, make_pipeline, tmp_path):
        with pytest.raises(AnalysisNotFoundError):
            await make_pipeline().execute("missing", JsonLinesSink(tmp_path))

    async def test_expired_run_id(self, make_pipeline, groups, records_by_type, oracle, tmp_path):
        now = [0.0]
        store = InMemoryAnalysisStore(ttl_seconds=10, clock=lambda: now[0])
        pipeline = make_pipeline(oracle, store=store)
        result = await pipeline.analyze(groups, records_by_type)

        now[0] = 11.0
        with pytest.raises(AnalysisNotFoundError):
            await pipeline.execute(result.run_id, JsonLinesSink(tmp_path))


class TestOrderEntityTypes:
    def test_primary_first_then_priority_and_dependencies(self, make_group) -> None:
        ordered = order_entity_types(
            [
                make_group("leave", priority=1, dependencies=("contract",)),
                make_group("contract", priority=5),
                make_group("employee", priority=9),
                make_group("salary", priority=2),
            ]
        )
        assert [g.entity_type for g in ordered] == ["employee", "salary", "contract", "leave"]

    def test_cycle_falls_back_to_priority(self, make_group) -> None:
        ordered = order_entity_types(
            [
                make_group("a", priority=2, dependencies=("b",)),
                make_group("b", priority=1, dependencies=("a",)),
            ]
        )
        assert [g.entity_type for g in ordered] == ["b", "a"]

    def test_unknown_dependencies_are_ignored(self, make_group) -> None:
        ordered = order_entity_types([make_group("leave", dependencies=("absence_type",))])
        assert [g.entity_type for g in ordered] == ["leave"]
