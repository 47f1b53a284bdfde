"""Pipeline Orchestrator: runs every phase across all entity types.

Phases, in order:

1. index the pre-existing population
2. match records per entity type (duplicates flagged for the primary type)
3. detect field conflicts
4. arbitrate conflicts (recency rule and/or oracle)
5. build primary entities, index them, then build and link the others
6. summarize, and keep the result in the analysis store

The run fails up front only when the chosen strategy needs the oracle and the
oracle is unavailable. ``execute`` then imports an analysis into a sink, one
entity type at a time, keeping earlier entity types when a later one fails
unless partial import is disabled.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from roster_merge.config import settings
from roster_merge.errors import (
    AnalysisNotFoundError,
    EntityValidationError,
    PartialImportDisallowedError,
)
from roster_merge.inference.oracle import ClassificationOracle
from roster_merge.models.conflicts import FieldConflict
from roster_merge.models.entities import MergedEntity
from roster_merge.models.enums import ImportPhase, ResolutionStrategy
from roster_merge.models.groups import EntityTypeGroup
from roster_merge.models.records import EntityIdentity, RecordMatch, SourceRecord
from roster_merge.pipeline.progress import ProgressCallback, ProgressReporter
from roster_merge.pipeline.result import AnalysisResult, ImportPlan
from roster_merge.pipeline.sink import ImportSink, find_missing_required
from roster_merge.pipeline.store import AnalysisStore
from roster_merge.pipeline.summary import (
    RunSummary,
    build_type_preview,
    compute_duplicate_stats,
    estimate_import_time,
)
from roster_merge.resolution.arbitration import ConflictArbiter, analyze_source_quality
from roster_merge.resolution.conflicts import ConflictDetector
from roster_merge.resolution.index import EntityIndex
from roster_merge.resolution.linkage import LinkageFilter, build_linkage_index
from roster_merge.resolution.matcher import RecordMatcher
from roster_merge.resolution.merge import EntityMergeBuilder

logger = logging.getLogger(__name__)


def order_entity_types(groups: Iterable[EntityTypeGroup]) -> list[EntityTypeGroup]:
    """Primary type first, then by priority, keeping dependencies before dependents.

    Unknown dependencies are ignored. A dependency cycle falls back to plain
    priority order for the groups involved.
    """
    pending = sorted(groups, key=lambda g: (not g.is_primary, g.priority, g.entity_type))
    known = {g.entity_type for g in pending}
    ordered: list[EntityTypeGroup] = []
    placed: set[str] = set()

    while pending:
        ready = next(
            (
                g
                for g in pending
                if g.is_primary or all(d in placed or d not in known for d in g.dependencies)
            ),
            None,
        )
        if ready is None:
            logger.warning(
                "Dependency cycle among %s; using priority order",
                ", ".join(g.entity_type for g in pending),
            )
            ready = pending[0]
        pending.remove(ready)
        ordered.append(ready)
        placed.add(ready.entity_type)
    return ordered


@dataclass
class ImportResult:
    run_id: str
    success: bool
    records_imported: int = 0
    by_entity_type: dict[str, int] = field(default_factory=dict)
    held_for_review: int = 0
    errors: list[str] = field(default_factory=list)


class ImportPipeline:
    """One orchestrator for every resolution strategy.

    Usage:
        pipeline = ImportPipeline(LLMConflictOracle(), strategy=ResolutionStrategy.HYBRID)
        result = await pipeline.analyze(groups, records_by_type, existing)
        outcome = await pipeline.execute(result, JsonLinesSink("out/"))
    """

    def __init__(
        self,
        oracle: ClassificationOracle | None = None,
        *,
        strategy: ResolutionStrategy = ResolutionStrategy.ORACLE,
        store: AnalysisStore | None = None,
        country_code: str | None = None,
        allow_partial_import: bool | None = None,
        matcher: RecordMatcher | None = None,
        detector: ConflictDetector | None = None,
        arbiter: ConflictArbiter | None = None,
        merger: EntityMergeBuilder | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            oracle: Classification oracle (not needed for the rules strategy).
            strategy: How conflicts are arbitrated.
            store: Where analysis results are kept for a later import.
            country_code: Country context for the oracle (default: settings).
            allow_partial_import: Keep successful entity types when another
                fails (default: settings).
            matcher: Record matcher override.
            detector: Conflict detector override.
            arbiter: Conflict arbiter override (takes precedence over
                ``oracle``/``strategy``).
            merger: Merge builder override.
        """
        self._country_code = country_code or settings.country_code
        self._allow_partial = (
            allow_partial_import
            if allow_partial_import is not None
            else settings.allow_partial_import
        )
        self._store = store
        self._matcher = matcher or RecordMatcher()
        self._detector = detector or ConflictDetector()
        self._arbiter = arbiter or ConflictArbiter(
            oracle, strategy=strategy, country_code=self._country_code
        )
        self._merger = merger or EntityMergeBuilder()

    async def analyze(
        self,
        groups: Sequence[EntityTypeGroup],
        records_by_type: Mapping[str, Sequence[SourceRecord]],
        existing: Iterable[EntityIdentity] = (),
        *,
        on_progress: ProgressCallback | None = None,
        run_id: str | None = None,
    ) -> AnalysisResult:
        """Run every analysis phase.

        Args:
            groups: Entity types handed over by the classification service.
            records_by_type: Normalized records keyed by entity type.
            existing: The pre-existing employee population.
            on_progress: Receives progress events.
            run_id: Id under which the result is stored (default: uuid4).

        Returns:
            The analysis result, also saved to the store when one is configured.

        Raises:
            OracleUnavailableError: If the strategy needs the oracle and it
                cannot be used. Raised before any phase starts.
        """
        self._arbiter.check_available()

        progress = ProgressReporter(on_progress)
        ordered = order_entity_types(groups)
        result = AnalysisResult(
            run_id=run_id or str(uuid4()),
            strategy=self._arbiter.strategy,
            country_code=self._country_code,
            created_at=datetime.now(UTC),
            groups=ordered,
        )
        total = max(len(ordered), 1)

        existing = list(existing)
        progress.report(
            ImportPhase.LOAD_EXISTING, 2, f"Indexing {len(existing)} existing employee(s)"
        )
        existing_index = EntityIndex.build(existing)

        for i, group in enumerate(ordered, start=1):
            records = records_by_type.get(group.entity_type, [])
            result.matches[group.entity_type] = self._matcher.match(
                records, group, existing=existing_index
            )
            progress.report(
                ImportPhase.MATCH_RECORDS,
                5 + 15 * i / total,
                f"{group.display_name}: {len(records)} record(s) → "
                f"{len(result.matches[group.entity_type])} entit(ies)",
            )

        detected: dict[str, list[FieldConflict]] = {}
        for i, group in enumerate(ordered, start=1):
            detected[group.entity_type] = self._detector.detect_all(
                result.matches[group.entity_type]
            )
            progress.report(
                ImportPhase.DETECT_CONFLICTS,
                20 + 10 * i / total,
                f"{group.display_name}: {len(detected[group.entity_type])} conflict(s)",
            )

        arbitrated: dict[str, list[FieldConflict]] = {}
        oracle_failures = 0
        for i, group in enumerate(ordered, start=1):
            # Sources that lost earlier conflicts in this run carry lower scores
            quality = analyze_source_quality(c for cs in arbitrated.values() for c in cs)
            outcome = await self._arbiter.arbitrate(
                detected[group.entity_type],
                entity_type=group.entity_type,
                source_quality_scores=quality.scores,
            )
            arbitrated[group.entity_type] = outcome.conflicts
            result.auto_resolved.extend(outcome.auto_resolved)
            result.requires_review.extend(outcome.requires_review)
            oracle_failures += outcome.oracle_failures
            progress.report(
                ImportPhase.RESOLVE_CONFLICTS,
                30 + 30 * i / total,
                f"{group.display_name}: {len(outcome.auto_resolved)} auto-resolved, "
                f"{len(outcome.requires_review)} for review",
            )

        primary = [g for g in ordered if g.is_primary]
        others = [g for g in ordered if not g.is_primary]

        for group in primary:
            result.entities[group.entity_type] = self._build(group, result, arbitrated)
        progress.report(
            ImportPhase.BUILD_ENTITIES,
            70,
            f"Built {sum(len(result.entities[g.entity_type]) for g in primary)} employee(s)",
        )

        duplicates = {
            m.entity_id: m.duplicate
            for g in primary
            for m in result.matches[g.entity_type]
            if m.duplicate is not None
        }
        linkage = LinkageFilter(
            build_linkage_index(
                existing,
                (e for g in primary for e in result.entities[g.entity_type]),
                duplicates,
            )
        )

        linked_counts: dict[str, tuple[int, int]] = {}
        for i, group in enumerate(others, start=1):
            outcome = linkage.link(self._build(group, result, arbitrated))
            result.entities[group.entity_type] = outcome.entities
            result.rejected.extend(outcome.rejections)
            linked_counts[group.entity_type] = (len(outcome.linked), len(outcome.rejected))
            progress.report(
                ImportPhase.LINK_ENTITIES,
                70 + 20 * i / max(len(others), 1),
                f"{group.display_name}: {len(outcome.linked)} linked, "
                f"{len(outcome.rejected)} rejected",
            )

        result.previews = [
            build_type_preview(
                g,
                result.entities[g.entity_type],
                linked=linked_counts.get(g.entity_type, (0, 0))[0],
                rejected=linked_counts.get(g.entity_type, (0, 0))[1],
            )
            for g in ordered
        ]
        result.summary = self._summarize(result, records_by_type, arbitrated, oracle_failures)

        if self._store is not None:
            await self._store.put(result.run_id, result.to_payload())

        summary = result.summary
        progress.report(
            ImportPhase.SUMMARIZE,
            100,
            f"Analysis complete: {summary.total_entities} entit(ies), "
            f"{summary.review_conflicts} conflict(s) for review, {summary.rejected} rejected",
        )
        logger.info(
            "Run %s: %d entities, %d linked, %d rejected, %d auto-resolved, %d for review",
            result.run_id,
            summary.total_entities,
            summary.linked,
            summary.rejected,
            summary.auto_resolved_conflicts,
            summary.review_conflicts,
        )
        return result

    async def load(self, run_id: str) -> ImportPlan:
        """Fetch a stored analysis as an import plan."""
        payload = await self._store.get(run_id) if self._store is not None else None
        if payload is None:
            raise AnalysisNotFoundError(run_id)
        return ImportPlan.from_payload(payload)

    async def execute(
        self,
        analysis: AnalysisResult | ImportPlan | str,
        sink: ImportSink,
        *,
        include_pending_review: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> ImportResult:
        """Import an analysis into ``sink`` in dependency order.

        Args:
            analysis: A result, its import plan, or a stored run id.
            sink: Receives each entity type's records.
            include_pending_review: Also import records whose conflicts or
                duplicate decision still await review.
            on_progress: Receives progress events.

        Returns:
            Per-entity-type counts and recorded errors.

        Raises:
            AnalysisNotFoundError: If a run id is unknown or expired.
            PartialImportDisallowedError: If an entity type fails while
                partial import is disabled. The sink is rolled back first.
        """
        if isinstance(analysis, str):
            plan = await self.load(analysis)
        elif isinstance(analysis, AnalysisResult):
            plan = analysis.to_import_plan()
        else:
            plan = analysis

        progress = ProgressReporter(on_progress)
        outcome = ImportResult(run_id=plan.run_id, success=True)
        total = max(len(plan.entity_types), 1)
        progress.report(
            ImportPhase.IMPORT, 0, f"Importing {len(plan.entity_types)} entity type(s)"
        )

        for i, planned in enumerate(plan.entity_types):
            records = [
                r for r in planned.records if include_pending_review or not r.requires_review
            ]
            outcome.held_for_review += len(planned.records) - len(records)
            if not records:
                continue

            missing = find_missing_required([r.data for r in records], planned.required_fields)
            try:
                if missing:
                    raise EntityValidationError(planned.entity_type, missing)
                written = await sink.write(planned.entity_type, planned.target_table, records)
            except Exception as exc:
                message = f"{planned.display_name}: {exc}"
                outcome.errors.append(message)
                outcome.success = False
                logger.warning("Import of %s failed: %s", planned.entity_type, exc)
                if not self._allow_partial:
                    await sink.rollback()
                    msg = f"Import aborted and rolled back: {message}"
                    raise PartialImportDisallowedError(msg) from exc
                continue

            outcome.records_imported += written
            outcome.by_entity_type[planned.entity_type] = written
            progress.report(
                ImportPhase.IMPORT,
                90 * (i + 1) / total,
                f"{planned.display_name}: {written} record(s) imported",
            )

        await sink.commit()
        progress.report(
            ImportPhase.IMPORT,
            100,
            f"Import finished: {outcome.records_imported} record(s)",
            {"errors": len(outcome.errors), "held_for_review": outcome.held_for_review},
        )
        return outcome

    def _build(
        self,
        group: EntityTypeGroup,
        result: AnalysisResult,
        arbitrated: Mapping[str, list[FieldConflict]],
    ) -> list[MergedEntity]:
        return self._merger.build_all(
            result.matches[group.entity_type],
            arbitrated.get(group.entity_type, []),
            schema=group.target_schema,
        )

    def _summarize(
        self,
        result: AnalysisResult,
        records_by_type: Mapping[str, Sequence[SourceRecord]],
        arbitrated: Mapping[str, list[FieldConflict]],
        oracle_failures: int,
    ) -> RunSummary:
        primary_matches: list[RecordMatch] = [
            m for g in result.groups if g.is_primary for m in result.matches[g.entity_type]
        ]
        quality = analyze_source_quality(c for cs in arbitrated.values() for c in cs)
        entities = [e for es in result.entities.values() for e in es]
        importable = sum(len(p.records) for p in result.to_import_plan().entity_types)
        return RunSummary(
            run_id=result.run_id,
            entity_types=len(result.groups),
            total_records=sum(len(records_by_type.get(g.entity_type, [])) for g in result.groups),
            total_entities=len(entities),
            linked=sum(1 for e in entities if e.linked_entity is not None),
            rejected=len(result.rejected),
            auto_resolved_conflicts=len(result.auto_resolved),
            review_conflicts=len(result.requires_review),
            oracle_failures=oracle_failures,
            duplicates=compute_duplicate_stats(primary_matches),
            source_quality=quality.scores,
            recommendations=quality.recommendations,
            estimated_import_time=estimate_import_time(importable),
        )
