"""Conflict Resolution Orchestrator.

Each conflict is either settled by the deterministic recency rule or handed
to the classification oracle, depending on the resolution strategy. Oracle
calls run concurrently, bounded by a semaphore and a rate limiter, each with
its own timeout. A failed, timed-out or nonsensical call leaves the conflict
unresolved so that it lands in requires-review; no source is ever picked by
default.

After resolution a conflict is auto-resolved iff severity is low, confidence
is at least ``auto_resolve_min_confidence`` and no user confirmation is
requested. Everything else requires review.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import timedelta

from aiolimiter import AsyncLimiter

from roster_merge.config import settings
from roster_merge.errors import OracleCallError, OracleUnavailableError
from roster_merge.inference.oracle import ClassificationOracle
from roster_merge.inference.schemas import ConflictContext, ConflictResolutionProposal
from roster_merge.models.conflicts import ConflictResolution, FieldConflict
from roster_merge.models.enums import ConflictSeverity, ResolutionStrategy, ResolvedBy
from roster_merge.normalization.values import normalize_value

logger = logging.getLogger(__name__)

RECENCY_RULE_CONFIDENCE = 90
QUALITY_PENALTY_PER_CONFLICT = 10
QUALITY_REVIEW_BELOW = 70


@dataclass
class ArbitrationOutcome:
    """Conflicts after arbitration, split for the operator."""

    conflicts: list[FieldConflict]
    """All conflicts in input order, resolved where possible."""

    auto_resolved: list[FieldConflict] = field(default_factory=list)
    requires_review: list[FieldConflict] = field(default_factory=list)
    oracle_calls: int = 0
    oracle_failures: int = 0


@dataclass
class SourceQualityReport:
    """Per-source quality derived from how often a source lost a conflict."""

    scores: dict[str, int]
    """``file::sheet`` → 0-100."""

    recommendations: list[str]


def apply_recency_rule(conflict: FieldConflict, min_days: int) -> ConflictResolution | None:
    """Pick the newest value when its source beats every other by ``min_days``.

    Returns ``None`` when the rule does not apply.
    """
    ordered = sorted(conflict.sources, key=lambda s: s.observed_at)
    newest, others = ordered[-1], ordered[:-1]
    margin = timedelta(days=min_days)
    if not others or any(newest.observed_at - s.observed_at < margin for s in others):
        return None

    return ConflictResolution(
        chosen_source=newest.source_key,
        chosen_value=newest.value,
        confidence=RECENCY_RULE_CONFIDENCE,
        requires_user_confirmation=conflict.severity != ConflictSeverity.LOW,
        resolved_by=ResolvedBy.AUTO,
        reasoning=(
            f"{newest.source_key} ({newest.observed_at.date().isoformat()}) is at least "
            f"{min_days} days newer than every other source"
        ),
    )


def analyze_source_quality(conflicts: Iterable[FieldConflict]) -> SourceQualityReport:
    """Score each source by the conflicts it lost or left unresolved."""
    penalties: dict[str, int] = {}
    for conflict in conflicts:
        winner = conflict.resolution.chosen_source if conflict.resolution else None
        for key in dict.fromkeys(conflict.source_keys()):
            penalties.setdefault(key, 0)
            if not conflict.resolved or key != winner:
                penalties[key] += 1

    scores = {
        key: max(0, 100 - QUALITY_PENALTY_PER_CONFLICT * count) for key, count in penalties.items()
    }
    recommendations = [
        f"{key}: quality score {score}/100 after {penalties[key]} lost or unresolved "
        f"conflict(s); check this export before importing"
        for key, score in scores.items()
        if score < QUALITY_REVIEW_BELOW
    ]
    return SourceQualityReport(scores=scores, recommendations=recommendations)


class ConflictArbiter:
    """Resolves field conflicts with the recency rule and/or the oracle.

    Usage:
        arbiter = ConflictArbiter(oracle, strategy=ResolutionStrategy.HYBRID)
        outcome = await arbiter.arbitrate(conflicts, entity_type="employee")
    """

    def __init__(
        self,
        oracle: ClassificationOracle | None,
        *,
        strategy: ResolutionStrategy = ResolutionStrategy.ORACLE,
        max_concurrency: int | None = None,
        rate_limit_per_minute: int | None = None,
        timeout_seconds: float | None = None,
        auto_resolve_min_confidence: int | None = None,
        recency_rule_min_days: int | None = None,
        country_code: str | None = None,
        limiter: AsyncLimiter | None = None,
    ) -> None:
        """Initialize the arbiter.

        Args:
            oracle: Classification oracle. Only the ``rules`` strategy works
                without one.
            strategy: oracle, hybrid (recency rule first) or rules (no oracle).
            max_concurrency: Concurrent oracle calls (default: settings).
            rate_limit_per_minute: Oracle calls per minute (default: settings).
            timeout_seconds: Per-call timeout (default: settings).
            auto_resolve_min_confidence: Auto-resolution threshold (default: settings).
            recency_rule_min_days: Recency rule margin (default: settings).
            country_code: Country whose rules the oracle applies (default: settings).
            limiter: Shared rate limiter; built from ``rate_limit_per_minute`` if absent.
        """
        self._oracle = oracle
        self._strategy = strategy
        self._max_concurrency = max_concurrency or settings.oracle_max_concurrency
        self._timeout = timeout_seconds or settings.oracle_timeout_seconds
        self._min_confidence = (
            auto_resolve_min_confidence
            if auto_resolve_min_confidence is not None
            else settings.auto_resolve_min_confidence
        )
        self._recency_days = (
            recency_rule_min_days
            if recency_rule_min_days is not None
            else settings.recency_rule_min_days
        )
        self._country_code = country_code or settings.country_code
        self._limiter = limiter or AsyncLimiter(
            rate_limit_per_minute or settings.oracle_rate_limit_per_minute, 60
        )

    @property
    def strategy(self) -> ResolutionStrategy:
        return self._strategy

    @property
    def needs_oracle(self) -> bool:
        return self._strategy != ResolutionStrategy.RULES

    def check_available(self) -> None:
        """Raise ``OracleUnavailableError`` if the strategy needs a missing oracle."""
        if not self.needs_oracle:
            return
        if self._oracle is None:
            msg = f"Strategy {self._strategy.value!r} needs a classification oracle"
            raise OracleUnavailableError(msg)
        self._oracle.check_available()

    async def arbitrate(
        self,
        conflicts: Sequence[FieldConflict],
        *,
        entity_type: str,
        source_quality_scores: dict[str, int] | None = None,
    ) -> ArbitrationOutcome:
        """Resolve ``conflicts`` and partition them.

        Args:
            conflicts: Conflicts of one entity type.
            entity_type: Passed to the oracle as context.
            source_quality_scores: Scores from earlier arbitration in this run.

        Returns:
            The arbitrated conflicts plus the auto-resolved/requires-review split.
        """
        if not conflicts:
            return ArbitrationOutcome(conflicts=[])

        context = ConflictContext(
            entity_type=entity_type,
            country_code=self._country_code,
            source_quality_scores=source_quality_scores or {},
        )

        resolved: list[FieldConflict | None] = [None] * len(conflicts)
        pending: list[int] = []
        for i, conflict in enumerate(conflicts):
            rule = None
            if self._strategy != ResolutionStrategy.ORACLE:
                rule = apply_recency_rule(conflict, self._recency_days)
            if rule is not None:
                resolved[i] = replace(conflict, resolved=True, resolution=rule)
            elif self._strategy == ResolutionStrategy.RULES:
                resolved[i] = conflict
            else:
                pending.append(i)

        failures = 0
        if pending:
            semaphore = asyncio.Semaphore(self._max_concurrency)
            answers = await asyncio.gather(
                *(self._resolve_with_oracle(conflicts[i], context, semaphore) for i in pending)
            )
            for i, answer in zip(pending, answers, strict=True):
                resolved[i] = answer
                if not answer.resolved:
                    failures += 1

        final = [c for c in resolved if c is not None]
        auto, review = self.partition(final)
        logger.info(
            "Arbitrated %d %s conflict(s): %d auto-resolved, %d for review (%d oracle failure(s))",
            len(final),
            entity_type,
            len(auto),
            len(review),
            failures,
        )
        return ArbitrationOutcome(
            conflicts=final,
            auto_resolved=auto,
            requires_review=review,
            oracle_calls=len(pending),
            oracle_failures=failures,
        )

    def is_auto_resolved(self, conflict: FieldConflict) -> bool:
        resolution = conflict.resolution
        return (
            conflict.resolved
            and resolution is not None
            and conflict.severity == ConflictSeverity.LOW
            and resolution.confidence >= self._min_confidence
            and not resolution.requires_user_confirmation
        )

    def partition(
        self, conflicts: Iterable[FieldConflict]
    ) -> tuple[list[FieldConflict], list[FieldConflict]]:
        auto: list[FieldConflict] = []
        review: list[FieldConflict] = []
        for conflict in conflicts:
            (auto if self.is_auto_resolved(conflict) else review).append(conflict)
        return auto, review

    async def _resolve_with_oracle(
        self,
        conflict: FieldConflict,
        context: ConflictContext,
        semaphore: asyncio.Semaphore,
    ) -> FieldConflict:
        try:
            async with semaphore, self._limiter:
                proposal = await self._call_oracle(conflict, context)
            resolution = self._to_resolution(conflict, proposal)
        except OracleCallError as exc:
            logger.warning(
                "Conflict %s (%s) left for review: %s", conflict.conflict_id, conflict.field, exc
            )
            return conflict

        logger.debug(
            "Conflict %s (%s) → %s, confidence %d",
            conflict.conflict_id,
            conflict.field,
            resolution.chosen_source,
            resolution.confidence,
        )
        return replace(conflict, resolved=True, resolution=resolution)

    async def _call_oracle(
        self, conflict: FieldConflict, context: ConflictContext
    ) -> ConflictResolutionProposal:
        if self._oracle is None:
            msg = f"strategy {self._strategy.value!r} has no classification oracle"
            raise OracleCallError(msg)
        try:
            return await asyncio.wait_for(
                self._oracle.resolve_conflict(conflict, context), timeout=self._timeout
            )
        except TimeoutError as exc:
            msg = f"oracle timed out after {self._timeout:.0f}s"
            raise OracleCallError(msg) from exc
        except Exception as exc:
            msg = f"oracle call failed: {exc}"
            raise OracleCallError(msg) from exc

    @staticmethod
    def _to_resolution(
        conflict: FieldConflict, proposal: ConflictResolutionProposal
    ) -> ConflictResolution:
        candidates = [s for s in conflict.sources if s.source_key == proposal.chosen_source]
        if not candidates:
            msg = f"oracle chose unknown source {proposal.chosen_source!r}"
            raise OracleCallError(msg)

        wanted = normalize_value(proposal.chosen_value)
        chosen = next((s for s in candidates if normalize_value(s.value) == wanted), candidates[0])
        return ConflictResolution(
            chosen_source=chosen.source_key,
            chosen_value=chosen.value,
            confidence=proposal.confidence,
            requires_user_confirmation=proposal.requires_user_confirmation,
            resolved_by=ResolvedBy.ORACLE,
            reasoning=proposal.reasoning,
        )


def resolve_by_user(conflict: FieldConflict, chosen_source: str) -> FieldConflict:
    """Record an operator's decision on a conflict.

    Raises:
        ValueError: If ``chosen_source`` is not one of the conflict's sources.
    """
    source = next((s for s in conflict.sources if s.source_key == chosen_source), None)
    if source is None:
        msg = f"{chosen_source!r} is not a source of conflict {conflict.conflict_id}"
        raise ValueError(msg)
    resolution = ConflictResolution(
        chosen_source=source.source_key,
        chosen_value=source.value,
        confidence=100,
        requires_user_confirmation=False,
        resolved_by=ResolvedBy.USER,
        reasoning="Chosen by operator",
    )
    return replace(conflict, resolved=True, resolution=resolution)
