"""Shared pytest fixtures for RosterMerge tests."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from roster_merge.errors import OracleUnavailableError
from roster_merge.inference.schemas import ConflictContext, ConflictResolutionProposal
from roster_merge.models import (
    EntityIdentity,
    EntityTypeGroup,
    FieldConflict,
    SourceRecord,
    SourceRef,
    TargetSchema,
)

JAN_2023 = datetime(2023, 1, 15, tzinfo=UTC)
JUN_2024 = datetime(2024, 6, 15, tzinfo=UTC)


class ScriptedOracle:
    """Stub oracle answering from a script keyed by field name.

    A script entry is either a proposal, an exception to raise, or a
    callable ``(conflict) -> proposal``. Fields without an entry get the
    newest source with ``default_confidence``.
    """

    def __init__(
        self,
        script: dict[str, Any] | None = None,
        *,
        available: bool = True,
        default_confidence: int = 90,
        requires_confirmation: bool = False,
    ) -> None:
        self.script = script or {}
        self.available = available
        self.default_confidence = default_confidence
        self.requires_confirmation = requires_confirmation
        self.calls: list[tuple[FieldConflict, ConflictContext]] = []

    def check_available(self) -> None:
        if not self.available:
            raise OracleUnavailableError("scripted oracle is offline")

    async def resolve_conflict(
        self, conflict: FieldConflict, context: ConflictContext
    ) -> ConflictResolutionProposal:
        self.calls.append((conflict, context))
        answer = self.script.get(conflict.field)
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            return answer(conflict)
        if answer is not None:
            return answer

        newest = max(conflict.sources, key=lambda s: s.observed_at)
        return ConflictResolutionProposal(
            chosen_source_file=newest.source_file,
            chosen_source_sheet=newest.source_sheet,
            chosen_value=newest.value,
            confidence=self.default_confidence,
            reasoning="newest source",
            requires_user_confirmation=self.requires_confirmation,
        )


@pytest.fixture
def make_record() -> Callable[..., SourceRecord]:
    """Factory for source records."""

    def _make(
        fields: dict[str, Any],
        *,
        file: str = "rh.xlsx",
        sheet: str = "Employees",
        data_type: str = "employee",
        ingested_at: datetime = JAN_2023,
    ) -> SourceRecord:
        return SourceRecord(
            source_file=file,
            source_sheet=sheet,
            data_type=data_type,
            fields=fields,
            ingested_at=ingested_at,
        )

    return _make


@pytest.fixture
def make_identity() -> Callable[..., EntityIdentity]:
    """Factory for existing employees."""
    counter = itertools.count(1)

    def _make(entity_id: str | None = None, **fields: Any) -> EntityIdentity:
        return EntityIdentity.from_fields(
            fields, entity_id=entity_id or f"existing-{next(counter)}"
        )

    return _make


@pytest.fixture
def make_group() -> Callable[..., EntityTypeGroup]:
    """Factory for entity-type groups."""

    def _make(
        entity_type: str = "employee",
        *,
        is_primary: bool | None = None,
        priority: int = 10,
        required: tuple[str, ...] = (),
        optional: tuple[str, ...] = (),
        dependencies: tuple[str, ...] = (),
        discriminators: tuple[str, ...] = (),
        sources: tuple[SourceRef, ...] = (),
    ) -> EntityTypeGroup:
        schema = TargetSchema(required, optional) if (required or optional) else None
        return EntityTypeGroup(
            entity_type=entity_type,
            display_name=entity_type.replace("_", " ").title(),
            sources=sources,
            target_table=f"{entity_type}s",
            target_schema=schema,
            priority=priority,
            dependencies=dependencies,
            discriminator_fields=discriminators,
            is_primary=entity_type == "employee" if is_primary is None else is_primary,
        )

    return _make


@pytest.fixture
def sequential_ids() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()
