"""Contract of the Semantic Classification Service as the core consumes it."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from roster_merge.inference.schemas import ConflictContext, ConflictResolutionProposal
from roster_merge.models.conflicts import FieldConflict


@runtime_checkable
class ClassificationOracle(Protocol):
    """Chooses the value to keep when sources disagree.

    Implementations may be slow and non-deterministic. ``resolve_conflict``
    may raise any exception; callers degrade failures to requires-review.
    """

    def check_available(self) -> None:
        """Raise ``OracleUnavailableError`` when the service cannot be used."""
        ...

    async def resolve_conflict(
        self, conflict: FieldConflict, context: ConflictContext
    ) -> ConflictResolutionProposal: ...
