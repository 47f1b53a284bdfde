"""Error definitions for RosterMerge.

Expected outcomes (no match, unresolved conflict, linkage miss) are data, not
exceptions. These classes cover malformed input and external-call failures.
"""

from __future__ import annotations


class RosterMergeError(Exception):
    """Base class for all RosterMerge errors."""


class MalformedRecordError(RosterMergeError, ValueError):
    """Raised when a raw record lacks structure the pipeline relies on."""


class OracleUnavailableError(RosterMergeError):
    """Raised when the classification oracle cannot be used at all.

    Fatal only when detected before the first pipeline phase.
    """


class OracleCallError(RosterMergeError):
    """Raised when a single oracle call fails, times out or answers nonsense."""


class EntityValidationError(RosterMergeError):
    """Raised when merged entities fail target-schema validation."""

    def __init__(self, entity_type: str, missing: dict[int, list[str]]) -> None:
        self.entity_type = entity_type
        self.missing = missing
        fields = sorted({name for names in missing.values() for name in names})
        super().__init__(
            f"{entity_type}: {len(missing)} entity(ies) missing required fields "
            f"{', '.join(fields)}"
        )


class PartialImportDisallowedError(RosterMergeError):
    """Raised when an entity type fails and partial import is disabled."""


class AnalysisNotFoundError(RosterMergeError, KeyError):
    """Raised when an analysis run id is unknown or has expired."""
