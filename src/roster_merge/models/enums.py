"""Enumerations for the RosterMerge data model."""

from enum import Enum


class MatchMethod(str, Enum):
    """Which matching key resolved a record group or an index lookup.

    The first five members are the index cascade, strongest first.
    """

    EMPLOYEE_NUMBER = "employee_number"  # Business number
    EMAIL = "email"  # Contact identifier
    CNPS_NUMBER = "cnps_number"  # Secondary identifier (social security)
    PHONE_NUMBER = "phone_number"  # Contact number
    FULL_NAME = "full_name"  # Token-sorted display name
    SINGLE_SOURCE = "single_source"  # Only one contributing source
    UNMATCHED = "unmatched"  # No usable key at all


# Fixed confidence per index strategy (0-100)
MATCH_CONFIDENCE: dict[MatchMethod, int] = {
    MatchMethod.EMPLOYEE_NUMBER: 100,
    MatchMethod.EMAIL: 95,
    MatchMethod.CNPS_NUMBER: 90,
    MatchMethod.PHONE_NUMBER: 85,
    MatchMethod.FULL_NAME: 75,
    MatchMethod.SINGLE_SOURCE: 100,
    MatchMethod.UNMATCHED: 50,
}

# Strict priority order used by every lookup
INDEX_CASCADE: tuple[MatchMethod, ...] = (
    MatchMethod.EMPLOYEE_NUMBER,
    MatchMethod.EMAIL,
    MatchMethod.CNPS_NUMBER,
    MatchMethod.PHONE_NUMBER,
    MatchMethod.FULL_NAME,
)


class RecommendedAction(str, Enum):
    """What to do with an incoming employee that already exists."""

    UPDATE = "update"
    SKIP = "skip"
    ASK_USER = "ask_user"


class ConflictSeverity(str, Enum):
    """Static importance tier of a conflicting field."""

    CRITICAL = "critical"
    MEDIUM = "medium"
    LOW = "low"


class ResolvedBy(str, Enum):
    """Who produced a conflict resolution."""

    AUTO = "auto"  # Deterministic rule, no oracle call
    ORACLE = "oracle"
    USER = "user"


class ResolutionStrategy(str, Enum):
    """How the pipeline arbitrates conflicts."""

    ORACLE = "oracle"  # Every conflict goes to the oracle
    HYBRID = "hybrid"  # Recency rule first, oracle for the rest
    RULES = "rules"  # Recency rule only, never calls the oracle


class ImportPhase(str, Enum):
    """Phase tag attached to progress events."""

    LOAD_EXISTING = "load_existing"
    MATCH_RECORDS = "match_records"
    DETECT_CONFLICTS = "detect_conflicts"
    RESOLVE_CONFLICTS = "resolve_conflicts"
    BUILD_ENTITIES = "build_entities"
    LINK_ENTITIES = "link_entities"
    SUMMARIZE = "summarize"
    IMPORT = "import"
