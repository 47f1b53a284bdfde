"""Classification oracle contract and its LLM implementation."""

from roster_merge.inference.conflict_agent import LLMConflictOracle
from roster_merge.inference.oracle import ClassificationOracle
from roster_merge.inference.schemas import (
    ConflictContext,
    ConflictResolutionProposal,
    CountryRules,
    get_country_rules,
)

__all__ = [
    "ClassificationOracle",
    "ConflictContext",
    "ConflictResolutionProposal",
    "CountryRules",
    "LLMConflictOracle",
    "get_country_rules",
]
