"""Pydantic schemas for conflict arbitration by the classification oracle.

These define what the oracle receives and the structured answer it must
return. Answers are validated here before the arbitration layer checks
them against the conflict's actual sources.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field


def _clamp_confidence(v: Any) -> Any:
    """LLMs sometimes answer 0-1 probabilities or overshoot 100."""
    if isinstance(v, float) and 0.0 < v <= 1.0:
        return round(v * 100)
    if isinstance(v, (int, float)):
        return max(0, min(100, round(v)))
    return v


class CountryRules(BaseModel):
    """Payroll business rules the oracle checks candidate values against."""

    code: str
    name: str
    smig: int = Field(description="Legal monthly minimum wage, FCFA")
    tax_authority: str
    social_security: str
    social_security_digits: int


COUNTRY_RULES: dict[str, CountryRules] = {
    "CI": CountryRules(
        code="CI",
        name="Côte d'Ivoire",
        smig=75_000,
        tax_authority="ITS",
        social_security="CNPS",
        social_security_digits=10,
    ),
    "SN": CountryRules(
        code="SN",
        name="Sénégal",
        smig=60_000,
        tax_authority="IRPP",
        social_security="IPRES",
        social_security_digits=13,
    ),
}


def get_country_rules(country_code: str) -> CountryRules:
    """Rules for ``country_code``; unknown codes fall back to Côte d'Ivoire."""
    return COUNTRY_RULES.get(country_code.upper(), COUNTRY_RULES["CI"])


class ConflictContext(BaseModel):
    """Run-level context handed to the oracle with each conflict."""

    entity_type: str
    country_code: str = "CI"
    source_quality_scores: dict[str, int] = Field(
        default_factory=dict,
        description="file::sheet → quality score 0-100 from conflict-pattern analysis",
    )


class ConflictResolutionProposal(BaseModel):
    """The oracle's decision for one field conflict."""

    chosen_source_file: str = Field(description="File name of the source whose value wins")
    chosen_source_sheet: str = Field(description="Sheet name of the source whose value wins")
    chosen_value: Any = Field(description="The winning value, exactly as that source gave it")
    confidence: Annotated[int, BeforeValidator(_clamp_confidence)] = Field(
        ge=0, le=100, description="Confidence in the decision, 0-100"
    )
    reasoning: str = Field(default="", description="Short justification")
    requires_user_confirmation: bool = Field(
        default=False,
        description="True when a human should confirm (critical field, low confidence)",
    )

    @property
    def chosen_source(self) -> str:
        return f"{self.chosen_source_file}::{self.chosen_source_sheet}"
