"""Conflict arbitration agent using pydantic-ai.

The agent receives one field conflict with every observed value, the source
quality scores and the country's payroll rules, and returns a
``ConflictResolutionProposal`` naming the source whose value should win.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime
from typing import Any

from pydantic_ai import Agent, NativeOutput
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from roster_merge.config import settings
from roster_merge.errors import OracleUnavailableError
from roster_merge.inference.schemas import (
    ConflictContext,
    ConflictResolutionProposal,
    get_country_rules,
)
from roster_merge.models.conflicts import FieldConflict

logger = logging.getLogger(__name__)


CONFLICT_RESOLUTION_SYSTEM_PROMPT = """\
You are a data-quality arbiter for an HR data migration. Several exported \
spreadsheets describe the same employee and disagree on one field. Pick the \
source whose value should be kept.

## How to evaluate each source

1. **Business rules**: a value that violates the country rules given below \
(salary under the legal minimum wage, social-security number with the wrong \
number of digits, birth date in the future or more than 100 years ago) is \
rejected outright.
2. **Recency**: when one file is several months newer than the others, prefer it.
3. **Quality score**: when provided, prefer the source with the higher score.
4. **Completeness**: prefer the more complete, more detailed value \
(full email over partial, mixed case over ALL CAPS).

## Output requirements

- chosen_source_file / chosen_source_sheet MUST be copied exactly from one of \
the listed sources.
- chosen_value MUST be that source's value, unchanged.
- confidence is 0-100.
- Set requires_user_confirmation to true for identity fields (names, \
employee number, dates, social-security number, email) unless you are \
certain, and whenever confidence is below 80.
- reasoning: one or two sentences.
"""


def create_conflict_agent(
    *,
    model_name: str | None = None,
    api_key: str | None = None,
    retries: int | None = None,
) -> Agent[None, ConflictResolutionProposal]:
    """Create the conflict arbitration agent."""
    model = OpenAIChatModel(
        model_name or settings.model_resolution,
        provider=OpenAIProvider(
            base_url=settings.llm_base_url,
            api_key=api_key or settings.llm_api_key,
        ),
    )

    return Agent(
        model,
        # response_format instead of tool calling for structured output
        output_type=NativeOutput(ConflictResolutionProposal),
        system_prompt=CONFLICT_RESOLUTION_SYSTEM_PROMPT,
        retries=retries if retries is not None else settings.oracle_retries,
    )


def _json_value(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class LLMConflictOracle:
    """``ClassificationOracle`` backed by an OpenAI-compatible LLM endpoint.

    The agent is created on first use so constructing the oracle never needs
    credentials; ``check_available`` reports missing ones up front.

    Usage:
        oracle = LLMConflictOracle()
        oracle.check_available()
        proposal = await oracle.resolve_conflict(conflict, context)
    """

    def __init__(
        self,
        *,
        model_name: str | None = None,
        api_key: str | None = None,
        agent: Agent[None, ConflictResolutionProposal] | None = None,
    ) -> None:
        """Initialize the oracle.

        Args:
            model_name: Chat model to use (default: settings.model_resolution).
            api_key: Overrides settings.llm_api_key for the availability check.
            agent: Pre-built agent (tests inject a mock here).
        """
        self._model_name = model_name or settings.model_resolution
        self._api_key = api_key if api_key is not None else settings.llm_api_key
        self._agent = agent

    def check_available(self) -> None:
        if self._agent is None and not self._api_key:
            msg = "No LLM API key configured (set ROSTER_MERGE_LLM_API_KEY)"
            raise OracleUnavailableError(msg)

    @property
    def agent(self) -> Agent[None, ConflictResolutionProposal]:
        if self._agent is None:
            self.check_available()
            self._agent = create_conflict_agent(model_name=self._model_name, api_key=self._api_key)
        return self._agent

    async def resolve_conflict(
        self, conflict: FieldConflict, context: ConflictContext
    ) -> ConflictResolutionProposal:
        """Ask the LLM which source wins ``conflict``.

        Args:
            conflict: The conflict with all observed values.
            context: Entity type, country and source quality scores.

        Returns:
            The structured proposal as returned by the model.
        """
        prompt = self._build_prompt(conflict, context)

        start_time = time.time()
        result = await self.agent.run(prompt)

        if settings.log_api_calls:
            elapsed = (time.time() - start_time) * 1000  # ms
            logger.info(
                "[ORACLE] %s %s.%s (%d sources) (%.0fms)",
                self._model_name, conflict.entity_type, conflict.field,
                len(conflict.sources), elapsed
            )

        return result.output

    def _build_prompt(self, conflict: FieldConflict, context: ConflictContext) -> str:
        rules = get_country_rules(context.country_code)
        sources = [
            {
                "file": s.source_file,
                "sheet": s.source_sheet,
                "value": _json_value(s.value),
                "uploaded_at": s.observed_at.isoformat(),
                "quality_score": context.source_quality_scores.get(s.source_key),
            }
            for s in conflict.sources
        ]
        parts = [
            f"Resolve this conflict on field `{conflict.field}` "
            f"of a `{context.entity_type}` record (severity: {conflict.severity.value}).\n",
            "## Sources\n",
            json.dumps(sources, ensure_ascii=False, indent=2),
            f"\n\n## Country rules: {rules.name}\n",
            f"- Minimum wage (SMIG): {rules.smig} FCFA/month\n",
            f"- {rules.social_security} number: exactly {rules.social_security_digits} digits\n",
            f"- Income tax: {rules.tax_authority}\n",
        ]
        return "".join(parts)
