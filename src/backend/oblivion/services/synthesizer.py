"""
LLM Synthesizer — one designated session writes the final answer.

The synthesizer receives the user's question and every provider's answer
(or error), identifies agreements and disagreements, and produces a single
consolidated answer. It replaces the heuristic synthesized answer of a
ConsensusReport; agreement, dissent and confidence stay heuristic.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from oblivion.errors import ProviderError
from oblivion.models.schemas import QueryOptions, QueryResult
from oblivion.services.session import ProviderSession

logger = logging.getLogger(__name__)

SYNTHESIZER_SYSTEM = """You are the primary assistant arbitrating between several AI providers.
You receive one user question and the answers other providers gave to it.

Your role:
1. IDENTIFY AGREEMENTS — points that appear across multiple answers.
2. IDENTIFY DISAGREEMENTS — claims made by one provider but missed or contradicted by others.
3. PRODUCE ONE CONSOLIDATED ANSWER — prioritized and concise.
4. FLAG UNCERTAINTY — where providers fundamentally disagree, say so and explain what would settle it.

If the question asks for commands or code, list them explicitly."""

SYNTHESIS_PROMPT = """A user asked:

{prompt}

══════ PROVIDER RESPONSES ══════
{responses}

══════ TASK ══════
Write the consolidated answer. Mention which providers you relied on and
explain any differences between them."""


class LLMSynthesizer:

    def __init__(self, session: ProviderSession, temperature: float = 0.2, max_tokens: int = 1500):
        self.session = session
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def label(self) -> str:
        return self.session.label

    async def synthesize(
        self,
        prompt: str,
        results: Sequence[QueryResult],
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """
        Ask the synthesizer session for a consolidated answer.

        Raises:
            ProviderError: the synthesizer call failed.
        """
        combined = SYNTHESIS_PROMPT.format(prompt=prompt, responses=format_responses(results))
        query = self.session.query(
            combined,
            QueryOptions(
                system_prompt=SYNTHESIZER_SYSTEM,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            ),
        )
        try:
            success = await (asyncio.wait_for(query, timeout_seconds) if timeout_seconds else query)
        except asyncio.TimeoutError:
            raise ProviderError(f"Synthesizer {self.label} did not answer within {timeout_seconds:g}s") from None
        logger.info(f"[Synthesizer {self.label}] answer generated ({len(success.text)} chars)")
        return success.text


def format_responses(results: Sequence[QueryResult]) -> str:
    sections = []
    for result in results:
        if result.succeeded:
            sections.append(f"─── {result.label} ───\n{result.text}")
        else:
            sections.append(f"─── {result.label} ───\nError: {result.outcome.message}")
    return "\n\n".join(sections) if sections else "(no responses)"
