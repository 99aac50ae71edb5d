"""
Multi-AI Orchestrator — the high-level flows built on the fleet.

  ask:           broadcast → consensus → (optional) LLM synthesis
  vote:          broadcast → rank answers by one criterion
  generate_code: broadcast a code-generation prompt → best answer by vote,
                 consensus over the same answers

A consensus that cannot be computed (fewer than two successful answers)
never hides the raw per-provider results: they are always returned, with
`consensus_error` explaining what is missing.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from oblivion.errors import InsufficientResponses, ProviderError
from oblivion.models.schemas import (
    AskResult,
    CodeGenerationResult,
    QueryOptions,
    VoteCriteria,
    VoteResult,
)
from oblivion.services.aggregator import QueryAggregator, SettledCallback
from oblivion.services.consensus import ConsensusEngine
from oblivion.services.synthesizer import LLMSynthesizer
from oblivion.services.voting import vote

logger = logging.getLogger(__name__)

CODE_PROMPT = (
    "Generate {language} code for: {description}. "
    "Provide clean, well-commented code that follows best practices."
)

CODE_SYSTEM_PROMPT = (
    "You are an expert {language} programmer. Reply with one complete code block "
    "followed by a short explanation."
)


class MultiAIOrchestrator:
    """
    Usage:
        orchestrator = MultiAIOrchestrator(aggregator, ConsensusEngine())
        result = await orchestrator.ask("What is 2+2?")
        if result.consensus:
            print(result.consensus.synthesized_answer)
    """

    def __init__(
        self,
        aggregator: QueryAggregator,
        engine: Optional[ConsensusEngine] = None,
        synthesizer: Optional[LLMSynthesizer] = None,
    ):
        self.aggregator = aggregator
        self.engine = engine or ConsensusEngine(max_active=aggregator.fleet.max_active)
        self.synthesizer = synthesizer

    @property
    def fleet(self):
        return self.aggregator.fleet

    async def ask(
        self,
        prompt: str,
        options: Optional[QueryOptions] = None,
        synthesize: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        on_settled: Optional[SettledCallback] = None,
    ) -> AskResult:
        """
        Broadcast a prompt and derive a consensus from the answers.

        Args:
            synthesize: Let the configured synthesizer session rewrite the
                        heuristic answer. Ignored when none is configured.
        """
        results = await self.aggregator.broadcast(
            prompt, options, cancel_event=cancel_event, on_settled=on_settled
        )

        try:
            report = self.engine.consensus(prompt, results)
        except InsufficientResponses as e:
            logger.info(f"No consensus for this prompt: {e}")
            return AskResult(prompt=prompt, results=results, consensus_error=str(e))

        if synthesize and self.synthesizer is not None:
            timeout = options.timeout_seconds if options else None
            if timeout is None:
                timeout = self.aggregator.timeout_seconds
            try:
                answer = await self.synthesizer.synthesize(prompt, results, timeout_seconds=timeout)
                report = report.model_copy(
                    update={"synthesized_answer": answer, "synthesized_by": self.synthesizer.label}
                )
            except ProviderError as e:
                logger.warning(f"Synthesizer failed, keeping heuristic answer: {e}")
        elif synthesize:
            logger.warning("Synthesis requested but no synthesizer is configured")

        return AskResult(prompt=prompt, results=results, consensus=report)

    async def vote(
        self,
        prompt: str,
        criteria: VoteCriteria = VoteCriteria.ACCURACY,
        options: Optional[QueryOptions] = None,
    ) -> VoteResult:
        """
        Raises:
            InsufficientResponses: no session answered successfully
        """
        # Taken with the broadcast snapshot: sessions removed mid-broadcast keep their tags
        tags = self._capability_tags()
        results = await self.aggregator.broadcast(prompt, options)
        return vote(results, criteria, tags)

    async def generate_code(self, description: str, language: str = "python") -> CodeGenerationResult:
        """
        Ask every session for the same code and pick the best answer.

        Raises:
            InsufficientResponses: no session produced any code
        """
        prompt = CODE_PROMPT.format(language=language, description=description)
        options = QueryOptions(
            system_prompt=CODE_SYSTEM_PROMPT.format(language=language),
            context="code_generation",
        )
        tags = self._capability_tags()
        results = await self.aggregator.broadcast(prompt, options)

        voted = vote(results, VoteCriteria.ACCURACY, tags)
        try:
            report = self.engine.consensus(prompt, results)
        except InsufficientResponses:
            report = None

        return CodeGenerationResult(
            language=language,
            best=voted.winner,
            all_results=[r for r in results if r.succeeded],
            consensus=report,
        )

    def _capability_tags(self):
        return {s.session_id: s.capability_tags for s in self.fleet.list_active()}
