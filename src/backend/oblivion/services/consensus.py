"""
Consensus Engine — agreement, dissent and a synthesized answer from
already-settled query results.

This is a lexical heuristic, not semantic reasoning:
  1. Agreement — token-set Jaccard similarity for every pair of successful
     answers; a pair agrees above the threshold (0.3).
  2. Dissent — an answer whose mean similarity to its peers is below the
     threshold.
  3. Synthesis — tokens shared by more than one answer, ranked by how many
     answers contain them, top 20.
  4. Confidence — 0.6 agreement + 0.3 coverage + 0.1 speed.

The engine is a pure function of its inputs: no I/O, no retries, nothing
persisted between calls. An LLM-written answer can replace the heuristic
synthesis afterwards (see services/synthesizer.py).
"""
from __future__ import annotations

import logging
import string
from collections import Counter
from itertools import combinations
from typing import FrozenSet, List, Optional, Sequence

from oblivion.config import settings
from oblivion.errors import InsufficientResponses
from oblivion.models.schemas import ConsensusReport, QueryResult

logger = logging.getLogger(__name__)

MIN_SUCCESSFUL_RESPONSES = 2

# Function words carry no agreement signal ("The answer is 4." vs "4")
STOP_WORDS = frozenset("""
    a an and are as at be but by do does for from has have i if in is it its
    of on or so that the this to was were will with you your
""".split())

_PUNCTUATION = string.punctuation + "“”‘’«»…"


# ──────────────────────────────────────────────
# Tokenization and similarity
# ──────────────────────────────────────────────

def tokenize(text: str) -> List[str]:
    """Lowercase, whitespace-split, strip surrounding punctuation, drop empties."""
    tokens = (word.strip(_PUNCTUATION) for word in text.lower().split())
    return [t for t in tokens if t]


def content_tokens(text: str) -> FrozenSet[str]:
    """Token set without stop words; an all-stop-word answer keeps its raw tokens."""
    tokens = tokenize(text)
    content = frozenset(t for t in tokens if t not in STOP_WORDS)
    return content or frozenset(tokens)


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    """|a ∩ b| / |a ∪ b|; two empty sets are identical."""
    union = a | b
    if not union:
        return 1.0
    return len(a & b) / len(union)


class ConsensusEngine:
    """
    Usage:
        engine = ConsensusEngine(max_active=3)
        report = engine.consensus(prompt, results)
    """

    def __init__(
        self,
        max_active: Optional[int] = None,
        agreement_threshold: Optional[float] = None,
        top_k: Optional[int] = None,
        latency_norm_ms: Optional[float] = None,
    ):
        self.max_active = max_active if max_active is not None else settings.max_active_sessions
        self.agreement_threshold = (
            agreement_threshold if agreement_threshold is not None else settings.agreement_threshold
        )
        self.top_k = top_k if top_k is not None else settings.synthesis_top_k
        self.latency_norm_ms = latency_norm_ms if latency_norm_ms is not None else settings.latency_norm_ms

    def consensus(self, prompt: str, results: Sequence[QueryResult]) -> ConsensusReport:
        """
        Derive a consensus report from one broadcast's results.

        Raises:
            InsufficientResponses: fewer than two successful results. The
                caller should present the raw results instead.
        """
        successes = [r for r in results if r.succeeded]
        if len(successes) < MIN_SUCCESSFUL_RESPONSES:
            raise InsufficientResponses(len(successes), MIN_SUCCESSFUL_RESPONSES)

        token_sets = [content_tokens(r.text) for r in successes]
        agreement = self.agreement_score(token_sets)
        dissenting = [
            r for r, mean_sim in zip(successes, self._mean_similarities(token_sets))
            if mean_sim < self.agreement_threshold
        ]
        avg_latency = sum(r.latency_ms for r in successes) / len(successes)
        confidence = self.confidence(agreement, len(successes), avg_latency)

        logger.info(
            f"Consensus over {len(successes)}/{len(results)} responses: "
            f"agreement={agreement:.2f}, dissenting={len(dissenting)}, confidence={confidence:.2f}"
        )
        return ConsensusReport(
            prompt=prompt,
            results=list(results),
            agreement_score=agreement,
            synthesized_answer=self.synthesize(token_sets),
            dissenting=dissenting,
            confidence=confidence,
        )

    def agreement_score(self, token_sets: Sequence[FrozenSet[str]]) -> float:
        """Share of answer pairs whose similarity exceeds the threshold (1.0 with no pairs)."""
        pairs = list(combinations(token_sets, 2))
        if not pairs:
            return 1.0
        agreements = sum(1 for a, b in pairs if jaccard(a, b) > self.agreement_threshold)
        return agreements / len(pairs)

    def _mean_similarities(self, token_sets: Sequence[FrozenSet[str]]) -> List[float]:
        means = []
        for i, own in enumerate(token_sets):
            others = [jaccard(own, other) for j, other in enumerate(token_sets) if j != i]
            means.append(sum(others) / len(others) if others else 1.0)
        return means

    def synthesize(self, token_sets: Sequence[FrozenSet[str]]) -> str:
        """
        Best-effort summary: tokens found in more than one answer.

        Frequency counts answers containing the token, not occurrences
        within an answer. Ties are broken alphabetically so the summary
        does not depend on result order.
        """
        doc_freq = Counter(token for tokens in token_sets for token in tokens)
        shared = sorted(
            (token for token, count in doc_freq.items() if count > 1),
            key=lambda t: (-doc_freq[t], t),
        )[: self.top_k]
        header = f"Consensus based on {len(token_sets)} responses:"
        if not shared:
            return f"{header} no terms shared across responses"
        return f"{header} {' '.join(shared)}"

    def confidence(self, agreement: float, success_count: int, avg_latency_ms: float) -> float:
        coverage = min(success_count / self.max_active, 1.0) if self.max_active else 1.0
        speed = max(0.0, 1.0 - avg_latency_ms / self.latency_norm_ms)
        value = 0.6 * agreement + 0.3 * coverage + 0.1 * speed
        return min(max(value, 0.0), 1.0)
