"""
Response voting — ranks successful answers by a single criterion.

  accuracy:   length (up to 1000 chars) 50%, "analysis" capability 30%,
              answered under 5 s 20%
  speed:      1 - latency / 10 s
  creativity: distinct words / words
"""
from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence

from oblivion.errors import InsufficientResponses
from oblivion.models.schemas import QueryResult, VoteCriteria, VoteEntry, VoteResult

FAST_RESPONSE_MS = 5000
LATENCY_NORM_MS = 10000


def score_result(
    result: QueryResult,
    criteria: VoteCriteria,
    capability_tags: Iterable[str] = (),
) -> float:
    text = result.text or ""
    if criteria == VoteCriteria.ACCURACY:
        score = min(len(text) / 1000, 1.0) * 0.5
        score += 0.3 if "analysis" in set(capability_tags) else 0.0
        score += 0.2 if result.latency_ms < FAST_RESPONSE_MS else 0.0
    elif criteria == VoteCriteria.SPEED:
        score = max(0.0, 1.0 - result.latency_ms / LATENCY_NORM_MS)
    elif criteria == VoteCriteria.CREATIVITY:
        words = text.split()
        score = len(set(words)) / len(words) if words else 0.0
    else:
        score = 0.5
    return min(score, 1.0)


def vote(
    results: Sequence[QueryResult],
    criteria: VoteCriteria = VoteCriteria.ACCURACY,
    capability_tags: Optional[Mapping[str, Iterable[str]]] = None,
) -> VoteResult:
    """
    Rank successful results, best first. Equal scores keep broadcast order.

    Args:
        capability_tags: session_id → tags, used by the accuracy criterion

    Raises:
        InsufficientResponses: no result succeeded
    """
    tags = capability_tags or {}
    entries = [
        VoteEntry(result=r, score=score_result(r, criteria, tags.get(r.session_id, ())))
        for r in results
        if r.succeeded
    ]
    if not entries:
        raise InsufficientResponses(0, 1)

    ranking = sorted(entries, key=lambda e: e.score, reverse=True)
    return VoteResult(criteria=criteria, winner=ranking[0], ranking=ranking)
