"""Reciprocal Rank Fusion over independently ranked retrieval results.

Each strategy contributes ``1 / (k + rank)`` for every topic it returned.
Only ranks are used, so lexical (BM25) and vector scores never have to be
put on a common scale.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

DEFAULT_RRF_K = 60


@dataclass(slots=True, frozen=True)
class RankedHit:
    """One search result with its 1-based rank inside its strategy's list."""

    topic_id: str
    rank: int
    raw_score: float = 0.0


@dataclass(slots=True)
class Candidate:
    """A topic after fusion, with the per-strategy evidence that produced it."""

    topic_id: str
    ranks: dict[str, int] = field(default_factory=dict)
    raw_scores: dict[str, float] = field(default_factory=dict)
    fused_score: float = 0.0


def rrf_contribution(rank: int, k: int = DEFAULT_RRF_K) -> float:
    return 1.0 / (k + rank)


def max_fused_score(strategy_count: int, k: int = DEFAULT_RRF_K) -> float:
    """Fused score of a topic ranked first by every strategy."""
    total = 0.0
    for _ in range(strategy_count):
        total += rrf_contribution(1, k)
    return total


def reciprocal_rank_fusion(
    rankings: Mapping[str, Sequence[RankedHit]],
    k: int = DEFAULT_RRF_K,
) -> list[Candidate]:
    """Merge per-strategy rankings into one list sorted by fused score.

    Ties keep first-seen order: strategies in mapping order, hits in list order.
    A topic listed twice by one strategy only counts its first occurrence.
    """
    if k < 0:
        raise ValueError("k must be >= 0")

    candidates: dict[str, Candidate] = {}
    for strategy, hits in rankings.items():
        for hit in hits:
            if not hit.topic_id or hit.rank < 1:
                continue
            candidate = candidates.get(hit.topic_id)
            if candidate is None:
                candidate = Candidate(topic_id=hit.topic_id)
                candidates[hit.topic_id] = candidate
            if strategy in candidate.ranks:
                continue
            candidate.ranks[strategy] = hit.rank
            candidate.raw_scores[strategy] = hit.raw_score
            candidate.fused_score += rrf_contribution(hit.rank, k)

    # sorted() is stable, so equal scores stay in insertion order
    return sorted(candidates.values(), key=lambda candidate: -candidate.fused_score)
