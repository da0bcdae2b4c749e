"""Parallel topic retrieval, rank fusion and scoring behind ``find_topics``."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from app.config import Settings, settings
from app.core.exceptions import TransientRetrievalError
from app.persistence.contracts import SearchService, TopicStore
from app.schemas.topic import Topic
from app.services.categorization.confidence import (
    ConfidenceWeights,
    ReasonThresholds,
    ScoredMatch,
    score_candidate,
)
from app.services.categorization.fusion import (
    RankedHit,
    max_fused_score,
    reciprocal_rank_fusion,
)
from app.services.categorization.recommendation import (
    Recommendation,
    RecommendationThresholds,
    generate_recommendation,
)
from app.services.categorization.text import extract_keywords

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RetrievalResult:
    """Everything ``find_topics`` reports back to the planner."""

    matches: list[ScoredMatch]
    recommendation: Recommendation
    query_keywords: list[str]
    strategies_failed: list[str] = field(default_factory=list)
    all_topics: list[Topic] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "matches": [match.to_dict() for match in self.matches],
            "recommendation": self.recommendation.to_dict(),
            "query_keywords": list(self.query_keywords),
            "strategies_failed": list(self.strategies_failed),
        }
        if self.all_topics:
            payload["all_topics"] = [
                {
                    "id": topic.id,
                    "name": topic.name,
                    "description": topic.description,
                    "message_count": topic.message_count,
                }
                for topic in self.all_topics
            ]
            payload["total_topic_count"] = len(self.all_topics)
        return payload


class TopicRetriever:
    """Runs every configured strategy concurrently and scores the fused result."""

    def __init__(
        self,
        search: SearchService,
        store: TopicStore,
        *,
        strategies: Sequence[str] | None = None,
        rrf_k: int | None = None,
        search_limit: int | None = None,
        scored_match_limit: int | None = None,
        overview_limit: int | None = None,
        search_timeout: float | None = None,
        weights: ConfidenceWeights | None = None,
        reason_thresholds: ReasonThresholds | None = None,
        recommendation_thresholds: RecommendationThresholds | None = None,
        activity_saturation: int | None = None,
        config: Settings = settings,
    ) -> None:
        self.search = search
        self.store = store
        self.strategies = list(strategies or config.retrieval_strategies)
        self.rrf_k = rrf_k if rrf_k is not None else config.rrf_k
        self.search_limit = search_limit or config.search_limit
        self.scored_match_limit = scored_match_limit or config.scored_match_limit
        self.overview_limit = overview_limit or config.topic_overview_limit
        self.search_timeout = search_timeout or config.search_timeout_seconds
        self.weights = weights or ConfidenceWeights.from_settings(config)
        self.reason_thresholds = reason_thresholds or ReasonThresholds()
        self.recommendation_thresholds = (
            recommendation_thresholds or RecommendationThresholds.from_settings(config)
        )
        self.activity_saturation = activity_saturation or config.activity_saturation_messages

    async def _run_strategy(
        self,
        strategy: str,
        query: str,
        log_extra: dict[str, Any],
    ) -> list[RankedHit]:
        try:
            return await asyncio.wait_for(
                self.search.search(strategy, query, self.search_limit),
                timeout=self.search_timeout,
            )
        except asyncio.TimeoutError:
            error = TransientRetrievalError(strategy, f"timed out after {self.search_timeout}s")
        except Exception as e:
            error = TransientRetrievalError(strategy, str(e) or type(e).__name__)
        logger.warning(
            "Retrieval strategy failed; continuing without it",
            extra={**log_extra, **error.details, "error": error.message},
        )
        raise error

    async def find_topics(
        self,
        query: str,
        include_all: bool = False,
        *,
        log_extra: dict[str, Any] | None = None,
    ) -> RetrievalResult:
        """Search, fuse, score and recommend for ``query``."""
        extra = dict(log_extra or {})
        query_keywords = extract_keywords(query)

        overview_task = (
            asyncio.ensure_future(self.store.list(limit=self.overview_limit))
            if include_all
            else None
        )
        try:
            matches, failed, candidate_count = await self._rank(query, query_keywords, extra)
            all_topics = await overview_task if overview_task is not None else None
        finally:
            if overview_task is not None:
                # Settle the overview read on every exit path
                overview_task.cancel()
                await asyncio.gather(overview_task, return_exceptions=True)

        recommendation = generate_recommendation(matches, self.recommendation_thresholds)
        logger.info(
            "find_topics complete",
            extra={
                **extra,
                "query_keywords": query_keywords,
                "candidates": candidate_count,
                "matches": len(matches),
                "recommendation": recommendation.action,
                "strategies_failed": failed,
            },
        )
        return RetrievalResult(
            matches=matches,
            recommendation=recommendation,
            query_keywords=query_keywords,
            strategies_failed=failed,
            all_topics=all_topics,
        )

    async def _rank(
        self,
        query: str,
        query_keywords: list[str],
        extra: dict[str, Any],
    ) -> tuple[list[ScoredMatch], list[str], int]:
        outcomes = await asyncio.gather(
            *(self._run_strategy(strategy, query, extra) for strategy in self.strategies),
            return_exceptions=True,
        )

        rankings: dict[str, list[RankedHit]] = {}
        failed: list[str] = []
        for strategy, outcome in zip(self.strategies, outcomes):
            if isinstance(outcome, TransientRetrievalError):
                failed.append(strategy)
                rankings[strategy] = []
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                rankings[strategy] = list(outcome)

        candidates = reciprocal_rank_fusion(rankings, k=self.rrf_k)
        ceiling = max_fused_score(len(self.strategies), k=self.rrf_k)
        top = candidates[: self.scored_match_limit]
        topics = await asyncio.gather(*(self.store.get(candidate.topic_id) for candidate in top))

        matches: list[ScoredMatch] = []
        for candidate, topic in zip(top, topics):
            if topic is None:
                logger.debug(
                    "Search hit not in topic store, skipping",
                    extra={**extra, "topic_id": candidate.topic_id},
                )
                continue
            matches.append(
                score_candidate(
                    candidate,
                    topic,
                    query,
                    query_keywords,
                    max_fused_score=ceiling,
                    weights=self.weights,
                    thresholds=self.reason_thresholds,
                    activity_saturation=self.activity_saturation,
                )
            )
        return matches, failed, len(candidates)
