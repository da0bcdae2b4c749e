"""Near-duplicate guard for proposed new topics."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from app.schemas.topic import ProposedTopic, Topic
from app.services.categorization.similarity import keyword_overlap, string_similarity

NAME_WEIGHT = 0.5
DESCRIPTION_WEIGHT = 0.2
KEYWORD_WEIGHT = 0.3

NAME_THRESHOLD = 0.6
DESCRIPTION_THRESHOLD = 0.6
KEYWORD_THRESHOLD = 0.4
DUPLICATE_THRESHOLD = 0.5
USE_EXISTING_THRESHOLD = 0.7

DuplicateRecommendation = Literal["create", "use_existing", "consider_merge"]


@dataclass(slots=True, frozen=True)
class DuplicateSuggestion:
    """An existing topic that resembles the proposal."""

    topic_id: str
    topic_name: str
    name_similarity: float
    description_similarity: float
    keyword_overlap: float
    combined: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "topic_name": self.topic_name,
            "name_similarity": round(self.name_similarity, 3),
            "description_similarity": round(self.description_similarity, 3),
            "keyword_overlap": round(self.keyword_overlap, 3),
            "combined": round(self.combined, 3),
        }


@dataclass(slots=True)
class DuplicateCheck:
    """Verdict on whether a proposed topic may be created."""

    should_create: bool
    confidence: float
    recommendation: DuplicateRecommendation
    suggestions: list[DuplicateSuggestion] = field(default_factory=list)

    @property
    def top_suggestion(self) -> DuplicateSuggestion | None:
        return self.suggestions[0] if self.suggestions else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_create": self.should_create,
            "confidence": round(self.confidence, 3),
            "recommendation": self.recommendation,
            "suggestions": [suggestion.to_dict() for suggestion in self.suggestions[:3]],
        }


def compare_to_topic(proposal: ProposedTopic, topic: Topic) -> DuplicateSuggestion:
    """Score one existing topic against the proposal."""
    name_score = string_similarity(proposal.name, topic.name)
    description_score = string_similarity(proposal.description, topic.description)
    keyword_score = keyword_overlap(proposal.keywords, topic.keywords)
    combined = (
        (NAME_WEIGHT * name_score)
        + (DESCRIPTION_WEIGHT * description_score)
        + (KEYWORD_WEIGHT * keyword_score)
    )
    return DuplicateSuggestion(
        topic_id=topic.id,
        topic_name=topic.name,
        name_similarity=name_score,
        description_similarity=description_score,
        keyword_overlap=keyword_score,
        combined=max(0.0, min(1.0, combined)),
    )


def _is_suggestion(suggestion: DuplicateSuggestion) -> bool:
    return (
        suggestion.combined >= DUPLICATE_THRESHOLD
        or suggestion.name_similarity >= NAME_THRESHOLD
        or suggestion.description_similarity >= DESCRIPTION_THRESHOLD
        or suggestion.keyword_overlap >= KEYWORD_THRESHOLD
    )


def validate_new_topic(proposal: ProposedTopic, topics: Sequence[Topic]) -> DuplicateCheck:
    """Decide whether ``proposal`` is distinct enough from every existing topic."""
    if not topics:
        return DuplicateCheck(should_create=True, confidence=1.0, recommendation="create")

    scored = [compare_to_topic(proposal, topic) for topic in topics]
    suggestions = sorted(
        (suggestion for suggestion in scored if _is_suggestion(suggestion)),
        key=lambda suggestion: -suggestion.combined,
    )

    best = suggestions[0] if suggestions else None
    if best is None or best.combined < DUPLICATE_THRESHOLD:
        return DuplicateCheck(
            should_create=True,
            confidence=1.0 - (best.combined if best else 0.0),
            recommendation="create",
            suggestions=suggestions,
        )

    recommendation: DuplicateRecommendation = (
        "use_existing" if best.combined >= USE_EXISTING_THRESHOLD else "consider_merge"
    )
    return DuplicateCheck(
        should_create=False,
        confidence=best.combined,
        recommendation=recommendation,
        suggestions=suggestions,
    )
