"""Confidence scoring for fused retrieval candidates."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, model_validator

from app.config import Settings, settings
from app.schemas.topic import Topic
from app.services.categorization.fusion import Candidate
from app.services.categorization.similarity import (
    keyword_overlap,
    overlapping_keywords,
    string_similarity,
)

WEIGHT_SUM_TOLERANCE = 1e-6


class ConfidenceWeights(BaseModel):
    """Non-negative factor weights that must sum to 1."""

    fused: float = Field(default=0.4, ge=0)
    keywords: float = Field(default=0.3, ge=0)
    name: float = Field(default=0.2, ge=0)
    activity: float = Field(default=0.1, ge=0)

    @model_validator(mode="after")
    def _check_sum(self) -> "ConfidenceWeights":
        total = self.fused + self.keywords + self.name + self.activity
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"confidence weights must sum to 1.0, got {total:.4f}")
        return self

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ConfidenceWeights":
        return cls(
            fused=config.confidence_weight_fused,
            keywords=config.confidence_weight_keywords,
            name=config.confidence_weight_name,
            activity=config.confidence_weight_activity,
        )


class ReasonThresholds(BaseModel):
    """Per-factor levels above which a reason tag is emitted."""

    fused: float = 0.5
    keywords: float = 0.3
    name: float = 0.4
    activity: float = 0.5


@dataclass(slots=True, frozen=True)
class ConfidenceFactors:
    """The four bounded factors behind a confidence score."""

    fused: float
    keywords: float
    name: float
    activity: float

    def to_dict(self) -> dict[str, float]:
        return {
            "fused_score": round(self.fused, 3),
            "keyword_overlap": round(self.keywords, 3),
            "name_similarity": round(self.name, 3),
            "activity": round(self.activity, 3),
        }


@dataclass(slots=True)
class ScoredMatch:
    """A candidate topic with its confidence and the reasons behind it."""

    topic_id: str
    name: str
    description: str
    keywords: list[str]
    message_count: int
    confidence: float
    factors: ConfidenceFactors
    reasons: list[str] = field(default_factory=list)
    fused_score: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.topic_id,
            "name": self.name,
            "description": self.description,
            "keywords": list(self.keywords),
            "confidence": round(self.confidence, 3),
            "match_reasons": list(self.reasons),
            "message_count": self.message_count,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def activity_factor(message_count: int, saturation: int = 50) -> float:
    """More messages means a more established topic, saturating at ``saturation``."""
    if saturation <= 0:
        return 1.0
    return _clamp(message_count / saturation)


def combine_factors(factors: ConfidenceFactors, weights: ConfidenceWeights) -> float:
    """Weighted sum of the factors, clamped to [0, 1]."""
    return _clamp(
        factors.fused * weights.fused
        + factors.keywords * weights.keywords
        + factors.name * weights.name
        + factors.activity * weights.activity
    )


def build_match_reasons(
    factors: ConfidenceFactors,
    topic_keywords: Sequence[str],
    query_keywords: Sequence[str],
    thresholds: ReasonThresholds | None = None,
) -> list[str]:
    """Translate factor levels into ordered reason tags."""
    limits = thresholds or ReasonThresholds()
    reasons: list[str] = []
    if factors.fused > limits.fused:
        reasons.append("semantic_match")
    if factors.keywords > limits.keywords:
        shared = overlapping_keywords(topic_keywords, query_keywords)
        if shared:
            reasons.append(f"keyword_overlap:{','.join(shared[:3])}")
    if factors.name > limits.name:
        reasons.append("name_similarity")
    if factors.activity > limits.activity:
        reasons.append("high_activity")
    return reasons or ["partial_match"]


def score_candidate(
    candidate: Candidate,
    topic: Topic,
    query: str,
    query_keywords: Sequence[str],
    *,
    max_fused_score: float,
    weights: ConfidenceWeights | None = None,
    thresholds: ReasonThresholds | None = None,
    activity_saturation: int = 50,
) -> ScoredMatch:
    """Score how well ``topic`` matches the query behind ``candidate``."""
    weights = weights or ConfidenceWeights()
    fused = _clamp(candidate.fused_score / max_fused_score) if max_fused_score > 0 else 0.0
    factors = ConfidenceFactors(
        fused=fused,
        keywords=keyword_overlap(query_keywords, topic.keywords),
        name=string_similarity(query, topic.name),
        activity=activity_factor(topic.message_count, activity_saturation),
    )
    return ScoredMatch(
        topic_id=topic.id,
        name=topic.name,
        description=topic.description,
        keywords=list(topic.keywords),
        message_count=topic.message_count,
        confidence=combine_factors(factors, weights),
        factors=factors,
        reasons=build_match_reasons(factors, topic.keywords, query_keywords, thresholds),
        fused_score=candidate.fused_score,
    )
