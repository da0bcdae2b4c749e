"""Map the best scored match to an assign / review / create recommendation."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, model_validator

from app.config import Settings, settings
from app.services.categorization.confidence import ScoredMatch

RecommendedAction = Literal["assign", "review", "create"]


class RecommendationThresholds(BaseModel):
    """Confidence cut-offs; ``review <= confidence < assign`` means review."""

    assign: float = 0.80
    review: float = 0.50

    @model_validator(mode="after")
    def _check_order(self) -> "RecommendationThresholds":
        if not 0.0 <= self.review <= self.assign <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= review <= assign <= 1")
        return self

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RecommendationThresholds":
        return cls(assign=config.assign_threshold, review=config.review_threshold)


@dataclass(slots=True, frozen=True)
class Recommendation:
    """Suggested next action for the planner."""

    action: RecommendedAction
    confidence: float
    reason: str
    suggested_topic_id: str | None = None
    suggested_topic_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "action": self.action,
            "confidence": round(self.confidence, 3),
            "reason": self.reason,
        }
        if self.suggested_topic_id:
            payload["suggested_topic_id"] = self.suggested_topic_id
            payload["suggested_topic_name"] = self.suggested_topic_name
        return payload


def generate_recommendation(
    matches: Sequence[ScoredMatch],
    thresholds: RecommendationThresholds | None = None,
) -> Recommendation:
    """Recommend based on the top-ranked match only."""
    limits = thresholds or RecommendationThresholds()
    if not matches:
        return Recommendation(
            action="create",
            confidence=0.0,
            reason="No existing topics found - create a new specific topic",
        )

    best = matches[0]
    if best.confidence >= limits.assign:
        return Recommendation(
            action="assign",
            confidence=best.confidence,
            reason=f'High confidence match with "{best.name}"',
            suggested_topic_id=best.topic_id,
            suggested_topic_name=best.name,
        )
    if best.confidence >= limits.review:
        return Recommendation(
            action="review",
            confidence=best.confidence,
            reason=f'Possible match with "{best.name}" - review context or reformulate the query',
            suggested_topic_id=best.topic_id,
            suggested_topic_name=best.name,
        )
    return Recommendation(
        action="create",
        confidence=best.confidence,
        reason=f'Low confidence matches (best: "{best.name}") - consider creating a new specific topic',
    )
