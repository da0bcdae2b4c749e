"""Unit tests for the recommendation engine."""

import pydantic
import pytest

from app.services.categorization.confidence import ConfidenceFactors, ScoredMatch
from app.services.categorization.recommendation import (
    RecommendationThresholds,
    generate_recommendation,
)


def match(confidence: float, topic_id: str = "t-1", name: str = "Redis Memory Leak") -> ScoredMatch:
    return ScoredMatch(
        topic_id=topic_id,
        name=name,
        description="",
        keywords=[],
        message_count=0,
        confidence=confidence,
        factors=ConfidenceFactors(fused=0.0, keywords=0.0, name=0.0, activity=0.0),
    )


def test_empty_matches_recommend_create() -> None:
    recommendation = generate_recommendation([])

    assert recommendation.action == "create"
    assert recommendation.confidence == 0.0
    assert "No existing topics found" in recommendation.reason
    assert recommendation.suggested_topic_id is None


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [
        (0.95, "assign"),
        (0.80, "assign"),
        (0.79999, "review"),
        (0.50, "review"),
        (0.4999, "create"),
        (0.0, "create"),
    ],
)
def test_threshold_boundaries(confidence: float, expected: str) -> None:
    assert generate_recommendation([match(confidence)]).action == expected


def test_assign_and_review_name_the_suggested_topic() -> None:
    recommendation = generate_recommendation([match(0.6)])

    assert recommendation.suggested_topic_id == "t-1"
    assert recommendation.suggested_topic_name == "Redis Memory Leak"
    assert "Redis Memory Leak" in recommendation.reason
    assert recommendation.to_dict()["suggested_topic_id"] == "t-1"


def test_only_top_match_is_considered() -> None:
    recommendation = generate_recommendation([match(0.3, "t-1"), match(0.95, "t-2")])

    assert recommendation.action == "create"


def test_custom_thresholds() -> None:
    thresholds = RecommendationThresholds(assign=0.6, review=0.3)

    assert generate_recommendation([match(0.65)], thresholds).action == "assign"
    assert generate_recommendation([match(0.35)], thresholds).action == "review"


def test_thresholds_must_be_ordered() -> None:
    with pytest.raises(pydantic.ValidationError):
        RecommendationThresholds(assign=0.4, review=0.6)
