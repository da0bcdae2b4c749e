"""Unit tests for the duplicate topic validator."""

import pytest

from app.schemas.topic import ProposedTopic, Topic
from app.services.categorization.duplicate_validator import validate_new_topic

EXISTING = Topic(
    id="t-redis",
    name="Redis Memory Leak",
    description="Redis instances running out of memory",
    keywords=["redis", "memory", "leak"],
)


def test_empty_taxonomy_always_creates() -> None:
    check = validate_new_topic(ProposedTopic(name="Anything"), [])

    assert check.should_create is True
    assert check.confidence == 1.0
    assert check.recommendation == "create"
    assert check.suggestions == []


def test_identical_proposal_uses_existing() -> None:
    proposal = ProposedTopic(
        name=EXISTING.name,
        description=EXISTING.description,
        keywords=list(EXISTING.keywords),
    )

    check = validate_new_topic(proposal, [EXISTING])

    assert check.should_create is False
    assert check.recommendation == "use_existing"
    assert check.confidence >= 0.9
    assert check.top_suggestion is not None
    assert check.top_suggestion.topic_id == "t-redis"


def test_same_name_only_is_consider_merge() -> None:
    check = validate_new_topic(ProposedTopic(name="Redis Memory Leak"), [EXISTING])

    assert check.should_create is False
    assert check.recommendation == "consider_merge"
    assert check.confidence == pytest.approx(0.5)


def test_keyword_overlap_surfaces_suggestion_without_blocking() -> None:
    other = Topic(id="t-other", name="Zzzz Qqqq", keywords=["redis", "cache"])

    check = validate_new_topic(ProposedTopic(name="Alpha", keywords=["redis", "cache"]), [other])

    assert check.should_create is True
    assert [s.topic_id for s in check.suggestions] == ["t-other"]
    assert check.confidence == pytest.approx(0.7)


def test_distinct_proposal_creates() -> None:
    check = validate_new_topic(
        ProposedTopic(
            name="Payment API Timeout",
            description="Stripe charges timing out",
            keywords=["stripe", "timeout"],
        ),
        [EXISTING],
    )

    assert check.should_create is True
    assert check.recommendation == "create"
    assert check.suggestions == []


def test_suggestions_sorted_by_combined_score() -> None:
    weaker = Topic(id="t-weak", name="Redis Memory", keywords=["redis"])
    check = validate_new_topic(
        ProposedTopic(name="Redis Memory Leak", keywords=["redis", "memory", "leak"]),
        [weaker, EXISTING],
    )

    combined = [s.combined for s in check.suggestions]
    assert combined == sorted(combined, reverse=True)
    assert check.suggestions[0].topic_id == "t-redis"
