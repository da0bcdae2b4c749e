"""Edit-distance string similarity and keyword set overlap."""

from __future__ import annotations

from collections.abc import Iterable

from app.services.categorization.text import canonical_keyword, normalize_text

FUZZY_KEYWORD_THRESHOLD = 0.8


def levenshtein_distance(a: str, b: str) -> int:
    """Compute the Levenshtein edit distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
        previous = current
    return previous[-1]


def string_similarity(a: str | None, b: str | None) -> float:
    """Return 1 - normalized edit distance of the normalized strings, in [0, 1]."""
    if not a or not b:
        return 0.0
    s1 = normalize_text(a)
    s2 = normalize_text(b)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    distance = levenshtein_distance(s1, s2)
    return max(0.0, 1.0 - distance / max(len(s1), len(s2)))


def _canonical_set(keywords: Iterable[str]) -> dict[str, str]:
    canonical: dict[str, str] = {}
    for keyword in keywords:
        key = canonical_keyword(keyword)
        if key and key not in canonical:
            canonical[key] = keyword
    return canonical


def _keywords_match(a: str, b: str) -> bool:
    return a == b or string_similarity(a, b) > FUZZY_KEYWORD_THRESHOLD


def keyword_overlap(keywords_a: Iterable[str], keywords_b: Iterable[str]) -> float:
    """Share of the keyword union covered by matching pairs, in [0, 1].

    Keywords are compared in stem-canonical form (normalized, then suffix
    stripped by ``canonical_keyword``), so "migrate" equals "migration" and
    "postgres" equals "postgre". A keyword of ``keywords_a`` matches when
    ``keywords_b`` holds the same canonical form or one with string
    similarity above 0.8.
    """
    set_a = _canonical_set(keywords_a)
    set_b = _canonical_set(keywords_b)
    if not set_a or not set_b:
        return 0.0

    matches = sum(1 for a in set_a if any(_keywords_match(a, b) for b in set_b))
    union_size = len(set_a.keys() | set_b.keys())
    return min(1.0, matches / union_size)


def overlapping_keywords(candidates: Iterable[str], reference: Iterable[str]) -> list[str]:
    """Return the ``candidates`` keywords that match any ``reference`` keyword."""
    reference_set = _canonical_set(reference)
    if not reference_set:
        return []
    return [
        original
        for key, original in _canonical_set(candidates).items()
        if any(_keywords_match(key, other) for other in reference_set)
    ]
