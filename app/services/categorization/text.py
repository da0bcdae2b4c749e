"""Text normalization and keyword extraction for categorization."""

from __future__ import annotations

import re
from collections import Counter

ABBREVIATIONS = {
    "db": "database",
    "k8s": "kubernetes",
    "auth": "authentication",
    "api": "application programming interface",
    "ui": "user interface",
    "ux": "user experience",
    "fe": "frontend",
    "be": "backend",
    "devops": "development operations",
    "ci": "continuous integration",
    "cd": "continuous deployment",
    "pr": "pull request",
    "mr": "merge request",
    "env": "environment",
    "config": "configuration",
    "infra": "infrastructure",
    "perf": "performance",
    "prod": "production",
    "dev": "development",
    "qa": "quality assurance",
}

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "must", "can", "this", "that", "these",
        "those", "i", "you", "he", "she", "it", "we", "they", "what", "which",
        "who", "when", "where", "why", "how", "all", "each", "every", "both",
        "few", "more", "most", "other", "some", "such", "no", "nor", "not",
        "only", "own", "same", "so", "than", "too", "very", "just", "and",
        "but", "if", "or", "because", "as", "until", "while", "of", "at",
        "by", "for", "with", "about", "against", "between", "into", "through",
        "during", "before", "after", "above", "below", "to", "from", "up",
        "down", "in", "out", "on", "off", "over", "under", "again", "further",
        "then", "once", "here", "there", "ok", "okay", "yes", "let", "lets",
        "also", "get", "got", "any", "our", "your", "its", "their",
    }
)

MAX_KEYWORDS = 10
MIN_KEYWORD_CHARS = 3
TEXT_PREVIEW_LENGTH = 150

_ABBREVIATION_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(abbr) for abbr in ABBREVIATIONS) + r")\b"
)
_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    """Lowercase, expand abbreviations, strip punctuation and collapse whitespace."""
    if not text:
        return ""
    normalized = text.lower().strip()
    normalized = _ABBREVIATION_PATTERN.sub(lambda m: ABBREVIATIONS[m.group(1)], normalized)
    normalized = _NON_ALNUM_PATTERN.sub(" ", normalized)
    return _WHITESPACE_PATTERN.sub(" ", normalized).strip()


def extract_keywords(text: str | None, limit: int = MAX_KEYWORDS) -> list[str]:
    """Return salient terms ranked by frequency, first occurrence breaking ties."""
    if not text:
        return []
    words = [
        word
        for word in normalize_text(text).split()
        if len(word) >= MIN_KEYWORD_CHARS and word not in STOP_WORDS
    ]
    # Counter preserves insertion order and most_common() is stable for equal counts
    return [word for word, _ in Counter(words).most_common(limit)]


def keyword_stem(token: str) -> str:
    """Strip common English suffixes so inflected keywords compare equal."""
    word = token
    if len(word) <= 3:
        return word
    if word.endswith("ies") and len(word) > 4:
        return word[:-3] + "y"
    if word.endswith("s") and not word.endswith("ss"):
        word = word[:-1]
    if word.endswith(("ation", "ating")) and len(word) > 6:
        return word[:-5] + "ate"
    if word.endswith("ated") and len(word) > 5:
        return word[:-1]
    if word.endswith("ing") and len(word) > 5:
        return word[:-3]
    if word.endswith("ed") and len(word) > 4:
        return word[:-2]
    return word


def canonical_keyword(keyword: str) -> str:
    """Normalized, stemmed form used for keyword equality."""
    return " ".join(keyword_stem(token) for token in normalize_text(keyword).split())


def truncate(text: str | None, max_length: int = TEXT_PREVIEW_LENGTH) -> str:
    """Truncate text to ``max_length`` characters with a trailing ellipsis."""
    if not text:
        return ""
    return f"{text[:max_length]}..." if len(text) > max_length else text
