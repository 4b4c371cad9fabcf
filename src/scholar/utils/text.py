"""Shared keyword and term extraction helpers.

One stop-word set and one word-extraction routine serve both the heuristic insight
generator and the category-aware query enhancer.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, List, Sequence

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "about", "above", "after", "again", "all", "an", "and", "any", "at",
        "been", "before", "below", "both", "but", "by", "can", "come", "could", "don",
        "down", "during", "each", "few", "for", "from", "further", "have", "here", "how",
        "in", "into", "just", "may", "more", "most", "no", "nor", "not", "now",
        "of", "off", "on", "once", "only", "or", "other", "out", "over", "own",
        "s", "said", "same", "should", "so", "some", "such", "t", "than", "that",
        "the", "their", "then", "there", "they", "this", "through", "time", "to", "too",
        "under", "up", "use", "very", "what", "when", "where", "which", "why", "will",
        "with", "would",
    }
)

# Capitalised words that look like terms but carry no technical meaning.
COMMON_WORDS: frozenset[str] = frozenset(
    {
        "The", "And", "But", "For", "You", "Can", "All", "Now", "How", "She", "May", "Say",
        "Her", "Use", "One", "Our", "Out", "Day", "Get", "His", "Had", "Him", "Old", "See",
        "Two", "Who", "Its", "Did", "Yes", "New", "Way", "Man", "Big", "Too", "Any", "My",
        "No", "Go", "So", "Up", "If", "Do", "Or", "An", "As", "We", "Be", "He", "In", "Is",
        "It", "Of", "On", "To",
    }
)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_DIGITS = re.compile(r"^\d+$")
_TERM_PATTERN = re.compile(r"\b[A-Z]{2,}\b|\b[A-Z][a-z]+(?:[A-Z][a-z]*)*\b")


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and trim the ends."""

    return _WHITESPACE.sub(" ", text).strip()


def tokenize(text: str) -> List[str]:
    """Split text into lowercase tokens, treating punctuation as a separator."""

    return [token for token in _PUNCTUATION.sub(" ", text.lower()).split() if token]


def count_words(text: str) -> int:
    """Count words, treating punctuation as a separator."""

    return len(tokenize(text))


def extract_words(
    text: str,
    *,
    min_length: int = 2,
    stop_words: Iterable[str] = STOP_WORDS,
    keep_numbers: bool = False,
) -> List[str]:
    """Return meaningful lowercase words from ``text`` in order of appearance.

    Parameters
    ----------
    text:
        Free text to scan.
    min_length:
        Shortest word length that is kept.
    stop_words:
        Words that are always discarded.
    keep_numbers:
        Keep tokens made only of digits when ``True``.

    Returns
    -------
    list[str]
        Filtered tokens; duplicates are preserved.
    """

    excluded = stop_words if isinstance(stop_words, (set, frozenset)) else set(stop_words)
    words: List[str] = []
    for token in tokenize(text):
        if len(token) < min_length or token in excluded:
            continue
        if not keep_numbers and _DIGITS.match(token):
            continue
        words.append(token)
    return words


def by_specificity(words: Sequence[str]) -> List[str]:
    """Sort words longest first, keeping the original order for equal lengths."""

    return sorted(words, key=len, reverse=True)


def unique(words: Iterable[str]) -> List[str]:
    """De-duplicate while preserving first-seen order."""

    return list(dict.fromkeys(words))


def top_frequent_words(text: str, *, min_length: int = 4, limit: int = 5) -> List[str]:
    """Return the most frequent non stop-words of at least ``min_length`` characters."""

    counts = Counter(extract_words(text, min_length=min_length, keep_numbers=True))
    return [word for word, _ in counts.most_common(limit)]


def extract_capitalized_terms(text: str, *, limit: int = 10) -> List[str]:
    """Find acronyms and CamelCase tokens that look like technical terminology."""

    terms = [
        term
        for term in unique(_TERM_PATTERN.findall(text))
        if len(term) > 2 and term not in COMMON_WORDS
    ]
    return terms[:limit]


__all__ = [
    "COMMON_WORDS",
    "STOP_WORDS",
    "by_specificity",
    "collapse_whitespace",
    "count_words",
    "extract_capitalized_terms",
    "extract_words",
    "tokenize",
    "top_frequent_words",
    "unique",
]
