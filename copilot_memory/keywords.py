"""
Keyword extraction for memory indexing.

extract_keywords() turns free text into at most 10 salient terms:
lower-cased, punctuation stripped, stop words and short tokens dropped,
ranked by frequency. Keywords are computed once when a memory is added
and stored alongside it; search matches query tokens against them.

Deterministic, stdlib-only, no I/O.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import List

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 3

# ── Stop words ──────────────────────────────────────────────────────────

EN_STOP_WORDS = frozenset({
    "i", "me", "my", "we", "our", "you", "your", "he", "she", "it", "they", "them",
    "a", "an", "the", "this", "that", "these", "those",
    "is", "am", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "can", "may", "might", "must", "shall",
    "and", "or", "but", "if", "then", "else", "when", "where", "why", "how",
    "all", "each", "every", "both", "few", "more", "most", "some", "any", "no",
    "not", "only", "own", "same", "so", "than", "too", "very",
    "just", "also", "now", "here", "there", "about", "after", "before",
    "to", "from", "up", "down", "in", "out", "on", "off", "over", "under",
    "with", "without", "for", "of", "at", "by", "as", "into", "through",
})

# Filler that shows up in nearly every preference-style memory
DOMAIN_FILLER_WORDS = frozenset({
    "like", "want", "use", "using", "used", "prefer", "always", "never",
})

STOP_WORDS = EN_STOP_WORDS | DOMAIN_FILLER_WORDS

_NON_WORD_RE = re.compile(r"[^a-z0-9\s-]")


def tokenize(text: str) -> List[str]:
    """Lower-case, replace non [a-z0-9 whitespace -] chars with spaces, split."""
    return _NON_WORD_RE.sub(" ", text.lower()).split()


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    """Extract up to *limit* keywords from text, most frequent first.

    Ties are broken by first occurrence in the text.

    Examples:
        >>> extract_keywords("Use pytest fixtures; pytest is great for fixtures and mocks")
        ['pytest', 'fixtures', 'great', 'mocks']
        >>> extract_keywords("it is")
        []
    """
    words = [
        w for w in tokenize(text)
        if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS
    ]
    # Counter preserves insertion order and most_common() sorts stably,
    # so equal counts stay in first-seen order.
    return [word for word, _ in Counter(words).most_common(limit)]
