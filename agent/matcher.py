"""
Knowledge Base Matcher
=======================
Finds the training entries whose question is lexically close to the
inbound message.

Similarity is word-set Jaccard: lower-case, split on whitespace,
|A ∩ B| / |A ∪ B|. No stemming, no stopword removal. Symmetric and
bounded to [0, 1].
"""

from __future__ import annotations

from typing import Sequence

from .models import ScoredEntry, TrainingEntry

SIMILARITY_THRESHOLD = 0.7


def tokenize(text: str) -> set[str]:
    return set(text.lower().split())


def similarity(a: str, b: str) -> float:
    """Word-overlap similarity between two strings."""
    words_a = tokenize(a)
    words_b = tokenize(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def rank(
    message: str,
    entries: Sequence[TrainingEntry],
    threshold: float = SIMILARITY_THRESHOLD,
) -> list[ScoredEntry]:
    """Entries whose question scores strictly above threshold, best first.

    Equal scores keep the caller's entry order (sorted() is stable).
    """
    scored = [
        ScoredEntry(entry=entry, score=similarity(message, entry.question))
        for entry in entries
    ]
    similar = [s for s in scored if s.score > threshold]
    return sorted(similar, key=lambda s: s.score, reverse=True)
