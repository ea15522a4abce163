"""
Confidence Scorer
==================
Deterministic confidence for a generated reply:

  base                                   0.5
  reply longer than 50 chars            +0.2
  reply longer than 100 chars           +0.1
  at least one similar training entry   +0.2
  more than two similar entries         +0.1

Additive, capped at 1.0. The base always applies, so the floor is 0.5.
"""

from __future__ import annotations

from typing import Optional, Sequence

from .matcher import rank
from .models import ScoredEntry, TrainingEntry

BASE_CONFIDENCE = 0.5
MAX_CONFIDENCE = 1.0


def confidence_from_matches(response_text: str, similar_count: int) -> float:
    """Apply the scoring table given how many entries matched."""
    confidence = BASE_CONFIDENCE

    if len(response_text) > 50:
        confidence += 0.2
    if len(response_text) > 100:
        confidence += 0.1

    if similar_count > 0:
        confidence += 0.2
    if similar_count > 2:
        confidence += 0.1

    # Rounded so 0.5 + 0.2 + 0.1 compares equal to 0.8
    return round(min(confidence, MAX_CONFIDENCE), 2)


def score(
    response_text: str,
    entries: Sequence[TrainingEntry],
    message: str,
    matches: Optional[Sequence[ScoredEntry]] = None,
) -> float:
    """Score a reply against the knowledge base and the inbound message.

    Args:
        response_text: The generated reply
        entries: All training entries
        message: The inbound customer message
        matches: Precomputed rank(message, entries), if the caller has it

    Returns:
        Confidence in [0.5, 1.0].
    """
    if matches is None:
        matches = rank(message, entries)
    return confidence_from_matches(response_text, len(matches))
