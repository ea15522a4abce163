"""
Escalation Classifier
======================
Decides whether a conversation must be handed to a human operator.

Rules (ANY match escalates):
  1. confidence < 0.6
  2. the customer message contains an escalation phrase
     (asks for a human, is dissatisfied, wants to cancel, ...)
  3. the generated reply contains an uncertainty phrase
     (the model hedged: "não sei", "talvez", ...)

Matching is plain case-insensitive substring search, not intent
detection. "não entendi a piada" triggers the "não entendi" rule; this is
a known limitation of the phrase lists, kept as-is.

Pure functions: no state, no I/O, same inputs → same answer.
"""

from __future__ import annotations

from typing import Iterable, Optional

CONFIDENCE_THRESHOLD = 0.6

# Customer wants a human or is dissatisfied.
ESCALATION_KEYWORDS: tuple[str, ...] = (
    "falar com atendente",
    "quero falar com humano",
    "transferir para pessoa",
    "não entendi",
    "isso não resolve",
    "quero cancelar",
    "problema urgente",
)

# The generated reply signals the model is unsure.
UNCERTAINTY_INDICATORS: tuple[str, ...] = (
    "não tenho certeza",
    "não sei",
    "talvez",
    "possivelmente",
    "recomendo falar com",
)

REASON_LOW_CONFIDENCE = "low_confidence"
REASON_CUSTOMER_KEYWORD = "customer_keyword"
REASON_UNCERTAIN_RESPONSE = "uncertain_response"


def find_phrase(text: str, phrases: Iterable[str]) -> Optional[str]:
    """Return the first phrase contained in text (case-insensitive), or None."""
    haystack = text.lower()
    for phrase in phrases:
        if phrase and phrase.lower() in haystack:
            return phrase
    return None


def escalation_reasons(
    message: str,
    response_text: str,
    confidence: float,
    keywords: Iterable[str] = ESCALATION_KEYWORDS,
    indicators: Iterable[str] = UNCERTAINTY_INDICATORS,
) -> list[str]:
    """List every rule that fires, in rule order.

    Returns:
        e.g. ["low_confidence", "customer_keyword:quero cancelar"];
        empty when the reply can be sent automatically.
    """
    reasons = []

    if confidence < CONFIDENCE_THRESHOLD:
        reasons.append(REASON_LOW_CONFIDENCE)

    keyword = find_phrase(message, keywords)
    if keyword:
        reasons.append(f"{REASON_CUSTOMER_KEYWORD}:{keyword}")

    indicator = find_phrase(response_text, indicators)
    if indicator:
        reasons.append(f"{REASON_UNCERTAIN_RESPONSE}:{indicator}")

    return reasons


def should_escalate(
    message: str,
    response_text: str,
    confidence: float,
    keywords: Iterable[str] = ESCALATION_KEYWORDS,
    indicators: Iterable[str] = UNCERTAINTY_INDICATORS,
) -> bool:
    """True when the conversation must go to a human operator."""
    return bool(escalation_reasons(message, response_text, confidence, keywords, indicators))
