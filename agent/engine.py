"""
Automated Response Decision Engine
===================================
Given an inbound customer message, the tenant's trained Q&A pairs and the
recent conversation history, decides what to reply, how confident the
reply is, and whether the conversation must go to a human operator.

Pipeline (per message):
  1. Validate input                 (InvalidInput on malformed data)
  2. Rank similar training entries  (matcher.rank)
  3. Generate draft reply           (generator.ResponseGenerator → LLM)
  4. Score confidence               (scorer.score)
  5. Classify escalation            (escalation.escalation_reasons)

Usage:
    from agent.config import EngineConfig
    from agent.engine import DecisionEngine

    engine = DecisionEngine(EngineConfig.from_env())
    result = await engine.decide(
        "Qual o horário de funcionamento?",
        entries=[{"category": "Geral", "question": "...", "answer": "..."}],
        history=[{"role": "customer", "content": "Oi"}],
    )
    if not result.should_escalate:
        ...  # channel sends result.content

The engine holds no per-conversation state: concurrent calls for
different conversations need no coordination. It never sends messages
and never persists anything; channel adapters do both.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from . import escalation, matcher, scorer
from .config import EngineConfig
from .errors import InvalidInput
from .generator import ResponseGenerator
from .llm import LLMProvider, OpenAIChatProvider
from .models import ConversationTurn, DecisionResult, TrainingEntry

logger = logging.getLogger("agent.engine")


class DecisionEngine:
    """Stateless decision service consumed by every channel adapter."""

    def __init__(self, config: EngineConfig, provider: Optional[LLMProvider] = None):
        self.config = config
        self.provider = provider or OpenAIChatProvider(config)
        self.generator = ResponseGenerator(
            self.provider,
            history_window_size=config.history_window_size,
            prompt_version=config.prompt_version,
        )

    async def decide(
        self,
        message: str,
        entries: Optional[Sequence[Any]] = None,
        history: Optional[Sequence[Any]] = None,
    ) -> DecisionResult:
        """Run the full decision pipeline for one inbound message.

        Args:
            message: The customer's message text
            entries: TrainingEntry objects or dicts (category, question, answer, context)
            history: ConversationTurn objects or dicts (role, content), oldest first

        Returns:
            DecisionResult with content, confidence, should_escalate, category.

        Raises:
            InvalidInput: message missing/blank or malformed entries/history.
            GenerationFailure: the provider produced no usable reply.
            ConfigurationError: the provider rejected the configuration.
        """
        start_time = time.time()

        message = validate_message(message)
        training = coerce_entries(entries)
        turns = coerce_history(history)

        matches = matcher.rank(message, training)
        content = await self.generator.generate(message, training, turns)
        confidence = scorer.score(content, training, message, matches=matches)
        reasons = escalation.escalation_reasons(
            message,
            content,
            confidence,
            keywords=self.config.escalation_keywords,
            indicators=self.config.uncertainty_indicators,
        )

        result = DecisionResult(
            content=content,
            confidence=confidence,
            should_escalate=bool(reasons),
            category=matches[0].entry.category if matches else None,
            escalation_reasons=reasons,
        )

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Decision: escalate={result.should_escalate}, confidence={confidence:.2f}, "
            f"similar_entries={len(matches)}, reasons={reasons}, latency_ms={latency_ms}"
        )
        return result


# ── Input Validation ─────────────────────────────────────────────────────


def validate_message(message: Any) -> str:
    if not isinstance(message, str) or not message.strip():
        raise InvalidInput("Missing customerMessage")
    return message


def coerce_entries(entries: Optional[Sequence[Any]]) -> list[TrainingEntry]:
    """Accept TrainingEntry objects or plain dicts; reject anything malformed."""
    if entries is None:
        return []
    if not isinstance(entries, (list, tuple)):
        raise InvalidInput("trainingData must be a list")
    try:
        return [
            e if isinstance(e, TrainingEntry) else TrainingEntry.model_validate(e)
            for e in entries
        ]
    except (ValidationError, TypeError) as e:
        raise InvalidInput(f"Malformed training entry: {e}") from e


def coerce_history(history: Optional[Sequence[Any]]) -> list[ConversationTurn]:
    """Accept ConversationTurn objects or plain dicts; reject anything malformed."""
    if history is None:
        return []
    if not isinstance(history, (list, tuple)):
        raise InvalidInput("conversationHistory must be a list")
    try:
        return [
            t if isinstance(t, ConversationTurn) else ConversationTurn.model_validate(t)
            for t in history
        ]
    except (ValidationError, TypeError) as e:
        raise InvalidInput(f"Malformed conversation turn: {e}") from e
