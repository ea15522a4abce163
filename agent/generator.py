"""
Response Generator
===================
Assembles the chat request for one inbound message and returns the
provider's reply text.

Request layout:
  system    — persona + every training entry (caller order)
  history   — the most recent `history_window_size` turns, oldest first
  user      — the new customer message

The generator owns prompt assembly and reply extraction only; the model
itself sits behind LLMProvider.
"""

from __future__ import annotations

import logging
from typing import Sequence

from .errors import GenerationFailure
from .llm import LLMProvider
from .models import ConversationTurn, TrainingEntry
from .prompts import DEFAULT_PROMPT_VERSION, build_system_prompt

logger = logging.getLogger("agent.generator")

_PROVIDER_ROLES = {"customer": "user", "assistant": "assistant"}


def window_history(
    history: Sequence[ConversationTurn], window_size: int
) -> list[ConversationTurn]:
    """Keep only the most recent window_size turns, preserving order."""
    if window_size <= 0:
        return []
    return list(history[-window_size:])


def build_messages(
    message: str,
    history: Sequence[ConversationTurn],
    window_size: int,
) -> list[dict]:
    """Chat messages after the system prompt: bounded history, then the new message."""
    messages = [
        {"role": _PROVIDER_ROLES[turn.role], "content": turn.content}
        for turn in window_history(history, window_size)
    ]
    messages.append({"role": "user", "content": message})
    return messages


class ResponseGenerator:
    """Builds the prompt and obtains a completion from the provider."""

    def __init__(
        self,
        provider: LLMProvider,
        history_window_size: int = 10,
        prompt_version: str = DEFAULT_PROMPT_VERSION,
    ):
        self.provider = provider
        self.history_window_size = history_window_size
        self.prompt_version = prompt_version

    async def generate(
        self,
        message: str,
        entries: Sequence[TrainingEntry],
        history: Sequence[ConversationTurn],
    ) -> str:
        """Return the draft reply for message.

        Raises:
            GenerationFailure: provider failed or produced no usable text.
            ConfigurationError: provider rejected the configuration.
        """
        system_prompt = build_system_prompt(entries, self.prompt_version)
        messages = build_messages(message, history, self.history_window_size)

        logger.debug(
            f"Generating reply: entries={len(entries)}, "
            f"history_turns={len(messages) - 1}, prompt_version={self.prompt_version}"
        )

        text = await self.provider.complete(system_prompt, messages)
        if not text or not text.strip():
            raise GenerationFailure("Language-model provider returned no content", cause="empty_response")
        return text
