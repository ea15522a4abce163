"""
Prompt Templates — Customer Support System Prompt
==================================================
Versioned system prompt templates and the knowledge-base context block
that grounds every generated reply.

Prompt changes go in as a NEW version key; existing versions are never
edited in place, so any stored reply can be traced to the exact
instructions that produced it.
"""

from __future__ import annotations

from typing import Sequence

from .models import TrainingEntry

# ── System Prompt Versions ───────────────────────────────────────────────
# v1: the production persona. Brazilian Portuguese
# only, recommends a human agent when unsure.

SYSTEM_PROMPT_V1 = """\
Você é um assistente de atendimento ao cliente inteligente e prestativo.
Suas responsabilidades incluem:

1. Responder perguntas dos clientes de forma clara e útil
2. Manter um tom profissional e amigável
3. Usar as informações de treinamento fornecidas para dar respostas precisas
4. Identificar quando uma conversa precisa ser escalada para um agente humano
5. Sempre responder em português brasileiro

Se você não souber a resposta para algo, seja honesto e sugira escalar para um agente humano.
Se a pergunta for muito complexa ou sensível, recomende falar com um agente.
"""

SYSTEM_PROMPTS = {
    "v1": SYSTEM_PROMPT_V1,
}

DEFAULT_PROMPT_VERSION = "v1"

TRAINING_HEADER = "Informações de treinamento:"


# ── Context Block ────────────────────────────────────────────────────────


def format_entry(entry: TrainingEntry) -> str:
    """Render one training entry for the context block."""
    text = f"Category: {entry.category}\nQuestion: {entry.question}\nAnswer: {entry.answer}"
    if entry.context:
        text += f"\nContext: {entry.context.strip()}"
    return text


def build_context_block(entries: Sequence[TrainingEntry]) -> str:
    """Join all entries, in caller order, separated by blank lines."""
    return "\n\n".join(format_entry(entry) for entry in entries)


def build_system_prompt(
    entries: Sequence[TrainingEntry],
    version: str = DEFAULT_PROMPT_VERSION,
) -> str:
    """Build the full system prompt: persona + training context.

    Args:
        entries: Every known training entry for the tenant (not only matches)
        version: Key into SYSTEM_PROMPTS

    Returns:
        Complete system prompt string.

    Raises:
        KeyError: if the version does not exist (EngineConfig validates it
            up front, so this only fires on direct misuse).
    """
    persona = SYSTEM_PROMPTS[version].strip()
    context = build_context_block(entries)
    if not context:
        return persona
    return f"{persona}\n\n{TRAINING_HEADER}\n{context}"
