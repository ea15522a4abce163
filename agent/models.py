"""
Decision Engine Data Models
============================
Pydantic models for the engine's inputs and output.

  TrainingEntry    — one knowledge-base fact (category, question, answer)
  ConversationTurn — one prior message, oldest first
  ScoredEntry      — a TrainingEntry with its similarity to the inbound message
  DecisionResult   — reply text, confidence and the escalation decision

Wire names follow the channel payloads (camelCase: shouldEscalate,
escalationReasons); Python code uses the snake_case field names.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# History roles as the channels send them → engine roles.
_ROLE_ALIASES = {
    "customer": "customer",
    "user": "customer",
    "assistant": "assistant",
    "agent": "assistant",
    "ai": "assistant",
}


class TrainingEntry(BaseModel):
    """One trained Q&A pair. Immutable for the duration of an invocation."""

    model_config = ConfigDict(frozen=True)

    category: str = Field(description="Short label grouping related entries")
    question: str = Field(description="Canonical phrasing of a customer question")
    answer: str = Field(description="Reference answer")
    context: Optional[str] = Field(
        default=None, description="Supplementary text folded into the prompt"
    )

    @field_validator("category", "question", "answer")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class ConversationTurn(BaseModel):
    """One prior exchange in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["customer", "assistant"]
    content: str

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: str) -> str:
        if isinstance(v, str):
            mapped = _ROLE_ALIASES.get(v.strip().lower())
            if mapped:
                return mapped
        raise ValueError(f"role must be one of: {sorted(_ROLE_ALIASES)}")


class ScoredEntry(BaseModel):
    """A training entry paired with its similarity to the inbound message."""

    entry: TrainingEntry
    score: float


class DecisionResult(BaseModel):
    """The engine's output for one inbound message."""

    model_config = ConfigDict(populate_by_name=True)

    content: str
    confidence: float = Field(ge=0.0, le=1.0)
    should_escalate: bool = Field(alias="shouldEscalate")
    category: Optional[str] = None
    escalation_reasons: list[str] = Field(
        default_factory=list, alias="escalationReasons"
    )
