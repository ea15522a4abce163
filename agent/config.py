"""
Decision Engine Configuration
==============================
Explicit settings object handed to the engine at construction time.
Nothing inside agent/ reads the process environment except
EngineConfig.from_env(), which the service entry points call once.

Environment (from_env):
  OPENAI_API_KEY     — provider API key (required)
  AI_MODEL_NAME      — chat model (default: gpt-3.5-turbo)
  AI_TIMEOUT_MS      — per-call timeout in milliseconds (default: 30000)
  AI_HISTORY_WINDOW  — max prior turns sent to the model (default: 10)
  AI_TEMPERATURE     — sampling temperature (default: 0.7)
  AI_MAX_TOKENS      — completion token limit (default: 500)
  AI_MAX_RETRIES     — retries on transient provider errors (default: 0)
  AI_PROMPT_VERSION  — system prompt template version (default: latest)
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .escalation import ESCALATION_KEYWORDS, UNCERTAINTY_INDICATORS
from .prompts import DEFAULT_PROMPT_VERSION, SYSTEM_PROMPTS


class EngineConfig(BaseModel):
    """Settings for one DecisionEngine instance."""

    model_config = ConfigDict(frozen=True)

    provider_api_key: str = Field(repr=False, description="Language-model provider API key")
    model_name: str = "gpt-3.5-turbo"
    timeout_ms: int = Field(default=30_000, gt=0)
    history_window_size: int = Field(default=10, ge=0)

    # Completion parameters
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, gt=0)
    presence_penalty: float = 0.1
    frequency_penalty: float = 0.1

    # Bounded retry on transient provider errors (0 = single attempt)
    max_retries: int = Field(default=0, ge=0)
    retry_initial_delay: float = Field(default=1.0, ge=0.0)
    retry_backoff_factor: float = Field(default=2.0, ge=1.0)

    prompt_version: str = DEFAULT_PROMPT_VERSION

    # Escalation phrase lists (substring match, case-insensitive)
    escalation_keywords: tuple[str, ...] = ESCALATION_KEYWORDS
    uncertainty_indicators: tuple[str, ...] = UNCERTAINTY_INDICATORS

    @field_validator("provider_api_key")
    @classmethod
    def api_key_must_be_set(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("provider API key not configured")
        return v

    @field_validator("prompt_version")
    @classmethod
    def prompt_version_must_exist(cls, v: str) -> str:
        if v not in SYSTEM_PROMPTS:
            raise ValueError(
                f"unknown prompt version '{v}', expected one of {sorted(SYSTEM_PROMPTS)}"
            )
        return v

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build the config from environment variables.

        Raises:
            ConfigurationError: if the API key is missing or any value is invalid.
        """
        env = os.environ if environ is None else environ

        api_key = env.get("OPENAI_API_KEY", "")
        if not api_key.strip():
            raise ConfigurationError("OPENAI_API_KEY not configured")

        values: dict = {"provider_api_key": api_key}
        optional = {
            "AI_MODEL_NAME": "model_name",
            "AI_TIMEOUT_MS": "timeout_ms",
            "AI_HISTORY_WINDOW": "history_window_size",
            "AI_TEMPERATURE": "temperature",
            "AI_MAX_TOKENS": "max_tokens",
            "AI_MAX_RETRIES": "max_retries",
            "AI_PROMPT_VERSION": "prompt_version",
        }
        for env_name, field_name in optional.items():
            raw = env.get(env_name)
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()

        return cls.create(**values)

    @classmethod
    def create(cls, **values) -> "EngineConfig":
        """Validate settings, reporting problems as ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid engine configuration: {e}") from e
