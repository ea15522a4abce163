"""
Language-Model Provider
========================
Narrow completion interface used by the Response Generator:

    text = await provider.complete(system_prompt, messages)

where messages is the ordered chat history in OpenAI format
([{"role": "user" | "assistant", "content": str}, ...]).

OpenAIChatProvider translates SDK exceptions into the engine taxonomy:
  - authentication / permission / bad request / unknown model
      → ConfigurationError (never retried)
  - timeout / connection / rate limit / 5xx / empty reply
      → GenerationFailure (timeouts, connection, rate limits and 5xx are
        retried when EngineConfig.max_retries > 0)
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)

from .config import EngineConfig
from .errors import ConfigurationError, GenerationFailure
from .retry import run_with_retry

logger = logging.getLogger("agent.llm")

_TRANSIENT_CAUSES = {"timeout", "connection", "rate_limited", "server_error"}


class LLMProvider(ABC):
    """Abstract chat-completion capability."""

    @abstractmethod
    async def complete(self, system_prompt: str, messages: list[dict]) -> str:
        """Return the generated reply text.

        Raises:
            ConfigurationError: credentials/settings rejected by the provider.
            GenerationFailure: the call failed, timed out or returned no text.
        """


def is_transient(error: Exception) -> bool:
    """Whether a provider error is worth retrying."""
    return isinstance(error, GenerationFailure) and error.cause in _TRANSIENT_CAUSES


class OpenAIChatProvider(LLMProvider):
    """OpenAI Chat Completions provider."""

    def __init__(self, config: EngineConfig, client: Optional[AsyncOpenAI] = None):
        if not config.provider_api_key:
            raise ConfigurationError("OpenAI API key not configured")
        self.config = config
        # SDK-level retries are disabled; retry policy lives in run_with_retry.
        self.client = client or AsyncOpenAI(
            api_key=config.provider_api_key,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    async def complete(self, system_prompt: str, messages: list[dict]) -> str:
        payload = [{"role": "system", "content": system_prompt}, *messages]

        return await run_with_retry(
            lambda: self._complete_once(payload),
            is_retryable=is_transient,
            max_retries=self.config.max_retries,
            initial_delay=self.config.retry_initial_delay,
            backoff_factor=self.config.retry_backoff_factor,
        )

    async def _complete_once(self, payload: list[dict]) -> str:
        model = self.config.model_name
        start_time = time.time()

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model,
                    messages=payload,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                    presence_penalty=self.config.presence_penalty,
                    frequency_penalty=self.config.frequency_penalty,
                ),
                timeout=self.config.timeout_seconds,
            )
        except (asyncio.TimeoutError, APITimeoutError) as e:
            logger.error(f"OpenAI request timed out after {self.config.timeout_ms}ms")
            raise GenerationFailure(
                f"Language-model request timed out after {self.config.timeout_ms}ms",
                cause="timeout",
            ) from e
        except (AuthenticationError, PermissionDeniedError) as e:
            logger.critical(f"OpenAI rejected the configured credentials: {e.status_code}")
            raise ConfigurationError(f"OpenAI rejected the API key ({e.status_code})") from e
        except (BadRequestError, NotFoundError) as e:
            logger.critical(f"OpenAI rejected the request for model={model!r}: {e.status_code}")
            raise ConfigurationError(
                f"OpenAI rejected the request for model '{model}' ({e.status_code})"
            ) from e
        except RateLimitError as e:
            logger.warning("OpenAI rate limit hit")
            raise GenerationFailure("Language-model provider rate limited", cause="rate_limited") from e
        except APIConnectionError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise GenerationFailure("Could not reach language-model provider", cause="connection") from e
        except APIStatusError as e:
            cause = "server_error" if e.status_code >= 500 else "provider_error"
            logger.error(f"OpenAI API error: {e.status_code}")
            raise GenerationFailure(f"OpenAI API error: {e.status_code}", cause=cause) from e
        except OpenAIError as e:
            logger.error(f"OpenAI client error: {e}")
            raise GenerationFailure(f"OpenAI client error: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)
        text = _extract_text(response)
        if not text:
            logger.warning(f"OpenAI returned no content (model={model}, latency_ms={latency_ms})")
            raise GenerationFailure("Language-model provider returned no content", cause="empty_response")

        logger.info(f"OpenAI completion ok: model={model}, latency_ms={latency_ms}, length={len(text)}")
        return text


def _extract_text(response) -> str:
    """Pull choices[0].message.content out of a chat completion, or ''."""
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None) or ""
    return content if content.strip() else ""
