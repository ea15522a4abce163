"""
Decision Engine Errors
=======================
Three distinct failure kinds, each reported to the caller as its own
exception type so channel adapters can react differently:

  ConfigurationError — missing/invalid provider credentials or settings.
                       Fatal: never retried, surfaced to the operator.
  GenerationFailure  — the language-model call failed, timed out, or
                       returned no usable text. Recoverable at the
                       caller's discretion (e.g. hold message + escalate).
  InvalidInput       — malformed input, rejected before any work is done.

The engine never fabricates a DecisionResult when one of these is raised.
"""

from __future__ import annotations


class DecisionEngineError(Exception):
    """Base class for all decision engine errors."""


class ConfigurationError(DecisionEngineError):
    """Provider credentials or engine settings are missing or invalid."""


class GenerationFailure(DecisionEngineError):
    """The language-model provider did not produce a usable reply."""

    def __init__(self, message: str, *, cause: str = "provider_error"):
        super().__init__(message)
        self.cause = cause


class InvalidInput(DecisionEngineError):
    """The inbound request is malformed."""
