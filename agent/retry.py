"""
Retry utilities for transient language-model provider errors.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger("agent.retry")


async def run_with_retry(
    func: Callable[[], Awaitable[Any]],
    is_retryable: Callable[[Exception], bool],
    max_retries: int = 0,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
) -> Any:
    """
    Execute an async function, retrying transient failures with exponential backoff.

    Args:
        func: Async function to execute (no parameters)
        is_retryable: Predicate deciding whether an exception is transient
        max_retries: Extra attempts after the first one (0 = no retry)
        initial_delay: Delay in seconds before the first retry
        backoff_factor: Multiplier for the delay between retries

    Returns:
        Result from the function

    Raises:
        The last exception, once retries are exhausted or on a permanent error.
    """
    attempts = max_retries + 1

    for attempt in range(attempts):
        try:
            return await func()
        except Exception as e:
            if not is_retryable(e) or attempt == attempts - 1:
                raise

            wait_time = initial_delay * (backoff_factor**attempt)
            logger.warning(
                "Transient provider error (%s). Attempt %s/%s. Waiting %.1f seconds before retry...",
                type(e).__name__,
                attempt + 1,
                attempts,
                wait_time,
            )
            await asyncio.sleep(wait_time)
