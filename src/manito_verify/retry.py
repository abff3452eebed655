"""
Exponential backoff for validator calls.

Only transient failures (timeouts, unreachable or throttling authorities,
an open circuit) are retried. A negative classification is a normal
return value and never reaches this module as an error.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from manito_verify.circuit_breaker import CircuitBreakerOpen
from manito_verify.config.defaults import (
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_BASE_DELAY_MS,
    RETRY_JITTER_FACTOR,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
)
from manito_verify.errors import TransientValidatorError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    ``max_attempts`` counts every call, including the first.
    """
    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay_ms: float = RETRY_BASE_DELAY_MS
    max_delay_ms: float = RETRY_MAX_DELAY_MS
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    jitter: float = RETRY_JITTER_FACTOR
    retryable_exceptions: tuple = (
        TransientValidatorError,
        CircuitBreakerOpen,
        asyncio.TimeoutError,
        httpx.TransportError,
    )
    retryable_status_codes: tuple = (408, 429, 500, 502, 503, 504)


@dataclass
class RetryStats:
    """Filled in by with_retry_async as attempts are made."""
    attempts: int = 0
    total_delay_ms: float = 0.0
    last_error: Optional[BaseException] = None


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Delay in milliseconds before retry number ``attempt`` (0-based).

    Formula: min(base * (multiplier ^ attempt), max_delay) +/- jitter
    """
    delay = config.base_delay_ms * (config.backoff_multiplier ** attempt)
    delay = min(delay, config.max_delay_ms)

    jitter_range = delay * config.jitter
    delay += random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)


def is_retryable(error: BaseException, config: RetryConfig) -> bool:
    """Check if error is transient."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in config.retryable_status_codes
    return isinstance(error, config.retryable_exceptions)


async def with_retry_async(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    task_id: str = "unknown",
    config: Optional[RetryConfig] = None,
    stats: Optional[RetryStats] = None,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function, retrying transient failures.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        task_id: Identifier used in log events
        config: Retry configuration
        stats: Optional stats object, filled in as attempts are made
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Raises:
        The last exception once attempts are exhausted, or immediately for
        non-transient errors.
    """
    config = config or RetryConfig()
    stats = stats if stats is not None else RetryStats()

    while True:
        stats.attempts += 1
        try:
            result = await func(*args, **kwargs)
            if stats.attempts > 1:
                logger.info(f"{task_id}: succeeded after {stats.attempts} attempts")
            return result
        except Exception as e:
            stats.last_error = e
            if not is_retryable(e, config):
                raise
            if stats.attempts >= config.max_attempts:
                logger.warning(
                    "retry_exhausted",
                    extra={
                        "event": "retry_exhausted",
                        "task_id": task_id,
                        "attempts": stats.attempts,
                        "error_type": type(e).__name__,
                    },
                )
                raise

            delay_ms = calculate_backoff(stats.attempts - 1, config)
            stats.total_delay_ms += delay_ms
            logger.debug(
                f"{task_id}: attempt {stats.attempts}/{config.max_attempts} failed "
                f"({type(e).__name__}), retrying in {delay_ms:.0f}ms"
            )
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000.0)
