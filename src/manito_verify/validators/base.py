"""
Validator base class - timeout, retry and error downgrade for every check.

Concrete validators implement ``_check``; ``validate`` wraps it so that a
transient failure is retried with backoff and, once attempts run out,
comes back as an ``error`` outcome instead of an exception. A negative
classification is returned on the first attempt and never retried.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from typing import Optional

from manito_verify.config.defaults import VALIDATOR_TIMEOUT_SECONDS
from manito_verify.models import (
    ValidationOutcome,
    ValidationSource,
    ValidationStatus,
    ValidatorKind,
    utc_now,
)
from manito_verify.retry import RetryConfig, RetryStats, is_retryable, with_retry_async

logger = logging.getLogger(__name__)


class Validator(ABC):
    """One verification capability (RUT identity, background, biometric)."""

    kind: ValidatorKind
    source: ValidationSource

    def __init__(
        self,
        timeout: float = VALIDATOR_TIMEOUT_SECONDS,
        retry: Optional[RetryConfig] = None,
    ):
        self.timeout = timeout
        self.retry = retry or RetryConfig()

    @property
    def is_live(self) -> bool:
        return self.source.is_authoritative

    async def validate(self, provider_id: str, subject: str) -> ValidationOutcome:
        """
        Run the check with timeout and retries.

        Returns:
            A terminal classification, or an ``error`` outcome when every
            attempt failed transiently.

        Raises:
            ValidatorError and any other non-transient failure.
        """
        stats = RetryStats()
        try:
            outcome = await with_retry_async(
                self._attempt,
                provider_id,
                subject,
                task_id=f"{self.kind.value}:{provider_id}",
                config=self.retry,
                stats=stats,
            )
        except Exception as e:
            if not is_retryable(e, self.retry):
                raise
            logger.warning(
                f"{self.kind.value} for {provider_id} unresolved after "
                f"{stats.attempts} attempts: {type(e).__name__}"
            )
            return ValidationOutcome(
                kind=self.kind,
                status=ValidationStatus.ERROR,
                source=self.source,
                observed_at=utc_now(),
                attempts=stats.attempts,
                error=_describe(e),
            )
        return dataclasses.replace(outcome, attempts=stats.attempts)

    async def _attempt(self, provider_id: str, subject: str) -> ValidationOutcome:
        # wait_for cancels the in-flight check when the budget runs out
        return await asyncio.wait_for(
            self._check(provider_id, subject), timeout=self.timeout
        )

    @abstractmethod
    async def _check(self, provider_id: str, subject: str) -> ValidationOutcome:
        """Perform one attempt against the backing authority."""

    async def aclose(self) -> None:
        """Release network resources held by the validator."""
        return None


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timeout"
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__
