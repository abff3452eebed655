"""Circuit breaker for live verification authorities.

Stops hammering an authority (Registro Civil, Poder Judicial, biometric
service) that keeps failing. An open circuit is reported to callers as a
transient failure, so the workflow stalls rather than rejecting.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from manito_verify.config.defaults import (
    CIRCUIT_BREAKER_FAILURE_THRESHOLD,
    CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS,
    CIRCUIT_BREAKER_SUCCESS_THRESHOLD,
    CIRCUIT_BREAKER_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # one probe window after the cool-down


class CircuitBreakerOpen(Exception):
    """The authority is cooling down; callers treat this as transient."""


@dataclass
class CircuitBreakerConfig:
    """Thresholds for one authority's breaker.

    ``timeout`` is the cool-down in seconds before a probe is let through;
    ``success_threshold`` probes must succeed to close again.
    """

    failure_threshold: int = CIRCUIT_BREAKER_FAILURE_THRESHOLD
    success_threshold: int = CIRCUIT_BREAKER_SUCCESS_THRESHOLD
    timeout: float = CIRCUIT_BREAKER_TIMEOUT_SECONDS
    half_open_max_calls: int = CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS


class CircuitBreaker:
    """Circuit breaker guarding calls to one authority."""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_calls = 0

        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_available(self) -> bool:
        """True when a call may be sent to the authority now."""
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._last_failure_time is not None:
                elapsed = self._clock() - self._last_failure_time
                if elapsed >= self.config.timeout:
                    self._transition(CircuitState.HALF_OPEN, reason="timeout_elapsed")
                    self._half_open_calls = 0
                    return True
            return False

        # HALF_OPEN state
        return self._half_open_calls < self.config.half_open_max_calls

    def _transition(self, to_state: CircuitState, **extra: Any) -> None:
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "event": "circuit_breaker_state_change",
                "authority": self.name,
                "from_state": self._state.value,
                "to_state": to_state.value,
                **extra,
            },
        )
        self._state = to_state

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Execute a coroutine function through the circuit breaker."""
        async with self._lock:
            if not self.is_available:
                raise CircuitBreakerOpen(
                    f"Circuit '{self.name}' is OPEN. Authority unavailable."
                )
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
        except (Exception, asyncio.CancelledError):
            # A call cancelled by a caller timeout still counts as a failure
            await self._on_failure()
            raise

        await self._on_success()
        return result

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED, reason="recovery_success")
                    self._failure_count = 0
                    self._success_count = 0
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, reason="test_request_failed")
                self._success_count = 0
                self._half_open_calls = 0
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._transition(
                    CircuitState.OPEN,
                    failure_count=self._failure_count,
                    threshold=self.config.failure_threshold,
                )

    def get_status(self) -> dict:
        """Plain-dict view of the breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure": self._last_failure_time,
            "is_available": self.is_available,
        }

    def reset(self) -> None:
        """Close the circuit and forget past failures."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        self._half_open_calls = 0


class CircuitBreakerManager:
    """Holds one circuit breaker per authority name."""

    def __init__(self, config: Optional[CircuitBreakerConfig] = None):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._config = config or CircuitBreakerConfig()

    def get_breaker(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self._breakers[name] = CircuitBreaker(name, self._config)
        return breaker

    def get_all_status(self) -> dict:
        return {authority: b.get_status() for authority, b in self._breakers.items()}
