"""
Error taxonomy for the verification engine.

A negative validator classification (invalid RUT, flagged background) is
normal data flow and never raised.
"""

from __future__ import annotations

from typing import Optional


class VerificationError(Exception):
    """Base class for verification engine errors."""
    pass


class NotFoundError(VerificationError):
    """Unknown provider. Fatal to the call, never retried."""

    def __init__(self, provider_id: str):
        super().__init__(f"Provider '{provider_id}' not found")
        self.provider_id = provider_id


class InvalidStateError(VerificationError):
    """Illegal transition or action for the workflow's current step."""

    def __init__(self, provider_id: str, step: Optional[str], action: str):
        super().__init__(
            f"Cannot {action} for provider '{provider_id}' in step '{step}'"
        )
        self.provider_id = provider_id
        self.step = step
        self.action = action


class TransientValidatorError(VerificationError):
    """Network, timeout or unavailable authority. Retried with backoff."""

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind}: {message}")
        self.kind = kind


class ValidatorError(VerificationError):
    """Non-transient integration failure (bad credentials, malformed request)."""

    def __init__(self, kind: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.status_code = status_code


class ConcurrentUpdateError(VerificationError):
    """Optimistic version check failed on a verification row."""

    def __init__(self, provider_id: str):
        super().__init__(f"Verification for '{provider_id}' was modified concurrently")
        self.provider_id = provider_id
