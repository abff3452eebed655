"""Validator selection: live integrations or deterministic stand-ins.

The choice is made once, when the set is built at startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import httpx

from manito_verify.circuit_breaker import CircuitBreakerManager
from manito_verify.config.settings import VerificationSettings
from manito_verify.models import ValidatorKind
from manito_verify.retry import RetryConfig
from manito_verify.validators.background import (
    BackgroundCheckValidator,
    LiveBackgroundCheckValidator,
    StandInBackgroundCheckValidator,
)
from manito_verify.validators.base import Validator
from manito_verify.validators.biometric import (
    BiometricValidator,
    LiveBiometricValidator,
    StandInBiometricValidator,
)
from manito_verify.validators.http import AuthorityClient
from manito_verify.validators.rut_identity import (
    LiveRutIdentityValidator,
    RutIdentityValidator,
    StandInRutIdentityValidator,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidatorSet:
    """One validator per kind, injected into the orchestrator."""
    rut_identity: RutIdentityValidator
    background_check: BackgroundCheckValidator
    biometric_match: BiometricValidator

    def for_kind(self, kind: ValidatorKind) -> Validator:
        return {
            ValidatorKind.RUT_IDENTITY: self.rut_identity,
            ValidatorKind.BACKGROUND_CHECK: self.background_check,
            ValidatorKind.BIOMETRIC_MATCH: self.biometric_match,
        }[kind]

    def __iter__(self) -> Iterator[Validator]:
        return iter((self.rut_identity, self.background_check, self.biometric_match))

    @property
    def sources(self) -> Dict[str, str]:
        return {v.kind.value: v.source.value for v in self}

    async def aclose(self) -> None:
        for validator in self:
            await validator.aclose()


def build_validators(
    settings: VerificationSettings,
    http_client: Optional[httpx.AsyncClient] = None,
    stand_in: Optional[Dict[str, Any]] = None,
) -> ValidatorSet:
    """
    Build the process-wide validator set from settings.

    ``stand_in`` seeds the offline validators with known answers (keys:
    rut_not_found, rut_invalid, background_flagged, background_criminal,
    biometric_scores). Ignored in live mode.
    """
    mode = settings.resolve_validator_mode()
    retry = RetryConfig(
        max_attempts=settings.retry_max_attempts,
        base_delay_ms=settings.retry_base_delay_ms,
    )
    common = {"timeout": settings.validator_timeout, "retry": retry}

    if mode == "live":
        if not settings.api_key:
            logger.warning(
                "Live validators built without MANITO_VALIDATOR_API_KEY; authorities will reject requests",
                extra={"event": "validator_api_key_missing"},
            )
        breakers = CircuitBreakerManager()

        def authority(name: str, url: str) -> AuthorityClient:
            return AuthorityClient(
                name, url, settings.api_key or "", http_client=http_client, breakers=breakers
            )

        validators = ValidatorSet(
            rut_identity=LiveRutIdentityValidator(
                authority("registro_civil", settings.registro_civil_url), **common
            ),
            background_check=LiveBackgroundCheckValidator(
                authority("poder_judicial", settings.poder_judicial_url), **common
            ),
            biometric_match=LiveBiometricValidator(
                authority("biometric_service", settings.biometric_url),
                threshold=settings.biometric_threshold,
                **common,
            ),
        )
    else:
        answers = stand_in or {}
        validators = ValidatorSet(
            rut_identity=StandInRutIdentityValidator(
                not_found=answers.get("rut_not_found", ()),
                invalid=answers.get("rut_invalid", ()),
                **common,
            ),
            background_check=StandInBackgroundCheckValidator(
                flagged=answers.get("background_flagged", ()),
                criminal=answers.get("background_criminal", ()),
                **common,
            ),
            biometric_match=StandInBiometricValidator(
                scores=answers.get("biometric_scores"),
                threshold=settings.biometric_threshold,
                **common,
            ),
        )

    logger.info(f"Validators built in {mode} mode: {validators.sources}")
    return validators
