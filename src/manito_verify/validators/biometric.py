"""
Biometric face-match validators (selfie against the ID document photo).
"""

from __future__ import annotations

import hashlib
from typing import Dict, Optional

from manito_verify.config.defaults import BIOMETRIC_MATCH_THRESHOLD
from manito_verify.errors import TransientValidatorError
from manito_verify.models import (
    BiometricDetails,
    ValidationOutcome,
    ValidationSource,
    ValidationStatus,
    ValidatorKind,
    utc_now,
)
from manito_verify.rut import clean_rut
from manito_verify.validators.base import Validator
from manito_verify.validators.http import AuthorityClient


class BiometricValidator(Validator):
    kind = ValidatorKind.BIOMETRIC_MATCH

    def __init__(self, threshold: float = BIOMETRIC_MATCH_THRESHOLD, **kwargs):
        super().__init__(**kwargs)
        self.threshold = threshold

    def _outcome(self, score: float, liveness: Optional[bool]) -> ValidationOutcome:
        score = max(0.0, min(1.0, float(score)))
        status = ValidationStatus.MATCH if score >= self.threshold else ValidationStatus.NO_MATCH
        return ValidationOutcome(
            kind=self.kind,
            status=status,
            source=self.source,
            observed_at=utc_now(),
            score=score,
            details=BiometricDetails(liveness_passed=liveness, threshold=self.threshold),
        )


class LiveBiometricValidator(BiometricValidator):
    source = ValidationSource.BIOMETRIC_SERVICE

    def __init__(self, client: AuthorityClient, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    async def _check(self, provider_id: str, subject: str) -> ValidationOutcome:
        data = await self.client.post(
            "/face-match",
            self.kind.value,
            {
                "providerId": provider_id,
                "rut": clean_rut(subject),
                "documents": ["cedula_front", "selfie"],
            },
        )
        if data.get("score") is None:
            raise TransientValidatorError(self.kind.value, "face match not computed yet")
        return self._outcome(data["score"], data.get("liveness"))

    async def aclose(self) -> None:
        await self.client.aclose()


class StandInBiometricValidator(BiometricValidator):
    """
    Deterministic offline face match.

    Uses a configured per-provider score when given, otherwise a stable
    score in [0.70, 1.00) derived from the provider id and RUT.
    """

    source = ValidationSource.STAND_IN

    def __init__(self, scores: Optional[Dict[str, float]] = None, **kwargs):
        super().__init__(**kwargs)
        self.scores = dict(scores or {})

    async def _check(self, provider_id: str, subject: str) -> ValidationOutcome:
        if provider_id in self.scores:
            score = self.scores[provider_id]
        else:
            digest = hashlib.sha256(f"{provider_id}:{clean_rut(subject)}".encode()).digest()
            score = 0.70 + (int.from_bytes(digest[:4], "big") / 2**32) * 0.30
            score = round(score, 4)
        return self._outcome(score, liveness=True)
