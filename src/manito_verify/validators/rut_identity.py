"""
RUT identity validators.

Every variant runs the local modulo-11 check first; a locally invalid RUT
comes back as ``invalid`` from ``local_validation`` without touching the
authority.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from manito_verify.models import (
    RutIdentityDetails,
    ValidationOutcome,
    ValidationSource,
    ValidationStatus,
    ValidatorKind,
    utc_now,
)
from manito_verify.rut import clean_rut, validate_rut
from manito_verify.validators.base import Validator
from manito_verify.validators.http import AuthorityClient

logger = logging.getLogger(__name__)


class RutIdentityValidator(Validator):
    """Base for RUT identity lookups; owns the local pre-check."""

    kind = ValidatorKind.RUT_IDENTITY

    async def validate(self, provider_id: str, subject: str) -> ValidationOutcome:
        check = validate_rut(subject)
        if not check.is_valid:
            logger.info(f"RUT for {provider_id} failed local validation: {check.error}")
            return ValidationOutcome(
                kind=self.kind,
                status=ValidationStatus.INVALID,
                source=ValidationSource.LOCAL_VALIDATION,
                observed_at=utc_now(),
                details=RutIdentityDetails(reason=check.error),
                attempts=0,
            )
        return await super().validate(provider_id, check.formatted)


class LiveRutIdentityValidator(RutIdentityValidator):
    """Registro Civil lookup."""

    source = ValidationSource.REGISTRO_CIVIL

    def __init__(self, client: AuthorityClient, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    async def _check(self, provider_id: str, subject: str) -> ValidationOutcome:
        data = await self.client.post(
            "/validate-rut", self.kind.value, {"rut": clean_rut(subject)}
        )

        if data.get("found") is False:
            status = ValidationStatus.NOT_FOUND
        elif data.get("valid"):
            status = ValidationStatus.VALID
        else:
            status = ValidationStatus.INVALID

        return ValidationOutcome(
            kind=self.kind,
            status=status,
            source=self.source,
            observed_at=utc_now(),
            details=RutIdentityDetails(
                formatted_rut=subject,
                name=data.get("name"),
                registry_status=data.get("status"),
                person_type=data.get("type"),
                reason=data.get("message"),
            ),
        )

    async def aclose(self) -> None:
        await self.client.aclose()


class StandInRutIdentityValidator(RutIdentityValidator):
    """Deterministic offline lookup: any checksum-valid RUT is valid unless listed."""

    source = ValidationSource.STAND_IN

    def __init__(
        self,
        not_found: Iterable[str] = (),
        invalid: Iterable[str] = (),
        name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.not_found = {clean_rut(r) for r in not_found}
        self.invalid = {clean_rut(r) for r in invalid}
        self.name = name

    async def _check(self, provider_id: str, subject: str) -> ValidationOutcome:
        key = clean_rut(subject)
        if key in self.not_found:
            status = ValidationStatus.NOT_FOUND
            reason = "RUT not found in registry"
        elif key in self.invalid:
            status = ValidationStatus.INVALID
            reason = "RUT marked invalid by registry"
        else:
            status = ValidationStatus.VALID
            reason = None

        return ValidationOutcome(
            kind=self.kind,
            status=status,
            source=self.source,
            observed_at=utc_now(),
            details=RutIdentityDetails(
                formatted_rut=subject,
                name=self.name if status == ValidationStatus.VALID else None,
                registry_status="active" if status == ValidationStatus.VALID else None,
                person_type="natural" if status == ValidationStatus.VALID else None,
                reason=reason,
            ),
        )
