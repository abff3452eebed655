"""
Background (antecedentes) check validators.

No local pre-check: every call goes to the selected variant.
"""

from __future__ import annotations

from typing import Iterable

from manito_verify.errors import TransientValidatorError
from manito_verify.models import (
    BackgroundCheckDetails,
    ValidationOutcome,
    ValidationSource,
    ValidationStatus,
    ValidatorKind,
    utc_now,
)
from manito_verify.rut import clean_rut
from manito_verify.validators.base import Validator
from manito_verify.validators.http import AuthorityClient

_STATUS_MAP = {
    "clean": ValidationStatus.CLEAN,
    "flagged": ValidationStatus.FLAGGED,
    "criminal_record": ValidationStatus.CRIMINAL_RECORD,
}


class BackgroundCheckValidator(Validator):
    kind = ValidatorKind.BACKGROUND_CHECK


class LiveBackgroundCheckValidator(BackgroundCheckValidator):
    """Poder Judicial criminal, civil and commercial record check."""

    source = ValidationSource.PODER_JUDICIAL

    def __init__(self, client: AuthorityClient, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    async def _check(self, provider_id: str, subject: str) -> ValidationOutcome:
        data = await self.client.post(
            "/background-check",
            self.kind.value,
            {"rut": clean_rut(subject), "checkTypes": ["criminal", "civil", "commercial"]},
        )

        raw_status = data.get("status")
        if raw_status not in _STATUS_MAP:
            # "pending" or "error": the record is not available yet
            raise TransientValidatorError(self.kind.value, f"authority status '{raw_status}'")

        return ValidationOutcome(
            kind=self.kind,
            status=_STATUS_MAP[raw_status],
            source=self.source,
            observed_at=utc_now(),
            details=BackgroundCheckDetails(
                criminal_record=bool(data.get("criminalRecord")),
                civil_record=bool(data.get("civilRecord")),
                commercial_record=bool(data.get("commercialRecord")),
                findings=tuple(data.get("details") or ()),
                valid_until=data.get("validUntil"),
            ),
        )

    async def aclose(self) -> None:
        await self.client.aclose()


class StandInBackgroundCheckValidator(BackgroundCheckValidator):
    """Deterministic offline check: clean unless the RUT is listed."""

    source = ValidationSource.STAND_IN

    def __init__(
        self,
        flagged: Iterable[str] = (),
        criminal: Iterable[str] = (),
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.flagged = {clean_rut(r) for r in flagged}
        self.criminal = {clean_rut(r) for r in criminal}

    async def _check(self, provider_id: str, subject: str) -> ValidationOutcome:
        key = clean_rut(subject)
        if key in self.criminal:
            status = ValidationStatus.CRIMINAL_RECORD
            details = BackgroundCheckDetails(
                criminal_record=True, findings=("Criminal record on file",)
            )
        elif key in self.flagged:
            status = ValidationStatus.FLAGGED
            details = BackgroundCheckDetails(
                civil_record=True, findings=("Pending civil case - non-criminal",)
            )
        else:
            status = ValidationStatus.CLEAN
            details = BackgroundCheckDetails()

        return ValidationOutcome(
            kind=self.kind,
            status=status,
            source=self.source,
            observed_at=utc_now(),
            details=details,
        )
