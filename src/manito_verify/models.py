"""
Shared dataclasses and enums for the verification engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class WorkflowStep(str, Enum):
    """Workflow steps, initial to terminal."""
    DOCUMENTS_UPLOAD = "documents_upload"
    RUT_VALIDATION = "rut_validation"
    BACKGROUND_CHECK = "background_check"
    IDENTITY_VERIFICATION = "identity_verification"
    MANUAL_REVIEW = "manual_review"
    FINAL_APPROVAL = "final_approval"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStep.COMPLETED, WorkflowStep.REJECTED)


class FinalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


class ValidatorKind(str, Enum):
    """Validator kinds, in the priority order used for audit replay."""
    RUT_IDENTITY = "rut_identity"
    BACKGROUND_CHECK = "background_check"
    BIOMETRIC_MATCH = "biometric_match"

    @property
    def priority(self) -> int:
        return list(ValidatorKind).index(self)


class ValidationStatus(str, Enum):
    # rut_identity
    VALID = "valid"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    # background_check
    CLEAN = "clean"
    FLAGGED = "flagged"
    CRIMINAL_RECORD = "criminal_record"
    # biometric_match
    MATCH = "match"
    NO_MATCH = "no_match"
    # any kind: unreachable / timeout after retries
    ERROR = "error"


class ValidationSource(str, Enum):
    LOCAL_VALIDATION = "local_validation"
    REGISTRO_CIVIL = "registro_civil"
    PODER_JUDICIAL = "poder_judicial"
    BIOMETRIC_SERVICE = "biometric_service"
    STAND_IN = "stand_in"

    @property
    def is_authoritative(self) -> bool:
        return self != ValidationSource.STAND_IN


class TrustTier(str, Enum):
    UNVERIFIED = "unverified"
    BASIC = "basic"
    VERIFIED = "verified"
    PREMIUM = "premium"
    ELITE = "elite"

    @property
    def rank(self) -> int:
        return list(TrustTier).index(self)


class HistoryAction(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    DOCUMENT_UPLOADED = "document_uploaded"
    RUT_VALIDATION_COMPLETED = "rut_validation_completed"
    BACKGROUND_CHECK_COMPLETED = "background_check_completed"
    IDENTITY_VERIFICATION_COMPLETED = "identity_verification_completed"
    MANUAL_REVIEW_ASSIGNED = "manual_review_assigned"
    MANUAL_REVIEW_COMPLETED = "manual_review_completed"
    STATUS_CHANGED = "status_changed"
    STEP_STALLED = "step_stalled"
    STEP_RESUMED = "step_resumed"
    RESUBMISSION_REQUESTED = "resubmission_requested"
    ERROR_RECORDED = "error_recorded"


class ActorType(str, Enum):
    SYSTEM = "system"
    ADMIN = "admin"
    PROVIDER = "provider"


class NotificationType(str, Enum):
    VERIFICATION_STARTED = "verification_started"
    DOCUMENTS_RECEIVED = "documents_received"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESUBMISSION_REQUIRED = "resubmission_required"


# =============================================================================
# Validation outcomes (one details type per validator kind)
# =============================================================================

@dataclass(frozen=True)
class RutIdentityDetails:
    formatted_rut: Optional[str] = None
    name: Optional[str] = None
    registry_status: Optional[str] = None  # active | inactive | blocked
    person_type: Optional[str] = None  # natural | juridica
    reason: Optional[str] = None


@dataclass(frozen=True)
class BackgroundCheckDetails:
    criminal_record: bool = False
    civil_record: bool = False
    commercial_record: bool = False
    findings: tuple = ()
    valid_until: Optional[str] = None


@dataclass(frozen=True)
class BiometricDetails:
    liveness_passed: Optional[bool] = None
    threshold: Optional[float] = None


OutcomeDetails = Union[RutIdentityDetails, BackgroundCheckDetails, BiometricDetails]

_DETAILS_BY_KIND = {
    ValidatorKind.RUT_IDENTITY: RutIdentityDetails,
    ValidatorKind.BACKGROUND_CHECK: BackgroundCheckDetails,
    ValidatorKind.BIOMETRIC_MATCH: BiometricDetails,
}


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of one validator invocation."""
    kind: ValidatorKind
    status: ValidationStatus
    source: ValidationSource
    observed_at: datetime = field(default_factory=utc_now)
    score: Optional[float] = None
    details: Optional[OutcomeDetails] = None
    attempts: int = 1
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status == ValidationStatus.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status": self.status.value,
            "source": self.source.value,
            "observed_at": to_iso(self.observed_at),
            "score": self.score,
            "details": asdict(self.details) if self.details else None,
            "attempts": self.attempts,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationOutcome":
        kind = ValidatorKind(data["kind"])
        details = None
        if data.get("details"):
            raw = dict(data["details"])
            if "findings" in raw:
                raw["findings"] = tuple(raw["findings"])
            details = _DETAILS_BY_KIND[kind](**raw)
        return cls(
            kind=kind,
            status=ValidationStatus(data["status"]),
            source=ValidationSource(data["source"]),
            observed_at=from_iso(data["observed_at"]),
            score=data.get("score"),
            details=details,
            attempts=data.get("attempts", 1),
            error=data.get("error"),
        )


# =============================================================================
# Workflow state
# =============================================================================

@dataclass
class ProviderVerification:
    """Materialized workflow state for one provider."""
    provider_id: str
    current_step: WorkflowStep = WorkflowStep.DOCUMENTS_UPLOAD
    steps_completed: List[WorkflowStep] = field(default_factory=list)
    final_decision: FinalDecision = FinalDecision.PENDING
    auto_verification_possible: bool = False
    auto_verification_score: Optional[float] = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    step_entered_at: Optional[datetime] = None
    stalled_step: Optional[WorkflowStep] = None
    manual_review_reasons: List[str] = field(default_factory=list)
    priority_level: int = 1
    decision_reason: Optional[str] = None
    decision_made_by: Optional[str] = None
    decision_made_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.current_step.is_terminal

    @property
    def is_stalled(self) -> bool:
        return self.stalled_step is not None

    def mark_completed(self, step: WorkflowStep) -> None:
        """Append a satisfied step; the list only ever grows."""
        if step not in self.steps_completed:
            self.steps_completed.append(step)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "current_step": self.current_step.value,
            "steps_completed": [s.value for s in self.steps_completed],
            "final_decision": self.final_decision.value,
            "auto_verification_possible": self.auto_verification_possible,
            "stalled_step": self.stalled_step.value if self.stalled_step else None,
        }


@dataclass(frozen=True)
class TrustScoreRecord:
    score: float
    tier: TrustTier
    breakdown: Dict[str, float]
    calculated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "tier": self.tier.value,
            "breakdown": dict(self.breakdown),
            "calculated_at": to_iso(self.calculated_at),
        }


@dataclass(frozen=True)
class TrustFacts:
    """Inputs to the trust score; all optional facts default to 'unknown'."""
    rut_status: Optional[ValidationStatus] = None
    rut_source: Optional[ValidationSource] = None
    background_status: Optional[ValidationStatus] = None
    background_source: Optional[ValidationSource] = None
    biometric_score: Optional[float] = None
    biometric_source: Optional[ValidationSource] = None
    profile_completeness: float = 0.0
    review_count: int = 0
    average_rating: float = 0.0
    certification_count: int = 0


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit record."""
    provider_id: str
    action_type: HistoryAction
    performed_by_type: ActorType = ActorType.SYSTEM
    performed_by: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    sequence: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "sequence": self.sequence,
            "action_type": self.action_type.value,
            "performed_by_type": self.performed_by_type.value,
            "performed_by": self.performed_by,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "payload": self.payload,
            "notes": self.notes,
            "created_at": to_iso(self.created_at),
        }


@dataclass(frozen=True)
class NotificationEvent:
    provider_id: str
    event_type: NotificationType
    occurred_at: datetime = field(default_factory=utc_now)
    data: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Collaborator payloads
# =============================================================================

@dataclass(frozen=True)
class ProviderSubject:
    """Identity facts the engine needs from the provider-profile collaborator."""
    provider_id: str
    rut: str
    full_name: Optional[str] = None


@dataclass(frozen=True)
class ReviewAggregate:
    count: int = 0
    average_rating: float = 0.0


@dataclass
class VerificationStatus:
    """Materialized state plus score and audit trail, for callers and the CLI."""
    verification: ProviderVerification
    trust_score: Optional[TrustScoreRecord]
    history: List[HistoryEntry]
