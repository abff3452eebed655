"""
Provider verification workflow engine.

Drives a marketplace service provider through RUT validation, background
check and biometric match, keeps an append-only audit history and a
weighted trust score, and ends in an approve/reject decision.
"""

from manito_verify.config.settings import VerificationSettings
from manito_verify.errors import (
    ConcurrentUpdateError,
    InvalidStateError,
    NotFoundError,
    TransientValidatorError,
    ValidatorError,
    VerificationError,
)
from manito_verify.history import HistoryRecorder, replay_history
from manito_verify.models import (
    FinalDecision,
    ProviderVerification,
    TrustScoreRecord,
    TrustTier,
    ValidationOutcome,
    WorkflowStep,
)
from manito_verify.orchestrator import VerificationOrchestrator
from manito_verify.scoring import legacy_recommendation, score
from manito_verify.store import VerificationStore
from manito_verify.workflow import WorkflowPolicy, WorkflowStateMachine

__version__ = "0.1.0"

__all__ = [
    "VerificationSettings",
    "VerificationError",
    "NotFoundError",
    "InvalidStateError",
    "TransientValidatorError",
    "ValidatorError",
    "ConcurrentUpdateError",
    "HistoryRecorder",
    "replay_history",
    "FinalDecision",
    "ProviderVerification",
    "TrustScoreRecord",
    "TrustTier",
    "ValidationOutcome",
    "WorkflowStep",
    "VerificationOrchestrator",
    "score",
    "legacy_recommendation",
    "VerificationStore",
    "WorkflowPolicy",
    "WorkflowStateMachine",
    "__version__",
]
