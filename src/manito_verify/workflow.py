"""
Verification Workflow State Machine

Deterministic transition function for a provider's verification.
Terminal states (completed, rejected) have no outgoing transitions.
The machine is pure: it decides the next step, the orchestrator persists it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, FrozenSet, Optional, Union

from manito_verify.config.defaults import (
    BIOMETRIC_MATCH_THRESHOLD,
    PRIORITY_HIGH,
    PRIORITY_NORMAL,
    REQUIRED_DOCUMENT_TYPES,
    RUT_FAILURE_POLICY,
)
from manito_verify.config.settings import VerificationSettings
from manito_verify.models import (
    FinalDecision,
    ValidationOutcome,
    ValidationStatus,
    ValidatorKind,
    WorkflowStep,
)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# ENTRY AUTHORITY:
# - SYSTEM: validator outcomes and document presence drive the transition
# - ADMIN:  only an explicit manual decision leaves manual_review
#
# =============================================================================

STATE_CONFIG = {
    WorkflowStep.DOCUMENTS_UPLOAD: {
        "description": "Waiting for ID front, ID back and selfie",
        "allowed_transitions": frozenset({WorkflowStep.RUT_VALIDATION}),
        "validator": None,
        "exit_authority": "SYSTEM",
    },
    WorkflowStep.RUT_VALIDATION: {
        "description": "RUT identity lookup",
        "allowed_transitions": frozenset({
            WorkflowStep.BACKGROUND_CHECK,
            WorkflowStep.MANUAL_REVIEW,
            WorkflowStep.REJECTED,
        }),
        "validator": ValidatorKind.RUT_IDENTITY,
        "exit_authority": "SYSTEM",
    },
    WorkflowStep.BACKGROUND_CHECK: {
        "description": "Criminal and civil record check",
        "allowed_transitions": frozenset({
            WorkflowStep.IDENTITY_VERIFICATION,
            WorkflowStep.MANUAL_REVIEW,
            WorkflowStep.REJECTED,
        }),
        "validator": ValidatorKind.BACKGROUND_CHECK,
        "exit_authority": "SYSTEM",
    },
    WorkflowStep.IDENTITY_VERIFICATION: {
        "description": "Biometric face match",
        "allowed_transitions": frozenset({
            WorkflowStep.FINAL_APPROVAL,
            WorkflowStep.MANUAL_REVIEW,
        }),
        "validator": ValidatorKind.BIOMETRIC_MATCH,
        "exit_authority": "SYSTEM",
    },
    WorkflowStep.MANUAL_REVIEW: {
        "description": "Waiting for an admin decision",
        "allowed_transitions": frozenset({
            WorkflowStep.FINAL_APPROVAL,
            WorkflowStep.REJECTED,
        }),
        "validator": None,
        "exit_authority": "ADMIN",
    },
    WorkflowStep.FINAL_APPROVAL: {
        "description": "All checks satisfied",
        "allowed_transitions": frozenset({WorkflowStep.COMPLETED}),
        "validator": None,
        "exit_authority": "SYSTEM",
    },
    WorkflowStep.COMPLETED: {
        "description": "Approved",
        "allowed_transitions": frozenset(),
        "validator": None,
        "exit_authority": None,
    },
    WorkflowStep.REJECTED: {
        "description": "Rejected",
        "allowed_transitions": frozenset(),
        "validator": None,
        "exit_authority": None,
    },
}

VALIDATION_STEPS = frozenset(
    step for step, cfg in STATE_CONFIG.items() if cfg["validator"] is not None
)


class IllegalTransition(ValueError):
    """The event is not accepted in the current step."""

    def __init__(self, step: WorkflowStep, action: str):
        super().__init__(f"Cannot {action} in step '{step.value}'")
        self.step = step
        self.action = action


@dataclass(frozen=True)
class Transition:
    """Decision of the state machine for one event."""
    current: WorkflowStep
    next_step: WorkflowStep
    requires_manual_review: bool = False
    stalled: bool = False
    reason: Optional[str] = None
    priority: Optional[int] = None

    @property
    def changed(self) -> bool:
        return self.next_step != self.current

    @property
    def completes_current(self) -> bool:
        """Whether leaving the current step counts as satisfying it."""
        return self.changed and self.next_step not in (
            WorkflowStep.MANUAL_REVIEW,
            WorkflowStep.REJECTED,
        )


@dataclass
class WorkflowPolicy:
    """Configurable parts of the transition rules."""
    biometric_threshold: float = BIOMETRIC_MATCH_THRESHOLD
    rut_failure_policy: str = RUT_FAILURE_POLICY  # "reject" | "manual_review"
    required_documents: FrozenSet[str] = field(default_factory=lambda: REQUIRED_DOCUMENT_TYPES)

    @classmethod
    def from_settings(cls, settings: VerificationSettings) -> "WorkflowPolicy":
        return cls(
            biometric_threshold=settings.biometric_threshold,
            rut_failure_policy=settings.rut_failure_policy,
        )


Event = Union[AbstractSet[str], ValidationOutcome, FinalDecision, None]


class WorkflowStateMachine:
    """Pure transition function over WorkflowStep."""

    def __init__(self, policy: Optional[WorkflowPolicy] = None):
        self.policy = policy or WorkflowPolicy()

    @staticmethod
    def validator_for(step: WorkflowStep) -> Optional[ValidatorKind]:
        return STATE_CONFIG[step]["validator"]

    @staticmethod
    def is_allowed(current: WorkflowStep, target: WorkflowStep) -> bool:
        return target in STATE_CONFIG[current]["allowed_transitions"]

    def next(self, current: WorkflowStep, event: Event = None) -> Transition:
        """Dispatch an event to the rule for the current step."""
        if current.is_terminal:
            raise IllegalTransition(current, "advance a terminal workflow")
        if current == WorkflowStep.DOCUMENTS_UPLOAD:
            return self.on_documents(current, event or frozenset())
        if current in VALIDATION_STEPS:
            if not isinstance(event, ValidationOutcome):
                return Transition(current, current, reason="awaiting validator outcome")
            return self.on_outcome(current, event)
        if current == WorkflowStep.MANUAL_REVIEW:
            if not isinstance(event, FinalDecision):
                return Transition(current, current, reason="awaiting admin decision")
            return self.on_manual_decision(current, event)
        return self.on_final_approval(current)

    def missing_documents(self, uploaded: AbstractSet[str]) -> FrozenSet[str]:
        return frozenset(self.policy.required_documents - set(uploaded))

    def on_documents(self, current: WorkflowStep, uploaded: AbstractSet[str]) -> Transition:
        if current != WorkflowStep.DOCUMENTS_UPLOAD:
            raise IllegalTransition(current, "accept documents")
        missing = self.missing_documents(uploaded)
        if missing:
            return Transition(
                current, current, reason=f"missing documents: {', '.join(sorted(missing))}"
            )
        return Transition(current, WorkflowStep.RUT_VALIDATION, reason="documents received")

    def on_outcome(self, current: WorkflowStep, outcome: ValidationOutcome) -> Transition:
        expected = self.validator_for(current)
        if expected is None or outcome.kind != expected:
            raise IllegalTransition(current, f"apply a {outcome.kind.value} outcome")

        if outcome.is_error:
            # Unresolved after retries: stay put, never a negative result
            return Transition(
                current, current, stalled=True,
                requires_manual_review=True, reason=outcome.error or "validator unavailable",
            )

        if current == WorkflowStep.RUT_VALIDATION:
            return self._on_rut(current, outcome)
        if current == WorkflowStep.BACKGROUND_CHECK:
            return self._on_background(current, outcome)
        return self._on_biometric(current, outcome)

    def _on_rut(self, current: WorkflowStep, outcome: ValidationOutcome) -> Transition:
        if outcome.status == ValidationStatus.VALID:
            return Transition(current, WorkflowStep.BACKGROUND_CHECK, reason="rut valid")
        reason = f"rut {outcome.status.value} ({outcome.source.value})"
        if self.policy.rut_failure_policy == "manual_review":
            return Transition(
                current, WorkflowStep.MANUAL_REVIEW,
                requires_manual_review=True, reason=reason, priority=PRIORITY_HIGH,
            )
        return Transition(current, WorkflowStep.REJECTED, reason=reason)

    def _on_background(self, current: WorkflowStep, outcome: ValidationOutcome) -> Transition:
        if outcome.status == ValidationStatus.CLEAN:
            return Transition(current, WorkflowStep.IDENTITY_VERIFICATION, reason="background clean")
        if outcome.status == ValidationStatus.FLAGGED:
            return Transition(
                current, WorkflowStep.MANUAL_REVIEW,
                requires_manual_review=True, reason="background flagged", priority=PRIORITY_NORMAL,
            )
        return Transition(current, WorkflowStep.REJECTED, reason="criminal record")

    def _on_biometric(self, current: WorkflowStep, outcome: ValidationOutcome) -> Transition:
        score = outcome.score if outcome.score is not None else 0.0
        if score >= self.policy.biometric_threshold:
            return Transition(current, WorkflowStep.FINAL_APPROVAL, reason=f"face match {score:.2f}")
        return Transition(
            current, WorkflowStep.MANUAL_REVIEW,
            requires_manual_review=True,
            reason=f"face match {score:.2f} below {self.policy.biometric_threshold:.2f}",
            priority=PRIORITY_NORMAL,
        )

    def on_manual_decision(self, current: WorkflowStep, decision: FinalDecision) -> Transition:
        if current != WorkflowStep.MANUAL_REVIEW:
            raise IllegalTransition(current, "record a manual decision")
        if decision == FinalDecision.APPROVED:
            return Transition(current, WorkflowStep.FINAL_APPROVAL, reason="approved by admin")
        if decision == FinalDecision.REJECTED:
            return Transition(current, WorkflowStep.REJECTED, reason="rejected by admin")
        raise IllegalTransition(current, f"record decision '{decision.value}'")

    def on_final_approval(self, current: WorkflowStep) -> Transition:
        if current != WorkflowStep.FINAL_APPROVAL:
            raise IllegalTransition(current, "complete approval")
        return Transition(current, WorkflowStep.COMPLETED, reason="approved")

    def requires_human_judgment(self, outcome: ValidationOutcome) -> bool:
        """Whether an outcome, on its own, rules out fully automatic verification."""
        if outcome.is_error:
            return True
        if outcome.kind == ValidatorKind.RUT_IDENTITY:
            return (
                outcome.status != ValidationStatus.VALID
                and self.policy.rut_failure_policy == "manual_review"
            )
        if outcome.kind == ValidatorKind.BACKGROUND_CHECK:
            return outcome.status == ValidationStatus.FLAGGED
        score = outcome.score if outcome.score is not None else 0.0
        return score < self.policy.biometric_threshold
