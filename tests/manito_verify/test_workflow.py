"""Tests for the workflow state machine."""

import pytest

from manito_verify.config.defaults import PRIORITY_HIGH, PRIORITY_NORMAL
from manito_verify.models import (
    FinalDecision,
    ValidationOutcome,
    ValidationSource,
    ValidationStatus,
    ValidatorKind,
    WorkflowStep,
)
from manito_verify.workflow import (
    STATE_CONFIG,
    IllegalTransition,
    WorkflowPolicy,
    WorkflowStateMachine,
)

ALL_DOCS = {"cedula_front", "cedula_back", "selfie"}


def outcome(kind, status, score=None, source=ValidationSource.STAND_IN, error=None):
    return ValidationOutcome(kind=kind, status=status, source=source, score=score, error=error)


@pytest.fixture
def machine():
    return WorkflowStateMachine()


class TestDocuments:
    def test_all_documents_advance(self, machine):
        t = machine.on_documents(WorkflowStep.DOCUMENTS_UPLOAD, ALL_DOCS)
        assert t.next_step == WorkflowStep.RUT_VALIDATION
        assert t.completes_current

    def test_extra_documents_are_fine(self, machine):
        t = machine.on_documents(WorkflowStep.DOCUMENTS_UPLOAD, ALL_DOCS | {"proof_of_skills"})
        assert t.next_step == WorkflowStep.RUT_VALIDATION

    def test_missing_document_stays(self, machine):
        t = machine.on_documents(WorkflowStep.DOCUMENTS_UPLOAD, {"cedula_front", "selfie"})
        assert t.next_step == WorkflowStep.DOCUMENTS_UPLOAD
        assert not t.changed
        assert "cedula_back" in t.reason

    def test_documents_outside_upload_step(self, machine):
        with pytest.raises(IllegalTransition):
            machine.on_documents(WorkflowStep.BACKGROUND_CHECK, ALL_DOCS)


class TestRutValidation:
    def test_valid_goes_to_background(self, machine):
        t = machine.on_outcome(
            WorkflowStep.RUT_VALIDATION, outcome(ValidatorKind.RUT_IDENTITY, ValidationStatus.VALID)
        )
        assert t.next_step == WorkflowStep.BACKGROUND_CHECK
        assert not t.requires_manual_review

    @pytest.mark.parametrize("status", [ValidationStatus.INVALID, ValidationStatus.NOT_FOUND])
    def test_failure_rejects_by_default(self, machine, status):
        t = machine.on_outcome(
            WorkflowStep.RUT_VALIDATION, outcome(ValidatorKind.RUT_IDENTITY, status)
        )
        assert t.next_step == WorkflowStep.REJECTED
        assert not t.completes_current

    def test_failure_goes_to_review_under_manual_policy(self):
        machine = WorkflowStateMachine(WorkflowPolicy(rut_failure_policy="manual_review"))
        t = machine.on_outcome(
            WorkflowStep.RUT_VALIDATION,
            outcome(ValidatorKind.RUT_IDENTITY, ValidationStatus.NOT_FOUND),
        )
        assert t.next_step == WorkflowStep.MANUAL_REVIEW
        assert t.requires_manual_review
        assert t.priority == PRIORITY_HIGH

    def test_error_stalls_without_moving(self, machine):
        t = machine.on_outcome(
            WorkflowStep.RUT_VALIDATION,
            outcome(ValidatorKind.RUT_IDENTITY, ValidationStatus.ERROR, error="timeout"),
        )
        assert t.stalled
        assert t.next_step == WorkflowStep.RUT_VALIDATION
        assert t.reason == "timeout"

    def test_wrong_kind_for_step(self, machine):
        with pytest.raises(IllegalTransition):
            machine.on_outcome(
                WorkflowStep.RUT_VALIDATION,
                outcome(ValidatorKind.BACKGROUND_CHECK, ValidationStatus.CLEAN),
            )


class TestBackgroundCheck:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (ValidationStatus.CLEAN, WorkflowStep.IDENTITY_VERIFICATION),
            (ValidationStatus.FLAGGED, WorkflowStep.MANUAL_REVIEW),
            (ValidationStatus.CRIMINAL_RECORD, WorkflowStep.REJECTED),
        ],
    )
    def test_transitions(self, machine, status, expected):
        t = machine.on_outcome(
            WorkflowStep.BACKGROUND_CHECK, outcome(ValidatorKind.BACKGROUND_CHECK, status)
        )
        assert t.next_step == expected

    def test_flagged_priority(self, machine):
        t = machine.on_outcome(
            WorkflowStep.BACKGROUND_CHECK,
            outcome(ValidatorKind.BACKGROUND_CHECK, ValidationStatus.FLAGGED),
        )
        assert t.requires_manual_review
        assert t.priority == PRIORITY_NORMAL


class TestIdentityVerification:
    def test_score_at_threshold_approves(self, machine):
        t = machine.on_outcome(
            WorkflowStep.IDENTITY_VERIFICATION,
            outcome(ValidatorKind.BIOMETRIC_MATCH, ValidationStatus.MATCH, score=0.85),
        )
        assert t.next_step == WorkflowStep.FINAL_APPROVAL

    def test_score_below_threshold_goes_to_review(self, machine):
        t = machine.on_outcome(
            WorkflowStep.IDENTITY_VERIFICATION,
            outcome(ValidatorKind.BIOMETRIC_MATCH, ValidationStatus.NO_MATCH, score=0.84),
        )
        assert t.next_step == WorkflowStep.MANUAL_REVIEW

    def test_threshold_is_configurable(self):
        machine = WorkflowStateMachine(WorkflowPolicy(biometric_threshold=0.95))
        t = machine.on_outcome(
            WorkflowStep.IDENTITY_VERIFICATION,
            outcome(ValidatorKind.BIOMETRIC_MATCH, ValidationStatus.MATCH, score=0.92),
        )
        assert t.next_step == WorkflowStep.MANUAL_REVIEW


class TestManualReview:
    def test_only_admin_decision_leaves(self, machine):
        t = machine.next(WorkflowStep.MANUAL_REVIEW, None)
        assert not t.changed

    def test_approve(self, machine):
        t = machine.on_manual_decision(WorkflowStep.MANUAL_REVIEW, FinalDecision.APPROVED)
        assert t.next_step == WorkflowStep.FINAL_APPROVAL
        assert t.completes_current

    def test_reject(self, machine):
        t = machine.on_manual_decision(WorkflowStep.MANUAL_REVIEW, FinalDecision.REJECTED)
        assert t.next_step == WorkflowStep.REJECTED

    def test_pending_is_not_a_decision(self, machine):
        with pytest.raises(IllegalTransition):
            machine.on_manual_decision(WorkflowStep.MANUAL_REVIEW, FinalDecision.PENDING)

    def test_decision_outside_review(self, machine):
        with pytest.raises(IllegalTransition):
            machine.on_manual_decision(WorkflowStep.BACKGROUND_CHECK, FinalDecision.APPROVED)


class TestTerminalAndTable:
    def test_final_approval_completes(self, machine):
        t = machine.next(WorkflowStep.FINAL_APPROVAL)
        assert t.next_step == WorkflowStep.COMPLETED

    @pytest.mark.parametrize("step", [WorkflowStep.COMPLETED, WorkflowStep.REJECTED])
    def test_terminal_steps_have_no_exit(self, machine, step):
        assert STATE_CONFIG[step]["allowed_transitions"] == frozenset()
        with pytest.raises(IllegalTransition):
            machine.next(step)

    def test_manual_review_reachable_from_every_validation_step(self, machine):
        for step in (
            WorkflowStep.RUT_VALIDATION,
            WorkflowStep.BACKGROUND_CHECK,
            WorkflowStep.IDENTITY_VERIFICATION,
        ):
            assert machine.is_allowed(step, WorkflowStep.MANUAL_REVIEW)

    def test_validator_for_step(self, machine):
        assert machine.validator_for(WorkflowStep.RUT_VALIDATION) == ValidatorKind.RUT_IDENTITY
        assert machine.validator_for(WorkflowStep.MANUAL_REVIEW) is None


class TestHumanJudgment:
    def test_flagged_needs_review(self, machine):
        assert machine.requires_human_judgment(
            outcome(ValidatorKind.BACKGROUND_CHECK, ValidationStatus.FLAGGED)
        )

    def test_error_needs_review(self, machine):
        assert machine.requires_human_judgment(
            outcome(ValidatorKind.RUT_IDENTITY, ValidationStatus.ERROR)
        )

    def test_rut_rejection_is_automatic_by_default(self, machine):
        assert not machine.requires_human_judgment(
            outcome(ValidatorKind.RUT_IDENTITY, ValidationStatus.INVALID)
        )

    def test_low_face_match_needs_review(self, machine):
        assert machine.requires_human_judgment(
            outcome(ValidatorKind.BIOMETRIC_MATCH, ValidationStatus.NO_MATCH, score=0.6)
        )
        assert not machine.requires_human_judgment(
            outcome(ValidatorKind.BIOMETRIC_MATCH, ValidationStatus.MATCH, score=0.9)
        )
