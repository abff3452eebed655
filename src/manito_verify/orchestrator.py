"""
VerificationOrchestrator - drives a provider through the workflow.

Coordinates: load -> state machine -> validators -> history -> trust score
-> persist, under a per-provider lock. History for an outcome or a
transition is always appended before the verification row changes.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from manito_verify.collaborators import DocumentStorage, ProfileDirectory
from manito_verify.config.settings import VerificationSettings
from manito_verify.errors import InvalidStateError, NotFoundError
from manito_verify.history import HistoryRecorder
from manito_verify.locks import ProviderLockRegistry
from manito_verify.models import (
    ActorType,
    FinalDecision,
    HistoryAction,
    HistoryEntry,
    NotificationType,
    ProviderSubject,
    ProviderVerification,
    TrustFacts,
    TrustScoreRecord,
    ValidationOutcome,
    ValidatorKind,
    VerificationStatus,
    WorkflowStep,
    utc_now,
)
from manito_verify.notifications import NotificationDispatcher
from manito_verify.scoring import score as compute_score
from manito_verify.store import VerificationStore
from manito_verify.validators import ValidatorSet
from manito_verify.workflow import (
    IllegalTransition,
    Transition,
    WorkflowPolicy,
    WorkflowStateMachine,
)

logger = logging.getLogger(__name__)

OUTCOME_ACTIONS = {
    ValidatorKind.RUT_IDENTITY: HistoryAction.RUT_VALIDATION_COMPLETED,
    ValidatorKind.BACKGROUND_CHECK: HistoryAction.BACKGROUND_CHECK_COMPLETED,
    ValidatorKind.BIOMETRIC_MATCH: HistoryAction.IDENTITY_VERIFICATION_COMPLETED,
}

Clock = Callable[[], datetime]


class VerificationOrchestrator:
    """
    Single entry point for verification workflows.

    All collaborators are injected; nothing here is process-global except
    what the caller passes in.
    """

    def __init__(
        self,
        store: VerificationStore,
        validators: ValidatorSet,
        profiles: ProfileDirectory,
        documents: DocumentStorage,
        recorder: Optional[HistoryRecorder] = None,
        notifier: Optional[NotificationDispatcher] = None,
        policy: Optional[WorkflowPolicy] = None,
        parallel_checks: bool = False,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.validators = validators
        self.profiles = profiles
        self.documents = documents
        self.recorder = recorder or HistoryRecorder(store)
        self.notifier = notifier or NotificationDispatcher()
        self.machine = WorkflowStateMachine(policy)
        self.parallel_checks = parallel_checks
        self.clock = clock
        self.locks = ProviderLockRegistry()

    @classmethod
    def from_settings(
        cls,
        settings: VerificationSettings,
        validators: ValidatorSet,
        profiles: ProfileDirectory,
        documents: DocumentStorage,
        notifier: Optional[NotificationDispatcher] = None,
    ) -> "VerificationOrchestrator":
        store = VerificationStore(settings.db_path)
        return cls(
            store=store,
            validators=validators,
            profiles=profiles,
            documents=documents,
            recorder=HistoryRecorder(store, settings.history_mirror_path),
            notifier=notifier,
            policy=WorkflowPolicy.from_settings(settings),
            parallel_checks=settings.parallel_checks,
        )

    @property
    def policy(self) -> WorkflowPolicy:
        return self.machine.policy

    async def initialize(self) -> None:
        await self.store.initialize()
        logger.info(f"VerificationOrchestrator initialized (validators: {self.validators.sources})")

    async def shutdown(self) -> None:
        await self.validators.aclose()
        await self.store.close()
        logger.info("VerificationOrchestrator shutdown complete")

    # =========================================================================
    # Public operations
    # =========================================================================

    async def advance(self, provider_id: str) -> ProviderVerification:
        """
        Move the workflow forward as far as automatic rules allow.

        Idempotent: with no new documents or outcomes it returns the state
        unchanged. Stops at a terminal step, manual review or a stall.

        Raises:
            NotFoundError: unknown provider
            InvalidStateError: the workflow is already terminal
            ValidatorError: non-transient integration failure
        """
        async with self.locks.hold(provider_id):
            verification = await self.store.get_verification(provider_id)
            if verification is None:
                await self._require_subject(provider_id)
                verification = await self._start(provider_id)
            elif verification.is_terminal:
                await self._reject_action(verification, "advance a terminal workflow")

            return await self._run(verification)

    async def record_manual_decision(
        self,
        provider_id: str,
        decision: Union[FinalDecision, str],
        notes: Optional[str],
        admin_id: str,
    ) -> ProviderVerification:
        """Admin decision; the only way out of manual_review."""
        decision = FinalDecision(decision)
        async with self.locks.hold(provider_id):
            verification = await self._require_verification(provider_id)
            try:
                transition = self.machine.on_manual_decision(verification.current_step, decision)
            except IllegalTransition as e:
                await self._reject_action(verification, e.action, admin_id)

            await self.recorder.record(self._entry(
                verification,
                HistoryAction.MANUAL_REVIEW_COMPLETED,
                actor=ActorType.ADMIN,
                performed_by=admin_id,
                previous_status=verification.current_step.value,
                new_status=decision.value,
                payload={"decision": decision.value},
                notes=notes,
            ))
            await self._apply(
                verification, transition,
                actor=ActorType.ADMIN, performed_by=admin_id, notes=notes,
            )
            verification.decision_reason = notes or transition.reason

            # Approval needs no further checks: final_approval -> completed
            if verification.current_step == WorkflowStep.FINAL_APPROVAL:
                await self._apply(verification, self.machine.on_final_approval(WorkflowStep.FINAL_APPROVAL))
            verification.decision_made_by = admin_id
            await self.store.update_verification(verification)
            await self.notifier.emit_for_step(
                provider_id, verification.current_step, verification.step_entered_at
            )
            return verification

    async def resume_stalled_step(
        self, provider_id: str, admin_id: str, notes: Optional[str] = None
    ) -> ProviderVerification:
        """Clear a stall so the next ``advance`` calls the validator again."""
        async with self.locks.hold(provider_id):
            verification = await self._require_verification(provider_id)
            if not verification.is_stalled:
                await self._reject_action(verification, "resume a step that is not stalled", admin_id)

            await self.recorder.record(self._entry(
                verification,
                HistoryAction.STEP_RESUMED,
                actor=ActorType.ADMIN,
                performed_by=admin_id,
                previous_status=verification.current_step.value,
                new_status=verification.current_step.value,
                payload={"step": verification.stalled_step.value},
                notes=notes,
            ))
            verification.stalled_step = None
            await self.store.update_verification(verification)
            logger.info(
                f"Stall cleared for {provider_id} at {verification.current_step.value}",
                extra={"event": "step_resumed", "provider_id": provider_id},
            )
            return verification

    async def request_resubmission(
        self, provider_id: str, admin_id: str, notes: Optional[str] = None
    ) -> ProviderVerification:
        """Ask the provider to upload documents again; the step is unchanged."""
        async with self.locks.hold(provider_id):
            verification = await self._require_verification(provider_id)
            allowed = (WorkflowStep.DOCUMENTS_UPLOAD, WorkflowStep.MANUAL_REVIEW)
            if verification.current_step not in allowed:
                await self._reject_action(verification, "request resubmission", admin_id)

            await self.recorder.record(self._entry(
                verification,
                HistoryAction.RESUBMISSION_REQUESTED,
                actor=ActorType.ADMIN,
                performed_by=admin_id,
                previous_status=verification.current_step.value,
                new_status=verification.current_step.value,
                notes=notes,
            ))
            await self.notifier.emit(
                provider_id,
                NotificationType.RESUBMISSION_REQUIRED,
                self.clock(),
                {"notes": notes} if notes else None,
            )
            return verification

    async def refresh_trust_score(self, provider_id: str) -> TrustScoreRecord:
        """Recompute the score after profile, review or certification changes."""
        async with self.locks.hold(provider_id):
            verification = await self._require_verification(provider_id)
            record = await self._update_trust_score(verification)
            await self.store.update_verification(verification)
            return record

    async def get_status(self, provider_id: str) -> VerificationStatus:
        verification = await self._require_verification(provider_id)
        return VerificationStatus(
            verification=verification,
            trust_score=await self.store.get_trust_score(provider_id),
            history=await self.recorder.entries(provider_id),
        )

    # =========================================================================
    # Workflow loop
    # =========================================================================

    async def _start(self, provider_id: str) -> ProviderVerification:
        now = self.clock()
        verification = ProviderVerification(
            provider_id=provider_id, started_at=now, step_entered_at=now
        )
        await self.recorder.record(self._entry(
            verification,
            HistoryAction.WORKFLOW_STARTED,
            new_status=verification.current_step.value,
        ))
        await self.recorder.record(self._entry(
            verification,
            HistoryAction.STATUS_CHANGED,
            new_status=verification.current_step.value,
        ))
        await self.store.insert_verification(verification)
        logger.info(
            f"Verification started for {provider_id}",
            extra={"event": "workflow_started", "provider_id": provider_id},
        )
        await self.notifier.emit(provider_id, NotificationType.VERIFICATION_STARTED, now)
        return verification

    async def _run(self, verification: ProviderVerification) -> ProviderVerification:
        subject: Optional[ProviderSubject] = None

        while not verification.is_terminal and not verification.is_stalled:
            step = verification.current_step

            if step == WorkflowStep.DOCUMENTS_UPLOAD:
                uploaded = await self.documents.list_uploaded_document_types(
                    verification.provider_id
                )
                transition = self.machine.on_documents(step, uploaded)
                if not transition.changed:
                    break
                await self.recorder.record(self._entry(
                    verification,
                    HistoryAction.DOCUMENT_UPLOADED,
                    actor=ActorType.PROVIDER,
                    performed_by=verification.provider_id,
                    payload={"document_types": sorted(uploaded)},
                ))
                await self._commit(verification, transition)
                continue

            kind = self.machine.validator_for(step)
            if kind is not None:
                if subject is None:
                    subject = await self._require_subject(verification.provider_id)
                outcome = await self._outcome_for(verification, kind, subject)
                transition = self.machine.on_outcome(step, outcome)
                if transition.stalled:
                    await self._stall(verification, outcome, transition)
                    break
                await self.store.mark_outcome_consumed(verification.provider_id, kind)
                await self._commit(verification, transition)
                continue

            if step == WorkflowStep.FINAL_APPROVAL:
                await self._commit(verification, self.machine.on_final_approval(step))
                continue

            # manual_review waits for an admin
            break

        return verification

    async def _outcome_for(
        self,
        verification: ProviderVerification,
        kind: ValidatorKind,
        subject: ProviderSubject,
    ) -> ValidationOutcome:
        """Use an outcome received ahead of this step, or call the validator."""
        provider_id = verification.provider_id
        pending = await self.store.get_pending_outcome(provider_id, kind)
        if pending is not None and not pending.is_error:
            logger.debug(f"Using early {kind.value} outcome for {provider_id}")
            return pending

        kinds = [kind]
        if (
            self.parallel_checks
            and kind == ValidatorKind.BACKGROUND_CHECK
            and await self.store.get_pending_outcome(provider_id, ValidatorKind.BIOMETRIC_MATCH) is None
        ):
            # Speculative face match alongside the background check
            kinds.append(ValidatorKind.BIOMETRIC_MATCH)

        outcomes = await self._invoke(verification, kinds, subject)
        return outcomes[kind]

    async def _invoke(
        self,
        verification: ProviderVerification,
        kinds: List[ValidatorKind],
        subject: ProviderSubject,
    ) -> Dict[ValidatorKind, ValidationOutcome]:
        """
        Call validators concurrently and record results in kind priority order.

        Results are written only after every call has resolved, so audit
        order never depends on which authority answered first.
        """
        provider_id = verification.provider_id
        results = await asyncio.gather(
            *(self.validators.for_kind(k).validate(provider_id, subject.rut) for k in kinds),
            return_exceptions=True,
        )

        outcomes: Dict[ValidatorKind, ValidationOutcome] = {}
        failure: Optional[BaseException] = None
        for kind, result in sorted(zip(kinds, results), key=lambda kr: kr[0].priority):
            if isinstance(result, BaseException):
                await self.recorder.record(self._entry(
                    verification,
                    HistoryAction.ERROR_RECORDED,
                    previous_status=verification.current_step.value,
                    payload={"validator": kind.value, "error": str(result)},
                ))
                failure = failure or result
                continue

            await self.recorder.record(self._entry(
                verification,
                OUTCOME_ACTIONS[kind],
                previous_status=verification.current_step.value,
                new_status=result.status.value,
                payload=result.to_dict(),
            ))
            await self.store.save_outcome(provider_id, result)
            outcomes[kind] = result
            logger.info(
                f"{kind.value} for {provider_id}: {result.status.value} ({result.source.value})",
                extra={
                    "event": "validator_outcome",
                    "provider_id": provider_id,
                    "validator": kind.value,
                    "status": result.status.value,
                    "source": result.source.value,
                    "attempts": result.attempts,
                },
            )

        if outcomes:
            await self._update_trust_score(verification)
        if failure is not None:
            if outcomes:
                await self.store.update_verification(verification)
            raise failure
        return outcomes

    async def _commit(self, verification: ProviderVerification, transition: Transition) -> None:
        await self._apply(verification, transition)
        await self.store.update_verification(verification)
        await self.notifier.emit_for_step(
            verification.provider_id, transition.next_step, verification.step_entered_at
        )

    async def _apply(
        self,
        verification: ProviderVerification,
        transition: Transition,
        actor: ActorType = ActorType.SYSTEM,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        """Record a step change, then mutate the in-memory verification."""
        current, target = transition.current, transition.next_step
        if not self.machine.is_allowed(current, target):
            await self._reject_action(verification, f"move to {target.value}", performed_by)

        await self.recorder.record(self._entry(
            verification,
            HistoryAction.STATUS_CHANGED,
            actor=actor,
            performed_by=performed_by,
            previous_status=current.value,
            new_status=target.value,
            payload={"reason": transition.reason} if transition.reason else {},
            notes=notes,
        ))
        if target == WorkflowStep.MANUAL_REVIEW:
            await self.recorder.record(self._entry(
                verification,
                HistoryAction.MANUAL_REVIEW_ASSIGNED,
                previous_status=current.value,
                new_status=target.value,
                payload={"reason": transition.reason, "priority": transition.priority},
            ))

        now = self.clock()
        if transition.completes_current:
            verification.mark_completed(current)
        verification.current_step = target
        verification.step_entered_at = now

        if target == WorkflowStep.MANUAL_REVIEW:
            verification.manual_review_reasons.append(transition.reason or "manual review")
            verification.priority_level = max(verification.priority_level, transition.priority or 1)
            verification.auto_verification_possible = False
        elif target.is_terminal:
            verification.final_decision = (
                FinalDecision.APPROVED if target == WorkflowStep.COMPLETED else FinalDecision.REJECTED
            )
            verification.completed_at = now
            verification.decision_reason = verification.decision_reason or transition.reason
            verification.decision_made_by = performed_by or ActorType.SYSTEM.value
            verification.decision_made_at = now

        logger.info(
            f"{verification.provider_id}: {current.value} -> {target.value}",
            extra={
                "event": "status_changed",
                "provider_id": verification.provider_id,
                "from_step": current.value,
                "to_step": target.value,
            },
        )

    async def _stall(
        self,
        verification: ProviderVerification,
        outcome: ValidationOutcome,
        transition: Transition,
    ) -> None:
        await self.recorder.record(self._entry(
            verification,
            HistoryAction.STEP_STALLED,
            previous_status=verification.current_step.value,
            new_status=verification.current_step.value,
            payload={
                "validator": outcome.kind.value,
                "attempts": outcome.attempts,
                "error": outcome.error,
            },
            notes="pending, awaiting manual follow-up",
        ))
        await self.store.mark_outcome_consumed(verification.provider_id, outcome.kind)
        verification.stalled_step = verification.current_step
        verification.auto_verification_possible = False
        await self.store.update_verification(verification)
        logger.warning(
            f"{verification.provider_id} stalled at {verification.current_step.value}: "
            f"{transition.reason}",
            extra={
                "event": "step_stalled",
                "provider_id": verification.provider_id,
                "step": verification.current_step.value,
                "attempts": outcome.attempts,
            },
        )

    # =========================================================================
    # Trust score
    # =========================================================================

    async def _gather_facts(self, provider_id: str) -> TrustFacts:
        outcomes = await self.store.list_outcomes(provider_id)
        completeness, reviews, certifications = await asyncio.gather(
            self.profiles.get_profile_completeness(provider_id),
            self.profiles.get_review_aggregate(provider_id),
            self.profiles.get_certification_count(provider_id),
        )

        def usable(kind: ValidatorKind) -> Optional[ValidationOutcome]:
            outcome = outcomes.get(kind)
            return None if outcome is None or outcome.is_error else outcome

        rut = usable(ValidatorKind.RUT_IDENTITY)
        background = usable(ValidatorKind.BACKGROUND_CHECK)
        biometric = usable(ValidatorKind.BIOMETRIC_MATCH)
        return TrustFacts(
            rut_status=rut.status if rut else None,
            rut_source=rut.source if rut else None,
            background_status=background.status if background else None,
            background_source=background.source if background else None,
            biometric_score=biometric.score if biometric else None,
            biometric_source=biometric.source if biometric else None,
            profile_completeness=completeness,
            review_count=reviews.count,
            average_rating=reviews.average_rating,
            certification_count=certifications,
        )

    async def _update_trust_score(self, verification: ProviderVerification) -> TrustScoreRecord:
        """Recompute score and auto-verification flags; caller persists the row."""
        provider_id = verification.provider_id
        facts = await self._gather_facts(provider_id)
        record = compute_score(
            facts,
            biometric_threshold=self.policy.biometric_threshold,
            calculated_at=self.clock(),
        )
        await self.store.upsert_trust_score(provider_id, record)

        outcomes = await self.store.list_outcomes(provider_id)
        verification.auto_verification_possible = (
            bool(outcomes)
            and not verification.is_stalled
            and verification.current_step != WorkflowStep.MANUAL_REVIEW
            and not any(self.machine.requires_human_judgment(o) for o in outcomes.values())
        )
        verification.auto_verification_score = round(record.score / 100.0, 4)
        logger.debug(
            f"Trust score for {provider_id}: {record.score} ({record.tier.value})",
            extra={"event": "trust_score", "provider_id": provider_id, "tier": record.tier.value},
        )
        return record

    # =========================================================================
    # Helpers
    # =========================================================================

    def _entry(
        self,
        verification: ProviderVerification,
        action: HistoryAction,
        actor: ActorType = ActorType.SYSTEM,
        performed_by: Optional[str] = None,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
        payload: Optional[dict] = None,
        notes: Optional[str] = None,
    ) -> HistoryEntry:
        return HistoryEntry(
            provider_id=verification.provider_id,
            action_type=action,
            performed_by_type=actor,
            performed_by=performed_by,
            previous_status=previous_status,
            new_status=new_status,
            payload=payload or {},
            notes=notes,
            created_at=self.clock(),
        )

    async def _require_subject(self, provider_id: str) -> ProviderSubject:
        subject = await self.profiles.get_subject(provider_id)
        if subject is None:
            raise NotFoundError(provider_id)
        return subject

    async def _require_verification(self, provider_id: str) -> ProviderVerification:
        verification = await self.store.get_verification(provider_id)
        if verification is None:
            raise NotFoundError(provider_id)
        return verification

    async def _reject_action(
        self,
        verification: ProviderVerification,
        action: str,
        performed_by: Optional[str] = None,
    ) -> None:
        """Record the refused action, then raise InvalidStateError."""
        step = verification.current_step.value
        await self.recorder.record(self._entry(
            verification,
            HistoryAction.ERROR_RECORDED,
            actor=ActorType.ADMIN if performed_by else ActorType.SYSTEM,
            performed_by=performed_by,
            previous_status=step,
            new_status=step,
            payload={"error": "invalid_state", "action": action},
        ))
        logger.warning(
            f"Refused '{action}' for {verification.provider_id} in {step}",
            extra={"event": "invalid_state", "provider_id": verification.provider_id},
        )
        raise InvalidStateError(verification.provider_id, step, action)

