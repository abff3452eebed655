"""Tests for VerificationStore."""

import sqlite3
from datetime import datetime, timezone

import pytest

from manito_verify.errors import ConcurrentUpdateError
from manito_verify.models import (
    ActorType,
    BackgroundCheckDetails,
    HistoryAction,
    HistoryEntry,
    ProviderVerification,
    TrustScoreRecord,
    TrustTier,
    ValidationOutcome,
    ValidationSource,
    ValidationStatus,
    ValidatorKind,
    WorkflowStep,
)
from manito_verify.store import VerificationStore

STARTED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def new_verification(provider_id="prov-1"):
    return ProviderVerification(provider_id=provider_id, started_at=STARTED, step_entered_at=STARTED)


class TestVerifications:
    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        verification = new_verification()
        await store.insert_verification(verification)

        loaded = await store.get_verification("prov-1")

        assert verification.version == 1
        assert loaded == verification

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get_verification("nobody") is None

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, store):
        await store.insert_verification(new_verification())

        with pytest.raises(ConcurrentUpdateError):
            await store.insert_verification(new_verification())

    @pytest.mark.asyncio
    async def test_update_round_trip(self, store):
        verification = new_verification()
        await store.insert_verification(verification)

        verification.current_step = WorkflowStep.MANUAL_REVIEW
        verification.mark_completed(WorkflowStep.DOCUMENTS_UPLOAD)
        verification.mark_completed(WorkflowStep.RUT_VALIDATION)
        verification.manual_review_reasons = ["Background check flagged"]
        verification.priority_level = 2
        verification.stalled_step = WorkflowStep.MANUAL_REVIEW
        await store.update_verification(verification)

        loaded = await store.get_verification("prov-1")
        assert loaded.version == 2
        assert loaded.steps_completed == [
            WorkflowStep.DOCUMENTS_UPLOAD,
            WorkflowStep.RUT_VALIDATION,
        ]
        assert loaded.manual_review_reasons == ["Background check flagged"]
        assert loaded.stalled_step == WorkflowStep.MANUAL_REVIEW
        assert loaded == verification

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, store):
        await store.insert_verification(new_verification())
        first = await store.get_verification("prov-1")
        second = await store.get_verification("prov-1")

        first.current_step = WorkflowStep.RUT_VALIDATION
        await store.update_verification(first)

        second.current_step = WorkflowStep.REJECTED
        with pytest.raises(ConcurrentUpdateError):
            await store.update_verification(second)

        loaded = await store.get_verification("prov-1")
        assert loaded.current_step == WorkflowStep.RUT_VALIDATION
        assert second.version == 1

    @pytest.mark.asyncio
    async def test_update_of_missing_row_conflicts(self, store):
        verification = new_verification("ghost")
        verification.version = 1
        with pytest.raises(ConcurrentUpdateError):
            await store.update_verification(verification)


class TestTrustScores:
    @pytest.mark.asyncio
    async def test_upsert_replaces(self, store):
        first = TrustScoreRecord(12.0, TrustTier.UNVERIFIED, {"profile_completion": 12.0}, STARTED)
        second = TrustScoreRecord(84.6, TrustTier.ELITE, {"rut_verification": 25.0}, STARTED)

        await store.upsert_trust_score("prov-1", first)
        await store.upsert_trust_score("prov-1", second)

        assert await store.get_trust_score("prov-1") == second

    @pytest.mark.asyncio
    async def test_missing_score(self, store):
        assert await store.get_trust_score("prov-1") is None


class TestHistory:
    @pytest.mark.asyncio
    async def test_sequence_is_per_provider_and_monotonic(self, store):
        a1 = await store.append_history(HistoryEntry("prov-1", HistoryAction.WORKFLOW_STARTED))
        b1 = await store.append_history(HistoryEntry("prov-2", HistoryAction.WORKFLOW_STARTED))
        a2 = await store.append_history(HistoryEntry(
            "prov-1",
            HistoryAction.STATUS_CHANGED,
            previous_status="documents_upload",
            new_status="rut_validation",
            payload={"reason": "documents complete"},
        ))

        assert (a1.sequence, a2.sequence, b1.sequence) == (1, 2, 1)

        entries = await store.list_history("prov-1")
        assert [e.sequence for e in entries] == [1, 2]
        assert entries[1].payload == {"reason": "documents complete"}
        assert entries[1].new_status == "rut_validation"
        assert entries[1].performed_by_type == ActorType.SYSTEM

    @pytest.mark.asyncio
    async def test_history_rejects_update_and_delete(self, store):
        await store.append_history(HistoryEntry("prov-1", HistoryAction.WORKFLOW_STARTED))
        conn = await store._get_connection()

        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            await conn.execute("UPDATE history SET notes = 'edited'")
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            await conn.execute("DELETE FROM history")

        assert len(await store.list_history("prov-1")) == 1


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_pending_until_consumed(self, store):
        outcome = ValidationOutcome(
            kind=ValidatorKind.BACKGROUND_CHECK,
            status=ValidationStatus.FLAGGED,
            source=ValidationSource.STAND_IN,
            observed_at=STARTED,
            details=BackgroundCheckDetails(civil_record=True, findings=("civil case",)),
        )
        await store.save_outcome("prov-1", outcome)

        assert await store.get_pending_outcome("prov-1", ValidatorKind.BACKGROUND_CHECK) == outcome
        assert await store.get_pending_outcome("prov-1", ValidatorKind.RUT_IDENTITY) is None

        await store.mark_outcome_consumed("prov-1", ValidatorKind.BACKGROUND_CHECK)

        assert await store.get_pending_outcome("prov-1", ValidatorKind.BACKGROUND_CHECK) is None
        assert (await store.list_outcomes("prov-1"))[ValidatorKind.BACKGROUND_CHECK] == outcome

    @pytest.mark.asyncio
    async def test_list_outcomes_in_priority_order(self, store):
        for kind, status in (
            (ValidatorKind.BIOMETRIC_MATCH, ValidationStatus.MATCH),
            (ValidatorKind.RUT_IDENTITY, ValidationStatus.VALID),
            (ValidatorKind.BACKGROUND_CHECK, ValidationStatus.CLEAN),
        ):
            await store.save_outcome(
                "prov-1", ValidationOutcome(kind, status, ValidationSource.STAND_IN), consumed=True
            )

        outcomes = await store.list_outcomes("prov-1")

        assert list(outcomes) == [
            ValidatorKind.RUT_IDENTITY,
            ValidatorKind.BACKGROUND_CHECK,
            ValidatorKind.BIOMETRIC_MATCH,
        ]


@pytest.mark.asyncio
async def test_state_survives_reopen(temp_dir):
    path = temp_dir / "nested" / "verification.db"
    first = VerificationStore(path)
    await first.initialize()
    await first.insert_verification(new_verification())
    await first.close()

    second = VerificationStore(path)
    await second.initialize()
    try:
        loaded = await second.get_verification("prov-1")
    finally:
        await second.close()

    assert loaded.provider_id == "prov-1"
    assert loaded.version == 1
