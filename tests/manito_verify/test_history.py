"""Tests for the history recorder and replay."""

import json

import pytest

from manito_verify.history import HistoryRecorder, replay_history
from manito_verify.models import (
    FinalDecision,
    HistoryAction,
    HistoryEntry,
    WorkflowStep,
)


def status_change(sequence, previous, new):
    return HistoryEntry(
        provider_id="prov-1",
        action_type=HistoryAction.STATUS_CHANGED,
        previous_status=previous.value if previous else None,
        new_status=new.value,
        sequence=sequence,
    )


def marker(sequence, action):
    return HistoryEntry(provider_id="prov-1", action_type=action, sequence=sequence)


class TestReplay:
    def test_happy_path(self):
        steps = [
            None,
            WorkflowStep.DOCUMENTS_UPLOAD,
            WorkflowStep.RUT_VALIDATION,
            WorkflowStep.BACKGROUND_CHECK,
            WorkflowStep.IDENTITY_VERIFICATION,
            WorkflowStep.FINAL_APPROVAL,
            WorkflowStep.COMPLETED,
        ]
        entries = [status_change(i + 1, a, b) for i, (a, b) in enumerate(zip(steps, steps[1:]))]

        state = replay_history(entries)

        assert state.current_step == WorkflowStep.COMPLETED
        assert state.final_decision == FinalDecision.APPROVED
        assert state.steps_completed == steps[1:-1]

    def test_manual_review_detour_is_not_completion(self):
        entries = [
            status_change(1, None, WorkflowStep.DOCUMENTS_UPLOAD),
            status_change(2, WorkflowStep.DOCUMENTS_UPLOAD, WorkflowStep.RUT_VALIDATION),
            status_change(3, WorkflowStep.RUT_VALIDATION, WorkflowStep.BACKGROUND_CHECK),
            status_change(4, WorkflowStep.BACKGROUND_CHECK, WorkflowStep.MANUAL_REVIEW),
            status_change(5, WorkflowStep.MANUAL_REVIEW, WorkflowStep.REJECTED),
        ]

        state = replay_history(entries)

        assert state.current_step == WorkflowStep.REJECTED
        assert state.final_decision == FinalDecision.REJECTED
        assert state.steps_completed == [
            WorkflowStep.DOCUMENTS_UPLOAD,
            WorkflowStep.RUT_VALIDATION,
        ]

    def test_orders_by_sequence(self):
        entries = [
            status_change(2, WorkflowStep.DOCUMENTS_UPLOAD, WorkflowStep.RUT_VALIDATION),
            status_change(1, None, WorkflowStep.DOCUMENTS_UPLOAD),
        ]
        assert replay_history(entries).current_step == WorkflowStep.RUT_VALIDATION

    def test_stall_and_resume(self):
        entries = [
            status_change(1, None, WorkflowStep.DOCUMENTS_UPLOAD),
            status_change(2, WorkflowStep.DOCUMENTS_UPLOAD, WorkflowStep.RUT_VALIDATION),
            marker(3, HistoryAction.STEP_STALLED),
        ]
        stalled = replay_history(entries)
        assert stalled.stalled_step == WorkflowStep.RUT_VALIDATION
        assert stalled.final_decision == FinalDecision.PENDING

        resumed = replay_history(entries + [marker(4, HistoryAction.STEP_RESUMED)])
        assert resumed.stalled_step is None

    def test_empty_history(self):
        state = replay_history([])
        assert state.current_step is None
        assert state.steps_completed == []


class TestHistoryRecorder:
    @pytest.mark.asyncio
    async def test_record_assigns_sequence(self, store):
        recorder = HistoryRecorder(store)

        first = await recorder.record(marker(None, HistoryAction.WORKFLOW_STARTED))
        second = await recorder.record(
            status_change(None, None, WorkflowStep.DOCUMENTS_UPLOAD)
        )

        assert (first.sequence, second.sequence) == (1, 2)
        entries = await recorder.entries("prov-1")
        assert [e.action_type for e in entries] == [
            HistoryAction.WORKFLOW_STARTED,
            HistoryAction.STATUS_CHANGED,
        ]

    @pytest.mark.asyncio
    async def test_replay_from_store(self, store):
        recorder = HistoryRecorder(store)
        await recorder.record(status_change(None, None, WorkflowStep.DOCUMENTS_UPLOAD))
        await recorder.record(
            status_change(None, WorkflowStep.DOCUMENTS_UPLOAD, WorkflowStep.RUT_VALIDATION)
        )

        state = await recorder.replay("prov-1")

        assert state.current_step == WorkflowStep.RUT_VALIDATION
        assert state.steps_completed == [WorkflowStep.DOCUMENTS_UPLOAD]

    @pytest.mark.asyncio
    async def test_jsonl_mirror(self, store, temp_dir):
        mirror = temp_dir / "audit" / "history.jsonl"
        recorder = HistoryRecorder(store, mirror_path=mirror)

        await recorder.record(marker(None, HistoryAction.WORKFLOW_STARTED))
        await recorder.record(status_change(None, None, WorkflowStep.DOCUMENTS_UPLOAD))

        lines = [json.loads(line) for line in mirror.read_text().splitlines()]
        assert [line["sequence"] for line in lines] == [1, 2]
        assert lines[0]["action_type"] == "workflow_started"
        assert lines[1]["new_status"] == "documents_upload"
