"""
HistoryRecorder - append-only audit log with an optional JSONL mirror.

Every entry goes to the store first; the mirror is a best-effort copy
for log shipping. ``replay_history`` re-derives the workflow position
from the ordered entries alone.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles

from manito_verify.models import (
    FinalDecision,
    HistoryAction,
    HistoryEntry,
    WorkflowStep,
)
from manito_verify.store import VerificationStore

logger = logging.getLogger(__name__)


class HistoryRecorder:
    """Append HistoryEntry records; never updates or deletes."""

    def __init__(self, store: VerificationStore, mirror_path: Optional[Path] = None):
        self.store = store
        self.mirror_path = mirror_path
        self._mirror_lock = asyncio.Lock()

    async def record(self, entry: HistoryEntry) -> HistoryEntry:
        """Persist an entry and return it with its sequence number."""
        stored = await self.store.append_history(entry)
        logger.debug(
            f"history {stored.provider_id}#{stored.sequence} {stored.action_type.value}",
            extra={
                "event": "history_appended",
                "provider_id": stored.provider_id,
                "action_type": stored.action_type.value,
            },
        )
        if self.mirror_path:
            await self._mirror(stored)
        return stored

    async def _mirror(self, entry: HistoryEntry) -> None:
        self.mirror_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._mirror_lock:
            try:
                async with aiofiles.open(self.mirror_path, "a") as f:
                    await f.write(json.dumps(entry.to_dict(), default=str) + "\n")
            except OSError as e:
                logger.error(f"Failed to write history mirror: {e}")

    async def entries(self, provider_id: str) -> List[HistoryEntry]:
        return await self.store.list_history(provider_id)

    async def replay(self, provider_id: str) -> "ReplayState":
        return replay_history(await self.entries(provider_id))


@dataclass
class ReplayState:
    """Workflow position reconstructed from history."""
    current_step: Optional[WorkflowStep] = None
    steps_completed: List[WorkflowStep] = field(default_factory=list)
    final_decision: FinalDecision = FinalDecision.PENDING
    stalled_step: Optional[WorkflowStep] = None


_NOT_COMPLETING = (WorkflowStep.MANUAL_REVIEW, WorkflowStep.REJECTED)


def replay_history(entries: Iterable[HistoryEntry]) -> ReplayState:
    """
    Re-derive the workflow position from ``status_changed`` entries.

    Leaving a step counts as completing it unless the new step is
    manual_review or rejected, matching how the orchestrator records it.
    """
    state = ReplayState()
    ordered = sorted(entries, key=lambda e: e.sequence or 0)

    for entry in ordered:
        if entry.action_type == HistoryAction.STATUS_CHANGED:
            new_step = WorkflowStep(entry.new_status)
            previous = WorkflowStep(entry.previous_status) if entry.previous_status else None
            if previous and previous != new_step and new_step not in _NOT_COMPLETING:
                if previous not in state.steps_completed:
                    state.steps_completed.append(previous)
            state.current_step = new_step
            state.stalled_step = None
            if new_step == WorkflowStep.COMPLETED:
                state.final_decision = FinalDecision.APPROVED
            elif new_step == WorkflowStep.REJECTED:
                state.final_decision = FinalDecision.REJECTED
        elif entry.action_type == HistoryAction.STEP_STALLED:
            state.stalled_step = state.current_step
        elif entry.action_type == HistoryAction.STEP_RESUMED:
            state.stalled_step = None

    return state
