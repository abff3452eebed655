"""
VerificationStore - Async SQLite persistence for workflow state.

Tables:
- verifications: materialized ProviderVerification, optimistic ``version``
- trust_scores: latest TrustScoreRecord per provider
- history: append-only HistoryEntry log keyed by provider + sequence
- validation_outcomes: latest outcome per provider and validator kind
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import aiosqlite

from manito_verify.errors import ConcurrentUpdateError
from manito_verify.models import (
    ActorType,
    FinalDecision,
    HistoryAction,
    HistoryEntry,
    ProviderVerification,
    TrustScoreRecord,
    TrustTier,
    ValidationOutcome,
    ValidatorKind,
    WorkflowStep,
    from_iso,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS verifications (
        provider_id TEXT PRIMARY KEY,
        current_step TEXT NOT NULL,
        steps_completed TEXT NOT NULL,  -- JSON list, insertion ordered
        final_decision TEXT NOT NULL,
        auto_verification_possible INTEGER NOT NULL DEFAULT 0,
        auto_verification_score REAL,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        step_entered_at TEXT,
        stalled_step TEXT,
        manual_review_reasons TEXT NOT NULL,  -- JSON list
        priority_level INTEGER NOT NULL DEFAULT 1,
        decision_reason TEXT,
        decision_made_by TEXT,
        decision_made_at TEXT,
        version INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS trust_scores (
        provider_id TEXT PRIMARY KEY,
        score REAL NOT NULL,
        tier TEXT NOT NULL,
        breakdown TEXT NOT NULL,  -- JSON
        calculated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS history (
        provider_id TEXT NOT NULL,
        sequence INTEGER NOT NULL,
        action_type TEXT NOT NULL,
        performed_by_type TEXT NOT NULL,
        performed_by TEXT,
        previous_status TEXT,
        new_status TEXT,
        payload TEXT NOT NULL,  -- JSON
        notes TEXT,
        created_at TEXT NOT NULL,
        PRIMARY KEY (provider_id, sequence)
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS history_no_update BEFORE UPDATE ON history
    BEGIN SELECT RAISE(ABORT, 'history is append-only'); END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS history_no_delete BEFORE DELETE ON history
    BEGIN SELECT RAISE(ABORT, 'history is append-only'); END
    """,
    """
    CREATE TABLE IF NOT EXISTS validation_outcomes (
        provider_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        outcome TEXT NOT NULL,  -- JSON
        consumed INTEGER NOT NULL DEFAULT 0,
        recorded_at TEXT NOT NULL,
        PRIMARY KEY (provider_id, kind)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_verifications_step ON verifications(current_step)",
)


class VerificationStore:
    """
    Async SQLite CRUD for verification state.

    One shared connection; writes are serialized by an asyncio.Lock.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._lock = asyncio.Lock()
        self._connection: Optional[aiosqlite.Connection] = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create a shared connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(str(self.db_path))
            self._connection.row_factory = aiosqlite.Row
        return self._connection

    async def initialize(self) -> None:
        """Create schema if not exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            conn = await self._get_connection()
            for statement in _SCHEMA:
                await conn.execute(statement)
            await conn.commit()
            logger.info(f"Initialized verification store at {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # -------------------------------------------------------------------------
    # verifications
    # -------------------------------------------------------------------------

    async def get_verification(self, provider_id: str) -> Optional[ProviderVerification]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM verifications WHERE provider_id = ?", (provider_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_verification(row) if row else None

    async def insert_verification(self, verification: ProviderVerification) -> None:
        """Insert a new workflow; sets ``version`` to 1."""
        async with self._lock:
            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    INSERT INTO verifications (
                        provider_id, current_step, steps_completed, final_decision,
                        auto_verification_possible, auto_verification_score,
                        started_at, completed_at, step_entered_at, stalled_step,
                        manual_review_reasons, priority_level, decision_reason,
                        decision_made_by, decision_made_at, version
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                """,
                    (verification.provider_id, *self._verification_columns(verification)),
                )
            except aiosqlite.IntegrityError as e:
                await conn.rollback()
                raise ConcurrentUpdateError(verification.provider_id) from e
            await conn.commit()
        verification.version = 1

    async def update_verification(self, verification: ProviderVerification) -> None:
        """
        Persist a mutated workflow.

        Raises:
            ConcurrentUpdateError: the stored version moved since it was loaded
        """
        async with self._lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                """
                UPDATE verifications SET
                    current_step = ?, steps_completed = ?, final_decision = ?,
                    auto_verification_possible = ?, auto_verification_score = ?,
                    started_at = ?, completed_at = ?, step_entered_at = ?,
                    stalled_step = ?, manual_review_reasons = ?, priority_level = ?,
                    decision_reason = ?, decision_made_by = ?, decision_made_at = ?,
                    version = version + 1
                WHERE provider_id = ? AND version = ?
            """,
                (
                    *self._verification_columns(verification),
                    verification.provider_id,
                    verification.version,
                ),
            )
            if cursor.rowcount != 1:
                await conn.rollback()
                raise ConcurrentUpdateError(verification.provider_id)
            await conn.commit()
        verification.version += 1

    @staticmethod
    def _verification_columns(v: ProviderVerification) -> tuple:
        return (
            v.current_step.value,
            json.dumps([s.value for s in v.steps_completed]),
            v.final_decision.value,
            int(v.auto_verification_possible),
            v.auto_verification_score,
            to_iso(v.started_at),
            to_iso(v.completed_at),
            to_iso(v.step_entered_at),
            v.stalled_step.value if v.stalled_step else None,
            json.dumps(v.manual_review_reasons),
            v.priority_level,
            v.decision_reason,
            v.decision_made_by,
            to_iso(v.decision_made_at),
        )

    def _row_to_verification(self, row: aiosqlite.Row) -> ProviderVerification:
        """Convert DB row to ProviderVerification."""
        return ProviderVerification(
            provider_id=row["provider_id"],
            current_step=WorkflowStep(row["current_step"]),
            steps_completed=[WorkflowStep(s) for s in json.loads(row["steps_completed"])],
            final_decision=FinalDecision(row["final_decision"]),
            auto_verification_possible=bool(row["auto_verification_possible"]),
            auto_verification_score=row["auto_verification_score"],
            started_at=from_iso(row["started_at"]),
            completed_at=from_iso(row["completed_at"]),
            step_entered_at=from_iso(row["step_entered_at"]),
            stalled_step=WorkflowStep(row["stalled_step"]) if row["stalled_step"] else None,
            manual_review_reasons=json.loads(row["manual_review_reasons"]),
            priority_level=row["priority_level"],
            decision_reason=row["decision_reason"],
            decision_made_by=row["decision_made_by"],
            decision_made_at=from_iso(row["decision_made_at"]),
            version=row["version"],
        )

    # -------------------------------------------------------------------------
    # trust_scores
    # -------------------------------------------------------------------------

    async def upsert_trust_score(self, provider_id: str, record: TrustScoreRecord) -> None:
        """Replace the provider's score with the latest computation."""
        async with self._lock:
            conn = await self._get_connection()
            await conn.execute(
                """
                INSERT INTO trust_scores (provider_id, score, tier, breakdown, calculated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(provider_id) DO UPDATE SET
                    score = excluded.score,
                    tier = excluded.tier,
                    breakdown = excluded.breakdown,
                    calculated_at = excluded.calculated_at
            """,
                (
                    provider_id,
                    record.score,
                    record.tier.value,
                    json.dumps(record.breakdown, sort_keys=True),
                    to_iso(record.calculated_at),
                ),
            )
            await conn.commit()

    async def get_trust_score(self, provider_id: str) -> Optional[TrustScoreRecord]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM trust_scores WHERE provider_id = ?", (provider_id,)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return TrustScoreRecord(
            score=row["score"],
            tier=TrustTier(row["tier"]),
            breakdown=json.loads(row["breakdown"]),
            calculated_at=from_iso(row["calculated_at"]),
        )

    # -------------------------------------------------------------------------
    # history (append-only)
    # -------------------------------------------------------------------------

    async def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        """Append an entry and return it with its assigned sequence number."""
        async with self._lock:
            conn = await self._get_connection()
            cursor = await conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) + 1 FROM history WHERE provider_id = ?",
                (entry.provider_id,),
            )
            (sequence,) = await cursor.fetchone()
            await conn.execute(
                """
                INSERT INTO history (
                    provider_id, sequence, action_type, performed_by_type,
                    performed_by, previous_status, new_status, payload, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    entry.provider_id,
                    sequence,
                    entry.action_type.value,
                    entry.performed_by_type.value,
                    entry.performed_by,
                    entry.previous_status,
                    entry.new_status,
                    json.dumps(entry.payload, sort_keys=True, default=str),
                    entry.notes,
                    to_iso(entry.created_at),
                ),
            )
            await conn.commit()
        return dataclasses.replace(entry, sequence=sequence)

    async def list_history(self, provider_id: str) -> List[HistoryEntry]:
        """All entries for a provider, in sequence order."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM history WHERE provider_id = ? ORDER BY sequence",
            (provider_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(r) for r in rows]

    def _row_to_entry(self, row: aiosqlite.Row) -> HistoryEntry:
        return HistoryEntry(
            provider_id=row["provider_id"],
            action_type=HistoryAction(row["action_type"]),
            performed_by_type=ActorType(row["performed_by_type"]),
            performed_by=row["performed_by"],
            previous_status=row["previous_status"],
            new_status=row["new_status"],
            payload=json.loads(row["payload"]),
            notes=row["notes"],
            created_at=from_iso(row["created_at"]),
            sequence=row["sequence"],
        )

    # -------------------------------------------------------------------------
    # validation_outcomes
    # -------------------------------------------------------------------------

    async def save_outcome(
        self, provider_id: str, outcome: ValidationOutcome, consumed: bool = False
    ) -> None:
        """Store the latest outcome for a validator kind."""
        async with self._lock:
            conn = await self._get_connection()
            await conn.execute(
                """
                INSERT INTO validation_outcomes (provider_id, kind, outcome, consumed, recorded_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(provider_id, kind) DO UPDATE SET
                    outcome = excluded.outcome,
                    consumed = excluded.consumed,
                    recorded_at = excluded.recorded_at
            """,
                (
                    provider_id,
                    outcome.kind.value,
                    json.dumps(outcome.to_dict()),
                    int(consumed),
                    to_iso(utc_now()),
                ),
            )
            await conn.commit()

    async def get_pending_outcome(
        self, provider_id: str, kind: ValidatorKind
    ) -> Optional[ValidationOutcome]:
        """Outcome received ahead of its step and not yet applied."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT outcome FROM validation_outcomes
            WHERE provider_id = ? AND kind = ? AND consumed = 0
        """,
            (provider_id, kind.value),
        )
        row = await cursor.fetchone()
        return ValidationOutcome.from_dict(json.loads(row["outcome"])) if row else None

    async def mark_outcome_consumed(self, provider_id: str, kind: ValidatorKind) -> None:
        async with self._lock:
            conn = await self._get_connection()
            await conn.execute(
                "UPDATE validation_outcomes SET consumed = 1 WHERE provider_id = ? AND kind = ?",
                (provider_id, kind.value),
            )
            await conn.commit()

    async def list_outcomes(self, provider_id: str) -> Dict[ValidatorKind, ValidationOutcome]:
        """Latest outcome per kind, applied or not."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT outcome FROM validation_outcomes WHERE provider_id = ?", (provider_id,)
        )
        rows = await cursor.fetchall()
        outcomes = [ValidationOutcome.from_dict(json.loads(r["outcome"])) for r in rows]
        return {o.kind: o for o in sorted(outcomes, key=lambda o: o.kind.priority)}
