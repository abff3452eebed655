"""
Output formatting with Rich console.
"""

from __future__ import annotations

import json
from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from manito_verify.models import (
    HistoryEntry,
    ProviderVerification,
    TrustScoreRecord,
    VerificationStatus,
    to_iso,
)
from manito_verify.rut import RutCheck

custom_theme = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
    "success": "green",
})

_STEP_STYLES = {
    "completed": "success",
    "rejected": "error",
    "manual_review": "warning",
}


class ConsoleOutput:
    """Console output with Rich formatting."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(theme=custom_theme)

    def print(self, text: str = "", **kwargs):
        self.console.print(text, **kwargs)

    def print_error(self, text: str):
        self.console.print(f"[error]Error:[/error] {text}")

    def print_success(self, text: str):
        self.console.print(f"[success]Success:[/success] {text}")

    def print_warning(self, text: str):
        self.console.print(f"[warning]Warning:[/warning] {text}")

    def print_json(self, data) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def print_verification(self, verification: ProviderVerification) -> None:
        """One-row summary of a workflow."""
        step = verification.current_step.value
        style = _STEP_STYLES.get(step, "info")
        table = Table(title=f"Verification {verification.provider_id}", show_header=False)
        table.add_column("field", style="dim")
        table.add_column("value")
        table.add_row("step", f"[{style}]{step}[/{style}]")
        if verification.is_stalled:
            table.add_row("status", "[warning]pending, awaiting manual follow-up[/warning]")
        table.add_row("completed", ", ".join(s.value for s in verification.steps_completed) or "-")
        table.add_row("decision", verification.final_decision.value)
        table.add_row("auto verification", "yes" if verification.auto_verification_possible else "no")
        if verification.manual_review_reasons:
            table.add_row("review reasons", "; ".join(verification.manual_review_reasons))
            table.add_row("priority", str(verification.priority_level))
        if verification.decision_reason:
            table.add_row("reason", verification.decision_reason)
        table.add_row("started", to_iso(verification.started_at) or "-")
        table.add_row("finished", to_iso(verification.completed_at) or "-")
        self.console.print(table)

    def print_trust_score(self, record: Optional[TrustScoreRecord]) -> None:
        if record is None:
            self.print("[dim]No trust score yet[/dim]")
            return
        table = Table(title=f"Trust score {record.score:.2f} ({record.tier.value})")
        table.add_column("factor")
        table.add_column("contribution", justify="right")
        for name, value in record.breakdown.items():
            table.add_row(name, f"{value:.2f}")
        self.console.print(table)

    def print_history(self, entries: Iterable[HistoryEntry]) -> None:
        table = Table(title="History")
        table.add_column("#", justify="right")
        table.add_column("action")
        table.add_column("by")
        table.add_column("from")
        table.add_column("to")
        table.add_column("notes")
        for entry in entries:
            actor = entry.performed_by_type.value
            if entry.performed_by:
                actor = f"{actor}:{entry.performed_by}"
            table.add_row(
                str(entry.sequence),
                entry.action_type.value,
                actor,
                entry.previous_status or "",
                entry.new_status or "",
                entry.notes or "",
            )
        self.console.print(table)

    def print_status(self, status: VerificationStatus) -> None:
        self.print_verification(status.verification)
        self.print_trust_score(status.trust_score)

    def print_rut(self, value: str, check: RutCheck) -> None:
        if check.is_valid:
            self.print_success(f"{value} -> {check.formatted}")
        else:
            self.print_error(f"{value}: {check.error}")
