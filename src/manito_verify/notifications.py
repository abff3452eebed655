"""
Notification gate - best-effort events at workflow transitions.

A failed or timed-out delivery is logged and dropped; it never blocks or rolls back
the transition that produced it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from manito_verify.config.defaults import NOTIFICATION_TIMEOUT_SECONDS
from manito_verify.models import NotificationEvent, NotificationType, WorkflowStep, utc_now

logger = logging.getLogger(__name__)

# Event emitted when a workflow enters a step
STEP_NOTIFICATIONS = {
    WorkflowStep.RUT_VALIDATION: NotificationType.DOCUMENTS_RECEIVED,
    WorkflowStep.MANUAL_REVIEW: NotificationType.UNDER_REVIEW,
    WorkflowStep.COMPLETED: NotificationType.APPROVED,
    WorkflowStep.REJECTED: NotificationType.REJECTED,
}


class NotificationGate(Protocol):
    async def notify(self, event: NotificationEvent) -> None: ...


class LoggingNotificationGate:
    """Writes events to the log; the default when no gate is wired."""

    async def notify(self, event: NotificationEvent) -> None:
        logger.info(
            f"Notify {event.provider_id}: {event.event_type.value}",
            extra={"event": "notification", "provider_id": event.provider_id},
        )


class InMemoryNotificationGate:
    """Collects events; ``fail=True`` makes every delivery raise."""

    def __init__(self, fail: bool = False):
        self.events: List[NotificationEvent] = []
        self.fail = fail

    async def notify(self, event: NotificationEvent) -> None:
        if self.fail:
            raise ConnectionError("notification service unavailable")
        self.events.append(event)

    def types_for(self, provider_id: str) -> List[NotificationType]:
        return [e.event_type for e in self.events if e.provider_id == provider_id]


class NotificationDispatcher:
    """Wraps a gate so that delivery errors stay inside this class."""

    def __init__(
        self,
        gate: Optional[NotificationGate] = None,
        timeout: float = NOTIFICATION_TIMEOUT_SECONDS,
    ):
        self.gate = gate or LoggingNotificationGate()
        self.timeout = timeout
        self.failures = 0

    async def emit(
        self,
        provider_id: str,
        event_type: NotificationType,
        occurred_at: Optional[datetime] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Deliver one event. Returns False when delivery failed or timed out."""
        event = NotificationEvent(
            provider_id=provider_id,
            event_type=event_type,
            occurred_at=occurred_at or utc_now(),
            data=data or {},
        )
        try:
            await asyncio.wait_for(self.gate.notify(event), timeout=self.timeout)
        except Exception as e:
            self.failures += 1
            logger.warning(
                f"Notification {event_type.value} for {provider_id} failed: {e!r}",
                extra={
                    "event": "notification_failed",
                    "provider_id": provider_id,
                    "notification": event_type.value,
                },
            )
            return False
        return True

    async def emit_for_step(
        self, provider_id: str, step: WorkflowStep, occurred_at: Optional[datetime] = None
    ) -> bool:
        event_type = STEP_NOTIFICATIONS.get(step)
        if event_type is None:
            return True
        return await self.emit(provider_id, event_type, occurred_at, {"step": step.value})
