"""Telemetry listener that keeps an audit trail of progress writes."""

from __future__ import annotations

import logging
from typing import Set

from .telemetry import TelemetryEvent, register_listener
from .db.session import session_scope
from .repositories.progress import progress_repository

logger = logging.getLogger(__name__)

_MONITORED_EVENTS: Set[str] = {
    "lesson_completed",
    "lesson_unlocked",
    "weekly_progress_reset",
    "practice_session_recorded",
    "progress_save_failed",
}


def _persist_event(event: TelemetryEvent) -> None:
    if event.name not in _MONITORED_EVENTS:
        return
    user_id = event.payload.get("user_id")
    if not isinstance(user_id, str) or not user_id.strip():
        return
    try:
        with session_scope() as session:
            progress_repository.record_audit(session, user_id, event.name, event.payload)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist telemetry event %s for user_id=%s", event.name, user_id)


register_listener(_persist_event)

__all__ = ["_MONITORED_EVENTS"]
