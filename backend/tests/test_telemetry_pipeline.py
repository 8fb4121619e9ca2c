from __future__ import annotations

import importlib

from app.db.session import session_scope
from app.repositories.progress import progress_repository
from app.telemetry import emit_event


def test_progress_events_are_audited(database) -> None:
    pipeline = importlib.import_module("app.telemetry_pipeline")
    assert "lesson_completed" in pipeline._MONITORED_EVENTS

    emit_event("lesson_completed", user_id="audited", lesson="1_1", minutes=15)
    emit_event("db_pool_status", user_id="audited", connects=1)
    emit_event("lesson_completed", lesson="1_1")

    with session_scope() as session:
        events = progress_repository.recent_audit_events(session, "audited")
        rows = [(event.event_type, dict(event.payload)) for event in events]

    assert rows == [("lesson_completed", {"user_id": "audited", "lesson": "1_1", "minutes": 15})]


def test_audit_failures_are_logged_not_raised(monkeypatch, caplog) -> None:
    pipeline = importlib.import_module("app.telemetry_pipeline")

    def broken_scope():
        raise RuntimeError("database offline")

    monkeypatch.setattr(pipeline, "session_scope", broken_scope)

    emit_event("progress_save_failed", user_id="audited", operation="complete_lesson")

    assert "Failed to persist telemetry event progress_save_failed" in caplog.text
