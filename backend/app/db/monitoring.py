"""Connection pool observability for the progress database."""

from __future__ import annotations

import os
import time
import weakref
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event

_TELEMETRY_INTERVAL = float(os.getenv("LINGO_DB_TELEMETRY_INTERVAL", "30"))


@dataclass
class PoolCounters:
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    last_emit: float = 0.0
    lock: Lock = field(default_factory=Lock, repr=False)

    def as_dict(self) -> Dict[str, int]:
        return {
            "connects": self.connects,
            "checkouts": self.checkouts,
            "checkins": self.checkins,
        }


_COUNTERS: weakref.WeakKeyDictionary[Engine, PoolCounters] = weakref.WeakKeyDictionary()


def instrument_engine(engine: Engine) -> None:
    """Count pool events on ``engine`` and periodically emit ``db_pool_status``."""
    if engine in _COUNTERS:
        return
    counters = PoolCounters()
    _COUNTERS[engine] = counters

    def _record(attribute: str, event_name: str) -> None:
        with counters.lock:
            setattr(counters, attribute, getattr(counters, attribute) + 1)
            now = time.time()
            if _TELEMETRY_INTERVAL > 0 and now - counters.last_emit < _TELEMETRY_INTERVAL:
                return
            counters.last_emit = now
            snapshot = counters.as_dict()
        emit_event("db_pool_status", status=_pool_status(engine), event=event_name, **snapshot)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        _record("connects", "db_pool_connect")

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        _record("checkouts", "db_pool_checkout")

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        _record("checkins", "db_pool_checkin")


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    counters = _COUNTERS.get(engine) or PoolCounters()
    return {"status": _pool_status(engine), **counters.as_dict()}


def _pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover - pool implementations without status()
        return f"unavailable: {exc}"


__all__ = [
    "get_pool_snapshot",
    "instrument_engine",
]
