"""Print one JSON line with pool counters and progress table sizes."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.models import (
    CompletionOperationModel,
    LessonProgressModel,
    ProgressAuditEventModel,
    UserProgressModel,
)
from app.db.monitoring import get_pool_snapshot
from app.db.session import get_engine, session_scope

LOGGER = logging.getLogger("lingo.db_metrics")

_TABLES = {
    "user_progress": UserProgressModel,
    "lesson_progress": LessonProgressModel,
    "completion_operations": CompletionOperationModel,
    "progress_audit_events": ProgressAuditEventModel,
}


def table_counts(session: Session) -> Dict[str, int]:
    return {name: session.execute(select(func.count()).select_from(model)).scalar_one() for name, model in _TABLES.items()}


def collect_metrics() -> Dict[str, object]:
    engine = get_engine()
    with session_scope(commit=False) as session:
        counts = table_counts(session)
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "pool": get_pool_snapshot(engine),
        "tables": counts,
    }


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        payload = collect_metrics()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to collect database metrics: %s", exc)
        return 1
    print(json.dumps(payload))
    return 0


if __name__ == "__main__":
    sys.exit(main())
