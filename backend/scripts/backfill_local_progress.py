from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.db.base import Base
from app.db.session import get_engine
from app.lesson_progress import LessonProgressTracker
from app.local_cache import LocalProgressCache, build_local_cache
from app.progress_store import DatabaseProgressStore


logger = logging.getLogger("backfill")


@dataclass
class ReplaySummary:
    replayed: int = 0
    failed: int = 0


def _ensure_database() -> None:
    engine = get_engine()
    Base.metadata.create_all(engine)


def replay_local_progress(
    cache: LocalProgressCache,
    tracker: LessonProgressTracker,
    *,
    user_id: Optional[str] = None,
) -> ReplaySummary:
    """Push cached lesson snapshots to the store, dropping each one that lands."""
    summary = ReplaySummary()
    for snapshot in cache.pending(user_id):
        if snapshot.completed:
            ok = tracker.complete_and_unlock_next(
                snapshot.user_id,
                snapshot.chapter_id,
                snapshot.lesson_id,
                snapshot.duration_seconds,
                snapshot.messages,
                operation_id=snapshot.operation_id,
            )
        else:
            ok = tracker.save_partial_progress(
                snapshot.user_id,
                snapshot.chapter_id,
                snapshot.lesson_id,
                snapshot.duration_seconds,
                snapshot.messages,
            )
        if not ok:
            logger.warning("Could not replay %s for user_id=%s", snapshot.key, snapshot.user_id)
            summary.failed += 1
            continue
        cache.pop(snapshot.user_id, snapshot.chapter_id, snapshot.lesson_id)
        summary.replayed += 1
    logger.info("Replayed %d cached snapshots (%d failed)", summary.replayed, summary.failed)
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay locally cached lesson progress into the database.")
    parser.add_argument("--path", type=Path, default=None, help="Local cache file (defaults to LINGO_LOCAL_CACHE_PATH).")
    parser.add_argument("--user", default=None, help="Only replay snapshots of this user.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    _ensure_database()
    cache = LocalProgressCache(args.path) if args.path else build_local_cache()
    tracker = LessonProgressTracker(DatabaseProgressStore())
    replay_local_progress(cache, tracker, user_id=args.user)


if __name__ == "__main__":
    main()
