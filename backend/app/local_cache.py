"""JSON-file write-behind cache for lesson sessions that could not reach the store."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .config import Settings, get_settings
from .constants import LOCAL_CACHE_KEY_PREFIX
from .progress_models import ChatMessage
from .repositories.progress import normalize_user_id

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"


def local_cache_key(chapter_id: str, lesson_id: str) -> str:
    return f"{LOCAL_CACHE_KEY_PREFIX}{chapter_id}_{lesson_id}"


class LocalProgressSnapshot(BaseModel):
    user_id: str
    chapter_id: str
    lesson_id: str
    duration_seconds: int = Field(ge=0)
    messages: List[ChatMessage] = Field(default_factory=list)
    completed: bool = False
    operation_id: Optional[str] = None
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> str:
        return local_cache_key(self.chapter_id, self.lesson_id)


class LocalProgressCache:
    """Last session snapshot per lesson, grouped by user.

    The cached copy can diverge from the store; the backfill script replays it.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path or DATA_DIR / "local_progress.json"
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> Dict[str, Dict[str, LocalProgressSnapshot]]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw: Any = json.load(handle)
        except ValueError:
            corrupt = self._path.with_name(self._path.name + ".corrupt")
            logger.exception("Local progress cache %s is unreadable; moving it to %s", self._path, corrupt)
            os.replace(self._path, corrupt)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring local progress cache %s with unexpected layout", self._path)
            return {}
        snapshots: Dict[str, Dict[str, LocalProgressSnapshot]] = {}
        for user_id, entries in raw.items():
            if not isinstance(entries, dict):
                continue
            for key, payload in entries.items():
                try:
                    snapshots.setdefault(user_id, {})[key] = LocalProgressSnapshot.model_validate(payload)
                except ValidationError:
                    logger.exception("Failed to parse cached progress %s for user_id=%s", key, user_id)
        return snapshots

    def _write_unlocked(self, snapshots: Dict[str, Dict[str, LocalProgressSnapshot]]) -> None:
        payload = {
            user_id: {key: snapshot.model_dump(mode="json") for key, snapshot in entries.items()}
            for user_id, entries in snapshots.items()
            if entries
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._path.with_name(self._path.name + ".tmp")
        with staging.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(staging, self._path)

    def save(self, snapshot: LocalProgressSnapshot) -> LocalProgressSnapshot:
        user_id = normalize_user_id(snapshot.user_id)
        stored = snapshot.model_copy(update={"user_id": user_id})
        with self._lock:
            snapshots = self._load_unlocked()
            snapshots.setdefault(user_id, {})[stored.key] = stored
            self._write_unlocked(snapshots)
        logger.info("Cached %s locally for user_id=%s", stored.key, user_id)
        return stored

    def get(self, user_id: str, chapter_id: str, lesson_id: str) -> Optional[LocalProgressSnapshot]:
        with self._lock:
            entries = self._load_unlocked().get(normalize_user_id(user_id), {})
            return entries.get(local_cache_key(chapter_id, lesson_id))

    def pop(self, user_id: str, chapter_id: str, lesson_id: str) -> Optional[LocalProgressSnapshot]:
        normalized = normalize_user_id(user_id)
        with self._lock:
            snapshots = self._load_unlocked()
            removed = snapshots.get(normalized, {}).pop(local_cache_key(chapter_id, lesson_id), None)
            if removed is not None:
                self._write_unlocked(snapshots)
            return removed

    def pending(self, user_id: Optional[str] = None) -> List[LocalProgressSnapshot]:
        with self._lock:
            snapshots = self._load_unlocked()
        if user_id is not None:
            entries = snapshots.get(normalize_user_id(user_id), {})
            return sorted(entries.values(), key=lambda item: item.saved_at)
        return sorted(
            (snapshot for entries in snapshots.values() for snapshot in entries.values()),
            key=lambda item: item.saved_at,
        )

    def clear(self) -> None:
        with self._lock:
            if self._path.exists():
                self._path.unlink()


def build_local_cache(settings: Optional[Settings] = None) -> LocalProgressCache:
    settings = settings or get_settings()
    path = Path(settings.local_cache_path) if settings.local_cache_path else None
    return LocalProgressCache(path)


__all__ = [
    "LocalProgressCache",
    "LocalProgressSnapshot",
    "build_local_cache",
    "local_cache_key",
]
