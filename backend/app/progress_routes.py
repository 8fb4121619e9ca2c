"""Progress REST endpoints: user stats, weekly resets, practice and lesson lifecycle."""

from __future__ import annotations

import logging
from typing import Dict, List, Literal, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, Field

from .config import get_settings
from .constants import SOFT_FAILURE_WARNING
from .contribution import (
    ContributionDay,
    ContributionStats,
    available_years,
    calendar_weeks,
    compute_contribution_stats,
)
from .lesson_progress import LessonAccess, LessonProgressTracker, is_first_lesson
from .local_cache import LocalProgressCache, LocalProgressSnapshot, build_local_cache
from .progress_models import ChatMessage, LessonProgress, UserProgress
from .progress_store import ProgressStore, ProgressStoreError, build_progress_store
from .sessions import SaveOutcome, cache_locally
from .weekly import WeeklyAggregator, WeeklyBucket, make_clock, needs_weekly_reset, resolve_timezone


logger = logging.getLogger(__name__)


def _require_user_id(user_id: str = Path(...)) -> str:
    if not user_id.strip():
        raise HTTPException(status_code=422, detail="User id cannot be empty.")
    return user_id


router = APIRouter(
    prefix="/api/progress/users/{user_id}",
    tags=["progress"],
    dependencies=[Depends(_require_user_id)],
)

LESSON_ID_PATTERN = r"^\d+$"

_store: Optional[ProgressStore] = None
_local_cache: Optional[LocalProgressCache] = None


def get_progress_store() -> ProgressStore:
    global _store
    if _store is None:
        _store = build_progress_store(get_settings())
    return _store


def get_local_cache() -> LocalProgressCache:
    global _local_cache
    if _local_cache is None:
        _local_cache = build_local_cache(get_settings())
    return _local_cache


def get_lesson_tracker(store: ProgressStore = Depends(get_progress_store)) -> LessonProgressTracker:
    clock = make_clock(resolve_timezone(get_settings().progress_timezone))
    return LessonProgressTracker(store, clock=clock)


def get_weekly_aggregator(store: ProgressStore = Depends(get_progress_store)) -> WeeklyAggregator:
    clock = make_clock(resolve_timezone(get_settings().progress_timezone))
    return WeeklyAggregator(store, clock=clock)


class UserStatsResponse(BaseModel):
    progress: UserProgress
    weekly: List[WeeklyBucket]
    contribution: ContributionStats


class WeeklyResetResponse(SaveOutcome):
    reset: bool = False


class PracticeSessionRequest(BaseModel):
    duration_seconds: int = Field(..., ge=0)
    kind: Literal["voice", "chat"] = "voice"


class InitializeLessonRequest(BaseModel):
    is_first_lesson: Optional[bool] = None


class ChatMessageRequest(BaseModel):
    message: ChatMessage


class CompleteLessonRequest(BaseModel):
    duration_seconds: int = Field(..., ge=0)
    messages: List[ChatMessage] = Field(default_factory=list)
    operation_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class PartialProgressRequest(BaseModel):
    duration_seconds: int = Field(..., ge=0)
    messages: List[ChatMessage] = Field(default_factory=list)


class CompleteLessonResponse(SaveOutcome):
    operation_id: str


class LessonStatusResponse(BaseModel):
    chapter_id: str
    lesson_id: str
    state: Literal["locked", "unlocked", "started", "completed"]
    access: LessonAccess
    progress: Optional[LessonProgress] = None


class ChapterProgressResponse(BaseModel):
    chapter_id: str
    lessons: Dict[str, LessonProgress]


class ContributionCalendarResponse(BaseModel):
    year: int
    years: List[int]
    stats: ContributionStats
    weeks: List[List[ContributionDay]]


def _store_unavailable(exc: ProgressStoreError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


def _soft_outcome(ok: bool) -> SaveOutcome:
    if ok:
        return SaveOutcome(saved_to_cloud=True)
    return SaveOutcome(saved_to_cloud=False, warning=SOFT_FAILURE_WARNING)


def _load_user(store: ProgressStore, user_id: str) -> UserProgress:
    try:
        return store.ensure_user(user_id)
    except ProgressStoreError as exc:
        logger.warning("Progress unavailable for user_id=%s: %s", user_id, exc)
        raise _store_unavailable(exc) from exc


@router.get("", response_model=UserStatsResponse)
def get_user_stats(
    user_id: str,
    store: ProgressStore = Depends(get_progress_store),
    aggregator: WeeklyAggregator = Depends(get_weekly_aggregator),
) -> UserStatsResponse:
    progress = _load_user(store, user_id)
    now = aggregator.now()
    return UserStatsResponse(
        progress=progress,
        weekly=aggregator.weekly_buckets(progress),
        contribution=compute_contribution_stats(progress.activity_log, now.date()),
    )


@router.post("/weekly-reset", response_model=WeeklyResetResponse)
def weekly_reset(
    user_id: str,
    store: ProgressStore = Depends(get_progress_store),
    aggregator: WeeklyAggregator = Depends(get_weekly_aggregator),
) -> WeeklyResetResponse:
    snapshot = _load_user(store, user_id)
    now = aggregator.now()
    if not needs_weekly_reset(snapshot.last_week_reset, now):
        return WeeklyResetResponse(saved_to_cloud=True, reset=False)
    ok = aggregator.handle_weekly_reset(user_id, snapshot, now=now)
    return WeeklyResetResponse(**_soft_outcome(ok).model_dump(), reset=ok)


@router.post("/practice-sessions", response_model=SaveOutcome)
def record_practice_session(
    user_id: str,
    payload: PracticeSessionRequest,
    aggregator: WeeklyAggregator = Depends(get_weekly_aggregator),
) -> SaveOutcome:
    ok = aggregator.record_practice(user_id, payload.duration_seconds // 60, kind=payload.kind)
    return _soft_outcome(ok)


@router.get("/contributions", response_model=ContributionCalendarResponse)
def get_contributions(
    user_id: str,
    year: Optional[int] = Query(default=None, ge=1970, le=9999),
    store: ProgressStore = Depends(get_progress_store),
    aggregator: WeeklyAggregator = Depends(get_weekly_aggregator),
) -> ContributionCalendarResponse:
    progress = _load_user(store, user_id)
    today = aggregator.now().date()
    selected = year or today.year
    return ContributionCalendarResponse(
        year=selected,
        years=available_years(progress.activity_log, today),
        stats=compute_contribution_stats(progress.activity_log, today),
        weeks=calendar_weeks(selected, progress.activity_log),
    )


@router.get("/chapters/{chapter_id}", response_model=ChapterProgressResponse)
def get_chapter_progress(
    user_id: str,
    chapter_id: str,
    tracker: LessonProgressTracker = Depends(get_lesson_tracker),
) -> ChapterProgressResponse:
    try:
        lessons = tracker.get_chapter_progress(user_id, chapter_id)
    except ProgressStoreError as exc:
        raise _store_unavailable(exc) from exc
    return ChapterProgressResponse(chapter_id=chapter_id, lessons=lessons)


@router.get("/lessons/{chapter_id}/{lesson_id}", response_model=LessonStatusResponse)
def get_lesson_status(
    user_id: str,
    chapter_id: str,
    lesson_id: str = Path(..., pattern=LESSON_ID_PATTERN),
    tracker: LessonProgressTracker = Depends(get_lesson_tracker),
) -> LessonStatusResponse:
    try:
        progress = tracker.get_lesson_progress(user_id, chapter_id, lesson_id)
        access = tracker.check_lesson_access(user_id, chapter_id, lesson_id)
    except ProgressStoreError as exc:
        raise _store_unavailable(exc) from exc
    return LessonStatusResponse(
        chapter_id=chapter_id,
        lesson_id=lesson_id,
        state=progress.state if progress else "locked",
        access=access,
        progress=progress,
    )


@router.post("/lessons/{chapter_id}/{lesson_id}/initialize", response_model=SaveOutcome)
def initialize_lesson(
    user_id: str,
    chapter_id: str,
    payload: Optional[InitializeLessonRequest] = None,
    lesson_id: str = Path(..., pattern=LESSON_ID_PATTERN),
    tracker: LessonProgressTracker = Depends(get_lesson_tracker),
) -> SaveOutcome:
    first = payload.is_first_lesson if payload and payload.is_first_lesson is not None else is_first_lesson(lesson_id)
    return _soft_outcome(tracker.initialize(user_id, chapter_id, lesson_id, first))


@router.post("/lessons/{chapter_id}/{lesson_id}/start", response_model=SaveOutcome)
def start_lesson(
    user_id: str,
    chapter_id: str,
    lesson_id: str = Path(..., pattern=LESSON_ID_PATTERN),
    tracker: LessonProgressTracker = Depends(get_lesson_tracker),
) -> SaveOutcome:
    return _soft_outcome(tracker.start_session(user_id, chapter_id, lesson_id))


@router.post("/lessons/{chapter_id}/{lesson_id}/messages", response_model=SaveOutcome)
def save_lesson_message(
    user_id: str,
    chapter_id: str,
    payload: ChatMessageRequest,
    lesson_id: str = Path(..., pattern=LESSON_ID_PATTERN),
    tracker: LessonProgressTracker = Depends(get_lesson_tracker),
) -> SaveOutcome:
    return _soft_outcome(tracker.save_chat_message(user_id, chapter_id, lesson_id, payload.message))


@router.post("/lessons/{chapter_id}/{lesson_id}/complete", response_model=CompleteLessonResponse)
def complete_lesson(
    user_id: str,
    chapter_id: str,
    payload: CompleteLessonRequest,
    lesson_id: str = Path(..., pattern=LESSON_ID_PATTERN),
    tracker: LessonProgressTracker = Depends(get_lesson_tracker),
    cache: LocalProgressCache = Depends(get_local_cache),
) -> CompleteLessonResponse:
    operation_id = payload.operation_id or uuid4().hex
    ok = tracker.complete_and_unlock_next(
        user_id,
        chapter_id,
        lesson_id,
        payload.duration_seconds,
        payload.messages,
        operation_id=operation_id,
    )
    if ok:
        return CompleteLessonResponse(saved_to_cloud=True, operation_id=operation_id)
    outcome = cache_locally(
        cache,
        LocalProgressSnapshot(
            user_id=user_id,
            chapter_id=chapter_id,
            lesson_id=lesson_id,
            duration_seconds=payload.duration_seconds,
            messages=payload.messages,
            completed=True,
            operation_id=operation_id,
        ),
    )
    return CompleteLessonResponse(**outcome.model_dump(), operation_id=operation_id)


@router.post("/lessons/{chapter_id}/{lesson_id}/partial", response_model=SaveOutcome)
def save_partial_progress(
    user_id: str,
    chapter_id: str,
    payload: PartialProgressRequest,
    lesson_id: str = Path(..., pattern=LESSON_ID_PATTERN),
    tracker: LessonProgressTracker = Depends(get_lesson_tracker),
    cache: LocalProgressCache = Depends(get_local_cache),
) -> SaveOutcome:
    if tracker.save_partial_progress(user_id, chapter_id, lesson_id, payload.duration_seconds, payload.messages):
        return SaveOutcome(saved_to_cloud=True)
    return cache_locally(
        cache,
        LocalProgressSnapshot(
            user_id=user_id,
            chapter_id=chapter_id,
            lesson_id=lesson_id,
            duration_seconds=payload.duration_seconds,
            messages=payload.messages,
        ),
    )


__all__ = ["get_lesson_tracker", "get_local_cache", "get_progress_store", "get_weekly_aggregator", "router"]
