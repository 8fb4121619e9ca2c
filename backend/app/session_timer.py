"""Wall-clock practice timer with a one-shot completion threshold."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from .progress_models import ChatMessage

logger = logging.getLogger(__name__)


class SessionTimer:
    """Counts seconds from the learner's first message until ``threshold_seconds``.

    There is no pause: closing the session without an explicit save loses the
    elapsed time.
    """

    def __init__(
        self,
        threshold_seconds: int,
        on_complete: Optional[Callable[[int], None]] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        interval: float = 1.0,
    ) -> None:
        if threshold_seconds <= 0:
            raise ValueError("Session threshold must be positive.")
        self.threshold_seconds = threshold_seconds
        self._on_complete = on_complete
        self._clock = clock
        self._interval = interval
        self._started_at: Optional[float] = None
        self._completed = False
        self._stopped = False

    @property
    def started(self) -> bool:
        return self._started_at is not None

    @property
    def completed(self) -> bool:
        return self._completed

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def observe(self, message: ChatMessage) -> bool:
        """Start counting on the first user message; returns whether the timer is running."""
        if message.sender == "user":
            self.start()
        return self.started

    def reset(self) -> None:
        """Restart from zero, as when the learner clears the conversation."""
        self._started_at = self._clock() if self._started_at is not None else None
        self._completed = False

    def elapsed_seconds(self) -> int:
        if self._started_at is None:
            return 0
        return max(int(self._clock() - self._started_at), 0)

    def tick(self) -> int:
        elapsed = self.elapsed_seconds()
        if self.started and not self._completed and elapsed >= self.threshold_seconds:
            self._completed = True
            if self._on_complete is not None:
                self._on_complete(elapsed)
        return elapsed

    def stop(self) -> None:
        self._stopped = True

    async def run(self, on_tick: Optional[Callable[[int], None]] = None) -> int:
        """Poll once per interval until the threshold fires or ``stop`` is called."""
        while not self._stopped and not self._completed:
            await asyncio.sleep(self._interval)
            if not self.started:
                continue
            elapsed = self.tick()
            if on_tick is not None:
                on_tick(elapsed)
        return self.elapsed_seconds()


def format_elapsed(seconds: int) -> str:
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes:02d}:{secs:02d}"


def progress_percent(elapsed_seconds: int, threshold_seconds: int) -> float:
    if threshold_seconds <= 0:
        return 100.0
    return min(elapsed_seconds / threshold_seconds * 100, 100.0)


__all__ = ["SessionTimer", "format_elapsed", "progress_percent"]
