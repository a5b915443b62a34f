import math
from datetime import datetime

from src.config import GameConfig


class QuestionTimer:
    """
    Per-question countdown derived from a persisted start instant.

    The timer never stores a running counter of its own: remaining time is always
    `duration - (now - started_at)`, so a reload lands exactly where the stored
    instant says. While suspended (result on screen, submission in flight) the
    displayed value is frozen.
    """

    def __init__(self, duration_seconds: int = GameConfig.QUESTION_TIMER_SECONDS):
        self.duration_seconds = duration_seconds
        self.started_at: datetime | None = None
        self._frozen: int | None = None

    @staticmethod
    def remaining_from(
        started_at: datetime,
        now: datetime,
        duration_seconds: int = GameConfig.QUESTION_TIMER_SECONDS,
    ) -> int:
        elapsed = math.floor((now - started_at).total_seconds())
        return max(0, duration_seconds - max(0, elapsed))

    @property
    def is_running(self) -> bool:
        return self.started_at is not None and self._frozen is None

    @property
    def is_suspended(self) -> bool:
        return self._frozen is not None

    def start(self, started_at: datetime) -> None:
        self.started_at = started_at
        self._frozen = None

    def stop(self) -> None:
        self.started_at = None
        self._frozen = None

    def remaining(self, now: datetime) -> int:
        if self._frozen is not None:
            return self._frozen
        if self.started_at is None:
            return self.duration_seconds
        return self.remaining_from(self.started_at, now, self.duration_seconds)

    def is_expired(self, now: datetime) -> bool:
        return self.is_running and self.remaining(now) <= 0

    def suspend(self, now: datetime) -> None:
        if self._frozen is None:
            self._frozen = self.remaining(now)

    def resume(self) -> None:
        self._frozen = None

    def tick(self, now: datetime) -> int:
        """One-second heartbeat from the UI. Returns the value to display."""
        return self.remaining(now)
