import os
from enum import Enum
from typing import Final


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    BONUS = "bonus"

    @property
    def code(self) -> str:
        return self.value

    @property
    def points(self) -> int:
        return TIER_POINTS[self.value]

    @property
    def label(self) -> str:
        return TIER_LABELS[self.value]

    @classmethod
    def from_code(cls, code: str) -> "Difficulty":
        return cls(code)

    @classmethod
    def required(cls) -> list["Difficulty"]:
        """The ordinary tiers served every day, in serving order."""
        return [cls.EASY, cls.MEDIUM, cls.HARD]


TIER_POINTS: Final[dict[str, int]] = {"easy": 5, "medium": 10, "hard": 15, "bonus": 20}
TIER_LABELS: Final[dict[str, str]] = {
    "easy": "سهل",
    "medium": "متوسط",
    "hard": "صعب",
    "bonus": "بونص",
}


class GameConfig:
    # --- Infrastructure Switch ---
    USE_SQLITE: bool = _env_flag("QUIZ_USE_SQLITE", True)
    DB_PATH: str = os.getenv("QUIZ_DB_PATH", "data/quiz.db")
    SEED_FILE: str = os.getenv("QUIZ_SEED_FILE", "data/seed_questions.json")
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_KEY: str | None = os.getenv("SUPABASE_KEY")
    METRICS_PORT: int = int(os.getenv("QUIZ_METRICS_PORT", "8000"))

    # --- App Identity ---
    APP_TITLE = "مسابقة رمضان"

    # --- Game Rules ---
    QUESTIONS_PER_DAY: Final[int] = 3
    OPTIONS_PER_QUESTION: Final[int] = 4
    QUESTION_TIMER_SECONDS: Final[int] = 25
    RESULT_DISPLAY_SECONDS: Final[int] = 2
    MAX_DAILY_POINTS: Final[int] = sum(t.points for t in Difficulty.required())

    # --- Selection ---
    CANDIDATE_POOL_LIMIT: Final[int] = 20

    # --- Admin ---
    ACTIVE_USER_DAYS: Final[int] = 2

    # --- Settings Keys ---
    QUIZ_ENABLED_KEY: Final[str] = "quiz_enabled"
