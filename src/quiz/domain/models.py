from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, model_validator

from src.config import Difficulty, GameConfig

# Chosen option index recorded when the timer ran out.
TIMEOUT_ANSWER = -1


# --- Enums ---
class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ActivityStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BANNED = "banned"


# --- Entities ---
class User(BaseModel):
    id: str
    email: str | None = None
    name: str = "User"
    role: UserRole = UserRole.USER
    is_banned: bool = False
    last_active: datetime | None = None
    total_days_participated: int = 0

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Question(BaseModel):
    id: str
    text: str
    options: list[str]
    correct_option: int
    difficulty: Difficulty = Difficulty.EASY
    is_bonus: bool = False
    bonus_date: date | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "Question":
        if len(self.options) != GameConfig.OPTIONS_PER_QUESTION:
            raise ValueError(
                f"A question needs exactly {GameConfig.OPTIONS_PER_QUESTION} options"
            )
        if not 0 <= self.correct_option < len(self.options):
            raise ValueError("correct_option is out of range")
        if self.difficulty == Difficulty.BONUS:
            raise ValueError("BONUS is a scoring tier, not a question difficulty")
        if self.is_bonus and self.bonus_date is None:
            raise ValueError("A bonus question needs a bonus_date")
        if not self.is_bonus and self.bonus_date is not None:
            raise ValueError("Only bonus questions carry a bonus_date")
        return self

    def is_eligible_on(self, day: date) -> bool:
        return self.is_bonus and self.bonus_date == day

    def is_correct(self, chosen: int) -> bool:
        return chosen != TIMEOUT_ANSWER and chosen == self.correct_option


class DailySession(BaseModel):
    """
    One row per (user, calendar date). Tracks progress through the required questions.
    """

    id: str
    user_id: str
    session_date: date
    question_ids: list[str]
    current_question_index: int = 0
    total_score: int = 0
    completed: bool = False
    has_bonus: bool = False
    question_started_at: datetime | None = None

    @property
    def current_question_id(self) -> str | None:
        if self.completed or self.current_question_index >= len(self.question_ids):
            return None
        return self.question_ids[self.current_question_index]


class AnswerRecord(BaseModel):
    session_id: str
    question_id: str
    chosen_option: int
    is_correct: bool
    score: int
    created_at: datetime | None = None

    @property
    def timed_out(self) -> bool:
        return self.chosen_option == TIMEOUT_ANSWER


class Attempt(BaseModel):
    """Denormalized per-(user, date) score projection feeding the leaderboard."""

    user_id: str
    attempt_date: date
    score: int = 0
    user_name: str | None = None


# --- Read Models ---
class LeaderboardEntry(BaseModel):
    user_id: str
    name: str
    total_score: int
    rank: int


class Submission(BaseModel):
    answer: AnswerRecord
    session_date: date
    user_name: str
    user_email: str | None = None
    question: Question | None = None


class UserStats(BaseModel):
    user: User
    total_score: int = 0
    attempts_count: int = 0
    status: ActivityStatus = ActivityStatus.INACTIVE


class DashboardSummary(BaseModel):
    user_name: str
    today_score: int = 0
    streak_days: int = 0
    total_days_participated: int = 0
    quiz_enabled: bool = True
    completed_today: bool = False
    max_daily_points: int = GameConfig.MAX_DAILY_POINTS
    bonus_available: bool = False
