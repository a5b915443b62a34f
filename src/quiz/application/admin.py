import uuid
from datetime import date, datetime, timedelta

from pydantic import ValidationError

from src.config import Difficulty, GameConfig
from src.quiz.application.daily_session import Clock, utc_now
from src.quiz.domain.errors import InvalidQuestionError
from src.quiz.domain.models import (
    ActivityStatus,
    Question,
    Submission,
    User,
    UserStats,
)
from src.quiz.domain.ports import IQuizRepository
from src.shared.telemetry import Telemetry, measure_time


def activity_status(user: User, now: datetime) -> ActivityStatus:
    if user.is_banned:
        return ActivityStatus.BANNED
    if user.last_active is None:
        return ActivityStatus.INACTIVE
    days_since = (now - user.last_active).days
    if days_since <= GameConfig.ACTIVE_USER_DAYS:
        return ActivityStatus.ACTIVE
    return ActivityStatus.INACTIVE


class AdminService:
    """
    Question bank, user moderation and the global quiz switch.
    Callers are expected to have passed AccessGuard.require_admin().
    """

    def __init__(self, repo: IQuizRepository, clock: Clock = utc_now) -> None:
        self.repo = repo
        self.clock = clock
        self.telemetry = Telemetry("AdminService")

    # --- Questions ---

    def list_questions(self) -> list[Question]:
        return self.repo.list_questions()

    @measure_time("add_question")
    def add_question(
        self,
        text: str,
        options: list[str],
        correct_option: int,
        difficulty: Difficulty | str = Difficulty.EASY,
        is_bonus: bool = False,
        bonus_date: date | None = None,
    ) -> Question:
        if not text.strip():
            raise InvalidQuestionError("Question text is empty")
        if any(not o.strip() for o in options):
            raise InvalidQuestionError("Every option needs text")

        try:
            question = Question(
                id=str(uuid.uuid4()),
                text=text.strip(),
                options=[o.strip() for o in options],
                correct_option=correct_option,
                difficulty=difficulty,
                is_bonus=is_bonus,
                bonus_date=bonus_date if is_bonus else None,
            )
        except (ValidationError, ValueError) as e:
            raise InvalidQuestionError(str(e)) from e

        # ConflictError from the store means the date already has a bonus question.
        saved = self.repo.add_question(question)
        self.telemetry.log_info(
            "Question added",
            question_id=saved.id,
            difficulty=saved.difficulty.code,
            bonus_date=str(saved.bonus_date) if saved.bonus_date else None,
        )
        return saved

    def delete_question(self, question_id: str) -> None:
        self.repo.delete_question(question_id)
        self.telemetry.log_info("Question deleted", question_id=question_id)

    # --- Users ---

    @measure_time("list_user_stats")
    def list_user_stats(
        self, search: str = "", status: ActivityStatus | None = None
    ) -> list[UserStats]:
        now = self.clock()
        scores: dict[str, list[int]] = {}
        for attempt in self.repo.list_attempts():
            scores.setdefault(attempt.user_id, []).append(attempt.score)

        needle = search.strip().lower()
        result = []
        for user in self.repo.list_users():
            if needle and needle not in user.name.lower() and needle not in (user.email or "").lower():
                continue
            user_status = activity_status(user, now)
            if status is not None and user_status != status:
                continue
            user_scores = scores.get(user.id, [])
            result.append(
                UserStats(
                    user=user,
                    total_score=sum(user_scores),
                    attempts_count=len(user_scores),
                    status=user_status,
                )
            )
        return result

    def status_counts(self) -> dict[ActivityStatus, int]:
        counts = {s: 0 for s in ActivityStatus}
        for stats in self.list_user_stats():
            counts[stats.status] += 1
        return counts

    def set_banned(self, user_id: str, banned: bool) -> None:
        self.repo.set_banned(user_id, banned)
        self.telemetry.log_info("Ban updated", user_id=user_id, banned=banned)

    def toggle_ban(self, user_id: str) -> bool:
        user = self.repo.get_user(user_id)
        if user is None:
            raise KeyError(user_id)
        self.set_banned(user_id, not user.is_banned)
        return not user.is_banned

    # --- Quiz switch ---

    def is_quiz_enabled(self) -> bool:
        return bool(self.repo.get_setting(GameConfig.QUIZ_ENABLED_KEY, True))

    def set_quiz_enabled(self, enabled: bool) -> None:
        self.repo.set_setting(GameConfig.QUIZ_ENABLED_KEY, enabled)
        self.telemetry.log_info("Quiz switch changed", enabled=enabled)

    def toggle_quiz(self) -> bool:
        enabled = not self.is_quiz_enabled()
        self.set_quiz_enabled(enabled)
        return enabled

    # --- Reporting ---

    def list_submissions(self, limit: int = 100) -> list[Submission]:
        return self.repo.list_submissions(limit)

    def overview(self) -> dict[str, int]:
        today = self.clock().date()
        users = self.repo.list_users()
        bank = self.repo.count_questions_by_difficulty()
        played_today = sum(
            1 for a in self.repo.list_attempts() if a.attempt_date == today
        )
        recently_active = sum(
            1
            for u in users
            if u.last_active and self.clock() - u.last_active <= timedelta(days=1)
        )
        return {
            "users": len(users),
            "questions": sum(bank.values()),
            "played_today": played_today,
            "active_last_24h": recently_active,
        }
