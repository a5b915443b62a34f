import random

from src.config import GameConfig
from src.quiz.application.daily_session import Clock, DailyQuizSession, utc_now
from src.quiz.domain.bonus_gate import BonusUnlockGate
from src.quiz.domain.models import DashboardSummary, User
from src.quiz.domain.ports import IQuizRepository
from src.quiz.domain.question_selector import QuestionSelector
from src.quiz.domain.streak import current_streak
from src.shared.telemetry import Telemetry, measure_time


class QuizService:
    """
    Application entry point for the player side: builds per-day quiz sessions
    and the dashboard summary.
    """

    def __init__(
        self,
        repo: IQuizRepository,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ):
        self.repo = repo
        self.clock = clock
        self.selector = QuestionSelector(repo, rng=rng)
        self.telemetry = Telemetry("QuizService")

    @property
    def repository(self) -> IQuizRepository:
        return self.repo

    def open_session(self, user_id: str) -> DailyQuizSession:
        """A fresh orchestrator; call `enter()` on it to load today's state."""
        return DailyQuizSession(
            self.repo,
            user_id,
            selector=self.selector,
            clock=self.clock,
            timer_seconds=GameConfig.QUESTION_TIMER_SECONDS,
            reveal_seconds=GameConfig.RESULT_DISPLAY_SECONDS,
        )

    @measure_time("dashboard_summary")
    def get_dashboard_summary(self, user: User) -> DashboardSummary:
        today = self.clock().date()
        session = self.repo.find_session(user.id, today)
        streak = current_streak(self.repo.get_completed_session_dates(user.id), today)

        bonus_available = False
        if session is not None and session.completed and not session.has_bonus:
            answered = {a.question_id for a in self.repo.get_session_answers(session.id)}
            bonus_available = BonusUnlockGate.should_offer(
                today, [self.repo.find_bonus_question(today)], answered
            )

        return DashboardSummary(
            user_name=user.name,
            today_score=session.total_score if session else 0,
            streak_days=streak,
            total_days_participated=user.total_days_participated,
            quiz_enabled=bool(self.repo.get_setting(GameConfig.QUIZ_ENABLED_KEY, True)),
            completed_today=bool(session and session.completed),
            max_daily_points=GameConfig.MAX_DAILY_POINTS,
            bonus_available=bonus_available,
        )
