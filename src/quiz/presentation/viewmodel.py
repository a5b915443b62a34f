from src.fsm import TERMINAL_STATES
from src.quiz.application.access import AccessGuard
from src.quiz.application.daily_session import AnswerOutcome, DailyQuizSession, QuizSnapshot
from src.quiz.application.service import QuizService
from src.quiz.domain.errors import (
    InsufficientQuestionsError,
    QuizDisabledError,
    StorageError,
    UnauthenticatedError,
    UnauthorizedError,
)
from src.quiz.presentation.state_provider import IStateProvider
from src.shared.telemetry import Telemetry

SESSION_KEY = "daily_quiz"
ERROR_KEY = "quiz_error"
ROUTE_KEY = "route"


class QuizViewModel:
    """
    Glue between the Streamlit views and DailyQuizSession.

    Keeps one orchestrator per browser session and turns domain errors into
    screen state: a route change or a message with a retry affordance.
    """

    def __init__(self, service: QuizService, guard: AccessGuard, state_provider: IStateProvider):
        self.service = service
        self.guard = guard
        self.state = state_provider
        self.telemetry = Telemetry("ViewModel")

    # --- Properties ---

    @property
    def quiz(self) -> DailyQuizSession | None:
        return self.state.get(SESSION_KEY)

    @property
    def error(self) -> str | None:
        return self.state.get(ERROR_KEY)

    @property
    def route(self) -> str:
        return self.state.get(ROUTE_KEY, "dashboard")

    def navigate(self, route: str) -> None:
        self.state.set(ROUTE_KEY, route)
        self.state.set(ERROR_KEY, None)

    def snapshot(self) -> QuizSnapshot | None:
        quiz = self.quiz
        return quiz.snapshot() if quiz else None

    # --- Actions ---

    def open_quiz(self) -> QuizSnapshot | None:
        """Entering the quiz route. Re-derives everything from storage."""
        self.state.set(ERROR_KEY, None)
        try:
            user = self.guard.require_quiz_access()
        except UnauthenticatedError:
            self.navigate("login")
            return None
        except UnauthorizedError as e:
            self.navigate("blocked" if e.reason == "banned" else "dashboard")
            return None
        except QuizDisabledError:
            self.navigate("dashboard")
            self.state.set(ERROR_KEY, "المسابقة متوقفة حالياً")
            return None

        quiz = self.service.open_session(user.id)
        self.state.set(SESSION_KEY, quiz)
        return self._guarded(quiz.enter)

    def confirm_start(self) -> QuizSnapshot | None:
        quiz = self.quiz
        if quiz is None:
            return None
        try:
            return quiz.confirm_start()
        except InsufficientQuestionsError as e:
            found = ", ".join(f"{t.label}: {n}" for t, n in e.shortfalls.items())
            bank = ", ".join(f"{t.label}: {n}" for t, n in e.bank_counts.items())
            self.state.set(
                ERROR_KEY,
                f"عذراً، لا يوجد أسئلة كافية! ({found})، في بنك الأسئلة: {bank}",
            )
            return quiz.snapshot()
        except StorageError as e:
            self._storage_failed(e)
            return quiz.snapshot()

    def answer(self, option_index: int) -> AnswerOutcome | None:
        quiz = self.quiz
        if quiz is None:
            return None
        try:
            outcome = quiz.submit_answer(option_index)
        except StorageError as e:
            self._storage_failed(e)
            return None
        self.state.set(ERROR_KEY, None)
        return outcome

    def heartbeat(self) -> QuizSnapshot | None:
        """
        Called on every rerun. Retries an entry step that failed on storage,
        then ticks the timer and leaves finished result screens.
        """
        quiz = self.quiz
        if quiz is None:
            return None
        try:
            quiz.recover()
            quiz.tick()
            if quiz.reveal_finished():
                quiz.advance()
        except StorageError as e:
            self._storage_failed(e)
        return quiz.snapshot()

    def _guarded(self, action) -> QuizSnapshot | None:
        quiz = self.quiz
        try:
            return action()
        except StorageError as e:
            self._storage_failed(e)
            return quiz.snapshot() if quiz else None

    def _storage_failed(self, error: StorageError) -> None:
        self.telemetry.log_error("Storage failure surfaced to user", error)
        self.state.set(ERROR_KEY, "حدث خطأ أثناء حفظ الإجابة. يرجى المحاولة مرة أخرى.")

    def is_finished(self) -> bool:
        quiz = self.quiz
        return quiz is not None and quiz.state in TERMINAL_STATES
