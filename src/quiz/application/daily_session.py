from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from src.config import Difficulty, GameConfig
from src.fsm import TIMED_STATES, QuizAction, QuizState, QuizStateMachine
from src.quiz.domain.bonus_gate import BonusUnlockGate
from src.quiz.domain.errors import ConflictError, StorageError
from src.quiz.domain.models import (
    TIMEOUT_ANSWER,
    AnswerRecord,
    DailySession,
    Question,
)
from src.quiz.domain.ports import IQuizRepository
from src.quiz.domain.question_selector import QuestionSelector
from src.quiz.domain.scoring import ScoringPolicy
from src.quiz.domain.timer import QuestionTimer
from src.shared.telemetry import Telemetry, measure_time, record_answer_metric

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AnswerOutcome:
    question: Question
    chosen_option: int
    is_correct: bool
    score: int
    total_score: int
    is_bonus: bool = False
    # True when the answer had already been recorded (other tab, retry).
    duplicate: bool = False

    @property
    def timed_out(self) -> bool:
        return self.chosen_option == TIMEOUT_ANSWER


@dataclass
class QuizSnapshot:
    """Everything a view needs to draw the quiz screen."""

    state: QuizState
    session: DailySession | None
    question: Question | None
    remaining_seconds: int
    last_outcome: AnswerOutcome | None
    answers: list[AnswerRecord] = field(default_factory=list)
    submitting: bool = False

    @property
    def question_number(self) -> int:
        if self.session is None:
            return 0
        return min(self.session.current_question_index + 1, len(self.session.question_ids))


class DailyQuizSession:
    """
    Orchestrates one user's quiz for one day.

    Lifecycle:
        NO_SESSION -> AWAITING_CONFIRMATION -> QUESTION_ACTIVE(i) -> ANSWER_REVEALED(i)
        -> QUESTION_ACTIVE(i+1) | COMPLETED -> BONUS_OFFERED -> BONUS_REVEALED -> BONUS_DONE

    Every decision is re-derived from the stored session row, so building a new
    instance and calling `enter()` is how a reload recovers.
    """

    def __init__(
        self,
        repo: IQuizRepository,
        user_id: str,
        selector: QuestionSelector | None = None,
        clock: Clock = utc_now,
        timer_seconds: int = GameConfig.QUESTION_TIMER_SECONDS,
        reveal_seconds: int = GameConfig.RESULT_DISPLAY_SECONDS,
    ) -> None:
        self.repo = repo
        self.user_id = user_id
        self.selector = selector or QuestionSelector(repo)
        self.clock = clock
        self.reveal_seconds = reveal_seconds
        self.telemetry = Telemetry("DailyQuizSession")

        self.fsm = QuizStateMachine()
        self.timer = QuestionTimer(timer_seconds)
        self.session: DailySession | None = None
        self.question: Question | None = None
        self.answers: list[AnswerRecord] = []
        self.last_outcome: AnswerOutcome | None = None
        self.revealed_at: datetime | None = None
        self.submitting = False
        self.bonus_checked = False

    # --- Properties ---

    @property
    def state(self) -> QuizState:
        return self.fsm.current_state

    @property
    def today(self) -> date:
        return self.clock().date()

    def snapshot(self) -> QuizSnapshot:
        return QuizSnapshot(
            state=self.state,
            session=self.session,
            question=self.question,
            remaining_seconds=self.timer.remaining(self.clock()),
            last_outcome=self.last_outcome,
            answers=list(self.answers),
            submitting=self.submitting,
        )

    # --- Entry ---

    @measure_time("enter_quiz")
    def enter(self) -> QuizSnapshot:
        Telemetry.start_trace()
        self.fsm.transition(QuizAction.RESET)
        self.session = None
        self.question = None
        self.answers = []
        self.last_outcome = None
        self.bonus_checked = False
        self.timer.stop()

        existing = self.repo.find_session(self.user_id, self.today)
        if existing is None:
            self.fsm.transition(QuizAction.START_NEW)
            self.telemetry.log_info("No session today", user_id=self.user_id)
        else:
            self._resume(existing)
        return self.snapshot()

    @measure_time("confirm_start")
    def confirm_start(self) -> QuizSnapshot:
        """Explicit user acknowledgement. Only now are questions picked and the row created."""
        Telemetry.start_trace()
        if self.state != QuizState.AWAITING_CONFIRMATION:
            self.telemetry.log_info("Start ignored", state=self.state.name)
            return self.snapshot()

        questions = self.selector.select(self.user_id)
        now = self.clock()

        try:
            session = self.repo.create_session(
                self.user_id, now.date(), [q.id for q in questions], now
            )
        except ConflictError:
            # Another tab created today's row first; continue with that one.
            self.telemetry.log_info("Session already exists, resuming", user_id=self.user_id)
            existing = self.repo.find_session(self.user_id, now.date())
            if existing is None:
                raise StorageError("Session conflict reported but no row found")
            self._resume(existing)
            return self.snapshot()

        self.session = session
        self.answers = []
        self.question = questions[0]
        self.timer.start(now)
        self.fsm.transition(QuizAction.CONFIRM)
        self.telemetry.log_info("Session created", session_id=session.id)
        return self.snapshot()

    def _resume(self, session: DailySession) -> None:
        self.session = session
        self.answers = self.repo.get_session_answers(session.id)

        if session.completed:
            if session.has_bonus:
                self.fsm.transition(QuizAction.RESUME_BONUS_DONE)
                return
            self.fsm.transition(QuizAction.RESUME_COMPLETED)
            self._unlock_bonus()
            return

        question_id = session.current_question_id
        if question_id is None:
            raise StorageError(f"Session {session.id} has no current question")

        question = self._load_question(question_id)
        self._begin_countdown(question, QuizAction.RESUME_QUESTION, session.question_started_at)

    def _load_question(self, question_id: str) -> Question:
        question = self.repo.get_question(question_id)
        if question is None:
            raise StorageError(f"Question {question_id} is missing")
        return question

    def _begin_countdown(
        self, question: Question, action: QuizAction, started_at: datetime | None
    ) -> None:
        """
        Enters a timed state, continuing the countdown from the stored instant.
        A missing instant is stored as "now" first, so reloads cannot reset it;
        if that write fails the orchestrator stays out of the timed state.
        """
        assert self.session is not None
        if started_at is None:
            started_at = self.clock()
            self.repo.update_session(self.session.id, {"question_started_at": started_at})
            self.session.question_started_at = started_at

        self.question = question
        self.timer.start(started_at)
        self.fsm.transition(action)
        if self.timer.remaining(self.clock()) <= 0:
            self.telemetry.log_info("Time ran out while away", session_id=self.session.id)
            self.timeout()

    # --- Answering ---

    @measure_time("submit_answer")
    def submit_answer(self, option_index: int) -> AnswerOutcome | None:
        Telemetry.start_trace()
        if not 0 <= option_index < GameConfig.OPTIONS_PER_QUESTION:
            raise ValueError(f"Option index out of range: {option_index}")
        return self._answer(option_index)

    @measure_time("timeout")
    def timeout(self) -> AnswerOutcome | None:
        return self._answer(TIMEOUT_ANSWER)

    def tick(self) -> int:
        """
        One-second heartbeat. Fires the timeout once the countdown reaches zero.
        """
        now = self.clock()
        if self.state not in TIMED_STATES or self.submitting:
            return self.timer.remaining(now)

        remaining = self.timer.tick(now)
        if remaining <= 0:
            self.timeout()
            return 0
        return remaining

    def _answer(self, chosen: int) -> AnswerOutcome | None:
        state = self.state
        if state not in TIMED_STATES or self.question is None or self.session is None:
            self.telemetry.log_info("Answer ignored", state=state.name, chosen=chosen)
            return None
        if self.submitting:
            self.telemetry.log_info("Answer ignored, submission in flight")
            return None

        self.submitting = True
        self.timer.suspend(self.clock())
        try:
            if state == QuizState.QUESTION_ACTIVE:
                outcome = self._commit_required(self.question, chosen)
            else:
                outcome = self._commit_bonus(self.question, chosen)
        except Exception:
            # Nothing advanced in memory; the same action can be retried.
            self.timer.resume()
            raise
        finally:
            self.submitting = False

        self.last_outcome = outcome
        self.revealed_at = self.clock()
        self.fsm.transition(QuizAction.ANSWER)
        return outcome

    def _reread(self) -> DailySession:
        assert self.session is not None
        fresh = self.repo.get_session(self.session.id)
        if fresh is None:
            raise StorageError(f"Session {self.session.id} disappeared")
        return fresh

    def _commit_required(self, question: Question, chosen: int) -> AnswerOutcome:
        fresh = self._reread()
        if fresh.current_question_id != question.id:
            return self._resync(fresh, question, is_bonus=False)

        is_correct = question.is_correct(chosen)
        score = ScoringPolicy.award(question.difficulty, is_correct)
        next_index = fresh.current_question_index + 1
        completed = next_index >= len(fresh.question_ids)
        now = self.clock()

        updated = fresh.model_copy(
            update={
                "current_question_index": next_index,
                "total_score": fresh.total_score + score,
                "completed": completed,
                "question_started_at": None if completed else now,
            }
        )
        answer = AnswerRecord(
            session_id=fresh.id,
            question_id=question.id,
            chosen_option=chosen,
            is_correct=is_correct,
            score=score,
            created_at=now,
        )

        try:
            self.repo.commit_answer(
                updated,
                answer,
                expected_index=fresh.current_question_index,
                count_participation=completed,
            )
        except ConflictError:
            return self._resync(self._reread(), question, is_bonus=False)

        self._applied(updated, answer, question.difficulty)
        return AnswerOutcome(
            question=question,
            chosen_option=chosen,
            is_correct=is_correct,
            score=score,
            total_score=updated.total_score,
        )

    def _commit_bonus(self, question: Question, chosen: int) -> AnswerOutcome:
        fresh = self._reread()
        if fresh.has_bonus or self.repo.get_answer(fresh.id, question.id) is not None:
            return self._resync(fresh, question, is_bonus=True)

        is_correct = question.is_correct(chosen)
        score = ScoringPolicy.award(Difficulty.BONUS, is_correct)
        now = self.clock()

        updated = fresh.model_copy(
            update={
                "total_score": fresh.total_score + score,
                "has_bonus": True,
                "question_started_at": None,
            }
        )
        answer = AnswerRecord(
            session_id=fresh.id,
            question_id=question.id,
            chosen_option=chosen,
            is_correct=is_correct,
            score=score,
            created_at=now,
        )

        try:
            self.repo.commit_answer(
                updated,
                answer,
                expected_index=fresh.current_question_index,
                count_participation=False,
            )
        except ConflictError:
            return self._resync(self._reread(), question, is_bonus=True)

        self._applied(updated, answer, Difficulty.BONUS)
        return AnswerOutcome(
            question=question,
            chosen_option=chosen,
            is_correct=is_correct,
            score=score,
            total_score=updated.total_score,
            is_bonus=True,
        )

    def _applied(self, updated: DailySession, answer: AnswerRecord, tier: Difficulty) -> None:
        self.session = updated
        self.answers.append(answer)

        if answer.timed_out:
            outcome = "timeout"
        else:
            outcome = "correct" if answer.is_correct else "incorrect"
        record_answer_metric(tier.code, outcome)

        self.telemetry.log_info(
            "Answer recorded",
            session_id=updated.id,
            question_id=answer.question_id,
            tier=tier.code,
            outcome=outcome,
            score=answer.score,
            total=updated.total_score,
            completed=updated.completed,
        )

    def _resync(self, fresh: DailySession, question: Question, is_bonus: bool) -> AnswerOutcome:
        """The stored row already moved past this question: adopt it, score nothing."""
        self.session = fresh
        self.answers = self.repo.get_session_answers(fresh.id)
        existing = next((a for a in self.answers if a.question_id == question.id), None)

        self.telemetry.log_info(
            "Duplicate answer ignored",
            session_id=fresh.id,
            question_id=question.id,
            index=fresh.current_question_index,
        )
        return AnswerOutcome(
            question=question,
            chosen_option=existing.chosen_option if existing else TIMEOUT_ANSWER,
            is_correct=existing.is_correct if existing else False,
            score=existing.score if existing else 0,
            total_score=fresh.total_score,
            is_bonus=is_bonus,
            duplicate=True,
        )

    # --- After the reveal ---

    def reveal_finished(self) -> bool:
        if self.state not in (QuizState.ANSWER_REVEALED, QuizState.BONUS_REVEALED):
            return False
        if self.revealed_at is None:
            return True
        return (self.clock() - self.revealed_at).total_seconds() >= self.reveal_seconds

    @measure_time("advance")
    def advance(self) -> QuizSnapshot:
        """Leaves the result screen: next question, completion or end of bonus."""
        Telemetry.start_trace()
        if self.state == QuizState.BONUS_REVEALED:
            self.fsm.transition(QuizAction.FINISH)
            self.question = None
            self.timer.stop()
            return self.snapshot()

        if self.state != QuizState.ANSWER_REVEALED:
            self.telemetry.log_info("Advance ignored", state=self.state.name)
            return self.snapshot()

        if self.last_outcome is not None and self.last_outcome.duplicate:
            # Another tab already moved on: follow the stored row and its countdown.
            fresh = self._reread()
            self.fsm.transition(QuizAction.RESET)
            self.question = None
            self.timer.stop()
            self._resume(fresh)
            return self.snapshot()

        assert self.session is not None
        if self.session.completed:
            self.fsm.transition(QuizAction.FINISH)
            self.question = None
            self.timer.stop()
            self._unlock_bonus()
            return self.snapshot()

        question_id = self.session.current_question_id
        if question_id is None:
            raise StorageError(f"Session {self.session.id} has no current question")

        question = self._load_question(question_id)
        now = self.clock()
        self.repo.update_session(self.session.id, {"question_started_at": now})
        self.session.question_started_at = now

        self.question = question
        self.timer.start(now)
        self.fsm.transition(QuizAction.NEXT_QUESTION)
        return self.snapshot()

    # --- Bonus ---

    def _unlock_bonus(self) -> None:
        assert self.session is not None
        if self.session.has_bonus:
            self.bonus_checked = True
            return

        bonus = self.repo.find_bonus_question(self.session.session_date)
        self.answers = self.repo.get_session_answers(self.session.id)
        answered = {a.question_id for a in self.answers}

        offered = BonusUnlockGate.select(self.session.session_date, [bonus], answered)
        if offered is None:
            self.bonus_checked = True
            return

        self.telemetry.log_info("Bonus offered", question_id=offered.id)
        self._begin_countdown(offered, QuizAction.OFFER_BONUS, self.session.question_started_at)
        self.bonus_checked = True

    # --- Recovery ---

    def recover(self) -> QuizSnapshot:
        """
        Retries an entry step that stopped on a storage failure: resuming the
        stored row, or looking up today's bonus once the day is completed.
        """
        if self.state == QuizState.NO_SESSION:
            return self.enter()
        if self.state == QuizState.COMPLETED and not self.bonus_checked:
            self._unlock_bonus()
        return self.snapshot()
