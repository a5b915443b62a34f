# ==============================================================================
# ARCHITECTURE: FUNCTIONAL TEST (USER FLOWS)
# ------------------------------------------------------------------------------
# GOAL: Drive DailyQuizSession end to end against an in-memory SQLite store.
# CONSTRAINTS:
#   1. CLOCK: Injected FrozenClock, never the wall clock.
#   2. RANDOMNESS: Seeded random.Random.
# ==============================================================================
from datetime import timedelta
from unittest.mock import patch

import pytest

from src.config import Difficulty
from src.fsm import QuizState
from src.quiz.application.daily_session import DailyQuizSession
from src.quiz.domain.errors import InsufficientQuestionsError, StorageError
from src.quiz.domain.models import TIMEOUT_ANSWER
from src.quiz.domain.question_selector import QuestionSelector


@pytest.fixture
def open_quiz(populated_repo, sample_user_id, clock, rng):
    """Factory: a new orchestrator is what a reload or a second tab gets."""

    def _open(repo=populated_repo):
        return DailyQuizSession(
            repo,
            sample_user_id,
            selector=QuestionSelector(repo, rng=rng),
            clock=clock,
            timer_seconds=25,
            reveal_seconds=2,
        )

    return _open


@pytest.fixture
def started(open_quiz):
    quiz = open_quiz()
    quiz.enter()
    quiz.confirm_start()
    return quiz


def answer_and_advance(quiz, clock, option):
    outcome = quiz.submit_answer(option)
    clock.advance(2)
    quiz.advance()
    return outcome


class TestStart:
    def test_no_row_until_confirmed(self, open_quiz, populated_repo, sample_user_id, today):
        quiz = open_quiz()

        snap = quiz.enter()

        assert snap.state == QuizState.AWAITING_CONFIRMATION
        assert populated_repo.find_session(sample_user_id, today) is None

    def test_confirm_creates_session_with_three_tiers(
        self, open_quiz, populated_repo, sample_user_id, today, clock
    ):
        quiz = open_quiz()
        quiz.enter()

        snap = quiz.confirm_start()

        row = populated_repo.find_session(sample_user_id, today)
        assert row.question_ids == ["e1", "m1", "h1"]
        assert row.current_question_index == 0
        assert row.total_score == 0
        assert row.question_started_at == clock()
        assert snap.state == QuizState.QUESTION_ACTIVE
        assert snap.question.id == "e1"
        assert snap.remaining_seconds == 25

    def test_bonus_question_is_never_a_required_question(self, started):
        assert "b1" not in started.session.question_ids

    def test_insufficient_questions_creates_nothing(
        self, in_memory_repo, open_quiz, question_factory, sample_user_id, today
    ):
        in_memory_repo.seed_questions(
            [question_factory("e1"), question_factory("m1", Difficulty.MEDIUM)]
        )
        quiz = open_quiz(in_memory_repo)
        quiz.enter()

        with pytest.raises(InsufficientQuestionsError) as exc_info:
            quiz.confirm_start()

        assert exc_info.value.tiers == [Difficulty.HARD]
        assert in_memory_repo.find_session(sample_user_id, today) is None
        assert quiz.state == QuizState.AWAITING_CONFIRMATION

    def test_second_tab_confirming_resumes_existing_session(self, open_quiz):
        tab_a, tab_b = open_quiz(), open_quiz()
        tab_a.enter()
        tab_b.enter()

        tab_a.confirm_start()
        snap = tab_b.confirm_start()

        assert snap.state == QuizState.QUESTION_ACTIVE
        assert snap.session.id == tab_a.session.id

    def test_confirm_outside_confirmation_is_ignored(self, started, populated_repo):
        session_id = started.session.id
        started.confirm_start()
        assert started.session.id == session_id


class TestAnswering:
    def test_correct_easy_answer(self, started, populated_repo, sample_user_id, today):
        outcome = started.submit_answer(0)

        assert outcome.is_correct
        assert outcome.score == 5
        row = populated_repo.find_session(sample_user_id, today)
        assert row.current_question_index == 1
        assert row.total_score == 5
        assert populated_repo.list_attempts()[0].score == 5
        assert started.state == QuizState.ANSWER_REVEALED

    def test_wrong_answer_scores_nothing_but_advances(self, started, populated_repo):
        outcome = started.submit_answer(3)

        assert not outcome.is_correct
        assert outcome.score == 0
        assert populated_repo.get_session(started.session.id).current_question_index == 1

    def test_out_of_range_option_is_rejected(self, started):
        with pytest.raises(ValueError):
            started.submit_answer(4)
        assert started.state == QuizState.QUESTION_ACTIVE

    def test_answer_outside_timed_state_is_ignored(self, started):
        started.submit_answer(0)
        assert started.submit_answer(1) is None

    def test_reveal_then_next_question_gets_full_time(self, started, clock, populated_repo):
        started.submit_answer(0)

        clock.advance(1)
        assert started.reveal_finished() is False
        clock.advance(1)
        assert started.reveal_finished() is True

        snap = started.advance()

        assert snap.state == QuizState.QUESTION_ACTIVE
        assert snap.question.id == "m1"
        assert snap.remaining_seconds == 25
        assert populated_repo.get_session(started.session.id).question_started_at == clock()

    def test_display_is_frozen_while_result_shown(self, started, clock):
        clock.advance(10)
        started.submit_answer(0)
        clock.advance(5)
        assert started.snapshot().remaining_seconds == 15

    def test_storage_failure_leaves_question_retryable(self, started, populated_repo):
        with patch.object(populated_repo, "commit_answer", side_effect=StorageError("down")):
            with pytest.raises(StorageError):
                started.submit_answer(0)

        assert started.state == QuizState.QUESTION_ACTIVE
        assert started.submitting is False
        assert started.timer.is_running
        assert populated_repo.get_session_answers(started.session.id) == []

        outcome = started.submit_answer(0)
        assert outcome.score == 5


class TestTimer:
    def test_tick_fires_timeout_at_zero(self, started, clock, populated_repo):
        clock.advance(24)
        assert started.tick() == 1

        clock.advance(1)
        assert started.tick() == 0

        answer = populated_repo.get_answer(started.session.id, "e1")
        assert answer.chosen_option == TIMEOUT_ANSWER
        assert answer.score == 0
        assert started.state == QuizState.ANSWER_REVEALED
        assert started.last_outcome.timed_out

    def test_reload_after_deadline_times_out_immediately(
        self, started, open_quiz, clock, populated_repo
    ):
        clock.advance(26)

        reloaded = open_quiz()
        snap = reloaded.enter()

        assert snap.state == QuizState.ANSWER_REVEALED
        assert populated_repo.get_answer(started.session.id, "e1").chosen_option == TIMEOUT_ANSWER
        assert populated_repo.get_session(started.session.id).current_question_index == 1

    def test_reload_continues_countdown(self, started, open_quiz, clock):
        clock.advance(10)

        snap = open_quiz().enter()

        assert snap.state == QuizState.QUESTION_ACTIVE
        assert snap.remaining_seconds == 15

    def test_missing_start_instant_is_persisted_before_countdown(
        self, started, open_quiz, clock, populated_repo
    ):
        populated_repo.update_session(started.session.id, {"question_started_at": None})
        clock.advance(100)

        snap = open_quiz().enter()

        assert snap.state == QuizState.QUESTION_ACTIVE
        assert snap.remaining_seconds == 25
        assert populated_repo.get_session(started.session.id).question_started_at == clock()

    def test_failed_start_instant_write_does_not_open_an_untimed_question(
        self, started, open_quiz, clock, populated_repo
    ):
        populated_repo.update_session(started.session.id, {"question_started_at": None})
        reloaded = open_quiz()

        with patch.object(populated_repo, "update_session", side_effect=StorageError("down")):
            with pytest.raises(StorageError):
                reloaded.enter()

        assert reloaded.state == QuizState.NO_SESSION
        assert reloaded.question is None
        clock.advance(3600)
        assert reloaded.submit_answer(0) is None
        assert populated_repo.get_session_answers(started.session.id) == []

        snap = reloaded.recover()

        assert snap.state == QuizState.QUESTION_ACTIVE
        assert snap.remaining_seconds == 25
        assert populated_repo.get_session(started.session.id).question_started_at == clock()


class TestCompletion:
    def test_full_day_with_timeout_on_hard(
        self, started, clock, populated_repo, sample_user_id
    ):
        answer_and_advance(started, clock, 0)  # easy, correct
        answer_and_advance(started, clock, 1)  # medium, wrong

        clock.advance(25)
        started.tick()

        row = populated_repo.get_session(started.session.id)
        assert row.completed
        assert row.total_score == 5
        assert row.question_started_at is None
        assert populated_repo.get_answer(row.id, "h1").chosen_option == TIMEOUT_ANSWER
        assert populated_repo.get_user(sample_user_id).total_days_participated == 1

    def test_bonus_offered_after_required_questions(self, started, clock):
        for option in (0, 0, 0):
            answer_and_advance(started, clock, option)

        snap = started.snapshot()
        assert snap.state == QuizState.BONUS_OFFERED
        assert snap.question.id == "b1"
        assert snap.remaining_seconds == 25

    def test_bonus_adds_twenty_without_counting_another_day(
        self, started, clock, populated_repo, sample_user_id
    ):
        for option in (0, 0, 0):
            answer_and_advance(started, clock, option)

        outcome = started.submit_answer(0)
        clock.advance(2)
        snap = started.advance()

        assert outcome.is_bonus and outcome.score == 20
        assert snap.state == QuizState.BONUS_DONE
        row = populated_repo.get_session(started.session.id)
        assert row.total_score == 50
        assert row.has_bonus
        assert populated_repo.list_attempts()[0].score == 50
        assert populated_repo.get_user(sample_user_id).total_days_participated == 1

    def test_no_bonus_question_today_stays_completed(
        self, started, clock, populated_repo
    ):
        populated_repo.delete_question("b1")
        for option in (0, 0, 0):
            answer_and_advance(started, clock, option)

        assert started.state == QuizState.COMPLETED

    def test_failed_bonus_lookup_is_retried(self, started, clock, populated_repo):
        answer_and_advance(started, clock, 0)
        answer_and_advance(started, clock, 0)
        started.submit_answer(0)
        clock.advance(2)

        with patch.object(populated_repo, "find_bonus_question", side_effect=StorageError("down")):
            with pytest.raises(StorageError):
                started.advance()
            assert started.state == QuizState.COMPLETED
            with pytest.raises(StorageError):
                started.recover()

        snap = started.recover()

        assert snap.state == QuizState.BONUS_OFFERED
        assert snap.question.id == "b1"
        assert snap.remaining_seconds == 25

    def test_bonus_offer_waits_for_its_start_instant(self, started, clock, populated_repo):
        answer_and_advance(started, clock, 0)
        answer_and_advance(started, clock, 0)
        started.submit_answer(0)
        clock.advance(2)

        with patch.object(populated_repo, "update_session", side_effect=StorageError("down")):
            with pytest.raises(StorageError):
                started.advance()

        assert started.state == QuizState.COMPLETED
        assert started.question is None
        assert started.recover().state == QuizState.BONUS_OFFERED

    def test_reload_during_bonus_keeps_its_deadline(self, started, clock, open_quiz, populated_repo):
        for option in (0, 0, 0):
            answer_and_advance(started, clock, option)

        clock.advance(30)
        snap = open_quiz().enter()

        assert snap.state == QuizState.BONUS_REVEALED
        row = populated_repo.get_session(started.session.id)
        assert row.has_bonus
        assert populated_repo.get_answer(row.id, "b1").chosen_option == TIMEOUT_ANSWER

    def test_reload_after_bonus_is_done(self, started, clock, open_quiz):
        for option in (0, 0, 0, 0):
            answer_and_advance(started, clock, option)

        snap = open_quiz().enter()

        assert snap.state == QuizState.BONUS_DONE
        assert snap.question is None

    def test_total_score_equals_sum_of_answers(self, started, clock, populated_repo):
        for option in (0, 2, 0, 1):
            answer_and_advance(started, clock, option)

        row = populated_repo.get_session(started.session.id)
        answers = populated_repo.get_session_answers(row.id)
        assert len(answers) == 4
        assert sum(a.score for a in answers) == row.total_score == 20


class TestConcurrentTabs:
    def test_duplicate_submit_does_not_double_score(self, started, open_quiz, populated_repo):
        other_tab = open_quiz()
        other_tab.enter()

        started.submit_answer(0)
        outcome = other_tab.submit_answer(0)

        assert outcome.duplicate
        assert outcome.score == 5
        row = populated_repo.get_session(started.session.id)
        assert row.total_score == 5
        assert len(populated_repo.get_session_answers(row.id)) == 1

    def test_duplicate_tab_follows_stored_countdown(
        self, started, open_quiz, clock, populated_repo
    ):
        other_tab = open_quiz()
        other_tab.enter()

        started.submit_answer(0)
        clock.advance(2)
        started.advance()
        stored_start = populated_repo.get_session(started.session.id).question_started_at

        other_tab.submit_answer(1)
        clock.advance(5)
        snap = other_tab.advance()

        assert snap.state == QuizState.QUESTION_ACTIVE
        assert snap.question.id == "m1"
        assert snap.remaining_seconds == 20
        assert populated_repo.get_session(started.session.id).question_started_at == stored_start

    def test_stale_index_commit_is_rejected_by_store(self, started, populated_repo, clock):
        row = populated_repo.get_session(started.session.id)
        populated_repo.update_session(row.id, {"current_question_index": 1})

        with patch.object(populated_repo, "get_session", side_effect=[row, populated_repo.get_session(row.id)]):
            outcome = started.submit_answer(0)

        assert outcome.duplicate
        assert outcome.score == 0
        assert populated_repo.get_session_answers(row.id) == []
        assert populated_repo.get_session(row.id).total_score == 0


def test_new_day_starts_fresh(started, open_quiz, clock, populated_repo, question_factory):
    populated_repo.seed_questions(
        [
            question_factory("e2"),
            question_factory("m2", Difficulty.MEDIUM),
            question_factory("h2", Difficulty.HARD),
        ]
    )
    started.submit_answer(0)

    clock.now = clock.now + timedelta(days=1)
    quiz = open_quiz()
    assert quiz.enter().state == QuizState.AWAITING_CONFIRMATION

    snap = quiz.confirm_start()
    # e1 was answered yesterday; m1 and h1 were only assigned, never answered.
    assert snap.session.question_ids[0] == "e2"
