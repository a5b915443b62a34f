from unittest.mock import patch

import pytest

from src.config import Difficulty
from src.fsm import QuizState
from src.quiz.application.access import AccessGuard
from src.quiz.application.service import QuizService
from src.quiz.domain.errors import StorageError
from src.quiz.domain.models import User
from src.quiz.presentation.state_provider import (
    SessionStateAuthProvider,
    StreamlitStateProvider,
)
from src.quiz.presentation.viewmodel import ERROR_KEY, SESSION_KEY, QuizViewModel


@pytest.fixture
def state():
    return StreamlitStateProvider()


@pytest.fixture
def auth(state, sample_user_id):
    provider = SessionStateAuthProvider(state)
    provider.login(sample_user_id, "t@example.com", "Tester")
    return provider


@pytest.fixture
def vm(populated_repo, auth, state, clock, rng):
    service = QuizService(populated_repo, clock=clock, rng=rng)
    guard = AccessGuard(populated_repo, auth, clock=clock)
    return QuizViewModel(service, guard, state)


def test_open_quiz_waits_for_confirmation(vm, mock_streamlit_session):
    snap = vm.open_quiz()

    assert snap.state == QuizState.AWAITING_CONFIRMATION
    assert mock_streamlit_session[SESSION_KEY] is vm.quiz
    assert vm.route == "dashboard"


def test_anonymous_user_is_sent_to_login(vm, auth):
    auth.logout()

    assert vm.open_quiz() is None
    assert vm.route == "login"


def test_banned_user_is_blocked(vm, populated_repo, sample_user_id):
    populated_repo.set_banned(sample_user_id, True)

    assert vm.open_quiz() is None
    assert vm.route == "blocked"


def test_disabled_quiz_returns_to_dashboard_with_message(vm, populated_repo):
    populated_repo.set_setting("quiz_enabled", False)

    assert vm.open_quiz() is None
    assert vm.route == "dashboard"
    assert vm.error


def test_insufficient_questions_message_lists_bank(vm, populated_repo):
    populated_repo.delete_question("h1")
    vm.open_quiz()

    snap = vm.confirm_start()

    assert snap.state == QuizState.AWAITING_CONFIRMATION
    assert Difficulty.HARD.label in vm.error


def test_answer_storage_failure_sets_retry_message(vm, populated_repo):
    vm.open_quiz()
    vm.confirm_start()

    with patch.object(populated_repo, "commit_answer", side_effect=StorageError("down")):
        assert vm.answer(0) is None
    assert vm.error

    outcome = vm.answer(0)
    assert outcome.score == 5
    assert vm.error is None


def test_heartbeat_advances_after_reveal(vm, clock):
    vm.open_quiz()
    vm.confirm_start()
    vm.answer(0)

    assert vm.heartbeat().state == QuizState.ANSWER_REVEALED
    clock.advance(2)
    assert vm.heartbeat().state == QuizState.QUESTION_ACTIVE


def test_heartbeat_times_out_question(vm, clock, populated_repo):
    vm.open_quiz()
    vm.confirm_start()

    clock.advance(25)
    snap = vm.heartbeat()

    assert snap.state == QuizState.ANSWER_REVEALED
    assert snap.last_outcome.timed_out


def test_heartbeat_retries_failed_resume(vm, populated_repo, sample_user_id, today):
    vm.open_quiz()
    vm.confirm_start()
    row = populated_repo.find_session(sample_user_id, today)
    populated_repo.update_session(row.id, {"question_started_at": None})

    with patch.object(populated_repo, "update_session", side_effect=StorageError("down")):
        snap = vm.open_quiz()
    assert snap.state == QuizState.NO_SESSION
    assert vm.error

    snap = vm.heartbeat()

    assert snap.state == QuizState.QUESTION_ACTIVE
    assert snap.remaining_seconds == 25


def test_is_finished_after_all_questions_without_bonus(vm, clock, populated_repo):
    populated_repo.delete_question("b1")
    vm.open_quiz()
    vm.confirm_start()
    for _ in range(3):
        vm.answer(0)
        clock.advance(2)
        vm.heartbeat()

    assert vm.is_finished()


def test_navigate_clears_error(vm, state):
    state.set(ERROR_KEY, "boom")
    vm.navigate("leaderboard")
    assert vm.route == "leaderboard"
    assert vm.error is None


def test_session_state_auth_provider(state):
    auth = SessionStateAuthProvider(state)
    assert auth.current_user_id() is None
    assert auth.current_identity() == {}

    auth.login("u9", "u9@example.com", "Nine")
    assert auth.current_user_id() == "u9"
    assert auth.current_identity()["email"] == "u9@example.com"

    auth.logout()
    assert auth.current_user_id() is None


def test_profile_is_recreated_on_quiz_entry(vm, populated_repo, auth):
    auth.login("newcomer", "new@example.com", None)

    vm.open_quiz()

    assert populated_repo.get_user("newcomer") == User(
        id="newcomer",
        email="new@example.com",
        name="new",
        last_active=populated_repo.get_user("newcomer").last_active,
    )
