import random
from datetime import date, datetime, timedelta, timezone

import pytest
import streamlit as st

from src.config import Difficulty
from src.quiz.adapters.db_manager import DatabaseManager
from src.quiz.adapters.sqlite_repository import SQLiteQuizRepository
from src.quiz.domain.models import Question, User

TODAY = date(2026, 3, 17)
T0 = datetime(2026, 3, 17, 12, 0, 0, tzinfo=timezone.utc)


class MockSessionState(dict):
    """
    Mock for st.session_state that behaves like both a dict and an object.
    Allows both dict-style and attribute-style access.
    """

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError as err:
            raise AttributeError(
                f"'MockSessionState' object has no attribute '{name}'"
            ) from err

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError as err:
            raise AttributeError(
                f"'MockSessionState' object has no attribute '{name}'"
            ) from err


class FrozenClock:
    """Callable clock for time-travel tests. Always timezone-aware UTC."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_question(
    qid: str,
    difficulty: Difficulty = Difficulty.EASY,
    correct: int = 0,
    bonus_date: date | None = None,
) -> Question:
    return Question(
        id=qid,
        text=f"Question {qid}",
        options=["A", "B", "C", "D"],
        correct_option=correct,
        difficulty=difficulty,
        is_bonus=bonus_date is not None,
        bonus_date=bonus_date,
    )


@pytest.fixture(autouse=True)
def mock_streamlit_session():
    """
    Auto-use fixture that ensures st.session_state exists for all tests.
    """
    original_session_state = getattr(st, "session_state", None)
    st.session_state = MockSessionState()

    yield st.session_state

    st.session_state.clear()
    if original_session_state is not None:
        st.session_state = original_session_state


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def sample_user_id():
    return "test_user"


@pytest.fixture
def in_memory_repo():
    """Returns a clean, empty in-memory repository."""
    db_manager = DatabaseManager(db_path=":memory:")
    repo = SQLiteQuizRepository(db_manager=db_manager)
    yield repo
    db_manager.close()


@pytest.fixture
def question_bank():
    """One question per tier plus today's bonus. Correct option is always 0."""
    return [
        make_question("e1", Difficulty.EASY),
        make_question("m1", Difficulty.MEDIUM),
        make_question("h1", Difficulty.HARD),
        make_question("b1", Difficulty.MEDIUM, bonus_date=TODAY),
    ]


@pytest.fixture
def populated_repo(in_memory_repo, question_bank, sample_user_id):
    """Seeded bank plus a registered user."""
    in_memory_repo.seed_questions(question_bank)
    in_memory_repo.create_user(User(id=sample_user_id, email="t@example.com", name="Tester"))
    return in_memory_repo


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def question_factory():
    return make_question
