# ==============================================================================
# ARCHITECTURE: INTEGRATION TEST (SQLITE ADAPTER)
# ------------------------------------------------------------------------------
# GOAL: Verify constraints and transactional writes against a real SQLite engine.
# ==============================================================================
import threading
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.config import Difficulty
from src.quiz.adapters.db_manager import DatabaseManager
from src.quiz.adapters.sqlite_repository import SQLiteQuizRepository
from src.quiz.domain.errors import ConflictError, StorageError
from src.quiz.domain.models import AnswerRecord, User

DAY = date(2026, 3, 17)
NOW = datetime(2026, 3, 17, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session(populated_repo, sample_user_id):
    return populated_repo.create_session(sample_user_id, DAY, ["e1", "m1", "h1"], NOW)


def answer(session_id, question_id="e1", chosen=0, score=5):
    return AnswerRecord(
        session_id=session_id,
        question_id=question_id,
        chosen_option=chosen,
        is_correct=score > 0,
        score=score,
        created_at=NOW,
    )


class TestSessions:
    def test_one_session_per_user_per_day(self, populated_repo, session, sample_user_id):
        with pytest.raises(ConflictError):
            populated_repo.create_session(sample_user_id, DAY, ["e1", "m1", "h1"], NOW)

    def test_roundtrip(self, populated_repo, session, sample_user_id):
        found = populated_repo.find_session(sample_user_id, DAY)
        assert found == session
        assert populated_repo.get_session("missing") is None
        assert populated_repo.find_session(sample_user_id, date(2026, 3, 18)) is None

    def test_update_rejects_unknown_fields(self, populated_repo, session):
        with pytest.raises(ValueError):
            populated_repo.update_session(session.id, {"user_id": "someone-else"})

    def test_completed_dates(self, populated_repo, session, sample_user_id):
        assert populated_repo.get_completed_session_dates(sample_user_id) == []
        populated_repo.update_session(session.id, {"completed": True})
        assert populated_repo.get_completed_session_dates(sample_user_id) == [DAY]


class TestCommitAnswer:
    def test_applies_every_step(self, populated_repo, session, sample_user_id):
        updated = session.model_copy(update={"current_question_index": 1, "total_score": 5})

        populated_repo.commit_answer(updated, answer(session.id), expected_index=0, count_participation=False)

        stored = populated_repo.get_session(session.id)
        assert stored.current_question_index == 1
        assert stored.total_score == 5
        assert populated_repo.get_answer(session.id, "e1").score == 5
        assert populated_repo.list_attempts()[0].score == 5
        assert populated_repo.get_user(sample_user_id).total_days_participated == 0

    def test_stale_index_rolls_back_answer(self, populated_repo, session):
        updated = session.model_copy(update={"current_question_index": 1, "total_score": 5})

        with pytest.raises(ConflictError):
            populated_repo.commit_answer(updated, answer(session.id), expected_index=2, count_participation=False)

        assert populated_repo.get_session_answers(session.id) == []
        assert populated_repo.get_session(session.id).total_score == 0
        assert populated_repo.list_attempts() == []

    def test_duplicate_answer_is_a_conflict(self, populated_repo, session):
        populated_repo.insert_answer(answer(session.id))
        updated = session.model_copy(update={"current_question_index": 1, "total_score": 5})

        with pytest.raises(ConflictError):
            populated_repo.commit_answer(updated, answer(session.id), expected_index=0, count_participation=False)

        assert populated_repo.get_session(session.id).current_question_index == 0

    def test_completion_counts_participation_once(self, populated_repo, session, sample_user_id):
        updated = session.model_copy(
            update={"current_question_index": 3, "total_score": 30, "completed": True,
                    "question_started_at": None}
        )
        populated_repo.commit_answer(updated, answer(session.id, "h1", 0, 15), expected_index=0, count_participation=True)

        user = populated_repo.get_user(sample_user_id)
        assert user.total_days_participated == 1
        assert user.last_active == NOW
        assert populated_repo.get_session(session.id).question_started_at is None

    def test_answered_ids_span_sessions(self, populated_repo, session, sample_user_id):
        populated_repo.insert_answer(answer(session.id))
        other = populated_repo.create_session(sample_user_id, date(2026, 3, 18), ["m1"], NOW)
        populated_repo.insert_answer(answer(other.id, "m1"))

        assert populated_repo.get_answered_question_ids(sample_user_id) == {"e1", "m1"}
        assert populated_repo.get_answered_question_ids("nobody") == set()


class TestQuestions:
    def test_find_questions_excludes_bonus_and_seen(self, populated_repo):
        medium = populated_repo.find_questions(Difficulty.MEDIUM)
        assert [q.id for q in medium] == ["m1"]

        with_bonus = populated_repo.find_questions(Difficulty.MEDIUM, exclude_bonus=False)
        assert {q.id for q in with_bonus} == {"m1", "b1"}

        assert populated_repo.find_questions(Difficulty.EASY, exclude_ids={"e1"}) == []

    def test_find_questions_respects_limit(self, in_memory_repo, question_factory):
        in_memory_repo.seed_questions([question_factory(f"e{i}") for i in range(30)])
        assert len(in_memory_repo.find_questions(Difficulty.EASY, limit=20)) == 20

    def test_bonus_lookup_by_date(self, populated_repo):
        assert populated_repo.find_bonus_question(DAY).id == "b1"
        assert populated_repo.find_bonus_question(date(2026, 3, 18)) is None

    def test_bonus_date_is_unique(self, populated_repo, question_factory):
        with pytest.raises(ConflictError):
            populated_repo.add_question(question_factory("b2", Difficulty.EASY, bonus_date=DAY))

    def test_counts_by_difficulty(self, populated_repo):
        counts = populated_repo.count_questions_by_difficulty()
        assert counts == {Difficulty.EASY: 1, Difficulty.MEDIUM: 2, Difficulty.HARD: 1}

    def test_is_empty(self, populated_repo):
        assert not populated_repo.is_empty()


class TestUsersAndSettings:
    def test_duplicate_user_is_a_conflict(self, populated_repo, sample_user_id):
        with pytest.raises(ConflictError):
            populated_repo.create_user(User(id=sample_user_id))

    def test_ban_and_rename(self, populated_repo, sample_user_id):
        populated_repo.set_banned(sample_user_id, True)
        populated_repo.update_user_name(sample_user_id, "Renamed")

        user = populated_repo.get_user(sample_user_id)
        assert user.is_banned
        assert user.name == "Renamed"

    def test_increment_participation(self, populated_repo, sample_user_id):
        populated_repo.increment_participation_days(sample_user_id)
        populated_repo.increment_participation_days(sample_user_id)
        assert populated_repo.get_user(sample_user_id).total_days_participated == 2

    def test_settings_roundtrip_json(self, in_memory_repo):
        assert in_memory_repo.get_setting("quiz_enabled", True) is True
        in_memory_repo.set_setting("quiz_enabled", False)
        in_memory_repo.set_setting("quiz_enabled", False)
        assert in_memory_repo.get_setting("quiz_enabled") is False


def test_list_submissions_joins_user_and_question(populated_repo, session):
    populated_repo.insert_answer(answer(session.id))

    [sub] = populated_repo.list_submissions()

    assert sub.user_name == "Tester"
    assert sub.question.id == "e1"
    assert sub.session_date == DAY


def test_answer_for_unknown_session_is_a_storage_error(populated_repo):
    """Only duplicate keys are conflicts; a dangling reference is a failed write."""
    with pytest.raises(StorageError):
        populated_repo.insert_answer(answer("no-such-session"))


class TestSharedConnectionAcrossThreads:
    """Streamlit runs each browser session on its own thread over one cached repository."""

    @pytest.fixture
    def file_repo(self, tmp_path, question_bank, sample_user_id):
        manager = DatabaseManager(str(tmp_path / "quiz.db"))
        repo = SQLiteQuizRepository(manager)
        repo.seed_questions(question_bank)
        repo.create_user(User(id=sample_user_id, email="t@example.com", name="Tester"))
        yield repo
        manager.close()

    def test_other_thread_cannot_commit_half_a_transaction(self, file_repo, sample_user_id):
        session = file_repo.create_session(sample_user_id, DAY, ["e1", "m1", "h1"], NOW)
        file_repo.update_session(session.id, {"current_question_index": 1})
        later = NOW + timedelta(minutes=5)

        other = threading.Thread(target=file_repo.touch_last_active, args=(sample_user_id, later))
        blocked = []
        real_insert = SQLiteQuizRepository._insert_answer

        def insert_then_race(conn, record):
            real_insert(conn, record)
            other.start()
            other.join(timeout=0.3)
            blocked.append(other.is_alive())

        updated = session.model_copy(update={"current_question_index": 1, "total_score": 5})
        with patch.object(SQLiteQuizRepository, "_insert_answer", side_effect=insert_then_race):
            with pytest.raises(ConflictError):
                file_repo.commit_answer(updated, answer(session.id), expected_index=0, count_participation=False)
        other.join(timeout=5)

        assert blocked == [True]
        assert not other.is_alive()
        assert file_repo.get_session_answers(session.id) == []
        assert file_repo.list_attempts() == []
        assert file_repo.get_user(sample_user_id).last_active == later
