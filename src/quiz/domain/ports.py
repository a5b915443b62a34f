from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from src.config import Difficulty
from src.quiz.domain.models import (
    AnswerRecord,
    Attempt,
    DailySession,
    Question,
    Submission,
    User,
)


class IQuizRepository(ABC):
    """
    Storage collaborator. Lookups return None when the row is missing; writes
    raise ConflictError on a uniqueness violation and StorageError on anything else.
    """

    # --- Sessions ---

    @abstractmethod
    def find_session(self, user_id: str, session_date: date) -> DailySession | None:
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> DailySession | None:
        pass

    @abstractmethod
    def create_session(
        self,
        user_id: str,
        session_date: date,
        question_ids: list[str],
        started_at: datetime,
    ) -> DailySession:
        """Raises ConflictError if the user already has a row for that date."""
        pass

    @abstractmethod
    def update_session(self, session_id: str, patch: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def get_completed_session_dates(self, user_id: str) -> list[date]:
        pass

    # --- Answers ---

    @abstractmethod
    def insert_answer(self, answer: AnswerRecord) -> None:
        """Raises ConflictError if (session, question) already has an answer."""
        pass

    @abstractmethod
    def get_answer(self, session_id: str, question_id: str) -> AnswerRecord | None:
        pass

    @abstractmethod
    def get_session_answers(self, session_id: str) -> list[AnswerRecord]:
        pass

    @abstractmethod
    def get_answered_question_ids(self, user_id: str) -> set[str]:
        pass

    @abstractmethod
    def commit_answer(
        self,
        session: DailySession,
        answer: AnswerRecord,
        expected_index: int,
        count_participation: bool,
    ) -> None:
        """
        Applies one answer as a single unit: insert the answer, update the session
        row (only if its stored index still equals expected_index), upsert the
        attempt to session.total_score and optionally bump the user's
        participation counter. Nothing is applied if any step fails.
        """
        pass

    @abstractmethod
    def list_submissions(self, limit: int = 100) -> list[Submission]:
        pass

    # --- Questions ---

    @abstractmethod
    def find_questions(
        self,
        difficulty: Difficulty,
        exclude_bonus: bool = True,
        exclude_ids: set[str] | None = None,
        limit: int = 20,
    ) -> list[Question]:
        pass

    @abstractmethod
    def get_question(self, question_id: str) -> Question | None:
        pass

    @abstractmethod
    def find_bonus_question(self, on_date: date) -> Question | None:
        pass

    @abstractmethod
    def count_questions_by_difficulty(self) -> dict[Difficulty, int]:
        pass

    @abstractmethod
    def add_question(self, question: Question) -> Question:
        """Raises ConflictError if a bonus question already owns that date."""
        pass

    @abstractmethod
    def delete_question(self, question_id: str) -> None:
        pass

    @abstractmethod
    def list_questions(self) -> list[Question]:
        pass

    @abstractmethod
    def seed_questions(self, questions: list[Question]) -> None:
        pass

    # --- Leaderboard ---

    @abstractmethod
    def upsert_attempt(self, user_id: str, attempt_date: date, score: int) -> None:
        pass

    @abstractmethod
    def list_attempts(self) -> list[Attempt]:
        pass

    # --- Users ---

    @abstractmethod
    def get_user(self, user_id: str) -> User | None:
        pass

    @abstractmethod
    def create_user(self, user: User) -> User:
        pass

    @abstractmethod
    def update_user_name(self, user_id: str, name: str) -> None:
        pass

    @abstractmethod
    def list_users(self) -> list[User]:
        pass

    @abstractmethod
    def set_banned(self, user_id: str, banned: bool) -> None:
        pass

    @abstractmethod
    def touch_last_active(self, user_id: str, at: datetime) -> None:
        pass

    @abstractmethod
    def increment_participation_days(self, user_id: str) -> None:
        pass

    # --- Settings ---

    @abstractmethod
    def get_setting(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set_setting(self, key: str, value: Any) -> None:
        pass


class IAuthProvider(ABC):
    """Identity collaborator. Only answers 'who is calling'."""

    @abstractmethod
    def current_user_id(self) -> str | None:
        pass

    def current_identity(self) -> dict[str, Any]:
        """Extra identity claims (email, display name) used to recreate profiles."""
        return {}
