from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, TypeVar, cast

from postgrest.exceptions import APIError
from postgrest.types import CountMethod

from src.config import Difficulty
from src.quiz.domain.errors import ConflictError, StorageError
from src.quiz.domain.models import (
    AnswerRecord,
    Attempt,
    DailySession,
    Question,
    Submission,
    User,
    UserRole,
)
from src.quiz.domain.ports import IAuthProvider, IQuizRepository
from src.shared.telemetry import Telemetry, measure_time
from supabase import Client, create_client

UNIQUE_VIOLATION = "23505"

T = TypeVar("T")

Rows = list[dict[str, Any]]


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(raw: Any) -> datetime | None:
    if not raw:
        return None
    # PostgREST returns "Z" suffixes on older Postgres versions.
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


class SupabaseQuizRepository(IQuizRepository):
    """
    Talks to the hosted Postgres through PostgREST. The table layout, unique
    constraints and RPC functions live in data/supabase_schema.sql.
    """

    def __init__(self, client: Client) -> None:
        self.telemetry = Telemetry("SupabaseRepository")
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "SupabaseQuizRepository":
        telemetry = Telemetry("SupabaseRepository")
        try:
            client: Client = create_client(url, key)
        except Exception as e:
            telemetry.log_error("Failed to initialize Supabase client", e)
            raise
        return cls(client)

    @contextmanager
    def _call(self, operation: str) -> Iterator[None]:
        """Maps PostgREST/HTTP failures onto the domain errors."""
        try:
            yield
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ConflictError(e.message or operation) from e
            self.telemetry.log_error(f"{operation} failed", e)
            raise StorageError(e.message or operation) from e
        except (ConflictError, StorageError):
            raise
        except Exception as e:
            self.telemetry.log_error(f"{operation} failed", e)
            raise StorageError(str(e)) from e

    def _rows(self, operation: str, query: Callable[[], Any]) -> Rows:
        with self._call(operation):
            response = query()
        return cast(Rows, response.data or [])

    def _first(self, operation: str, query: Callable[[], Any], mapper: Callable[[dict[str, Any]], T]) -> T | None:
        rows = self._rows(operation, query)
        return mapper(rows[0]) if rows else None

    # --- Row Mapping ---

    @staticmethod
    def _session_from_row(row: dict[str, Any]) -> DailySession:
        return DailySession(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            session_date=date.fromisoformat(str(row["session_date"])),
            question_ids=[str(q) for q in row["question_ids"]],
            current_question_index=int(row["current_question_index"] or 0),
            total_score=int(row["total_score"] or 0),
            completed=bool(row["completed"]),
            has_bonus=bool(row.get("has_bonus")),
            question_started_at=_parse_dt(row.get("last_question_start_time")),
        )

    @staticmethod
    def _answer_from_row(row: dict[str, Any]) -> AnswerRecord:
        return AnswerRecord(
            session_id=str(row["session_id"]),
            question_id=str(row["question_id"]),
            chosen_option=int(row["user_answer"]),
            is_correct=bool(row["is_correct"]),
            score=int(row["score"] or 0),
            created_at=_parse_dt(row.get("created_at")),
        )

    @staticmethod
    def _question_from_row(row: dict[str, Any]) -> Question:
        bonus_date = row.get("bonus_date")
        return Question(
            id=str(row["id"]),
            text=row["question_text"],
            options=list(row["options"]),
            correct_option=int(row["correct_option"]),
            difficulty=Difficulty.from_code(row["difficulty"]),
            is_bonus=bool(row.get("is_bonus")),
            bonus_date=date.fromisoformat(str(bonus_date)) if bonus_date else None,
        )

    @staticmethod
    def _question_to_row(q: Question) -> dict[str, Any]:
        return {
            "id": q.id,
            "question_text": q.text,
            "options": q.options,
            "correct_option": q.correct_option,
            "difficulty": q.difficulty.code,
            "is_bonus": q.is_bonus,
            "bonus_date": _iso(q.bonus_date),
        }

    @staticmethod
    def _user_from_row(row: dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            email=row.get("email"),
            name=row.get("name") or "User",
            role=UserRole(row.get("role") or "user"),
            is_banned=bool(row.get("is_banned")),
            last_active=_parse_dt(row.get("last_active")),
            total_days_participated=int(row.get("total_days_participated") or 0),
        )

    # --- Sessions ---

    @measure_time("sb_find_session")
    def find_session(self, user_id: str, session_date: date) -> DailySession | None:
        return self._first(
            "find_session",
            lambda: self.client.table("daily_sessions")
            .select("*")
            .eq("user_id", user_id)
            .eq("session_date", session_date.isoformat())
            .limit(1)
            .execute(),
            self._session_from_row,
        )

    def get_session(self, session_id: str) -> DailySession | None:
        return self._first(
            "get_session",
            lambda: self.client.table("daily_sessions")
            .select("*")
            .eq("id", session_id)
            .limit(1)
            .execute(),
            self._session_from_row,
        )

    @measure_time("sb_create_session")
    def create_session(
        self,
        user_id: str,
        session_date: date,
        question_ids: list[str],
        started_at: datetime,
    ) -> DailySession:
        payload = {
            "user_id": user_id,
            "session_date": session_date.isoformat(),
            "question_ids": question_ids,
            "current_question_index": 0,
            "total_score": 0,
            "completed": False,
            "has_bonus": False,
            "last_question_start_time": started_at.isoformat(),
        }
        rows = self._rows(
            "create_session",
            lambda: self.client.table("daily_sessions").insert(payload).execute(),
        )
        if not rows:
            raise StorageError("create_session returned no row")
        return self._session_from_row(rows[0])

    def update_session(self, session_id: str, patch: dict[str, Any]) -> None:
        column_names = {"question_started_at": "last_question_start_time"}
        payload = {
            column_names.get(k, k): v.isoformat() if isinstance(v, datetime) else v
            for k, v in patch.items()
        }
        with self._call("update_session"):
            self.client.table("daily_sessions").update(payload).eq("id", session_id).execute()

    def get_completed_session_dates(self, user_id: str) -> list[date]:
        rows = self._rows(
            "get_completed_session_dates",
            lambda: self.client.table("daily_sessions")
            .select("session_date")
            .eq("user_id", user_id)
            .eq("completed", True)
            .order("session_date", desc=True)
            .execute(),
        )
        return [date.fromisoformat(str(r["session_date"])) for r in rows]

    # --- Answers ---

    def insert_answer(self, answer: AnswerRecord) -> None:
        payload = {
            "session_id": answer.session_id,
            "question_id": answer.question_id,
            "user_answer": answer.chosen_option,
            "is_correct": answer.is_correct,
            "score": answer.score,
        }
        with self._call("insert_answer"):
            self.client.table("user_answers").insert(payload).execute()

    def get_answer(self, session_id: str, question_id: str) -> AnswerRecord | None:
        return self._first(
            "get_answer",
            lambda: self.client.table("user_answers")
            .select("*")
            .eq("session_id", session_id)
            .eq("question_id", question_id)
            .limit(1)
            .execute(),
            self._answer_from_row,
        )

    def get_session_answers(self, session_id: str) -> list[AnswerRecord]:
        rows = self._rows(
            "get_session_answers",
            lambda: self.client.table("user_answers")
            .select("*")
            .eq("session_id", session_id)
            .order("created_at")
            .execute(),
        )
        return [self._answer_from_row(r) for r in rows]

    @measure_time("sb_get_answered_ids")
    def get_answered_question_ids(self, user_id: str) -> set[str]:
        rows = self._rows(
            "get_answered_question_ids",
            lambda: self.client.table("user_answers")
            .select("question_id, daily_sessions!inner(user_id)")
            .eq("daily_sessions.user_id", user_id)
            .execute(),
        )
        return {str(r["question_id"]) for r in rows}

    @measure_time("sb_commit_answer")
    def commit_answer(
        self,
        session: DailySession,
        answer: AnswerRecord,
        expected_index: int,
        count_participation: bool,
    ) -> None:
        # One Postgres function, one transaction. See data/supabase_schema.sql.
        with self._call("commit_answer"):
            self.client.rpc(
                "submit_quiz_answer",
                {
                    "p_session_id": session.id,
                    "p_question_id": answer.question_id,
                    "p_user_answer": answer.chosen_option,
                    "p_is_correct": answer.is_correct,
                    "p_score": answer.score,
                    "p_expected_index": expected_index,
                    "p_next_index": session.current_question_index,
                    "p_total_score": session.total_score,
                    "p_completed": session.completed,
                    "p_has_bonus": session.has_bonus,
                    "p_started_at": _iso(session.question_started_at),
                    "p_count_participation": count_participation,
                },
            ).execute()

    def list_submissions(self, limit: int = 100) -> list[Submission]:
        rows = self._rows(
            "list_submissions",
            lambda: self.client.table("user_answers")
            .select(
                "*, session:daily_sessions(session_date, user:users(name, email)), "
                "question:questions(*)"
            )
            .order("created_at", desc=True)
            .limit(limit)
            .execute(),
        )
        submissions = []
        for r in rows:
            session = r.get("session") or {}
            user = session.get("user") or {}
            question = r.get("question")
            submissions.append(
                Submission(
                    answer=self._answer_from_row(r),
                    session_date=date.fromisoformat(str(session["session_date"])),
                    user_name=user.get("name") or "User",
                    user_email=user.get("email"),
                    question=self._question_from_row(question) if question else None,
                )
            )
        return submissions

    # --- Questions ---

    @measure_time("sb_find_questions")
    def find_questions(
        self,
        difficulty: Difficulty,
        exclude_bonus: bool = True,
        exclude_ids: set[str] | None = None,
        limit: int = 20,
    ) -> list[Question]:
        def query() -> Any:
            q = self.client.table("questions").select("*").eq("difficulty", difficulty.code)
            if exclude_bonus:
                q = q.eq("is_bonus", False)
            if exclude_ids:
                q = q.not_.in_("id", sorted(exclude_ids))
            return q.limit(limit).execute()

        return [self._question_from_row(r) for r in self._rows("find_questions", query)]

    def get_question(self, question_id: str) -> Question | None:
        return self._first(
            "get_question",
            lambda: self.client.table("questions")
            .select("*")
            .eq("id", question_id)
            .limit(1)
            .execute(),
            self._question_from_row,
        )

    def find_bonus_question(self, on_date: date) -> Question | None:
        return self._first(
            "find_bonus_question",
            lambda: self.client.table("questions")
            .select("*")
            .eq("is_bonus", True)
            .eq("bonus_date", on_date.isoformat())
            .order("id")
            .limit(1)
            .execute(),
            self._question_from_row,
        )

    def count_questions_by_difficulty(self) -> dict[Difficulty, int]:
        counts: dict[Difficulty, int] = {}
        for tier in Difficulty.required():
            with self._call("count_questions"):
                response = (
                    self.client.table("questions")
                    .select("id", count=cast(CountMethod, "exact"))
                    .eq("difficulty", tier.code)
                    .limit(1)
                    .execute()
                )
            counts[tier] = response.count or 0
        return counts

    def add_question(self, question: Question) -> Question:
        rows = self._rows(
            "add_question",
            lambda: self.client.table("questions")
            .insert(self._question_to_row(question))
            .execute(),
        )
        return self._question_from_row(rows[0]) if rows else question

    def delete_question(self, question_id: str) -> None:
        with self._call("delete_question"):
            self.client.table("questions").delete().eq("id", question_id).execute()

    def list_questions(self) -> list[Question]:
        rows = self._rows(
            "list_questions",
            lambda: self.client.table("questions")
            .select("*")
            .order("created_at", desc=True)
            .execute(),
        )
        return [self._question_from_row(r) for r in rows]

    def is_empty(self) -> bool:
        """
        Used by DataSeeder to check if we need to parse the JSON and upload.
        """
        with self._call("is_empty"):
            response = (
                self.client.table("questions")
                .select("id", count=cast(CountMethod, "exact"))
                .limit(1)
                .execute()
            )
        return (response.count or 0) == 0

    def seed_questions(self, questions: list[Question]) -> None:
        data = [self._question_to_row(q) for q in questions]

        # Upsert in chunks of 100 to prevent payload size issues
        chunk_size = 100
        for i in range(0, len(data), chunk_size):
            chunk = data[i : i + chunk_size]
            with self._call("seed_questions"):
                self.client.table("questions").upsert(chunk).execute()

        self.telemetry.log_info(f"Seeded {len(questions)} questions to Supabase")

    # --- Leaderboard ---

    def upsert_attempt(self, user_id: str, attempt_date: date, score: int) -> None:
        with self._call("upsert_attempt"):
            self.client.table("attempts").upsert(
                {"user_id": user_id, "attempt_date": attempt_date.isoformat(), "score": score},
                on_conflict="user_id,attempt_date",
            ).execute()

    @measure_time("sb_list_attempts")
    def list_attempts(self) -> list[Attempt]:
        rows = self._rows(
            "list_attempts",
            lambda: self.client.table("attempts")
            .select("user_id, attempt_date, score, users(name)")
            .execute(),
        )
        return [
            Attempt(
                user_id=str(r["user_id"]),
                attempt_date=date.fromisoformat(str(r["attempt_date"])),
                score=int(r["score"] or 0),
                user_name=(r.get("users") or {}).get("name"),
            )
            for r in rows
        ]

    # --- Users ---

    def get_user(self, user_id: str) -> User | None:
        return self._first(
            "get_user",
            lambda: self.client.table("users").select("*").eq("id", user_id).limit(1).execute(),
            self._user_from_row,
        )

    def create_user(self, user: User) -> User:
        payload = {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "role": user.role.value,
            "is_banned": user.is_banned,
            "last_active": _iso(user.last_active),
        }
        with self._call("create_user"):
            self.client.table("users").insert(payload).execute()
        return user

    def update_user_name(self, user_id: str, name: str) -> None:
        with self._call("update_user_name"):
            self.client.table("users").update({"name": name}).eq("id", user_id).execute()

    def list_users(self) -> list[User]:
        rows = self._rows(
            "list_users",
            lambda: self.client.table("users")
            .select("*")
            .order("created_at", desc=True)
            .execute(),
        )
        return [self._user_from_row(r) for r in rows]

    def set_banned(self, user_id: str, banned: bool) -> None:
        with self._call("set_banned"):
            self.client.table("users").update({"is_banned": banned}).eq("id", user_id).execute()

    def touch_last_active(self, user_id: str, at: datetime) -> None:
        with self._call("touch_last_active"):
            self.client.table("users").update({"last_active": at.isoformat()}).eq(
                "id", user_id
            ).execute()

    def increment_participation_days(self, user_id: str) -> None:
        with self._call("increment_participation_days"):
            self.client.rpc("increment_participation_days", {"p_user_id": user_id}).execute()

    # --- Settings ---

    def get_setting(self, key: str, default: Any = None) -> Any:
        rows = self._rows(
            "get_setting",
            lambda: self.client.table("app_settings").select("value").eq("key", key).limit(1).execute(),
        )
        return rows[0]["value"] if rows else default

    def set_setting(self, key: str, value: Any) -> None:
        with self._call("set_setting"):
            self.client.table("app_settings").upsert(
                {"key": key, "value": value}, on_conflict="key"
            ).execute()


class SupabaseAuthProvider(IAuthProvider):
    def __init__(self, client: Client) -> None:
        self.client = client
        self.telemetry = Telemetry("SupabaseAuth")

    def _user(self) -> Any:
        try:
            response = self.client.auth.get_user()
        except Exception as e:
            self.telemetry.log_error("get_user failed", e)
            return None
        return response.user if response else None

    def current_user_id(self) -> str | None:
        user = self._user()
        return str(user.id) if user else None

    def current_identity(self) -> dict[str, Any]:
        user = self._user()
        if not user:
            return {}
        metadata = user.user_metadata or {}
        return {"email": user.email, "name": metadata.get("name")}
