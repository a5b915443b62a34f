import json
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any

from src.config import Difficulty
from src.quiz.adapters.db_manager import DatabaseManager
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
from src.quiz.domain.ports import IQuizRepository
from src.shared.telemetry import Telemetry, measure_time

# Columns a caller may patch through update_session().
SESSION_PATCH_FIELDS = {
    "current_question_index",
    "total_score",
    "completed",
    "has_bonus",
    "question_started_at",
}


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _parse_dt(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def _is_duplicate_key(error: sqlite3.IntegrityError) -> bool:
    # SQLite reports PRIMARY KEY and UNIQUE violations with the same message.
    return "UNIQUE constraint failed" in str(error)


class SQLiteQuizRepository(IQuizRepository):
    def __init__(self, db_manager: DatabaseManager) -> None:
        self.telemetry = Telemetry("SQLiteRepository")
        self.db_manager = db_manager

    def _get_connection(self) -> sqlite3.Connection:
        return self.db_manager.get_connection()

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        with self.db_manager.lock:
            conn = self._get_connection()
            try:
                yield conn
            except sqlite3.Error as e:
                self.telemetry.log_error("Read failed", e)
                raise StorageError(str(e)) from e

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """One transaction: commits on success, rolls everything back otherwise.

        The manager's lock is held until commit or rollback, so no other thread
        can commit or roll back half of this transaction on the shared connection.
        """
        with self.db_manager.lock:
            conn = self._get_connection()
            try:
                if not conn.in_transaction:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if _is_duplicate_key(e):
                    raise ConflictError(str(e)) from e
                self.telemetry.log_error("Constraint violated", e)
                raise StorageError(str(e)) from e
            except sqlite3.Error as e:
                conn.rollback()
                self.telemetry.log_error("Write failed", e)
                raise StorageError(str(e)) from e
            except Exception:
                conn.rollback()
                raise

    # --- Row Mapping ---

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> DailySession:
        return DailySession(
            id=row["id"],
            user_id=row["user_id"],
            session_date=date.fromisoformat(row["session_date"]),
            question_ids=json.loads(row["question_ids"]),
            current_question_index=row["current_question_index"],
            total_score=row["total_score"],
            completed=bool(row["completed"]),
            has_bonus=bool(row["has_bonus"]),
            question_started_at=_parse_dt(row["question_started_at"]),
        )

    @staticmethod
    def _answer_from_row(row: sqlite3.Row) -> AnswerRecord:
        return AnswerRecord(
            session_id=row["session_id"],
            question_id=row["question_id"],
            chosen_option=row["user_answer"],
            is_correct=bool(row["is_correct"]),
            score=row["score"],
            created_at=_parse_dt(row["created_at"]),
        )

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            role=UserRole(row["role"]),
            is_banned=bool(row["is_banned"]),
            last_active=_parse_dt(row["last_active"]),
            total_days_participated=row["total_days_participated"],
        )

    # --- Sessions ---

    def find_session(self, user_id: str, session_date: date) -> DailySession | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM daily_sessions WHERE user_id = ? AND session_date = ?",
                (user_id, session_date.isoformat()),
            ).fetchone()
        return self._session_from_row(row) if row else None

    def get_session(self, session_id: str) -> DailySession | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM daily_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._session_from_row(row) if row else None

    @measure_time("db_create_session")
    def create_session(
        self,
        user_id: str,
        session_date: date,
        question_ids: list[str],
        started_at: datetime,
    ) -> DailySession:
        session = DailySession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            session_date=session_date,
            question_ids=question_ids,
            question_started_at=started_at,
        )
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO daily_sessions (id, user_id, session_date, question_ids,
                                            current_question_index, total_score, completed,
                                            has_bonus, question_started_at)
                VALUES (?, ?, ?, ?, 0, 0, 0, 0, ?)
                """,
                (
                    session.id,
                    user_id,
                    session_date.isoformat(),
                    json.dumps(question_ids),
                    started_at.isoformat(),
                ),
            )
        return session

    def update_session(self, session_id: str, patch: dict[str, Any]) -> None:
        unknown = set(patch) - SESSION_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch session fields: {sorted(unknown)}")
        if not patch:
            return

        assignments = ", ".join(f"{column} = ?" for column in patch)
        values = [_to_db(v) for v in patch.values()]
        with self._write() as conn:
            conn.execute(
                f"UPDATE daily_sessions SET {assignments} WHERE id = ?",
                (*values, session_id),
            )

    def get_completed_session_dates(self, user_id: str) -> list[date]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT session_date FROM daily_sessions
                WHERE user_id = ? AND completed = 1
                ORDER BY session_date DESC
                """,
                (user_id,),
            ).fetchall()
        return [date.fromisoformat(r["session_date"]) for r in rows]

    # --- Answers ---

    @staticmethod
    def _insert_answer(conn: sqlite3.Connection, answer: AnswerRecord) -> None:
        conn.execute(
            """
            INSERT INTO user_answers (session_id, question_id, user_answer, is_correct,
                                      score, created_at)
            VALUES (?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
            """,
            (
                answer.session_id,
                answer.question_id,
                answer.chosen_option,
                int(answer.is_correct),
                answer.score,
                _to_db(answer.created_at),
            ),
        )

    @staticmethod
    def _upsert_attempt(
        conn: sqlite3.Connection, user_id: str, attempt_date: date, score: int
    ) -> None:
        conn.execute(
            """
            INSERT INTO attempts (user_id, attempt_date, score)
            VALUES (?, ?, ?)
            ON CONFLICT (user_id, attempt_date) DO UPDATE SET score = excluded.score
            """,
            (user_id, attempt_date.isoformat(), score),
        )

    @staticmethod
    def _increment_participation(conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute(
            """
            UPDATE users
            SET total_days_participated = total_days_participated + 1
            WHERE id = ?
            """,
            (user_id,),
        )

    def insert_answer(self, answer: AnswerRecord) -> None:
        with self._write() as conn:
            self._insert_answer(conn, answer)

    def get_answer(self, session_id: str, question_id: str) -> AnswerRecord | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM user_answers WHERE session_id = ? AND question_id = ?",
                (session_id, question_id),
            ).fetchone()
        return self._answer_from_row(row) if row else None

    def get_session_answers(self, session_id: str) -> list[AnswerRecord]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM user_answers WHERE session_id = ? ORDER BY id",
                (session_id,),
            ).fetchall()
        return [self._answer_from_row(r) for r in rows]

    def get_answered_question_ids(self, user_id: str) -> set[str]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT a.question_id
                FROM user_answers a
                         JOIN daily_sessions s ON s.id = a.session_id
                WHERE s.user_id = ?
                """,
                (user_id,),
            ).fetchall()
        return {r["question_id"] for r in rows}

    @measure_time("db_commit_answer")
    def commit_answer(
        self,
        session: DailySession,
        answer: AnswerRecord,
        expected_index: int,
        count_participation: bool,
    ) -> None:
        with self._write() as conn:
            self._insert_answer(conn, answer)

            cursor = conn.execute(
                """
                UPDATE daily_sessions
                SET current_question_index = ?,
                    total_score            = ?,
                    completed              = ?,
                    has_bonus              = ?,
                    question_started_at    = ?
                WHERE id = ?
                  AND current_question_index = ?
                """,
                (
                    session.current_question_index,
                    session.total_score,
                    int(session.completed),
                    int(session.has_bonus),
                    _to_db(session.question_started_at),
                    session.id,
                    expected_index,
                ),
            )
            if cursor.rowcount == 0:
                # Raised inside the transaction so the answer insert is rolled back too.
                raise ConflictError(f"Session {session.id} moved past index {expected_index}")

            self._upsert_attempt(conn, session.user_id, session.session_date, session.total_score)

            if count_participation:
                self._increment_participation(conn, session.user_id)
                conn.execute(
                    "UPDATE users SET last_active = ? WHERE id = ?",
                    (_to_db(answer.created_at), session.user_id),
                )

    def list_submissions(self, limit: int = 100) -> list[Submission]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT a.*, s.session_date, u.name AS user_name, u.email AS user_email,
                       q.json_data
                FROM user_answers a
                         JOIN daily_sessions s ON s.id = a.session_id
                         LEFT JOIN users u ON u.id = s.user_id
                         LEFT JOIN questions q ON q.id = a.question_id
                ORDER BY a.created_at DESC, a.id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            Submission(
                answer=self._answer_from_row(r),
                session_date=date.fromisoformat(r["session_date"]),
                user_name=r["user_name"] or "User",
                user_email=r["user_email"],
                question=Question.model_validate_json(r["json_data"]) if r["json_data"] else None,
            )
            for r in rows
        ]

    # --- Questions ---

    @measure_time("db_find_questions")
    def find_questions(
        self,
        difficulty: Difficulty,
        exclude_bonus: bool = True,
        exclude_ids: set[str] | None = None,
        limit: int = 20,
    ) -> list[Question]:
        sql = "SELECT json_data FROM questions WHERE difficulty = ?"
        params: list[Any] = [difficulty.code]
        if exclude_bonus:
            sql += " AND is_bonus = 0"
        if exclude_ids:
            placeholders = ",".join(["?"] * len(exclude_ids))
            sql += f" AND id NOT IN ({placeholders})"
            params.extend(sorted(exclude_ids))
        sql += " ORDER BY created_at, id LIMIT ?"
        params.append(limit)

        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Question.model_validate_json(r["json_data"]) for r in rows]

    def get_question(self, question_id: str) -> Question | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT json_data FROM questions WHERE id = ?", (question_id,)
            ).fetchone()
        return Question.model_validate_json(row["json_data"]) if row else None

    def find_bonus_question(self, on_date: date) -> Question | None:
        with self._read() as conn:
            row = conn.execute(
                """
                SELECT json_data FROM questions
                WHERE is_bonus = 1 AND bonus_date = ?
                ORDER BY id
                LIMIT 1
                """,
                (on_date.isoformat(),),
            ).fetchone()
        return Question.model_validate_json(row["json_data"]) if row else None

    def count_questions_by_difficulty(self) -> dict[Difficulty, int]:
        counts = {tier: 0 for tier in Difficulty.required()}
        with self._read() as conn:
            rows = conn.execute(
                "SELECT difficulty, COUNT(*) AS n FROM questions GROUP BY difficulty"
            ).fetchall()
        for r in rows:
            counts[Difficulty.from_code(r["difficulty"])] = r["n"]
        return counts

    @staticmethod
    def _question_params(q: Question) -> tuple[Any, ...]:
        return (
            q.id,
            q.difficulty.code,
            int(q.is_bonus),
            _to_db(q.bonus_date),
            q.model_dump_json(),
        )

    def add_question(self, question: Question) -> Question:
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO questions (id, difficulty, is_bonus, bonus_date, json_data)
                VALUES (?, ?, ?, ?, ?)
                """,
                self._question_params(question),
            )
        return question

    def delete_question(self, question_id: str) -> None:
        with self._write() as conn:
            conn.execute("DELETE FROM questions WHERE id = ?", (question_id,))

    def list_questions(self) -> list[Question]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT json_data FROM questions ORDER BY created_at DESC, id"
            ).fetchall()
        return [Question.model_validate_json(r["json_data"]) for r in rows]

    def is_empty(self) -> bool:
        """Helper for the Seeder."""
        with self._read() as conn:
            row = conn.execute("SELECT count(*) FROM questions").fetchone()
        return (row[0] if row else 0) == 0

    def seed_questions(self, questions: list[Question]) -> None:
        with self._write() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO questions (id, difficulty, is_bonus, bonus_date, json_data)
                VALUES (?, ?, ?, ?, ?)
                """,
                [self._question_params(q) for q in questions],
            )

    # --- Leaderboard ---

    def upsert_attempt(self, user_id: str, attempt_date: date, score: int) -> None:
        with self._write() as conn:
            self._upsert_attempt(conn, user_id, attempt_date, score)

    def list_attempts(self) -> list[Attempt]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT a.user_id, a.attempt_date, a.score, u.name AS user_name
                FROM attempts a
                         LEFT JOIN users u ON u.id = a.user_id
                ORDER BY a.attempt_date, a.user_id
                """
            ).fetchall()
        return [
            Attempt(
                user_id=r["user_id"],
                attempt_date=date.fromisoformat(r["attempt_date"]),
                score=r["score"],
                user_name=r["user_name"],
            )
            for r in rows
        ]

    # --- Users ---

    def get_user(self, user_id: str) -> User | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._user_from_row(row) if row else None

    def create_user(self, user: User) -> User:
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, name, role, is_banned, last_active,
                                   total_days_participated)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.email,
                    user.name,
                    user.role.value,
                    int(user.is_banned),
                    _to_db(user.last_active),
                    user.total_days_participated,
                ),
            )
        return user

    def update_user_name(self, user_id: str, name: str) -> None:
        with self._write() as conn:
            conn.execute("UPDATE users SET name = ? WHERE id = ?", (name, user_id))

    def list_users(self) -> list[User]:
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at DESC, id").fetchall()
        return [self._user_from_row(r) for r in rows]

    def set_banned(self, user_id: str, banned: bool) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE users SET is_banned = ? WHERE id = ?", (int(banned), user_id)
            )

    def touch_last_active(self, user_id: str, at: datetime) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE users SET last_active = ? WHERE id = ?", (at.isoformat(), user_id)
            )

    def increment_participation_days(self, user_id: str) -> None:
        with self._write() as conn:
            self._increment_participation(conn, user_id)

    # --- Settings ---

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._read() as conn:
            row = conn.execute(
                "SELECT value FROM app_settings WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row["value"]) if row else default

    def set_setting(self, key: str, value: Any) -> None:
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO app_settings (key, value) VALUES (?, ?)
                ON CONFLICT (key) DO UPDATE SET value = excluded.value
                """,
                (key, json.dumps(value)),
            )
