import os
import sqlite3
import threading
from typing import Any

from src.shared.telemetry import Telemetry, measure_time

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users
    (
        id                      TEXT PRIMARY KEY,
        email                   TEXT,
        name                    TEXT    NOT NULL DEFAULT 'User',
        role                    TEXT    NOT NULL DEFAULT 'user',
        is_banned               BOOLEAN NOT NULL DEFAULT 0,
        last_active             TEXT,
        total_days_participated INTEGER NOT NULL DEFAULT 0,
        created_at              TEXT    DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions
    (
        id             TEXT PRIMARY KEY,
        difficulty     TEXT    NOT NULL,
        is_bonus       BOOLEAN NOT NULL DEFAULT 0,
        bonus_date     TEXT,
        json_data      TEXT    NOT NULL,
        created_at     TEXT    DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # At most one bonus question per calendar date.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_questions_bonus_date
        ON questions (bonus_date) WHERE is_bonus = 1
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_sessions
    (
        id                     TEXT PRIMARY KEY,
        user_id                TEXT    NOT NULL,
        session_date           TEXT    NOT NULL,
        question_ids           TEXT    NOT NULL,
        current_question_index INTEGER NOT NULL DEFAULT 0,
        total_score            INTEGER NOT NULL DEFAULT 0,
        completed              BOOLEAN NOT NULL DEFAULT 0,
        UNIQUE (user_id, session_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_answers
    (
        id             INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id     TEXT    NOT NULL REFERENCES daily_sessions (id),
        question_id    TEXT    NOT NULL,
        user_answer    INTEGER NOT NULL,
        is_correct     BOOLEAN NOT NULL,
        score          INTEGER NOT NULL DEFAULT 0,
        created_at     TEXT    DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (session_id, question_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attempts
    (
        user_id      TEXT    NOT NULL,
        attempt_date TEXT    NOT NULL,
        score        INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, attempt_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_settings
    (
        key   TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
]


class DatabaseManager:
    """
    Responsible for:
    1. Managing the SQLite connection lifecycle.
    2. Initializing the database schema (DDL).
    3. Handling migrations.
    4. Ensuring pickle-safety for Streamlit Session State.
    5. Serializing access to the shared connection across Streamlit threads.
    """

    def __init__(self, db_path: str = "data/quiz.db") -> None:
        self.db_path = db_path
        self.telemetry = Telemetry("DatabaseManager")
        self._shared_connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

        self._ensure_db_exists()

        # For in-memory DBs, we must keep the connection open immediately
        if self.db_path == ":memory:":
            self._shared_connection = self._connect()

        self._init_schema()
        self._migrate_schema()

    # --- SERIALIZATION LOGIC (Pickle Safety) ---
    def __getstate__(self) -> dict[str, Any]:
        """
        The SQLite connection cannot be pickled; it is re-created lazily.
        """
        state = self.__dict__.copy()
        state.pop("_shared_connection", None)
        state.pop("_lock", None)
        return state

    def __setstate__(self, state: dict[str, Any]) -> None:
        self.__dict__.update(state)
        self._shared_connection = None
        self._lock = threading.RLock()
        # Note: If using ":memory:", data is lost here.

    @property
    def lock(self):
        """Held for a whole read or transaction; the connection is shared by every session thread."""
        return self._lock

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        """Returns a usable database connection, reconnecting if necessary."""
        with self._lock:
            if self._shared_connection:
                try:
                    self._shared_connection.execute("SELECT 1")
                    return self._shared_connection
                except sqlite3.ProgrammingError:
                    # Connection was closed externally
                    self._shared_connection = None

            conn = self._connect()
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")

            self._shared_connection = conn
            return conn

    def close(self) -> None:
        with self._lock:
            if self._shared_connection:
                self._shared_connection.close()
                self._shared_connection = None

    def _ensure_db_exists(self) -> None:
        if self.db_path == ":memory:":
            return
        dir_name = os.path.dirname(self.db_path)
        if dir_name:
            os.makedirs(dir_name, exist_ok=True)

    @measure_time("db_init_schema")
    def _init_schema(self) -> None:
        conn = self.get_connection()
        try:
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()
        except sqlite3.Error as e:
            self.telemetry.log_error("Schema Init Failed", e)
            raise

    def _migrate_schema(self) -> None:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()

            cursor.execute("PRAGMA table_info(daily_sessions)")
            columns = [info[1] for info in cursor.fetchall()]

            # Migration: bonus flag arrived after the first release
            if "has_bonus" not in columns:
                self.telemetry.log_info("Migrating: Adding has_bonus to daily_sessions")
                cursor.execute(
                    "ALTER TABLE daily_sessions ADD COLUMN has_bonus BOOLEAN NOT NULL DEFAULT 0"
                )

            # Migration: timer persistence (anti-cheat)
            if "question_started_at" not in columns:
                self.telemetry.log_info(
                    "Migrating: Adding question_started_at to daily_sessions"
                )
                cursor.execute(
                    "ALTER TABLE daily_sessions ADD COLUMN question_started_at TEXT"
                )

            conn.commit()
        except sqlite3.Error as e:
            self.telemetry.log_error("Schema migration failed", e)
            raise
