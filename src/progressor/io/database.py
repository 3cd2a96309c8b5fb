"""
SQLite connection management and schema.

Every unit of work opens its own connection (sqlite3 connections are not
shared across threads) inside ``Database.transaction()``, which starts a
``BEGIN IMMEDIATE`` write transaction.  That takes SQLite's write lock up
front, so two workers cannot both read a stale row and then write it.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any, Iterator

from ..core.config import SQLITE_BUSY_TIMEOUT_SECONDS
from ..core.errors import TransientStoreError

logger = logging.getLogger(__name__)

SCHEMA: tuple[str, ...] = (
    # Progression core
    """CREATE TABLE IF NOT EXISTS progression_state (
            user_id TEXT NOT NULL,
            exercise_id TEXT NOT NULL,
            current_weight REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'maintaining',
            stall_count INTEGER NOT NULL DEFAULT 0,
            deload_count INTEGER NOT NULL DEFAULT 0,
            last_progress_date TEXT,
            initialized INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT,
            PRIMARY KEY (user_id, exercise_id)
        );""",
    """CREATE TABLE IF NOT EXISTS exercise_history (
            user_id TEXT NOT NULL,
            exercise_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            workout_date TEXT NOT NULL,
            sets TEXT NOT NULL,
            decision TEXT,
            created_at TEXT,
            PRIMARY KEY (user_id, exercise_id, session_id)
        );""",
    """CREATE INDEX IF NOT EXISTS idx_exercise_history_date
            ON exercise_history (user_id, exercise_id, workout_date);""",
    # Outbox
    """CREATE TABLE IF NOT EXISTS progression_jobs (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            session_id TEXT NOT NULL UNIQUE,
            planned_workout_id TEXT,
            workout_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            next_run_at TEXT NOT NULL,
            last_error TEXT,
            result TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            claimed_at TEXT,
            completed_at TEXT
        );""",
    """CREATE INDEX IF NOT EXISTS idx_progression_jobs_status
            ON progression_jobs (status, next_run_at);""",
    # Collaborator data (sessions, profiles, check-ins, plans)
    """CREATE TABLE IF NOT EXISTS workout_sessions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            workout_date TEXT NOT NULL,
            planned_workout_id TEXT,
            payload TEXT NOT NULL
        );""",
    """CREATE TABLE IF NOT EXISTS user_profiles (
            user_id TEXT PRIMARY KEY,
            goal TEXT NOT NULL DEFAULT 'build_muscle',
            experience TEXT NOT NULL DEFAULT 'intermediate'
        );""",
    """CREATE TABLE IF NOT EXISTS checkins (
            user_id TEXT NOT NULL,
            checkin_date TEXT NOT NULL,
            data TEXT NOT NULL,
            PRIMARY KEY (user_id, checkin_date)
        );""",
    """CREATE TABLE IF NOT EXISTS planned_workouts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            data TEXT NOT NULL
        );""",
)


def get_default_db_path() -> Path:
    """$PROGRESSOR_DB_PATH, else ~/.progressor/progressor.db."""
    override = os.environ.get("PROGRESSOR_DB_PATH")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".progressor" / "progressor.db"


def is_transient(error: sqlite3.Error) -> bool:
    """Lock contention and I/O hiccups are worth retrying; schema errors are not."""
    message = str(error).lower()
    return isinstance(error, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message or "unable to open" in message or "disk i/o" in message
    )


class Transaction:
    """
    An open write transaction.

    Resources registered with ``hold`` (per-key locks) are released when
    the transaction ends, after COMMIT or ROLLBACK.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._held = ExitStack()

    def execute(self, sql: str, params: tuple | dict = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: tuple | dict = ()) -> sqlite3.Row | None:
        return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple | dict = ()) -> list[sqlite3.Row]:
        return self.conn.execute(sql, params).fetchall()

    def hold(self, release: Any) -> None:
        """Run ``release()`` when the transaction ends."""
        self._held.callback(release)

    def _release_all(self) -> None:
        self._held.close()


class Database:
    """SQLite connection factory with schema initialization."""

    def __init__(self, path: str | Path, busy_timeout: float = SQLITE_BUSY_TIMEOUT_SECONDS):
        self.path = Path(path)
        self.busy_timeout = busy_timeout

    def init(self) -> None:
        """Create the database file, parent directories and tables if missing."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.debug("Initialized database at %s", self.path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; closed on exit."""
        try:
            conn = sqlite3.connect(self.path, timeout=self.busy_timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise TransientStoreError(f"Cannot open database {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        BEGIN IMMEDIATE … COMMIT, rolling back on any exception.

        Transient SQLite errors (locked/busy) are re-raised as
        TransientStoreError so the job processor retries them.
        """
        with self.connect() as conn:
            tx = Transaction(conn)
            try:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    if is_transient(e):
                        raise TransientStoreError(f"Could not start transaction: {e}") from e
                    raise
                try:
                    yield tx
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
            except sqlite3.Error as e:
                if is_transient(e):
                    raise TransientStoreError(str(e)) from e
                raise
            finally:
                tx._release_all()

    @contextmanager
    def read(self) -> Iterator[Transaction]:
        """Read-only access outside a write transaction."""
        with self.connect() as conn:
            yield Transaction(conn)
