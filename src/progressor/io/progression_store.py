"""
Durable progression state and per-session exercise history.

All mutating calls take an open ``Transaction`` from ``Database.transaction()``
so that locking, engine evaluation and the final write happen atomically.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..core.clock import Clock, SystemClock, to_timestamp
from ..core.config import HISTORY_WINDOW
from ..core.models import HistoryEntry, ProgressionState
from .database import Database, Transaction
from .locks import KeyedLocks, default_locks
from .serializers import sets_from_json, sets_to_json

logger = logging.getLogger(__name__)


def _row_to_state(row: Any) -> ProgressionState:
    return ProgressionState(
        user_id=row["user_id"],
        exercise_id=row["exercise_id"],
        current_weight=float(row["current_weight"]),
        status=row["status"],
        stall_count=int(row["stall_count"]),
        deload_count=int(row["deload_count"]),
        last_progress_date=row["last_progress_date"],
    )


def _row_to_entry(row: Any) -> HistoryEntry:
    return HistoryEntry(
        user_id=row["user_id"],
        exercise_id=row["exercise_id"],
        session_id=row["session_id"],
        workout_date=row["workout_date"],
        sets=sets_from_json(row["sets"]),
    )


class ProgressionStore:
    """
    SQLite-backed store for ProgressionState and HistoryEntry rows.

    Each (user_id, exercise_id) has at most one state row.  History rows are
    unique per (user_id, exercise_id, session_id), which is what makes
    redelivered jobs harmless.
    """

    def __init__(
        self,
        db: Database,
        locks: KeyedLocks | None = None,
        clock: Clock | None = None,
        history_window: int = HISTORY_WINDOW,
    ):
        self.db = db
        self.locks = locks or default_locks
        self.clock = clock or SystemClock()
        self.history_window = history_window

    # ------------------------------------------------------------------
    # Transactional API
    # ------------------------------------------------------------------

    def get_snapshot(
        self, tx: Transaction, user_id: str, exercise_id: str
    ) -> tuple[ProgressionState | None, list[HistoryEntry]]:
        """
        Current state plus the most recent history entries.

        Returns:
            (state, history): state is None until the first session for the
            pair has been committed; history is chronological (oldest first)
            and bounded by ``history_window``
        """
        row = tx.fetchone(
            "SELECT * FROM progression_state WHERE user_id = ? AND exercise_id = ? AND initialized = 1",
            (user_id, exercise_id),
        )
        rows = tx.fetchall(
            """SELECT * FROM exercise_history
               WHERE user_id = ? AND exercise_id = ?
               ORDER BY workout_date DESC, created_at DESC
               LIMIT ?""",
            (user_id, exercise_id, self.history_window),
        )
        history = [_row_to_entry(r) for r in reversed(rows)]
        return (_row_to_state(row) if row is not None else None), history

    def lock_for_update(self, tx: Transaction, user_id: str, exercise_id: str) -> None:
        """
        Take the exclusive per-key lock for the rest of the transaction.

        Inserts an uninitialized placeholder row if the pair has no state yet,
        so every writer for the key contends on the same row.

        Raises:
            TransientStoreError: If the lock is not acquired within the timeout
        """
        key = (user_id, exercise_id)
        lease = self.locks.acquire(key)
        tx.hold(lease.release)
        tx.execute(
            """INSERT OR IGNORE INTO progression_state
                   (user_id, exercise_id, status, initialized, updated_at)
               VALUES (?, ?, 'maintaining', 0, ?)""",
            (user_id, exercise_id, to_timestamp(self.clock.now())),
        )
        logger.debug("Locked progression key %s/%s", user_id, exercise_id)

    def get_history_entry(
        self, tx: Transaction, user_id: str, exercise_id: str, session_id: str
    ) -> tuple[HistoryEntry, dict[str, Any] | None] | None:
        """Stored entry and its decision for a session, or None if not applied yet."""
        row = tx.fetchone(
            """SELECT * FROM exercise_history
               WHERE user_id = ? AND exercise_id = ? AND session_id = ?""",
            (user_id, exercise_id, session_id),
        )
        if row is None:
            return None
        decision = json.loads(row["decision"]) if row["decision"] else None
        return _row_to_entry(row), decision

    def commit(
        self,
        tx: Transaction,
        state: ProgressionState,
        entry: HistoryEntry,
        decision: dict[str, Any] | None = None,
    ) -> None:
        """
        Upsert the state row and the session's history entry.

        A second commit for the same session overwrites the entry instead
        of adding a row.
        """
        now = to_timestamp(self.clock.now())
        tx.execute(
            """INSERT INTO progression_state
                   (user_id, exercise_id, current_weight, status, stall_count,
                    deload_count, last_progress_date, initialized, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)
               ON CONFLICT (user_id, exercise_id) DO UPDATE SET
                   current_weight = excluded.current_weight,
                   status = excluded.status,
                   stall_count = excluded.stall_count,
                   deload_count = excluded.deload_count,
                   last_progress_date = excluded.last_progress_date,
                   initialized = 1,
                   updated_at = excluded.updated_at""",
            (
                state.user_id,
                state.exercise_id,
                state.current_weight,
                state.status,
                state.stall_count,
                state.deload_count,
                state.last_progress_date,
                now,
            ),
        )
        tx.execute(
            """INSERT INTO exercise_history
                   (user_id, exercise_id, session_id, workout_date, sets, decision, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (user_id, exercise_id, session_id) DO UPDATE SET
                   workout_date = excluded.workout_date,
                   sets = excluded.sets,
                   decision = excluded.decision""",
            (
                entry.user_id,
                entry.exercise_id,
                entry.session_id,
                entry.workout_date,
                sets_to_json(entry.sets),
                json.dumps(decision) if decision is not None else None,
                now,
            ),
        )
        logger.debug(
            "Committed %s/%s: weight=%.2f status=%s stall=%d",
            state.user_id,
            state.exercise_id,
            state.current_weight,
            state.status,
            state.stall_count,
        )

    # ------------------------------------------------------------------
    # Read-only helpers (CLI, diagnostics)
    # ------------------------------------------------------------------

    def get_state(self, user_id: str, exercise_id: str) -> ProgressionState | None:
        with self.db.read() as tx:
            state, _ = self.get_snapshot(tx, user_id, exercise_id)
        return state

    def get_history(self, user_id: str, exercise_id: str) -> list[HistoryEntry]:
        with self.db.read() as tx:
            _, history = self.get_snapshot(tx, user_id, exercise_id)
        return history

    def list_states(self, user_id: str) -> list[ProgressionState]:
        """All bootstrapped states for a user, ordered by exercise id."""
        with self.db.read() as tx:
            rows = tx.fetchall(
                """SELECT * FROM progression_state
                   WHERE user_id = ? AND initialized = 1
                   ORDER BY exercise_id""",
                (user_id,),
            )
        return [_row_to_state(r) for r in rows]

    def count_history(self, user_id: str, exercise_id: str) -> int:
        with self.db.read() as tx:
            row = tx.fetchone(
                "SELECT COUNT(*) AS n FROM exercise_history WHERE user_id = ? AND exercise_id = ?",
                (user_id, exercise_id),
            )
        return int(row["n"])
