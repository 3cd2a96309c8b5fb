"""
Session and user context supplied by external collaborators.

The job processor only needs to read a session payload, the user's goal
and experience, a same-day check-in and the planned workout.  Anything
that can answer those questions satisfies ``ContextSource``.
``SqliteContextSource`` reads them from collaborator tables in the
progressor database and has write helpers for the CLI and tests.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from ..core.config import DEFAULT_GOAL
from ..core.errors import MissingContext, ValidationError
from ..core.models import CheckIn, PlannedWorkout, SessionContext, UserContext
from .database import Database
from .serializers import dict_to_checkin, dict_to_planned_workout, normalize_date

logger = logging.getLogger(__name__)

EXPERIENCE_LEVELS: tuple[str, ...] = ("beginner", "intermediate", "advanced")


class ContextSource(Protocol):
    def load_session(self, user_id: str, session_id: str) -> dict[str, Any] | None:
        """Raw session record: {"workout_date", "planned_workout_id", "payload"}."""
        ...

    def load_user(self, user_id: str) -> UserContext | None: ...

    def load_checkin(self, user_id: str, workout_date: str) -> CheckIn | None: ...

    def load_planned_workout(self, user_id: str, planned_workout_id: str) -> PlannedWorkout | None: ...


def load_session_context(
    source: ContextSource,
    user_id: str,
    session_id: str,
    workout_date: str | None = None,
    planned_workout_id: str | None = None,
) -> SessionContext:
    """
    Gather everything the processor needs for one session.

    The job's workout_date and planned_workout_id win over the session
    record's, since enqueue may have refreshed them.

    Raises:
        MissingContext: If the session or the user does not exist
    """
    session = source.load_session(user_id, session_id)
    if session is None:
        raise MissingContext(f"Session {session_id} not found for user {user_id}")
    user = source.load_user(user_id)
    if user is None:
        raise MissingContext(f"User {user_id} not found")

    date_str = normalize_date(workout_date or session["workout_date"])
    plan_id = planned_workout_id or session.get("planned_workout_id")
    planned = source.load_planned_workout(user_id, plan_id) if plan_id else None

    return SessionContext(
        user_id=user_id,
        session_id=session_id,
        workout_date=date_str,
        payload=session["payload"],
        user=user,
        checkin=source.load_checkin(user_id, date_str),
        planned_workout=planned,
    )


class SqliteContextSource:
    """ContextSource backed by collaborator tables in the same SQLite file."""

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def load_session(self, user_id: str, session_id: str) -> dict[str, Any] | None:
        with self.db.read() as tx:
            row = tx.fetchone(
                "SELECT * FROM workout_sessions WHERE id = ? AND user_id = ?",
                (session_id, user_id),
            )
        if row is None:
            return None
        try:
            payload = json.loads(row["payload"])
        except json.JSONDecodeError as e:
            raise ValidationError(f"Session {session_id} payload is not valid JSON: {e}") from e
        return {
            "workout_date": row["workout_date"],
            "planned_workout_id": row["planned_workout_id"],
            "payload": payload,
        }

    def load_user(self, user_id: str) -> UserContext | None:
        with self.db.read() as tx:
            row = tx.fetchone("SELECT * FROM user_profiles WHERE user_id = ?", (user_id,))
        if row is None:
            return None
        return UserContext(goal=row["goal"], experience=row["experience"])

    def load_checkin(self, user_id: str, workout_date: str) -> CheckIn | None:
        with self.db.read() as tx:
            row = tx.fetchone(
                "SELECT data FROM checkins WHERE user_id = ? AND checkin_date = ?",
                (user_id, workout_date),
            )
        return dict_to_checkin(json.loads(row["data"])) if row is not None else None

    def load_planned_workout(self, user_id: str, planned_workout_id: str) -> PlannedWorkout | None:
        with self.db.read() as tx:
            row = tx.fetchone(
                "SELECT data FROM planned_workouts WHERE id = ? AND user_id = ?",
                (planned_workout_id, user_id),
            )
        return dict_to_planned_workout(json.loads(row["data"])) if row is not None else None

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def save_user(self, user_id: str, goal: str = DEFAULT_GOAL, experience: str = "intermediate") -> None:
        if experience not in EXPERIENCE_LEVELS:
            raise ValidationError(f"Invalid experience: {experience}. Must be one of {EXPERIENCE_LEVELS}")
        with self.db.transaction() as tx:
            tx.execute(
                """INSERT INTO user_profiles (user_id, goal, experience) VALUES (?, ?, ?)
                   ON CONFLICT (user_id) DO UPDATE SET
                       goal = excluded.goal, experience = excluded.experience""",
                (user_id, goal, experience),
            )

    def save_session(
        self,
        user_id: str,
        session_id: str,
        workout_date: Any,
        payload: dict[str, Any],
        planned_workout_id: str | None = None,
    ) -> None:
        with self.db.transaction() as tx:
            tx.execute(
                """INSERT INTO workout_sessions (id, user_id, workout_date, planned_workout_id, payload)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT (id) DO UPDATE SET
                       workout_date = excluded.workout_date,
                       planned_workout_id = excluded.planned_workout_id,
                       payload = excluded.payload""",
                (session_id, user_id, normalize_date(workout_date), planned_workout_id, json.dumps(payload)),
            )
        logger.debug("Stored session %s for user %s", session_id, user_id)

    def save_checkin(self, user_id: str, checkin_date: Any, data: dict[str, Any]) -> None:
        dict_to_checkin(data)  # validate before storing
        with self.db.transaction() as tx:
            tx.execute(
                """INSERT INTO checkins (user_id, checkin_date, data) VALUES (?, ?, ?)
                   ON CONFLICT (user_id, checkin_date) DO UPDATE SET data = excluded.data""",
                (user_id, normalize_date(checkin_date), json.dumps(data)),
            )

    def save_planned_workout(self, user_id: str, planned_workout_id: str, data: dict[str, Any]) -> None:
        dict_to_planned_workout(data)
        with self.db.transaction() as tx:
            tx.execute(
                """INSERT INTO planned_workouts (id, user_id, data) VALUES (?, ?, ?)
                   ON CONFLICT (id) DO UPDATE SET data = excluded.data""",
                (planned_workout_id, user_id, json.dumps(data)),
            )
