"""
Durable outbox of progression jobs.

One job per completed session.  Jobs move pending → processing → done, or
back to pending with a backoff after a retryable failure, or to the
terminal failed status once attempts run out or the error is permanent.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from typing import Any

from ..core.clock import Clock, SystemClock, to_timestamp
from ..core.config import MAX_ATTEMPTS, MAX_ERROR_LENGTH, STALE_PROCESSING_SECONDS, backoff_seconds
from ..core.errors import JobNotFound
from ..core.models import JOB_STATUSES, Job
from .database import Database, Transaction
from .serializers import normalize_date

logger = logging.getLogger(__name__)

STALE_LEASE_ERROR = "processing lease expired (worker crashed or timed out)"


def _row_to_job(row: Any) -> Job:
    return Job(
        id=row["id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        workout_date=row["workout_date"],
        planned_workout_id=row["planned_workout_id"],
        status=row["status"],
        attempts=int(row["attempts"]),
        next_run_at=row["next_run_at"],
        last_error=row["last_error"],
        result=json.loads(row["result"]) if row["result"] else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def truncate_error(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    return message if len(message) <= limit else message[:limit]


class JobQueue:
    """
    SQLite-backed job queue.

    Claims happen inside BEGIN IMMEDIATE transactions, so two workers on
    the same database can never claim the same job.
    """

    def __init__(
        self,
        db: Database,
        clock: Clock | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        stale_seconds: float = STALE_PROCESSING_SECONDS,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.stale_seconds = stale_seconds

    def _now(self) -> str:
        return to_timestamp(self.clock.now())

    def _stale_cutoff(self) -> str:
        return to_timestamp(self.clock.now() - timedelta(seconds=self.stale_seconds))

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        user_id: str,
        session_id: str,
        workout_date: Any = None,
        planned_workout_id: str | None = None,
    ) -> Job:
        """
        Insert a pending job for the session, or refresh the existing one.

        Repeat calls for the same session update planned_workout_id and
        workout_date only; status, attempts and result are left alone.
        Omitted values keep what the job already has.  A new job without a
        date takes the stored session's date, then today's.
        """
        now = self._now()
        with self.db.transaction() as tx:
            if workout_date is None:
                date_str = self._known_workout_date(tx, session_id)
            else:
                date_str = normalize_date(workout_date)
            tx.execute(
                """INSERT INTO progression_jobs
                       (id, user_id, session_id, planned_workout_id, workout_date,
                        status, attempts, next_run_at, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, 'pending', 0, ?, ?, ?)
                   ON CONFLICT (session_id) DO UPDATE SET
                       planned_workout_id = COALESCE(excluded.planned_workout_id,
                                                     progression_jobs.planned_workout_id),
                       workout_date = excluded.workout_date,
                       updated_at = excluded.updated_at""",
                (uuid.uuid4().hex, user_id, session_id, planned_workout_id, date_str, now, now, now),
            )
            row = tx.fetchone("SELECT * FROM progression_jobs WHERE session_id = ?", (session_id,))
        job = _row_to_job(row)
        logger.debug("Enqueued job %s for session %s (status=%s)", job.id, session_id, job.status)
        return job

    def _known_workout_date(self, tx: Transaction, session_id: str) -> str:
        for query in (
            "SELECT workout_date FROM progression_jobs WHERE session_id = ?",
            "SELECT workout_date FROM workout_sessions WHERE id = ?",
        ):
            row = tx.fetchone(query, (session_id,))
            if row is not None:
                return row["workout_date"]
        return self.clock.now().date().isoformat()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _expire_stale_leases(self, tx: Transaction) -> None:
        """
        Return jobs whose processing lease ran out to pending with a backoff.

        The lost run counts as a failed attempt, so a job that keeps
        crashing its worker ends up failed like any other.
        """
        now_dt = self.clock.now()
        now = to_timestamp(now_dt)
        rows = tx.fetchall(
            "SELECT id, attempts FROM progression_jobs WHERE status = 'processing' AND claimed_at <= ?",
            (self._stale_cutoff(),),
        )
        for row in rows:
            attempts = int(row["attempts"]) + 1
            if attempts >= self.max_attempts:
                tx.execute(
                    """UPDATE progression_jobs
                       SET status = 'failed', attempts = ?, last_error = ?, updated_at = ?
                       WHERE id = ?""",
                    (attempts, STALE_LEASE_ERROR, now, row["id"]),
                )
                logger.warning("Job %s failed permanently after stale lease", row["id"])
                continue
            next_run_at = to_timestamp(now_dt + timedelta(seconds=backoff_seconds(attempts)))
            tx.execute(
                """UPDATE progression_jobs
                   SET status = 'pending', attempts = ?, last_error = ?,
                       next_run_at = ?, updated_at = ?
                   WHERE id = ?""",
                (attempts, STALE_LEASE_ERROR, next_run_at, now, row["id"]),
            )
            logger.warning("Stale job %s rescheduled for %s (attempt %d)", row["id"], next_run_at, attempts)

    def _claim(self, tx: Transaction, job_id: str) -> Job:
        now = self._now()
        tx.execute(
            """UPDATE progression_jobs
               SET status = 'processing', claimed_at = ?, updated_at = ?
               WHERE id = ?""",
            (now, now, job_id),
        )
        claimed = tx.fetchone("SELECT * FROM progression_jobs WHERE id = ?", (job_id,))
        return _row_to_job(claimed)

    def claim_next(self) -> Job | None:
        """
        Claim the oldest due job, if any.

        Stale processing leases are expired first; such jobs become due
        again once their backoff has elapsed.

        Returns:
            The claimed job (now "processing"), or None if nothing is due
        """
        with self.db.transaction() as tx:
            self._expire_stale_leases(tx)
            row = tx.fetchone(
                """SELECT id FROM progression_jobs
                   WHERE status = 'pending' AND next_run_at <= ?
                   ORDER BY next_run_at, created_at
                   LIMIT 1""",
                (self._now(),),
            )
            if row is None:
                return None
            job = self._claim(tx, row["id"])
        logger.debug("Claimed job %s (attempts=%d)", job.id, job.attempts)
        return job

    def claim_by_id(self, job_id: str, force: bool = False) -> Job | None:
        """
        Claim a specific job for synchronous processing.

        Args:
            job_id: Job to claim
            force: Ignore next_run_at (run a backed-off job right now)

        Returns:
            The claimed job, or None if it is done, failed, actively being
            processed, or (without force) not yet due

        Raises:
            JobNotFound: If no job has this id
        """
        with self.db.transaction() as tx:
            self._expire_stale_leases(tx)
            row = tx.fetchone("SELECT * FROM progression_jobs WHERE id = ?", (job_id,))
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")
            if row["status"] != "pending":
                return None
            if not force and row["next_run_at"] > self._now():
                return None
            return self._claim(tx, job_id)

    def mark_done(self, tx: Transaction, job_id: str, result: dict[str, Any]) -> None:
        """Record success inside the caller's transaction."""
        now = self._now()
        tx.execute(
            """UPDATE progression_jobs
               SET status = 'done', result = ?, last_error = NULL,
                   completed_at = ?, updated_at = ?
               WHERE id = ?""",
            (json.dumps(result), now, now, job_id),
        )

    def mark_failed(self, job_id: str, error: str, retryable: bool = True) -> Job:
        """
        Record a failed attempt.

        attempts += 1 and last_error is stored (truncated).  The job goes
        back to pending with next_run_at = now + backoff(attempts), or to
        failed when the error is not retryable or attempts are exhausted.

        Returns:
            The updated job
        """
        message = truncate_error(error)
        now_dt = self.clock.now()
        now = to_timestamp(now_dt)
        with self.db.transaction() as tx:
            row = tx.fetchone("SELECT * FROM progression_jobs WHERE id = ?", (job_id,))
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")
            attempts = int(row["attempts"]) + 1
            if not retryable or attempts >= self.max_attempts:
                tx.execute(
                    """UPDATE progression_jobs
                       SET status = 'failed', attempts = ?, last_error = ?, updated_at = ?
                       WHERE id = ?""",
                    (attempts, message, now, job_id),
                )
            else:
                next_run_at = to_timestamp(now_dt + timedelta(seconds=backoff_seconds(attempts)))
                tx.execute(
                    """UPDATE progression_jobs
                       SET status = 'pending', attempts = ?, last_error = ?,
                           next_run_at = ?, updated_at = ?
                       WHERE id = ?""",
                    (attempts, message, next_run_at, now, job_id),
                )
            updated = tx.fetchone("SELECT * FROM progression_jobs WHERE id = ?", (job_id,))
        return _row_to_job(updated)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job | None:
        with self.db.read() as tx:
            row = tx.fetchone("SELECT * FROM progression_jobs WHERE id = ?", (job_id,))
        return _row_to_job(row) if row is not None else None

    def get_status(self, job_id: str) -> dict[str, Any]:
        """
        Public job status.

        Raises:
            JobNotFound: If no job has this id
        """
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}")
        return {
            "status": job.status,
            "attempts": job.attempts,
            "last_error": job.last_error,
            "result": job.result,
        }

    def list_jobs(self, status: str | None = None, limit: int = 50) -> list[Job]:
        if status is not None and status not in JOB_STATUSES:
            raise ValueError(f"Invalid job status: {status}. Must be one of {JOB_STATUSES}")
        with self.db.read() as tx:
            if status is None:
                rows = tx.fetchall(
                    "SELECT * FROM progression_jobs ORDER BY created_at DESC LIMIT ?", (limit,)
                )
            else:
                rows = tx.fetchall(
                    """SELECT * FROM progression_jobs WHERE status = ?
                       ORDER BY created_at DESC LIMIT ?""",
                    (status, limit),
                )
        return [_row_to_job(r) for r in rows]
