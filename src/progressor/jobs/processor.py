"""
Job processor: apply one completed session to progression state.

Flow for a job:
  1. load session/user/check-in/plan from the ContextSource
  2. validate the session payload
  3. in ONE write transaction, for each exercise with performed sets
     (sorted by exercise id so locks are always taken in the same order):
       lock key → replay check → snapshot → engine → commit
  4. mark the job done with a ProgressionSummary, same transaction

A redelivered job finds its history rows already written, returns the
stored decisions and leaves state untouched.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.adaptation import should_rotate_exercise
from ..core.engine import EngineRules, decide_progression
from ..core.errors import ProgressionError
from ..core.models import (
    EngineInput,
    ExerciseInput,
    HistoryEntry,
    Job,
    OverrideSignals,
    ProgressionSummary,
    SessionContext,
    SessionInput,
)
from ..io.context_source import ContextSource, load_session_context
from ..io.database import Database, Transaction
from ..io.job_queue import JobQueue
from ..io.progression_store import ProgressionStore
from ..io.serializers import parse_session_payload, summary_to_dict

logger = logging.getLogger(__name__)


def build_signals(ctx: SessionContext, session: SessionInput, exercise_id: str) -> OverrideSignals:
    planned = ctx.planned_workout
    return OverrideSignals(
        intent=planned.intent if planned is not None else None,
        checkin=ctx.checkin,
        planned_sets=planned.planned_sets.get(exercise_id) if planned is not None else None,
        planned_duration_min=planned.duration_min if planned is not None else None,
        performed_duration_min=session.duration_min,
    )


def _recommendation(stored: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in stored.items() if k != "details"}


class JobProcessor:
    """Runs the engine for a job's session and persists the outcome."""

    def __init__(
        self,
        db: Database,
        queue: JobQueue,
        store: ProgressionStore,
        context: ContextSource,
        rules: EngineRules | None = None,
    ):
        self.db = db
        self.queue = queue
        self.store = store
        self.context = context
        self.rules = rules or EngineRules()

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def _apply_exercise(
        self,
        tx: Transaction,
        ctx: SessionContext,
        session: SessionInput,
        exercise: ExerciseInput,
        summary: ProgressionSummary,
        commit: bool,
    ) -> None:
        user_id, exercise_id = ctx.user_id, exercise.exercise_id
        if commit:
            self.store.lock_for_update(tx, user_id, exercise_id)

        existing = self.store.get_history_entry(tx, user_id, exercise_id, ctx.session_id)
        state, history = self.store.get_snapshot(tx, user_id, exercise_id)

        if existing is not None and existing[1] is not None:
            logger.debug("Session %s already applied to %s; replaying stored decision", ctx.session_id, exercise_id)
            summary.record(_recommendation(existing[1]))
            if state is not None and should_rotate_exercise(state, history, ctx.workout_date):
                summary.rotation_suggestions.append(exercise_id)
            return

        prior = [h for h in history if h.session_id != ctx.session_id]
        decision = decide_progression(
            EngineInput(
                user_id=user_id,
                exercise=exercise,
                workout_date=ctx.workout_date,
                state=state,
                history=tuple(prior),
                session_rpe=session.session_rpe,
                goal=ctx.user.goal,
                experience=ctx.user.experience,
                signals=build_signals(ctx, session, exercise_id),
            ),
            self.rules,
        )
        entry = HistoryEntry(
            user_id=user_id,
            exercise_id=exercise_id,
            session_id=ctx.session_id,
            workout_date=ctx.workout_date,
            sets=list(exercise.sets),
        )
        recommendation = decision.to_recommendation()
        if commit:
            self.store.commit(tx, decision.next_state, entry, {**recommendation, "details": decision.details})

        summary.record(recommendation)
        if should_rotate_exercise(decision.next_state, prior + [entry], ctx.workout_date):
            summary.rotation_suggestions.append(exercise_id)

    def _apply_session(
        self, tx: Transaction, ctx: SessionContext, session: SessionInput, commit: bool
    ) -> ProgressionSummary:
        summary = ProgressionSummary()
        for exercise in sorted(session.exercises, key=lambda e: e.exercise_id):
            if not exercise.performed_sets:
                summary.skipped_count += 1
                continue
            self._apply_exercise(tx, ctx, session, exercise, summary, commit)
        return summary

    def process(self, job: Job) -> ProgressionSummary:
        """
        Apply a claimed job and mark it done.

        Raises:
            MissingContext: Session or user not found
            EngineInputInvalid: Malformed session payload
            TransientStoreError: Lock timeout or database contention
        """
        ctx = load_session_context(
            self.context, job.user_id, job.session_id, job.workout_date, job.planned_workout_id
        )
        session = parse_session_payload(ctx.payload)
        with self.db.transaction() as tx:
            summary = self._apply_session(tx, ctx, session, commit=True)
            self.queue.mark_done(tx, job.id, summary_to_dict(summary))
        logger.info(
            "Job %s done: user=%s session=%s progressed=%d maintained=%d deloaded=%d skipped=%d",
            job.id,
            job.user_id,
            job.session_id,
            summary.progressed_count,
            summary.maintained_count,
            summary.deload_count,
            summary.skipped_count,
        )
        return summary

    # ------------------------------------------------------------------
    # Async path
    # ------------------------------------------------------------------

    def run(self, job: Job) -> bool:
        """
        Process a job on behalf of the worker.

        Errors are recorded on the job instead of raised: retryable ones
        reschedule it with backoff, permanent ones fail it.

        Returns:
            True if the job completed
        """
        try:
            self.process(job)
            return True
        except ProgressionError as e:
            retryable = e.retryable
            message = f"{type(e).__name__}: {e}"
        except Exception as e:
            logger.exception("Unexpected error processing job %s", job.id)
            retryable = True
            message = f"{type(e).__name__}: {e}"

        try:
            updated = self.queue.mark_failed(job.id, message, retryable=retryable)
        except ProgressionError as e:
            # Left in processing; the stale-lease sweep will pick it up.
            logger.error("Could not record failure for job %s: %s", job.id, e)
            return False

        log = logger.warning if updated.status == "pending" else logger.error
        log(
            "Job %s %s (attempt %d): user=%s session=%s error=%s",
            job.id,
            "rescheduled" if updated.status == "pending" else "failed",
            updated.attempts,
            job.user_id,
            job.session_id,
            message,
        )
        return False

    # ------------------------------------------------------------------
    # Synchronous path
    # ------------------------------------------------------------------

    def process_now(self, job_id: str, force: bool = True) -> dict[str, Any]:
        """
        Claim and process a job immediately.

        Failures are recorded on the job and then re-raised.  A job that
        cannot be claimed (done, failed, or held by a worker) is left alone.

        Returns:
            The job's status dict after the attempt

        Raises:
            JobNotFound: Unknown job id
            ProgressionError: Whatever processing raised
        """
        job = self.queue.claim_by_id(job_id, force=force)
        if job is None:
            logger.info("Job %s not claimable; returning current status", job_id)
            return self.queue.get_status(job_id)
        try:
            self.process(job)
        except ProgressionError as e:
            self.queue.mark_failed(job.id, f"{type(e).__name__}: {e}", retryable=e.retryable)
            raise
        return self.queue.get_status(job_id)

    def preview(
        self,
        user_id: str,
        session_id: str,
        workout_date: str | None = None,
        planned_workout_id: str | None = None,
    ) -> ProgressionSummary:
        """
        Evaluate a session without writing anything.

        Takes no locks and commits nothing; the result reflects the state
        as it is right now.
        """
        ctx = load_session_context(self.context, user_id, session_id, workout_date, planned_workout_id)
        session = parse_session_payload(ctx.payload)
        with self.db.read() as tx:
            return self._apply_session(tx, ctx, session, commit=False)
