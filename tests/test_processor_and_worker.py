"""
End-to-end tests: session payload → job → processor → store, and the worker loop.
"""

import random
import threading
import time

import pytest

from progressor.core.clock import FakeClock
from progressor.core.errors import EngineInputInvalid, MissingContext, TransientStoreError
from progressor.io.context_source import SqliteContextSource
from progressor.io.database import Database
from progressor.io.job_queue import JobQueue
from progressor.io.locks import KeyedLocks
from progressor.io.progression_store import ProgressionStore
from progressor.jobs.processor import JobProcessor
from progressor.jobs.worker import ProgressionWorker

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class Pipeline:
    """All services wired on one temporary database."""

    def __init__(self, tmp_path, context=None):
        self.clock = FakeClock()
        self.db = Database(tmp_path / "progressor.db")
        self.db.init()
        self.store = ProgressionStore(self.db, locks=KeyedLocks(timeout=5), clock=self.clock)
        self.queue = JobQueue(self.db, clock=self.clock)
        self.context = SqliteContextSource(self.db)
        self.processor = JobProcessor(self.db, self.queue, self.store, context or self.context)

    def record(self, session_id, exercises, date="2026-02-16", user_id="u1", plan_id=None, **payload):
        payload = {"exercises": exercises, **payload}
        self.context.save_session(user_id, session_id, date, payload, planned_workout_id=plan_id)
        return self.queue.enqueue(user_id, session_id, date, planned_workout_id=plan_id)

    def run_next(self):
        job = self.queue.claim_next()
        assert job is not None
        return self.processor.run(job), job


def _exercise(sets, exercise_id="bench_press", rep_range="8-12", effort="working", **extra):
    return {
        "id": exercise_id,
        "targetRepRange": rep_range,
        "effort": effort,
        "sets": [{"reps": r, "weight": w} for r, w in sets],
        **extra,
    }


@pytest.fixture
def pipeline(tmp_path):
    p = Pipeline(tmp_path)
    p.context.save_user("u1", goal="build_muscle")
    return p


class RaisingContext(SqliteContextSource):
    """Context source whose session lookup fails with a chosen error."""

    def __init__(self, db, error):
        super().__init__(db)
        self.error = error

    def load_session(self, user_id, session_id):
        raise self.error


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


class TestProcessJob:
    def test_first_session_progresses(self, pipeline):
        job = pipeline.record(
            "s1",
            [_exercise([(10, 40), (12, 60), (12, 60), (12, 60)])],
            feedback={"sessionRpe": 7},
        )
        ok, _ = pipeline.run_next()

        assert ok is True
        state = pipeline.store.get_state("u1", "bench_press")
        assert state.current_weight == 62.5
        assert state.stall_count == 0
        history = pipeline.store.get_history("u1", "bench_press")
        assert len(history) == 1
        assert len(history[0].sets) == 4

        status = pipeline.queue.get_status(job.id)
        assert status["status"] == "done"
        assert status["result"]["progressed_count"] == 1
        assert status["result"]["details"][0]["new_weight"] == 62.5

    def test_failure_then_half_failure(self, pipeline):
        pipeline.record("s1", [_exercise([(7, 100), (7, 100), (8, 100)])], date="2026-02-16")
        pipeline.run_next()
        state = pipeline.store.get_state("u1", "bench_press")
        assert state.stall_count == 1

        job = pipeline.record("s2", [_exercise([(7, 100), (7, 100), (8, 100), (8, 100)])], date="2026-02-19")
        pipeline.run_next()
        state = pipeline.store.get_state("u1", "bench_press")
        assert state.stall_count == 1
        detail = pipeline.queue.get_status(job.id)["result"]["details"][0]
        assert detail["failed_lower_bound"] is False

    def test_replay_is_idempotent(self, pipeline):
        pipeline.record("s1", [_exercise([(12, 60), (12, 60), (12, 60)])])
        _, job = pipeline.run_next()
        first_state = pipeline.store.get_state("u1", "bench_press")

        summary = pipeline.processor.process(job)

        assert pipeline.store.get_state("u1", "bench_press") == first_state
        assert pipeline.store.count_history("u1", "bench_press") == 1
        assert summary.progressed_count == 1
        assert summary.details[0]["new_weight"] == 62.5

    def test_exercises_without_sets_are_skipped(self, pipeline):
        job = pipeline.record(
            "s1",
            [
                _exercise([(12, 60), (12, 60)]),
                _exercise([], exercise_id="squat"),
                _exercise([(0, 0)], exercise_id="row"),
            ],
        )
        pipeline.run_next()
        result = pipeline.queue.get_status(job.id)["result"]
        assert result["total_exercises"] == 1
        assert result["skipped_count"] == 2
        assert pipeline.store.get_state("u1", "squat") is None

    def test_checkin_pain_suspends_penalty(self, pipeline):
        pipeline.context.save_checkin("u1", "2026-02-16", {"pain": [{"location": "knee", "level": 6}]})
        job = pipeline.record("s1", [_exercise([(5, 100), (5, 100), (5, 100)], exercise_id="squat")])
        pipeline.run_next()
        detail = pipeline.queue.get_status(job.id)["result"]["details"][0]
        assert detail["reason"] == "override:checkin_pain"
        assert pipeline.store.get_state("u1", "squat").stall_count == 0

    def test_planned_sets_drive_low_volume(self, pipeline):
        pipeline.context.save_planned_workout("u1", "p1", {"intent": "normal", "plannedSets": {"squat": 5}})
        job = pipeline.record("s1", [_exercise([(5, 100), (5, 100)], exercise_id="squat")], plan_id="p1")
        pipeline.run_next()
        detail = pipeline.queue.get_status(job.id)["result"]["details"][0]
        assert detail["reason"] == "override:low_volume"

    def test_light_intent_from_plan(self, pipeline):
        pipeline.context.save_planned_workout("u1", "p1", {"intent": "light"})
        job = pipeline.record("s1", [_exercise([(12, 60), (12, 60), (12, 60)])], plan_id="p1")
        pipeline.run_next()
        detail = pipeline.queue.get_status(job.id)["result"]["details"][0]
        assert detail["action"] == "maintain"
        assert detail["reason"] == "override:light_intent"

    def test_goal_changes_deload_timing(self, pipeline):
        pipeline.context.save_user("u1", goal="health_wellness")
        for day in range(1, 5):
            pipeline.record(f"s{day}", [_exercise([(5, 100)] * 3)], date=f"2026-02-0{day}")
            pipeline.run_next()
        state = pipeline.store.get_state("u1", "bench_press")
        assert state.stall_count == 4
        assert state.deload_count == 0

        pipeline.record("s5", [_exercise([(5, 100)] * 3)], date="2026-02-05")
        pipeline.run_next()
        state = pipeline.store.get_state("u1", "bench_press")
        assert state.deload_count == 1
        assert state.current_weight == 80.0


class TestFailureClassification:
    def test_missing_session_fails_permanently(self, pipeline):
        job = pipeline.queue.enqueue("u1", "ghost", "2026-02-16")
        ok, _ = pipeline.run_next()
        status = pipeline.queue.get_status(job.id)
        assert ok is False
        assert status["status"] == "failed"
        assert status["attempts"] == 1
        assert "MissingContext" in status["last_error"]

    def test_missing_user_fails_permanently(self, pipeline):
        job = pipeline.record("s1", [_exercise([(10, 60)])], user_id="stranger")
        pipeline.run_next()
        assert pipeline.queue.get_status(job.id)["status"] == "failed"

    def test_malformed_payload_fails_permanently(self, pipeline):
        job = pipeline.record("s1", [_exercise([(-3, 60)])])
        pipeline.run_next()
        status = pipeline.queue.get_status(job.id)
        assert status["status"] == "failed"
        assert "EngineInputInvalid" in status["last_error"]
        assert pipeline.store.count_history("u1", "bench_press") == 0

    def test_infinite_weight_fails_permanently(self, pipeline):
        job = pipeline.record("s1", [_exercise([(10, float("inf")), (10, 60)])])
        ok, _ = pipeline.run_next()
        status = pipeline.queue.get_status(job.id)
        assert ok is False
        assert status["status"] == "failed"
        assert status["attempts"] == 1
        assert "EngineInputInvalid" in status["last_error"]

    @pytest.mark.parametrize("error", [TransientStoreError("database is locked"), RuntimeError("network blip")])
    def test_transient_and_unexpected_errors_retry(self, tmp_path, error):
        pipeline = Pipeline(tmp_path)
        pipeline.processor = JobProcessor(
            pipeline.db, pipeline.queue, pipeline.store, RaisingContext(pipeline.db, error)
        )
        job = pipeline.queue.enqueue("u1", "s1", "2026-02-16")
        ok, _ = pipeline.run_next()

        status = pipeline.queue.get_status(job.id)
        assert ok is False
        assert status["status"] == "pending"
        assert status["attempts"] == 1
        assert pipeline.queue.claim_next() is None


class TestSynchronousPath:
    def test_process_now(self, pipeline):
        job = pipeline.record("s1", [_exercise([(12, 60), (12, 60), (12, 60)])])
        status = pipeline.processor.process_now(job.id)
        assert status["status"] == "done"
        assert pipeline.store.get_state("u1", "bench_press").current_weight == 62.5

    def test_process_now_on_done_job_does_not_reapply(self, pipeline):
        job = pipeline.record("s1", [_exercise([(12, 60), (12, 60), (12, 60)])])
        pipeline.processor.process_now(job.id)
        status = pipeline.processor.process_now(job.id)
        assert status["status"] == "done"
        assert pipeline.store.get_state("u1", "bench_press").current_weight == 62.5

    def test_process_now_raises_and_records(self, pipeline):
        job = pipeline.queue.enqueue("u1", "ghost", "2026-02-16")
        with pytest.raises(MissingContext):
            pipeline.processor.process_now(job.id)
        assert pipeline.queue.get_status(job.id)["status"] == "failed"

    def test_preview_writes_nothing(self, pipeline):
        pipeline.context.save_session(
            "u1", "s1", "2026-02-16", {"exercises": [_exercise([(12, 60), (12, 60), (12, 60)])]}
        )
        summary = pipeline.processor.preview("u1", "s1")
        assert summary.progressed_count == 1
        assert summary.details[0]["new_weight"] == 62.5
        assert pipeline.store.get_state("u1", "bench_press") is None
        assert pipeline.store.count_history("u1", "bench_press") == 0

    def test_preview_raises_on_bad_payload(self, pipeline):
        pipeline.context.save_session("u1", "s1", "2026-02-16", {"exercises": "nope"})
        with pytest.raises(EngineInputInvalid):
            pipeline.processor.preview("u1", "s1")


class TestConcurrency:
    def test_parallel_jobs_on_same_key_do_not_lose_updates(self, pipeline):
        for i in (1, 2):
            pipeline.record(f"s{i}", [_exercise([(12, 60), (12, 60), (12, 60)])])
        jobs = [pipeline.queue.claim_next(), pipeline.queue.claim_next()]

        threads = [threading.Thread(target=pipeline.processor.run, args=(job,)) for job in jobs]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert pipeline.store.get_state("u1", "bench_press").current_weight == 65.0
        assert pipeline.store.count_history("u1", "bench_press") == 2
        assert all(pipeline.queue.get_status(j.id)["status"] == "done" for j in jobs)


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class TestWorker:
    def _worker(self, pipeline, **kwargs):
        return ProgressionWorker(pipeline.queue, pipeline.processor, clock=pipeline.clock, **kwargs)

    def test_tick_respects_max_per_tick(self, pipeline):
        for i in range(5):
            pipeline.record(f"s{i}", [_exercise([(10, 60)] * 3, exercise_id=f"ex{i}")])
        worker = self._worker(pipeline, max_per_tick=3)

        assert worker.tick() == 3
        assert len(pipeline.queue.list_jobs(status="pending")) == 2
        assert worker.tick() == 2
        assert worker.tick() == 0

    def test_one_failure_does_not_block_the_tick(self, pipeline):
        good = pipeline.record("s1", [_exercise([(10, 60)] * 3)])
        bad = pipeline.queue.enqueue("u1", "ghost", "2026-02-16")
        worker = self._worker(pipeline, max_per_tick=3)

        assert worker.tick() == 2
        assert pipeline.queue.get_status(good.id)["status"] == "done"
        assert pipeline.queue.get_status(bad.id)["status"] == "failed"

    def test_next_delay_jitter(self, pipeline):
        worker = self._worker(pipeline, interval_seconds=20, jitter_pct=0.2, rng=random.Random(7))
        delays = [worker.next_delay() for _ in range(50)]
        assert all(16 <= d <= 24 for d in delays)

    def test_next_delay_floor(self, pipeline):
        worker = self._worker(pipeline, interval_seconds=0.2, jitter_pct=0)
        assert worker.next_delay() == 1.0

    def test_invalid_max_per_tick(self, pipeline):
        with pytest.raises(ValueError):
            self._worker(pipeline, max_per_tick=0)

    def test_start_ticks_immediately_and_stops(self, pipeline):
        job = pipeline.record("s1", [_exercise([(10, 60)] * 3)])
        worker = self._worker(pipeline, interval_seconds=3600)

        worker.start()
        try:
            deadline = time.monotonic() + 5
            while pipeline.queue.get_status(job.id)["status"] != "done" and time.monotonic() < deadline:
                time.sleep(0.02)
            assert worker.is_running
        finally:
            worker.stop(timeout=5)

        assert pipeline.queue.get_status(job.id)["status"] == "done"
        assert not worker.is_running
        assert worker.last_tick_at is not None
