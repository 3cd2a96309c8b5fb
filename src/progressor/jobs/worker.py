"""
Background worker: polls the job queue on a jittered interval.

Ticks once immediately on start so jobs queued while no worker was
running are picked up without waiting a full interval.
"""

from __future__ import annotations

import logging
import random
import threading

from ..core.clock import Clock, SystemClock, to_timestamp
from ..core.config import (
    WORKER_INTERVAL_SECONDS,
    WORKER_JITTER_PCT,
    WORKER_MAX_PER_TICK,
    WORKER_MIN_DELAY_SECONDS,
)
from ..core.errors import ProgressionError
from ..io.job_queue import JobQueue
from .processor import JobProcessor

logger = logging.getLogger(__name__)


class ProgressionWorker:
    """
    Claims and processes at most ``max_per_tick`` jobs per tick.

    One job failing never stops the rest of the tick: the processor records
    the error on that job and the worker moves on.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: JobProcessor,
        interval_seconds: float = WORKER_INTERVAL_SECONDS,
        max_per_tick: int = WORKER_MAX_PER_TICK,
        jitter_pct: float = WORKER_JITTER_PCT,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        if max_per_tick < 1:
            raise ValueError("max_per_tick must be at least 1")
        self.queue = queue
        self.processor = processor
        self.interval_seconds = interval_seconds
        self.max_per_tick = max_per_tick
        self.jitter_pct = jitter_pct
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.last_tick_at: str | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_delay(self) -> float:
        """Interval ± jitter, never below one second."""
        spread = self.interval_seconds * self.jitter_pct
        delay = self.interval_seconds + self.rng.uniform(-spread, spread)
        return max(WORKER_MIN_DELAY_SECONDS, delay)

    def tick(self) -> int:
        """
        Run one polling round.

        Returns:
            Number of jobs claimed this tick
        """
        self.last_tick_at = to_timestamp(self.clock.now())
        claimed = 0
        while claimed < self.max_per_tick:
            try:
                job = self.queue.claim_next()
            except ProgressionError as e:
                logger.warning("Could not claim a job: %s", e)
                break
            if job is None:
                break
            claimed += 1
            try:
                self.processor.run(job)
            except Exception:
                logger.exception("Worker failed on job %s; continuing", job.id)
        if claimed:
            logger.info("Tick processed %d job(s)", claimed)
        return claimed

    def _loop(self) -> None:
        self.tick()
        while not self._stop.wait(self.next_delay()):
            self.tick()

    def _safe_loop(self) -> None:
        try:
            self._loop()
        except Exception:
            logger.exception("Progression worker crashed")
            raise

    def start(self) -> None:
        """Start the polling thread; a no-op if already running."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._safe_loop, name="progression-worker", daemon=True)
        self._thread.start()
        logger.info(
            "Progression worker started (interval=%.1fs, max_per_tick=%d)",
            self.interval_seconds,
            self.max_per_tick,
        )

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit and wait for the current tick to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Progression worker stopped")

    def run_forever(self) -> None:
        """Block in the foreground until interrupted (CLI use)."""
        self.start()
        try:
            while self.is_running:
                self._stop.wait(1.0)
        except KeyboardInterrupt:
            logger.info("Interrupted; shutting down")
        finally:
            self.stop()
