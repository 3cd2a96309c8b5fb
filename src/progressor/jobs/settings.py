"""
Runtime settings for the queue and worker.

Read from the ``store``/``jobs``/``worker`` sections of progression.yaml,
then overridden by PROGRESSION_JOB_* environment variables.  Invalid
environment values are ignored with a warning.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from ..core.config import (
    HISTORY_WINDOW,
    LOCK_TIMEOUT_SECONDS,
    MAX_ATTEMPTS,
    STALE_PROCESSING_SECONDS,
    WORKER_INTERVAL_SECONDS,
    WORKER_JITTER_PCT,
    WORKER_MAX_PER_TICK,
)
from ..core.engine.config_loader import load_model_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeSettings:
    history_window: int = HISTORY_WINDOW
    lock_timeout_seconds: float = LOCK_TIMEOUT_SECONDS
    max_attempts: int = MAX_ATTEMPTS
    stale_seconds: float = STALE_PROCESSING_SECONDS
    interval_seconds: float = WORKER_INTERVAL_SECONDS
    max_per_tick: int = WORKER_MAX_PER_TICK
    jitter_pct: float = WORKER_JITTER_PCT

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_per_tick < 1:
            raise ValueError("max_per_tick must be at least 1")
        if not 0 <= self.jitter_pct < 1:
            raise ValueError("jitter_pct must be in [0, 1)")


def _at_least(minimum: float) -> Callable[[float], bool]:
    return lambda v: math.isfinite(v) and v >= minimum


ENV_OVERRIDES: dict[str, tuple[str, Callable[[str], Any], Callable[[float], bool], str]] = {
    "PROGRESSION_JOB_INTERVAL_SECONDS": ("interval_seconds", float, _at_least(0), "must be non-negative"),
    "PROGRESSION_JOB_MAX_PER_TICK": ("max_per_tick", int, _at_least(1), "must be at least 1"),
    "PROGRESSION_JOB_JITTER_PCT": ("jitter_pct", float, lambda v: 0 <= v < 1, "must be in [0, 1)"),
    "PROGRESSION_JOB_MAX_ATTEMPTS": ("max_attempts", int, _at_least(1), "must be at least 1"),
    "PROGRESSION_JOB_STALE_SECONDS": ("stale_seconds", float, lambda v: math.isfinite(v) and v > 0, "must be positive"),
}


def runtime_settings_from_config(
    cfg: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> RuntimeSettings:
    env = os.environ if environ is None else environ
    store = cfg.get("store", {}) or {}
    jobs = cfg.get("jobs", {}) or {}
    worker = cfg.get("worker", {}) or {}

    values: dict[str, Any] = {
        "history_window": int(store.get("history_window", HISTORY_WINDOW)),
        "lock_timeout_seconds": float(store.get("lock_timeout_seconds", LOCK_TIMEOUT_SECONDS)),
        "max_attempts": int(jobs.get("max_attempts", MAX_ATTEMPTS)),
        "stale_seconds": float(jobs.get("stale_processing_seconds", STALE_PROCESSING_SECONDS)),
        "interval_seconds": float(worker.get("interval_seconds", WORKER_INTERVAL_SECONDS)),
        "max_per_tick": int(worker.get("max_per_tick", WORKER_MAX_PER_TICK)),
        "jitter_pct": float(worker.get("jitter_pct", WORKER_JITTER_PCT)),
    }

    for var, (key, cast, valid, requirement) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            parsed = cast(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: not a number", var, raw)
            continue
        if not valid(parsed):
            logger.warning("Ignoring %s=%r: %s", var, raw, requirement)
            continue
        values[key] = parsed

    return RuntimeSettings(**values)


def load_runtime_settings(environ: Mapping[str, str] | None = None) -> RuntimeSettings:
    return runtime_settings_from_config(load_model_config(), environ)
