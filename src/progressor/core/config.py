"""
Configuration constants for the progression engine and job pipeline.

All adjustable parameters are centralized here.  Values can be overridden
through progression.yaml (see core/engine/config_loader.py) and, for the
worker and equipment increments, through environment variables.
"""

from dataclasses import dataclass
from typing import Final

# =============================================================================
# REP RANGES
# =============================================================================

DEFAULT_REP_RANGE: Final[tuple[int, int]] = (8, 12)  # When an exercise carries no target
SINGLE_TARGET_SPREAD: Final[int] = 2  # "10" → 8-12

# =============================================================================
# WARM-UP CLASSIFICATION
# =============================================================================

DEFAULT_WARMUP_STRATEGY: Final[str] = "top_weight_ratio"
WARMUP_TOP_WEIGHT_RATIO: Final[float] = 0.85  # Below 85% of the top weight = warm-up
ASSISTED_WORKING_RATIO: Final[float] = 1.15  # Assisted: within 15% of the lightest setting

# =============================================================================
# SESSION RPE
# =============================================================================

EFFORT_RPE: Final[dict[str, float]] = {
    "easy": 5.0,
    "working": 7.0,
    "quite_hard": 8.0,
    "hard": 9.0,
    "max": 10.0,
}
DEFAULT_SESSION_RPE: Final[float] = 7.0

# =============================================================================
# ANTI-OVERREACH
# =============================================================================

ANTI_OVERREACH_EFFORTS: Final[tuple[str, ...]] = ("hard", "max")
ANTI_OVERREACH_RPE: Final[float] = 9.0

# =============================================================================
# NO-PENALTY OVERRIDES
# =============================================================================

CHECKIN_PAIN_LEVEL: Final[int] = 4  # 4/10 and above is more than mild discomfort
CHECKIN_POOR_SLEEP: Final[tuple[str, ...]] = ("poor",)
CHECKIN_HIGH_STRESS: Final[tuple[str, ...]] = ("high", "very_high")
CHECKIN_LOW_ENERGY: Final[tuple[str, ...]] = ("low",)
MIN_VOLUME_RATIO: Final[float] = 0.75  # Working sets / planned sets
MIN_DURATION_RATIO: Final[float] = 0.60  # Performed minutes / planned minutes

# =============================================================================
# FAILURE AND DELOAD
# =============================================================================

FAILURE_MAJORITY: Final[float] = 0.5  # Strictly more than half the working sets
WEIGHT_ROUNDING_KG: Final[float] = 0.25


@dataclass(frozen=True)
class GoalRules:
    """Stall tolerance and deload depth for one training goal."""

    stall_threshold: int  # Consecutive stalls that trigger a deload
    deload_fraction: float  # Fraction of weight removed on deload


GOAL_RULES: Final[dict[str, GoalRules]] = {
    "build_muscle": GoalRules(stall_threshold=3, deload_fraction=0.15),
    "athletic_body": GoalRules(stall_threshold=3, deload_fraction=0.15),
    "lose_weight": GoalRules(stall_threshold=4, deload_fraction=0.20),
    "health_wellness": GoalRules(stall_threshold=5, deload_fraction=0.20),
}
DEFAULT_GOAL: Final[str] = "build_muscle"

# =============================================================================
# EQUIPMENT INCREMENTS (kg)
# =============================================================================

WEIGHT_INCREMENT: Final[dict[str, float]] = {
    "barbell": 2.5,
    "smith": 2.5,
    "cable": 2.5,
    "dumbbell": 1.0,  # per hand
    "machine": 2.0,
    "kettlebell": 2.0,
    "sled": 5.0,
    "band": 0.0,
    "trx": 0.0,
    "bodyweight": 0.0,
}
DEFAULT_INCREMENT_KG: Final[float] = 2.5

# =============================================================================
# ROTATION SUGGESTION
# =============================================================================

ROTATE_STALL_COUNT: Final[int] = 6
ROTATE_DELOAD_COUNT: Final[int] = 2
ROTATE_NO_PROGRESS_DAYS: Final[int] = 56
ROTATE_RECENT_WINDOW_DAYS: Final[int] = 14
ROTATE_RECENT_SESSIONS: Final[int] = 2

# =============================================================================
# STORE
# =============================================================================

HISTORY_WINDOW: Final[int] = 48  # ~16 weeks at 3 sessions/week
LOCK_TIMEOUT_SECONDS: Final[float] = 10.0
SQLITE_BUSY_TIMEOUT_SECONDS: Final[float] = 5.0

# =============================================================================
# JOB QUEUE AND WORKER
# =============================================================================

BACKOFF_BASE_SECONDS: Final[int] = 30
BACKOFF_MAX_SECONDS: Final[int] = 60 * 60
BACKOFF_MAX_EXPONENT: Final[int] = 10
MAX_ATTEMPTS: Final[int] = 12
STALE_PROCESSING_SECONDS: Final[int] = 10 * 60
MAX_ERROR_LENGTH: Final[int] = 2000

WORKER_INTERVAL_SECONDS: Final[float] = 20.0
WORKER_MAX_PER_TICK: Final[int] = 3
WORKER_JITTER_PCT: Final[float] = 0.2
WORKER_MIN_DELAY_SECONDS: Final[float] = 1.0


def backoff_seconds(attempts: int) -> int:
    """
    Retry delay after a failed attempt.

    30 s · 2^(attempts − 1), exponent clamped to [1, 10], capped at one hour.

    Args:
        attempts: Number of failed attempts so far (including this one)

    Returns:
        Delay in seconds
    """
    a = max(1, min(BACKOFF_MAX_EXPONENT, attempts))
    return min(BACKOFF_BASE_SECONDS * 2 ** (a - 1), BACKOFF_MAX_SECONDS)


def round_weight(weight_kg: float, step: float = WEIGHT_ROUNDING_KG) -> float:
    """Round a load to the nearest plate step (0.25 kg by default)."""
    if step <= 0:
        return weight_kg
    return round(round(weight_kg / step) * step, 4)
