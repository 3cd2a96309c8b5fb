"""
Data models for progressor.

Dataclasses for per-exercise progression state, logged sessions, engine
inputs/outputs and outbox jobs.  Models validate their own invariants in
``__post_init__`` and raise ValueError; payload-level validation lives in
io/serializers.py.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

ProgressionStatus = Literal["progressing", "maintaining", "deloading"]
Action = Literal["increase_weight", "maintain", "deload"]
JobStatus = Literal["pending", "processing", "done", "failed"]
Effort = Literal["easy", "working", "quite_hard", "hard", "max"]
Intent = Literal["light", "normal", "hard"]

PROGRESSION_STATUSES: tuple[str, ...] = ("progressing", "maintaining", "deloading")
JOB_STATUSES: tuple[str, ...] = ("pending", "processing", "done", "failed")
EFFORTS: tuple[str, ...] = ("easy", "working", "quite_hard", "hard", "max")


def _validate_date(date_str: str) -> None:
    """Validate date string is ISO format YYYY-MM-DD."""
    import re

    if not re.match(r"^\d{4}-\d{2}-\d{2}$", date_str):
        raise ValueError(f"Invalid date format: {date_str}. Expected YYYY-MM-DD")

    from datetime import datetime

    try:
        datetime.strptime(date_str, "%Y-%m-%d")
    except ValueError as e:
        raise ValueError(f"Invalid date: {date_str}") from e


@dataclass(frozen=True)
class SetPerformance:
    """One performed (or skipped) set: reps at a weight in kg."""

    reps: int
    weight: float = 0.0

    def __post_init__(self) -> None:
        if self.reps < 0:
            raise ValueError("reps must be non-negative")
        if self.weight < 0:
            raise ValueError("weight must be non-negative")

    @property
    def performed(self) -> bool:
        """A set counts as performed when anything was recorded for it."""
        return self.reps > 0 or self.weight > 0


@dataclass(frozen=True)
class RepRange:
    """Target rep range, inclusive on both ends."""

    low: int
    high: int

    def __post_init__(self) -> None:
        if self.low <= 0:
            raise ValueError("rep range lower bound must be positive")
        if self.high < self.low:
            raise ValueError(f"rep range upper bound {self.high} below lower bound {self.low}")

    def __str__(self) -> str:
        return f"{self.low}-{self.high}"


@dataclass
class ProgressionState:
    """
    Durable per-(user, exercise) progression state.

    Created lazily on the first processed session for the pair and
    bootstrapped from the weight actually lifted in that session.
    """

    user_id: str
    exercise_id: str
    current_weight: float
    status: ProgressionStatus = "maintaining"
    stall_count: int = 0
    deload_count: int = 0
    last_progress_date: str | None = None

    def __post_init__(self) -> None:
        if self.current_weight < 0:
            raise ValueError("current_weight must be non-negative")
        if self.status not in PROGRESSION_STATUSES:
            raise ValueError(f"Invalid status: {self.status}")
        if self.stall_count < 0:
            raise ValueError("stall_count must be non-negative")
        if self.deload_count < 0:
            raise ValueError("deload_count must be non-negative")
        if self.last_progress_date is not None:
            _validate_date(self.last_progress_date)


@dataclass
class HistoryEntry:
    """
    The full set log of one exercise in one session.

    Always stores every set as performed, warm-ups included.  Unique per
    (user_id, exercise_id, session_id).
    """

    user_id: str
    exercise_id: str
    session_id: str
    workout_date: str  # ISO format: YYYY-MM-DD
    sets: list[SetPerformance] = field(default_factory=list)

    def __post_init__(self) -> None:
        _validate_date(self.workout_date)


@dataclass(frozen=True)
class CheckIn:
    """Same-day readiness check-in supplied by the check-in collaborator."""

    pain_levels: tuple[int, ...] = ()  # 1-10 per reported location
    sleep: str | None = None    # "poor" | "fair" | "ok" | "good" | "excellent"
    stress: str | None = None   # "low" | "medium" | "high" | "very_high"
    energy: str | None = None   # "low" | "medium" | "high"

    @property
    def max_pain_level(self) -> int:
        return max(self.pain_levels, default=0)


@dataclass(frozen=True)
class PlannedWorkout:
    """The plan a session was performed against, when there was one."""

    intent: Intent = "normal"
    planned_sets: dict[str, int] = field(default_factory=dict)  # {exercise_id: sets}
    duration_min: float | None = None


@dataclass(frozen=True)
class OverrideSignals:
    """Caller-supplied context that can suspend failure penalties for a session."""

    intent: Intent | None = None
    checkin: CheckIn | None = None
    planned_sets: int | None = None
    planned_duration_min: float | None = None
    performed_duration_min: float | None = None


@dataclass(frozen=True)
class ExerciseInput:
    """One exercise from a completed session, validated."""

    exercise_id: str
    rep_range: RepRange
    sets: tuple[SetPerformance, ...]
    effort: Effort | None = None
    equipment: str | None = None
    name: str | None = None
    weight_inverted: bool = False
    done: bool = True

    @property
    def performed_sets(self) -> tuple[SetPerformance, ...]:
        return tuple(s for s in self.sets if s.performed)


@dataclass(frozen=True)
class SessionInput:
    """A completed session payload, validated at the engine boundary."""

    exercises: tuple[ExerciseInput, ...]
    session_rpe: float | None = None
    duration_min: float | None = None
    title: str | None = None


@dataclass(frozen=True)
class EngineInput:
    """Everything the decision engine needs for one exercise in one session."""

    user_id: str
    exercise: ExerciseInput
    workout_date: str
    state: ProgressionState | None = None
    history: tuple[HistoryEntry, ...] = ()
    session_rpe: float | None = None
    goal: str = "build_muscle"
    experience: str = "intermediate"
    signals: OverrideSignals = field(default_factory=OverrideSignals)


@dataclass(frozen=True)
class Decision:
    """Engine output: the recommendation plus the state to persist."""

    action: Action
    new_weight: float
    failed_lower_bound: bool
    reason: str
    next_state: ProgressionState
    details: dict[str, Any] = field(default_factory=dict)

    def to_recommendation(self) -> dict[str, Any]:
        """Public per-exercise result shape."""
        return {
            "exercise_id": self.next_state.exercise_id,
            "action": self.action,
            "new_weight": self.new_weight,
            "failed_lower_bound": self.failed_lower_bound,
            "reason": self.reason,
        }


@dataclass
class Job:
    """A durable outbox record: "session S needs progression applied"."""

    id: str
    user_id: str
    session_id: str
    workout_date: str
    planned_workout_id: str | None = None
    status: JobStatus = "pending"
    attempts: int = 0
    next_run_at: str = ""
    last_error: str | None = None
    result: dict[str, Any] | None = None
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        _validate_date(self.workout_date)
        if self.status not in JOB_STATUSES:
            raise ValueError(f"Invalid job status: {self.status}")
        if self.attempts < 0:
            raise ValueError("attempts must be non-negative")


@dataclass(frozen=True)
class UserContext:
    """Training profile fields the engine cares about."""

    goal: str = "build_muscle"
    experience: str = "intermediate"


@dataclass(frozen=True)
class SessionContext:
    """Everything loaded from collaborators for one job."""

    user_id: str
    session_id: str
    workout_date: str
    payload: dict[str, Any]
    user: UserContext
    checkin: CheckIn | None = None
    planned_workout: PlannedWorkout | None = None


@dataclass
class ProgressionSummary:
    """Result snapshot stored on a completed job."""

    total_exercises: int = 0
    progressed_count: int = 0
    maintained_count: int = 0
    deload_count: int = 0
    skipped_count: int = 0
    rotation_suggestions: list[str] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)

    def record(self, recommendation: dict[str, Any]) -> None:
        """Tally one exercise recommendation (see Decision.to_recommendation)."""
        self.total_exercises += 1
        action = recommendation.get("action")
        if action == "increase_weight":
            self.progressed_count += 1
        elif action == "deload":
            self.deload_count += 1
        else:
            self.maintained_count += 1
        self.details.append(dict(recommendation))
