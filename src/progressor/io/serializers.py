"""
JSON serialization and payload validation for progression data models.

Handles conversion between dataclasses and JSON-compatible dicts, and
validates the loosely-shaped session payload into a typed SessionInput.
Malformed payloads raise EngineInputInvalid rather than being coerced.
"""

import json
import math
import re
from datetime import date, datetime
from typing import Any

from ..core.config import DEFAULT_REP_RANGE, SINGLE_TARGET_SPREAD
from ..core.errors import EngineInputInvalid, ValidationError
from ..core.models import (
    EFFORTS,
    CheckIn,
    ExerciseInput,
    HistoryEntry,
    Job,
    PlannedWorkout,
    ProgressionState,
    ProgressionSummary,
    RepRange,
    SessionInput,
    SetPerformance,
)

__all__ = [
    "EngineInputInvalid",
    "ValidationError",
    "dict_to_checkin",
    "dict_to_planned_workout",
    "history_entry_to_dict",
    "job_to_dict",
    "normalize_date",
    "parse_rep_range",
    "parse_session_payload",
    "progression_state_to_dict",
    "sets_from_json",
    "sets_to_json",
    "summary_to_dict",
    "validate_date",
]


def validate_date(date_str: str) -> str:
    """
    Validate and normalize date string to ISO format.

    Args:
        date_str: Date string to validate

    Returns:
        Normalized YYYY-MM-DD string

    Raises:
        ValidationError: If date format is invalid
    """
    if not isinstance(date_str, str) or not re.match(r"^\d{4}-\d{2}-\d{2}$", date_str):
        raise ValidationError(f"Invalid date format: {date_str}. Expected YYYY-MM-DD")

    try:
        datetime.strptime(date_str, "%Y-%m-%d")
    except ValueError as e:
        raise ValidationError(f"Invalid date: {date_str}") from e

    return date_str


def normalize_date(value: Any) -> str:
    """
    Coerce a date-ish value to YYYY-MM-DD.

    Accepts date/datetime objects and ISO strings with a time suffix
    ("2026-02-16T10:00:00Z" → "2026-02-16").
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return validate_date(value[:10])
    raise ValidationError(f"Invalid date: {value!r}")


def _number(value: Any, name: str) -> float:
    """Strict numeric check: bools and numeric strings are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EngineInputInvalid(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise EngineInputInvalid(f"{name} must be a finite number, got {value!r}")
    return float(value)


def validate_non_negative(value: Any, name: str) -> float:
    """
    Validate that a value is a non-negative number.

    Raises:
        EngineInputInvalid: If value is not a number or is negative
    """
    number = _number(value, name)
    if number < 0:
        raise EngineInputInvalid(f"{name} must be non-negative, got {value}")
    return number


# ---------------------------------------------------------------------------
# Rep ranges
# ---------------------------------------------------------------------------

_RANGE_RE = re.compile(r"^\s*(\d+)\s*[-–—]\s*(\d+)\s*$")


def _single_target(target: int) -> RepRange:
    return RepRange(max(1, target - SINGLE_TARGET_SPREAD), target + SINGLE_TARGET_SPREAD)


def parse_rep_range(value: Any) -> RepRange:
    """
    Parse a target rep range.

    Accepted forms:
        "8-12", "8–12"     explicit range
        "10" or 10         single target → 8-12 (±2)
        [8, 12]            two-element list
        None / ""          default range (8-12)

    Raises:
        EngineInputInvalid: For anything else, or a range with low > high
    """
    if value is None or value == "":
        return RepRange(*DEFAULT_REP_RANGE)

    try:
        if isinstance(value, bool):
            raise EngineInputInvalid(f"Invalid rep range: {value!r}")
        if isinstance(value, int):
            if value <= 0:
                raise EngineInputInvalid(f"Invalid rep target: {value}")
            return _single_target(value)
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise EngineInputInvalid(f"Rep range must have two bounds, got {value!r}")
            low = validate_non_negative(value[0], "rep range lower bound")
            high = validate_non_negative(value[1], "rep range upper bound")
            return RepRange(int(low), int(high))
        if isinstance(value, str):
            match = _RANGE_RE.match(value)
            if match:
                return RepRange(int(match.group(1)), int(match.group(2)))
            if value.strip().isdigit() and int(value) > 0:
                return _single_target(int(value))
    except ValueError as e:
        raise EngineInputInvalid(f"Invalid rep range {value!r}: {e}") from e

    raise EngineInputInvalid(f"Invalid rep range: {value!r}")


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


def dict_to_set(data: Any, index: int = 0) -> SetPerformance:
    """
    Convert a payload set dict to SetPerformance.

    Missing reps/weight mean "nothing recorded" (0).  Fractional reps are
    rejected; negative or non-numeric values raise EngineInputInvalid.
    """
    if not isinstance(data, dict):
        raise EngineInputInvalid(f"set {index} must be an object, got {data!r}")

    reps = data.get("reps")
    weight = data.get("weight")
    reps_value = 0.0 if reps is None else validate_non_negative(reps, f"set {index} reps")
    weight_value = 0.0 if weight is None else validate_non_negative(weight, f"set {index} weight")
    if reps_value != int(reps_value):
        raise EngineInputInvalid(f"set {index} reps must be a whole number, got {reps}")

    return SetPerformance(reps=int(reps_value), weight=weight_value)


def set_to_dict(s: SetPerformance) -> dict[str, Any]:
    return {"reps": s.reps, "weight": s.weight}


def sets_to_json(sets: list[SetPerformance]) -> str:
    return json.dumps([set_to_dict(s) for s in sets])


def sets_from_json(raw: str) -> list[SetPerformance]:
    return [SetPerformance(reps=int(d["reps"]), weight=float(d["weight"])) for d in json.loads(raw)]


# ---------------------------------------------------------------------------
# Session payload
# ---------------------------------------------------------------------------


def _optional_number(data: dict, key: str, name: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    return validate_non_negative(value, name)


def dict_to_exercise(data: Any, index: int) -> ExerciseInput:
    """
    Validate one exercise entry from a session payload.

    Expected shape:
        {"id": "bench_press", "name": "Bench Press", "targetRepRange": "8-12",
         "effort": "working", "equipment": "barbell", "weightInverted": false,
         "sets": [{"reps": 10, "weight": 60}], "done": true}

    ``reps`` is accepted as an alias of ``targetRepRange``.
    """
    if not isinstance(data, dict):
        raise EngineInputInvalid(f"exercise {index} must be an object, got {data!r}")

    exercise_id = data.get("id")
    if not isinstance(exercise_id, str) or not exercise_id.strip():
        raise EngineInputInvalid(f"exercise {index} is missing a non-empty 'id'")

    raw_sets = data.get("sets", [])
    if raw_sets is None:
        raw_sets = []
    if not isinstance(raw_sets, list):
        raise EngineInputInvalid(f"exercise {exercise_id!r}: 'sets' must be a list")

    effort = data.get("effort")
    if effort is not None and effort not in EFFORTS:
        raise EngineInputInvalid(
            f"exercise {exercise_id!r}: invalid effort {effort!r}. Must be one of {EFFORTS}"
        )

    equipment = data.get("equipment")
    if equipment is not None and not isinstance(equipment, str):
        raise EngineInputInvalid(f"exercise {exercise_id!r}: 'equipment' must be a string")

    raw_range = data.get("targetRepRange", data.get("reps"))
    try:
        rep_range = parse_rep_range(raw_range)
    except EngineInputInvalid as e:
        raise EngineInputInvalid(f"exercise {exercise_id!r}: {e}") from e

    name = data.get("name")
    return ExerciseInput(
        exercise_id=exercise_id.strip(),
        rep_range=rep_range,
        sets=tuple(dict_to_set(s, i) for i, s in enumerate(raw_sets)),
        effort=effort,
        equipment=equipment,
        name=name if isinstance(name, str) else None,
        weight_inverted=bool(data.get("weightInverted", False)),
        done=bool(data.get("done", True)),
    )


def parse_session_payload(payload: Any) -> SessionInput:
    """
    Validate a completed-session payload into a SessionInput.

    Expected shape:
        {"title": "...", "durationMin": 55,
         "exercises": [...], "feedback": {"sessionRpe": 7}}

    Raises:
        EngineInputInvalid: If the payload is not a dict, has no exercise
            list, repeats an exercise id, or any exercise/set is malformed
    """
    if not isinstance(payload, dict):
        raise EngineInputInvalid(f"session payload must be an object, got {type(payload).__name__}")

    raw_exercises = payload.get("exercises")
    if not isinstance(raw_exercises, list):
        raise EngineInputInvalid("session payload is missing an 'exercises' list")

    exercises = tuple(dict_to_exercise(e, i) for i, e in enumerate(raw_exercises))
    seen: set[str] = set()
    for ex in exercises:
        if ex.exercise_id in seen:
            raise EngineInputInvalid(f"exercise {ex.exercise_id!r} appears more than once")
        seen.add(ex.exercise_id)

    feedback = payload.get("feedback") or {}
    if not isinstance(feedback, dict):
        raise EngineInputInvalid("'feedback' must be an object")
    session_rpe = _optional_number(feedback, "sessionRpe", "feedback.sessionRpe")
    if session_rpe is not None and session_rpe > 10:
        raise EngineInputInvalid(f"feedback.sessionRpe must be at most 10, got {session_rpe}")

    title = payload.get("title")
    return SessionInput(
        exercises=exercises,
        session_rpe=session_rpe,
        duration_min=_optional_number(payload, "durationMin", "durationMin"),
        title=title if isinstance(title, str) else None,
    )


# ---------------------------------------------------------------------------
# Collaborator context
# ---------------------------------------------------------------------------


def dict_to_checkin(data: dict[str, Any]) -> CheckIn:
    """
    Convert a check-in record to CheckIn.

    ``pain`` may be a list of {"location", "level"} entries or bare levels.
    Levels are clamped to 1-10.
    """
    levels: list[int] = []
    for p in data.get("pain") or []:
        raw = p.get("level") if isinstance(p, dict) else p
        try:
            level = int(raw)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid pain level: {raw!r}") from e
        levels.append(max(1, min(10, level)))
    return CheckIn(
        pain_levels=tuple(levels),
        sleep=data.get("sleep"),
        stress=data.get("stress"),
        energy=data.get("energy"),
    )


def dict_to_planned_workout(data: dict[str, Any]) -> PlannedWorkout:
    """Convert a planned-workout record to PlannedWorkout."""
    intent = data.get("intent") or "normal"
    if intent not in ("light", "normal", "hard"):
        raise ValidationError(f"Invalid planned workout intent: {intent!r}")
    planned_sets = {str(k): int(v) for k, v in (data.get("plannedSets") or {}).items()}
    duration = data.get("durationMin")
    return PlannedWorkout(
        intent=intent,
        planned_sets=planned_sets,
        duration_min=float(duration) if duration is not None else None,
    )


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


def progression_state_to_dict(state: ProgressionState) -> dict[str, Any]:
    return {
        "user_id": state.user_id,
        "exercise_id": state.exercise_id,
        "current_weight": state.current_weight,
        "status": state.status,
        "stall_count": state.stall_count,
        "deload_count": state.deload_count,
        "last_progress_date": state.last_progress_date,
    }


def history_entry_to_dict(entry: HistoryEntry) -> dict[str, Any]:
    return {
        "user_id": entry.user_id,
        "exercise_id": entry.exercise_id,
        "session_id": entry.session_id,
        "workout_date": entry.workout_date,
        "sets": [set_to_dict(s) for s in entry.sets],
    }


def summary_to_dict(summary: ProgressionSummary) -> dict[str, Any]:
    """Job result snapshot."""
    return {
        "total_exercises": summary.total_exercises,
        "progressed_count": summary.progressed_count,
        "maintained_count": summary.maintained_count,
        "deload_count": summary.deload_count,
        "skipped_count": summary.skipped_count,
        "rotation_suggestions": list(summary.rotation_suggestions),
        "details": [dict(d) for d in summary.details],
    }


def job_to_dict(job: Job) -> dict[str, Any]:
    """Full job record as a JSON-compatible dict."""
    return {
        "id": job.id,
        "user_id": job.user_id,
        "session_id": job.session_id,
        "planned_workout_id": job.planned_workout_id,
        "workout_date": job.workout_date,
        "status": job.status,
        "attempts": job.attempts,
        "next_run_at": job.next_run_at,
        "last_error": job.last_error,
        "result": job.result,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }
