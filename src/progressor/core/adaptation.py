"""
Adaptation rules beyond a single session: exercise rotation.

An exercise that keeps stalling or needing deloads is better swapped for a
variation than ground against.  Evaluated against the workout date rather
than the wall clock so replays give the same answer.
"""

from datetime import datetime, timedelta
from typing import Sequence

from .config import (
    ROTATE_DELOAD_COUNT,
    ROTATE_NO_PROGRESS_DAYS,
    ROTATE_RECENT_SESSIONS,
    ROTATE_RECENT_WINDOW_DAYS,
    ROTATE_STALL_COUNT,
)
from .models import HistoryEntry, ProgressionState


def _parse(date_str: str) -> datetime:
    return datetime.strptime(date_str, "%Y-%m-%d")


def should_rotate_exercise(
    state: ProgressionState,
    history: Sequence[HistoryEntry],
    as_of: str,
) -> bool:
    """
    Detect an exercise that has stopped responding.

    Rotate = (stall_count ≥ 6) OR (deload_count ≥ 2) OR
             (no progress for > 56 days AND ≥ 2 sessions in the last 14 days)

    Args:
        state: Progression state after the current session
        history: Chronological history, current session included
        as_of: ISO date the check is evaluated at (the workout date)

    Returns:
        True if a variation swap should be suggested
    """
    if state.stall_count >= ROTATE_STALL_COUNT:
        return True
    if state.deload_count >= ROTATE_DELOAD_COUNT:
        return True

    if state.last_progress_date is None:
        return False

    today = _parse(as_of)
    days_since_progress = (today - _parse(state.last_progress_date)).days
    if days_since_progress <= ROTATE_NO_PROGRESS_DAYS:
        return False

    cutoff = today - timedelta(days=ROTATE_RECENT_WINDOW_DAYS)
    recent = [h for h in history if cutoff <= _parse(h.workout_date) <= today]
    return len(recent) >= ROTATE_RECENT_SESSIONS
