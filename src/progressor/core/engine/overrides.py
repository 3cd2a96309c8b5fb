"""
No-penalty overrides and the anti-overreach gate.

An override means the session should not be judged: the plan called for a
light day, the trainee checked in hurt/tired/stressed, or the session was
cut materially short.  Overrides are checked in a fixed order and the first
match names the reason.
"""

from __future__ import annotations

from ..models import OverrideSignals
from .rules import EngineRules

LIGHT_INTENT = "light_intent"
CHECKIN_PAIN = "checkin_pain"
CHECKIN_SLEEP = "checkin_sleep"
CHECKIN_STRESS = "checkin_stress"
CHECKIN_ENERGY = "checkin_energy"
LOW_VOLUME = "low_volume"
SHORT_SESSION = "short_session"


def volume_ratio(working_set_count: int, planned_sets: int | None) -> float | None:
    """Working sets performed over sets planned; None when nothing was planned."""
    if not planned_sets or planned_sets <= 0:
        return None
    return working_set_count / planned_sets


def duration_ratio(signals: OverrideSignals) -> float | None:
    """Performed minutes over planned minutes; None when either is unknown."""
    planned = signals.planned_duration_min
    performed = signals.performed_duration_min
    if planned is None or performed is None or planned <= 0:
        return None
    return performed / planned


def checkin_override(signals: OverrideSignals, rules: EngineRules) -> str | None:
    """Reason code for a check-in that rules out judging the session, or None."""
    checkin = signals.checkin
    if checkin is None:
        return None
    if checkin.max_pain_level >= rules.pain_level:
        return CHECKIN_PAIN
    if checkin.sleep in rules.poor_sleep:
        return CHECKIN_SLEEP
    if checkin.stress in rules.high_stress:
        return CHECKIN_STRESS
    if checkin.energy in rules.low_energy:
        return CHECKIN_ENERGY
    return None


def find_override(
    signals: OverrideSignals,
    working_set_count: int,
    rules: EngineRules,
) -> str | None:
    """
    First no-penalty override that applies to this exercise in this session.

    Args:
        signals: Caller-supplied intent, check-in and planned volume/duration
        working_set_count: Working sets after warm-up exclusion
        rules: Engine rules

    Returns:
        Reason code (e.g. "light_intent", "checkin_pain", "low_volume") or None
    """
    if signals.intent == "light":
        return LIGHT_INTENT

    reason = checkin_override(signals, rules)
    if reason is not None:
        return reason

    ratio = volume_ratio(working_set_count, signals.planned_sets)
    if ratio is not None and ratio < rules.min_volume_ratio:
        return LOW_VOLUME

    ratio = duration_ratio(signals)
    if ratio is not None and ratio < rules.min_duration_ratio:
        return SHORT_SESSION

    return None


def is_overreaching(effort: str | None, session_rpe: float, rules: EngineRules) -> bool:
    """Hard effort at very high RPE: progress is not allowed this session."""
    return effort in rules.anti_overreach_efforts and session_rpe >= rules.anti_overreach_rpe
