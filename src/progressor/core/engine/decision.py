"""
Progression decision engine.

decide_progression() turns (prior state, history, this session's sets,
effort/RPE, override signals) into a recommendation and the next state.
It performs no I/O and reads no clock: identical inputs always give
identical outputs, which is what makes job replay safe.

Order of evaluation:
  1. warm-up exclusion           (warmup.working_sets)
  2. bootstrap                   (no prior state → weight lifted today)
  3. no-penalty overrides        (overrides.find_override) → maintain
  4. anti-overreach gate         (hard effort + RPE ≥ 9 caps at maintain)
  5. performance scoring         (all sets at top → increase;
                                  strict majority below bottom → stall)
  6. stall / deload transitions
"""

from __future__ import annotations

from dataclasses import replace

from ..config import DEFAULT_SESSION_RPE, EFFORT_RPE, FAILURE_MAJORITY, round_weight
from ..equipment import get_increment, resolve_equipment
from ..models import Decision, EngineInput, ProgressionState, SetPerformance
from .overrides import find_override, is_overreaching
from .rules import EngineRules
from .warmup import representative_weight, working_sets


def resolve_session_rpe(session_rpe: float | None, effort: str | None) -> float:
    """Reported session RPE, else the RPE implied by the effort label."""
    if session_rpe is not None:
        return float(session_rpe)
    if effort is not None:
        return EFFORT_RPE.get(effort, DEFAULT_SESSION_RPE)
    return DEFAULT_SESSION_RPE


def failed_lower_bound(sets: list[SetPerformance], low: int) -> bool:
    """
    True when a strict majority of working sets fell short of the range bottom.

    Proportion-based so 3-set and 4-set prescriptions behave alike:
    3 of 3 short → True, 2 of 4 short → False.
    """
    if not sets:
        return False
    short = sum(1 for s in sets if s.reps < low)
    return short > len(sets) * FAILURE_MAJORITY


def _bootstrap_state(inp: EngineInput, working: list[SetPerformance]) -> ProgressionState:
    return ProgressionState(
        user_id=inp.user_id,
        exercise_id=inp.exercise.exercise_id,
        current_weight=representative_weight(working),
        status="maintaining",
    )


def decide_progression(inp: EngineInput, rules: EngineRules | None = None) -> Decision:
    """
    Decide the next weight for one exercise after one session.

    Args:
        inp: Validated engine input (prior state may be None)
        rules: Engine rules; defaults to config.py values

    Returns:
        Decision with action, new weight, failure flag, reason code and the
        ProgressionState to persist
    """
    rules = rules or EngineRules()
    ex = inp.exercise
    rep_range = ex.rep_range

    working = working_sets(ex.sets, rules, ex.weight_inverted)
    performed = ex.performed_sets
    logged = sum(1 for s in performed if s.reps > 0)
    bootstrapped = inp.state is None
    base = _bootstrap_state(inp, working) if bootstrapped else inp.state
    current = base.current_weight

    rpe = resolve_session_rpe(inp.session_rpe, ex.effort)
    equipment = resolve_equipment(ex.equipment, ex.exercise_id, ex.name)
    increment = get_increment(equipment, rules.increments)
    goal_rules = rules.for_goal(inp.goal)

    lower_hits = sum(1 for s in working if s.reps >= rep_range.low)
    upper_hits = sum(1 for s in working if s.reps >= rep_range.high)
    details = {
        "rep_range": [rep_range.low, rep_range.high],
        "performed_sets": len(performed),
        "working_sets": len(working),
        "warmup_sets": logged - len(working),
        "unlogged_sets": len(performed) - logged,
        "lower_hits": lower_hits,
        "upper_hits": upper_hits,
        "fail_count": len(working) - lower_hits,
        "session_rpe": rpe,
        "equipment": equipment,
        "increment": increment,
        "bootstrapped": bootstrapped,
        "weight_inverted": ex.weight_inverted,
    }

    def maintain(reason: str, failed: bool = False, state: ProgressionState | None = None) -> Decision:
        next_state = state or replace(base, status="maintaining")
        return Decision(
            action="maintain",
            new_weight=next_state.current_weight,
            failed_lower_bound=failed,
            reason=reason,
            next_state=next_state,
            details=details,
        )

    override = find_override(inp.signals, len(working), rules)
    details["override"] = override
    if override is not None:
        return maintain(f"override:{override}")

    if not working:
        return maintain("no_working_sets")

    overreach = is_overreaching(ex.effort, rpe, rules)
    details["anti_overreach"] = overreach
    failed = failed_lower_bound(working, rep_range.low)
    details["failed_lower_bound"] = failed

    if upper_hits == len(working):
        if overreach:
            return maintain("anti_overreach")
        raw = current - increment if ex.weight_inverted else current + increment
        new_weight = round_weight(max(raw, 0.0))
        next_state = replace(
            base,
            current_weight=new_weight,
            status="progressing",
            stall_count=0,
            last_progress_date=inp.workout_date,
        )
        return Decision(
            action="increase_weight",
            new_weight=new_weight,
            failed_lower_bound=False,
            reason="top_of_range",
            next_state=next_state,
            details=details,
        )

    if failed:
        stall_count = base.stall_count + 1
        if stall_count >= goal_rules.stall_threshold:
            factor = 1 + goal_rules.deload_fraction if ex.weight_inverted else 1 - goal_rules.deload_fraction
            new_weight = round_weight(max(current * factor, 0.0))
            next_state = replace(
                base,
                current_weight=new_weight,
                status="deloading",
                stall_count=0,
                deload_count=base.deload_count + 1,
            )
            details["stall_count_before_deload"] = stall_count
            return Decision(
                action="deload",
                new_weight=new_weight,
                failed_lower_bound=True,
                reason="deload",
                next_state=next_state,
                details=details,
            )
        return maintain(
            "failed_lower_bound",
            failed=True,
            state=replace(base, status="maintaining", stall_count=stall_count),
        )

    return maintain("within_range")
