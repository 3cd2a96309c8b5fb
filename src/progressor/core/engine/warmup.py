"""
Warm-up classification: which performed sets count toward the decision.

The only behaviour pinned down by real session data is "a clearly lighter
first set among otherwise uniform sets is a warm-up".  Finer thresholds are
a judgement call, so classification is a named, swappable strategy:

  top_weight_ratio  sets below ratio × heaviest weight are warm-ups (default)
  modal_weight      sets below the most common weight are warm-ups

For assisted (weight-inverted) exercises a *lower* setting is harder, so
working sets are those within assisted_working_ratio × the lightest setting.

Sessions with no recorded load (bodyweight) treat every performed set as
working.  Classification never changes what gets persisted to history.
"""

from __future__ import annotations

from collections import Counter
from typing import Callable, Sequence

from ..models import SetPerformance
from .rules import EngineRules

WarmupStrategy = Callable[[Sequence[SetPerformance], EngineRules], list[SetPerformance]]


def _top_weight_ratio(sets: Sequence[SetPerformance], rules: EngineRules) -> list[SetPerformance]:
    top = max(s.weight for s in sets)
    floor = top * rules.top_weight_ratio
    return [s for s in sets if s.weight >= floor]


def _modal_weight(sets: Sequence[SetPerformance], rules: EngineRules) -> list[SetPerformance]:
    counts = Counter(s.weight for s in sets)
    best = max(counts.values())
    # Ties resolve to the heavier weight: ramping sets rarely repeat the top load.
    modal = max(w for w, n in counts.items() if n == best)
    return [s for s in sets if s.weight >= modal]


WARMUP_STRATEGIES: dict[str, WarmupStrategy] = {
    "top_weight_ratio": _top_weight_ratio,
    "modal_weight": _modal_weight,
}


def get_warmup_strategy(name: str) -> WarmupStrategy:
    """
    Look up a warm-up strategy by name.

    Raises:
        ValueError: If the name is not registered
    """
    if name not in WARMUP_STRATEGIES:
        valid = ", ".join(WARMUP_STRATEGIES)
        raise ValueError(f"Unknown warm-up strategy '{name}'. Valid names: {valid}")
    return WARMUP_STRATEGIES[name]


def working_sets(
    sets: Sequence[SetPerformance],
    rules: EngineRules,
    weight_inverted: bool = False,
) -> list[SetPerformance]:
    """
    Select the working sets of one exercise in one session.

    Args:
        sets: All sets as logged, in order
        rules: Engine rules (strategy name and thresholds)
        weight_inverted: True for assisted exercises (lower weight = harder)

    Returns:
        Non-warm-up sets with at least one rep, in their original order
    """
    # Zero-rep sets (prefilled but never logged) never count toward the decision.
    performed = [s for s in sets if s.reps > 0]
    loaded = [s for s in performed if s.weight > 0]
    if not loaded:
        return performed

    if weight_inverted:
        lightest = min(s.weight for s in loaded)
        ceiling = lightest * rules.assisted_working_ratio
        return [s for s in loaded if s.weight <= ceiling]

    return get_warmup_strategy(rules.warmup_strategy)(loaded, rules)


def representative_weight(sets: Sequence[SetPerformance]) -> float:
    """
    The load a session was "done at": most common working weight.

    Ties resolve to the heavier weight.  Returns 0.0 when no set carries load.
    """
    loaded = [s.weight for s in sets if s.weight > 0]
    if not loaded:
        return 0.0
    counts = Counter(loaded)
    best = max(counts.values())
    return max(w for w, n in counts.items() if n == best)
