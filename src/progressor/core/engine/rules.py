"""
Typed rule set handed to the decision engine.

The engine never reads YAML or the environment; callers build an
EngineRules once (usually via ``load_engine_rules``) and pass it in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..config import (
    ANTI_OVERREACH_EFFORTS,
    ANTI_OVERREACH_RPE,
    ASSISTED_WORKING_RATIO,
    CHECKIN_HIGH_STRESS,
    CHECKIN_LOW_ENERGY,
    CHECKIN_PAIN_LEVEL,
    CHECKIN_POOR_SLEEP,
    DEFAULT_GOAL,
    DEFAULT_WARMUP_STRATEGY,
    GOAL_RULES,
    MIN_DURATION_RATIO,
    MIN_VOLUME_RATIO,
    WARMUP_TOP_WEIGHT_RATIO,
    WEIGHT_INCREMENT,
    GoalRules,
)
from ..equipment import build_increment_table
from .config_loader import load_model_config


@dataclass(frozen=True)
class EngineRules:
    """All thresholds the decision engine consults."""

    warmup_strategy: str = DEFAULT_WARMUP_STRATEGY
    top_weight_ratio: float = WARMUP_TOP_WEIGHT_RATIO
    assisted_working_ratio: float = ASSISTED_WORKING_RATIO
    anti_overreach_efforts: tuple[str, ...] = ANTI_OVERREACH_EFFORTS
    anti_overreach_rpe: float = ANTI_OVERREACH_RPE
    pain_level: int = CHECKIN_PAIN_LEVEL
    poor_sleep: tuple[str, ...] = CHECKIN_POOR_SLEEP
    high_stress: tuple[str, ...] = CHECKIN_HIGH_STRESS
    low_energy: tuple[str, ...] = CHECKIN_LOW_ENERGY
    min_volume_ratio: float = MIN_VOLUME_RATIO
    min_duration_ratio: float = MIN_DURATION_RATIO
    goals: Mapping[str, GoalRules] = field(default_factory=lambda: dict(GOAL_RULES))
    increments: Mapping[str, float] = field(default_factory=lambda: dict(WEIGHT_INCREMENT))

    def for_goal(self, goal: str | None) -> GoalRules:
        """Rules for the goal; unknown goals use the default goal's rules."""
        if goal and goal in self.goals:
            return self.goals[goal]
        return self.goals.get(DEFAULT_GOAL, GOAL_RULES[DEFAULT_GOAL])


def _tuple(value: Any, fallback: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return fallback
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def engine_rules_from_config(
    cfg: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> EngineRules:
    """
    Build EngineRules from a merged config dict.

    Args:
        cfg: Output of load_model_config() (or any dict of the same shape)
        environ: Environment mapping for increment overrides (default os.environ)

    Returns:
        EngineRules with config.py defaults for anything not in cfg
    """
    warmup = cfg.get("warmup", {}) or {}
    overreach = cfg.get("anti_overreach", {}) or {}
    overrides = cfg.get("overrides", {}) or {}

    goals = dict(GOAL_RULES)
    for goal, raw in (cfg.get("goals", {}) or {}).items():
        base = goals.get(goal, GOAL_RULES[DEFAULT_GOAL])
        goals[goal] = GoalRules(
            stall_threshold=int(raw.get("stall_threshold", base.stall_threshold)),
            deload_fraction=float(raw.get("deload_fraction", base.deload_fraction)),
        )

    return EngineRules(
        warmup_strategy=str(warmup.get("strategy", DEFAULT_WARMUP_STRATEGY)),
        top_weight_ratio=float(warmup.get("top_weight_ratio", WARMUP_TOP_WEIGHT_RATIO)),
        assisted_working_ratio=float(warmup.get("assisted_working_ratio", ASSISTED_WORKING_RATIO)),
        anti_overreach_efforts=_tuple(overreach.get("efforts"), ANTI_OVERREACH_EFFORTS),
        anti_overreach_rpe=float(overreach.get("rpe", ANTI_OVERREACH_RPE)),
        pain_level=int(overrides.get("pain_level", CHECKIN_PAIN_LEVEL)),
        poor_sleep=_tuple(overrides.get("poor_sleep"), CHECKIN_POOR_SLEEP),
        high_stress=_tuple(overrides.get("high_stress"), CHECKIN_HIGH_STRESS),
        low_energy=_tuple(overrides.get("low_energy"), CHECKIN_LOW_ENERGY),
        min_volume_ratio=float(overrides.get("min_volume_ratio", MIN_VOLUME_RATIO)),
        min_duration_ratio=float(overrides.get("min_duration_ratio", MIN_DURATION_RATIO)),
        goals=goals,
        increments=build_increment_table(cfg.get("equipment_increments"), environ),
    )


def load_engine_rules(environ: Mapping[str, str] | None = None) -> EngineRules:
    """Build EngineRules from the bundled/user YAML and the environment."""
    return engine_rules_from_config(load_model_config(), environ)
