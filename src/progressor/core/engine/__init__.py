"""
Progression decision engine.

Pure functions only: everything the engine needs arrives as arguments.
"""

from .decision import decide_progression, failed_lower_bound, resolve_session_rpe
from .rules import EngineRules, engine_rules_from_config, load_engine_rules
from .warmup import WARMUP_STRATEGIES, get_warmup_strategy, representative_weight, working_sets

__all__ = [
    "EngineRules",
    "WARMUP_STRATEGIES",
    "decide_progression",
    "engine_rules_from_config",
    "failed_lower_bound",
    "get_warmup_strategy",
    "load_engine_rules",
    "representative_weight",
    "resolve_session_rpe",
    "working_sets",
]
