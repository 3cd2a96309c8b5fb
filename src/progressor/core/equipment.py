"""
Equipment-aware load increments.

Each equipment type has a smallest sensible load step.  An exercise's
equipment is taken from the payload when the collaborator supplies it,
otherwise it is inferred from the exercise id/name by keyword.

Increment table (kg)
--------------------
  barbell / smith / cable : 2.5   (smallest plate pair / stack pin)
  dumbbell                : 1.0   per hand
  machine / kettlebell    : 2.0
  sled                    : 5.0
  band / trx / bodyweight : 0     (progress by variation, not load)

Unknown equipment falls back to 2.5 kg ("barbell-like").
"""

from __future__ import annotations

import os
import re
from typing import Mapping

from .config import DEFAULT_INCREMENT_KG, WEIGHT_INCREMENT

# ---------------------------------------------------------------------------
# Equipment catalog
# Each item: {label, keywords}
#   keywords are matched as regex fragments against the lowercase
#   exercise id/name; first catalog entry that matches wins.
# ---------------------------------------------------------------------------

EQUIPMENT_CATALOG: dict[str, dict] = {
    "dumbbell": {
        "label": "Dumbbells (increment per hand)",
        "keywords": [r"dumbbell", r"\bdb\b", r"incline db", r"hammer curl"],
    },
    "barbell": {
        "label": "Barbell / trap bar",
        "keywords": [r"barbell", r"\bbb\b", r"trap ?bar", r"\bhex\b", r"t-?bar", r"deadlift", r"bench press"],
    },
    "smith": {
        "label": "Smith machine",
        "keywords": [r"smith"],
    },
    "cable": {
        "label": "Cable stack",
        "keywords": [r"cable", r"pulldown", r"pushdown", r"face ?pull"],
    },
    "machine": {
        "label": "Selectorised / plate-loaded machine",
        "keywords": [r"machine", r"hammer strength", r"leg press", r"hack squat", r"pec deck", r"leg curl", r"leg extension"],
    },
    "kettlebell": {
        "label": "Kettlebell",
        "keywords": [r"kettlebell", r"\bkb\b", r"swing", r"\btgu\b"],
    },
    "band": {
        "label": "Resistance band",
        "keywords": [r"\bband", r"resistance band"],
    },
    "trx": {
        "label": "Suspension trainer",
        "keywords": [r"\btrx\b", r"suspension"],
    },
    "sled": {
        "label": "Sled / prowler / sandbag",
        "keywords": [r"\bsled\b", r"prowler", r"sandbag", r"chain"],
    },
    "bodyweight": {
        "label": "Bodyweight",
        "keywords": [r"push[- ]?ups?", r"pull[- ]?ups?", r"chin[- ]?ups?", r"\bdips?\b", r"pistol", r"plank", r"burpee", r"bodyweight"],
    },
}

_COMPILED: list[tuple[str, re.Pattern[str]]] = [
    (equipment_id, re.compile("|".join(item["keywords"]), re.IGNORECASE))
    for equipment_id, item in EQUIPMENT_CATALOG.items()
]


def infer_equipment(name: str | None) -> str | None:
    """
    Guess the equipment type from an exercise id or display name.

    Args:
        name: Exercise id or name (e.g. "db_bench_press", "Leg Press")

    Returns:
        Equipment id from EQUIPMENT_CATALOG, or None when nothing matches
    """
    if not name:
        return None
    text = name.replace("_", " ").lower()
    for equipment_id, pattern in _COMPILED:
        if pattern.search(text):
            return equipment_id
    return None


def read_increment_override(
    equipment: str,
    fallback: float,
    environ: Mapping[str, str] | None = None,
) -> float:
    """
    Read PROGRESSION_INCREMENT_<EQUIPMENT> from the environment.

    Non-numeric or negative values are ignored.
    """
    env = os.environ if environ is None else environ
    raw = env.get(f"PROGRESSION_INCREMENT_{equipment.upper()}")
    if raw is None:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    return value if value >= 0 else fallback


def build_increment_table(
    overrides: Mapping[str, float] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, float]:
    """
    Merge the default increment table with YAML and environment overrides.

    Load order (later overrides earlier): config.py defaults, the
    ``equipment_increments`` YAML section, PROGRESSION_INCREMENT_* env vars.
    """
    table = dict(WEIGHT_INCREMENT)
    for equipment, value in (overrides or {}).items():
        table[str(equipment).lower()] = float(value)
    return {eq: read_increment_override(eq, inc, environ) for eq, inc in table.items()}


def resolve_equipment(equipment: str | None, exercise_id: str, name: str | None = None) -> str | None:
    """Explicit equipment wins; otherwise infer from name, then id."""
    if equipment:
        return equipment.strip().lower()
    return infer_equipment(name) or infer_equipment(exercise_id)


def get_increment(equipment: str | None, table: Mapping[str, float]) -> float:
    """
    Smallest load step for the equipment.

    Args:
        equipment: Equipment id (already resolved) or None
        table: Increment table from build_increment_table()

    Returns:
        Increment in kg; DEFAULT_INCREMENT_KG for unknown/unresolved equipment
    """
    if equipment is None:
        return DEFAULT_INCREMENT_KG
    return table.get(equipment, DEFAULT_INCREMENT_KG)
