"""
YAML → config dict loader.

Loads tunables from progression.yaml (bundled with the package) and
optionally merges user overrides from ~/.progressor/progression.yaml.

Usage:
    from progressor.core.engine.config_loader import load_model_config
    cfg = load_model_config()
    ratio = cfg.get("warmup", {}).get("top_weight_ratio", 0.85)

A bundled file that fails to parse is an installation defect and raises.
A user override file with parse errors is ignored with a warning.
"""

from __future__ import annotations

import importlib.resources
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; a non-mapping document yields {}."""
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (non-destructive to base)."""
    result = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_bundled_yaml_path() -> Path | None:
    """Return the path to the bundled progression.yaml, or None if not found."""
    ref = importlib.resources.files("progressor").joinpath("progression.yaml")
    with importlib.resources.as_file(ref) as p:
        return p if p.exists() else None


def get_user_yaml_path() -> Path | None:
    """Return ~/.progressor/progression.yaml if it exists, else None."""
    home = Path(os.environ.get("HOME", "~")).expanduser()
    p = home / ".progressor" / "progression.yaml"
    return p if p.exists() else None


def load_model_config(user_path: Path | None = None) -> dict[str, Any]:
    """
    Load and merge configuration from YAML sources.

    Load order (later overrides earlier):
    1. Bundled src/progressor/progression.yaml
    2. User override (``user_path`` or ~/.progressor/progression.yaml)

    Returns:
        Merged dict of config sections.  Empty dict if no YAML available.
    """
    config: dict[str, Any] = {}

    bundled = get_bundled_yaml_path()
    if bundled is not None:
        config = _deep_merge(config, _load_yaml_file(bundled))

    user = user_path if user_path is not None else get_user_yaml_path()
    if user is not None and user.exists():
        try:
            user_cfg = _load_yaml_file(user)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable config override %s: %s", user, e)
            user_cfg = {}
        if user_cfg:
            config = _deep_merge(config, user_cfg)

    return config
