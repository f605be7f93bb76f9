from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parents[3] / "config"
ANALYSIS_CONFIG_PATH = CONFIG_DIR / "analysis_models.yaml"


@lru_cache(maxsize=None)
def load_yaml_mapping(path: Path) -> dict[str, Any]:
    """Parse a repo-level YAML file into a mapping, cached per path.

    A missing or empty file is an empty mapping; callers apply their own defaults.
    """
    if not path.exists():
        logger.warning("yaml_config_missing path=%s using_defaults=1", path)
        return {}
    try:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise RuntimeError(f"Could not load config '{path}': {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise RuntimeError(f"Config '{path}' must hold a mapping at the top level.")
    return parsed


def lookup(config: Mapping[str, Any], path: str, default: Any = None) -> Any:
    current: Any = config
    for key in path.split(".") if path else ():
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current if path else default


def get_analysis_config() -> dict[str, Any]:
    return load_yaml_mapping(ANALYSIS_CONFIG_PATH)


def get_analysis_config_value(path: str, default: Any = None) -> Any:
    """Dotted lookup into config/analysis_models.yaml, e.g. 'truncation.limits.skills'."""
    return lookup(get_analysis_config(), path, default)
