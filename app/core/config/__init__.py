from __future__ import annotations

from .analysis_models import get_analysis_config, get_analysis_config_value, load_yaml_mapping
from .settings import Settings, settings

__all__ = ["Settings", "settings", "get_analysis_config", "get_analysis_config_value", "load_yaml_mapping"]
