"""Configuration management: TOML loading and config models.

Usage:
    >>> from schema_planner.config import load_planner_config, PlannerConfig
"""

from schema_planner.config.loader import load_planner_config
from schema_planner.config.models import EstimateWeights, PlannerConfig, PlanSettings

__all__ = ["load_planner_config", "PlannerConfig", "PlanSettings", "EstimateWeights"]
