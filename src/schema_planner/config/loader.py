"""Configuration loading for the schema planner."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from schema_planner.config.models import EstimateWeights, PlannerConfig, PlanSettings

DEFAULT_CONFIG_NAME = "planner.toml"


def load_planner_config(config_path: Path | None = None) -> PlannerConfig:
    """Load planner configuration from a TOML file.

    Args:
        config_path: Path to planner.toml (default: ./planner.toml)

    Returns:
        PlannerConfig; keys missing from the file keep their defaults.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid

    Example planner.toml:
        [planner]
        dialect = "postgres"

        [plan]
        enable_rollback = true

        [estimates.kinds]
        add_column = 3.0
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_NAME

    if not config_path.exists():
        raise FileNotFoundError(f"Planner config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        # Parse estimate weights, merging overrides into the defaults
        estimate_data = data.get("estimates", {})
        estimates = EstimateWeights()
        estimates = EstimateWeights(
            default_seconds=estimate_data.get("default_seconds", estimates.default_seconds),
            by_kind={**estimates.by_kind, **estimate_data.get("kinds", {})},
            by_category={**estimates.by_category, **estimate_data.get("categories", {})},
        )

        planner_settings = data.get("planner", {})
        return PlannerConfig(
            **planner_settings,
            plan=PlanSettings(**data.get("plan", {})),
            estimates=estimates,
        )
    except (ValidationError, TypeError) as e:
        raise ValueError(f"Invalid planner config {config_path}: {e}") from e
