"""Pydantic models for planner configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


DEFAULT_SOURCE_ORDER = [
    "extensions",
    "schemas",
    "types",
    "tables",
    "functions",
    "views",
    "policies",
    "triggers",
    "indexes",
    "data",
]


class EstimateWeights(BaseModel):
    """Heuristic per-step durations (seconds) used for plan estimates.

    A step's weight is looked up by operation kind first, then by object
    category, then falls back to ``default_seconds``.
    """

    default_seconds: float = 1.0
    by_kind: dict[str, float] = Field(
        default_factory=lambda: {
            "add_column": 2.0,
            "drop_column": 5.0,
            "alter_column_type": 30.0,
            "set_not_null": 10.0,
            "alter_column": 10.0,
            "drop": 2.0,
            "remove_enum_values": 0.0,  # manual step, not timed
        }
    )
    by_category: dict[str, float] = Field(
        default_factory=lambda: {
            "extension": 2.0,
            "schema": 1.0,
            "type": 1.0,
            "table": 5.0,
            "function": 1.0,
            "view": 2.0,
            "policy": 1.0,
            "trigger": 1.0,
            "index": 30.0,
            "data": 10.0,
        }
    )

    def seconds_for(self, kind: str, category: str) -> float:
        """Estimated seconds for one step of *kind* on a *category* object."""
        if kind in self.by_kind:
            return self.by_kind[kind]
        return self.by_category.get(category, self.default_seconds)


class PlanSettings(BaseModel):
    """Plan compilation defaults from the ``[plan]`` table."""

    name: str = "migration"
    enable_rollback: bool = True
    parallel_execution: bool = False
    long_plan_warning_seconds: float = 3600.0


class PlannerConfig(BaseModel):
    """Complete planner configuration from planner.toml."""

    dialect: str = "postgres"  # sqlglot dialect name
    source_order: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCE_ORDER))
    plan: PlanSettings = Field(default_factory=PlanSettings)
    estimates: EstimateWeights = Field(default_factory=EstimateWeights)
