"""schema-planner: Safe, ordered DDL migrations from two schema snapshots.

Parses current and target SQL into schema models, classifies every change
by risk, orders changes by their dependencies, and compiles a phased
execution plan with a rollback plan.

Usage:
    from schema_planner import MigrationBuild, parse_schema, calculate_diff
    from schema_planner import build_graph, optimize, PlanCompiler, CompileOptions
    from schema_planner import load_planner_config, PlannerConfig
"""

__version__ = "0.1.0"

# Schema
from schema_planner.schema.models import Diagnostic, ObjectCategory, ParseResult, SchemaModel
from schema_planner.schema.parser import SchemaParseError, parse_schema

# Migration
from schema_planner.migration.analysis import MigrationAnalysis, analyze_operations
from schema_planner.migration.diff import calculate_diff
from schema_planner.migration.graph import CircularDependencyError, DependencyGraph, build_graph
from schema_planner.migration.models import DiffResult, MigrationOperation, OperationKind, RiskLevel
from schema_planner.migration.optimizer import optimize
from schema_planner.migration.pipeline import BuildResult, BuildState, BuildStateError, MigrationBuild
from schema_planner.migration.plan import (
    CompileOptions,
    ExecutionPlan,
    PlanCompiler,
    PlanNotValidatedError,
    PlanValidationResult,
    RollbackPlan,
)

# Config
from schema_planner.config.loader import load_planner_config
from schema_planner.config.models import PlannerConfig

__all__ = [
    # Schema
    "parse_schema",
    "SchemaParseError",
    "SchemaModel",
    "ParseResult",
    "ObjectCategory",
    "Diagnostic",
    # Migration
    "calculate_diff",
    "DiffResult",
    "MigrationOperation",
    "OperationKind",
    "RiskLevel",
    "build_graph",
    "DependencyGraph",
    "CircularDependencyError",
    "optimize",
    "PlanCompiler",
    "CompileOptions",
    "ExecutionPlan",
    "PlanValidationResult",
    "RollbackPlan",
    "PlanNotValidatedError",
    "MigrationBuild",
    "BuildResult",
    "BuildState",
    "BuildStateError",
    "analyze_operations",
    "MigrationAnalysis",
    # Config
    "load_planner_config",
    "PlannerConfig",
]
