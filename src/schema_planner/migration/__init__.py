"""Migration planning: diff, dependency graph, optimizer and plan compiler.

Usage:
    from schema_planner.migration import calculate_diff, build_graph, optimize
    from schema_planner.migration import PlanCompiler, CompileOptions
    from schema_planner.migration import MigrationBuild
"""

from schema_planner.migration.analysis import MigrationAnalysis, MigrationRisk, analyze_operations
from schema_planner.migration.diff import calculate_diff
from schema_planner.migration.graph import (
    CircularDependencyError,
    DependencyGraph,
    GraphNode,
    build_graph,
)
from schema_planner.migration.models import DiffResult, MigrationOperation, OperationKind, RiskLevel
from schema_planner.migration.optimizer import optimize
from schema_planner.migration.pipeline import BuildResult, BuildState, BuildStateError, MigrationBuild
from schema_planner.migration.plan import (
    CompileOptions,
    ExecutionPlan,
    ExecutionStep,
    PlanCompiler,
    PlanNotValidatedError,
    PlanPhase,
    PlanValidationResult,
    RollbackPlan,
    RollbackStep,
)

__all__ = [
    "calculate_diff",
    "DiffResult",
    "MigrationOperation",
    "OperationKind",
    "RiskLevel",
    "build_graph",
    "DependencyGraph",
    "GraphNode",
    "CircularDependencyError",
    "optimize",
    "PlanCompiler",
    "CompileOptions",
    "ExecutionPlan",
    "ExecutionStep",
    "PlanPhase",
    "PlanValidationResult",
    "RollbackPlan",
    "RollbackStep",
    "PlanNotValidatedError",
    "MigrationBuild",
    "BuildResult",
    "BuildState",
    "BuildStateError",
    "analyze_operations",
    "MigrationAnalysis",
    "MigrationRisk",
]
