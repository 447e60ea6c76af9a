"""Per-build pipeline: parse, diff, graph, optimize, compile, validate.

A ``MigrationBuild`` moves through these states exactly once:

    idle -> parsing -> diffing -> graph_building -> optimizing
         -> compiling -> validated | failed

Only a validated build hands out a rollback plan.  ``failed`` is terminal
and carries the errors that caused it; there is no partial retry, a new
build starts again from ``parsing``.

Usage:
    from schema_planner.migration.pipeline import MigrationBuild

    build = MigrationBuild()
    result = build.run(current_sql, target_sql)
    if result.state == BuildState.VALIDATED:
        rollback = build.rollback_plan()
    else:
        for error in result.errors:
            print(error)
"""

import logging
from enum import Enum

from pydantic import BaseModel, Field

from schema_planner.config.models import PlannerConfig
from schema_planner.migration.diff import calculate_diff
from schema_planner.migration.graph import DependencyGraph, build_graph
from schema_planner.migration.models import MigrationOperation
from schema_planner.migration.optimizer import optimize
from schema_planner.migration.plan import (
    CompileOptions,
    ExecutionPlan,
    PlanCompiler,
    PlanValidationResult,
    RollbackPlan,
)
from schema_planner.schema.models import Diagnostic, ParseResult
from schema_planner.schema.parser import SchemaParseError, parse_schema

logger = logging.getLogger(__name__)


class BuildStateError(Exception):
    """Raised when a build is used in a state that does not allow it."""


class BuildState(str, Enum):
    """Lifecycle state of a migration build."""

    IDLE = "idle"
    PARSING = "parsing"
    DIFFING = "diffing"
    GRAPH_BUILDING = "graph_building"
    OPTIMIZING = "optimizing"
    COMPILING = "compiling"
    VALIDATED = "validated"
    FAILED = "failed"


class BuildResult(BaseModel):
    """Outcome of ``MigrationBuild.run``.

    Attributes:
        state: Final state, ``validated`` or ``failed``.
        operations: Optimized operations (empty if the build failed early).
        plan: Compiled plan, if compilation was reached.
        validation: Plan validation result, if compilation was reached.
        diagnostics: Parse, diff and graph diagnostics.
        errors: Errors that failed the build.
        cycle: Dependency cycle (node keys) when one blocked compilation.
        skipped_statements: Statements the parser skipped, both inputs.
    """

    state: BuildState
    operations: list[MigrationOperation] = Field(default_factory=list)
    plan: ExecutionPlan | None = None
    validation: PlanValidationResult | None = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    cycle: list[str] | None = None
    skipped_statements: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == BuildState.VALIDATED


class MigrationBuild:
    """One migration build from two SQL texts to a validated plan.

    Args:
        config: Planner configuration (dialect, plan defaults, weights).
        options: Compile options; defaults come from ``config.plan``.
    """

    def __init__(self, config: PlannerConfig | None = None, options: CompileOptions | None = None):
        self.config = config or PlannerConfig()
        self.options = options or CompileOptions(
            plan_name=self.config.plan.name,
            enable_rollback=self.config.plan.enable_rollback,
            parallel_execution=self.config.plan.parallel_execution,
        )
        self.state = BuildState.IDLE
        self.history: list[BuildState] = [BuildState.IDLE]
        self.current: ParseResult | None = None
        self.target: ParseResult | None = None
        self.graph: DependencyGraph | None = None
        self.compiler: PlanCompiler | None = None
        self.result: BuildResult | None = None

    def _transition(self, state: BuildState) -> None:
        logger.debug("Build state %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _finish(self, result: BuildResult) -> BuildResult:
        self._transition(result.state)
        self.result = result
        if result.state == BuildState.FAILED:
            logger.info("Build failed: %s", "; ".join(result.errors))
        return result

    def run(self, current_sql: str, target_sql: str) -> BuildResult:
        """Run every stage on *current_sql* and *target_sql*.

        Cycles and validation failures end in ``failed`` without raising.

        Raises:
            BuildStateError: If this build has already run.
            SchemaParseError: If either input cannot be tokenized (the
                build is marked failed first).
        """
        if self.state != BuildState.IDLE:
            raise BuildStateError(f"Build already ran (state: {self.state.value}); start a new build")

        self._transition(BuildState.PARSING)
        try:
            self.current = parse_schema(current_sql, self.config.dialect)
            self.target = parse_schema(target_sql, self.config.dialect)
        except SchemaParseError as e:
            self._finish(BuildResult(state=BuildState.FAILED, errors=[str(e)]))
            raise
        current_model = self.current.schema_model
        target_model = self.target.schema_model
        diagnostics = [*self.current.diagnostics, *self.target.diagnostics]
        skipped = self.current.skipped_count + self.target.skipped_count

        self._transition(BuildState.DIFFING)
        diff = calculate_diff(current_model, target_model)
        diagnostics.extend(diff.diagnostics)

        self._transition(BuildState.GRAPH_BUILDING)
        removed = [
            obj
            for obj in current_model.all_objects()
            if obj.identity not in target_model.collection(obj.category)
        ]
        self.graph = build_graph(target_model.all_objects(), removed=removed)
        diagnostics.extend(self.graph.diagnostics)
        cycle = self.graph.find_cycle()
        if cycle:
            return self._finish(
                BuildResult(
                    state=BuildState.FAILED,
                    operations=list(diff.operations),
                    diagnostics=diagnostics,
                    errors=[f"Circular dependency: {' -> '.join(cycle)}"],
                    cycle=cycle,
                    skipped_statements=skipped,
                )
            )

        self._transition(BuildState.OPTIMIZING)
        operations = optimize(diff.operations)

        self._transition(BuildState.COMPILING)
        self.compiler = PlanCompiler(
            graph=self.graph,
            weights=self.config.estimates,
            long_plan_warning_seconds=self.config.plan.long_plan_warning_seconds,
        )
        plan = self.compiler.compile_plan(operations, self.options)
        validation = self.compiler.validate_plan(plan)

        return self._finish(
            BuildResult(
                state=BuildState.VALIDATED if validation.valid else BuildState.FAILED,
                operations=operations,
                plan=plan,
                validation=validation,
                diagnostics=diagnostics,
                errors=list(validation.errors),
                skipped_statements=skipped,
            )
        )

    def rollback_plan(self) -> RollbackPlan:
        """Rollback plan of the validated plan.

        Raises:
            BuildStateError: If the build is not in the ``validated`` state.
        """
        if self.state != BuildState.VALIDATED or self.result is None or self.result.plan is None:
            raise BuildStateError(f"Rollback requires a validated build (state: {self.state.value})")
        return self.compiler.generate_rollback_plan(self.result.plan)
