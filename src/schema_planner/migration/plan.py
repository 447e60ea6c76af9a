"""Plan compiler: phased execution plans, validation and rollback.

Operations are grouped into phases by category precedence.  Whole-object
drops run first, in teardown phases of reverse precedence, so dependents are
removed before what they depend on; everything else runs in forward phases:

    extension < schema < type < table < function < view < policy
    < trigger < index < data

Within a phase, steps follow the dependency graph's topological order
(reversed for teardown).  A compiled plan must pass ``validate_plan`` before
a rollback plan can be derived from it.

Usage:
    from schema_planner.migration.plan import CompileOptions, PlanCompiler

    compiler = PlanCompiler(graph=graph)
    plan = compiler.compile_plan(operations, CompileOptions(plan_name="release-42"))
    result = compiler.validate_plan(plan)
    if not result.valid:
        plan = plan.with_confirmations()  # after asking the operator
    rollback = compiler.generate_rollback_plan(plan)
"""

import logging
import re
import uuid
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from schema_planner.config.models import EstimateWeights
from schema_planner.migration.graph import DependencyGraph
from schema_planner.migration.models import MigrationOperation, OperationKind, RiskLevel
from schema_planner.schema.models import CATEGORY_PRECEDENCE, Diagnostic, ObjectCategory, quote_identifier

logger = logging.getLogger(__name__)

MANUAL_PREFIX = "-- MANUAL INTERVENTION REQUIRED"


class PlanNotValidatedError(Exception):
    """Raised when a rollback is requested for a plan that fails validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Plan is not valid: " + "; ".join(errors))


# ============================================================================
# Plan models
# ============================================================================


class CompileOptions(BaseModel):
    """Options for ``PlanCompiler.compile_plan``.

    Attributes:
        plan_id: Plan identifier (random UUID when omitted).
        plan_name: Human-readable plan name.
        enable_rollback: Precompute inverse SQL for every step.
        parallel_execution: Assign each step a parallel group.
        confirmed: Mark every confirmation-requiring step as confirmed.
    """

    plan_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    plan_name: str = "migration"
    enable_rollback: bool = True
    parallel_execution: bool = False
    confirmed: bool = False


class ExecutionStep(BaseModel):
    """One step of an execution plan, wrapping exactly one operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    index: int
    phase: str
    operation: MigrationOperation
    depends_on: tuple[str, ...] = ()
    confirmed: bool = False
    rollback_sql: str | None = None  # None: no deterministic inverse
    estimated_seconds: float = 0.0
    parallel_group: int | None = None

    @property
    def requires_confirmation(self) -> bool:
        return self.operation.requires_confirmation


class PlanPhase(BaseModel):
    """A group of steps on objects of one category."""

    model_config = ConfigDict(frozen=True)

    name: str
    category: ObjectCategory
    teardown: bool = False
    step_ids: tuple[str, ...] = ()


class ExecutionPlan(BaseModel):
    """Ordered, phased sequence of steps ready to hand to an executor."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    steps: tuple[ExecutionStep, ...] = ()
    phases: tuple[PlanPhase, ...] = ()
    estimated_time: float = 0.0  # seconds
    metadata: dict[str, Any] = Field(default_factory=dict)
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def step(self, step_id: str) -> ExecutionStep:
        """Return the step with *step_id*; raises ``KeyError`` if absent."""
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def with_confirmations(self, targets: Iterable[str] | None = None) -> "ExecutionPlan":
        """Return a copy with confirmation-requiring steps confirmed.

        Args:
            targets: Step ids or operation targets to confirm; ``None``
                confirms every step that requires confirmation.
        """
        wanted = set(targets) if targets is not None else None
        steps = []
        for step in self.steps:
            selected = wanted is None or step.id in wanted or step.operation.target in wanted
            if step.requires_confirmation and selected:
                step = step.model_copy(update={"confirmed": True})
            steps.append(step)
        return self.model_copy(update={"steps": tuple(steps)})


class PlanValidationResult(BaseModel):
    """Result of plan validation."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        lines = ["Plan valid" if self.valid else "Plan validation failed:"]
        for error in self.errors:
            lines.append(f"  - {error}")
        if self.warnings:
            lines.append(f"\n  Warnings ({len(self.warnings)}):")
            for warning in self.warnings:
                lines.append(f"    - {warning}")
        return "\n".join(lines)


class RollbackStep(BaseModel):
    """Inverse of one forward step, or a manual-intervention marker."""

    model_config = ConfigDict(frozen=True)

    id: str
    forward_step_id: str
    sql: str
    description: str
    manual: bool = False
    reason: str | None = None


class RollbackPlan(BaseModel):
    """Reverse-ordered inverse steps, one per forward step."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    plan_id: str
    steps: tuple[RollbackStep, ...] = ()

    @property
    def manual_steps(self) -> list[RollbackStep]:
        return [s for s in self.steps if s.manual]


# ============================================================================
# Inverse SQL
# ============================================================================


def _drop_sql_for(category: ObjectCategory, target: str, sql: str) -> str:
    """DROP statement for an object created by *sql*."""
    if category in (ObjectCategory.POLICY, ObjectCategory.TRIGGER):
        table, _, name = target.rpartition(".")
        return f"DROP {category.value.upper()} IF EXISTS {name} ON {table};"
    if category == ObjectCategory.VIEW and re.match(r"\s*CREATE\s+MATERIALIZED\b", sql, re.IGNORECASE):
        return f"DROP MATERIALIZED VIEW IF EXISTS {quote_identifier(target)};"
    keyword = {
        ObjectCategory.EXTENSION: "EXTENSION IF EXISTS",
        ObjectCategory.SCHEMA: "SCHEMA IF EXISTS",
        ObjectCategory.TYPE: "TYPE IF EXISTS",
        ObjectCategory.TABLE: "TABLE IF EXISTS",
        ObjectCategory.FUNCTION: "FUNCTION IF EXISTS",
        ObjectCategory.VIEW: "VIEW IF EXISTS",
        ObjectCategory.INDEX: "INDEX IF EXISTS",
    }.get(category)
    if keyword is None:
        return ""
    if category == ObjectCategory.FUNCTION:
        return f"DROP {keyword} {target};"
    return f"DROP {keyword} {quote_identifier(target)};"


def _column_inverse(kind: str, column: str, metadata: dict[str, Any]) -> tuple[str | None, str | None]:
    """Inverse ``ALTER TABLE`` clause for a column-level change."""
    quoted = quote_identifier(column)
    if kind == OperationKind.ADD_COLUMN.value:
        return f"DROP COLUMN {quoted}", None
    if kind == OperationKind.DROP_COLUMN.value:
        return None, f"dropped column {column} and its data cannot be restored"
    if kind == OperationKind.SET_NOT_NULL.value:
        return f"ALTER COLUMN {quoted} DROP NOT NULL", None
    if kind == OperationKind.DROP_NOT_NULL.value:
        return f"ALTER COLUMN {quoted} SET NOT NULL", None
    if kind in (OperationKind.SET_DEFAULT.value, OperationKind.DROP_DEFAULT.value):
        if "previous_default" not in metadata:
            return None, f"previous default of {column} is unknown"
        previous = metadata["previous_default"]
        if previous is None:
            return f"ALTER COLUMN {quoted} DROP DEFAULT", None
        return f"ALTER COLUMN {quoted} SET DEFAULT {previous}", None
    if kind == OperationKind.ALTER_COLUMN_TYPE.value:
        previous_type = metadata.get("previous_type")
        if not previous_type:
            return None, f"previous type of {column} is unknown"
        return f"ALTER COLUMN {quoted} TYPE {previous_type}", None
    return None, f"no inverse for {kind}"


def inverse_sql(op: MigrationOperation) -> tuple[str | None, str | None]:
    """Deterministic inverse of *op*.

    Returns:
        ``(sql, None)`` when an inverse exists, else ``(None, reason)``.
    """
    metadata = op.metadata
    kind = op.kind

    if kind == OperationKind.CREATE:
        sql = metadata.get("drop_sql") or _drop_sql_for(op.category, op.target, op.sql)
        return (sql, None) if sql else (None, f"no drop statement for {op.category.value}")
    if kind == OperationKind.DROP:
        if op.type == RiskLevel.DESTRUCTIVE:
            return None, f"dropped {op.category.value} {op.target} cannot be restored with its data"
        previous = metadata.get("previous_sql")
        return (previous, None) if previous else (None, "previous definition was not recorded")
    if kind == OperationKind.REPLACE:
        previous = metadata.get("previous_sql")
        return (previous, None) if previous else (None, "previous definition was not recorded")
    if kind == OperationKind.RECREATE:
        previous = metadata.get("previous_sql")
        if not previous:
            return None, "previous definition was not recorded"
        drop = metadata.get("drop_sql") or _drop_sql_for(op.category, op.target, op.sql)
        return f"{drop}\n{previous}", None
    if kind == OperationKind.ENABLE_RLS:
        return f"ALTER TABLE {quote_identifier(op.target)} DISABLE ROW LEVEL SECURITY;", None
    if kind == OperationKind.DISABLE_RLS:
        return f"ALTER TABLE {quote_identifier(op.target)} ENABLE ROW LEVEL SECURITY;", None
    if kind == OperationKind.ADD_ENUM_VALUE:
        return None, f"enum values cannot be dropped from {op.target}"
    if kind == OperationKind.REMOVE_ENUM_VALUES:
        return None, f"removed values of enum {op.target} need manual restoration"

    column = op.column
    if column is None:
        return None, f"no column recorded for {kind.value}"
    if kind == OperationKind.ALTER_COLUMN:
        clauses = []
        for part in reversed(metadata.get("merged", [])):
            clause, reason = _column_inverse(part["kind"], column, part.get("metadata", {}))
            if clause is None:
                return None, reason
            clauses.append(clause)
        return f"ALTER TABLE {quote_identifier(op.target)} {', '.join(clauses)};", None
    clause, reason = _column_inverse(kind.value, column, metadata)
    if clause is None:
        return None, reason
    return f"ALTER TABLE {quote_identifier(op.target)} {clause};", None


# ============================================================================
# Compiler
# ============================================================================


def _phase_order() -> list[tuple[bool, ObjectCategory]]:
    teardown = [(True, c) for c in reversed(CATEGORY_PRECEDENCE)]
    forward = [(False, c) for c in CATEGORY_PRECEDENCE]
    return teardown + forward


def _find_step_cycle(steps: Sequence[ExecutionStep]) -> list[str] | None:
    depends_on = {s.id: [d for d in s.depends_on if d != s.id] for s in steps}
    state: dict[str, int] = {}  # 1 visiting, 2 done
    path: list[str] = []

    def visit(step_id: str) -> list[str] | None:
        state[step_id] = 1
        path.append(step_id)
        for dep in depends_on.get(step_id, []):
            if state.get(dep) == 1:
                return path[path.index(dep) :] + [dep]
            if dep in depends_on and dep not in state:
                found = visit(dep)
                if found:
                    return found
        path.pop()
        state[step_id] = 2
        return None

    for step in steps:
        if step.id not in state:
            cycle = visit(step.id)
            if cycle:
                return cycle
    return None


class PlanCompiler:
    """Compiles operations into phased plans, validates them, derives rollbacks.

    Args:
        graph: Dependency graph used for ordering; without one, steps keep
            their input order within each phase.
        weights: Per-kind and per-category duration weights.
        long_plan_warning_seconds: Validation warns above this estimate.
    """

    def __init__(
        self,
        graph: DependencyGraph | None = None,
        weights: EstimateWeights | None = None,
        long_plan_warning_seconds: float = 3600.0,
    ):
        self.graph = graph
        self.weights = weights or EstimateWeights()
        self.long_plan_warning_seconds = long_plan_warning_seconds

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def _related_keys(self, key: str, teardown: bool) -> set[str]:
        """Keys whose steps must run before a step on *key*."""
        if self.graph is None or key not in self.graph:
            return set()
        if teardown:
            return set(self.graph.dependents_of(key))
        return set(self.graph.dependencies_of(key))

    def compile_plan(
        self,
        operations: Sequence[MigrationOperation],
        options: CompileOptions | None = None,
    ) -> ExecutionPlan:
        """Arrange *operations* into a phased ``ExecutionPlan``.

        Raises:
            CircularDependencyError: If the graph has a cycle.
        """
        options = options or CompileOptions()
        position: dict[str, int] = {}
        if self.graph is not None:
            position = {key: i for i, key in enumerate(self.graph.get_execution_order())}
        unplaced = len(position)

        grouped: dict[tuple[bool, ObjectCategory], list[tuple[int, MigrationOperation]]] = {}
        for index, op in enumerate(operations):
            grouped.setdefault((op.is_teardown, op.category), []).append((index, op))

        steps: list[ExecutionStep] = []
        phases: list[PlanPhase] = []
        for teardown, category in _phase_order():
            members = grouped.get((teardown, category))
            if not members:
                continue
            if teardown:
                members.sort(key=lambda m: (-position.get(m[1].node_key, unplaced), m[0]))
            else:
                members.sort(key=lambda m: (position.get(m[1].node_key, unplaced), m[0]))

            phase_name = f"teardown:{category.value}" if teardown else category.value
            step_ids = []
            for _, op in members:
                step_id = f"step-{len(steps) + 1}"
                rollback_sql = inverse_sql(op)[0] if options.enable_rollback else None
                steps.append(
                    ExecutionStep(
                        id=step_id,
                        index=len(steps),
                        phase=phase_name,
                        operation=op,
                        confirmed=options.confirmed and op.requires_confirmation,
                        rollback_sql=rollback_sql,
                        estimated_seconds=self.weights.seconds_for(op.kind.value, op.category.value),
                    )
                )
                step_ids.append(step_id)
            phases.append(
                PlanPhase(name=phase_name, category=category, teardown=teardown, step_ids=tuple(step_ids))
            )

        steps = self._link_steps(steps, options.parallel_execution)
        estimated = sum(s.estimated_seconds for s in steps)
        plan = ExecutionPlan(
            id=options.plan_id,
            name=options.plan_name,
            steps=tuple(steps),
            phases=tuple(phases),
            estimated_time=estimated,
            metadata={
                "enable_rollback": options.enable_rollback,
                "parallel_execution": options.parallel_execution,
                "operation_count": len(operations),
            },
            diagnostics=tuple(self.graph.diagnostics) if self.graph is not None else (),
        )
        logger.info("Compiled plan %s: %d steps in %d phases", plan.name, len(steps), len(phases))
        return plan

    def _link_steps(self, steps: list[ExecutionStep], parallel: bool) -> list[ExecutionStep]:
        """Fill ``depends_on`` and, when *parallel*, ``parallel_group``."""
        steps_by_key: dict[tuple[bool, str], list[ExecutionStep]] = {}
        for step in steps:
            steps_by_key.setdefault((step.operation.is_teardown, step.operation.node_key), []).append(step)

        phase_of = {step.id: step.phase for step in steps}
        linked: list[ExecutionStep] = []
        depth: dict[str, int] = {}
        for step in steps:
            op = step.operation
            teardown = op.is_teardown
            depends_on: list[str] = []
            # Earlier steps on the same object stay sequential
            same_object = [s.id for s in steps_by_key[(teardown, op.node_key)] if s.index < step.index]
            if same_object:
                depends_on.append(same_object[-1])
            for key in sorted(self._related_keys(op.node_key, teardown)):
                depends_on.extend(s.id for s in steps_by_key.get((teardown, key), []))

            group = None
            if parallel:
                same_phase = [depth[d] for d in depends_on if d in depth and phase_of[d] == step.phase]
                group = 1 + max(same_phase) if same_phase else 0
                depth[step.id] = group
            linked.append(step.model_copy(update={"depends_on": tuple(depends_on), "parallel_group": group}))
        return linked

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_plan(self, plan: ExecutionPlan) -> PlanValidationResult:
        """Validate *plan*; never raises for expected problems.

        Errors: DESTRUCTIVE steps without ``requires_confirmation``,
        unconfirmed steps that require confirmation, steps scheduled before
        a step they depend on, and dependency cycles between steps.

        Warnings: operation warnings, graph warnings, an empty plan and an
        estimate above ``long_plan_warning_seconds``.
        """
        errors: list[str] = []
        warnings: list[str] = []
        positions = {step.id: i for i, step in enumerate(plan.steps)}

        for i, step in enumerate(plan.steps):
            op = step.operation
            label = f"{step.id} ({op.description})"
            if op.type == RiskLevel.DESTRUCTIVE and not op.requires_confirmation:
                errors.append(f"{label} is DESTRUCTIVE but does not require confirmation")
            if op.requires_confirmation and not step.confirmed:
                errors.append(f"{label} requires confirmation")
            for dep in step.depends_on:
                if dep not in positions:
                    errors.append(f"{label} depends on unknown step {dep}")
                elif positions[dep] > i:
                    errors.append(f"{label} is scheduled before its dependency {dep}")
            if op.warning:
                warnings.append(f"{op.target}: {op.warning}")

        cycle = _find_step_cycle(plan.steps)
        if cycle:
            errors.append(f"Dependency cycle between steps: {' -> '.join(cycle)}")

        warnings.extend(d.message for d in plan.diagnostics if d.severity == "warning")
        if not plan.steps:
            warnings.append("Plan has no steps")
        if plan.estimated_time > self.long_plan_warning_seconds:
            warnings.append(
                f"Estimated time {plan.estimated_time:.0f}s exceeds {self.long_plan_warning_seconds:.0f}s"
            )

        return PlanValidationResult(valid=not errors, errors=errors, warnings=warnings)

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def generate_rollback_plan(self, plan: ExecutionPlan) -> RollbackPlan:
        """Derive the rollback plan of a valid *plan*.

        Every forward step yields exactly one rollback step, in reverse
        order; steps without a deterministic inverse become manual markers.

        Raises:
            PlanNotValidatedError: If *plan* does not pass validation.
        """
        result = self.validate_plan(plan)
        if not result.valid:
            raise PlanNotValidatedError(result.errors)

        rollback_enabled = plan.metadata.get("enable_rollback", True)
        steps = []
        for number, step in enumerate(reversed(plan.steps), start=1):
            op = step.operation
            if not rollback_enabled:
                sql, reason = None, "rollback was disabled when the plan was compiled"
            elif step.rollback_sql:
                sql, reason = step.rollback_sql, None
            else:
                sql, reason = inverse_sql(op)

            if sql is None:
                steps.append(
                    RollbackStep(
                        id=f"rollback-{number}",
                        forward_step_id=step.id,
                        sql=f"{MANUAL_PREFIX}: undo {step.id} ({op.description}); {reason}",
                        description=f"Manually undo: {op.description}",
                        manual=True,
                        reason=reason,
                    )
                )
            else:
                steps.append(
                    RollbackStep(
                        id=f"rollback-{number}",
                        forward_step_id=step.id,
                        sql=sql,
                        description=f"Undo: {op.description}",
                    )
                )

        logger.info("Generated rollback for plan %s: %d steps", plan.name, len(steps))
        return RollbackPlan(
            id=f"{plan.id}-rollback",
            name=f"{plan.name} (rollback)",
            plan_id=plan.id,
            steps=tuple(steps),
        )

