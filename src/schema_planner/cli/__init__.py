"""CLI module for planning schema migrations from SQL sources.

Provides commands to diff two schema sources, compile a validated execution
plan (with rollback), and inspect the dependency graph of a schema.

Usage:
    schema-planner diff current.sql target.sql
    schema-planner plan db/current/ db/target/ --rollback
    schema-planner plan current.sql target.sql --confirm --parallel --json
    schema-planner --config planner.toml graph target.sql

Commands:
    diff   - Show classified operations between two schemas
    plan   - Compile and validate an execution plan
    graph  - Show execution order and dependency structure of a schema
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from schema_planner.config.loader import DEFAULT_CONFIG_NAME, load_planner_config
from schema_planner.config.models import PlannerConfig
from schema_planner.migration.analysis import analyze_operations
from schema_planner.migration.diff import calculate_diff
from schema_planner.migration.graph import build_graph
from schema_planner.migration.models import MigrationOperation, RiskLevel
from schema_planner.migration.pipeline import BuildState, MigrationBuild
from schema_planner.migration.plan import CompileOptions
from schema_planner.schema.parser import SchemaParseError, parse_schema

console = Console()

_RISK_STYLE = {
    RiskLevel.SAFE: "green",
    RiskLevel.WARNING: "yellow",
    RiskLevel.DESTRUCTIVE: "bold red",
}


# ============================================================================
# Helpers
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(args: argparse.Namespace) -> PlannerConfig:
    """Load ``--config`` if given, else ./planner.toml if present, else defaults.

    Raises:
        FileNotFoundError: If an explicit ``--config`` file doesn't exist.
        ValueError: If the config format is invalid.
    """
    config_path = getattr(args, "config", None)
    if config_path:
        return load_planner_config(Path(config_path))
    default_path = Path.cwd() / DEFAULT_CONFIG_NAME
    if default_path.exists():
        return load_planner_config(default_path)
    return PlannerConfig()


def _read_sql_source(source: str | Path, source_order: list[str]) -> str:
    """Read SQL from a file, or from every ``*.sql`` file under a directory.

    Directory sources are read subdirectory by subdirectory in
    *source_order* (e.g. ``tables/`` before ``views/``), then any remaining
    files, each group sorted by path.

    Raises:
        FileNotFoundError: If *source* does not exist.
    """
    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"SQL source not found: {path}")
    if path.is_file():
        return path.read_text()

    ordered: list[Path] = []
    for name in source_order:
        subdir = path / name
        if subdir.is_dir():
            ordered.extend(sorted(subdir.rglob("*.sql")))
    seen = set(ordered)
    ordered.extend(p for p in sorted(path.rglob("*.sql")) if p not in seen)
    return "\n".join(p.read_text() for p in ordered)


def _operations_table(operations: list[MigrationOperation], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", style="dim")
    table.add_column("Risk")
    table.add_column("Target")
    table.add_column("Description")
    table.add_column("Warning", style="yellow")
    for number, op in enumerate(operations, start=1):
        style = _RISK_STYLE[op.type]
        table.add_row(
            str(number),
            f"[{style}]{op.type.value}[/{style}]",
            op.target,
            op.description,
            op.warning or "",
        )
    return table


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ============================================================================
# Command implementations
# ============================================================================


def cmd_diff(args: argparse.Namespace) -> int:
    """Show classified operations between two schema sources.

    Args:
        args: Parsed arguments with current, target and json.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        config = _load_config(args)
        current = parse_schema(_read_sql_source(args.current, config.source_order), config.dialect)
        target = parse_schema(_read_sql_source(args.target, config.source_order), config.dialect)
    except (FileNotFoundError, ValueError, SchemaParseError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    result = calculate_diff(current.schema_model, target.schema_model)
    operations = list(result.operations)

    if args.json:
        _print_json({"operations": [op.model_dump(mode="json") for op in operations]})
        return 0

    if not operations:
        console.print("[bold green]v[/bold green] Schemas match - no changes")
        return 0

    console.print(_operations_table(operations, "Schema Changes"))
    for diagnostic in [*current.diagnostics, *target.diagnostics, *result.diagnostics]:
        console.print(f"[dim]{diagnostic.format()}[/dim]")
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    """Compile and validate an execution plan between two schema sources.

    Args:
        args: Parsed arguments with current, target, confirm, rollback,
            parallel, no_rollback, plan_name and json.

    Returns:
        0 when the plan validates, 1 otherwise.
    """
    try:
        config = _load_config(args)
        current_sql = _read_sql_source(args.current, config.source_order)
        target_sql = _read_sql_source(args.target, config.source_order)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    options = CompileOptions(
        plan_name=args.plan_name or config.plan.name,
        enable_rollback=config.plan.enable_rollback and not args.no_rollback,
        parallel_execution=config.plan.parallel_execution or args.parallel,
        confirmed=args.confirm,
    )
    build = MigrationBuild(config, options)
    try:
        result = build.run(current_sql, target_sql)
    except SchemaParseError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    analysis = analyze_operations(result.operations)
    rollback = None
    if args.rollback and result.state == BuildState.VALIDATED:
        rollback = build.rollback_plan()

    if args.json:
        _print_json(
            {
                "state": result.state.value,
                "errors": result.errors,
                "cycle": result.cycle,
                "analysis": analysis.model_dump(mode="json"),
                "plan": result.plan.model_dump(mode="json") if result.plan else None,
                "validation": result.validation.model_dump(mode="json") if result.validation else None,
                "rollback": rollback.model_dump(mode="json") if rollback else None,
            }
        )
        return 0 if result.succeeded else 1

    console.print(
        f"Risk: [bold]{analysis.risk_level.value}[/bold]  "
        f"Operations: {analysis.statistics['total']}  "
        f"Downtime: {'possible' if analysis.requires_downtime else 'none expected'}"
    )
    for recommendation in analysis.recommendations:
        console.print(f"  [dim]-[/dim] {recommendation}")

    if result.cycle:
        console.print(f"\n[bold red]x[/bold red] Circular dependency: {' -> '.join(result.cycle)}")
        return 1

    plan = result.plan
    if plan is not None and plan.steps:
        console.print()
        table = Table(title=f"Execution Plan: {plan.name}", show_header=True, header_style="bold")
        table.add_column("Step", style="dim")
        table.add_column("Phase")
        table.add_column("Risk")
        table.add_column("Description")
        table.add_column("Est.", justify="right")
        if options.parallel_execution:
            table.add_column("Group", justify="right")
        for step in plan.steps:
            style = _RISK_STYLE[step.operation.type]
            row = [
                step.id,
                step.phase,
                f"[{style}]{step.operation.type.value}[/{style}]",
                step.operation.description,
                f"{step.estimated_seconds:.0f}s",
            ]
            if options.parallel_execution:
                row.append(str(step.parallel_group))
            table.add_row(*row)
        console.print(table)
        console.print(f"Estimated time: {plan.estimated_time:.0f}s")

    if result.validation is not None:
        console.print()
        console.print(result.validation.format_report())

    if rollback is not None:
        console.print()
        table = Table(title="Rollback Plan", show_header=True, header_style="bold")
        table.add_column("Step", style="dim")
        table.add_column("Undoes", style="dim")
        table.add_column("SQL")
        for step in rollback.steps:
            sql = f"[yellow]{step.sql}[/yellow]" if step.manual else step.sql
            table.add_row(step.id, step.forward_step_id, sql)
        console.print(table)

    if result.succeeded:
        console.print("\n[bold green]v[/bold green] Plan validated")
        return 0
    unconfirmed = plan is not None and any(s.requires_confirmation and not s.confirmed for s in plan.steps)
    if unconfirmed and not args.confirm:
        console.print("[dim]Re-run with[/dim] [cyan]--confirm[/cyan] [dim]to confirm destructive steps.[/dim]")
    return 1


def cmd_graph(args: argparse.Namespace) -> int:
    """Show execution order and dependency structure of one schema.

    Args:
        args: Parsed arguments with sql and json.

    Returns:
        0 when the graph is acyclic, 1 on a cycle or failure.
    """
    try:
        config = _load_config(args)
        parsed = parse_schema(_read_sql_source(args.sql, config.source_order), config.dialect)
    except (FileNotFoundError, ValueError, SchemaParseError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    graph = build_graph(parsed.schema_model.all_objects())
    cycle = graph.find_cycle()
    order = [] if cycle else graph.get_execution_order()

    if args.json:
        _print_json(
            {
                "order": order,
                "independent": graph.get_independent_nodes(),
                "terminal": graph.get_terminal_nodes(),
                "warnings": graph.warnings,
                "cycle": cycle,
                "graph": graph.to_dict(),
            }
        )
        return 1 if cycle else 0

    if cycle:
        console.print(f"[bold red]x[/bold red] Circular dependency: {' -> '.join(cycle)}")
        return 1

    table = Table(title="Execution Order", show_header=True, header_style="bold")
    table.add_column("#", style="dim")
    table.add_column("Object")
    table.add_column("Depends on", style="dim")
    for number, key in enumerate(order, start=1):
        table.add_row(str(number), key, ", ".join(graph.dependencies_of(key)))
    console.print(table)

    console.print(f"Independent: {', '.join(graph.get_independent_nodes()) or '-'}")
    console.print(f"Terminal: {', '.join(graph.get_terminal_nodes()) or '-'}")
    for warning in graph.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="schema-planner",
        description="Plan safe, ordered DDL migrations between two schemas",
    )

    # Global options
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to planner config (default: ./{DEFAULT_CONFIG_NAME} if present)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # diff command
    p_diff = subparsers.add_parser(
        "diff",
        help="Show classified operations between two schemas",
    )
    p_diff.add_argument("current", help="Current schema: SQL file or directory")
    p_diff.add_argument("target", help="Target schema: SQL file or directory")
    p_diff.add_argument("--json", action="store_true", help="Output JSON")
    p_diff.set_defaults(func=cmd_diff)

    # plan command
    p_plan = subparsers.add_parser(
        "plan",
        help="Compile and validate an execution plan",
    )
    p_plan.add_argument("current", help="Current schema: SQL file or directory")
    p_plan.add_argument("target", help="Target schema: SQL file or directory")
    p_plan.add_argument(
        "--confirm",
        action="store_true",
        help="Confirm every step that requires confirmation",
    )
    p_plan.add_argument(
        "--rollback",
        action="store_true",
        help="Show the rollback plan",
    )
    p_plan.add_argument(
        "--parallel",
        action="store_true",
        help="Assign parallel execution groups",
    )
    p_plan.add_argument(
        "--no-rollback",
        action="store_true",
        help="Do not precompute rollback SQL",
    )
    p_plan.add_argument("--plan-name", default=None, help="Plan name")
    p_plan.add_argument("--json", action="store_true", help="Output JSON")
    p_plan.set_defaults(func=cmd_plan)

    # graph command
    p_graph = subparsers.add_parser(
        "graph",
        help="Show execution order and dependency structure of a schema",
    )
    p_graph.add_argument("sql", help="Schema: SQL file or directory")
    p_graph.add_argument("--json", action="store_true", help="Output JSON")
    p_graph.set_defaults(func=cmd_graph)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
