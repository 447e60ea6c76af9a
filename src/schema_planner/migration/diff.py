"""Diff engine: compare two schema models and emit classified operations.

Pure logic -- no I/O.  Each category is compared by identity, in category
precedence order:

- Only in target  -> CREATE (SAFE)
- Only in current -> DROP (DESTRUCTIVE for tables, enums and schemas,
  WARNING for everything else)
- In both         -> structural comparison per category

Emission order is advisory; the dependency graph decides execution order.

Usage:
    from schema_planner.schema.parser import parse_schema
    from schema_planner.migration.diff import calculate_diff

    current = parse_schema(current_sql).schema_model
    target = parse_schema(target_sql).schema_model
    result = calculate_diff(current, target)
    for op in result.operations:
        print(op.type.value, op.sql)
"""

import logging
import re

from schema_planner.migration.models import (
    DiffResult,
    MigrationOperation,
    OperationKind,
    RiskLevel,
)
from schema_planner.schema.models import (
    ColumnSchema,
    Diagnostic,
    EnumSchema,
    ExtensionSchema,
    FunctionSchema,
    IndexSchema,
    NamespaceSchema,
    ObjectCategory,
    PolicySchema,
    SchemaModel,
    SchemaObject,
    TableSchema,
    TriggerSchema,
    ViewSchema,
    quote_identifier,
)

logger = logging.getLogger(__name__)

# Whole-object drops that delete data rather than definitions
_DESTRUCTIVE_DROPS = frozenset({ObjectCategory.TABLE, ObjectCategory.TYPE, ObjectCategory.SCHEMA})


# ------------------------------------------------------------------
# SQL rendering
# ------------------------------------------------------------------


def statement(sql: str) -> str:
    """Normalize *sql* to a single statement terminated by ``;``."""
    return sql.strip().rstrip(";").rstrip() + ";"


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_create(obj: SchemaObject) -> str:
    """SQL that creates *obj*.

    Tables are rendered from their parsed structure because ALTER TABLE
    statements are folded into it; other objects reuse their original
    statement text when available.
    """
    if isinstance(obj, TableSchema):
        sql = statement(obj.to_sql())
        if obj.rls_enabled:
            sql += f"\nALTER TABLE {quote_identifier(obj.name)} ENABLE ROW LEVEL SECURITY;"
        return sql
    if obj.source_sql:
        sql = obj.source_sql
        if isinstance(obj, FunctionSchema):
            sql = re.sub(r"^\s*CREATE\s+(?!OR\s+REPLACE)", "CREATE OR REPLACE ", sql, count=1, flags=re.IGNORECASE)
        return statement(sql)
    if isinstance(obj, ExtensionSchema):
        return f"CREATE EXTENSION IF NOT EXISTS {obj.name};"
    if isinstance(obj, NamespaceSchema):
        return f"CREATE SCHEMA IF NOT EXISTS {obj.name};"
    if isinstance(obj, EnumSchema):
        values = ", ".join(_quote_literal(v) for v in obj.values)
        return f"CREATE TYPE {quote_identifier(obj.name)} AS ENUM ({values});"
    return statement(obj.to_sql())  # type: ignore[attr-defined]


def render_drop(obj: SchemaObject) -> str:
    """SQL that drops *obj* (RESTRICT semantics, no CASCADE)."""
    if isinstance(obj, (PolicySchema, TriggerSchema)):
        return statement(obj.drop_sql())
    if isinstance(obj, FunctionSchema):
        return f"DROP FUNCTION IF EXISTS {obj.identity};"
    if isinstance(obj, ViewSchema):
        keyword = "MATERIALIZED VIEW" if obj.materialized else "VIEW"
        return f"DROP {keyword} IF EXISTS {quote_identifier(obj.name)};"
    keyword = {
        ObjectCategory.EXTENSION: "EXTENSION IF EXISTS",
        ObjectCategory.SCHEMA: "SCHEMA",
        ObjectCategory.TYPE: "TYPE",
        ObjectCategory.TABLE: "TABLE",
        ObjectCategory.INDEX: "INDEX IF EXISTS",
    }[obj.category]
    return f"DROP {keyword} {quote_identifier(obj.name)};"


# ------------------------------------------------------------------
# Create / drop
# ------------------------------------------------------------------


def _create_operation(obj: SchemaObject) -> MigrationOperation:
    return MigrationOperation(
        type=RiskLevel.SAFE,
        kind=OperationKind.CREATE,
        category=obj.category,
        target=obj.identity,
        sql=render_create(obj),
        description=f"Create {obj.category.value} {obj.identity}",
        metadata={"drop_sql": render_drop(obj)},
    )


def _drop_warning(obj: SchemaObject) -> str:
    if isinstance(obj, TableSchema):
        return f"Dropping table {obj.name} permanently deletes all of its data"
    if isinstance(obj, EnumSchema):
        return f"Dropping type {obj.name} fails or removes columns that still use it"
    if isinstance(obj, NamespaceSchema):
        return f"Dropping schema {obj.name} removes every object it contains"
    if isinstance(obj, FunctionSchema):
        return f"Dropping function {obj.identity} may affect unknown dependents"
    if isinstance(obj, PolicySchema):
        return f"Dropping policy {obj.name} changes which rows of {obj.table} are visible"
    return f"Dropping {obj.category.value} {obj.identity} may affect unknown dependents"


def _drop_operation(obj: SchemaObject) -> MigrationOperation:
    risk = RiskLevel.DESTRUCTIVE if obj.category in _DESTRUCTIVE_DROPS else RiskLevel.WARNING
    return MigrationOperation(
        type=risk,
        kind=OperationKind.DROP,
        category=obj.category,
        target=obj.identity,
        sql=render_drop(obj),
        description=f"Drop {obj.category.value} {obj.identity}",
        warning=_drop_warning(obj),
        metadata={"previous_sql": render_create(obj)},
    )


# ------------------------------------------------------------------
# Structural comparison
# ------------------------------------------------------------------


def _column_operation(
    table: TableSchema,
    column: str,
    kind: OperationKind,
    risk: RiskLevel,
    clause: str,
    description: str,
    warning: str | None = None,
    **metadata: object,
) -> MigrationOperation:
    return MigrationOperation(
        type=risk,
        kind=kind,
        category=ObjectCategory.TABLE,
        target=table.name,
        sql=f"ALTER TABLE {quote_identifier(table.name)} {clause};",
        description=description,
        warning=warning,
        metadata={"column": column, **metadata},
    )


def _compare_column(table: TableSchema, old: ColumnSchema, new: ColumnSchema) -> list[MigrationOperation]:
    ops: list[MigrationOperation] = []
    qualified = f"{table.name}.{new.name}"
    column = quote_identifier(new.name)

    if old.data_type != new.data_type:
        ops.append(
            _column_operation(
                table,
                new.name,
                OperationKind.ALTER_COLUMN_TYPE,
                RiskLevel.WARNING,
                f"ALTER COLUMN {column} TYPE {new.data_type}",
                f"Change type of {qualified} from {old.data_type} to {new.data_type}",
                f"Converting {qualified} from {old.data_type} to {new.data_type} may fail or lose data",
                previous_type=old.data_type,
            )
        )

    if old.is_nullable and not new.is_nullable:
        ops.append(
            _column_operation(
                table,
                new.name,
                OperationKind.SET_NOT_NULL,
                RiskLevel.WARNING,
                f"ALTER COLUMN {column} SET NOT NULL",
                f"Make {qualified} required",
                f"Fails if {qualified} contains NULL values",
            )
        )
    elif not old.is_nullable and new.is_nullable:
        ops.append(
            _column_operation(
                table,
                new.name,
                OperationKind.DROP_NOT_NULL,
                RiskLevel.SAFE,
                f"ALTER COLUMN {column} DROP NOT NULL",
                f"Make {qualified} nullable",
            )
        )

    if old.default != new.default:
        if new.default is None:
            ops.append(
                _column_operation(
                    table,
                    new.name,
                    OperationKind.DROP_DEFAULT,
                    RiskLevel.SAFE,
                    f"ALTER COLUMN {column} DROP DEFAULT",
                    f"Remove default of {qualified}",
                    previous_default=old.default,
                )
            )
        else:
            ops.append(
                _column_operation(
                    table,
                    new.name,
                    OperationKind.SET_DEFAULT,
                    RiskLevel.SAFE,
                    f"ALTER COLUMN {column} SET DEFAULT {new.default}",
                    f"Set default of {qualified} to {new.default}",
                    previous_default=old.default,
                )
            )
    return ops


def _compare_tables(
    old: TableSchema, new: TableSchema, diagnostics: list[Diagnostic]
) -> list[MigrationOperation]:
    ops: list[MigrationOperation] = []

    if not old.columns or not new.columns:
        # Likely a partial parse; comparing would drop or add every column
        diagnostics.append(
            Diagnostic(
                stage="diff",
                message=f"Table {new.name} has no columns on one side; column comparison skipped",
                identity=new.name,
            )
        )
    else:
        old_columns = old.column_map
        new_columns = new.column_map

        for column in new.columns:
            if column.name in old_columns:
                continue
            warning = None
            if not column.is_nullable and column.default is None and "PRIMARY KEY" not in column.constraints:
                warning = (
                    f"Adding NOT NULL column {new.name}.{column.name} without a default fails if the table has rows"
                )
            ops.append(
                _column_operation(
                    new,
                    column.name,
                    OperationKind.ADD_COLUMN,
                    RiskLevel.SAFE,
                    f"ADD COLUMN {column.to_sql()}",
                    f"Add column {new.name}.{column.name}",
                    warning,
                )
            )

        for column in old.columns:
            if column.name in new_columns:
                continue
            ops.append(
                _column_operation(
                    new,
                    column.name,
                    OperationKind.DROP_COLUMN,
                    RiskLevel.DESTRUCTIVE,
                    f"DROP COLUMN {quote_identifier(column.name)}",
                    f"Drop column {new.name}.{column.name}",
                    f"Dropping column {new.name}.{column.name} permanently deletes its data",
                    previous_definition=column.to_sql(),
                )
            )

        for column in new.columns:
            if column.name in old_columns:
                ops.extend(_compare_column(new, old_columns[column.name], column))

    if new.rls_enabled and not old.rls_enabled:
        ops.append(
            MigrationOperation(
                type=RiskLevel.SAFE,
                kind=OperationKind.ENABLE_RLS,
                category=ObjectCategory.TABLE,
                target=new.name,
                sql=f"ALTER TABLE {quote_identifier(new.name)} ENABLE ROW LEVEL SECURITY;",
                description=f"Enable row level security on {new.name}",
            )
        )
    elif old.rls_enabled and not new.rls_enabled:
        ops.append(
            MigrationOperation(
                type=RiskLevel.WARNING,
                kind=OperationKind.DISABLE_RLS,
                category=ObjectCategory.TABLE,
                target=new.name,
                sql=f"ALTER TABLE {quote_identifier(new.name)} DISABLE ROW LEVEL SECURITY;",
                description=f"Disable row level security on {new.name}",
                warning=f"Every row of {new.name} becomes visible to roles with table privileges",
            )
        )
    return ops


def _compare_enums(old: EnumSchema, new: EnumSchema) -> list[MigrationOperation]:
    ops: list[MigrationOperation] = []
    existing = set(old.values)
    # Values present once the statements emitted so far have run
    placed = set(existing)

    for index, value in enumerate(new.values):
        if value in existing:
            continue
        preceding = [v for v in new.values[:index] if v in placed]
        following = [v for v in new.values[index + 1 :] if v in existing]
        if not following:
            position = ""
        elif preceding:
            position = f" AFTER {_quote_literal(preceding[-1])}"
        else:
            position = f" BEFORE {_quote_literal(following[0])}"
        placed.add(value)
        ops.append(
            MigrationOperation(
                type=RiskLevel.SAFE,
                kind=OperationKind.ADD_ENUM_VALUE,
                category=ObjectCategory.TYPE,
                target=new.name,
                sql=f"ALTER TYPE {quote_identifier(new.name)} ADD VALUE {_quote_literal(value)}{position};",
                description=f"Add value {value} to enum {new.name}",
                metadata={"value": value},
            )
        )

    removed = [v for v in old.values if v not in set(new.values)]
    if removed:
        names = ", ".join(removed)
        ops.append(
            MigrationOperation(
                type=RiskLevel.DESTRUCTIVE,
                kind=OperationKind.REMOVE_ENUM_VALUES,
                category=ObjectCategory.TYPE,
                target=new.name,
                sql=(
                    f"-- MANUAL INTERVENTION REQUIRED: enum {new.name} values {names} cannot be dropped.\n"
                    f"-- Recreate type {new.name} without them and migrate dependent columns."
                ),
                description=f"Remove values {names} from enum {new.name}",
                warning=f"Enum values cannot be removed automatically; removed values: {names}",
                metadata={"removed_values": removed, "manual": True},
            )
        )
    return ops


def _recreate_operation(
    old: SchemaObject, new: SchemaObject, risk: RiskLevel, warning: str | None
) -> MigrationOperation:
    return MigrationOperation(
        type=risk,
        kind=OperationKind.RECREATE,
        category=new.category,
        target=new.identity,
        sql=f"{render_drop(old)}\n{render_create(new)}",
        description=f"Recreate {new.category.value} {new.identity}",
        warning=warning,
        metadata={"previous_sql": render_create(old), "drop_sql": render_drop(new)},
    )


def _replace_operation(old: SchemaObject, new: SchemaObject) -> MigrationOperation:
    return MigrationOperation(
        type=RiskLevel.SAFE,
        kind=OperationKind.REPLACE,
        category=new.category,
        target=new.identity,
        sql=render_create(new),
        description=f"Replace {new.category.value} {new.identity}",
        metadata={"previous_sql": render_create(old)},
    )


def _compare_policies(old: PolicySchema, new: PolicySchema) -> list[MigrationOperation]:
    fields = ("command", "roles", "using", "check", "permissive")
    if all(getattr(old, f) == getattr(new, f) for f in fields):
        return []
    warning = (
        f"Policy {new.name} is dropped and recreated; until the new policy exists "
        f"rows of {new.table} it governed are not visible through it"
    )
    return [_recreate_operation(old, new, RiskLevel.WARNING, warning)]


def _compare_functions(old: FunctionSchema, new: FunctionSchema) -> list[MigrationOperation]:
    fields = ("body", "return_type", "language", "security")
    if all(getattr(old, f) == getattr(new, f) for f in fields):
        return []
    return [_replace_operation(old, new)]


def _compare_triggers(old: TriggerSchema, new: TriggerSchema) -> list[MigrationOperation]:
    fields = ("timing", "events", "level", "function_name", "condition")
    if all(getattr(old, f) == getattr(new, f) for f in fields):
        return []
    warning = f"Trigger {new.name} is dropped and recreated; events on {new.table} in between do not fire it"
    return [_recreate_operation(old, new, RiskLevel.WARNING, warning)]


def _compare_views(old: ViewSchema, new: ViewSchema) -> list[MigrationOperation]:
    if old.query == new.query and old.materialized == new.materialized:
        return []
    if old.materialized or new.materialized:
        warning = f"Materialized view {new.name} is dropped and recreated; its data is recomputed"
        return [_recreate_operation(old, new, RiskLevel.WARNING, warning)]
    return [_replace_operation(old, new)]


def _compare_indexes(old: IndexSchema, new: IndexSchema) -> list[MigrationOperation]:
    fields = ("table", "columns", "is_unique", "method", "where")
    if all(getattr(old, f) == getattr(new, f) for f in fields):
        return []
    warning = f"Index {new.name} is dropped and rebuilt; queries on {new.table} may slow down meanwhile"
    return [_recreate_operation(old, new, RiskLevel.WARNING, warning)]


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


def calculate_diff(current: SchemaModel, target: SchemaModel) -> DiffResult:
    """Compare two schema models and return classified operations.

    Args:
        current: Schema as it exists now.
        target: Schema to migrate to.

    Returns:
        ``DiffResult`` with operations in advisory order (categories in
        precedence order; creates, then drops, then changes) and diff
        diagnostics.

    Examples:
        >>> from schema_planner.schema.models import ColumnSchema, TableSchema
        >>> users = TableSchema(name="users", columns=(ColumnSchema(name="id", data_type="uuid"),))
        >>> model = SchemaModel(tables={"users": users})
        >>> calculate_diff(model, model).operations
        ()

        >>> result = calculate_diff(SchemaModel(), model)
        >>> [(op.type.value, op.kind.value) for op in result.operations]
        [('SAFE', 'create')]
    """
    operations: list[MigrationOperation] = []
    diagnostics: list[Diagnostic] = []

    for category in SchemaModel.COLLECTIONS:
        old_objects = current.collection(category)
        new_objects = target.collection(category)

        for identity, obj in new_objects.items():
            if identity not in old_objects:
                if isinstance(obj, TableSchema) and not obj.columns:
                    diagnostics.append(
                        Diagnostic(
                            stage="diff",
                            message=f"Table {identity} has no columns; created as an empty table",
                            identity=identity,
                        )
                    )
                operations.append(_create_operation(obj))

        for identity, obj in old_objects.items():
            if identity not in new_objects:
                operations.append(_drop_operation(obj))

        for identity, new in new_objects.items():
            old = old_objects.get(identity)
            if old is None:
                continue
            if isinstance(new, TableSchema):
                operations.extend(_compare_tables(old, new, diagnostics))
            elif isinstance(new, EnumSchema):
                operations.extend(_compare_enums(old, new))
            elif isinstance(new, PolicySchema):
                operations.extend(_compare_policies(old, new))
            elif isinstance(new, FunctionSchema):
                operations.extend(_compare_functions(old, new))
            elif isinstance(new, TriggerSchema):
                operations.extend(_compare_triggers(old, new))
            elif isinstance(new, ViewSchema):
                operations.extend(_compare_views(old, new))
            elif isinstance(new, IndexSchema):
                operations.extend(_compare_indexes(old, new))

    logger.debug("Diff produced %d operations", len(operations))
    return DiffResult(operations=tuple(operations), diagnostics=tuple(diagnostics))
