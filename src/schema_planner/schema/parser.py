"""Schema parser: raw SQL text -> ``SchemaModel``.

Statements are split with the sqlglot tokenizer (so dollar-quoted function
bodies and string literals are respected) and parsed one at a time with
``sqlglot.parse_one``.  Each statement becomes a tagged ``ParsedStatement``
whose ``kind`` selects an extractor from ``_EXTRACTORS``.  Details that the
AST does not expose come from ``schema_planner.schema.heuristics``.

Parsing is best-effort reconstruction: a statement that cannot be classified
is skipped with a diagnostic and counted in ``ParseResult.skipped_count``.
Only a tokenizer failure (e.g. an unterminated quote) raises.

Usage:
    from schema_planner.schema.parser import parse_schema

    result = parse_schema(Path("schema.sql").read_text())
    for diagnostic in result.diagnostics:
        print(diagnostic.format())
    tables = result.schema_model.tables
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError
from sqlglot.tokens import TokenType

from schema_planner.schema import heuristics
from schema_planner.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    Diagnostic,
    EnumSchema,
    ExtensionSchema,
    FunctionSchema,
    IndexSchema,
    NamespaceSchema,
    ParseResult,
    PolicySchema,
    SchemaModel,
    SchemaObject,
    TableSchema,
    TriggerSchema,
    ViewSchema,
)

logger = logging.getLogger(__name__)


class SchemaParseError(Exception):
    """Raised when the SQL text cannot be tokenized at all."""


class StatementKind(str, Enum):
    """Tag of a parsed statement; selects the extractor."""

    CREATE_EXTENSION = "create_extension"
    CREATE_SCHEMA = "create_schema"
    CREATE_ENUM = "create_enum"
    CREATE_TABLE = "create_table"
    ALTER_TABLE = "alter_table"
    CREATE_FUNCTION = "create_function"
    CREATE_VIEW = "create_view"
    CREATE_POLICY = "create_policy"
    CREATE_TRIGGER = "create_trigger"
    CREATE_INDEX = "create_index"
    IGNORED = "ignored"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ParsedStatement:
    """One statement: its kind, original text and sqlglot AST (if any)."""

    kind: StatementKind
    text: str
    ast: exp.Expression | None = None


# Create kinds reported by sqlglot that map directly onto a statement kind.
# Everything else is classified from the statement text.
_AST_CREATE_KINDS: dict[str, StatementKind] = {
    "TABLE": StatementKind.CREATE_TABLE,
    "VIEW": StatementKind.CREATE_VIEW,
    "INDEX": StatementKind.CREATE_INDEX,
    "FUNCTION": StatementKind.CREATE_FUNCTION,
    "PROCEDURE": StatementKind.CREATE_FUNCTION,
    "SCHEMA": StatementKind.CREATE_SCHEMA,
}


# ------------------------------------------------------------------
# Statement splitting and classification
# ------------------------------------------------------------------


def split_statements(sql: str, dialect: str = "postgres") -> list[str]:
    """Split SQL text into statements on top-level semicolons.

    Raises:
        SchemaParseError: If the tokenizer rejects the text.

    Example:
        >>> split_statements("CREATE TABLE a (id int); CREATE TABLE b (id int);")
        ['CREATE TABLE a (id int)', 'CREATE TABLE b (id int)']
    """
    try:
        tokens = sqlglot.tokenize(sql, read=dialect)
    except TokenError as e:
        raise SchemaParseError(f"Could not tokenize SQL: {e}") from e

    statements: list[str] = []
    start: int | None = None
    end = 0
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            if start is not None:
                statements.append(sql[start : end + 1].strip())
            start = None
            continue
        if start is None:
            start = token.start
        end = max(end, token.end)
    if start is not None:
        statements.append(sql[start : end + 1].strip())
    return [s for s in statements if s]


def classify(text: str, dialect: str = "postgres") -> ParsedStatement:
    """Parse one statement and tag it with its kind."""
    ast: exp.Expression | None
    try:
        ast = sqlglot.parse_one(text, read=dialect)
    except ParseError as e:
        logger.debug("sqlglot could not parse statement, using text heuristics: %s", e)
        ast = None

    if isinstance(ast, exp.Create):
        kind = _AST_CREATE_KINDS.get(str(ast.args.get("kind") or "").upper())
        if kind is not None:
            return ParsedStatement(kind=kind, text=text, ast=ast)
    return ParsedStatement(kind=StatementKind(heuristics.classify_statement(text)), text=text, ast=ast)


# ------------------------------------------------------------------
# Builder
# ------------------------------------------------------------------


@dataclass
class _SchemaBuilder:
    """Mutable accumulator used while parsing; frozen into a SchemaModel."""

    dialect: str
    collections: dict[str, dict[str, SchemaObject]] = field(
        default_factory=lambda: {name: {} for name in SchemaModel.COLLECTIONS.values()}
    )
    diagnostics: list[Diagnostic] = field(default_factory=list)
    skipped: int = 0

    def add(self, obj: SchemaObject, statement: ParsedStatement) -> None:
        collection = self.collections[SchemaModel.COLLECTIONS[obj.category]]
        if obj.identity in collection:
            self.diagnostics.append(
                Diagnostic(
                    stage="parse",
                    severity="info",
                    message=f"{obj.category.value} {obj.identity} redefined; later definition wins",
                    identity=obj.identity,
                )
            )
        collection[obj.identity] = obj.model_copy(update={"source_sql": statement.text})

    def skip(self, statement: ParsedStatement, reason: str) -> None:
        self.skipped += 1
        self.diagnostics.append(
            Diagnostic(stage="parse", severity="warning", message=reason, fragment=statement.text)
        )

    def build(self) -> SchemaModel:
        return SchemaModel(**self.collections)


# ------------------------------------------------------------------
# AST helpers
# ------------------------------------------------------------------


def _table_name(table: exp.Expression | None) -> str:
    """Normalized, schema-qualified name of a sqlglot ``Table`` node."""
    if not isinstance(table, exp.Table):
        return ""
    parts = []
    for key in ("catalog", "db", "this"):
        part = table.args.get(key)
        if isinstance(part, exp.Identifier):
            parts.append(f'"{part.this}"' if part.quoted else part.this)
    return heuristics.normalize_name(".".join(parts))


def normalize_type(data_type: str, dialect: str = "postgres") -> str:
    """Render a column type the way sqlglot renders it inside CREATE TABLE.

    Types from the AST and from text heuristics both pass through here, so
    ``integer`` and ``int`` compare equal.  Text sqlglot cannot read is
    returned unchanged.

    Examples:
        >>> normalize_type("character varying(20)")
        'varchar(20)'
        >>> normalize_type("timestamp with time zone")
        'timestamptz'
    """
    try:
        rendered = exp.DataType.build(data_type, dialect=dialect, udt=True).sql(dialect=dialect).lower()
    except (ParseError, TokenError):
        return data_type
    return rendered or data_type


def _column_from_ast(column: exp.ColumnDef, dialect: str) -> dict[str, Any]:
    kind = column.args.get("kind")
    identifier = column.this
    details: dict[str, Any] = {
        "name": identifier.this if identifier.args.get("quoted") else identifier.this.lower(),
        "data_type": kind.sql(dialect=dialect).lower() if kind is not None else "unknown",
        "is_nullable": True,
        "default": None,
        "constraints": [],
        "references": None,
    }
    for constraint in column.args.get("constraints") or []:
        rule = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else constraint
        if isinstance(rule, exp.NotNullColumnConstraint):
            if not rule.args.get("allow_null"):
                details["is_nullable"] = False
        elif isinstance(rule, exp.PrimaryKeyColumnConstraint):
            details["is_nullable"] = False
            details["constraints"].append("PRIMARY KEY")
        elif isinstance(rule, exp.UniqueColumnConstraint):
            details["constraints"].append("UNIQUE")
        elif isinstance(rule, exp.DefaultColumnConstraint):
            details["default"] = rule.this.sql(dialect=dialect)
        elif isinstance(rule, exp.Reference):
            details["references"] = _table_name(rule.find(exp.Table)) or None
        elif isinstance(rule, exp.CheckColumnConstraint):
            details["constraints"].append(rule.sql(dialect=dialect))
    details["constraints"] = tuple(details["constraints"])
    return details


def _table_from_ast(create: exp.Create, dialect: str) -> dict[str, Any] | None:
    target = create.this
    if not isinstance(target, exp.Schema) or not isinstance(target.this, exp.Table):
        return None
    columns: list[dict[str, Any]] = []
    constraints: list[dict[str, Any]] = []
    for element in target.expressions:
        if isinstance(element, exp.ColumnDef):
            columns.append(_column_from_ast(element, dialect))
            continue
        constraint = heuristics.extract_table_constraint(element.sql(dialect=dialect))
        if constraint:
            constraints.append(constraint)
    return {"name": _table_name(target.this), "columns": columns, "constraints": constraints}


def _build_table(details: dict[str, Any], dialect: str) -> TableSchema:
    primary_key: set[str] = set()
    for constraint in details["constraints"]:
        if constraint["constraint_type"] == "PRIMARY KEY":
            primary_key.update(constraint["columns"])
    columns = []
    for column in details["columns"]:
        column = {**column, "data_type": normalize_type(column["data_type"], dialect)}
        if column["name"] in primary_key:
            column = {**column, "is_nullable": False}
        columns.append(ColumnSchema(**column))
    return TableSchema(
        name=details["name"],
        columns=tuple(columns),
        constraints=tuple(ConstraintSchema(**c) for c in details["constraints"]),
    )


# ------------------------------------------------------------------
# Extractors (one per statement kind)
# ------------------------------------------------------------------


def _extract_extension(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_extension(statement.text)
    if details is None:
        builder.skip(statement, "Unrecognized CREATE EXTENSION statement")
        return
    builder.add(ExtensionSchema(**details), statement)


def _extract_namespace(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_namespace(statement.text)
    if details is None:
        builder.skip(statement, "Unrecognized CREATE SCHEMA statement")
        return
    builder.add(NamespaceSchema(**details), statement)


def _extract_enum(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_enum(statement.text)
    if details is None:
        builder.skip(statement, "Unrecognized CREATE TYPE ... AS ENUM statement")
        return
    builder.add(EnumSchema(**details), statement)


def _extract_table(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = None
    if isinstance(statement.ast, exp.Create):
        details = _table_from_ast(statement.ast, builder.dialect)
    if details is None or not details["columns"]:
        details = heuristics.extract_table(statement.text)
    if details is None or not details["name"]:
        builder.skip(statement, "Could not extract table definition")
        return
    builder.add(_build_table(details, builder.dialect), statement)


def _extract_alter_table(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_alter_table(statement.text)
    if details is None:
        builder.skip(statement, "Could not extract ALTER TABLE actions")
        return
    tables = builder.collections["tables"]
    table = tables.get(details["table"])
    if not isinstance(table, TableSchema):
        builder.diagnostics.append(
            Diagnostic(
                stage="parse",
                message=f"ALTER TABLE targets unknown table {details['table']}",
                fragment=statement.text,
                identity=details["table"],
            )
        )
        return

    columns = list(table.columns)
    constraints = list(table.constraints)
    rls_enabled = table.rls_enabled

    def replace_column(name: str, **changes: Any) -> None:
        for index, col in enumerate(columns):
            if col.name == name:
                columns[index] = col.model_copy(update=changes)
                return
        builder.diagnostics.append(
            Diagnostic(
                stage="parse",
                message=f"ALTER TABLE {table.name} references unknown column {name}",
                fragment=statement.text,
                identity=table.name,
            )
        )

    for action in details["actions"]:
        kind = action["action"]
        if kind == "add_column":
            data_type = normalize_type(action["column"]["data_type"], builder.dialect)
            columns.append(ColumnSchema(**{**action["column"], "data_type": data_type}))
        elif kind == "drop_column":
            columns = [c for c in columns if c.name != action["column"]]
        elif kind == "set_default":
            replace_column(action["column"], default=action["default"])
        elif kind == "drop_default":
            replace_column(action["column"], default=None)
        elif kind == "set_not_null":
            replace_column(action["column"], is_nullable=False)
        elif kind == "drop_not_null":
            replace_column(action["column"], is_nullable=True)
        elif kind == "set_type":
            replace_column(action["column"], data_type=normalize_type(action["data_type"], builder.dialect))
        elif kind == "add_constraint":
            constraints.append(ConstraintSchema(**action["constraint"]))
        elif kind == "enable_rls":
            rls_enabled = True
        elif kind == "disable_rls":
            rls_enabled = False
        else:
            builder.diagnostics.append(
                Diagnostic(
                    stage="parse",
                    severity="info",
                    message=f"Ignored ALTER TABLE action on {table.name}",
                    fragment=action.get("text"),
                    identity=table.name,
                )
            )

    # Folded into the existing definition; keeps the original CREATE source
    tables[table.name] = table.model_copy(
        update={"columns": tuple(columns), "constraints": tuple(constraints), "rls_enabled": rls_enabled}
    )


def _extract_function(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_function(statement.text)
    if details is None:
        builder.skip(statement, "Could not extract function definition")
        return
    builder.add(FunctionSchema(**details), statement)


def _extract_view(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_view(statement.text) or {}
    create = statement.ast
    if isinstance(create, exp.Create) and isinstance(create.expression, exp.Expression):
        query = create.expression
        ctes = {cte.alias_or_name for cte in query.find_all(exp.CTE)}
        references = []
        for table in query.find_all(exp.Table):
            name = _table_name(table)
            if name and name not in ctes and name not in references:
                references.append(name)
        details["query"] = query.sql(dialect=builder.dialect)
        details["references"] = tuple(references)
        if not details.get("name"):
            target = create.this.this if isinstance(create.this, exp.Schema) else create.this
            details["name"] = _table_name(target)
    if not details.get("name"):
        builder.skip(statement, "Could not extract view definition")
        return
    builder.add(ViewSchema(**details), statement)


def _extract_policy(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_policy(statement.text)
    if details is None:
        builder.skip(statement, "Could not extract policy definition")
        return
    builder.add(PolicySchema(**details), statement)


def _extract_trigger(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_trigger(statement.text)
    if details is None:
        builder.skip(statement, "Could not extract trigger definition")
        return
    builder.add(TriggerSchema(**details), statement)


def _extract_index(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    details = heuristics.extract_index(statement.text)
    if details is None:
        builder.skip(statement, "Could not extract index definition")
        return
    builder.add(IndexSchema(**details), statement)


def _ignore(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    logger.debug("Ignoring statement without schema structure: %.60s", statement.text)


def _unknown(builder: _SchemaBuilder, statement: ParsedStatement) -> None:
    builder.skip(statement, "Unclassifiable statement skipped")


_EXTRACTORS: dict[StatementKind, Callable[[_SchemaBuilder, ParsedStatement], None]] = {
    StatementKind.CREATE_EXTENSION: _extract_extension,
    StatementKind.CREATE_SCHEMA: _extract_namespace,
    StatementKind.CREATE_ENUM: _extract_enum,
    StatementKind.CREATE_TABLE: _extract_table,
    StatementKind.ALTER_TABLE: _extract_alter_table,
    StatementKind.CREATE_FUNCTION: _extract_function,
    StatementKind.CREATE_VIEW: _extract_view,
    StatementKind.CREATE_POLICY: _extract_policy,
    StatementKind.CREATE_TRIGGER: _extract_trigger,
    StatementKind.CREATE_INDEX: _extract_index,
    StatementKind.IGNORED: _ignore,
    StatementKind.UNKNOWN: _unknown,
}


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


def parse_schema(sql_text: str, dialect: str = "postgres") -> ParseResult:
    """Parse SQL text into a categorized ``SchemaModel``.

    Args:
        sql_text: One or more DDL statements separated by semicolons.
        dialect: sqlglot dialect name used for tokenizing and parsing.

    Returns:
        ``ParseResult`` with the frozen ``schema_model``, parse
        ``diagnostics``, the number of statements seen and the number
        skipped.

    Raises:
        SchemaParseError: If the text cannot be tokenized.

    Example:
        >>> result = parse_schema("CREATE TABLE users (id uuid PRIMARY KEY);")
        >>> list(result.schema_model.tables)
        ['users']
    """
    builder = _SchemaBuilder(dialect=dialect)
    statements = split_statements(sql_text, dialect)
    for text in statements:
        statement = classify(text, dialect)
        logger.debug("Parsed %s statement", statement.kind.value)
        _EXTRACTORS[statement.kind](builder, statement)

    model = builder.build()
    logger.info(
        "Parsed %d statements into %d objects (%d skipped)",
        len(statements),
        model.object_count,
        builder.skipped,
    )
    return ParseResult(
        schema_model=model,
        diagnostics=tuple(builder.diagnostics),
        statement_count=len(statements),
        skipped_count=builder.skipped,
    )
