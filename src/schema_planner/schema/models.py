"""Pydantic models for the in-memory schema representation.

This module contains schema-domain models:
- Categories: ObjectCategory, CATEGORY_PRECEDENCE
- Object models: ExtensionSchema, NamespaceSchema, EnumSchema, ColumnSchema,
  ConstraintSchema, TableSchema, FunctionSchema, ViewSchema, PolicySchema,
  TriggerSchema, IndexSchema
- Containers: SchemaModel, ParseResult
- Diagnostics: Diagnostic

All models are frozen.  A ``SchemaModel`` is built once per parse and is
never mutated afterwards.
"""

from enum import Enum
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Categories
# ============================================================================


class ObjectCategory(str, Enum):
    """Category of a schema object, also used to name plan phases."""

    EXTENSION = "extension"
    SCHEMA = "schema"
    TYPE = "type"
    TABLE = "table"
    FUNCTION = "function"
    VIEW = "view"
    POLICY = "policy"
    TRIGGER = "trigger"
    INDEX = "index"
    DATA = "data"


CATEGORY_PRECEDENCE: tuple[ObjectCategory, ...] = (
    ObjectCategory.EXTENSION,
    ObjectCategory.SCHEMA,
    ObjectCategory.TYPE,
    ObjectCategory.TABLE,
    ObjectCategory.FUNCTION,
    ObjectCategory.VIEW,
    ObjectCategory.POLICY,
    ObjectCategory.TRIGGER,
    ObjectCategory.INDEX,
    ObjectCategory.DATA,
)


def category_rank(category: ObjectCategory) -> int:
    """Position of *category* in execution precedence (lower runs first)."""
    return CATEGORY_PRECEDENCE.index(category)


# ============================================================================
# Diagnostics
# ============================================================================


class Diagnostic(BaseModel):
    """A non-fatal finding recorded by a pipeline stage.

    Example:
        >>> d = Diagnostic(stage="parse", severity="warning", message="Skipped")
        >>> d.format()
        '[parse] warning: Skipped'
    """

    model_config = ConfigDict(frozen=True)

    stage: str
    severity: Literal["error", "warning", "info"] = "warning"
    message: str
    fragment: str | None = None
    identity: str | None = None

    def format(self) -> str:
        """Format as a single human-readable line."""
        line = f"[{self.stage}] {self.severity}: {self.message}"
        if self.fragment:
            line += f" -- {self.fragment[:80]}"
        return line


# ============================================================================
# Schema object models
# ============================================================================


class DependencyRef(BaseModel):
    """A reference from one schema object to another.

    ``category`` is ``None`` when the referenced relation may be either a
    table or a view.  Optional references that do not resolve are ignored;
    required ones produce a graph warning.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    category: ObjectCategory | None = None
    reason: str = ""
    required: bool = True


class SchemaObject(BaseModel):
    """Base for every identity-keyed schema object."""

    model_config = ConfigDict(frozen=True)

    category: ClassVar[ObjectCategory]

    name: str
    source_sql: str = Field(default="", repr=False)

    @property
    def identity(self) -> str:
        """Key that is unique within the object's category."""
        return self.name

    def dependencies(self) -> list[DependencyRef]:
        """Objects this object must be created after."""
        return []


class ExtensionSchema(SchemaObject):
    """Schema for a database extension."""

    category: ClassVar[ObjectCategory] = ObjectCategory.EXTENSION


class NamespaceSchema(SchemaObject):
    """Schema for a database schema (namespace)."""

    category: ClassVar[ObjectCategory] = ObjectCategory.SCHEMA


class EnumSchema(SchemaObject):
    """Schema for an enum type.

    Example:
        >>> e = EnumSchema(name="status", values=("active", "archived"))
        >>> e.values
        ('active', 'archived')
    """

    category: ClassVar[ObjectCategory] = ObjectCategory.TYPE

    values: tuple[str, ...] = ()


class ColumnSchema(BaseModel):
    """Schema for a table column.

    Example:
        >>> col = ColumnSchema(name="id", data_type="uuid")
        >>> col.is_nullable
        True
    """

    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    is_nullable: bool = True
    default: str | None = None
    constraints: tuple[str, ...] = ()  # PRIMARY KEY, UNIQUE, CHECK (...)
    references: str | None = None  # table referenced by an inline REFERENCES

    def to_sql(self) -> str:
        """Render the column as it appears inside CREATE/ADD COLUMN."""
        parts = [quote_identifier(self.name), self.data_type]
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        if not self.is_nullable and "PRIMARY KEY" not in self.constraints:
            parts.append("NOT NULL")
        parts.extend(self.constraints)
        if self.references:
            parts.append(f"REFERENCES {quote_identifier(self.references)}")
        return " ".join(parts)


class ConstraintSchema(BaseModel):
    """Schema for a table-level constraint."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    constraint_type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE, CHECK
    columns: tuple[str, ...] = ()
    references_table: str | None = None
    references_columns: tuple[str, ...] = ()
    on_delete: str | None = None
    definition: str = ""


class TableSchema(SchemaObject):
    """Schema for a table with ordered columns."""

    category: ClassVar[ObjectCategory] = ObjectCategory.TABLE

    columns: tuple[ColumnSchema, ...] = ()
    constraints: tuple[ConstraintSchema, ...] = ()
    rls_enabled: bool = False

    @property
    def column_map(self) -> dict[str, ColumnSchema]:
        """Columns keyed by name, in declaration order."""
        return {col.name: col for col in self.columns}

    @property
    def referenced_tables(self) -> list[str]:
        """Tables referenced through foreign keys, excluding self references."""
        seen: list[str] = []
        for col in self.columns:
            if col.references and col.references not in seen:
                seen.append(col.references)
        for constraint in self.constraints:
            ref = constraint.references_table
            if ref and ref not in seen:
                seen.append(ref)
        return [ref for ref in seen if ref != self.name]

    def dependencies(self) -> list[DependencyRef]:
        refs = [
            DependencyRef(name=ref, category=ObjectCategory.TABLE, reason="foreign key")
            for ref in self.referenced_tables
        ]
        for col in self.columns:
            # Only resolves when the column type is a user-defined enum
            refs.append(
                DependencyRef(
                    name=col.data_type.lower(),
                    category=ObjectCategory.TYPE,
                    reason=f"column {col.name} type",
                    required=False,
                )
            )
        return refs

    def to_sql(self) -> str:
        """Reconstruct a CREATE TABLE statement from the parsed structure."""
        elements = [col.to_sql() for col in self.columns]
        elements.extend(c.definition for c in self.constraints if c.definition)
        body = ",\n  ".join(elements)
        if not body:
            return f"CREATE TABLE {quote_identifier(self.name)} ()"
        return f"CREATE TABLE {quote_identifier(self.name)} (\n  {body}\n)"


class FunctionSchema(SchemaObject):
    """Schema for a function, keyed by name and parameter types."""

    category: ClassVar[ObjectCategory] = ObjectCategory.FUNCTION

    parameter_types: tuple[str, ...] = ()
    parameters: str = ""  # raw parameter list, used when re-emitting SQL
    return_type: str = ""
    language: str = "sql"
    body: str = ""
    security: str = "INVOKER"  # INVOKER or DEFINER

    @property
    def identity(self) -> str:
        return f"{self.name}({', '.join(self.parameter_types)})"

    def to_sql(self) -> str:
        """Reconstruct a CREATE OR REPLACE FUNCTION statement."""
        sql = (
            f"CREATE OR REPLACE FUNCTION {self.name}({self.parameters})\n"
            f"RETURNS {self.return_type or 'void'}\n"
            f"LANGUAGE {self.language}\n"
        )
        if self.security == "DEFINER":
            sql += "SECURITY DEFINER\n"
        return sql + f"AS $$\n{self.body}\n$$"


class ViewSchema(SchemaObject):
    """Schema for a (possibly materialized) view."""

    category: ClassVar[ObjectCategory] = ObjectCategory.VIEW

    query: str = ""
    references: tuple[str, ...] = ()
    materialized: bool = False

    def dependencies(self) -> list[DependencyRef]:
        return [
            DependencyRef(name=ref, reason="view query", required=False)
            for ref in self.references
            if ref != self.name
        ]

    def to_sql(self) -> str:
        """Reconstruct a CREATE VIEW statement."""
        if self.materialized:
            return f"CREATE MATERIALIZED VIEW {self.name} AS {self.query}"
        return f"CREATE OR REPLACE VIEW {self.name} AS {self.query}"


class PolicySchema(SchemaObject):
    """Schema for a row-level-security policy."""

    category: ClassVar[ObjectCategory] = ObjectCategory.POLICY

    table: str
    command: str = "ALL"  # ALL, SELECT, INSERT, UPDATE, DELETE
    roles: tuple[str, ...] = ("public",)
    permissive: bool = True
    using: str | None = None
    check: str | None = None

    @property
    def identity(self) -> str:
        return f"{self.table}.{self.name}"

    def dependencies(self) -> list[DependencyRef]:
        return [DependencyRef(name=self.table, category=ObjectCategory.TABLE, reason="policy target")]

    def to_sql(self) -> str:
        """Reconstruct a CREATE POLICY statement."""
        sql = (
            f"CREATE POLICY {_quote_if_needed(self.name)} ON {quote_identifier(self.table)}\n"
            f"  AS {'PERMISSIVE' if self.permissive else 'RESTRICTIVE'}\n"
            f"  FOR {self.command}\n"
            f"  TO {', '.join(self.roles)}"
        )
        if self.using:
            sql += f"\n  USING ({self.using})"
        if self.check:
            sql += f"\n  WITH CHECK ({self.check})"
        return sql

    def drop_sql(self) -> str:
        return f"DROP POLICY IF EXISTS {_quote_if_needed(self.name)} ON {quote_identifier(self.table)}"


class TriggerSchema(SchemaObject):
    """Schema for a trigger."""

    category: ClassVar[ObjectCategory] = ObjectCategory.TRIGGER

    table: str
    timing: str = "AFTER"  # BEFORE, AFTER, INSTEAD OF
    events: tuple[str, ...] = ()  # INSERT, UPDATE, DELETE, TRUNCATE
    level: str = "STATEMENT"  # ROW or STATEMENT
    function_name: str = ""
    condition: str | None = None

    @property
    def identity(self) -> str:
        return f"{self.table}.{self.name}"

    def dependencies(self) -> list[DependencyRef]:
        refs = [DependencyRef(name=self.table, category=ObjectCategory.TABLE, reason="trigger target")]
        if self.function_name:
            refs.append(
                DependencyRef(
                    name=self.function_name,
                    category=ObjectCategory.FUNCTION,
                    reason="trigger function",
                )
            )
        return refs

    def to_sql(self) -> str:
        """Reconstruct a CREATE TRIGGER statement."""
        sql = (
            f"CREATE TRIGGER {self.name}\n"
            f"  {self.timing} {' OR '.join(self.events)} ON {quote_identifier(self.table)}\n"
            f"  FOR EACH {self.level}\n"
        )
        if self.condition:
            sql += f"  WHEN ({self.condition})\n"
        return sql + f"  EXECUTE FUNCTION {self.function_name}()"

    def drop_sql(self) -> str:
        return f"DROP TRIGGER IF EXISTS {self.name} ON {quote_identifier(self.table)}"


class IndexSchema(SchemaObject):
    """Schema for an index."""

    category: ClassVar[ObjectCategory] = ObjectCategory.INDEX

    table: str
    columns: tuple[str, ...] = ()
    is_unique: bool = False
    method: str = "btree"
    where: str | None = None

    def dependencies(self) -> list[DependencyRef]:
        return [DependencyRef(name=self.table, category=ObjectCategory.TABLE, reason="indexed table")]

    def to_sql(self) -> str:
        """Reconstruct a CREATE INDEX statement."""
        unique = "UNIQUE " if self.is_unique else ""
        using = f" USING {self.method}" if self.method != "btree" else ""
        table = quote_identifier(self.table)
        sql = f"CREATE {unique}INDEX {self.name} ON {table}{using} ({', '.join(self.columns)})"
        if self.where:
            sql += f" WHERE {self.where}"
        return sql


def _quote_if_needed(name: str) -> str:
    if name.replace("_", "").isalnum() and name == name.lower():
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_identifier(name: str) -> str:
    """Render a normalized, possibly qualified name as SQL.

    Parts that are not plain lower-case identifiers were quoted in the
    source and are quoted again so their case survives.

    Examples:
        >>> quote_identifier("app.accounts")
        'app.accounts'
        >>> quote_identifier("Auth.UserId")
        '"Auth"."UserId"'
    """
    return ".".join(_quote_if_needed(part) for part in name.split("."))



# ============================================================================
# Containers
# ============================================================================


class SchemaModel(BaseModel):
    """Categorized in-memory schema.

    Each collection maps an object's identity to the object, in source order.

    Example:
        >>> model = SchemaModel()
        >>> model.object_count
        0
    """

    model_config = ConfigDict(frozen=True)

    extensions: dict[str, ExtensionSchema] = Field(default_factory=dict)
    schemas: dict[str, NamespaceSchema] = Field(default_factory=dict)
    enums: dict[str, EnumSchema] = Field(default_factory=dict)
    tables: dict[str, TableSchema] = Field(default_factory=dict)
    functions: dict[str, FunctionSchema] = Field(default_factory=dict)
    views: dict[str, ViewSchema] = Field(default_factory=dict)
    policies: dict[str, PolicySchema] = Field(default_factory=dict)
    triggers: dict[str, TriggerSchema] = Field(default_factory=dict)
    indexes: dict[str, IndexSchema] = Field(default_factory=dict)

    # Collection attribute per category, in precedence order
    COLLECTIONS: ClassVar[dict[ObjectCategory, str]] = {
        ObjectCategory.EXTENSION: "extensions",
        ObjectCategory.SCHEMA: "schemas",
        ObjectCategory.TYPE: "enums",
        ObjectCategory.TABLE: "tables",
        ObjectCategory.FUNCTION: "functions",
        ObjectCategory.VIEW: "views",
        ObjectCategory.POLICY: "policies",
        ObjectCategory.TRIGGER: "triggers",
        ObjectCategory.INDEX: "indexes",
    }

    def collection(self, category: ObjectCategory) -> dict[str, SchemaObject]:
        """Return the identity-keyed collection for *category*."""
        return getattr(self, self.COLLECTIONS[category])

    def all_objects(self) -> list[SchemaObject]:
        """Every object, grouped by category precedence."""
        objects: list[SchemaObject] = []
        for category in self.COLLECTIONS:
            objects.extend(self.collection(category).values())
        return objects

    @property
    def object_count(self) -> int:
        return sum(len(self.collection(c)) for c in self.COLLECTIONS)

    def count_objects(self) -> dict[str, int]:
        """Object counts keyed by collection name."""
        return {name: len(getattr(self, name)) for name in self.COLLECTIONS.values()}


class ParseResult(BaseModel):
    """Result of parsing one SQL text into a ``SchemaModel``."""

    model_config = ConfigDict(frozen=True)

    schema_model: SchemaModel = Field(default_factory=SchemaModel)
    diagnostics: tuple[Diagnostic, ...] = ()
    statement_count: int = 0
    skipped_count: int = 0
