"""Schema parsing and the in-memory schema model.

Provides the SQL parser (``parse_schema``), the best-effort text extraction
layer (``heuristics``) and the frozen schema models it produces.

Usage:
    from schema_planner.schema import parse_schema, SchemaModel
    from schema_planner.schema import TableSchema, ColumnSchema
"""

from schema_planner.schema.models import (
    CATEGORY_PRECEDENCE,
    ColumnSchema,
    ConstraintSchema,
    DependencyRef,
    Diagnostic,
    EnumSchema,
    ExtensionSchema,
    FunctionSchema,
    IndexSchema,
    NamespaceSchema,
    ObjectCategory,
    ParseResult,
    PolicySchema,
    SchemaModel,
    SchemaObject,
    TableSchema,
    TriggerSchema,
    ViewSchema,
)
from schema_planner.schema.parser import ParsedStatement, SchemaParseError, StatementKind, parse_schema

__all__ = [
    "parse_schema",
    "SchemaParseError",
    "ParsedStatement",
    "StatementKind",
    "SchemaModel",
    "ParseResult",
    "Diagnostic",
    "ObjectCategory",
    "CATEGORY_PRECEDENCE",
    "SchemaObject",
    "DependencyRef",
    "ExtensionSchema",
    "NamespaceSchema",
    "EnumSchema",
    "TableSchema",
    "ColumnSchema",
    "ConstraintSchema",
    "FunctionSchema",
    "ViewSchema",
    "PolicySchema",
    "TriggerSchema",
    "IndexSchema",
]
