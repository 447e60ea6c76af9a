"""Pydantic models for classified migration operations.

This module contains:
- RiskLevel: SAFE / WARNING / DESTRUCTIVE
- OperationKind: what an operation does to its target
- MigrationOperation: one classified, executable change
- DiffResult: operations plus diff diagnostics
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from schema_planner.schema.models import Diagnostic, ObjectCategory


class RiskLevel(str, Enum):
    """Risk class of a migration operation."""

    SAFE = "SAFE"
    WARNING = "WARNING"
    DESTRUCTIVE = "DESTRUCTIVE"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)


_RISK_ORDER = (RiskLevel.SAFE, RiskLevel.WARNING, RiskLevel.DESTRUCTIVE)


class OperationKind(str, Enum):
    """What an operation does to its target."""

    CREATE = "create"
    DROP = "drop"
    REPLACE = "replace"  # CREATE OR REPLACE in place
    RECREATE = "recreate"  # drop then create
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    ALTER_COLUMN_TYPE = "alter_column_type"
    SET_NOT_NULL = "set_not_null"
    DROP_NOT_NULL = "drop_not_null"
    SET_DEFAULT = "set_default"
    DROP_DEFAULT = "drop_default"
    ALTER_COLUMN = "alter_column"  # merged column alterations
    ADD_ENUM_VALUE = "add_enum_value"
    REMOVE_ENUM_VALUES = "remove_enum_values"
    ENABLE_RLS = "enable_rls"
    DISABLE_RLS = "disable_rls"


COLUMN_KINDS = frozenset(
    {
        OperationKind.ALTER_COLUMN_TYPE,
        OperationKind.SET_NOT_NULL,
        OperationKind.DROP_NOT_NULL,
        OperationKind.SET_DEFAULT,
        OperationKind.DROP_DEFAULT,
        OperationKind.ALTER_COLUMN,
    }
)


class MigrationOperation(BaseModel):
    """One classified change moving the current schema toward the target.

    Attributes:
        type: Risk class.
        kind: What the operation does.
        category: Category of the target object.
        target: Identity of the target object (the table for column changes).
        sql: Generated SQL; a comment for manual-intervention placeholders.
        description: Human-readable summary.
        warning: Advisory or risk text, if any.
        requires_confirmation: Must be confirmed before execution.
            Always True for DESTRUCTIVE operations.
        metadata: Structured extras: ``column``, previous definitions
            (``previous_sql``, ``previous_type``, ``previous_default``),
            ``merged`` parts.

    Example:
        >>> op = MigrationOperation(
        ...     type=RiskLevel.DESTRUCTIVE,
        ...     kind=OperationKind.DROP,
        ...     category=ObjectCategory.TABLE,
        ...     target="users",
        ...     sql="DROP TABLE users;",
        ...     description="Drop table users",
        ... )
        >>> op.requires_confirmation
        True
    """

    model_config = ConfigDict(frozen=True)

    type: RiskLevel
    kind: OperationKind
    category: ObjectCategory
    target: str
    sql: str
    description: str
    warning: str | None = None
    requires_confirmation: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _destructive_requires_confirmation(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("type") in (RiskLevel.DESTRUCTIVE, "DESTRUCTIVE"):
            data = {**data, "requires_confirmation": True}
        return data

    @property
    def column(self) -> str | None:
        """Column name for column-level operations."""
        return self.metadata.get("column")

    @property
    def node_key(self) -> str:
        """Key of the dependency-graph node this operation targets."""
        return f"{self.category.value}:{self.target}"

    @property
    def is_teardown(self) -> bool:
        """True for whole-object drops, which run before forward phases."""
        return self.kind == OperationKind.DROP

    @property
    def is_manual(self) -> bool:
        """True when the SQL is a manual-intervention placeholder."""
        return bool(self.metadata.get("manual"))


class DiffResult(BaseModel):
    """Operations produced by a diff, plus non-fatal diff diagnostics."""

    model_config = ConfigDict(frozen=True)

    operations: tuple[MigrationOperation, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.operations)

    def by_risk(self, risk: RiskLevel) -> list[MigrationOperation]:
        """Operations of the given risk class, in emission order."""
        return [op for op in self.operations if op.type == risk]
