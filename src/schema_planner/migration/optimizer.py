"""Operation optimizer: deduplicate and merge without reordering.

Two rewrites, both in place:

- Exact duplicates (same target and same SQL) keep only their first
  occurrence.
- Consecutive alterations of the same table column collapse into one
  ``ALTER TABLE t ALTER COLUMN ..., ALTER COLUMN ...`` statement that keeps
  the highest risk and any confirmation requirement of its parts.

Relative order is never changed, so no dependency edge can be crossed.
"""

import logging
import re

from schema_planner.migration.models import (
    COLUMN_KINDS,
    MigrationOperation,
    OperationKind,
)
from schema_planner.schema.models import quote_identifier

logger = logging.getLogger(__name__)


def _parts(op: MigrationOperation) -> list[dict]:
    """Mergeable parts of *op*; a merged operation expands to its parts."""
    if op.kind == OperationKind.ALTER_COLUMN:
        return list(op.metadata.get("merged", []))
    table = re.escape(quote_identifier(op.target))
    clause = re.sub(rf"^ALTER\s+TABLE\s+{table}\s+", "", op.sql.strip().rstrip(";"))
    return [
        {
            "kind": op.kind.value,
            "clause": clause,
            "description": op.description,
            "metadata": dict(op.metadata),
        }
    ]


def _mergeable(previous: MigrationOperation, op: MigrationOperation) -> bool:
    return (
        previous.kind in COLUMN_KINDS
        and op.kind in COLUMN_KINDS
        and previous.target == op.target
        and previous.column is not None
        and previous.column == op.column
    )


def merge_operations(first: MigrationOperation, second: MigrationOperation) -> MigrationOperation:
    """Merge two alterations of the same column into one operation.

    Example:
        merged = merge_operations(set_not_null_op, set_default_op)
        merged.sql
        # "ALTER TABLE users ALTER COLUMN name SET NOT NULL, ALTER COLUMN name SET DEFAULT '';"
    """
    parts = _parts(first) + _parts(second)
    risk = max(first.type, second.type, key=lambda r: r.rank)
    warnings = [w for w in (first.warning, second.warning) if w]
    return MigrationOperation(
        type=risk,
        kind=OperationKind.ALTER_COLUMN,
        category=first.category,
        target=first.target,
        sql=f"ALTER TABLE {quote_identifier(first.target)} {', '.join(p['clause'] for p in parts)};",
        description="; ".join(p["description"] for p in parts),
        warning="; ".join(warnings) if warnings else None,
        requires_confirmation=first.requires_confirmation or second.requires_confirmation,
        metadata={"column": first.column, "merged": parts},
    )


def optimize(operations: list[MigrationOperation] | tuple[MigrationOperation, ...]) -> list[MigrationOperation]:
    """Remove duplicate operations and merge consecutive column alterations.

    Args:
        operations: Operations in diff emission order.

    Returns:
        New list; surviving operations keep their relative order.

    Examples:
        >>> optimize([])
        []
    """
    seen: set[tuple[str, str]] = set()
    result: list[MigrationOperation] = []
    for op in operations:
        identity = (op.node_key, op.sql)
        if identity in seen:
            logger.debug("Dropping duplicate operation on %s", op.target)
            continue
        seen.add(identity)

        if result and _mergeable(result[-1], op):
            result[-1] = merge_operations(result[-1], op)
            continue
        result.append(op)

    if len(result) != len(operations):
        logger.info("Optimized %d operations down to %d", len(operations), len(result))
    return result

