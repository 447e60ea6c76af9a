"""Migration analysis: overall risk, statistics and recommendations.

Read-only summary of an operation list for the reporting layer.  CASCADE
is detected by text pattern on the generated SQL.
"""

import re
from collections import Counter
from collections.abc import Sequence
from enum import Enum

from pydantic import BaseModel, Field

from schema_planner.migration.models import MigrationOperation, OperationKind, RiskLevel
from schema_planner.schema.models import ObjectCategory

_CASCADE = re.compile(r"\bCASCADE\b", re.IGNORECASE)
_CONCURRENTLY = re.compile(r"\bCREATE\s+(?:UNIQUE\s+)?INDEX\s+CONCURRENTLY\b", re.IGNORECASE)


class MigrationRisk(str, Enum):
    """Overall risk of a migration."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class MigrationAnalysis(BaseModel):
    """Summary of an operation list."""

    risk_level: MigrationRisk
    statistics: dict[str, int] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    requires_downtime: bool = False


def _executable_sql(op: MigrationOperation) -> str:
    return "\n".join(line for line in op.sql.splitlines() if not line.lstrip().startswith("--"))


def _rewrites_table(op: MigrationOperation) -> bool:
    if op.kind == OperationKind.ALTER_COLUMN_TYPE:
        return True
    if op.kind == OperationKind.ALTER_COLUMN:
        return any(p["kind"] == OperationKind.ALTER_COLUMN_TYPE.value for p in op.metadata.get("merged", []))
    return False


def _blocking_index_build(op: MigrationOperation) -> bool:
    return (
        op.category == ObjectCategory.INDEX
        and op.kind in (OperationKind.CREATE, OperationKind.RECREATE)
        and not _CONCURRENTLY.search(op.sql)
    )


def analyze_operations(operations: Sequence[MigrationOperation]) -> MigrationAnalysis:
    """Summarize risk, statistics and recommendations for *operations*.

    Risk levels:
        - CRITICAL: a DESTRUCTIVE whole-object drop, or any CASCADE
        - HIGH: any other DESTRUCTIVE operation
        - MEDIUM: any WARNING operation
        - LOW: only SAFE operations (or none)

    Examples:
        >>> analyze_operations([]).risk_level
        <MigrationRisk.LOW: 'LOW'>
    """
    risks = Counter(op.type for op in operations)
    categories = Counter(op.category.value for op in operations)
    statistics = {
        "total": len(operations),
        "safe": risks[RiskLevel.SAFE],
        "warning": risks[RiskLevel.WARNING],
        "destructive": risks[RiskLevel.DESTRUCTIVE],
        "requires_confirmation": sum(1 for op in operations if op.requires_confirmation),
        "manual": sum(1 for op in operations if op.is_manual),
        **{f"category_{name}": count for name, count in sorted(categories.items())},
    }

    warnings: list[str] = []
    cascading = [op for op in operations if _CASCADE.search(_executable_sql(op))]
    for op in cascading:
        warnings.append(f"{op.target}: CASCADE may drop dependent objects not listed in this migration")

    destructive_drops = [op for op in operations if op.type == RiskLevel.DESTRUCTIVE and op.is_teardown]
    if destructive_drops or cascading:
        risk_level = MigrationRisk.CRITICAL
    elif risks[RiskLevel.DESTRUCTIVE]:
        risk_level = MigrationRisk.HIGH
    elif risks[RiskLevel.WARNING]:
        risk_level = MigrationRisk.MEDIUM
    else:
        risk_level = MigrationRisk.LOW

    rewrites = [op for op in operations if _rewrites_table(op)]
    index_builds = [op for op in operations if _blocking_index_build(op)]
    not_null = [op for op in operations if op.kind == OperationKind.SET_NOT_NULL]

    recommendations: list[str] = []
    destructive_targets = sorted({op.target for op in operations if op.type == RiskLevel.DESTRUCTIVE})
    if destructive_targets:
        recommendations.append(f"Back up affected data before running: {', '.join(destructive_targets)}")
    if rewrites:
        recommendations.append("Test column type conversions against a copy of production data")
    if index_builds:
        names = ", ".join(op.target for op in index_builds)
        recommendations.append(f"Consider CREATE INDEX CONCURRENTLY to avoid blocking writes: {names}")
    if not_null:
        recommendations.append("Backfill NULL values before adding NOT NULL constraints")
    if any(op.category == ObjectCategory.POLICY and op.kind == OperationKind.RECREATE for op in operations):
        recommendations.append("Run policy drop-and-recreate in one transaction to close the visibility gap")
    if statistics["manual"]:
        recommendations.append("Resolve manual intervention steps before executing the plan")

    return MigrationAnalysis(
        risk_level=risk_level,
        statistics=statistics,
        recommendations=recommendations,
        warnings=warnings,
        requires_downtime=bool(rewrites or index_builds or not_null),
    )
