"""Tests for the schema and migration models.

Verifies identities, dependency references, SQL rendering helpers,
immutability, and the DESTRUCTIVE-implies-confirmation validator.
"""

import pytest
from pydantic import ValidationError

from schema_planner.migration.models import (
    DiffResult,
    MigrationOperation,
    OperationKind,
    RiskLevel,
)
from schema_planner.schema.models import (
    CATEGORY_PRECEDENCE,
    ColumnSchema,
    ConstraintSchema,
    Diagnostic,
    EnumSchema,
    FunctionSchema,
    IndexSchema,
    ObjectCategory,
    PolicySchema,
    SchemaModel,
    TableSchema,
    TriggerSchema,
    ViewSchema,
    category_rank,
)


def _users() -> TableSchema:
    return TableSchema(
        name="users",
        columns=(
            ColumnSchema(name="id", data_type="uuid", is_nullable=False, constraints=("PRIMARY KEY",)),
            ColumnSchema(name="email", data_type="text", is_nullable=False),
        ),
    )


# ------------------------------------------------------------------
# Categories
# ------------------------------------------------------------------


class TestCategories:
    """Verify category precedence used for phases and tie-breaking."""

    def test_precedence_order(self):
        """Categories run extensions first and data last."""
        assert [c.value for c in CATEGORY_PRECEDENCE] == [
            "extension",
            "schema",
            "type",
            "table",
            "function",
            "view",
            "policy",
            "trigger",
            "index",
            "data",
        ]

    def test_category_rank(self):
        """Tables rank before indexes."""
        assert category_rank(ObjectCategory.TABLE) < category_rank(ObjectCategory.INDEX)


# ------------------------------------------------------------------
# Schema objects
# ------------------------------------------------------------------


class TestSchemaObjects:
    """Verify identities and dependency references."""

    def test_function_identity_includes_parameter_types(self):
        """Function identity is name plus input parameter types."""
        fn = FunctionSchema(name="add_tax", parameter_types=("numeric", "text"))
        assert fn.identity == "add_tax(numeric, text)"

    def test_function_identity_without_parameters(self):
        """A function with no parameters keeps empty parentheses."""
        assert FunctionSchema(name="now_utc").identity == "now_utc()"

    def test_policy_and_trigger_identity_include_table(self):
        """Policies and triggers are keyed by table and name."""
        policy = PolicySchema(name="owner_only", table="posts")
        trigger = TriggerSchema(name="touch", table="posts", function_name="touch_updated_at")
        assert policy.identity == "posts.owner_only"
        assert trigger.identity == "posts.touch"

    def test_table_foreign_key_dependencies(self):
        """Inline and table-level foreign keys become required table references."""
        posts = TableSchema(
            name="posts",
            columns=(
                ColumnSchema(name="id", data_type="uuid"),
                ColumnSchema(name="user_id", data_type="uuid", references="users"),
                ColumnSchema(name="parent_id", data_type="uuid", references="posts"),
            ),
            constraints=(
                ConstraintSchema(
                    constraint_type="FOREIGN KEY",
                    columns=("org_id",),
                    references_table="orgs",
                ),
            ),
        )
        assert posts.referenced_tables == ["users", "orgs"]
        required = [ref for ref in posts.dependencies() if ref.required]
        assert [(r.name, r.category) for r in required] == [
            ("users", ObjectCategory.TABLE),
            ("orgs", ObjectCategory.TABLE),
        ]

    def test_table_column_types_are_optional_type_references(self):
        """Column types are optional references that only resolve to enums."""
        table = TableSchema(name="t", columns=(ColumnSchema(name="s", data_type="status"),))
        refs = table.dependencies()
        assert len(refs) == 1
        assert refs[0].category == ObjectCategory.TYPE
        assert refs[0].name == "status"
        assert refs[0].required is False

    def test_trigger_depends_on_table_and_function(self):
        """Triggers reference both their table and their function."""
        trigger = TriggerSchema(name="touch", table="posts", function_name="touch_updated_at")
        refs = {(r.name, r.category) for r in trigger.dependencies()}
        assert refs == {
            ("posts", ObjectCategory.TABLE),
            ("touch_updated_at", ObjectCategory.FUNCTION),
        }

    def test_view_references_are_optional_relations(self):
        """View references may be tables or views and are best effort."""
        view = ViewSchema(name="active_users", query="SELECT 1", references=("users",))
        (ref,) = view.dependencies()
        assert ref.category is None
        assert ref.required is False

    def test_models_are_frozen(self):
        """Schema objects cannot be mutated after construction."""
        table = _users()
        with pytest.raises(ValidationError):
            table.name = "accounts"


# ------------------------------------------------------------------
# SQL rendering
# ------------------------------------------------------------------


class TestRendering:
    """Verify SQL reconstructed from the parsed structure."""

    def test_column_to_sql(self):
        """Column SQL includes default and NOT NULL."""
        col = ColumnSchema(name="name", data_type="text", is_nullable=False, default="''")
        assert col.to_sql() == "name text DEFAULT '' NOT NULL"

    def test_primary_key_column_omits_not_null(self):
        """PRIMARY KEY implies NOT NULL, so it is not repeated."""
        col = ColumnSchema(name="id", data_type="uuid", is_nullable=False, constraints=("PRIMARY KEY",))
        assert col.to_sql() == "id uuid PRIMARY KEY"

    def test_table_to_sql(self):
        """CREATE TABLE lists columns in declaration order."""
        sql = _users().to_sql()
        assert sql.startswith("CREATE TABLE users (")
        assert sql.index("id uuid PRIMARY KEY") < sql.index("email text NOT NULL")

    def test_index_to_sql(self):
        """Index SQL includes UNIQUE, method and partial condition when set."""
        plain = IndexSchema(name="posts_user_idx", table="posts", columns=("user_id",))
        partial = IndexSchema(
            name="users_email_idx",
            table="users",
            columns=("email",),
            is_unique=True,
            method="hash",
            where="deleted_at IS NULL",
        )
        assert plain.to_sql() == "CREATE INDEX posts_user_idx ON posts (user_id)"
        assert partial.to_sql() == (
            "CREATE UNIQUE INDEX users_email_idx ON users USING hash (email) WHERE deleted_at IS NULL"
        )

    def test_policy_sql_quotes_mixed_case_name(self):
        """Policy names that are not plain identifiers are quoted."""
        policy = PolicySchema(name="Owners can read", table="posts", using="true")
        assert policy.drop_sql() == 'DROP POLICY IF EXISTS "Owners can read" ON posts'
        assert "USING (true)" in policy.to_sql()


# ------------------------------------------------------------------
# Containers and diagnostics
# ------------------------------------------------------------------


class TestSchemaModel:
    """Verify the categorized schema container."""

    def test_collection_by_category(self):
        """collection() returns the identity-keyed dict for a category."""
        model = SchemaModel(tables={"users": _users()})
        assert list(model.collection(ObjectCategory.TABLE)) == ["users"]
        assert model.collection(ObjectCategory.INDEX) == {}

    def test_all_objects_in_precedence_order(self):
        """all_objects() groups objects by category precedence."""
        idx = IndexSchema(name="users_email_idx", table="users", columns=("email",))
        enum = EnumSchema(name="status", values=("active",))
        model = SchemaModel(indexes={idx.identity: idx}, tables={"users": _users()}, enums={"status": enum})
        assert [o.category for o in model.all_objects()] == [
            ObjectCategory.TYPE,
            ObjectCategory.TABLE,
            ObjectCategory.INDEX,
        ]

    def test_counts(self):
        """object_count and count_objects agree."""
        model = SchemaModel(tables={"users": _users()})
        assert model.object_count == 1
        assert model.count_objects()["tables"] == 1
        assert model.count_objects()["views"] == 0

    def test_diagnostic_format(self):
        """Diagnostics format as one line with an optional fragment."""
        plain = Diagnostic(stage="parse", message="Skipped")
        with_fragment = Diagnostic(stage="parse", severity="info", message="Skipped", fragment="FOO BAR")
        assert plain.format() == "[parse] warning: Skipped"
        assert with_fragment.format() == "[parse] info: Skipped -- FOO BAR"


# ------------------------------------------------------------------
# Migration operations
# ------------------------------------------------------------------


class TestMigrationOperation:
    """Verify operation invariants."""

    def test_destructive_forces_confirmation(self):
        """DESTRUCTIVE operations always require confirmation."""
        op = MigrationOperation(
            type=RiskLevel.DESTRUCTIVE,
            kind=OperationKind.DROP,
            category=ObjectCategory.TABLE,
            target="users",
            sql="DROP TABLE users;",
            description="Drop table users",
            requires_confirmation=False,
        )
        assert op.requires_confirmation is True

    def test_safe_does_not_require_confirmation(self):
        """SAFE operations do not require confirmation by default."""
        op = MigrationOperation(
            type=RiskLevel.SAFE,
            kind=OperationKind.CREATE,
            category=ObjectCategory.TABLE,
            target="users",
            sql="CREATE TABLE users ();",
            description="Create table users",
        )
        assert op.requires_confirmation is False
        assert op.node_key == "table:users"
        assert op.column is None

    def test_risk_rank(self):
        """Risk levels are ordered SAFE < WARNING < DESTRUCTIVE."""
        assert RiskLevel.SAFE.rank < RiskLevel.WARNING.rank < RiskLevel.DESTRUCTIVE.rank

    def test_drop_is_teardown(self):
        """Only whole-object drops are teardown operations."""
        drop = MigrationOperation(
            type=RiskLevel.WARNING,
            kind=OperationKind.DROP,
            category=ObjectCategory.INDEX,
            target="users_email_idx",
            sql="DROP INDEX users_email_idx;",
            description="Drop index",
        )
        drop_column = MigrationOperation(
            type=RiskLevel.DESTRUCTIVE,
            kind=OperationKind.DROP_COLUMN,
            category=ObjectCategory.TABLE,
            target="users",
            sql="ALTER TABLE users DROP COLUMN email;",
            description="Drop column",
            metadata={"column": "email"},
        )
        assert drop.is_teardown is True
        assert drop_column.is_teardown is False
        assert drop_column.column == "email"

    def test_diff_result_by_risk(self):
        """DiffResult filters operations by risk class."""
        op = MigrationOperation(
            type=RiskLevel.WARNING,
            kind=OperationKind.SET_NOT_NULL,
            category=ObjectCategory.TABLE,
            target="users",
            sql="ALTER TABLE users ALTER COLUMN email SET NOT NULL;",
            description="Make users.email required",
            metadata={"column": "email"},
        )
        result = DiffResult(operations=(op,))
        assert result.has_changes is True
        assert result.by_risk(RiskLevel.WARNING) == [op]
        assert result.by_risk(RiskLevel.SAFE) == []
