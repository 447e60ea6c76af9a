"""Tests for the diff engine.

Schema models are built directly so each test controls exactly what
differs between current and target.
"""

from schema_planner.migration.diff import calculate_diff, render_create, render_drop
from schema_planner.migration.models import OperationKind, RiskLevel
from schema_planner.schema.models import (
    ColumnSchema,
    EnumSchema,
    FunctionSchema,
    IndexSchema,
    ObjectCategory,
    PolicySchema,
    SchemaModel,
    TableSchema,
    TriggerSchema,
    ViewSchema,
)


def _column(name: str, data_type: str = "text", **kwargs) -> ColumnSchema:
    return ColumnSchema(name=name, data_type=data_type, **kwargs)


def _users(*extra: ColumnSchema, **kwargs) -> TableSchema:
    return TableSchema(
        name="users",
        columns=(
            _column("id", "uuid", is_nullable=False, constraints=("PRIMARY KEY",)),
            _column("email", is_nullable=False),
            *extra,
        ),
        **kwargs,
    )


def _tables(*tables: TableSchema) -> SchemaModel:
    return SchemaModel(tables={t.name: t for t in tables})


def _only(result):
    assert len(result.operations) == 1
    return result.operations[0]


# ------------------------------------------------------------------
# Whole objects
# ------------------------------------------------------------------


class TestCreateAndDrop:
    """Verify objects present on only one side."""

    def test_new_table_is_safe_create(self):
        """A table only in target is created."""
        op = _only(calculate_diff(SchemaModel(), _tables(_users())))
        assert op.kind == OperationKind.CREATE
        assert op.type == RiskLevel.SAFE
        assert op.category == ObjectCategory.TABLE
        assert op.sql.startswith("CREATE TABLE users (")
        assert op.metadata["drop_sql"] == "DROP TABLE users;"

    def test_dropped_table_is_destructive(self):
        """A table only in current is a destructive drop needing confirmation."""
        op = _only(calculate_diff(_tables(_users()), SchemaModel()))
        assert op.kind == OperationKind.DROP
        assert op.type == RiskLevel.DESTRUCTIVE
        assert op.requires_confirmation is True
        assert op.sql == "DROP TABLE users;"
        assert "permanently deletes" in op.warning
        assert op.metadata["previous_sql"].startswith("CREATE TABLE users (")

    def test_dropped_function_is_warning(self):
        """Dropping a function is a WARNING about unknown dependents."""
        fn = FunctionSchema(name="now_utc", return_type="timestamptz", body="SELECT now()")
        op = _only(calculate_diff(SchemaModel(functions={fn.identity: fn}), SchemaModel()))
        assert op.type == RiskLevel.WARNING
        assert op.sql == "DROP FUNCTION IF EXISTS now_utc();"
        assert "unknown dependents" in op.warning

    def test_dropped_enum_is_destructive(self):
        """Dropping a type is DESTRUCTIVE."""
        enum = EnumSchema(name="status", values=("a",))
        op = _only(calculate_diff(SchemaModel(enums={"status": enum}), SchemaModel()))
        assert op.type == RiskLevel.DESTRUCTIVE
        assert op.sql == "DROP TYPE status;"

    def test_rls_enabled_table_create_includes_rls(self):
        """Creating an RLS-enabled table also enables RLS."""
        op = _only(calculate_diff(SchemaModel(), _tables(_users(rls_enabled=True))))
        assert op.sql.endswith("ALTER TABLE users ENABLE ROW LEVEL SECURITY;")

    def test_empty_new_table_is_diagnosed(self):
        """A new table with no columns is still created, with a diagnostic."""
        result = calculate_diff(SchemaModel(), _tables(TableSchema(name="empty")))
        assert len(result.operations) == 1
        assert any("no columns" in d.message for d in result.diagnostics)


class TestRendering:
    """Verify create/drop SQL rendering."""

    def test_function_source_gets_or_replace(self):
        """A function's original CREATE is made idempotent."""
        fn = FunctionSchema(name="f", source_sql="CREATE FUNCTION f() RETURNS int AS $$ SELECT 1 $$")
        assert render_create(fn) == "CREATE OR REPLACE FUNCTION f() RETURNS int AS $$ SELECT 1 $$;"

    def test_enum_without_source(self):
        """Enums without source text are rendered from their values."""
        enum = EnumSchema(name="mood", values=("sad", "it's ok"))
        assert render_create(enum) == "CREATE TYPE mood AS ENUM ('sad', 'it''s ok');"

    def test_drops(self):
        """Drops use RESTRICT semantics and never CASCADE."""
        policy = PolicySchema(name="p", table="posts")
        view = ViewSchema(name="stats", query="SELECT 1", materialized=True)
        index = IndexSchema(name="i", table="posts", columns=("a",))
        assert render_drop(policy) == "DROP POLICY IF EXISTS p ON posts;"
        assert render_drop(view) == "DROP MATERIALIZED VIEW IF EXISTS stats;"
        assert render_drop(index) == "DROP INDEX IF EXISTS i;"
        assert "CASCADE" not in render_drop(_users())


# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------


class TestTableChanges:
    """Verify column-level comparison."""

    def test_add_column_with_default(self):
        """Adding a defaulted NOT NULL column is SAFE without a warning."""
        current = _tables(_users())
        target = _tables(_users(_column("name", is_nullable=False, default="''")))
        op = _only(calculate_diff(current, target))
        assert op.kind == OperationKind.ADD_COLUMN
        assert op.type == RiskLevel.SAFE
        assert op.sql == "ALTER TABLE users ADD COLUMN name text DEFAULT '' NOT NULL;"
        assert op.warning is None
        assert op.column == "name"

    def test_add_required_column_without_default_warns(self):
        """A NOT NULL column without default is SAFE but carries a warning."""
        target = _tables(_users(_column("name", is_nullable=False)))
        op = _only(calculate_diff(_tables(_users()), target))
        assert op.type == RiskLevel.SAFE
        assert "without a default" in op.warning

    def test_drop_column_is_destructive(self):
        """Dropping a column needs confirmation and records its definition."""
        current = _tables(_users(_column("legacy")))
        op = _only(calculate_diff(current, _tables(_users())))
        assert op.kind == OperationKind.DROP_COLUMN
        assert op.type == RiskLevel.DESTRUCTIVE
        assert op.requires_confirmation is True
        assert op.sql == "ALTER TABLE users DROP COLUMN legacy;"
        assert op.metadata["previous_definition"] == "legacy text"

    def test_type_change(self):
        """Type changes are WARNING and remember the previous type."""
        current = _tables(_users(_column("age", "int")))
        target = _tables(_users(_column("age", "bigint")))
        op = _only(calculate_diff(current, target))
        assert op.kind == OperationKind.ALTER_COLUMN_TYPE
        assert op.type == RiskLevel.WARNING
        assert op.sql == "ALTER TABLE users ALTER COLUMN age TYPE bigint;"
        assert op.metadata["previous_type"] == "int"

    def test_nullability_changes(self):
        """SET NOT NULL is WARNING; DROP NOT NULL is SAFE."""
        nullable = _tables(_users(_column("bio")))
        required = _tables(_users(_column("bio", is_nullable=False)))
        tighten = _only(calculate_diff(nullable, required))
        loosen = _only(calculate_diff(required, nullable))
        assert (tighten.kind, tighten.type) == (OperationKind.SET_NOT_NULL, RiskLevel.WARNING)
        assert (loosen.kind, loosen.type) == (OperationKind.DROP_NOT_NULL, RiskLevel.SAFE)

    def test_default_changes(self):
        """Default changes are SAFE and remember the previous default."""
        plain = _tables(_users(_column("role")))
        defaulted = _tables(_users(_column("role", default="'member'")))
        set_default = _only(calculate_diff(plain, defaulted))
        drop_default = _only(calculate_diff(defaulted, plain))
        assert set_default.sql == "ALTER TABLE users ALTER COLUMN role SET DEFAULT 'member';"
        assert set_default.metadata["previous_default"] is None
        assert drop_default.sql == "ALTER TABLE users ALTER COLUMN role DROP DEFAULT;"
        assert drop_default.metadata["previous_default"] == "'member'"

    def test_row_level_security(self):
        """Enabling RLS is SAFE; disabling it is WARNING."""
        off = _tables(_users())
        on = _tables(_users(rls_enabled=True))
        enable = _only(calculate_diff(off, on))
        disable = _only(calculate_diff(on, off))
        assert (enable.kind, enable.type) == (OperationKind.ENABLE_RLS, RiskLevel.SAFE)
        assert (disable.kind, disable.type) == (OperationKind.DISABLE_RLS, RiskLevel.WARNING)

    def test_columnless_side_skips_comparison(self):
        """A table without columns on one side is not compared column by column."""
        result = calculate_diff(_tables(TableSchema(name="users")), _tables(_users()))
        assert result.operations == ()
        assert any("column comparison skipped" in d.message for d in result.diagnostics)


class TestQuotedIdentifiers:
    """Verify mixed-case names are quoted again when rendered."""

    def test_set_not_null_on_mixed_case_column(self):
        """A case-sensitive column keeps its quotes in ALTER COLUMN."""
        nullable = _tables(TableSchema(name="t", columns=(_column("UserId", "int"),)))
        required = _tables(TableSchema(name="t", columns=(_column("UserId", "int", is_nullable=False),)))
        op = _only(calculate_diff(nullable, required))
        assert op.sql == 'ALTER TABLE t ALTER COLUMN "UserId" SET NOT NULL;'
        assert op.column == "UserId"

    def test_mixed_case_table_create_and_drop_column(self):
        """Table and column names are quoted in CREATE TABLE and DROP COLUMN."""
        table = TableSchema(name="Accounts", columns=(_column("id", "int"), _column("LegacyCode")))
        create = _only(calculate_diff(SchemaModel(), _tables(table)))
        assert create.sql.startswith('CREATE TABLE "Accounts" (')
        assert '"LegacyCode" text' in create.sql

        trimmed = table.model_copy(update={"columns": table.columns[:1]})
        drop = _only(calculate_diff(_tables(table), _tables(trimmed)))
        assert drop.sql == 'ALTER TABLE "Accounts" DROP COLUMN "LegacyCode";'
        assert drop.description == "Drop column Accounts.LegacyCode"

    def test_lowercase_names_stay_bare(self):
        """Plain lowercase names are rendered without quotes."""
        op = _only(calculate_diff(_tables(_users()), _tables(_users(_column("nick_name")))))
        assert op.sql == "ALTER TABLE users ADD COLUMN nick_name text;"


# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


def _enums(*values: str) -> SchemaModel:
    return SchemaModel(enums={"status": EnumSchema(name="status", values=values)})


class TestEnumChanges:
    """Verify enum value additions and removals."""

    def test_append_value(self):
        """Values added at the end are appended without a position."""
        op = _only(calculate_diff(_enums("a", "c"), _enums("a", "c", "d")))
        assert op.kind == OperationKind.ADD_ENUM_VALUE
        assert op.sql == "ALTER TYPE status ADD VALUE 'd';"

    def test_insert_value_after_predecessor(self):
        """Values added in the middle are positioned after their predecessor."""
        op = _only(calculate_diff(_enums("a", "c"), _enums("a", "b", "c")))
        assert op.sql == "ALTER TYPE status ADD VALUE 'b' AFTER 'a';"

    def test_insert_value_first(self):
        """A value added first is positioned before the old first value."""
        op = _only(calculate_diff(_enums("a", "c"), _enums("z", "a", "c")))
        assert op.sql == "ALTER TYPE status ADD VALUE 'z' BEFORE 'a';"

    def test_prepend_two_values(self):
        """Prepended values anchor on existing values or ones already added."""
        result = calculate_diff(_enums("b"), _enums("x", "y", "b"))
        assert [op.sql for op in result.operations] == [
            "ALTER TYPE status ADD VALUE 'x' BEFORE 'b';",
            "ALTER TYPE status ADD VALUE 'y' AFTER 'x';",
        ]

    def test_insert_run_in_middle(self):
        """A run of new values chains AFTER the previously added value."""
        result = calculate_diff(_enums("a", "d"), _enums("a", "b", "c", "d"))
        assert [op.sql for op in result.operations] == [
            "ALTER TYPE status ADD VALUE 'b' AFTER 'a';",
            "ALTER TYPE status ADD VALUE 'c' AFTER 'b';",
        ]

    def test_removed_values_need_manual_intervention(self):
        """Removing values is one DESTRUCTIVE manual placeholder."""
        op = _only(calculate_diff(_enums("active", "archived"), _enums("active")))
        assert op.kind == OperationKind.REMOVE_ENUM_VALUES
        assert op.type == RiskLevel.DESTRUCTIVE
        assert op.requires_confirmation is True
        assert op.is_manual is True
        assert op.sql.startswith("-- MANUAL INTERVENTION REQUIRED")
        assert "archived" in op.description
        assert op.metadata["removed_values"] == ["archived"]


# ------------------------------------------------------------------
# Policies, functions, triggers, views, indexes
# ------------------------------------------------------------------


class TestDefinitionChanges:
    """Verify replace/recreate for definition-only objects."""

    def test_policy_change_recreates_with_visibility_warning(self):
        """Changing a policy drops and recreates it, with a WARNING."""
        old = PolicySchema(name="owner_only", table="posts", roles=("authenticated",), using="true")
        new = old.model_copy(update={"roles": ("anon", "authenticated")})
        op = _only(
            calculate_diff(
                SchemaModel(policies={old.identity: old}),
                SchemaModel(policies={new.identity: new}),
            )
        )
        assert op.kind == OperationKind.RECREATE
        assert op.type == RiskLevel.WARNING
        assert op.sql.startswith("DROP POLICY IF EXISTS owner_only ON posts;\nCREATE POLICY owner_only ON posts")
        assert "not visible" in op.warning

    def test_function_body_change_replaces(self):
        """A changed function body is a SAFE replace."""
        old = FunctionSchema(name="f", return_type="int", body="SELECT 1")
        new = old.model_copy(update={"body": "SELECT 2"})
        op = _only(
            calculate_diff(
                SchemaModel(functions={old.identity: old}),
                SchemaModel(functions={new.identity: new}),
            )
        )
        assert op.kind == OperationKind.REPLACE
        assert op.type == RiskLevel.SAFE
        assert op.sql.startswith("CREATE OR REPLACE FUNCTION f()")
        assert "SELECT 1" in op.metadata["previous_sql"]

    def test_function_overloads_are_distinct(self):
        """Same name with different signatures are different functions."""
        one = FunctionSchema(name="f", parameter_types=("int",))
        two = FunctionSchema(name="f", parameter_types=("text",))
        result = calculate_diff(
            SchemaModel(functions={one.identity: one}),
            SchemaModel(functions={one.identity: one, two.identity: two}),
        )
        op = _only(result)
        assert op.kind == OperationKind.CREATE
        assert op.target == "f(text)"

    def test_trigger_change_recreates(self):
        """A changed trigger is recreated with a WARNING."""
        old = TriggerSchema(name="t", table="posts", events=("UPDATE",), function_name="f")
        new = old.model_copy(update={"events": ("INSERT", "UPDATE")})
        op = _only(
            calculate_diff(SchemaModel(triggers={old.identity: old}), SchemaModel(triggers={new.identity: new}))
        )
        assert (op.kind, op.type) == (OperationKind.RECREATE, RiskLevel.WARNING)
        assert op.sql.startswith("DROP TRIGGER IF EXISTS t ON posts;")

    def test_view_query_change(self):
        """Plain views are replaced; materialized views are recreated."""
        old = ViewSchema(name="v", query="SELECT 1")
        new = old.model_copy(update={"query": "SELECT 2"})
        replace = _only(calculate_diff(SchemaModel(views={"v": old}), SchemaModel(views={"v": new})))
        assert (replace.kind, replace.type) == (OperationKind.REPLACE, RiskLevel.SAFE)

        old_mat = old.model_copy(update={"materialized": True})
        new_mat = new.model_copy(update={"materialized": True})
        recreate = _only(calculate_diff(SchemaModel(views={"v": old_mat}), SchemaModel(views={"v": new_mat})))
        assert (recreate.kind, recreate.type) == (OperationKind.RECREATE, RiskLevel.WARNING)

    def test_index_change_recreates(self):
        """A changed index is dropped and rebuilt."""
        old = IndexSchema(name="i", table="posts", columns=("a",))
        new = old.model_copy(update={"columns": ("a", "b")})
        op = _only(calculate_diff(SchemaModel(indexes={"i": old}), SchemaModel(indexes={"i": new})))
        assert op.kind == OperationKind.RECREATE
        assert op.sql == "DROP INDEX IF EXISTS i;\nCREATE INDEX i ON posts (a, b);"
        assert op.metadata["previous_sql"] == "CREATE INDEX i ON posts (a);"


# ------------------------------------------------------------------
# Properties
# ------------------------------------------------------------------


class TestDiffProperties:
    """Verify properties that hold for every diff."""

    def _rich_model(self) -> SchemaModel:
        posts = TableSchema(
            name="posts",
            columns=(_column("id", "uuid"), _column("user_id", "uuid", references="users")),
        )
        policy = PolicySchema(name="p", table="posts", using="true")
        index = IndexSchema(name="posts_user_idx", table="posts", columns=("user_id",))
        return SchemaModel(
            enums={"status": EnumSchema(name="status", values=("a", "b"))},
            tables={"users": _users(), "posts": posts},
            policies={policy.identity: policy},
            indexes={index.identity: index},
        )

    def test_identical_models_produce_no_operations(self):
        """diff(S, S) is empty."""
        model = self._rich_model()
        result = calculate_diff(model, model)
        assert result.operations == ()
        assert result.has_changes is False

    def test_create_and_drop_are_dual(self):
        """Every create one way is a drop the other way for the same target."""
        model = self._rich_model()
        forward = calculate_diff(SchemaModel(), model)
        backward = calculate_diff(model, SchemaModel())
        assert {(op.category, op.target) for op in forward.operations if op.kind == OperationKind.CREATE} == {
            (op.category, op.target) for op in backward.operations if op.kind == OperationKind.DROP
        }

    def test_destructive_always_requires_confirmation(self):
        """No DESTRUCTIVE operation skips confirmation."""
        model = self._rich_model()
        result = calculate_diff(model, _tables(TableSchema(name="users", columns=(_column("id", "uuid"),))))
        destructive = result.by_risk(RiskLevel.DESTRUCTIVE)
        assert destructive
        assert all(op.requires_confirmation for op in destructive)
