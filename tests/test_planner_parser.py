"""Tests for the schema parser.

Covers statement splitting, classification, extraction per object kind,
ALTER TABLE folding, and the skip/diagnostic behavior for statements the
parser does not understand.
"""

import textwrap

import pytest

from schema_planner.migration.diff import calculate_diff
from schema_planner.schema.models import ObjectCategory
from schema_planner.schema.parser import (
    SchemaParseError,
    StatementKind,
    classify,
    normalize_type,
    parse_schema,
    split_statements,
)


# ------------------------------------------------------------------
# Statement splitting
# ------------------------------------------------------------------


class TestSplitStatements:
    """Verify top-level semicolon splitting."""

    def test_two_statements(self):
        """Statements are split on semicolons and stripped."""
        assert split_statements("CREATE TABLE a (id int); CREATE TABLE b (id int);") == [
            "CREATE TABLE a (id int)",
            "CREATE TABLE b (id int)",
        ]

    def test_semicolon_inside_string_literal(self):
        """A semicolon inside a string does not split."""
        statements = split_statements("INSERT INTO t VALUES ('a;b'); SELECT 1;")
        assert len(statements) == 2
        assert "'a;b'" in statements[0]

    def test_semicolons_inside_dollar_quoted_body(self):
        """Function bodies keep their internal semicolons."""
        sql = textwrap.dedent("""\
            CREATE FUNCTION f() RETURNS trigger LANGUAGE plpgsql AS $$
            BEGIN
              NEW.x = 1;
              RETURN NEW;
            END;
            $$;
            CREATE TABLE t (id int);
        """)
        statements = split_statements(sql)
        assert len(statements) == 2
        assert "RETURN NEW;" in statements[0]
        assert statements[1] == "CREATE TABLE t (id int)"

    def test_missing_final_semicolon(self):
        """The last statement does not need a terminator."""
        assert split_statements("CREATE TABLE a (id int)") == ["CREATE TABLE a (id int)"]

    def test_comments_only(self):
        """Text without statements splits to an empty list."""
        assert split_statements("-- nothing here\n") == []

    def test_unterminated_quote_raises(self):
        """A tokenizer failure raises SchemaParseError."""
        with pytest.raises(SchemaParseError):
            split_statements("CREATE TABLE t (name text DEFAULT 'oops);")


class TestClassify:
    """Verify statement tagging."""

    def test_create_table_keeps_ast(self):
        """CREATE TABLE is tagged from the AST, which is kept."""
        statement = classify("CREATE TABLE users (id uuid PRIMARY KEY)")
        assert statement.kind == StatementKind.CREATE_TABLE
        assert statement.ast is not None

    def test_policy_classified_from_text(self):
        """Statements sqlglot does not model are classified from text."""
        statement = classify("CREATE POLICY p ON posts USING (true)")
        assert statement.kind == StatementKind.CREATE_POLICY

    def test_grant_is_ignored(self):
        """GRANT carries no schema structure."""
        assert classify("GRANT SELECT ON users TO anon").kind == StatementKind.IGNORED


# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------


class TestParseTables:
    """Verify table extraction through the AST and heuristics."""

    def test_columns_types_and_nullability(self):
        """Columns keep order, lower-cased types and nullability."""
        result = parse_schema("CREATE TABLE users (id uuid PRIMARY KEY, email text NOT NULL, bio text);")
        users = result.schema_model.tables["users"]
        assert [c.name for c in users.columns] == ["id", "email", "bio"]
        assert [c.data_type for c in users.columns] == ["uuid", "text", "text"]
        assert [c.is_nullable for c in users.columns] == [False, False, True]
        assert "PRIMARY KEY" in users.columns[0].constraints
        assert result.statement_count == 1
        assert result.skipped_count == 0

    def test_public_schema_is_dropped(self):
        """public.users and users are the same table."""
        result = parse_schema("CREATE TABLE public.users (id uuid);")
        assert list(result.schema_model.tables) == ["users"]

    def test_inline_foreign_key(self):
        """Inline REFERENCES becomes a referenced table."""
        result = parse_schema(
            "CREATE TABLE users (id uuid PRIMARY KEY);"
            "CREATE TABLE posts (id uuid PRIMARY KEY, user_id uuid REFERENCES users(id) ON DELETE CASCADE);"
        )
        assert result.schema_model.tables["posts"].referenced_tables == ["users"]

    def test_table_level_primary_key_makes_columns_required(self):
        """Columns in a table-level PRIMARY KEY are NOT NULL."""
        result = parse_schema(
            "CREATE TABLE memberships (user_id uuid, org_id uuid, role text, PRIMARY KEY (user_id, org_id));"
        )
        table = result.schema_model.tables["memberships"]
        assert [c.is_nullable for c in table.columns] == [False, False, True]
        assert table.constraints[0].constraint_type == "PRIMARY KEY"

    def test_source_sql_is_recorded(self):
        """Each object remembers the statement it came from."""
        result = parse_schema("CREATE TABLE users (id uuid);")
        assert result.schema_model.tables["users"].source_sql == "CREATE TABLE users (id uuid)"

    def test_redefinition_later_wins(self):
        """A second definition replaces the first with an info diagnostic."""
        result = parse_schema("CREATE TABLE users (id uuid); CREATE TABLE users (id uuid, email text);")
        assert [c.name for c in result.schema_model.tables["users"].columns] == ["id", "email"]
        assert any("redefined" in d.message and d.severity == "info" for d in result.diagnostics)


class TestAlterTableFolding:
    """Verify ALTER TABLE is folded into the table it targets."""

    def test_add_column_and_enable_rls(self):
        """Added columns and RLS flags land on the table."""
        result = parse_schema(
            textwrap.dedent("""\
                CREATE TABLE posts (id uuid PRIMARY KEY);
                ALTER TABLE posts ADD COLUMN title text NOT NULL;
                ALTER TABLE posts ENABLE ROW LEVEL SECURITY;
            """)
        )
        posts = result.schema_model.tables["posts"]
        assert [c.name for c in posts.columns] == ["id", "title"]
        assert posts.column_map["title"].is_nullable is False
        assert posts.rls_enabled is True

    def test_add_foreign_key_constraint(self):
        """ADD CONSTRAINT ... FOREIGN KEY adds a table reference."""
        result = parse_schema(
            "CREATE TABLE users (id uuid); CREATE TABLE posts (id uuid, user_id uuid);"
            "ALTER TABLE posts ADD CONSTRAINT posts_user_fk FOREIGN KEY (user_id) REFERENCES users(id);"
        )
        assert result.schema_model.tables["posts"].referenced_tables == ["users"]

    def test_column_changes(self):
        """Defaults, nullability and types are updated in place."""
        result = parse_schema(
            "CREATE TABLE orders (id int, status text, total int);"
            "ALTER TABLE orders ALTER COLUMN status SET DEFAULT 'new', ALTER COLUMN status SET NOT NULL;"
            "ALTER TABLE orders ALTER COLUMN total TYPE bigint;"
        )
        orders = result.schema_model.tables["orders"]
        assert orders.column_map["status"].default == "'new'"
        assert orders.column_map["status"].is_nullable is False
        assert orders.column_map["total"].data_type == "bigint"

    def test_drop_column(self):
        """DROP COLUMN removes the column."""
        result = parse_schema("CREATE TABLE t (a int, b int); ALTER TABLE t DROP COLUMN b;")
        assert [c.name for c in result.schema_model.tables["t"].columns] == ["a"]

    def test_unknown_table_is_diagnosed(self):
        """ALTER TABLE on a table never created adds a warning and changes nothing."""
        result = parse_schema("ALTER TABLE ghosts ADD COLUMN id int;")
        assert result.schema_model.tables == {}
        assert any("unknown table ghosts" in d.message for d in result.diagnostics)


class TestColumnTypes:
    """Verify column types compare equal however they were written."""

    @pytest.mark.parametrize(
        ("written", "normalized"),
        [
            ("integer", "int"),
            ("INT", "int"),
            ("character varying(20)", "varchar(20)"),
            ("timestamp with time zone", "timestamptz"),
        ],
    )
    def test_normalize_type(self, written, normalized):
        """Type spellings collapse to one rendering."""
        assert normalize_type(written) == normalized

    def test_added_columns_match_inline_columns(self):
        """Columns added by ALTER TABLE diff equal to the same inline columns."""
        current = parse_schema(
            "CREATE TABLE t (id integer PRIMARY KEY, n integer, s character varying(20), ts timestamp with time zone);"
        )
        target = parse_schema(
            textwrap.dedent("""\
                CREATE TABLE t (id integer PRIMARY KEY);
                ALTER TABLE t ADD COLUMN n integer;
                ALTER TABLE t ADD COLUMN s character varying(20);
                ALTER TABLE t ADD COLUMN ts timestamp with time zone;
            """)
        )
        assert target.schema_model.tables["t"].column_map["s"].data_type == "varchar(20)"
        assert calculate_diff(current.schema_model, target.schema_model).operations == ()

    def test_altered_type_matches_inline_type(self):
        """ALTER COLUMN ... TYPE uses the same spelling as CREATE TABLE."""
        current = parse_schema("CREATE TABLE t (id int, n character varying(20));")
        target = parse_schema(
            "CREATE TABLE t (id int, n int); ALTER TABLE t ALTER COLUMN n TYPE character varying(20);"
        )
        assert calculate_diff(current.schema_model, target.schema_model).operations == ()


# ------------------------------------------------------------------
# Other object kinds
# ------------------------------------------------------------------


SCHEMA_SQL = textwrap.dedent("""\
    CREATE EXTENSION IF NOT EXISTS pgcrypto;
    CREATE SCHEMA IF NOT EXISTS app;
    CREATE TYPE status AS ENUM ('active', 'archived');
    CREATE TABLE users (id uuid PRIMARY KEY, email text NOT NULL);
    CREATE TABLE posts (
      id uuid PRIMARY KEY,
      user_id uuid NOT NULL REFERENCES users(id),
      title text NOT NULL,
      updated_at timestamptz
    );
    CREATE OR REPLACE FUNCTION touch_updated_at() RETURNS trigger LANGUAGE plpgsql AS $$
    BEGIN
      NEW.updated_at = now();
      RETURN NEW;
    END;
    $$;
    CREATE VIEW active_users AS SELECT id, email FROM users;
    CREATE POLICY owner_only ON posts FOR SELECT TO authenticated USING (user_id = auth.uid());
    CREATE TRIGGER posts_touch BEFORE UPDATE ON posts FOR EACH ROW EXECUTE FUNCTION touch_updated_at();
    CREATE INDEX posts_user_idx ON posts (user_id);
    GRANT SELECT ON users TO anon;
    COMMENT ON TABLE users IS 'people';
""")


class TestParseObjects:
    """Verify every object kind in one schema file."""

    @pytest.fixture
    def model(self):
        return parse_schema(SCHEMA_SQL).schema_model

    def test_counts(self, model):
        """Each statement lands in its collection."""
        assert model.count_objects() == {
            "extensions": 1,
            "schemas": 1,
            "enums": 1,
            "tables": 2,
            "functions": 1,
            "views": 1,
            "policies": 1,
            "triggers": 1,
            "indexes": 1,
        }

    def test_ignored_statements_are_not_skipped(self):
        """GRANT and COMMENT ON are ignored without being counted as skipped."""
        result = parse_schema(SCHEMA_SQL)
        assert result.statement_count == 12
        assert result.skipped_count == 0

    def test_enum(self, model):
        """Enum values keep order."""
        assert model.enums["status"].values == ("active", "archived")

    def test_function(self, model):
        """Functions are keyed by signature."""
        fn = model.functions["touch_updated_at()"]
        assert fn.language == "plpgsql"
        assert fn.return_type == "trigger"
        assert "RETURN NEW;" in fn.body

    def test_view(self, model):
        """Views record the relations they read."""
        assert model.views["active_users"].references == ("users",)

    def test_policy(self, model):
        """Policies are keyed by table and name."""
        policy = model.policies["posts.owner_only"]
        assert policy.command == "SELECT"
        assert policy.roles == ("authenticated",)
        assert policy.using == "user_id = auth.uid()"

    def test_trigger(self, model):
        """Triggers record table, events and function."""
        trigger = model.triggers["posts.posts_touch"]
        assert trigger.timing == "BEFORE"
        assert trigger.events == ("UPDATE",)
        assert trigger.level == "ROW"
        assert trigger.function_name == "touch_updated_at"

    def test_index(self, model):
        """Indexes record table and columns."""
        index = model.indexes["posts_user_idx"]
        assert index.table == "posts"
        assert index.columns == ("user_id",)

    def test_dependencies_resolve_to_parsed_objects(self, model):
        """The trigger depends on a table and a function that both exist."""
        refs = model.triggers["posts.posts_touch"].dependencies()
        assert {r.category for r in refs} == {ObjectCategory.TABLE, ObjectCategory.FUNCTION}
        assert "posts" in model.tables


class TestViewsWithCtes:
    """Verify CTE names are not reported as view references."""

    def test_cte_is_not_a_reference(self):
        """Only real relations are references."""
        result = parse_schema("CREATE VIEW recent AS WITH r AS (SELECT * FROM posts) SELECT * FROM r;")
        assert result.schema_model.views["recent"].references == ("posts",)


class TestSkipped:
    """Verify unclassifiable statements are skipped, not fatal."""

    def test_unknown_statement_is_skipped_with_fragment(self):
        """Unknown statements count as skipped and carry a fragment."""
        result = parse_schema("CREATE TABLE t (id int); FROBNICATE everything;")
        assert result.skipped_count == 1
        assert list(result.schema_model.tables) == ["t"]
        (diagnostic,) = [d for d in result.diagnostics if d.severity == "warning"]
        assert diagnostic.fragment == "FROBNICATE everything"

    def test_empty_input(self):
        """Empty text parses to an empty model."""
        result = parse_schema("")
        assert result.schema_model.object_count == 0
        assert result.statement_count == 0
