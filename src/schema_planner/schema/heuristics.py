"""Heuristic (regex/text) extraction of DDL details.

Used by the parser when the SQL AST does not expose a detail, or when a
statement falls back to an opaque command.  Every public function here is
pure, never raises, and returns ``None`` (or an empty structure) when it
cannot recognize its input.  Results are plain dicts so the layer can be
replaced without touching the schema models.

Usage:
    from schema_planner.schema.heuristics import classify_statement, extract_policy

    kind = classify_statement("CREATE POLICY p ON posts USING (true)")
    # 'create_policy'
    details = extract_policy("CREATE POLICY p ON posts USING (true)")
    # {'name': 'p', 'table': 'posts', 'using': 'true', ...}
"""

import re
from typing import Any

_NAME = r'(?:"[^"]+"|[\w$]+)(?:\.(?:"[^"]+"|[\w$]+))*'

_FLAGS = re.IGNORECASE | re.DOTALL


# ------------------------------------------------------------------
# Text helpers
# ------------------------------------------------------------------


def normalize_name(name: str | None) -> str:
    """Normalize a possibly qualified, possibly quoted identifier.

    Unquoted parts fold to lower case, quoted parts keep their case, and the
    implicit ``public`` schema is dropped.

    Examples:
        >>> normalize_name('public.Users')
        'users'
        >>> normalize_name('"Auth"."Users"')
        'Auth.Users'
    """
    if not name:
        return ""
    parts = []
    for match in re.finditer(r'"([^"]*)"|([^."\s]+)', name.strip()):
        quoted, bare = match.groups()
        parts.append(quoted if quoted is not None else bare.lower())
    if len(parts) > 1 and parts[0] == "public":
        parts = parts[1:]
    return ".".join(parts)


def collapse_whitespace(text: str | None) -> str:
    """Collapse runs of whitespace to single spaces and strip the ends."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def strip_comments(sql: str) -> str:
    """Remove ``--`` line comments and ``/* */`` block comments."""
    without_blocks = re.sub(r"/\*.*?\*/", " ", sql, flags=re.DOTALL)
    return re.sub(r"--[^\n]*", " ", without_blocks)


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split *text* on *separator* outside parentheses and quotes.

    Examples:
        >>> split_top_level("a numeric(10, 2), b text")
        ['a numeric(10, 2)', 'b text']
    """
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    current: list[str] = []
    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        elif char == separator and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


def balanced_group(text: str, start: int = 0) -> tuple[str, int] | None:
    """Return the contents of the first parenthesized group at/after *start*.

    Returns ``(inner_text, end_index)`` where ``end_index`` is the position
    just past the closing parenthesis, or ``None`` if unbalanced.

    Examples:
        >>> balanced_group("USING (a = (b))")
        ('a = (b)', 15)
    """
    open_at = text.find("(", start)
    if open_at < 0:
        return None
    depth = 0
    quote: str | None = None
    for index in range(open_at, len(text)):
        char = text[index]
        if quote:
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[open_at + 1 : index], index + 1
    return None


# ------------------------------------------------------------------
# Statement classification
# ------------------------------------------------------------------

_CLASSIFIERS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("create_extension", re.compile(r"^CREATE\s+EXTENSION\b", _FLAGS)),
    ("create_schema", re.compile(r"^CREATE\s+SCHEMA\b", _FLAGS)),
    ("create_enum", re.compile(rf"^CREATE\s+TYPE\s+{_NAME}\s+AS\s+ENUM\b", _FLAGS)),
    (
        "create_table",
        re.compile(r"^CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:TEMP(?:ORARY)?\s+|UNLOGGED\s+)?TABLE\b", _FLAGS),
    ),
    ("alter_table", re.compile(r"^ALTER\s+TABLE\b", _FLAGS)),
    ("create_function", re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:FUNCTION|PROCEDURE)\b", _FLAGS)),
    ("create_view", re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:MATERIALIZED\s+|RECURSIVE\s+)?VIEW\b", _FLAGS)),
    ("create_policy", re.compile(r"^CREATE\s+POLICY\b", _FLAGS)),
    ("create_trigger", re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\b", _FLAGS)),
    ("create_index", re.compile(r"^CREATE\s+(?:UNIQUE\s+)?INDEX\b", _FLAGS)),
    (
        "ignored",
        re.compile(
            r"^(?:COMMENT\s+ON|GRANT|REVOKE|INSERT|UPDATE|DELETE|SELECT|SET|RESET|BEGIN|COMMIT|"
            r"ROLLBACK|START\s+TRANSACTION|DO|ANALYZE|VACUUM|ALTER\s+(?:DEFAULT\s+PRIVILEGES|ROLE|"
            r"FUNCTION|SCHEMA|TYPE|EXTENSION|POLICY|VIEW)|CREATE\s+ROLE|NOTIFY|TRUNCATE)\b",
            _FLAGS,
        ),
    ),
)


def classify_statement(sql: str) -> str:
    """Classify a statement by its leading keywords.

    Returns one of the parser's statement kinds, ``'ignored'`` for statements
    that carry no schema structure, or ``'unknown'``.
    """
    text = strip_comments(sql).strip()
    for kind, pattern in _CLASSIFIERS:
        if pattern.match(text):
            return kind
    return "unknown"


# ------------------------------------------------------------------
# Tables and columns
# ------------------------------------------------------------------

_COLUMN_STOP = re.compile(
    r"\s+(?=(?:NOT\s+NULL|NULL|DEFAULT|PRIMARY\s+KEY|REFERENCES|UNIQUE|CHECK|CONSTRAINT|"
    r"GENERATED|COLLATE)\b)",
    re.IGNORECASE,
)
_DEFAULT_CLAUSE = re.compile(
    r"\bDEFAULT\s+(.+?)(?=\s+(?:NOT\s+NULL|NULL|PRIMARY\s+KEY|REFERENCES|UNIQUE|CHECK|"
    r"CONSTRAINT|GENERATED|COLLATE)\b|$)",
    _FLAGS,
)
_REFERENCES = re.compile(rf"\bREFERENCES\s+({_NAME})\s*(?:\(([^)]*)\))?", _FLAGS)
_ON_DELETE = re.compile(r"\bON\s+DELETE\s+(CASCADE|SET\s+NULL|SET\s+DEFAULT|RESTRICT|NO\s+ACTION)", _FLAGS)
_TABLE_CONSTRAINT_START = re.compile(r"^(?:CONSTRAINT|PRIMARY|FOREIGN|UNIQUE|CHECK|EXCLUDE|LIKE)\b", re.IGNORECASE)


def _split_names(text: str) -> list[str]:
    return [normalize_name(part) for part in split_top_level(text) if part.strip()]


def extract_column(definition: str) -> dict[str, Any] | None:
    """Parse a single column definition such as ``email text NOT NULL``."""
    text = collapse_whitespace(definition)
    match = re.match(rf"^({_NAME})\s+(.*)$", text, _FLAGS)
    if not match:
        return None
    name, rest = match.groups()
    type_and_tail = _COLUMN_STOP.split(rest, maxsplit=1)
    data_type = type_and_tail[0].strip()
    tail = type_and_tail[1] if len(type_and_tail) > 1 else ""
    upper_tail = tail.upper()

    constraints: list[str] = []
    if "PRIMARY KEY" in upper_tail:
        constraints.append("PRIMARY KEY")
    if re.search(r"\bUNIQUE\b", upper_tail):
        constraints.append("UNIQUE")
    check = re.search(r"\bCHECK\s*\(", tail, re.IGNORECASE)
    if check:
        group = balanced_group(tail, check.start())
        if group:
            constraints.append(f"CHECK ({group[0]})")

    default_match = _DEFAULT_CLAUSE.search(tail)
    reference = _REFERENCES.search(tail)
    return {
        "name": normalize_name(name),
        "data_type": data_type.lower(),
        "is_nullable": not (re.search(r"\bNOT\s+NULL\b", upper_tail) or "PRIMARY KEY" in upper_tail),
        "default": default_match.group(1).strip() if default_match else None,
        "constraints": tuple(constraints),
        "references": normalize_name(reference.group(1)) if reference else None,
    }


def extract_table_constraint(definition: str) -> dict[str, Any] | None:
    """Parse a table-level constraint (``CONSTRAINT x FOREIGN KEY ...``)."""
    text = collapse_whitespace(definition)
    name_match = re.match(rf"^CONSTRAINT\s+({_NAME})\s+(.*)$", text, _FLAGS)
    name = normalize_name(name_match.group(1)) if name_match else None
    body = name_match.group(2) if name_match else text
    upper = body.upper()

    if upper.startswith("PRIMARY KEY"):
        constraint_type = "PRIMARY KEY"
    elif upper.startswith("FOREIGN KEY"):
        constraint_type = "FOREIGN KEY"
    elif upper.startswith("UNIQUE"):
        constraint_type = "UNIQUE"
    elif upper.startswith("CHECK"):
        constraint_type = "CHECK"
    elif upper.startswith("EXCLUDE"):
        constraint_type = "EXCLUDE"
    else:
        return None

    columns: tuple[str, ...] = ()
    if constraint_type != "CHECK":
        group = balanced_group(body)
        if group:
            columns = tuple(_split_names(group[0]))

    result: dict[str, Any] = {
        "name": name,
        "constraint_type": constraint_type,
        "columns": columns,
        "references_table": None,
        "references_columns": (),
        "on_delete": None,
        "definition": text,
    }
    if constraint_type == "FOREIGN KEY":
        reference = _REFERENCES.search(body)
        if reference:
            result["references_table"] = normalize_name(reference.group(1))
            if reference.group(2):
                result["references_columns"] = tuple(_split_names(reference.group(2)))
        on_delete = _ON_DELETE.search(body)
        if on_delete:
            result["on_delete"] = collapse_whitespace(on_delete.group(1)).upper()
    return result


def extract_table(sql: str) -> dict[str, Any] | None:
    """Parse a CREATE TABLE statement into name, columns and constraints."""
    text = strip_comments(sql)
    match = re.search(
        rf"CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:TEMP(?:ORARY)?\s+|UNLOGGED\s+)?TABLE\s+"
        rf"(?:IF\s+NOT\s+EXISTS\s+)?({_NAME})",
        text,
        _FLAGS,
    )
    if not match:
        return None
    group = balanced_group(text, match.end())
    columns: list[dict[str, Any]] = []
    constraints: list[dict[str, Any]] = []
    if group:
        for element in split_top_level(group[0]):
            if _TABLE_CONSTRAINT_START.match(element.strip()):
                constraint = extract_table_constraint(element)
                if constraint:
                    constraints.append(constraint)
            else:
                column = extract_column(element)
                if column:
                    columns.append(column)
    return {"name": normalize_name(match.group(1)), "columns": columns, "constraints": constraints}


def extract_alter_table(sql: str) -> dict[str, Any] | None:
    """Parse an ALTER TABLE statement into a list of actions.

    Each action is a dict with an ``action`` key: ``add_column``,
    ``drop_column``, ``set_default``, ``drop_default``, ``set_not_null``,
    ``drop_not_null``, ``set_type``, ``add_constraint``, ``enable_rls``,
    ``disable_rls`` or ``unknown``.
    """
    text = collapse_whitespace(strip_comments(sql)).rstrip(";")
    match = re.match(
        rf"^ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?({_NAME})\s+(.*)$",
        text,
        _FLAGS,
    )
    if not match:
        return None
    actions = [_parse_alter_action(part) for part in split_top_level(match.group(2))]
    return {"table": normalize_name(match.group(1)), "actions": actions}


def _parse_alter_action(text: str) -> dict[str, Any]:
    upper = text.upper()
    if re.match(r"^(?:ENABLE|FORCE)\s+ROW\s+LEVEL\s+SECURITY", upper):
        return {"action": "enable_rls"}
    if re.match(r"^(?:DISABLE|NO\s+FORCE)\s+ROW\s+LEVEL\s+SECURITY", upper):
        return {"action": "disable_rls"}

    add_constraint = re.match(r"^ADD\s+(?=(?:CONSTRAINT|PRIMARY|FOREIGN|UNIQUE|CHECK|EXCLUDE)\b)(.*)$", text, _FLAGS)
    if add_constraint:
        constraint = extract_table_constraint(add_constraint.group(1))
        if constraint:
            return {"action": "add_constraint", "constraint": constraint}
        return {"action": "unknown", "text": text}

    add_column = re.match(r"^ADD\s+(?:COLUMN\s+)?(?:IF\s+NOT\s+EXISTS\s+)?(.*)$", text, _FLAGS)
    if add_column:
        column = extract_column(add_column.group(1))
        if column:
            return {"action": "add_column", "column": column}
        return {"action": "unknown", "text": text}

    drop_column = re.match(rf"^DROP\s+(?:COLUMN\s+)?(?:IF\s+EXISTS\s+)?({_NAME})", text, _FLAGS)
    if drop_column and not re.match(r"^DROP\s+CONSTRAINT\b", upper):
        return {"action": "drop_column", "column": normalize_name(drop_column.group(1))}

    alter_column = re.match(rf"^ALTER\s+(?:COLUMN\s+)?({_NAME})\s+(.*)$", text, _FLAGS)
    if alter_column:
        column = normalize_name(alter_column.group(1))
        rest = alter_column.group(2)
        rest_upper = rest.upper()
        if rest_upper.startswith("SET NOT NULL"):
            return {"action": "set_not_null", "column": column}
        if rest_upper.startswith("DROP NOT NULL"):
            return {"action": "drop_not_null", "column": column}
        if rest_upper.startswith("DROP DEFAULT"):
            return {"action": "drop_default", "column": column}
        default = re.match(r"^SET\s+DEFAULT\s+(.*)$", rest, _FLAGS)
        if default:
            return {"action": "set_default", "column": column, "default": default.group(1).strip()}
        new_type = re.match(r"^(?:SET\s+DATA\s+)?TYPE\s+(.*?)(?:\s+USING\s+.*)?$", rest, _FLAGS)
        if new_type:
            return {"action": "set_type", "column": column, "data_type": new_type.group(1).strip().lower()}
    return {"action": "unknown", "text": text}


# ------------------------------------------------------------------
# Functions
# ------------------------------------------------------------------

_MULTIWORD_TYPES = (
    "double precision",
    "character varying",
    "bit varying",
    "timestamp with time zone",
    "timestamp without time zone",
    "time with time zone",
    "time without time zone",
)
_PARAM_MODES = {"in", "out", "inout", "variadic"}
_FUNCTION_OPTION = (
    r"(?=\s+(?:LANGUAGE|AS|SECURITY|IMMUTABLE|STABLE|VOLATILE|STRICT|CALLED|PARALLEL|COST|ROWS|"
    r"SET|LEAKPROOF|NOT\s+LEAKPROOF|WINDOW|EXTERNAL|RETURNS\s+NULL|BEGIN|TRANSFORM)\b|\s*$)"
)


def _parameter_type(parameter: str) -> tuple[str, bool] | None:
    """Return ``(type, is_output)`` for one function parameter."""
    text = re.split(r"\s+DEFAULT\s+|\s*=\s*", collapse_whitespace(parameter), maxsplit=1, flags=re.IGNORECASE)[0]
    words = text.split(" ")
    if not words or not words[0]:
        return None
    mode = "in"
    if words[0].lower() in _PARAM_MODES:
        mode = words[0].lower()
        words = words[1:]
    remainder = " ".join(words).lower()
    if len(words) > 1 and "(" not in words[0] and not remainder.startswith(_MULTIWORD_TYPES):
        remainder = " ".join(words[1:]).lower()
    return remainder, mode == "out"


def extract_function(sql: str) -> dict[str, Any] | None:
    """Parse a CREATE FUNCTION statement.

    Captures name, parameter list, input parameter types (the signature),
    return type, language, body and security mode.
    """
    match = re.search(
        rf"CREATE\s+(?:OR\s+REPLACE\s+)?(?:FUNCTION|PROCEDURE)\s+({_NAME})\s*(?=\()",
        sql,
        _FLAGS,
    )
    if not match:
        return None
    params = balanced_group(sql, match.end())
    if params is None:
        return None
    parameters, after_params = params
    tail = sql[after_params:]

    body = ""
    body_match = re.search(r"\$([A-Za-z_]*)\$(.*?)\$\1\$", tail, re.DOTALL)
    if body_match:
        body = body_match.group(2).strip()
        options = tail[: body_match.start()] + " " + tail[body_match.end() :]
    else:
        quoted = re.search(r"\bAS\s+'((?:[^']|'')*)'", tail, _FLAGS)
        if quoted:
            body = quoted.group(1).replace("''", "'").strip()
            options = tail[: quoted.start()] + " " + tail[quoted.end() :]
        else:
            atomic = re.search(r"\bBEGIN\s+ATOMIC\b(.*)\bEND\b", tail, _FLAGS)
            body = atomic.group(1).strip() if atomic else ""
            options = tail[: atomic.start()] if atomic else tail
    options = strip_comments(options)

    returns = re.search(rf"\bRETURNS\s+(SETOF\s+\S+|TABLE\s*\(.*?\)|.+?){_FUNCTION_OPTION}", options, _FLAGS)
    language = re.search(r"\bLANGUAGE\s+'?(\w+)'?", options, _FLAGS)
    security = re.search(r"\bSECURITY\s+(DEFINER|INVOKER)\b", options, _FLAGS)

    parameter_types = []
    for parameter in split_top_level(parameters):
        parsed = _parameter_type(parameter)
        if parsed and not parsed[1]:
            parameter_types.append(parsed[0])

    return {
        "name": normalize_name(match.group(1)),
        "parameters": collapse_whitespace(parameters),
        "parameter_types": tuple(parameter_types),
        "return_type": collapse_whitespace(returns.group(1)).lower() if returns else "",
        "language": language.group(1).lower() if language else "sql",
        "body": body,
        "security": security.group(1).upper() if security else "INVOKER",
    }


# ------------------------------------------------------------------
# Triggers, policies, enums, indexes, views
# ------------------------------------------------------------------


def extract_trigger(sql: str) -> dict[str, Any] | None:
    """Parse a CREATE TRIGGER statement."""
    text = collapse_whitespace(strip_comments(sql)).rstrip(";")
    match = re.match(
        rf"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\s+({_NAME})\s+"
        rf"(BEFORE|AFTER|INSTEAD\s+OF)\s+(.+?)\s+ON\s+({_NAME})(.*?)"
        rf"EXECUTE\s+(?:FUNCTION|PROCEDURE)\s+({_NAME})\s*\(",
        text,
        _FLAGS,
    )
    if not match:
        return None
    name, timing, events_text, table, middle, function_name = match.groups()

    events = []
    for event in re.split(r"\s+OR\s+", events_text, flags=re.IGNORECASE):
        keyword = event.strip().split(" ")[0].upper()
        if keyword and keyword not in events:
            events.append(keyword)

    level = re.search(r"\bFOR\s+(?:EACH\s+)?(ROW|STATEMENT)\b", middle, re.IGNORECASE)
    condition = None
    when = re.search(r"\bWHEN\s*\(", middle, re.IGNORECASE)
    if when:
        group = balanced_group(middle, when.start())
        if group:
            condition = group[0].strip()

    return {
        "name": normalize_name(name),
        "table": normalize_name(table),
        "timing": collapse_whitespace(timing).upper(),
        "events": tuple(events),
        "level": level.group(1).upper() if level else "STATEMENT",
        "function_name": normalize_name(function_name),
        "condition": condition,
    }


def extract_policy(sql: str) -> dict[str, Any] | None:
    """Parse a CREATE POLICY statement."""
    text = collapse_whitespace(strip_comments(sql)).rstrip(";")
    match = re.match(rf'^CREATE\s+POLICY\s+("[^"]+"|\S+)\s+ON\s+({_NAME})(.*)$', text, _FLAGS)
    if not match:
        return None
    raw_name, table, rest = match.groups()
    name = raw_name[1:-1] if raw_name.startswith('"') else raw_name.lower()

    permissive = re.search(r"\bAS\s+(PERMISSIVE|RESTRICTIVE)\b", rest, re.IGNORECASE)
    command = re.search(r"\bFOR\s+(ALL|SELECT|INSERT|UPDATE|DELETE)\b", rest, re.IGNORECASE)
    roles = re.search(r"\bTO\s+(.+?)(?=\s+USING\b|\s+WITH\s+CHECK\b|$)", rest, re.IGNORECASE)

    using = None
    using_match = re.search(r"\bUSING\s*\(", rest, re.IGNORECASE)
    if using_match:
        group = balanced_group(rest, using_match.start())
        using = collapse_whitespace(group[0]) if group else None

    check = None
    check_match = re.search(r"\bWITH\s+CHECK\s*\(", rest, re.IGNORECASE)
    if check_match:
        group = balanced_group(rest, check_match.start())
        check = collapse_whitespace(group[0]) if group else None

    role_list = tuple(r.strip().lower() for r in roles.group(1).split(",")) if roles else ("public",)
    return {
        "name": name,
        "table": normalize_name(table),
        "permissive": not (permissive and permissive.group(1).upper() == "RESTRICTIVE"),
        "command": command.group(1).upper() if command else "ALL",
        "roles": tuple(sorted(role_list)),
        "using": using,
        "check": check,
    }


def extract_enum(sql: str) -> dict[str, Any] | None:
    """Parse ``CREATE TYPE name AS ENUM ('a', 'b')``."""
    match = re.search(rf"CREATE\s+TYPE\s+({_NAME})\s+AS\s+ENUM\s*", sql, _FLAGS)
    if not match:
        return None
    group = balanced_group(sql, match.end())
    values: list[str] = []
    if group:
        values = [v.replace("''", "'") for v in re.findall(r"'((?:[^']|'')*)'", group[0])]
    return {"name": normalize_name(match.group(1)), "values": tuple(values)}


def extract_index(sql: str) -> dict[str, Any] | None:
    """Parse a CREATE INDEX statement."""
    text = collapse_whitespace(strip_comments(sql)).rstrip(";")
    match = re.match(
        rf"^CREATE\s+(UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?({_NAME})?\s*"
        rf"ON\s+(?:ONLY\s+)?({_NAME})(?:\s+USING\s+(\w+))?\s*",
        text,
        _FLAGS,
    )
    if not match:
        return None
    unique, name, table, method = match.groups()
    group = balanced_group(text, match.end())
    columns: tuple[str, ...] = ()
    where = None
    if group:
        columns = tuple(collapse_whitespace(c).lower() for c in split_top_level(group[0]))
        where_match = re.search(r"\bWHERE\s+(.*)$", text[group[1] :], _FLAGS)
        if where_match:
            where = where_match.group(1).strip()
    table_name = normalize_name(table)
    if not name:
        # Postgres default naming for unnamed indexes
        leading = [re.sub(r"\W+", "_", c).strip("_") for c in columns[:1]]
        name = "_".join([table_name.split(".")[-1], *leading, "idx"])
    return {
        "name": normalize_name(name),
        "table": table_name,
        "columns": columns,
        "is_unique": bool(unique),
        "method": method.lower() if method else "btree",
        "where": where,
    }


def extract_view(sql: str) -> dict[str, Any] | None:
    """Parse a CREATE VIEW statement into name, query text and referenced relations."""
    text = strip_comments(sql).strip().rstrip(";")
    match = re.match(
        rf"^CREATE\s+(?:OR\s+REPLACE\s+)?(MATERIALIZED\s+)?(?:RECURSIVE\s+)?VIEW\s+"
        rf"(?:IF\s+NOT\s+EXISTS\s+)?({_NAME})(?:\s*\([^)]*\))?(?:\s+WITH\s*\([^)]*\))?\s+AS\s+(.*)$",
        text,
        _FLAGS,
    )
    if not match:
        return None
    materialized, name, query = match.groups()
    query = re.sub(r"\s+WITH\s+(?:NO\s+)?DATA\s*$", "", query, flags=re.IGNORECASE)
    return {
        "name": normalize_name(name),
        "query": collapse_whitespace(query),
        "references": tuple(extract_relation_references(query)),
        "materialized": bool(materialized),
    }


def extract_relation_references(query: str) -> list[str]:
    """Best-effort list of relations named after FROM/JOIN in *query*."""
    found: list[str] = []
    for match in re.finditer(rf"\b(?:FROM|JOIN)\s+({_NAME})", query, re.IGNORECASE):
        name = normalize_name(match.group(1))
        if name and name not in found and name.upper() not in ("LATERAL", "SELECT"):
            found.append(name)
    return found


def extract_extension(sql: str) -> dict[str, Any] | None:
    match = re.search(r'CREATE\s+EXTENSION\s+(?:IF\s+NOT\s+EXISTS\s+)?("[^"]+"|[\w-]+)', sql, _FLAGS)
    if not match:
        return None
    return {"name": normalize_name(match.group(1))}


def extract_namespace(sql: str) -> dict[str, Any] | None:
    match = re.search(rf"CREATE\s+SCHEMA\s+(?:IF\s+NOT\s+EXISTS\s+)?({_NAME})", sql, _FLAGS)
    if not match or match.group(1).upper() == "AUTHORIZATION":
        return None
    return {"name": normalize_name(match.group(1))}
