"""SQL dialects: turn statement descriptors into engine-specific SQL.

A dialect owns everything that differs between engines at the SQL level:
identifier quoting, placeholder style, the LIMIT/OFFSET syntax, which joins
and operators exist, and the value codec used to bind parameters.  The
renderer is pure: the same descriptor always yields byte-identical SQL and
the same binds, and nothing here touches a connection.

Manifesto:
    Application code builds one query and runs it on SQLite in tests and on
    MySQL or PostgreSQL in production.  Without a dialect layer every query
    would carry backend-specific syntax.

    - **One interface:** :class:`Dialect` protocol for all SQL generation
    - **Binds, never interpolation:** every literal becomes a placeholder
    - **Fail loudly:** a construct the engine lacks raises
      :class:`~keel.errors.UnsupportedOperationError`; nothing degrades
      silently into different SQL

Architecture::

    Select / Insert / Update / Delete
                  │
                  ▼  dialect.render()
    ┌──────────────┐ ┌──────────────┐ ┌──────────────┐
    │ SQLite       │ │ MySQL        │ │ PostgreSQL   │
    │ "x"  ?       │ │ `x`  %s      │ │ "x"  %s      │
    │ LIMIT -1     │ │ LIMIT 2^64-1 │ │ OFFSET alone │
    │ no RIGHT/FULL│ │ no FULL      │ │ ILIKE        │
    └──────────────┘ └──────────────┘ └──────────────┘
                  │
                  ▼
    BoundStatement(sql, binds)

Examples:
    >>> from keel.dialect import get_dialect
    >>> from keel.query import select, col, and_, or_
    >>> q = select("users", "id").where(
    ...     and_(col("age") >= 18, or_(col("city") == "NY", col("city") == "LA"))
    ... )
    >>> get_dialect("sqlite").render(q).sql
    'SELECT id FROM users WHERE age >= ? AND (city = ? OR city = ?)'

Guardrails:
    ❌ DON'T: format values into SQL strings
    ✅ DO: use ``raw("expr = ?", [value])`` when the builder falls short

Tags:
    dialect, sql, rendering, quoting, placeholders, keel

Doc-Types:
    - API Reference
    - Database Portability Guide
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from keel.errors import ConfigError, InvalidExpressionError, UnsupportedOperationError
from keel.query.expressions import (
    Between,
    Column,
    Comparison,
    ComparisonOp,
    Expression,
    InSet,
    IsNull,
    Literal,
    Logical,
    LogicalOp,
    Raw,
    split_raw,
)
from keel.query.statements import (
    BoundStatement,
    Delete,
    Insert,
    JoinKind,
    ParamStyle,
    Select,
    Update,
)
from keel.values import MySQLCodec, PostgreSQLCodec, SQLiteCodec, Value, ValueCodec

_PLAIN_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Words quoted on every engine.
COMMON_RESERVED = frozenset(
    """
    ADD ALL ALTER AND ANY AS ASC BETWEEN BY CASE CHECK COLUMN CONSTRAINT CREATE
    CROSS CURRENT_DATE CURRENT_TIME CURRENT_TIMESTAMP DEFAULT DELETE DESC
    DISTINCT DROP ELSE END EXCEPT EXISTS FALSE FOREIGN FROM FULL GRANT GROUP
    HAVING IN INDEX INNER INSERT INTERSECT INTO IS JOIN KEY LEFT LIKE LIMIT
    NATURAL NOT NULL OFFSET ON OR ORDER OUTER PRIMARY REFERENCES RIGHT SELECT
    SET TABLE THEN TO TRUE UNION UNIQUE UPDATE USING VALUES WHEN WHERE WITH
    """.split()
)


@runtime_checkable
class Dialect(Protocol):
    """Rendering contract for one engine."""

    @property
    def name(self) -> str:
        """Engine tag (``'sqlite'``, ``'mysql'``, ``'postgresql'``)."""
        ...

    @property
    def param_style(self) -> ParamStyle: ...

    @property
    def codec(self) -> ValueCodec: ...

    def quote_identifier(self, name: str) -> str: ...

    def render(self, statement: Select | Insert | Update | Delete) -> BoundStatement:
        """Render a descriptor to SQL plus ordered binds."""
        ...

    def render_raw(self, sql: str, binds: Iterable[Any] = ()) -> BoundStatement:
        """Render a hand-written statement that uses ``?`` markers."""
        ...

    def begin_statement(self) -> str: ...

    def commit_statement(self) -> str: ...

    def rollback_statement(self) -> str: ...


class _RenderContext:
    """Collects binds in the order their placeholders appear."""

    __slots__ = ("binds", "placeholder")

    def __init__(self, placeholder: str) -> None:
        self.binds: list[Value] = []
        self.placeholder = placeholder

    def bind(self, value: Value) -> str:
        self.binds.append(value)
        return self.placeholder


class SQLDialect:
    """
    Shared renderer; engines subclass it and adjust the class attributes.

    Attributes:
        name: Engine tag
        quote_char: Identifier quote character
        param_style: DB-API placeholder style
        reserved: Extra words that must be quoted on this engine
        unbounded_limit: LIMIT literal used when only OFFSET is requested,
            or ``None`` if the engine accepts OFFSET alone
        escape_percent: Double literal ``%`` in emitted SQL text
        supported_joins: Join kinds the engine accepts
        supports_ilike / supports_returning: Optional features
    """

    name = "generic"
    quote_char = '"'
    param_style = ParamStyle.QMARK
    reserved: frozenset[str] = frozenset()
    unbounded_limit: str | None = None
    escape_percent = False
    supported_joins = frozenset({JoinKind.INNER, JoinKind.LEFT})
    supports_ilike = False
    supports_returning = False
    codec: ValueCodec = ValueCodec()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"

    # -- Fragments ---------------------------------------------------------

    def placeholder(self) -> str:
        return "?" if self.param_style is ParamStyle.QMARK else "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder()] * count)

    def _text(self, text: str) -> str:
        return text.replace("%", "%%") if self.escape_percent else text

    def _quote_part(self, part: str) -> str:
        if part == "*":
            return part
        if _PLAIN_IDENTIFIER.match(part) and part.upper() not in COMMON_RESERVED | self.reserved:
            return part
        q = self.quote_char
        return self._text(q + part.replace(q, q + q) + q)

    def quote_identifier(self, name: str) -> str:
        """Quote a possibly dotted identifier, only where needed."""
        return ".".join(self._quote_part(part) for part in name.split("."))

    def begin_statement(self) -> str:
        return "BEGIN"

    def commit_statement(self) -> str:
        return "COMMIT"

    def rollback_statement(self) -> str:
        return "ROLLBACK"

    def _unsupported(self, construct: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(
            f"{construct} is not supported by the {self.name} dialect",
            dialect=self.name,
            construct=construct,
        )

    # -- Conditions --------------------------------------------------------

    def _operand(self, node: Literal | Column, ctx: _RenderContext) -> str:
        if isinstance(node, Literal):
            return ctx.bind(node.value)
        return self.quote_identifier(node.name)

    def _condition(self, node: Expression, ctx: _RenderContext, nested: bool = False) -> str:
        if isinstance(node, Comparison):
            if node.op is ComparisonOp.ILIKE and not self.supports_ilike:
                raise self._unsupported("ILIKE")
            left = self.quote_identifier(node.left.name)
            return f"{left} {node.op.value} {self._operand(node.right, ctx)}"

        if isinstance(node, Logical):
            if node.op is LogicalOp.NOT:
                return f"NOT ({self._condition(node.children[0], ctx)})"
            if len(node.children) == 1:
                return self._condition(node.children[0], ctx, nested)
            joined = f" {node.op.value} ".join(self._condition(c, ctx, nested=True) for c in node.children)
            return f"({joined})" if nested else joined

        if isinstance(node, Between):
            keyword = "NOT BETWEEN" if node.negated else "BETWEEN"
            col = self.quote_identifier(node.column.name)
            return f"{col} {keyword} {ctx.bind(node.low.value)} AND {ctx.bind(node.high.value)}"

        if isinstance(node, InSet):
            if not node.values:
                return "1 = 1" if node.negated else "1 = 0"
            keyword = "NOT IN" if node.negated else "IN"
            members = ", ".join(ctx.bind(v) for v in node.values)
            return f"{self.quote_identifier(node.column.name)} {keyword} ({members})"

        if isinstance(node, IsNull):
            keyword = "IS NOT NULL" if node.negated else "IS NULL"
            return f"{self.quote_identifier(node.column.name)} {keyword}"

        if isinstance(node, Raw):
            sql = self._raw(node.fragment, node.binds, ctx)
            return f"({sql})" if nested else sql

        raise InvalidExpressionError(f"Cannot render {type(node).__name__} as a condition")

    def _raw(self, fragment: str, binds: tuple[Value, ...], ctx: _RenderContext) -> str:
        pieces = split_raw(fragment)
        if len(pieces) - 1 != len(binds):
            raise InvalidExpressionError(
                f"Raw SQL has {len(pieces) - 1} bind marker(s) but {len(binds)} bind value(s)"
            )
        out = [self._text(pieces[0])]
        for value, piece in zip(binds, pieces[1:]):
            out.append(ctx.bind(value))
            out.append(self._text(piece))
        return "".join(out)

    # -- Statements --------------------------------------------------------

    def _limit_offset(self, select: Select, ctx: _RenderContext) -> list[str]:
        limit, offset = select.limit_value, select.offset_value
        parts: list[str] = []
        if limit is not None:
            parts.append(f"LIMIT {ctx.bind(Value.int64(limit))}")
        elif offset is not None and self.unbounded_limit is not None:
            parts.append(f"LIMIT {self.unbounded_limit}")
        if offset is not None:
            parts.append(f"OFFSET {ctx.bind(Value.int64(offset))}")
        return parts

    def _projection(self, select: Select) -> str:
        if select.is_count:
            if select.is_distinct:
                if not select.columns or len(select.columns) != 1:
                    raise InvalidExpressionError("count() with distinct() takes exactly one column")
                return f"COUNT(DISTINCT {self.quote_identifier(select.columns[0].name)})"
            return "COUNT(*)"
        if select.columns is None:
            return "*"
        return ", ".join(self.quote_identifier(c.name) for c in select.columns)

    def _render_select(self, select: Select, ctx: _RenderContext) -> str:
        head = "SELECT DISTINCT" if select.is_distinct and not select.is_count else "SELECT"
        parts = [head, self._projection(select), "FROM", self.quote_identifier(select.table)]
        for join in select.joins:
            if join.kind not in self.supported_joins:
                raise self._unsupported(join.kind.value)
            on = self._condition(join.on, ctx)
            parts.append(f"{join.kind.value} {self.quote_identifier(join.table)} ON {on}")
        if select.filter is not None:
            parts.append(f"WHERE {self._condition(select.filter, ctx)}")
        if select.group:
            parts.append("GROUP BY " + ", ".join(self.quote_identifier(c.name) for c in select.group))
            if select.having_filter is not None:
                parts.append(f"HAVING {self._condition(select.having_filter, ctx)}")
        if select.order:
            items = ", ".join(f"{self.quote_identifier(o.column.name)} {o.direction.value}" for o in select.order)
            parts.append(f"ORDER BY {items}")
        parts.extend(self._limit_offset(select, ctx))
        return " ".join(parts)

    def _render_insert(self, stmt: Insert, ctx: _RenderContext) -> str:
        columns = ", ".join(self.quote_identifier(c.name) for c in stmt.columns)
        rows = ", ".join("(" + ", ".join(ctx.bind(v) for v in row) + ")" for row in stmt.rows)
        sql = f"INSERT INTO {self.quote_identifier(stmt.table)} ({columns}) VALUES {rows}"
        if stmt.returning_columns:
            if not self.supports_returning:
                raise self._unsupported("RETURNING")
            sql += " RETURNING " + ", ".join(self.quote_identifier(c.name) for c in stmt.returning_columns)
        return sql

    def _render_update(self, stmt: Update, ctx: _RenderContext) -> str:
        assignments = ", ".join(f"{self.quote_identifier(c.name)} = {ctx.bind(v)}" for c, v in stmt.assignments)
        sql = f"UPDATE {self.quote_identifier(stmt.table)} SET {assignments}"
        if stmt.filter is not None:
            sql += f" WHERE {self._condition(stmt.filter, ctx)}"
        return sql

    def _render_delete(self, stmt: Delete, ctx: _RenderContext) -> str:
        sql = f"DELETE FROM {self.quote_identifier(stmt.table)}"
        if stmt.filter is not None:
            sql += f" WHERE {self._condition(stmt.filter, ctx)}"
        return sql

    def render(self, statement: Select | Insert | Update | Delete) -> BoundStatement:
        ctx = _RenderContext(self.placeholder())
        if isinstance(statement, Select):
            sql = self._render_select(statement, ctx)
        elif isinstance(statement, Insert):
            sql = self._render_insert(statement, ctx)
        elif isinstance(statement, Update):
            sql = self._render_update(statement, ctx)
        elif isinstance(statement, Delete):
            sql = self._render_delete(statement, ctx)
        else:
            raise InvalidExpressionError(f"Cannot render {type(statement).__name__}")
        return BoundStatement(sql, tuple(ctx.binds), self.param_style, dialect=self.name)

    def render_raw(self, sql: str, binds: Iterable[Any] = ()) -> BoundStatement:
        if not isinstance(sql, str) or not sql.strip():
            raise InvalidExpressionError("Raw SQL must be a non-empty string")
        ctx = _RenderContext(self.placeholder())
        text = self._raw(sql, tuple(Value.of(b) for b in binds), ctx)
        return BoundStatement(text, tuple(ctx.binds), self.param_style, dialect=self.name)


class SQLiteDialect(SQLDialect):
    """SQLite (stdlib ``sqlite3``)."""

    name = "sqlite"
    quote_char = '"'
    param_style = ParamStyle.QMARK
    reserved = frozenset({"ABORT", "AUTOINCREMENT", "GLOB", "PRAGMA", "REGEXP", "VACUUM"})
    unbounded_limit = "-1"
    codec = SQLiteCodec()


class MySQLDialect(SQLDialect):
    """MySQL / MariaDB (``mysql-connector-python``)."""

    name = "mysql"
    quote_char = "`"
    param_style = ParamStyle.FORMAT
    reserved = frozenset(
        {"CONDITION", "DIV", "INTERVAL", "KEYS", "LOCK", "MOD", "RANGE", "READ", "RLIKE", "SCHEMA", "WRITE"}
    )
    unbounded_limit = "18446744073709551615"
    # mysql-connector only substitutes ``%s`` tokens; a literal ``%`` passes through.
    escape_percent = False
    supported_joins = frozenset({JoinKind.INNER, JoinKind.LEFT, JoinKind.RIGHT})
    codec = MySQLCodec()

    def begin_statement(self) -> str:
        return "START TRANSACTION"


class PostgreSQLDialect(SQLDialect):
    """PostgreSQL (``psycopg2``)."""

    name = "postgresql"
    quote_char = '"'
    param_style = ParamStyle.FORMAT
    reserved = frozenset(
        {"ANALYSE", "ANALYZE", "ARRAY", "CAST", "COLLATE", "CURRENT_USER", "DO", "FETCH", "FOR", "ONLY",
         "RETURNING", "SOME", "SYMMETRIC", "USER", "WINDOW"}
    )
    unbounded_limit = None
    escape_percent = True
    supported_joins = frozenset(JoinKind)
    supports_ilike = True
    supports_returning = True
    codec = PostgreSQLCodec()


# =========================================================================
# Registry / Factory
# =========================================================================

_ALIASES = {
    "postgres": "postgresql",
    "pg": "postgresql",
    "mariadb": "mysql",
    "sqlite3": "sqlite",
}

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "mysql": MySQLDialect(),
    "postgresql": PostgreSQLDialect(),
}


def normalize_engine_tag(tag: Any) -> str:
    """Lower-case an engine tag (or enum) and resolve aliases."""
    key = tag.value if hasattr(tag, "value") else str(tag)
    key = key.lower()
    return _ALIASES.get(key, key)


def get_dialect(engine: Any) -> Dialect:
    """Get a dialect by engine tag.

    Args:
        engine: ``'sqlite'``, ``'mysql'``, ``'postgresql'`` or an alias
            (``'postgres'``, ``'mariadb'``), or a ``DatabaseType``.

    Raises:
        ConfigError: If the tag is not recognised.

    Example:
        >>> get_dialect("postgres").placeholders(2)
        '%s, %s'
    """
    key = normalize_engine_tag(engine)
    if key not in _DIALECTS:
        raise ConfigError(f"Unknown dialect '{engine}'. Supported: {sorted(_DIALECTS)}")
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (lower-cased key)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    # Protocol
    "Dialect",
    # Implementations
    "SQLDialect",
    "SQLiteDialect",
    "MySQLDialect",
    "PostgreSQLDialect",
    # Factory
    "get_dialect",
    "register_dialect",
    "normalize_engine_tag",
    "COMMON_RESERVED",
]
