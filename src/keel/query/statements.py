"""
Statement descriptors.

:class:`Select`, :class:`Insert`, :class:`Update` and :class:`Delete` describe
*what* to run; a dialect turns them into a :class:`BoundStatement` (SQL text
plus ordered bind values).  Descriptors are frozen: every builder method
returns a new descriptor and never touches the one it was called on, so a
base query can be shared and refined freely.

Example::

    from keel.query import select, col

    base = select("users", "id", "name").where(col("active") == True)
    page = base.order_by("name").limit(20).offset(40)
    # ``base`` is unchanged

Repeated ``where()`` calls are recorded as an explicit ``AND`` of the
previous filter and the new one; the tree keeps that grouping.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from keel.errors import InvalidExpressionError
from keel.query.expressions import QUOTE_CHARS, Column, Expression, as_condition, and_, column
from keel.values import Value


class Direction(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class JoinKind(str, Enum):
    INNER = "INNER JOIN"
    LEFT = "LEFT JOIN"
    RIGHT = "RIGHT JOIN"
    FULL = "FULL JOIN"


class ParamStyle(str, Enum):
    """DB-API placeholder styles keel renders."""

    QMARK = "qmark"  # ?
    FORMAT = "format"  # %s


@dataclass(frozen=True)
class Join:
    kind: JoinKind
    table: str
    on: Expression


@dataclass(frozen=True)
class OrderItem:
    column: Column
    direction: Direction = Direction.ASC


def _table_name(table: Any) -> str:
    if not isinstance(table, str) or not table.strip():
        raise InvalidExpressionError("Table name must be a non-empty string")
    return table


def _count(n: Any, what: str) -> int:
    if not isinstance(n, int) or isinstance(n, bool) or n < 0:
        raise InvalidExpressionError(f"{what} must be a non-negative integer, got {n!r}")
    return n


def _direction(direction: Any) -> Direction:
    if isinstance(direction, Direction):
        return direction
    try:
        return Direction(str(direction).upper())
    except ValueError:
        raise InvalidExpressionError(f"Sort direction must be ASC or DESC, got {direction!r}") from None


def _and_where(current: Expression | None, new: Any) -> Expression:
    new = as_condition(new)
    return new if current is None else and_(current, new)


# =============================================================================
# SELECT
# =============================================================================


@dataclass(frozen=True)
class Select:
    """
    A SELECT query descriptor.

    Attributes:
        table: Target table
        columns: Projected columns in order; ``None`` projects all (``*``)
        filter: WHERE condition root
        order: ORDER BY items in order
        group: GROUP BY columns
        having_filter: HAVING condition (requires ``group``)
        limit_value / offset_value: Row window
        joins: Joins in declaration order
        is_distinct: SELECT DISTINCT
        is_count: Project ``COUNT(*)`` instead of columns
    """

    table: str
    columns: tuple[Column, ...] | None = None
    filter: Expression | None = None
    order: tuple[OrderItem, ...] = ()
    group: tuple[Column, ...] = ()
    having_filter: Expression | None = None
    limit_value: int | None = None
    offset_value: int | None = None
    joins: tuple[Join, ...] = ()
    is_distinct: bool = False
    is_count: bool = False

    def __post_init__(self) -> None:
        _table_name(self.table)
        if self.columns is not None and not self.columns:
            raise InvalidExpressionError("Projection must name at least one column; omit it to select all")
        if self.limit_value is not None:
            _count(self.limit_value, "limit")
        if self.offset_value is not None:
            _count(self.offset_value, "offset")
        if self.having_filter is not None and not self.group:
            raise InvalidExpressionError("having() requires group_by()")

    def select(self, *names: Any) -> Select:
        """Replace the projection; no names means all columns."""
        return replace(self, columns=tuple(column(n) for n in names) or None)

    def where(self, condition: Any) -> Select:
        return replace(self, filter=_and_where(self.filter, condition))

    def order_by(self, name: Any, direction: Any = Direction.ASC) -> Select:
        if isinstance(name, tuple):
            name, direction = name
        item = OrderItem(column(name), _direction(direction))
        return replace(self, order=self.order + (item,))

    def group_by(self, *names: Any) -> Select:
        if not names:
            raise InvalidExpressionError("group_by() needs at least one column")
        return replace(self, group=self.group + tuple(column(n) for n in names))

    def having(self, condition: Any) -> Select:
        if not self.group:
            raise InvalidExpressionError("having() requires group_by()")
        return replace(self, having_filter=_and_where(self.having_filter, condition))

    def limit(self, n: int) -> Select:
        return replace(self, limit_value=_count(n, "limit"))

    def offset(self, n: int) -> Select:
        return replace(self, offset_value=_count(n, "offset"))

    def distinct(self) -> Select:
        return replace(self, is_distinct=True)

    def count(self) -> Select:
        """Project ``COUNT(*)``; ordering and the row window are dropped."""
        return replace(self, is_count=True, order=(), limit_value=None, offset_value=None)

    def _join(self, kind: JoinKind, table: str, on: Any) -> Select:
        return replace(self, joins=self.joins + (Join(kind, _table_name(table), as_condition(on)),))

    def join(self, table: str, on: Any) -> Select:
        return self._join(JoinKind.INNER, table, on)

    def left_join(self, table: str, on: Any) -> Select:
        return self._join(JoinKind.LEFT, table, on)

    def right_join(self, table: str, on: Any) -> Select:
        return self._join(JoinKind.RIGHT, table, on)

    def full_join(self, table: str, on: Any) -> Select:
        return self._join(JoinKind.FULL, table, on)


def select(table: str, *names: Any) -> Select:
    """Start a SELECT; with no column names every column is projected."""
    return Select(_table_name(table), tuple(column(n) for n in names) or None)


# =============================================================================
# INSERT / UPDATE / DELETE
# =============================================================================


@dataclass(frozen=True)
class Insert:
    """
    Multi-row INSERT; every row binds one value per column, in order.

    ``returning_columns`` asks the engine to send back generated values
    (PostgreSQL ``RETURNING``); other dialects refuse it at render time.
    """

    table: str
    columns: tuple[Column, ...]
    rows: tuple[tuple[Value, ...], ...]
    returning_columns: tuple[Column, ...] = ()

    def __post_init__(self) -> None:
        _table_name(self.table)
        if not self.columns or not self.rows:
            raise InvalidExpressionError("Insert data cannot be empty")
        width = len(self.columns)
        for i, row in enumerate(self.rows):
            if len(row) != width:
                raise InvalidExpressionError(f"Insert row {i} has {len(row)} values for {width} columns")

    def returning(self, *names: Any) -> Insert:
        return replace(self, returning_columns=tuple(column(n) for n in names))


def insert(table: str, rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> Insert:
    """
    Build an INSERT from one mapping or a sequence of mappings.

    Every mapping must have the same keys; the first one fixes the column
    order.
    """
    if isinstance(rows, Mapping):
        rows = [rows]
    rows = list(rows)
    if not rows:
        raise InvalidExpressionError("Insert data cannot be empty")
    names = list(rows[0].keys())
    for i, row in enumerate(rows[1:], start=1):
        if set(row.keys()) != set(names):
            raise InvalidExpressionError(f"Insert row {i} does not have the same columns as row 0")
    return Insert(
        _table_name(table),
        tuple(column(n) for n in names),
        tuple(tuple(Value.of(row[n]) for n in names) for row in rows),
    )


@dataclass(frozen=True)
class Update:
    table: str
    assignments: tuple[tuple[Column, Value], ...]
    filter: Expression | None = None

    def __post_init__(self) -> None:
        _table_name(self.table)
        if not self.assignments:
            raise InvalidExpressionError("Update needs at least one assignment")

    def set(self, name: Any, value: Any) -> Update:
        return replace(self, assignments=self.assignments + ((column(name), Value.of(value)),))

    def where(self, condition: Any) -> Update:
        return replace(self, filter=_and_where(self.filter, condition))


def update(table: str, assignments: Mapping[str, Any]) -> Update:
    return Update(
        _table_name(table),
        tuple((column(name), Value.of(value)) for name, value in assignments.items()),
    )


@dataclass(frozen=True)
class Delete:
    table: str
    filter: Expression | None = None

    def __post_init__(self) -> None:
        _table_name(self.table)

    def where(self, condition: Any) -> Delete:
        return replace(self, filter=_and_where(self.filter, condition))


def delete(table: str) -> Delete:
    return Delete(_table_name(table))


Statement = Select | Insert | Update | Delete


# =============================================================================
# BOUND STATEMENT
# =============================================================================


def count_placeholders(sql: str, style: ParamStyle) -> int:
    """Count bind placeholders in rendered SQL, ignoring quoted text."""
    count = 0
    quote: str | None = None
    i = 0
    while i < len(sql):
        ch = sql[i]
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in QUOTE_CHARS:
            quote = ch
        elif style is ParamStyle.QMARK and ch == "?":
            count += 1
        elif style is ParamStyle.FORMAT and ch == "%":
            nxt = sql[i + 1 : i + 2]
            if nxt == "s":
                count += 1
            i += 1
        i += 1
    return count


@dataclass(frozen=True)
class BoundStatement:
    """
    Dialect SQL plus its ordered bind values.

    Construction fails if the number of placeholders in ``sql`` differs from
    ``len(binds)``.
    """

    sql: str
    binds: tuple[Value, ...] = ()
    style: ParamStyle = ParamStyle.QMARK
    dialect: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        found = count_placeholders(self.sql, self.style)
        if found != len(self.binds):
            raise InvalidExpressionError(
                f"Statement has {found} placeholder(s) but {len(self.binds)} bind value(s)"
            )

    def shape(self) -> dict[str, Any]:
        """SQL text and bind kinds for diagnostics; bind values are left out."""
        return {"sql": self.sql, "bind_kinds": [b.kind.value for b in self.binds]}


__all__ = [
    "Direction",
    "JoinKind",
    "ParamStyle",
    "Join",
    "OrderItem",
    "Select",
    "Insert",
    "Update",
    "Delete",
    "Statement",
    "BoundStatement",
    "select",
    "insert",
    "update",
    "delete",
    "count_placeholders",
]
