"""
Condition trees.

Conditions are immutable trees of frozen dataclass nodes.  Build them with
the module functions (``equals("age", 18)``) or through a column proxy
(``col("age") >= 18``); combine with :func:`and_`, :func:`or_`, :func:`not_`
or the ``&``, ``|`` and ``~`` operators.  Grouping is recorded exactly as
written: ``and_(a, or_(b, c))`` stays a two-level tree, nothing is flattened
or reordered.

Everything that can be checked without a database is checked here, at build
time: empty column names, ``None`` compared with ``=``, Null members of
``BETWEEN``/``IN`` and raw fragments whose ``?`` markers do not match their
binds all raise :class:`~keel.errors.InvalidExpressionError`.

Example::

    from keel.query import col, and_, or_

    adults_on_coasts = and_(
        col("age") >= 18,
        or_(col("city") == "NY", col("city") == "LA"),
    )
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from keel.errors import InvalidExpressionError
from keel.values import Value


class LogicalOp(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class ComparisonOp(str, Enum):
    EQ = "="
    NE = "<>"
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    ILIKE = "ILIKE"


class Expression:
    """Base class for condition nodes; adds the boolean operators."""

    __slots__ = ()

    def __and__(self, other: Expression) -> Logical:
        return and_(self, other)

    def __or__(self, other: Expression) -> Logical:
        return or_(self, other)

    def __invert__(self) -> Logical:
        return not_(self)


@dataclass(frozen=True)
class Column(Expression):
    """Reference to a column, optionally table-qualified (``users.id``)."""

    name: str


@dataclass(frozen=True)
class Literal(Expression):
    value: Value


@dataclass(frozen=True)
class Comparison(Expression):
    op: ComparisonOp
    left: Column
    right: Literal | Column


@dataclass(frozen=True)
class Logical(Expression):
    """AND / OR over one or more children, or NOT over exactly one."""

    op: LogicalOp
    children: tuple[Expression, ...]


@dataclass(frozen=True)
class Between(Expression):
    column: Column
    low: Literal
    high: Literal
    negated: bool = False


@dataclass(frozen=True)
class InSet(Expression):
    column: Column
    values: tuple[Value, ...]
    negated: bool = False


@dataclass(frozen=True)
class IsNull(Expression):
    column: Column
    negated: bool = False


@dataclass(frozen=True)
class Raw(Expression):
    """A hand-written SQL fragment with ``?`` bind markers."""

    fragment: str
    binds: tuple[Value, ...] = ()


Node = Union[Column, Literal, Comparison, Logical, Between, InSet, IsNull, Raw]


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def column(name: Any) -> Column:
    """Coerce a name, proxy or :class:`Column` into a validated :class:`Column`."""
    if isinstance(name, Column):
        return name
    if isinstance(name, ColumnProxy):
        return name.node
    if not isinstance(name, str):
        raise InvalidExpressionError(f"Column name must be a string, got {type(name).__name__}")
    if not name.strip():
        raise InvalidExpressionError("Column name must not be empty")
    if any(not part.strip() for part in name.split(".")):
        raise InvalidExpressionError(f"Column name {name!r} has an empty component")
    return Column(name)


def _literal(value: Any, *, what: str) -> Literal:
    v = Value.of(value)
    if v.is_null:
        raise InvalidExpressionError(f"{what} cannot be NULL; use is_null()/is_not_null()")
    return Literal(v)


def _operand(value: Any, *, what: str) -> Literal | Column:
    if isinstance(value, (ColumnProxy, Column)):
        return column(value)
    return _literal(value, what=what)


def as_condition(expr: Any) -> Expression:
    if not isinstance(expr, Expression) or isinstance(expr, (Column, Literal)):
        raise InvalidExpressionError(f"Expected a condition, got {type(expr).__name__}")
    return expr


# Characters that open quoted text in SQL: string literals and quoted identifiers.
QUOTE_CHARS = ("'", '"', "`")


def split_raw(fragment: str) -> list[str]:
    """
    Split a raw fragment at its ``?`` bind markers.

    Markers inside quoted text (single, double or backtick quotes, as in
    ``'what?'``) are text, and a doubled quote inside quoted text is an
    escaped quote.  The result always has ``markers + 1`` pieces.
    """
    pieces: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for ch in fragment:
        if quote is not None:
            if ch == quote:
                quote = None
            current.append(ch)
        elif ch in QUOTE_CHARS:
            quote = ch
            current.append(ch)
        elif ch == "?":
            pieces.append("".join(current))
            current = []
        else:
            current.append(ch)
    pieces.append("".join(current))
    return pieces


# =============================================================================
# BUILDERS
# =============================================================================


def _compare(op: ComparisonOp, name: Any, value: Any) -> Comparison:
    return Comparison(op, column(name), _operand(value, what=f"Right side of {op.value}"))


def equals(name: Any, value: Any) -> Comparison:
    return _compare(ComparisonOp.EQ, name, value)


def not_equals(name: Any, value: Any) -> Comparison:
    return _compare(ComparisonOp.NE, name, value)


def greater(name: Any, value: Any) -> Comparison:
    return _compare(ComparisonOp.GT, name, value)


def greater_or_equal(name: Any, value: Any) -> Comparison:
    return _compare(ComparisonOp.GE, name, value)


def less(name: Any, value: Any) -> Comparison:
    return _compare(ComparisonOp.LT, name, value)


def less_or_equal(name: Any, value: Any) -> Comparison:
    return _compare(ComparisonOp.LE, name, value)


def like(name: Any, pattern: Any) -> Comparison:
    return _compare(ComparisonOp.LIKE, name, pattern)


def not_like(name: Any, pattern: Any) -> Comparison:
    return _compare(ComparisonOp.NOT_LIKE, name, pattern)


def ilike(name: Any, pattern: Any) -> Comparison:
    """Case-insensitive LIKE; only PostgreSQL renders it."""
    return _compare(ComparisonOp.ILIKE, name, pattern)


def between(name: Any, low: Any, high: Any) -> Between:
    return Between(column(name), _literal(low, what="BETWEEN bound"), _literal(high, what="BETWEEN bound"))


def not_between(name: Any, low: Any, high: Any) -> Between:
    return Between(
        column(name), _literal(low, what="BETWEEN bound"), _literal(high, what="BETWEEN bound"), negated=True
    )


def _members(values: Iterable[Any]) -> tuple[Value, ...]:
    if isinstance(values, (str, bytes)):
        raise InvalidExpressionError("in_set() expects a collection of values, not a single string")
    return tuple(_literal(v, what="IN member").value for v in values)


def in_set(name: Any, values: Iterable[Any]) -> InSet:
    """Membership test; an empty collection is always false."""
    return InSet(column(name), _members(values))


def not_in_set(name: Any, values: Iterable[Any]) -> InSet:
    """Negated membership test; an empty collection is always true."""
    return InSet(column(name), _members(values), negated=True)


def is_null(name: Any) -> IsNull:
    return IsNull(column(name))


def is_not_null(name: Any) -> IsNull:
    return IsNull(column(name), negated=True)


def and_(*exprs: Any) -> Logical:
    if not exprs:
        raise InvalidExpressionError("and_() needs at least one condition")
    return Logical(LogicalOp.AND, tuple(as_condition(e) for e in exprs))


def or_(*exprs: Any) -> Logical:
    if not exprs:
        raise InvalidExpressionError("or_() needs at least one condition")
    return Logical(LogicalOp.OR, tuple(as_condition(e) for e in exprs))


def not_(expr: Any) -> Logical:
    return Logical(LogicalOp.NOT, (as_condition(expr),))


def raw(fragment: str, binds: Iterable[Any] = ()) -> Raw:
    """
    Escape hatch for SQL the builder cannot express.

    Write ``?`` wherever a value should be bound; the number of markers
    outside string literals must equal ``len(binds)``.

    Example:
        >>> raw("lower(email) = lower(?)", ["Ann@Example.com"])
    """
    if not isinstance(fragment, str) or not fragment.strip():
        raise InvalidExpressionError("Raw fragment must be a non-empty string")
    values = tuple(Value.of(b) for b in binds)
    markers = len(split_raw(fragment)) - 1
    if markers != len(values):
        raise InvalidExpressionError(
            f"Raw fragment has {markers} bind marker(s) but {len(values)} bind value(s) were given"
        )
    return Raw(fragment, values)


# =============================================================================
# COLUMN PROXY
# =============================================================================


class ColumnProxy:
    """
    Operator-friendly handle on a column.

    Comparison operators build condition nodes instead of booleans, which is
    why this is a separate class from :class:`Column`: nodes keep normal
    equality and hashing.

    Example:
        >>> col("age") >= 18
        Comparison(op=<ComparisonOp.GE: '>='>, left=Column(name='age'), right=Literal(value=Value(int64, 18)))
        >>> col("name").in_set(["Ann", "Bob"])
    """

    __slots__ = ("node",)
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, name: str) -> None:
        self.node = column(name)

    @property
    def name(self) -> str:
        return self.node.name

    def __repr__(self) -> str:
        return f"col({self.node.name!r})"

    def __eq__(self, other: Any) -> Comparison:  # type: ignore[override]
        return equals(self, other)

    def __ne__(self, other: Any) -> Comparison:  # type: ignore[override]
        return not_equals(self, other)

    def __gt__(self, other: Any) -> Comparison:
        return greater(self, other)

    def __ge__(self, other: Any) -> Comparison:
        return greater_or_equal(self, other)

    def __lt__(self, other: Any) -> Comparison:
        return less(self, other)

    def __le__(self, other: Any) -> Comparison:
        return less_or_equal(self, other)

    def equals(self, value: Any) -> Comparison:
        return equals(self, value)

    def not_equals(self, value: Any) -> Comparison:
        return not_equals(self, value)

    def between(self, low: Any, high: Any) -> Between:
        return between(self, low, high)

    def not_between(self, low: Any, high: Any) -> Between:
        return not_between(self, low, high)

    def in_set(self, values: Iterable[Any]) -> InSet:
        return in_set(self, values)

    def not_in_set(self, values: Iterable[Any]) -> InSet:
        return not_in_set(self, values)

    def is_null(self) -> IsNull:
        return is_null(self)

    def is_not_null(self) -> IsNull:
        return is_not_null(self)

    def like(self, pattern: Any) -> Comparison:
        return like(self, pattern)

    def not_like(self, pattern: Any) -> Comparison:
        return not_like(self, pattern)

    def ilike(self, pattern: Any) -> Comparison:
        return ilike(self, pattern)

    def asc(self) -> tuple[str, str]:
        return (self.node.name, "ASC")

    def desc(self) -> tuple[str, str]:
        return (self.node.name, "DESC")


def col(name: str) -> ColumnProxy:
    """Shorthand for :class:`ColumnProxy`."""
    return ColumnProxy(name)


__all__ = [
    "LogicalOp",
    "ComparisonOp",
    "Expression",
    "Column",
    "Literal",
    "Comparison",
    "Logical",
    "Between",
    "InSet",
    "IsNull",
    "Raw",
    "Node",
    "column",
    "as_condition",
    "QUOTE_CHARS",
    "split_raw",
    "equals",
    "not_equals",
    "greater",
    "greater_or_equal",
    "less",
    "less_or_equal",
    "like",
    "not_like",
    "ilike",
    "between",
    "not_between",
    "in_set",
    "not_in_set",
    "is_null",
    "is_not_null",
    "and_",
    "or_",
    "not_",
    "raw",
    "ColumnProxy",
    "col",
]
