"""Query construction: condition trees and statement descriptors.

Usage::

    from keel.query import select, col, and_, or_

    q = (
        select("users", "id", "name")
        .where(and_(col("age") >= 18, or_(col("city") == "NY", col("city") == "LA")))
        .order_by("name")
        .limit(10)
    )

Modules
-------
expressions   Condition nodes, builder functions and ``col()`` proxies
statements    Select / Insert / Update / Delete and BoundStatement
"""

from keel.query.expressions import (
    Between,
    Column,
    ColumnProxy,
    Comparison,
    ComparisonOp,
    Expression,
    InSet,
    IsNull,
    Literal,
    Logical,
    LogicalOp,
    Raw,
    and_,
    between,
    col,
    equals,
    greater,
    greater_or_equal,
    ilike,
    in_set,
    is_not_null,
    is_null,
    less,
    less_or_equal,
    like,
    not_,
    not_between,
    not_equals,
    not_in_set,
    not_like,
    or_,
    raw,
)
from keel.query.statements import (
    BoundStatement,
    Delete,
    Direction,
    Insert,
    JoinKind,
    ParamStyle,
    Select,
    Statement,
    Update,
    delete,
    insert,
    select,
    update,
)

__all__ = [
    # Nodes
    "Expression",
    "Column",
    "Literal",
    "Comparison",
    "ComparisonOp",
    "Logical",
    "LogicalOp",
    "Between",
    "InSet",
    "IsNull",
    "Raw",
    "ColumnProxy",
    # Builders
    "col",
    "equals",
    "not_equals",
    "greater",
    "greater_or_equal",
    "less",
    "less_or_equal",
    "between",
    "not_between",
    "in_set",
    "not_in_set",
    "is_null",
    "is_not_null",
    "like",
    "not_like",
    "ilike",
    "and_",
    "or_",
    "not_",
    "raw",
    # Statements
    "Select",
    "Insert",
    "Update",
    "Delete",
    "Statement",
    "BoundStatement",
    "Direction",
    "JoinKind",
    "ParamStyle",
    "select",
    "insert",
    "update",
    "delete",
]
