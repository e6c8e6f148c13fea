"""Tests for ``keel.query.expressions``: condition trees and builders."""

from __future__ import annotations

import pytest

from keel.dialect import get_dialect
from keel.errors import InvalidExpressionError
from keel.query import select
from keel.query.expressions import (
    Between,
    Column,
    Comparison,
    ComparisonOp,
    InSet,
    IsNull,
    Literal,
    Logical,
    LogicalOp,
    Raw,
    and_,
    as_condition,
    between,
    col,
    column,
    equals,
    in_set,
    is_not_null,
    is_null,
    not_,
    not_in_set,
    or_,
    raw,
    split_raw,
)
from keel.values import Value


class TestColumn:
    def test_plain_and_qualified(self):
        assert column("age") == Column("age")
        assert column("users.id").name == "users.id"

    def test_proxy_and_column_accepted(self):
        assert column(col("age")) == Column("age")
        assert column(Column("age")) == Column("age")

    @pytest.mark.parametrize("bad", ["", "   ", "users.", ".id", "a..b"])
    def test_empty_names_rejected(self, bad):
        with pytest.raises(InvalidExpressionError):
            column(bad)

    def test_non_string_rejected(self):
        with pytest.raises(InvalidExpressionError):
            column(12)


class TestComparisons:
    def test_builder_shape(self):
        node = equals("age", 18)
        assert node == Comparison(ComparisonOp.EQ, Column("age"), Literal(Value.int64(18)))

    def test_proxy_operators(self):
        assert (col("age") >= 18).op is ComparisonOp.GE
        assert (col("age") < 3).op is ComparisonOp.LT
        assert (col("a") != "x").op is ComparisonOp.NE
        assert (col("a") == "x").op is ComparisonOp.EQ

    def test_column_to_column(self):
        node = col("orders.user_id") == col("users.id")
        assert node.right == Column("users.id")

    def test_null_comparison_rejected(self):
        with pytest.raises(InvalidExpressionError, match="is_null"):
            equals("deleted_at", None)
        with pytest.raises(InvalidExpressionError):
            col("deleted_at") == None  # noqa: E711

    def test_like_family(self):
        assert col("name").like("A%").op is ComparisonOp.LIKE
        assert col("name").not_like("A%").op is ComparisonOp.NOT_LIKE
        assert col("name").ilike("a%").op is ComparisonOp.ILIKE

    def test_proxy_not_hashable(self):
        with pytest.raises(TypeError):
            hash(col("a"))

    def test_order_helpers(self):
        assert col("name").desc() == ("name", "DESC")
        assert col("name").asc() == ("name", "ASC")


class TestRangesAndSets:
    def test_between(self):
        node = between("age", 18, 65)
        assert isinstance(node, Between)
        assert (node.low.value, node.high.value) == (Value.int64(18), Value.int64(65))
        assert col("age").not_between(1, 2).negated is True

    def test_between_null_bound_rejected(self):
        with pytest.raises(InvalidExpressionError):
            between("age", None, 10)

    def test_in_set(self):
        node = in_set("city", ["NY", "LA"])
        assert isinstance(node, InSet)
        assert node.values == (Value.text("NY"), Value.text("LA"))
        assert not_in_set("city", []).negated is True

    def test_empty_in_set_allowed(self):
        assert in_set("id", []).values == ()

    def test_in_set_rejects_string(self):
        with pytest.raises(InvalidExpressionError):
            in_set("city", "NY")

    def test_in_set_rejects_null_member(self):
        with pytest.raises(InvalidExpressionError):
            in_set("city", ["NY", None])

    def test_null_tests(self):
        assert is_null("x") == IsNull(Column("x"))
        assert is_not_null("x").negated is True
        assert col("x").is_null() == is_null("x")


class TestLogical:
    def test_grouping_preserved(self):
        tree = and_(col("age") >= 18, or_(col("city") == "NY", col("city") == "LA"))
        assert tree.op is LogicalOp.AND
        assert len(tree.children) == 2
        inner = tree.children[1]
        assert isinstance(inner, Logical) and inner.op is LogicalOp.OR

    def test_no_flattening(self):
        a, b, c = equals("a", 1), equals("b", 2), equals("c", 3)
        tree = and_(and_(a, b), c)
        assert tree.children[0] == and_(a, b)

    def test_operators(self):
        a, b = equals("a", 1), equals("b", 2)
        assert (a & b) == and_(a, b)
        assert (a | b) == or_(a, b)
        assert ~a == not_(a)

    def test_empty_rejected(self):
        with pytest.raises(InvalidExpressionError):
            and_()
        with pytest.raises(InvalidExpressionError):
            or_()

    def test_non_condition_rejected(self):
        with pytest.raises(InvalidExpressionError):
            and_(col("a"))
        with pytest.raises(InvalidExpressionError):
            as_condition(Column("a"))

    def test_nodes_are_immutable_and_comparable(self):
        a = and_(equals("a", 1), equals("b", 2))
        b = and_(equals("a", 1), equals("b", 2))
        assert a == b
        assert hash(a) == hash(b)


class TestRaw:
    def test_marker_count_enforced(self):
        with pytest.raises(InvalidExpressionError, match="1 bind marker"):
            raw("a = ?", [])
        with pytest.raises(InvalidExpressionError):
            raw("a = 1", [5])

    def test_markers_in_literals_ignored(self):
        node = raw("note = 'why?' AND id = ?", [3])
        assert node == Raw("note = 'why?' AND id = ?", (Value.int64(3),))

    def test_split(self):
        assert split_raw("a = ? OR b = ?") == ["a = ", " OR b = ", ""]
        assert split_raw("x = 'it''s?'") == ["x = 'it''s?'"]

    def test_markers_in_quoted_identifiers_ignored(self):
        assert split_raw('"what?" = ? AND `why?` = ?') == ['"what?" = ', " AND `why?` = ", ""]
        node = raw('"what?" = ?', [1])
        assert node.binds == (Value.int64(1),)

    def test_quoted_identifier_renders_with_matching_count(self):
        bound = get_dialect("sqlite").render(select("t").where(raw('"what?" = ?', [1])))
        assert bound.sql == 'SELECT * FROM t WHERE "what?" = ?'
        assert bound.binds == (Value.int64(1),)

    def test_empty_fragment(self):
        with pytest.raises(InvalidExpressionError):
            raw("  ")
