"""Tests for ``keel.repository``: record CRUD on SQLite."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from keel.errors import InvalidExpressionError, MissingPrimaryKeyError
from keel.mapping import table
from keel.query import col
from keel.repository import Repository


@table("accounts", primary_key="id")
@dataclass
class Account:
    id: int | None
    owner: str
    balance: Decimal
    active: bool = True
    opened_at: datetime | None = None
    nickname: str | None = field(default=None, metadata={"column": "nick"})


@table("audit_log")
@dataclass
class AuditLine:
    line: str


@pytest.fixture
def accounts(executor, accounts_table) -> Repository[Account]:
    return Repository(executor, Account)


@pytest.fixture
def seeded(accounts) -> Repository[Account]:
    for owner, balance, active in [("ann", "10", True), ("bob", "20", False), ("cid", "30", True)]:
        accounts.insert(Account(id=None, owner=owner, balance=Decimal(balance), active=active))
    return accounts


class TestReads:
    def test_get(self, seeded):
        account = seeded.get(2)
        assert account == Account(2, "bob", Decimal("20"), False, None, None)
        assert seeded.get(99) is None

    def test_list_all(self, seeded):
        assert [a.owner for a in seeded.list(order_by="id")] == ["ann", "bob", "cid"]

    def test_list_filtered_and_ordered(self, seeded):
        active = seeded.list(col("active") == True, order_by=("owner", "desc"))  # noqa: E712
        assert [a.owner for a in active] == ["cid", "ann"]

    def test_list_window(self, seeded):
        assert [a.owner for a in seeded.list(order_by="id", limit=1, offset=1)] == ["bob"]
        assert [a.owner for a in seeded.list(order_by="id", offset=2)] == ["cid"]

    def test_find_one(self, seeded):
        assert seeded.find_one(col("balance") == Decimal("30")).owner == "cid"
        assert seeded.find_one(col("owner") == "zed") is None

    def test_count_and_exists(self, seeded):
        assert seeded.count() == 3
        assert seeded.count(col("active") == False) == 1  # noqa: E712
        assert seeded.exists(col("owner") == "ann") is True
        assert seeded.exists(col("owner") == "zed") is False

    def test_table_property(self, accounts):
        assert accounts.table == "accounts"
        assert "Account" in repr(accounts)


class TestWrites:
    def test_insert_returns_generated_key(self, accounts):
        first = accounts.insert(Account(id=None, owner="ann", balance=Decimal("1")))
        second = accounts.insert(Account(id=None, owner="bob", balance=Decimal("2")))
        assert (first, second) == (1, 2)

    def test_insert_with_explicit_key(self, accounts):
        assert accounts.insert(Account(id=40, owner="ann", balance=Decimal("1"))) == 40
        assert accounts.get(40).owner == "ann"

    def test_insert_round_trips_every_kind(self, accounts):
        opened = datetime(2024, 3, 1, 12, 0, 5)
        key = accounts.insert(
            Account(id=None, owner="ann", balance=Decimal("99.95"), active=False, opened_at=opened, nickname="a")
        )
        assert accounts.get(key) == Account(key, "ann", Decimal("99.95"), False, opened, "a")

    def test_insert_many(self, accounts):
        rows = [Account(id=None, owner=o, balance=Decimal("0")) for o in ("ann", "bob")]
        assert accounts.insert_many(rows) == 2
        assert accounts.count() == 2
        assert accounts.insert_many([]) == 0

    def test_insert_many_mixed_keys(self, accounts):
        rows = [Account(id=None, owner="ann", balance=Decimal("0")), Account(id=5, owner="bob", balance=Decimal("0"))]
        with pytest.raises(InvalidExpressionError):
            accounts.insert_many(rows)

    def test_update(self, seeded):
        account = seeded.get(1)
        account.balance = Decimal("11.5")
        account.nickname = "annie"
        assert seeded.update(account) == 1
        assert seeded.get(1) == Account(1, "ann", Decimal("11.5"), True, None, "annie")

    def test_update_missing_row(self, seeded):
        assert seeded.update(Account(id=99, owner="zed", balance=Decimal("0"))) == 0

    def test_update_requires_key(self, accounts):
        with pytest.raises(InvalidExpressionError):
            accounts.update(Account(id=None, owner="ann", balance=Decimal("0")))

    def test_save_or_update_inserts_without_key(self, accounts):
        key = accounts.save_or_update(Account(id=None, owner="ann", balance=Decimal("1")))
        assert key == 1
        assert accounts.get(1).owner == "ann"

    def test_save_or_update_updates_with_key(self, seeded):
        account = seeded.get(2)
        account.balance = Decimal("25")
        assert seeded.save_or_update(account) == 2
        assert seeded.get(2).balance == Decimal("25")
        assert seeded.count() == 3

    def test_save_or_update_unknown_key_inserts_nothing(self, seeded):
        assert seeded.save_or_update(Account(id=99, owner="zed", balance=Decimal("0"))) == 99
        assert seeded.get(99) is None

    def test_update_where(self, seeded):
        assert seeded.update_where({"balance": Decimal("0")}, col("active") == True) == 2  # noqa: E712
        assert [a.balance for a in seeded.list(order_by="id")] == [Decimal("0"), Decimal("20"), Decimal("0")]

    def test_delete(self, seeded):
        assert seeded.delete(1) == 1
        assert seeded.delete(1) == 0
        assert seeded.count() == 2

    def test_delete_many(self, seeded):
        assert seeded.delete_many([1, 3, 99]) == 2
        assert seeded.delete_many([]) == 0
        assert [a.owner for a in seeded.list()] == ["bob"]

    def test_delete_where(self, seeded):
        assert seeded.delete_where(col("active") == False) == 1  # noqa: E712
        assert seeded.count() == 2


class TestTransactions:
    def test_operations_join_transaction(self, executor, accounts):
        with executor.transaction() as tx:
            key = accounts.insert(Account(id=None, owner="ann", balance=Decimal("1")), tx=tx)
            assert accounts.get(key, tx=tx).owner == "ann"
            assert accounts.count(tx=tx) == 1
            assert accounts.count() == 0
            tx.rollback()
        assert accounts.count() == 0

    def test_committed_operations_persist(self, executor, accounts):
        with executor.transaction() as tx:
            accounts.insert(Account(id=None, owner="ann", balance=Decimal("1")), tx=tx)
            accounts.update_where({"balance": Decimal("5")}, col("owner") == "ann", tx=tx)
            accounts.save_or_update(Account(id=None, owner="bob", balance=Decimal("2")), tx=tx)
            tx.commit()
        assert accounts.find_one(col("owner") == "ann").balance == Decimal("5")


class TestWithoutPrimaryKey:
    @pytest.fixture
    def audit(self, executor) -> Repository[AuditLine]:
        executor.execute_raw("CREATE TABLE audit_log (line TEXT NOT NULL)")
        return Repository(executor, AuditLine)

    def test_insert_returns_none(self, audit):
        assert audit.insert(AuditLine("started")) is None
        assert audit.list() == [AuditLine("started")]

    def test_key_operations_refused(self, audit):
        with pytest.raises(MissingPrimaryKeyError):
            audit.get(1)
        with pytest.raises(MissingPrimaryKeyError):
            audit.update(AuditLine("x"))
        with pytest.raises(MissingPrimaryKeyError):
            audit.delete_many([1])
        with pytest.raises(MissingPrimaryKeyError):
            audit.save_or_update(AuditLine("x"))


class TestReturning:
    def test_insert_uses_returning_where_supported(self):
        executor = MagicMock()
        executor.engine.dialect.supports_returning = True
        executor.run.return_value.scalar.return_value = 42
        repo = Repository(executor, Account)

        assert repo.insert(Account(id=None, owner="ann", balance=Decimal("1"))) == 42
        statement = executor.run.call_args.args[0]
        assert [c.name for c in statement.returning_columns] == ["id"]
        assert [c.name for c in statement.columns] == ["owner", "balance", "active", "opened_at", "nick"]
