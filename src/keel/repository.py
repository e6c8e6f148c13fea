"""Record repository on top of the executor.

Provides :class:`Repository`, which pairs an :class:`~keel.executor.Executor`
with a mapped record type so application code can load and save records
without writing statements by hand.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                       Repository[T]                                │
    │                                                                    │
    │   executor: Executor      ← statements run here (or on tx=)        │
    │   descriptor: TableDescriptor                                      │
    │   mapper: RecordMapper                                             │
    │                                                                    │
    │   list / find_one / get / count / exists       → records, ints     │
    │   insert / insert_many                         → key, rowcount     │
    │   update / update_where                        → rowcount          │
    │   save_or_update                               → key               │
    │   delete / delete_many / delete_where          → rowcount          │
    └────────────────────────────────────────────────────────────────────┘

Every method takes an optional ``tx=``; when given, the statement runs inside
that :class:`~keel.executor.Transaction` instead of on a fresh connection.

Usage:
    >>> accounts = Repository(executor, Account)
    >>> new_id = accounts.insert(Account(id=None, owner="ann", balance=Decimal("10")))
    >>> accounts.get(new_id).owner
    'ann'
    >>> accounts.update_where({"balance": Decimal("0")}, col("owner") == "ann")
    1

Tags:
    repository, database, records
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar

from keel.errors import InvalidExpressionError
from keel.executor import Executor, Transaction
from keel.mapping import RecordMapper, TableDescriptor, descriptor_of, mapper_of
from keel.query import delete, equals, in_set, insert, select, update
from keel.query.statements import Direction, Select
from keel.values import Value

T = TypeVar("T")


class Repository(Generic[T]):
    """
    Table-level access for one mapped record type.

    Parameters:
        executor: Executor used when no transaction is passed.
        record_type: A ``@table`` class, or any type when ``descriptor``
            and ``mapper`` are given explicitly.
        descriptor: Overrides the descriptor attached to ``record_type``.
        mapper: Overrides the mapper attached to ``record_type``.
    """

    def __init__(
        self,
        executor: Executor,
        record_type: type[T],
        *,
        descriptor: TableDescriptor | None = None,
        mapper: RecordMapper | None = None,
    ) -> None:
        self.executor = executor
        self.record_type = record_type
        self.descriptor = descriptor or descriptor_of(record_type)
        self.mapper = mapper or mapper_of(record_type)

    def __repr__(self) -> str:
        return f"Repository({self.record_type.__name__}, table={self.table!r})"

    @property
    def table(self) -> str:
        return self.descriptor.table

    # -- Internals ---------------------------------------------------------

    def _on(self, tx: Transaction | None) -> Executor | Transaction:
        return tx if tx is not None else self.executor

    def _key_condition(self, key: Any):
        spec = self.descriptor.pk_field
        return equals(spec.column, Value.coerce(key, spec.kind))

    def _query(
        self,
        where: Any = None,
        order_by: Any = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Select:
        query = select(self.table, *self.descriptor.columns)
        if where is not None:
            query = query.where(where)
        if order_by is not None:
            # Accept "col", ("col", "desc") or a list of either.
            items = order_by if isinstance(order_by, list) else [order_by]
            for item in items:
                if isinstance(item, tuple):
                    query = query.order_by(*item)
                else:
                    query = query.order_by(item, Direction.ASC)
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        return query

    def _encode(self, record: T, *, drop_null_key: bool) -> dict[str, Value]:
        pairs = dict(self.mapper.encode_record(record, self.descriptor))
        if drop_null_key and self.descriptor.primary_key is not None:
            pk_column = self.descriptor.pk_field.column
            if pairs.get(pk_column) is not None and pairs[pk_column].is_null:
                del pairs[pk_column]
        return pairs

    # -- Reads -------------------------------------------------------------

    def list(
        self,
        where: Any = None,
        *,
        order_by: Any = None,
        limit: int | None = None,
        offset: int | None = None,
        tx: Transaction | None = None,
    ) -> list[T]:
        """Load records matching ``where`` (all records when omitted)."""
        query = self._query(where, order_by, limit, offset)
        return self._on(tx).fetch(query, self.descriptor, self.mapper)

    def find_one(self, where: Any, *, tx: Transaction | None = None) -> T | None:
        return self._on(tx).fetch_one(self._query(where), self.descriptor, self.mapper)

    def get(self, key: Any, *, tx: Transaction | None = None) -> T | None:
        """Load one record by primary key (``None`` if absent)."""
        return self.find_one(self._key_condition(key), tx=tx)

    def count(self, where: Any = None, *, tx: Transaction | None = None) -> int:
        query = select(self.table).count()
        if where is not None:
            query = query.where(where)
        return int(self._on(tx).run(query).scalar() or 0)

    def exists(self, where: Any, *, tx: Transaction | None = None) -> bool:
        query = select(self.table, self.descriptor.fields[0].column).where(where).limit(1)
        return len(self._on(tx).run(query)) > 0

    # -- Writes ------------------------------------------------------------

    def insert(self, record: T, *, tx: Transaction | None = None) -> Any:
        """
        Insert one record and return its primary key.

        A NULL primary key is left out of the INSERT so the engine generates
        it; the generated key comes back via ``RETURNING`` where the dialect
        supports it, otherwise via the driver's last-row id.  Returns ``None``
        for tables without a primary key.
        """
        values = self._encode(record, drop_null_key=True)
        statement = insert(self.table, values)
        if self.descriptor.primary_key is None:
            self._on(tx).run(statement)
            return None

        pk = self.descriptor.pk_field
        if pk.column in values:
            self._on(tx).run(statement)
            return values[pk.column].data
        if self.executor.engine.dialect.supports_returning:
            return self._on(tx).run(statement.returning(pk.column)).scalar()
        return self._on(tx).run(statement).lastrowid

    def insert_many(self, records: Iterable[T], *, tx: Transaction | None = None) -> int:
        """Insert records with one multi-row INSERT; returns the row count."""
        rows = [self._encode(r, drop_null_key=True) for r in records]
        if not rows:
            return 0
        if len({frozenset(r) for r in rows}) != 1:
            raise InvalidExpressionError(
                f"insert_many into {self.table!r} mixes records with and without primary keys"
            )
        return self._on(tx).run(insert(self.table, rows)).rowcount

    def update(self, record: T, *, tx: Transaction | None = None) -> int:
        """Write every non-key column of ``record`` to its row (by primary key)."""
        values = self._encode(record, drop_null_key=False)
        pk = self.descriptor.pk_field
        key = values.pop(pk.column)
        if key.is_null:
            raise InvalidExpressionError(f"Cannot update a {self.record_type.__name__} without a primary key value")
        if not values:
            return 0
        statement = update(self.table, values).where(equals(pk.column, key))
        return self._on(tx).run(statement).rowcount

    def save_or_update(self, record: T, *, tx: Transaction | None = None) -> Any:
        """
        Insert ``record`` if its primary key is NULL, otherwise update its row.

        Returns the primary key either way.  An update that matches no row
        still returns the key; nothing is inserted for it.
        """
        pk = self.descriptor.pk_field
        key = self._encode(record, drop_null_key=False)[pk.column]
        if key.is_null:
            return self.insert(record, tx=tx)
        self.update(record, tx=tx)
        return key.data

    def update_where(self, values: Mapping[str, Any], where: Any, *, tx: Transaction | None = None) -> int:
        """Set ``values`` (column → value) on every row matching ``where``."""
        return self._on(tx).run(update(self.table, values).where(where)).rowcount

    def delete(self, key: Any, *, tx: Transaction | None = None) -> int:
        """Delete the row with primary key ``key``."""
        return self._on(tx).run(delete(self.table).where(self._key_condition(key))).rowcount

    def delete_many(self, keys: Iterable[Any], *, tx: Transaction | None = None) -> int:
        spec = self.descriptor.pk_field
        members = [Value.coerce(k, spec.kind) for k in keys]
        if not members:
            return 0
        return self._on(tx).run(delete(self.table).where(in_set(spec.column, members))).rowcount

    def delete_where(self, where: Any, *, tx: Transaction | None = None) -> int:
        return self._on(tx).run(delete(self.table).where(where)).rowcount


__all__ = [
    "Repository",
]
