"""
Record mapping boundary.

The executor never looks inside application records.  It consumes a
:class:`TableDescriptor` (table name, ordered field specs, primary key) and
a :class:`RecordMapper` that turns a row of :class:`~keel.values.Value` into
a record and back.  Anything that produces those two objects can plug in;
keel ships :func:`table`, a decorator that derives both from a dataclass.

Example::

    from dataclasses import dataclass, field
    from decimal import Decimal
    from keel.mapping import table

    @table("accounts", primary_key="id")
    @dataclass
    class Account:
        id: int | None
        owner: str
        balance: Decimal
        nickname: str | None = field(default=None, metadata={"column": "nick"})

    descriptor_of(Account).columns
    # ('id', 'owner', 'balance', 'nick')

Field metadata keys: ``column`` (column name), ``kind`` (a
:class:`~keel.values.ValueKind` overriding the inferred one), ``skip``
(exclude the attribute from the mapping).
"""

from __future__ import annotations

import dataclasses
import typing
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from types import NoneType, UnionType
from typing import Any, Protocol, runtime_checkable

from keel.errors import ConversionError, InvalidExpressionError, MissingPrimaryKeyError
from keel.values import Value, ValueKind


@dataclass(frozen=True)
class FieldSpec:
    """
    One mapped attribute.

    Attributes:
        attribute: Attribute name on the record
        column: Column name in the table
        kind: Declared value kind; ``None`` infers from the native type
        nullable: Whether the column may hold NULL
    """

    attribute: str
    column: str
    kind: ValueKind | None = None
    nullable: bool = True


@dataclass(frozen=True)
class TableDescriptor:
    """Table name, ordered field specs and the primary key attribute."""

    table: str
    fields: tuple[FieldSpec, ...]
    primary_key: str | None = None

    def __post_init__(self) -> None:
        if not self.table:
            raise InvalidExpressionError("TableDescriptor needs a table name")
        if not self.fields:
            raise InvalidExpressionError(f"TableDescriptor for {self.table!r} has no fields")
        attributes = [f.attribute for f in self.fields]
        if len(set(attributes)) != len(attributes):
            raise InvalidExpressionError(f"TableDescriptor for {self.table!r} repeats an attribute")
        if self.primary_key is not None and self.primary_key not in attributes:
            raise InvalidExpressionError(
                f"Primary key {self.primary_key!r} is not a field of {self.table!r}"
            )

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(f.column for f in self.fields)

    def field(self, attribute: str) -> FieldSpec:
        for spec in self.fields:
            if spec.attribute == attribute:
                return spec
        raise KeyError(attribute)

    @property
    def pk_field(self) -> FieldSpec:
        """The primary key's field spec.

        Raises:
            MissingPrimaryKeyError: if the descriptor has no primary key
        """
        if self.primary_key is None:
            raise MissingPrimaryKeyError(self.table)
        return self.field(self.primary_key)


@runtime_checkable
class RecordMapper(Protocol):
    """Converts between records and rows of values."""

    def decode_row(self, row: Mapping[str, Value], descriptor: TableDescriptor) -> Any:
        """Build a record from ``{column: Value}``."""
        ...

    def encode_record(self, record: Any, descriptor: TableDescriptor) -> list[tuple[str, Value]]:
        """Return ``(column, Value)`` pairs in descriptor order."""
        ...


class DataclassMapper:
    """:class:`RecordMapper` for dataclasses (keyword construction, attribute access)."""

    def __init__(self, record_type: type):
        self.record_type = record_type

    def __repr__(self) -> str:
        return f"DataclassMapper({self.record_type.__name__})"

    def decode_row(self, row: Mapping[str, Value], descriptor: TableDescriptor) -> Any:
        kwargs: dict[str, Any] = {}
        for spec in descriptor.fields:
            value = row[spec.column]
            if value.is_null and not spec.nullable:
                raise ConversionError(
                    f"Column {descriptor.table}.{spec.column} is NULL but {spec.attribute} is not optional",
                    kind=spec.kind.value if spec.kind else None,
                )
            kwargs[spec.attribute] = value.data
        return self.record_type(**kwargs)

    def encode_record(self, record: Any, descriptor: TableDescriptor) -> list[tuple[str, Value]]:
        return [
            (spec.column, Value.coerce(getattr(record, spec.attribute), spec.kind))
            for spec in descriptor.fields
        ]


# =============================================================================
# DATACLASS DECORATOR
# =============================================================================

_KIND_BY_TYPE: dict[Any, ValueKind] = {
    bool: ValueKind.BOOL,
    int: ValueKind.INT64,
    float: ValueKind.FLOAT64,
    Decimal: ValueKind.DECIMAL,
    str: ValueKind.TEXT,
    bytes: ValueKind.BYTES,
    datetime: ValueKind.TIMESTAMP,
    uuid.UUID: ValueKind.UUID,
}


def _kind_for(annotation: Any) -> tuple[ValueKind | None, bool]:
    """Infer ``(kind, nullable)`` from a type annotation."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is UnionType:
        args = [a for a in typing.get_args(annotation) if a is not NoneType]
        nullable = len(args) != len(typing.get_args(annotation))
        if len(args) == 1:
            kind, _ = _kind_for(args[0])
            return kind, nullable
        return None, nullable
    return _KIND_BY_TYPE.get(annotation), False


def describe_dataclass(cls: type, table_name: str | None = None, primary_key: str | None = None) -> TableDescriptor:
    """Derive a :class:`TableDescriptor` from a dataclass."""
    if not dataclasses.is_dataclass(cls):
        raise InvalidExpressionError(f"{cls.__name__} is not a dataclass")
    hints = typing.get_type_hints(cls)
    specs: list[FieldSpec] = []
    for f in dataclasses.fields(cls):
        if f.metadata.get("skip"):
            continue
        kind, nullable = _kind_for(hints.get(f.name, Any))
        if "kind" in f.metadata:
            kind = ValueKind(f.metadata["kind"])
        specs.append(FieldSpec(f.name, f.metadata.get("column", f.name), kind, nullable))
    return TableDescriptor(table_name or cls.__name__.lower(), tuple(specs), primary_key)


def table(name: str | None = None, *, primary_key: str | None = None) -> Callable[[type], type]:
    """
    Class decorator attaching a descriptor and a :class:`DataclassMapper`.

    Apply it on top of ``@dataclass``.  The table name defaults to the
    lower-cased class name.
    """

    def decorate(cls: type) -> type:
        cls.__keel_table__ = describe_dataclass(cls, name, primary_key)  # type: ignore[attr-defined]
        cls.__keel_mapper__ = DataclassMapper(cls)  # type: ignore[attr-defined]
        return cls

    return decorate


def descriptor_of(record_type: type) -> TableDescriptor:
    try:
        return record_type.__keel_table__  # type: ignore[attr-defined]
    except AttributeError:
        raise InvalidExpressionError(f"{record_type.__name__} is not mapped; decorate it with @table") from None


def mapper_of(record_type: type) -> RecordMapper:
    try:
        return record_type.__keel_mapper__  # type: ignore[attr-defined]
    except AttributeError:
        raise InvalidExpressionError(f"{record_type.__name__} is not mapped; decorate it with @table") from None


__all__ = [
    "FieldSpec",
    "TableDescriptor",
    "RecordMapper",
    "DataclassMapper",
    "describe_dataclass",
    "table",
    "descriptor_of",
    "mapper_of",
]
