"""
Unified value model and per-dialect codecs.

A :class:`Value` is a tagged union over the column types keel understands.
Everything the builder binds and everything the executor reads back passes
through it, so a ``Decimal`` stays a ``Decimal`` and a UUID stays a UUID no
matter which engine stored it.

Manifesto:
    - **Total over the declared set:** every supported Python type maps to
      exactly one :class:`ValueKind`; anything else fails fast with
      :class:`~keel.errors.ConversionError`
    - **Lossless:** Decimal, Timestamp and Uuid round-trip exactly through
      every engine that supports them
    - **Null is Null:** never coerced to empty string or zero, and vice versa
    - **Negotiated per dialect:** each dialect owns one codec instance; the
      encoding never changes from call to call

Architecture:
    ::

        Python object ──Value.of()──▶ Value(kind, data)
                                          │
                                          │ codec.encode()     (to_native)
                                          ▼
                                  driver-native object  ──▶ DB-API execute
                                          │
                                          │ codec.decode(kind) (from_native)
                                          ▼
                                    Value(kind, data)

    Codec table::

        kind       SQLite                MySQL              PostgreSQL
        ─────────  ────────────────────  ─────────────────  ───────────
        bool       1 / 0                 1 / 0              bool
        uint64     int, or text > 2^63-1 int                Decimal
        decimal    canonical text        Decimal            Decimal
        timestamp  ISO-8601 text         naive datetime     datetime
        uuid       canonical text        16 raw bytes       uuid.UUID

Examples:
    >>> Value.of(42)
    Value(int64, 42)
    >>> Value.of(2**64 - 1).kind
    <ValueKind.UINT64: 'uint64'>
    >>> to_native(Value.of(Decimal("1.50")), "sqlite")
    '1.50'
    >>> from_native("1.50", "sqlite", ValueKind.DECIMAL)
    Value(decimal, Decimal('1.50'))

Guardrails:
    ❌ DON'T: pass a ``float`` to ``Value.decimal`` (binary floats are inexact)
    ✅ DO: pass ``Decimal("1.50")`` or the string ``"1.50"``

    ❌ DON'T: store tz-aware timestamps in MySQL
    ✅ DO: normalise to naive UTC before binding

    ❌ DON'T: declare SQLite decimal columns as NUMERIC or DECIMAL (that
       affinity turns the stored text into REAL, so "1.50" reads back as 1.5)
    ✅ DO: declare them TEXT; keel stores Decimal as its canonical text

Tags:
    value-model, type-coercion, codec, decimal, uuid, timestamp, keel

Doc-Types:
    - API Reference
    - Type Mapping Reference
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from keel.errors import ConversionError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
UINT64_MAX = 2**64 - 1


class ValueKind(str, Enum):
    """The variants of :class:`Value`."""

    NULL = "null"
    BOOL = "bool"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT64 = "float64"
    DECIMAL = "decimal"
    TEXT = "text"
    BYTES = "bytes"
    TIMESTAMP = "timestamp"
    UUID = "uuid"


def _type_name(obj: Any) -> str:
    return type(obj).__name__


def _check(kind: ValueKind, data: Any) -> None:
    ok = True
    if kind is ValueKind.NULL:
        ok = data is None
    elif kind is ValueKind.BOOL:
        ok = isinstance(data, bool)
    elif kind is ValueKind.INT64:
        ok = isinstance(data, int) and not isinstance(data, bool) and INT64_MIN <= data <= INT64_MAX
    elif kind is ValueKind.UINT64:
        ok = isinstance(data, int) and not isinstance(data, bool) and 0 <= data <= UINT64_MAX
    elif kind is ValueKind.FLOAT64:
        ok = isinstance(data, float)
    elif kind is ValueKind.DECIMAL:
        ok = isinstance(data, Decimal)
    elif kind is ValueKind.TEXT:
        ok = isinstance(data, str)
    elif kind is ValueKind.BYTES:
        ok = isinstance(data, bytes)
    elif kind is ValueKind.TIMESTAMP:
        ok = isinstance(data, datetime)
    elif kind is ValueKind.UUID:
        ok = isinstance(data, uuid.UUID)
    if not ok:
        raise ConversionError(
            f"{_type_name(data)} {data!r} is not a valid {kind.value} value",
            kind=kind.value,
            native_type=_type_name(data),
        )


@dataclass(frozen=True)
class Value:
    """
    An immutable, typed scalar.

    Construct with :meth:`of` (inference) or one of the explicit
    constructors; direct construction validates that ``data`` fits ``kind``.

    Attributes:
        kind: The variant
        data: The Python payload (``None``, ``bool``, ``int``, ``float``,
            ``Decimal``, ``str``, ``bytes``, ``datetime`` or ``uuid.UUID``)
    """

    kind: ValueKind
    data: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ValueKind):
            object.__setattr__(self, "kind", ValueKind(self.kind))
        _check(self.kind, self.data)

    def __repr__(self) -> str:
        if self.kind is ValueKind.NULL:
            return "Value(null)"
        return f"Value({self.kind.value}, {self.data!r})"

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def null(cls) -> Value:
        return cls(ValueKind.NULL, None)

    @classmethod
    def bool_(cls, data: bool) -> Value:
        return cls(ValueKind.BOOL, data)

    @classmethod
    def int64(cls, data: int) -> Value:
        return cls(ValueKind.INT64, data)

    @classmethod
    def uint64(cls, data: int) -> Value:
        return cls(ValueKind.UINT64, data)

    @classmethod
    def float64(cls, data: float | int) -> Value:
        if isinstance(data, int) and not isinstance(data, bool):
            data = float(data)
        return cls(ValueKind.FLOAT64, data)

    @classmethod
    def decimal(cls, data: Decimal | str | int) -> Value:
        """Build a Decimal value from a ``Decimal``, its text form or an int."""
        if isinstance(data, str):
            try:
                data = Decimal(data)
            except InvalidOperation as e:
                raise ConversionError(
                    f"{data!r} is not a decimal literal", kind="decimal", native_type="str", cause=e
                ) from e
        elif isinstance(data, int) and not isinstance(data, bool):
            data = Decimal(data)
        return cls(ValueKind.DECIMAL, data)

    @classmethod
    def text(cls, data: str) -> Value:
        return cls(ValueKind.TEXT, data)

    @classmethod
    def bytes_(cls, data: bytes | bytearray | memoryview) -> Value:
        if isinstance(data, (bytearray, memoryview)):
            data = bytes(data)
        return cls(ValueKind.BYTES, data)

    @classmethod
    def timestamp(cls, data: datetime) -> Value:
        return cls(ValueKind.TIMESTAMP, data)

    @classmethod
    def uuid(cls, data: uuid.UUID | str) -> Value:
        if isinstance(data, str):
            try:
                data = uuid.UUID(data)
            except ValueError as e:
                raise ConversionError(f"{data!r} is not a UUID", kind="uuid", native_type="str", cause=e) from e
        return cls(ValueKind.UUID, data)

    @classmethod
    def of(cls, obj: Any) -> Value:
        """
        Infer the variant from a Python object.

        Raises:
            ConversionError: for ints outside [-2^63, 2^64-1] and for any
                type outside the supported set (``datetime.date`` included)
        """
        if isinstance(obj, Value):
            return obj
        if obj is None:
            return cls.null()
        if isinstance(obj, bool):
            return cls.bool_(obj)
        if isinstance(obj, int):
            if INT64_MIN <= obj <= INT64_MAX:
                return cls.int64(obj)
            if INT64_MAX < obj <= UINT64_MAX:
                return cls.uint64(obj)
            raise ConversionError(f"integer {obj} is outside the 64-bit range", native_type="int")
        if isinstance(obj, float):
            return cls.float64(obj)
        if isinstance(obj, Decimal):
            return cls.decimal(obj)
        if isinstance(obj, str):
            return cls.text(obj)
        if isinstance(obj, (bytes, bytearray, memoryview)):
            return cls.bytes_(obj)
        if isinstance(obj, datetime):
            return cls.timestamp(obj)
        if isinstance(obj, uuid.UUID):
            return cls.uuid(obj)
        if isinstance(obj, date):
            raise ConversionError(
                "datetime.date is not supported; pass a datetime.datetime", native_type="date"
            )
        raise ConversionError(f"Unsupported type {_type_name(obj)}", native_type=_type_name(obj))

    @classmethod
    def coerce(cls, obj: Any, kind: ValueKind | None) -> Value:
        """Build a value of a declared ``kind`` (``None`` always becomes Null)."""
        if kind is None or isinstance(obj, Value):
            return cls.of(obj)
        if obj is None:
            return cls.null()
        constructor = _CONSTRUCTORS[ValueKind(kind)]
        return constructor(obj)


_CONSTRUCTORS = {
    ValueKind.NULL: lambda obj: Value(ValueKind.NULL, obj),
    ValueKind.BOOL: Value.bool_,
    ValueKind.INT64: Value.int64,
    ValueKind.UINT64: Value.uint64,
    ValueKind.FLOAT64: Value.float64,
    ValueKind.DECIMAL: Value.decimal,
    ValueKind.TEXT: Value.text,
    ValueKind.BYTES: Value.bytes_,
    ValueKind.TIMESTAMP: Value.timestamp,
    ValueKind.UUID: Value.uuid,
}


# =============================================================================
# CODECS
# =============================================================================


def _fail(kind: ValueKind, native: Any, dialect: str) -> ConversionError:
    return ConversionError(
        f"Cannot decode {_type_name(native)} as {kind.value} for {dialect}",
        kind=kind.value,
        native_type=_type_name(native),
    )


class ValueCodec:
    """
    Converts between :class:`Value` and one driver's native objects.

    The base class implements the representation most DB-API drivers share;
    subclasses override the variants their engine stores differently.
    """

    name = "generic"

    # -- encode ---------------------------------------------------------

    def encode(self, value: Value) -> Any:
        if value.kind is ValueKind.NULL:
            return None
        method = getattr(self, f"encode_{value.kind.value}", None)
        if method is None:
            return value.data
        return method(value.data)

    # -- decode ---------------------------------------------------------

    def decode(self, native: Any, kind: ValueKind | None = None) -> Value:
        if native is None:
            return Value.null()
        if kind is None:
            return self.infer(native)
        kind = ValueKind(kind)
        if kind is ValueKind.NULL:
            raise _fail(kind, native, self.name)
        return getattr(self, f"decode_{kind.value}")(native)

    def infer(self, native: Any) -> Value:
        try:
            return Value.of(native)
        except ConversionError as e:
            raise ConversionError(
                f"Cannot decode column of type {_type_name(native)} for {self.name}",
                native_type=_type_name(native),
                cause=e,
            ) from e

    def decode_bool(self, native: Any) -> Value:
        if isinstance(native, bool):
            return Value.bool_(native)
        if isinstance(native, int) and native in (0, 1):
            return Value.bool_(bool(native))
        raise _fail(ValueKind.BOOL, native, self.name)

    def decode_int64(self, native: Any) -> Value:
        if isinstance(native, Decimal) and native == native.to_integral_value():
            native = int(native)
        if isinstance(native, int) and not isinstance(native, bool) and INT64_MIN <= native <= INT64_MAX:
            return Value.int64(native)
        raise _fail(ValueKind.INT64, native, self.name)

    def decode_uint64(self, native: Any) -> Value:
        if isinstance(native, Decimal) and native == native.to_integral_value():
            native = int(native)
        elif isinstance(native, str) and native.isdigit():
            native = int(native)
        if isinstance(native, int) and not isinstance(native, bool) and 0 <= native <= UINT64_MAX:
            return Value.uint64(native)
        raise _fail(ValueKind.UINT64, native, self.name)

    def decode_float64(self, native: Any) -> Value:
        if isinstance(native, (float, Decimal)) or (isinstance(native, int) and not isinstance(native, bool)):
            return Value.float64(float(native))
        raise _fail(ValueKind.FLOAT64, native, self.name)

    def decode_decimal(self, native: Any) -> Value:
        if isinstance(native, Decimal):
            return Value.decimal(native)
        if isinstance(native, (str, int)) and not isinstance(native, bool):
            return Value.decimal(native)
        if isinstance(native, float):
            return Value.decimal(str(native))
        raise _fail(ValueKind.DECIMAL, native, self.name)

    def decode_text(self, native: Any) -> Value:
        if isinstance(native, str):
            return Value.text(native)
        if isinstance(native, (bytes, bytearray)):
            # Some MySQL column collations come back as raw bytes.
            try:
                return Value.text(bytes(native).decode("utf-8"))
            except UnicodeDecodeError as e:
                raise _fail(ValueKind.TEXT, native, self.name) from e
        raise _fail(ValueKind.TEXT, native, self.name)

    def decode_bytes(self, native: Any) -> Value:
        if isinstance(native, (bytes, bytearray, memoryview)):
            return Value.bytes_(native)
        raise _fail(ValueKind.BYTES, native, self.name)

    def decode_timestamp(self, native: Any) -> Value:
        if isinstance(native, datetime):
            return Value.timestamp(native)
        if isinstance(native, str):
            try:
                return Value.timestamp(datetime.fromisoformat(native))
            except ValueError as e:
                raise _fail(ValueKind.TIMESTAMP, native, self.name) from e
        raise _fail(ValueKind.TIMESTAMP, native, self.name)

    def decode_uuid(self, native: Any) -> Value:
        if isinstance(native, uuid.UUID):
            return Value.uuid(native)
        try:
            if isinstance(native, str):
                return Value.uuid(uuid.UUID(native))
            if isinstance(native, (bytes, bytearray)) and len(native) == 16:
                return Value.uuid(uuid.UUID(bytes=bytes(native)))
        except ValueError as e:
            raise _fail(ValueKind.UUID, native, self.name) from e
        raise _fail(ValueKind.UUID, native, self.name)


class SQLiteCodec(ValueCodec):
    """SQLite stores everything as INTEGER, REAL, TEXT or BLOB."""

    name = "sqlite"

    def encode_bool(self, data: bool) -> int:
        return 1 if data else 0

    def encode_uint64(self, data: int) -> int | str:
        # sqlite3 binds ints as signed 64-bit; larger values go in as text.
        return data if data <= INT64_MAX else str(data)

    def encode_decimal(self, data: Decimal) -> str:
        # Exact only in a TEXT column; NUMERIC affinity converts it to REAL.
        return str(data)

    def encode_timestamp(self, data: datetime) -> str:
        return data.isoformat()

    def encode_uuid(self, data: uuid.UUID) -> str:
        return str(data)


class MySQLCodec(ValueCodec):
    name = "mysql"

    def encode_bool(self, data: bool) -> int:
        return 1 if data else 0

    def encode_timestamp(self, data: datetime) -> datetime:
        if data.tzinfo is not None and data.utcoffset() is not None:
            raise ConversionError(
                "MySQL DATETIME cannot store a timezone offset; convert to naive UTC first",
                kind=ValueKind.TIMESTAMP.value,
                native_type="datetime",
            )
        return data

    def encode_uuid(self, data: uuid.UUID) -> bytes:
        return data.bytes


class PostgreSQLCodec(ValueCodec):
    name = "postgresql"

    def encode_uint64(self, data: int) -> Decimal:
        return Decimal(data)


_CODECS: dict[str, ValueCodec] = {
    "sqlite": SQLiteCodec(),
    "mysql": MySQLCodec(),
    "postgresql": PostgreSQLCodec(),
}


def codec_for(dialect: Any) -> ValueCodec:
    """Resolve the codec for a dialect object or engine tag."""
    codec = getattr(dialect, "codec", None)
    if isinstance(codec, ValueCodec):
        return codec
    name = getattr(dialect, "name", dialect)
    from keel.dialect import normalize_engine_tag

    try:
        return _CODECS[normalize_engine_tag(name)]
    except KeyError:
        raise ConversionError(f"No value codec for dialect {name!r}") from None


def to_native(value: Value, dialect: Any) -> Any:
    """Convert a :class:`Value` to the object the dialect's driver binds."""
    return codec_for(dialect).encode(value)


def from_native(native: Any, dialect: Any, kind: ValueKind | None = None) -> Value:
    """Convert a driver object to a :class:`Value`, as ``kind`` when given."""
    return codec_for(dialect).decode(native, kind)


__all__ = [
    "ValueKind",
    "Value",
    "ValueCodec",
    "SQLiteCodec",
    "MySQLCodec",
    "PostgreSQLCodec",
    "codec_for",
    "to_native",
    "from_native",
    "INT64_MIN",
    "INT64_MAX",
    "UINT64_MAX",
]
