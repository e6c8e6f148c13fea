"""Tests for ``keel.values``: Value model and per-dialect codecs."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from keel.errors import ConversionError
from keel.values import (
    INT64_MAX,
    INT64_MIN,
    UINT64_MAX,
    MySQLCodec,
    PostgreSQLCodec,
    SQLiteCodec,
    Value,
    ValueKind,
    codec_for,
    from_native,
    to_native,
)


class TestValueOf:
    @pytest.mark.parametrize(
        "obj, kind",
        [
            (None, ValueKind.NULL),
            (True, ValueKind.BOOL),
            (42, ValueKind.INT64),
            (2.5, ValueKind.FLOAT64),
            (Decimal("1.10"), ValueKind.DECIMAL),
            ("hi", ValueKind.TEXT),
            (b"\x00\x01", ValueKind.BYTES),
            (datetime(2024, 1, 2, 3, 4, 5), ValueKind.TIMESTAMP),
            (uuid.UUID(int=7), ValueKind.UUID),
        ],
    )
    def test_infers_kind(self, obj, kind):
        assert Value.of(obj).kind is kind

    def test_bool_is_not_int(self):
        assert Value.of(False) == Value.bool_(False)
        assert Value.of(0) == Value.int64(0)

    def test_large_int_becomes_uint64(self):
        v = Value.of(INT64_MAX + 1)
        assert v.kind is ValueKind.UINT64

    def test_int_out_of_range(self):
        with pytest.raises(ConversionError):
            Value.of(UINT64_MAX + 1)
        with pytest.raises(ConversionError):
            Value.of(-(2**63) - 1)

    def test_date_rejected(self):
        with pytest.raises(ConversionError, match="datetime.date"):
            Value.of(date(2024, 1, 1))

    def test_unsupported_type(self):
        with pytest.raises(ConversionError) as exc_info:
            Value.of(object())
        assert exc_info.value.native_type == "object"

    def test_value_passes_through(self):
        v = Value.text("x")
        assert Value.of(v) is v

    def test_bytearray_normalised(self):
        assert Value.of(bytearray(b"ab")).data == b"ab"


class TestValueConstruction:
    def test_direct_construction_validates(self):
        with pytest.raises(ConversionError):
            Value(ValueKind.INT64, "12")

    def test_kind_from_string(self):
        assert Value("text", "a").kind is ValueKind.TEXT

    def test_decimal_from_text(self):
        assert Value.decimal("12.50").data == Decimal("12.50")

    def test_decimal_bad_text(self):
        with pytest.raises(ConversionError):
            Value.decimal("twelve")

    def test_uuid_from_text(self):
        u = uuid.uuid4()
        assert Value.uuid(str(u)).data == u

    def test_float_from_int(self):
        assert Value.float64(3).data == 3.0

    def test_frozen(self):
        v = Value.int64(1)
        with pytest.raises(AttributeError):
            v.data = 2  # type: ignore[misc]

    def test_repr(self):
        assert repr(Value.null()) == "Value(null)"
        assert repr(Value.int64(3)) == "Value(int64, 3)"

    def test_coerce_uses_declared_kind(self):
        assert Value.coerce("1.5", ValueKind.DECIMAL) == Value.decimal(Decimal("1.5"))
        assert Value.coerce(None, ValueKind.INT64).is_null
        assert Value.coerce(7, None) == Value.int64(7)


class TestSQLiteCodec:
    codec = SQLiteCodec()

    def test_encode(self):
        ts = datetime(2024, 5, 6, 7, 8, 9)
        u = uuid.UUID(int=1)
        assert self.codec.encode(Value.bool_(True)) == 1
        assert self.codec.encode(Value.decimal("1.20")) == "1.20"
        assert self.codec.encode(Value.timestamp(ts)) == ts.isoformat()
        assert self.codec.encode(Value.uuid(u)) == str(u)
        assert self.codec.encode(Value.null()) is None
        assert self.codec.encode(Value.int64(5)) == 5

    def test_uint64_above_int64_goes_as_text(self):
        assert self.codec.encode(Value.uint64(UINT64_MAX)) == str(UINT64_MAX)
        assert self.codec.encode(Value.uint64(10)) == 10

    def test_decode_declared_kinds(self):
        ts = datetime(2024, 5, 6, 7, 8, 9)
        assert self.codec.decode(1, ValueKind.BOOL) == Value.bool_(True)
        assert self.codec.decode("1.20", ValueKind.DECIMAL) == Value.decimal("1.20")
        assert self.codec.decode(ts.isoformat(), ValueKind.TIMESTAMP) == Value.timestamp(ts)
        assert self.codec.decode(str(UINT64_MAX), ValueKind.UINT64) == Value.uint64(UINT64_MAX)

    def test_decode_infers_without_kind(self):
        assert self.codec.decode(3) == Value.int64(3)
        assert self.codec.decode("x") == Value.text("x")
        assert self.codec.decode(None).is_null

    def test_decode_mismatch(self):
        with pytest.raises(ConversionError) as exc_info:
            self.codec.decode("abc", ValueKind.INT64)
        assert exc_info.value.kind == "int64"
        assert exc_info.value.native_type == "str"

    def test_bool_out_of_range(self):
        with pytest.raises(ConversionError):
            self.codec.decode(2, ValueKind.BOOL)


class TestMySQLCodec:
    codec = MySQLCodec()

    def test_uuid_as_bytes(self):
        u = uuid.uuid4()
        assert self.codec.encode(Value.uuid(u)) == u.bytes
        assert self.codec.decode(u.bytes, ValueKind.UUID) == Value.uuid(u)

    def test_rejects_aware_timestamp(self):
        aware = datetime(2024, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ConversionError, match="timezone"):
            self.codec.encode(Value.timestamp(aware))

    def test_naive_timestamp_passes(self):
        ts = datetime(2024, 1, 1, 12)
        assert self.codec.encode(Value.timestamp(ts)) is ts

    def test_text_from_bytes(self):
        assert self.codec.decode(b"abc", ValueKind.TEXT) == Value.text("abc")


class TestPostgreSQLCodec:
    codec = PostgreSQLCodec()

    def test_uint64_as_numeric(self):
        assert self.codec.encode(Value.uint64(UINT64_MAX)) == Decimal(UINT64_MAX)
        assert self.codec.decode(Decimal(UINT64_MAX), ValueKind.UINT64) == Value.uint64(UINT64_MAX)

    def test_native_passthrough(self):
        u = uuid.uuid4()
        assert self.codec.encode(Value.uuid(u)) == u
        assert self.codec.encode(Value.bool_(False)) is False

    def test_memoryview_inferred_as_bytes(self):
        assert self.codec.decode(memoryview(b"xy")) == Value.bytes_(b"xy")


class TestCodecLookup:
    def test_by_tag_and_alias(self):
        assert isinstance(codec_for("sqlite"), SQLiteCodec)
        assert isinstance(codec_for("postgres"), PostgreSQLCodec)
        assert isinstance(codec_for("mariadb"), MySQLCodec)

    def test_unknown(self):
        with pytest.raises(ConversionError):
            codec_for("oracle")

    def test_helpers(self):
        assert to_native(Value.bool_(True), "mysql") == 1
        assert from_native("2.50", "sqlite", ValueKind.DECIMAL).data == Decimal("2.50")


# =============================================================================
# Round trip through every dialect
# =============================================================================

IST = timezone(timedelta(hours=5, minutes=30))

EDGE_VALUES = [
    Value.null(),
    Value.bool_(True),
    Value.bool_(False),
    Value.int64(INT64_MIN),
    Value.int64(0),
    Value.int64(INT64_MAX),
    Value.uint64(0),
    Value.uint64(INT64_MAX + 1),
    Value.uint64(UINT64_MAX),
    Value.float64(1.5),
    Value.float64(-0.0),
    Value.float64(1e-300),
    Value.decimal("1.50"),
    Value.decimal("-12345678901234567890.123456789000"),
    Value.decimal("1E+3"),
    Value.text(""),
    Value.text("naïve ☃ 日本語 it's"),
    Value.bytes_(b""),
    Value.bytes_(b"\x00\xff\x10"),
    Value.timestamp(datetime(2024, 2, 29, 23, 59, 59, 123456)),
    Value.timestamp(datetime(2024, 2, 29, 23, 59, 59, 123456, tzinfo=IST)),
    Value.uuid(uuid.UUID(int=0)),
    Value.uuid("12345678-1234-5678-1234-567812345678"),
]


def _unsupported(value: Value, dialect: str) -> bool:
    return dialect == "mysql" and value.kind is ValueKind.TIMESTAMP and value.data.utcoffset() is not None


class TestRoundTrip:
    def test_every_kind_covered(self):
        assert {v.kind for v in EDGE_VALUES} == set(ValueKind)

    @pytest.mark.parametrize("dialect", ["sqlite", "mysql", "postgresql"])
    @pytest.mark.parametrize("value", EDGE_VALUES, ids=repr)
    def test_native_round_trip_is_exact(self, value, dialect):
        if _unsupported(value, dialect):
            with pytest.raises(ConversionError):
                to_native(value, dialect)
            return
        back = from_native(to_native(value, dialect), dialect, value.kind)
        assert back == value
        # repr also pins decimal scale, the sign of zero and the UTC offset.
        assert repr(back) == repr(value)
