"""Tests for ``keel.errors``: error taxonomy."""

from __future__ import annotations

import pytest

from keel.errors import (
    ConfigError,
    ConnectionUnhealthyError,
    ConversionError,
    DatabaseConnectionError,
    DriverError,
    ErrorCategory,
    ErrorContext,
    IntegrityViolationError,
    InvalidExpressionError,
    KeelError,
    MissingColumnError,
    MissingPrimaryKeyError,
    PoolClosedError,
    PoolExhaustedError,
    QueryCancelledError,
    TransactionAbortedError,
    UnsupportedOperationError,
    categorize_error,
    is_retryable,
)


class TestCategories:
    @pytest.mark.parametrize(
        "error, category",
        [
            (InvalidExpressionError("x"), ErrorCategory.EXPRESSION),
            (UnsupportedOperationError("x"), ErrorCategory.RENDER),
            (ConversionError("x"), ErrorCategory.CONVERSION),
            (ConfigError("x"), ErrorCategory.CONFIG),
            (PoolExhaustedError("x"), ErrorCategory.POOL),
            (PoolClosedError("x"), ErrorCategory.POOL),
            (DriverError("x"), ErrorCategory.DATABASE),
            (MissingColumnError("c"), ErrorCategory.MAPPING),
            (TransactionAbortedError("x"), ErrorCategory.TRANSACTION),
            (KeelError("x"), ErrorCategory.INTERNAL),
        ],
    )
    def test_default_category(self, error, category):
        assert error.category is category
        assert categorize_error(error) is category

    def test_foreign_exception(self):
        assert categorize_error(ValueError("x")) is ErrorCategory.UNKNOWN
        assert is_retryable(ValueError("x")) is False


class TestRetryable:
    @pytest.mark.parametrize("cls", [PoolExhaustedError, ConnectionUnhealthyError, DatabaseConnectionError])
    def test_transient(self, cls):
        assert is_retryable(cls("x"))

    @pytest.mark.parametrize("cls", [InvalidExpressionError, ConfigError, DriverError, PoolClosedError])
    def test_permanent(self, cls):
        assert not is_retryable(cls("x"))

    def test_override(self):
        assert DriverError("deadlock", retryable=True).retryable is True


class TestContext:
    def test_with_context_known_and_extra_keys(self):
        err = DriverError("boom").with_context(engine="mysql", statement={"sql": "SELECT 1"}, attempt=2)
        assert err.context.engine == "mysql"
        assert err.context.statement == {"sql": "SELECT 1"}
        assert err.context.metadata == {"attempt": 2}

    def test_to_dict(self):
        cause = RuntimeError("socket closed")
        err = DriverError("lost", code=2013, sqlstate="HY000", cause=cause).with_context(engine="mysql")
        data = err.to_dict()
        assert data["error_type"] == "DriverError"
        assert data["category"] == "DATABASE"
        assert data["code"] == 2013
        assert data["sqlstate"] == "HY000"
        assert data["context"] == {"engine": "mysql"}
        assert data["cause"] == "RuntimeError: socket closed"
        assert err.__cause__ is cause

    def test_empty_context_omitted(self):
        assert "context" not in KeelError("x").to_dict()
        assert ErrorContext().to_dict() == {}


class TestSpecificErrors:
    def test_integrity_is_driver_error(self):
        assert isinstance(IntegrityViolationError("dup"), DriverError)

    def test_missing_column(self):
        err = MissingColumnError("email", available=["id", "name"])
        assert err.column == "email"
        assert err.available == ["id", "name"]
        assert "email" in str(err)

    def test_missing_primary_key(self):
        err = MissingPrimaryKeyError("events")
        assert err.table == "events"
        assert "events" in err.message

    def test_transaction_aborted(self):
        original = IntegrityViolationError("dup")
        rollback = DriverError("gone")
        err = TransactionAbortedError("aborted", failed_step=1, rollback_error=rollback, cause=original)
        assert err.cause is original
        data = err.to_dict()
        assert data["failed_step"] == 1
        assert data["rollback_error"] == "DriverError: gone"

    def test_query_cancelled(self):
        assert QueryCancelledError("c").sent is False
        assert QueryCancelledError("c", sent=True).sent is True

    def test_unsupported_operation_fields(self):
        err = UnsupportedOperationError("no", dialect="sqlite", construct="FULL JOIN")
        assert (err.dialect, err.construct) == ("sqlite", "FULL JOIN")

    def test_conversion_to_dict(self):
        data = ConversionError("bad", kind="int64", native_type="str").to_dict()
        assert data["kind"] == "int64"
        assert data["native_type"] == "str"
