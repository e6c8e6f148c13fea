"""
Structured error types for keel.

Every failure the core can produce is a :class:`KeelError` subclass that
carries a category, an explicit retry flag, structured context and the
chained underlying exception.  Callers branch on the type; loggers and
alerting consume :meth:`KeelError.to_dict`.

Manifesto:
    - **Typed taxonomy:** one class per failure mode the core can produce
    - **Explicit retry semantics:** the core never retries, but it tells the
      caller whether retrying could help
    - **No leaked data:** statement diagnostics carry the SQL shape and bind
      *kinds*, never the bound values
    - **Chaining:** driver exceptions are preserved as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         KeelError                             │
        │  (category, retryable, retry_after, context, cause)          │
        ├──────────────────────────────────────────────────────────────┤
        │  Build time            Render time             Config        │
        │  InvalidExpression     UnsupportedOperation    ConfigError   │
        │  ConversionError                                             │
        │                                                              │
        │  Pool                  Execution               Mapping       │
        │  PoolExhausted         DriverError             MissingColumn │
        │  PoolClosed            QueryCancelled          MissingPK     │
        │  ConnectionUnhealthy   TransactionAborted                    │
        │  DatabaseConnection                                          │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = PoolExhaustedError("no connection within 2.0s")
    >>> err.retryable
    True
    >>> err = InvalidExpressionError("column name must not be empty")
    >>> err.to_dict()["category"]
    'EXPRESSION'

Guardrails:
    ❌ DON'T: put bind values into error messages or context
    ✅ DO: attach ``BoundStatement.shape()`` via ``statement=``

    ❌ DON'T: swallow the driver exception
    ✅ DO: pass it as ``cause=``

Tags:
    error-handling, exception-hierarchy, keel, database, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for classification and routing.

    Attributes:
        EXPRESSION: Malformed query tree detected while building
        RENDER: A dialect cannot express a requested construct
        CONVERSION: Value/native type mismatch
        POOL: Checkout timeouts, shutdown, unhealthy connections
        DATABASE: The engine reported a failure
        MAPPING: Result set does not match the record descriptor
        TRANSACTION: A transaction was aborted and rolled back
        CONFIG: Missing or invalid configuration
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    EXPRESSION = "EXPRESSION"
    RENDER = "RENDER"
    CONVERSION = "CONVERSION"
    POOL = "POOL"
    DATABASE = "DATABASE"
    MAPPING = "MAPPING"
    TRANSACTION = "TRANSACTION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    ``statement`` holds the shape of the statement involved (SQL text and
    bind kinds), as produced by ``BoundStatement.shape()``.  Bind values never
    go here.

    Attributes:
        engine: Engine tag (``sqlite``, ``mysql``, ``postgresql``)
        table: Table the operation targeted
        operation: High-level operation (``select``, ``insert``, ``checkout``)
        statement: Statement shape for diagnostics
        metadata: Additional key-value pairs
    """

    engine: str | None = None
    table: str | None = None
    operation: str | None = None
    statement: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("engine", "table", "operation", "statement"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class KeelError(Exception):
    """
    Base exception for all keel errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.

    Examples:
        >>> error = KeelError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(engine="sqlite").context.engine
        'sqlite'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> KeelError:
        """
        Add context to this error (fluent API).

        Usage:
            raise DriverError("insert failed").with_context(
                engine="mysql", table="users"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# BUILD / RENDER ERRORS
# =============================================================================


class InvalidExpressionError(KeelError):
    """Malformed expression tree or query descriptor, detected at build time."""

    default_category = ErrorCategory.EXPRESSION


class UnsupportedOperationError(KeelError):
    """The active dialect cannot render a construct used in the tree."""

    default_category = ErrorCategory.RENDER

    def __init__(self, message: str, *, dialect: str | None = None, construct: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.dialect = dialect
        self.construct = construct


class ConversionError(KeelError):
    """A value cannot be converted between keel and driver representations."""

    default_category = ErrorCategory.CONVERSION

    def __init__(self, message: str, *, kind: str | None = None, native_type: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.kind = kind
        self.native_type = native_type

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.kind:
            result["kind"] = self.kind
        if self.native_type:
            result["native_type"] = self.native_type
        return result


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(KeelError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG


# =============================================================================
# POOL / CONNECTION ERRORS
# =============================================================================


class PoolExhaustedError(KeelError):
    """No connection became available before the checkout timeout elapsed."""

    default_category = ErrorCategory.POOL
    default_retryable = True


class PoolClosedError(KeelError):
    """The pool is shut down (or shutting down) and refuses checkouts."""

    default_category = ErrorCategory.POOL


class ConnectionUnhealthyError(KeelError):
    """A connection failed validation or is no longer usable."""

    default_category = ErrorCategory.POOL
    default_retryable = True


class DatabaseConnectionError(KeelError):
    """Opening a new driver connection failed."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class DriverError(KeelError):
    """
    The underlying engine reported a failure.

    Wraps the driver exception and keeps its vendor code / SQLSTATE when the
    driver exposes one.
    """

    default_category = ErrorCategory.DATABASE

    def __init__(
        self,
        message: str,
        *,
        code: int | str | None = None,
        sqlstate: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.code = code
        self.sqlstate = sqlstate

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.code is not None:
            result["code"] = self.code
        if self.sqlstate:
            result["sqlstate"] = self.sqlstate
        return result


class IntegrityViolationError(DriverError):
    """The engine rejected a statement because of a constraint violation."""


class QueryCancelledError(KeelError):
    """A statement was cancelled by the caller or timed out."""

    default_category = ErrorCategory.DATABASE

    def __init__(self, message: str, *, sent: bool = False, **kwargs: Any):
        super().__init__(message, **kwargs)
        # Whether the statement had already reached the driver.
        self.sent = sent


class TransactionAbortedError(KeelError):
    """
    A transaction operation failed and the transaction was rolled back.

    ``cause`` is always the original failure.  If the rollback itself failed,
    that error is kept in ``rollback_error`` so both are reported.
    """

    default_category = ErrorCategory.TRANSACTION

    def __init__(
        self,
        message: str,
        *,
        failed_step: int | None = None,
        rollback_error: BaseException | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.failed_step = failed_step
        self.rollback_error = rollback_error

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.failed_step is not None:
            result["failed_step"] = self.failed_step
        if self.rollback_error is not None:
            result["rollback_error"] = f"{type(self.rollback_error).__name__}: {self.rollback_error}"
        return result


# =============================================================================
# MAPPING ERRORS
# =============================================================================


class MissingColumnError(KeelError):
    """A column declared by the record descriptor is absent from the result set."""

    default_category = ErrorCategory.MAPPING

    def __init__(self, column: str, *, available: list[str] | None = None, **kwargs: Any):
        self.column = column
        self.available = available or []
        super().__init__(f"Result set has no column {column!r}", **kwargs)


class MissingPrimaryKeyError(KeelError):
    """A primary-key operation was requested for a descriptor without one."""

    default_category = ErrorCategory.MAPPING

    def __init__(self, table: str, message: str | None = None):
        self.table = table
        super().__init__(message or f"Table {table!r} has no primary key")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, KeelError):
        return error.retryable
    return False


def categorize_error(error: BaseException) -> ErrorCategory:
    """Return the category of any exception; foreign exceptions are UNKNOWN."""
    if isinstance(error, KeelError):
        return error.category
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "KeelError",
    # Build / render
    "InvalidExpressionError",
    "UnsupportedOperationError",
    "ConversionError",
    # Config
    "ConfigError",
    # Pool
    "PoolExhaustedError",
    "PoolClosedError",
    "ConnectionUnhealthyError",
    "DatabaseConnectionError",
    # Execution
    "DriverError",
    "IntegrityViolationError",
    "QueryCancelledError",
    "TransactionAbortedError",
    # Mapping
    "MissingColumnError",
    "MissingPrimaryKeyError",
    # Utilities
    "is_retryable",
    "categorize_error",
]
