"""Keel -- a lightweight ORM core for SQLite, MySQL and PostgreSQL.

Manifesto:
    Applications need to build queries safely, run them against more than
    one engine, and get typed values back, without adopting a full ORM.
    Keel is the small core that does exactly that: every value travels as a
    bind, every engine difference lives in a dialect, and every connection
    comes from a bounded pool.

    - **Values, not strings:** user data is always bound, never spliced into SQL
    - **One tree, three dialects:** the same descriptor renders per engine
    - **Bounded and honest:** the pool never exceeds its size and errors
      say what went wrong and whether a retry could help
    - **Sync-first:** plain threads; no event loop required

Architecture::

    Layer 1 -- Types & Errors
        errors.py          KeelError hierarchy with categories and context
        values.py          Value (tagged scalar) + per-dialect codecs

    Layer 2 -- Query Construction
        query/             Condition trees, Select/Insert/Update/Delete
        dialect.py         Quoting, placeholders, pagination, rendering

    Layer 3 -- Connectivity
        config.py          DatabaseConfig (URLs) + PoolConfig
        drivers/           sqlite3, mysql-connector, psycopg2 drivers
        pool.py            Bounded, thread-safe connection pool

    Layer 4 -- Execution
        executor.py        Engine, Executor, Transaction, ResultSet
        mapping.py         TableDescriptor / RecordMapper + @table
        repository.py      Repository[T] CRUD helpers

    Layer 5 -- Cross-Cutting Concerns
        logging.py         structlog configuration
        settings.py        KEEL_* environment settings (pydantic-settings)
        telemetry.py       In-process event hooks

Quick start::

    from keel import Engine, Executor, col, select

    engine = Engine.from_config("sqlite:///app.db")
    db = Executor(engine)
    rows = db.execute(select("users", "id", "name").where(col("age") >= 18))
"""

from keel.config import DatabaseConfig, DatabaseType, PoolConfig
from keel.dialect import (
    MySQLDialect,
    PostgreSQLDialect,
    SQLDialect,
    SQLiteDialect,
    get_dialect,
    register_dialect,
)
from keel.errors import (
    ConfigError,
    ConnectionUnhealthyError,
    ConversionError,
    DatabaseConnectionError,
    DriverError,
    ErrorCategory,
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
)
from keel.executor import Engine, Executor, ResultSet, Transaction, TransactionOutcome
from keel.logging import configure_logging, get_logger
from keel.mapping import DataclassMapper, FieldSpec, RecordMapper, TableDescriptor, table
from keel.pool import ConnectionPool, PoolStats
from keel.query import (
    and_,
    between,
    col,
    delete,
    equals,
    greater,
    greater_or_equal,
    ilike,
    in_set,
    insert,
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
    select,
    update,
)
from keel.repository import Repository
from keel.telemetry import TelemetryEvent, TelemetryHub
from keel.values import Value, ValueKind

__version__ = "0.1.0"

__all__ = [
    # Config
    "DatabaseConfig",
    "DatabaseType",
    "PoolConfig",
    # Dialects
    "SQLDialect",
    "SQLiteDialect",
    "MySQLDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "register_dialect",
    # Errors
    "KeelError",
    "ErrorCategory",
    "InvalidExpressionError",
    "UnsupportedOperationError",
    "ConversionError",
    "ConfigError",
    "PoolExhaustedError",
    "PoolClosedError",
    "ConnectionUnhealthyError",
    "DatabaseConnectionError",
    "DriverError",
    "IntegrityViolationError",
    "QueryCancelledError",
    "TransactionAbortedError",
    "MissingColumnError",
    "MissingPrimaryKeyError",
    # Execution
    "Engine",
    "Executor",
    "ResultSet",
    "Transaction",
    "TransactionOutcome",
    "ConnectionPool",
    "PoolStats",
    # Mapping
    "FieldSpec",
    "TableDescriptor",
    "RecordMapper",
    "DataclassMapper",
    "table",
    "Repository",
    # Query
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
    "select",
    "insert",
    "update",
    "delete",
    # Values
    "Value",
    "ValueKind",
    # Cross-cutting
    "configure_logging",
    "get_logger",
    "TelemetryEvent",
    "TelemetryHub",
    "__version__",
]
