"""
Statement execution and transactions.

The :class:`Executor` is where the pieces meet: it renders a descriptor with
the engine's dialect, checks a connection out of the pool, converts binds to
driver-native values, runs the statement, decodes the result and returns
the connection.  :class:`Transaction` does the same on one connection held
from BEGIN to COMMIT/ROLLBACK.

Manifesto:
    - **Render before checkout:** malformed or unsupported statements fail
      without touching the pool
    - **Poisoned connections never return:** a connection involved in a
      driver error or a cancellation is destroyed on release
    - **All-or-nothing:** ``execute_in_transaction`` commits every step or
      rolls all of them back and raises :class:`TransactionAbortedError`
      carrying the original failure
    - **Rollback by default:** an unresolved transaction rolls back; keel
      never commits implicitly
    - **No retries:** errors say whether a retry could help; the caller decides

Architecture:
    ::

        Executor.execute(stmt, timeout, cancel)
            │ dialect.render(stmt)            ── statement.render
            │ pool.checkout(timeout)          ── pool.checkout
            │ codec.encode(binds)
            │ driver.execute(sql, params)     ── statement.execute / statement.error
            │     └─ watchdog: cancel/timeout ─▶ driver.interrupt()
            │ codec.decode(rows)
            ▼ release (destroy if unhealthy)
        ResultSet | rowcount

Examples:
    >>> engine = Engine.from_config("sqlite:///tmp/app.db")
    >>> db = Executor(engine)
    >>> db.execute_raw("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
    >>> db.execute(insert("t", {"name": "ann"}))
    1
    >>> db.execute(select("t").where(col("name") == "ann")).first()
    (Value(int64, 1), Value(text, 'ann'))
    >>> with db.transaction() as tx:
    ...     tx.execute(update("t", {"name": "bob"}).where(col("id") == 1))
    ...     tx.commit()

Guardrails:
    ❌ DON'T: share a Transaction between threads
    ✅ DO: give each thread its own ``executor.transaction()``

    ❌ DON'T: rely on a transaction committing when the block ends
    ✅ DO: call ``tx.commit()`` explicitly

Tags:
    executor, transactions, cancellation, keel

Doc-Types:
    - API Reference
    - Transactions Guide
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from keel.config import DatabaseConfig, PoolConfig
from keel.dialect import Dialect
from keel.drivers import Driver, DriverResult, get_driver
from keel.errors import (
    ConnectionUnhealthyError,
    DriverError,
    InvalidExpressionError,
    KeelError,
    MissingColumnError,
    QueryCancelledError,
    TransactionAbortedError,
)
from keel.logging import get_logger
from keel.mapping import RecordMapper, TableDescriptor, descriptor_of, mapper_of
from keel.pool import ConnectionPool, PooledConnection
from keel.query.statements import BoundStatement, Delete, Insert, Select, Update
from keel.settings import KeelSettings, get_settings
from keel.telemetry import STATEMENT_ERROR, STATEMENT_EXECUTE, STATEMENT_RENDER, TelemetryHub
from keel.values import Value

logger = get_logger(__name__)

# How often the watchdog checks the cancel event and the deadline.
_WATCH_INTERVAL = 0.01


# =============================================================================
# ENGINE
# =============================================================================


@dataclass
class Engine:
    """
    One configured database: engine tag, dialect, driver and pool.

    Build it with :meth:`from_config` and close it when the application
    shuts down.
    """

    tag: str
    dialect: Dialect
    driver: Driver
    pool: ConnectionPool
    telemetry: TelemetryHub = field(default_factory=TelemetryHub)

    @classmethod
    def from_config(
        cls,
        config: DatabaseConfig | str,
        pool_config: PoolConfig | None = None,
        *,
        telemetry: TelemetryHub | None = None,
        name: str | None = None,
    ) -> Engine:
        """Build an engine from a :class:`DatabaseConfig` or a URL."""
        if isinstance(config, str):
            config = DatabaseConfig.from_url(config)
        driver = get_driver(config)
        tag = driver.dialect.name
        hub = (telemetry or TelemetryHub()).bind_engine(tag)
        pool = ConnectionPool(driver, pool_config, name=name or tag, telemetry=hub)
        logger.info("engine_created", engine=tag, url=config.to_url(redact=True))
        return cls(tag=tag, dialect=driver.dialect, driver=driver, pool=pool, telemetry=hub)

    @classmethod
    def from_settings(cls, settings: KeelSettings | None = None, *, telemetry: TelemetryHub | None = None) -> Engine:
        """Build an engine from ``KEEL_*`` settings (``get_settings()`` by default)."""
        settings = settings or get_settings()
        return cls.from_config(settings.database_config(), settings.pool_config(), telemetry=telemetry)

    def close(self, timeout: float | None = None) -> None:
        self.pool.close(timeout)

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class ResultSet:
    """
    Decoded rows of a statement.

    Attributes:
        columns: Column names in result order
        rows: One tuple of :class:`Value` per row
        rowcount: Rows affected or returned, -1 when unknown
        lastrowid: Generated key of the last inserted row, when reported
    """

    columns: list[str] = field(default_factory=list)
    rows: list[tuple[Value, ...]] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: int | None = None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[tuple[Value, ...]]:
        return iter(self.rows)

    def first(self) -> tuple[Value, ...] | None:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """Python value of the first column of the first row (``None`` if empty)."""
        row = self.first()
        return row[0].data if row else None

    def dicts(self) -> list[dict[str, Any]]:
        """Rows as ``{column: python value}``."""
        return [{c: v.data for c, v in zip(self.columns, row)} for row in self.rows]


@dataclass
class TransactionOutcome:
    """Results of ``execute_in_transaction``: one entry per operation, in order."""

    results: list[Any]
    committed: bool = True


StatementLike = Select | Insert | Update | Delete | BoundStatement


# =============================================================================
# SHARED EXECUTION PATH
# =============================================================================


class _Runner:
    """Rendering, binding, execution and decoding shared by Executor and Transaction."""

    _engine: Engine

    def _render(self, statement: StatementLike) -> BoundStatement:
        if isinstance(statement, BoundStatement):
            return statement
        started = time.perf_counter()
        bound = self._engine.dialect.render(statement)
        render_ms = (time.perf_counter() - started) * 1000
        self._engine.telemetry.emit(STATEMENT_RENDER, render_ms=render_ms, sql=bound.sql)
        return bound

    def _run_on(
        self,
        conn: PooledConnection,
        raw: Any,
        bound: BoundStatement,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> DriverResult:
        engine = self._engine
        codec = engine.dialect.codec
        params = [codec.encode(v) for v in bound.binds]

        if cancel is not None and cancel.is_set():
            raise QueryCancelledError("Statement cancelled before it was sent", sent=False).with_context(
                engine=engine.tag, statement=bound.shape()
            )

        fired = threading.Event()
        done = threading.Event()
        watchdog = None
        if timeout is not None or cancel is not None:
            watchdog = threading.Thread(
                target=self._watch,
                args=(raw, timeout, cancel, done, fired),
                name="keel-statement-watchdog",
                daemon=True,
            )
            watchdog.start()

        started = time.perf_counter()
        try:
            result = engine.driver.execute(raw, bound.sql, params)
        except DriverError as e:
            conn.mark_unhealthy()
            self._stop_watchdog(watchdog, done)
            if fired.is_set():
                raise QueryCancelledError(
                    "Statement cancelled while in flight", sent=True, cause=e
                ).with_context(engine=engine.tag, statement=bound.shape()) from e
            engine.telemetry.emit(STATEMENT_ERROR, error_kind=type(e).__name__, sql=bound.sql)
            logger.warning("statement_failed", engine=engine.tag, sql=bound.sql, error=e.message)
            e.with_context(engine=engine.tag, statement=bound.shape())
            raise
        except BaseException as e:
            # Unknown statement state: the connection must not be reused.
            conn.mark_unhealthy()
            self._stop_watchdog(watchdog, done)
            logger.warning(
                "statement_aborted", engine=engine.tag, sql=bound.sql, error_kind=type(e).__name__
            )
            raise
        self._stop_watchdog(watchdog, done)
        if fired.is_set():
            # The interrupt raced with completion; the connection may still
            # receive it, so it must not be reused.
            conn.mark_unhealthy()

        duration_ms = (time.perf_counter() - started) * 1000
        engine.telemetry.emit(STATEMENT_EXECUTE, duration_ms=duration_ms, rowcount=result.rowcount)
        logger.debug(
            "statement_executed",
            engine=engine.tag,
            sql=bound.sql,
            duration_ms=round(duration_ms, 3),
            rowcount=result.rowcount,
        )
        return result

    @staticmethod
    def _stop_watchdog(watchdog: threading.Thread | None, done: threading.Event) -> None:
        done.set()
        if watchdog is not None:
            watchdog.join()

    def _watch(
        self,
        raw: Any,
        timeout: float | None,
        cancel: threading.Event | None,
        done: threading.Event,
        fired: threading.Event,
    ) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not done.is_set():
            if cancel is not None and cancel.is_set():
                break
            if deadline is not None and time.monotonic() >= deadline:
                break
            done.wait(_WATCH_INTERVAL)
        else:
            return
        fired.set()
        try:
            interrupted = self._engine.driver.interrupt(raw)
        except Exception as e:
            logger.warning("statement_interrupt_failed", engine=self._engine.tag, error=str(e))
            return
        logger.info("statement_interrupted", engine=self._engine.tag, delivered=interrupted)

    def _to_result_set(self, result: DriverResult) -> ResultSet:
        codec = self._engine.dialect.codec
        rows = [tuple(codec.decode(v) for v in row) for row in result.rows]
        return ResultSet(result.columns, rows, result.rowcount, result.lastrowid)

    @staticmethod
    def _unwrap(result: ResultSet, had_result_set: bool) -> ResultSet | int:
        return result if had_result_set else result.rowcount

    def _decode_records(
        self,
        result: DriverResult,
        descriptor: TableDescriptor,
        mapper: RecordMapper,
    ) -> list[Any]:
        codec = self._engine.dialect.codec
        index = {name: i for i, name in enumerate(result.columns)}
        positions = []
        for spec in descriptor.fields:
            if spec.column not in index:
                raise MissingColumnError(spec.column, available=list(result.columns)).with_context(
                    engine=self._engine.tag, table=descriptor.table
                )
            positions.append((spec, index[spec.column]))
        records = []
        for row in result.rows:
            values = {spec.column: codec.decode(row[i], spec.kind) for spec, i in positions}
            records.append(mapper.decode_row(values, descriptor))
        return records

    @staticmethod
    def _resolve(target: Any, mapper: RecordMapper | None) -> tuple[TableDescriptor, RecordMapper]:
        if isinstance(target, TableDescriptor):
            if mapper is None:
                raise InvalidExpressionError("A RecordMapper is required with a bare TableDescriptor")
            return target, mapper
        return descriptor_of(target), mapper or mapper_of(target)

    @staticmethod
    def _projected(select: Select, descriptor: TableDescriptor) -> Select:
        if select.columns is None and not select.is_count:
            return select.select(*descriptor.columns)
        return select


# =============================================================================
# EXECUTOR
# =============================================================================


class Executor(_Runner):
    """
    Runs statements against an :class:`Engine`, one pooled connection per call.

    Thread-safe: concurrent calls check out separate connections, bounded by
    the pool size.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    def __repr__(self) -> str:
        return f"Executor(engine={self._engine.tag!r})"

    @property
    def engine(self) -> Engine:
        return self._engine

    def _checkout(
        self, timeout: float | None, cancel: threading.Event | None
    ) -> tuple[PooledConnection, float | None]:
        """Check out within the caller's budget; return the connection and the time left."""
        if cancel is not None and cancel.is_set():
            raise QueryCancelledError("Statement cancelled before checkout", sent=False).with_context(
                engine=self._engine.tag
            )
        pool = self._engine.pool
        if timeout is None:
            return pool.checkout(), None
        started = time.monotonic()
        conn = pool.checkout(min(timeout, pool.config.checkout_timeout))
        return conn, max(timeout - (time.monotonic() - started), 0.0)

    def run(
        self,
        statement: StatementLike,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ResultSet:
        """Execute and always return a :class:`ResultSet` (empty for DML)."""
        bound = self._render(statement)
        conn, remaining = self._checkout(timeout, cancel)
        with conn:
            result = self._run_on(conn, conn.raw, bound, remaining, cancel)
        return self._to_result_set(result)

    def execute(
        self,
        statement: StatementLike,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ResultSet | int:
        """
        Execute a statement.

        Args:
            statement: Descriptor or pre-rendered :class:`BoundStatement`
            timeout: Seconds for the whole call; waiting for a connection
                counts against it and the statement is interrupted when it runs out
            cancel: Set it from another thread to cancel the statement; if it
                is already set, no connection is checked out

        Returns:
            A :class:`ResultSet` for statements producing rows, otherwise the
            affected-row count.

        Raises:
            InvalidExpressionError / UnsupportedOperationError: before checkout
            PoolExhaustedError: no connection in time
            DriverError: the engine rejected the statement
            QueryCancelledError: ``cancel`` was set or ``timeout`` elapsed
        """
        result = self.run(statement, timeout=timeout, cancel=cancel)
        return self._unwrap(result, bool(result.columns))

    def execute_raw(
        self,
        sql: str,
        binds: Iterable[Any] = (),
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ResultSet | int:
        """Execute hand-written SQL with ``?`` bind markers."""
        bound = self._engine.dialect.render_raw(sql, binds)
        return self.execute(bound, timeout=timeout, cancel=cancel)

    def fetch(
        self,
        select: Select,
        target: Any,
        mapper: RecordMapper | None = None,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[Any]:
        """
        Run a SELECT and decode each row into a record.

        ``target`` is a ``@table`` class or a :class:`TableDescriptor` (then
        ``mapper`` is required).  A SELECT without explicit columns projects
        the descriptor's columns.
        """
        descriptor, mapper = self._resolve(target, mapper)
        bound = self._render(self._projected(select, descriptor))
        conn, remaining = self._checkout(timeout, cancel)
        with conn:
            result = self._run_on(conn, conn.raw, bound, remaining, cancel)
        return self._decode_records(result, descriptor, mapper)

    def fetch_one(
        self,
        select: Select,
        target: Any,
        mapper: RecordMapper | None = None,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Any | None:
        if select.limit_value is None:
            select = select.limit(1)
        records = self.fetch(select, target, mapper, timeout=timeout, cancel=cancel)
        return records[0] if records else None

    def transaction(self, *, timeout: float | None = None) -> Transaction:
        """Check out a connection and BEGIN; use as a context manager.

        ``timeout`` bounds the wait for a connection (default
        ``PoolConfig.checkout_timeout``).
        """
        conn = self._engine.pool.checkout(timeout)
        raw = conn.raw
        try:
            self._engine.driver.begin(raw)
        except DriverError:
            conn.mark_unhealthy()
            conn.release()
            raise
        return Transaction(self._engine, conn, raw)

    def execute_in_transaction(self, operations: Sequence[Callable[[Transaction], Any]]) -> TransactionOutcome:
        """
        Run ``operations`` in order on one transaction and commit.

        Each operation is called with the :class:`Transaction`; its return
        value is collected into the outcome.

        Raises:
            TransactionAbortedError: an operation (or the commit) failed; the
                transaction was rolled back.  ``cause`` is the original error
                and ``rollback_error`` holds a failed rollback, if any.
        """
        tx = self.transaction()
        results: list[Any] = []
        for step, operation in enumerate(operations):
            try:
                results.append(operation(tx))
            except Exception as e:
                rollback_error = tx._abort()
                logger.warning(
                    "transaction_aborted",
                    engine=self._engine.tag,
                    failed_step=step,
                    error=str(e),
                    rollback_failed=rollback_error is not None,
                )
                raise TransactionAbortedError(
                    f"Transaction aborted at step {step}: {e}",
                    failed_step=step,
                    rollback_error=rollback_error,
                    cause=e,
                ).with_context(engine=self._engine.tag) from e
        tx.commit()
        return TransactionOutcome(results=results, committed=True)


# =============================================================================
# TRANSACTION
# =============================================================================


class Transaction(_Runner):
    """
    A transaction holding one pooled connection until it is resolved.

    Operations run strictly in order on the same connection.  Leaving the
    ``with`` block without :meth:`commit` rolls back.  After a driver error
    the transaction only accepts :meth:`rollback`.
    """

    def __init__(self, engine: Engine, conn: PooledConnection, raw: Any):
        self._engine = engine
        self._conn = conn
        self._raw = raw
        self._state = "active"

    def __repr__(self) -> str:
        return f"Transaction(engine={self._engine.tag!r}, state={self._state})"

    @property
    def state(self) -> str:
        """``active``, ``failed``, ``committed`` or ``rolled_back``."""
        return self._state

    @property
    def active(self) -> bool:
        return self._state == "active"

    def _ensure_usable(self) -> None:
        if self._state == "failed":
            raise ConnectionUnhealthyError("Transaction connection failed; roll back the transaction")
        if self._state != "active":
            raise ConnectionUnhealthyError(f"Transaction is already {self._state}")

    def _exec(self, bound: BoundStatement, timeout: float | None, cancel: threading.Event | None) -> DriverResult:
        self._ensure_usable()
        try:
            result = self._run_on(self._conn, self._raw, bound, timeout, cancel)
        except BaseException:
            if not self._conn.healthy:
                self._state = "failed"
            raise
        if not self._conn.healthy:
            # A late interrupt may still land on the next statement.
            self._state = "failed"
        return result

    def run(
        self,
        statement: StatementLike,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ResultSet:
        bound = self._render(statement)
        return self._to_result_set(self._exec(bound, timeout, cancel))

    def execute(
        self,
        statement: StatementLike,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ResultSet | int:
        result = self.run(statement, timeout=timeout, cancel=cancel)
        return self._unwrap(result, bool(result.columns))

    def execute_raw(
        self,
        sql: str,
        binds: Iterable[Any] = (),
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ResultSet | int:
        bound = self._engine.dialect.render_raw(sql, binds)
        return self.execute(bound, timeout=timeout, cancel=cancel)

    def fetch(
        self,
        select: Select,
        target: Any,
        mapper: RecordMapper | None = None,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[Any]:
        descriptor, mapper = self._resolve(target, mapper)
        bound = self._render(self._projected(select, descriptor))
        return self._decode_records(self._exec(bound, timeout, cancel), descriptor, mapper)

    def fetch_one(
        self,
        select: Select,
        target: Any,
        mapper: RecordMapper | None = None,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Any | None:
        if select.limit_value is None:
            select = select.limit(1)
        records = self.fetch(select, target, mapper, timeout=timeout, cancel=cancel)
        return records[0] if records else None

    def commit(self) -> None:
        """
        Commit and return the connection.

        Raises:
            TransactionAbortedError: the transaction had failed, or COMMIT
                itself failed; it was rolled back either way
        """
        if self._state == "failed":
            rollback_error = self._abort()
            raise TransactionAbortedError(
                "Cannot commit a failed transaction; it was rolled back",
                rollback_error=rollback_error,
            ).with_context(engine=self._engine.tag)
        self._ensure_usable()
        try:
            self._engine.driver.commit(self._raw)
        except DriverError as e:
            self._conn.mark_unhealthy()
            self._state = "failed"
            rollback_error = self._abort()
            raise TransactionAbortedError(
                f"Commit failed: {e.message}", rollback_error=rollback_error, cause=e
            ).with_context(engine=self._engine.tag) from e
        self._state = "committed"
        self._conn.release()

    def rollback(self) -> None:
        """Roll back and return the connection.

        Raises:
            DriverError: ROLLBACK failed (the connection is destroyed)
        """
        if self._state in ("committed", "rolled_back"):
            return
        error = self._abort()
        if error is not None:
            raise error

    def _abort(self) -> KeelError | None:
        """Roll back, release, and return the rollback error instead of raising it."""
        if self._state in ("committed", "rolled_back"):
            return None
        error: KeelError | None = None
        try:
            self._engine.driver.rollback(self._raw)
        except DriverError as e:
            self._conn.mark_unhealthy()
            error = e
            logger.error("transaction_rollback_failed", engine=self._engine.tag, error=e.message)
        self._state = "rolled_back"
        self._conn.release()
        return error

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._state in ("committed", "rolled_back"):
            return
        if exc_val is None:
            logger.warning("transaction_unresolved", engine=self._engine.tag, action="rollback")
        rollback_error = self._abort()
        if rollback_error is not None and exc_val is None:
            raise rollback_error

    def __del__(self) -> None:
        if getattr(self, "_state", None) in ("active", "failed"):
            logger.warning("transaction_garbage_collected", engine=self._engine.tag, action="destroy_connection")
            # Closing the connection discards the open transaction server-side.
            self._conn.mark_unhealthy()
            self._conn.release()


__all__ = [
    "Engine",
    "Executor",
    "ResultSet",
    "Transaction",
    "TransactionOutcome",
]
