"""
Thread-safe connection pool.

The pool hands out driver connections to one caller at a time, opens them
lazily up to ``max_size``, validates them before reuse and retires them on
failure, idle timeout or maximum lifetime.  It is generic over a
:class:`ConnectionProvider`; every :class:`~keel.drivers.Driver` is one.

Manifesto:
    - **Bounded:** never more than ``max_size`` live connections, counting
      the ones being opened
    - **Exclusive:** a connection belongs to the idle set or to exactly one
      caller
    - **Lock-free I/O:** opening, validating and closing connections happens
      outside the lock, on a connection the current thread owns
    - **Deterministic shutdown:** ``close()`` refuses new checkouts, waits
      for outstanding ones and closes everything

Architecture:
    ::

        checkout(timeout)
            │
            ├─ idle connection? ──▶ validate (outside lock) ──▶ hand out
            │                            │ stale/expired
            │                            ▼
            │                       close, retry
            ├─ live < max_size? ──▶ reserve slot, open (outside lock)
            └─ else wait on Condition until release() or deadline
                                         └──▶ PoolExhaustedError

        release(conn)
            ├─ healthy & not expired & pool open ──▶ back to idle, notify
            └─ otherwise ──▶ close, live -= 1, notify

        sweeper thread (optional, every sweep_interval)
            └─ sweep(): retire idle/expired/stale, top up to min_idle

Examples:
    >>> pool = ConnectionPool(SQLiteDriver(path="app.db"), PoolConfig(max_size=4))
    >>> with pool.checkout(timeout=2.0) as conn:
    ...     conn.raw.execute("SELECT 1")
    >>> pool.stats().in_use
    0
    >>> pool.close()

Guardrails:
    ❌ DON'T: keep using ``conn.raw`` after releasing it
    ✅ DO: use ``with pool.checkout() as conn:``

    ❌ DON'T: return a connection after a failed statement as if nothing happened
    ✅ DO: ``conn.mark_unhealthy()`` (the context manager does it for DriverError)

Tags:
    connection-pool, threading, resource-management, keel

Doc-Types:
    - API Reference
    - Concurrency Guide
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from keel.config import PoolConfig
from keel.errors import (
    ConnectionUnhealthyError,
    DatabaseConnectionError,
    DriverError,
    KeelError,
    PoolClosedError,
    PoolExhaustedError,
    QueryCancelledError,
)
from keel.logging import get_logger
from keel.telemetry import POOL_CHECKOUT, POOL_CONNECTION_CLOSED, POOL_CONNECTION_OPENED, TelemetryHub

logger = get_logger(__name__)


@runtime_checkable
class ConnectionProvider(Protocol):
    """Opens, probes and closes raw connections for a pool."""

    def open(self) -> Any: ...

    def is_alive(self, conn: Any) -> bool: ...

    def close(self, conn: Any) -> None: ...


@dataclass(eq=False)
class _Slot:
    raw: Any
    id: int
    created_at: float
    last_used: float


@dataclass(frozen=True)
class PoolStats:
    """
    Point-in-time pool counters.

    Attributes:
        size: Live connections (idle + in use, including ones being opened)
        idle: Connections waiting in the idle set
        in_use: Connections checked out
        waiting: Callers blocked in ``checkout()``
        max_size / min_idle: Configured bounds
        closed: Whether ``close()`` has been called
    """

    size: int
    idle: int
    in_use: int
    waiting: int
    max_size: int
    min_idle: int
    closed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "idle": self.idle,
            "in_use": self.in_use,
            "waiting": self.waiting,
            "max_size": self.max_size,
            "min_idle": self.min_idle,
            "healthy": not self.closed,
        }


class PooledConnection:
    """
    A connection checked out of a :class:`ConnectionPool`.

    Release it exactly once, with :meth:`release` or by leaving the
    ``with`` block.  A block that raises :class:`DriverError` or
    :class:`QueryCancelledError` marks the connection unhealthy so the pool
    destroys it instead of reusing it.
    """

    __slots__ = ("_pool", "_slot", "_healthy", "_released")

    def __init__(self, pool: ConnectionPool, slot: _Slot):
        self._pool = pool
        self._slot = slot
        self._healthy = True
        self._released = False

    def __repr__(self) -> str:
        state = "released" if self._released else ("healthy" if self._healthy else "unhealthy")
        return f"PooledConnection(id={self._slot.id}, {state})"

    @property
    def raw(self) -> Any:
        """The driver connection.

        Raises:
            ConnectionUnhealthyError: after release or once marked unhealthy
        """
        if self._released:
            raise ConnectionUnhealthyError(f"Connection {self._slot.id} was already returned to the pool")
        if not self._healthy:
            raise ConnectionUnhealthyError(f"Connection {self._slot.id} is marked unhealthy")
        return self._slot.raw

    @property
    def connection_id(self) -> int:
        return self._slot.id

    @property
    def healthy(self) -> bool:
        return self._healthy

    @property
    def released(self) -> bool:
        return self._released

    def mark_unhealthy(self) -> None:
        self._healthy = False

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._pool.release(self)

    def __enter__(self) -> PooledConnection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if isinstance(exc_val, DriverError) or (isinstance(exc_val, QueryCancelledError) and exc_val.sent):
            self.mark_unhealthy()
        self.release()


class ConnectionPool:
    """
    Bounded pool of connections from one provider.

    Args:
        provider: Opens/probes/closes raw connections (usually a Driver)
        config: Sizing and lifetimes; defaults to ``PoolConfig()``
        name: Label for logs and the sweeper thread
        telemetry: Hub that receives ``pool.*`` events
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        config: PoolConfig | None = None,
        *,
        name: str = "default",
        telemetry: TelemetryHub | None = None,
    ):
        self._provider = provider
        self._config = config or PoolConfig()
        self._name = name
        self._telemetry = telemetry or TelemetryHub()

        self._cond = threading.Condition()
        self._idle: deque[_Slot] = deque()
        self._live = 0
        self._in_use = 0
        self._waiting = 0
        self._closing = False
        self._ids = itertools.count(1)

        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None
        if self._config.sweep_interval is not None:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                name=f"keel-pool-sweeper-{name}",
                daemon=True,
            )
            self._sweeper.start()

    def __repr__(self) -> str:
        return f"ConnectionPool(name={self._name!r}, max_size={self._config.max_size})"

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closing

    # -- Checkout / release ------------------------------------------------

    def checkout(self, timeout: float | None = None) -> PooledConnection:
        """
        Check a validated connection out of the pool.

        Args:
            timeout: Seconds to wait; ``None`` uses ``config.checkout_timeout``

        Raises:
            PoolExhaustedError: No connection became available in time
            PoolClosedError: The pool is closed or closing
            DatabaseConnectionError: Opening a new connection failed
        """
        if timeout is None:
            timeout = self._config.checkout_timeout
        started = time.monotonic()
        deadline = started + timeout

        while True:
            slot: _Slot | None = None
            with self._cond:
                while True:
                    if self._closing:
                        raise PoolClosedError(f"Pool {self._name!r} is closed")
                    if self._idle:
                        # LIFO: the most recently returned connection is the warmest.
                        slot = self._idle.pop()
                        self._in_use += 1
                        break
                    if self._live < self._config.max_size:
                        self._live += 1
                        self._in_use += 1
                        break
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise PoolExhaustedError(
                            f"No connection available in pool {self._name!r} within {timeout:.3f}s"
                        ).with_context(operation="checkout", max_size=self._config.max_size)
                    self._waiting += 1
                    try:
                        self._cond.wait(remaining)
                    finally:
                        self._waiting -= 1

            if slot is None:
                slot = self._open_reserved()
            else:
                reason = self._retire_reason(slot, time.monotonic())
                if reason is None and self._config.validate_on_checkout and not self._probe(slot):
                    reason = "validation_failed"
                if reason is not None:
                    self._discard(slot, reason)
                    continue

            wait_ms = (time.monotonic() - started) * 1000
            self._telemetry.emit(POOL_CHECKOUT, wait_ms=wait_ms, connection_id=slot.id)
            logger.debug("pool_checkout", pool=self._name, connection_id=slot.id, wait_ms=round(wait_ms, 3))
            return PooledConnection(self, slot)

    def release(self, conn: PooledConnection) -> None:
        """Return a checked-out connection (``PooledConnection.release`` calls this)."""
        slot = conn._slot
        now = time.monotonic()
        with self._cond:
            self._in_use -= 1
            reason = None
            if not conn.healthy:
                reason = "unhealthy"
            elif self._closing:
                reason = "pool_closed"
            else:
                reason = self._retire_reason(slot, now, idle_check=False)
            if reason is None:
                slot.last_used = now
                self._idle.append(slot)
                self._cond.notify()
                return
        self._close_slot(slot, reason)

    # -- Maintenance -------------------------------------------------------

    def sweep(self) -> None:
        """Retire expired and stale idle connections, then top up to ``min_idle``."""
        now = time.monotonic()
        retired: list[tuple[_Slot, str]] = []
        candidates: list[_Slot] = []
        with self._cond:
            if self._closing:
                return
            keep: deque[_Slot] = deque()
            remaining_live = self._live
            for slot in self._idle:
                reason = self._retire_reason(slot, now, idle_check=False)
                if reason is None and self._is_idle_expired(slot, now) and remaining_live > self._config.min_idle:
                    reason = "idle_timeout"
                if reason is not None:
                    retired.append((slot, reason))
                    remaining_live -= 1
                else:
                    keep.append(slot)
            self._idle = deque()
            candidates = list(keep)

        for slot, reason in retired:
            self._close_slot(slot, reason)

        # Probe the survivors while this thread owns them.
        alive: list[_Slot] = []
        for slot in candidates:
            if self._probe(slot):
                alive.append(slot)
            else:
                self._close_slot(slot, "stale")
        with self._cond:
            closing = self._closing
            if not closing:
                # Oldest first so LIFO checkout still prefers recently used ones.
                self._idle.extendleft(reversed(alive))
                if alive:
                    self._cond.notify(len(alive))
        if closing:
            for slot in alive:
                self._close_slot(slot, "pool_closed")
            return

        self._top_up()

    def _top_up(self) -> None:
        while True:
            with self._cond:
                if self._closing or self._live >= self._config.min_idle or self._live >= self._config.max_size:
                    return
                self._live += 1
                self._in_use += 1
            try:
                slot = self._open_reserved()
            except KeelError as e:
                logger.warning("pool_top_up_failed", pool=self._name, error=str(e))
                return
            with self._cond:
                self._in_use -= 1
                closing = self._closing
                if not closing:
                    self._idle.appendleft(slot)
                    self._cond.notify()
            if closing:
                self._close_slot(slot, "pool_closed")
                return

    def _sweep_loop(self) -> None:
        interval = self._config.sweep_interval
        while not self._stop.wait(interval):
            try:
                self.sweep()
            except Exception as e:
                logger.error("pool_sweep_failed", pool=self._name, error=str(e), exc_info=True)

    def close(self, timeout: float | None = None) -> None:
        """
        Shut the pool down.

        New checkouts fail with :class:`PoolClosedError` immediately, and
        blocked callers are woken with the same error.  Waits up to
        ``timeout`` seconds (forever if ``None``) for outstanding
        connections to be returned; they are closed on return either way.
        """
        with self._cond:
            already = self._closing
            self._closing = True
            self._cond.notify_all()
            if not already:
                deadline = None if timeout is None else time.monotonic() + timeout
                while self._in_use > 0:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        logger.warning("pool_close_timeout", pool=self._name, outstanding=self._in_use)
                        break
                    self._cond.wait(remaining)
            idle = list(self._idle)
            self._idle.clear()

        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join()
        for slot in idle:
            self._close_slot(slot, "pool_closed")
        if not already:
            logger.info("pool_closed", pool=self._name)

    def stats(self) -> PoolStats:
        with self._cond:
            return PoolStats(
                size=self._live,
                idle=len(self._idle),
                in_use=self._in_use,
                waiting=self._waiting,
                max_size=self._config.max_size,
                min_idle=self._config.min_idle,
                closed=self._closing,
            )

    def __enter__(self) -> ConnectionPool:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -- Internals ---------------------------------------------------------

    def _is_idle_expired(self, slot: _Slot, now: float) -> bool:
        idle_timeout = self._config.idle_timeout
        return idle_timeout is not None and now - slot.last_used >= idle_timeout

    def _retire_reason(self, slot: _Slot, now: float, idle_check: bool = True) -> str | None:
        max_lifetime = self._config.max_lifetime
        if max_lifetime is not None and now - slot.created_at >= max_lifetime:
            return "max_lifetime"
        if idle_check and self._is_idle_expired(slot, now):
            return "idle_timeout"
        return None

    def _probe(self, slot: _Slot) -> bool:
        try:
            return bool(self._provider.is_alive(slot.raw))
        except Exception as e:
            logger.warning("pool_probe_failed", pool=self._name, connection_id=slot.id, error=str(e))
            return False

    def _open_reserved(self) -> _Slot:
        """Open a connection for a slot already counted in ``_live`` and ``_in_use``."""
        try:
            raw = self._provider.open()
        except BaseException as e:
            with self._cond:
                self._live -= 1
                self._in_use -= 1
                self._cond.notify()
            if isinstance(e, KeelError) or not isinstance(e, Exception):
                raise
            raise DatabaseConnectionError(f"Failed to open connection: {e}", cause=e) from e
        now = time.monotonic()
        slot = _Slot(raw=raw, id=next(self._ids), created_at=now, last_used=now)
        self._telemetry.emit(POOL_CONNECTION_OPENED, connection_id=slot.id)
        logger.debug("pool_connection_opened", pool=self._name, connection_id=slot.id)
        return slot

    def _discard(self, slot: _Slot, reason: str) -> None:
        """Close a connection taken from idle during checkout."""
        with self._cond:
            self._in_use -= 1
        self._close_slot(slot, reason)

    def _close_slot(self, slot: _Slot, reason: str) -> None:
        """Close a connection this thread owns, then free its slot."""
        try:
            self._provider.close(slot.raw)
        except Exception as e:
            logger.warning("pool_close_connection_failed", pool=self._name, connection_id=slot.id, error=str(e))
        finally:
            with self._cond:
                self._live -= 1
                self._cond.notify_all()
        self._telemetry.emit(POOL_CONNECTION_CLOSED, connection_id=slot.id, reason=reason)
        logger.debug("pool_connection_closed", pool=self._name, connection_id=slot.id, reason=reason)


__all__ = [
    "ConnectionProvider",
    "ConnectionPool",
    "PooledConnection",
    "PoolStats",
]
