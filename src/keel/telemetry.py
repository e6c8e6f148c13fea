"""Synchronous in-process telemetry hub.

The pool and the executor emit small events at the points an operator cares
about: how long a checkout waited, how long rendering and execution took,
which connections were opened or closed and why.  Subscribers register a
plain callable for an event pattern; with no subscribers, emitting is a
no-op.

Events
------
pool.checkout             wait_ms
pool.connection_opened    connection_id
pool.connection_closed    connection_id, reason
statement.render          render_ms, sql
statement.execute         duration_ms, rowcount
statement.error           error_kind, sql

Usage::

    from keel.telemetry import TelemetryHub

    hub = TelemetryHub()
    hub.subscribe("statement.*", lambda event: print(event.name, event.attributes))
    engine = Engine.from_config(config, telemetry=hub)
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from keel.logging import get_logger

logger = get_logger(__name__)

POOL_CHECKOUT = "pool.checkout"
POOL_CONNECTION_OPENED = "pool.connection_opened"
POOL_CONNECTION_CLOSED = "pool.connection_closed"
STATEMENT_RENDER = "statement.render"
STATEMENT_EXECUTE = "statement.execute"
STATEMENT_ERROR = "statement.error"


@dataclass(frozen=True)
class TelemetryEvent:
    """A single telemetry observation.

    Attributes:
        name: Dot-separated event name (e.g. ``pool.checkout``)
        attributes: Event-specific fields; never contains bind values
        engine: Engine tag the event came from, if known
        timestamp: Wall-clock time of emission (``time.time()``)
    """

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    engine: str | None = None
    timestamp: float = field(default_factory=time.time)

    def matches(self, pattern: str) -> bool:
        """Check if the event name matches a pattern.

        ``*`` matches everything, ``pool.*`` matches every pool event, and
        anything else must match exactly.
        """
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            return self.name.startswith(pattern[:-1])
        return self.name == pattern


Subscriber = Callable[[TelemetryEvent], None]


@dataclass
class _Subscription:
    id: str
    pattern: str
    handler: Subscriber


class TelemetryHub:
    """Fan-out of telemetry events to subscribers.

    Handlers run synchronously on the emitting thread, outside the hub lock.
    A handler that raises is logged and skipped; delivery to the remaining
    handlers continues and the emitting operation is unaffected.
    """

    def __init__(self, engine: str | None = None) -> None:
        self._engine = engine
        self._subscriptions: dict[str, _Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self, pattern: str, handler: Subscriber) -> str:
        """Register ``handler`` for events matching ``pattern``.

        Returns:
            Subscription ID for :meth:`unsubscribe`
        """
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._subscriptions[sub_id] = _Subscription(sub_id, pattern, handler)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(subscription_id, None)

    def emit(self, name: str, **attributes: Any) -> None:
        if not self._subscriptions:
            return
        event = TelemetryEvent(name=name, attributes=attributes, engine=self._engine)
        with self._lock:
            targets = [s for s in self._subscriptions.values() if event.matches(s.pattern)]
        for sub in targets:
            try:
                sub.handler(event)
            except Exception as e:
                logger.warning(
                    "telemetry_subscriber_error",
                    subscription_id=sub.id,
                    event_name=name,
                    error=str(e),
                )

    def bind_engine(self, engine: str) -> TelemetryHub:
        """Return a hub sharing these subscriptions that stamps ``engine`` on events."""
        bound = TelemetryHub.__new__(TelemetryHub)
        bound._engine = engine
        bound._subscriptions = self._subscriptions
        bound._lock = self._lock
        return bound

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)


__all__ = [
    "TelemetryEvent",
    "TelemetryHub",
    "Subscriber",
    "POOL_CHECKOUT",
    "POOL_CONNECTION_OPENED",
    "POOL_CONNECTION_CLOSED",
    "STATEMENT_RENDER",
    "STATEMENT_EXECUTE",
    "STATEMENT_ERROR",
]
