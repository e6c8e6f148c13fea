"""Driver base class.

Manifesto:
    The pool and executor only ever talk to a :class:`Driver`.  Each engine
    implements the small capability set keel relies on (connect, execute,
    transaction control, ping, interrupt, close, error translation) so
    nothing above this layer imports a DB-API module.

Features:
    - Abstract ``connect()`` and ``base_error()``
    - Shared ``execute()`` that always closes its cursor and returns a
      detached :class:`DriverResult`
    - ``open`` / ``is_alive`` / ``close`` so a driver is directly usable as a
      pool ``ConnectionProvider``
    - Explicit BEGIN / COMMIT / ROLLBACK: connections run in autocommit mode
      and keel issues transaction control itself

Tags:
    keel, database, driver, abstract-base, adapter-pattern

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from keel.config import DatabaseConfig, DatabaseType
from keel.dialect import Dialect, get_dialect
from keel.errors import DriverError
from keel.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DriverResult:
    """
    Everything a statement produced, detached from the cursor.

    Attributes:
        columns: Result column names (empty for statements without a result set)
        rows: Result rows as tuples of driver-native values
        rowcount: Affected rows for DML, -1 when the driver does not know
        lastrowid: Generated id of the last inserted row, when reported
    """

    columns: list[str] = field(default_factory=list)
    rows: list[tuple[Any, ...]] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: int | None = None

    @property
    def has_result_set(self) -> bool:
        return bool(self.columns)


class Driver(ABC):
    """
    Abstract base class for engine drivers.

    A driver is stateless apart from its configuration: every method takes
    the connection it operates on.
    """

    name: str = "generic"

    def __init__(self, config: DatabaseConfig):
        self._config = config
        self._dialect: Dialect = get_dialect(config.db_type)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._config.to_url(redact=True)!r})"

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def dialect(self) -> Dialect:
        """SQL dialect for this driver's engine."""
        return self._dialect

    @property
    def db_type(self) -> DatabaseType:
        return self._config.db_type

    # -- Abstract ----------------------------------------------------------

    @abstractmethod
    def connect(self) -> Any:
        """Open a new DB-API connection in autocommit mode.

        Raises:
            ConfigError: If the DB-API module is not installed
            DatabaseConnectionError: If the engine refuses the connection
        """
        ...

    @abstractmethod
    def base_error(self) -> type[BaseException] | tuple[type[BaseException], ...]:
        """The DB-API ``Error`` class(es) this driver translates."""
        ...

    # -- Execution ---------------------------------------------------------

    def execute(self, conn: Any, sql: str, params: Sequence[Any] = ()) -> DriverResult:
        """Run one statement and return its detached result."""
        try:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, tuple(params))
                if cursor.description:
                    columns = [d[0] for d in cursor.description]
                    rows = [tuple(r) for r in cursor.fetchall()]
                else:
                    columns, rows = [], []
                return DriverResult(
                    columns=columns,
                    rows=rows,
                    rowcount=cursor.rowcount if cursor.rowcount is not None else -1,
                    lastrowid=self._lastrowid(cursor),
                )
            finally:
                cursor.close()
        except self.base_error() as e:
            raise self.translate_error(e) from e

    def _lastrowid(self, cursor: Any) -> int | None:
        return getattr(cursor, "lastrowid", None) or None

    def begin(self, conn: Any) -> None:
        self.execute(conn, self._dialect.begin_statement())

    def commit(self, conn: Any) -> None:
        self.execute(conn, self._dialect.commit_statement())

    def rollback(self, conn: Any) -> None:
        self.execute(conn, self._dialect.rollback_statement())

    def ping(self, conn: Any) -> bool:
        """Cheap liveness probe; never raises."""
        try:
            self.execute(conn, "SELECT 1")
        except DriverError:
            return False
        return True

    def interrupt(self, conn: Any) -> bool:
        """Abort the statement running on ``conn`` from another thread.

        Returns:
            True if the driver sent an interrupt, False if it cannot.
        """
        return False

    def close(self, conn: Any) -> None:
        """Close a connection; failures are logged, not raised."""
        try:
            conn.close()
        except Exception as e:
            logger.warning("driver_close_failed", engine=self.name, error=str(e))

    def translate_error(self, exc: BaseException) -> DriverError:
        """Wrap a DB-API exception in :class:`DriverError`."""
        return DriverError(f"{self.name}: {exc}", cause=exc).with_context(engine=self.name)  # type: ignore[return-value]

    # -- ConnectionProvider ------------------------------------------------

    def open(self) -> Any:
        return self.connect()

    def is_alive(self, conn: Any) -> bool:
        return self.ping(conn)


__all__ = [
    "Driver",
    "DriverResult",
]
