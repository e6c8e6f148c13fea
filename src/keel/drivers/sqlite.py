"""SQLite driver."""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from keel.config import DatabaseConfig, DatabaseType
from keel.errors import DatabaseConnectionError, DriverError, IntegrityViolationError
from keel.logging import get_logger

from .base import Driver

logger = get_logger(__name__)


class SQLiteDriver(Driver):
    """
    SQLite driver on the built-in sqlite3 module.

    Suitable for:
    - Development and testing
    - Embedded, single-host deployments

    Connections are opened with ``check_same_thread=False`` (the pool hands
    them between threads, never to two at once) and ``isolation_level=None``
    so keel controls transactions explicitly.  An in-memory database is
    opened as a named shared-cache database, so every pooled connection sees
    the same data for as long as one of them stays open.
    """

    name = "sqlite"

    def __init__(self, config: DatabaseConfig | None = None, *, path: str | None = None, **options: Any):
        if config is None:
            config = DatabaseConfig(db_type=DatabaseType.SQLITE, path=path or ":memory:", options=options)
        super().__init__(config)
        self._shared_memory_uri: str | None = None
        if (config.path or ":memory:") == ":memory:":
            self._shared_memory_uri = f"file:keel-{uuid.uuid4().hex}?mode=memory&cache=shared"

    def base_error(self) -> type[BaseException]:
        return sqlite3.Error

    def connect(self) -> Any:
        """Connect to the SQLite database."""
        if self._shared_memory_uri is not None:
            path, uri = self._shared_memory_uri, True
        else:
            path = self._config.path or ":memory:"
            uri = path.startswith("file:")

        try:
            conn = sqlite3.connect(
                path,
                timeout=self._config.connect_timeout,
                check_same_thread=False,
                isolation_level=None,
                uri=uri,
            )
            conn.execute("PRAGMA foreign_keys = ON")
            if self._config.readonly:
                conn.execute("PRAGMA query_only = ON")
        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to SQLite: {e}",
                cause=e,
            ).with_context(engine=self.name) from e

        logger.debug("driver_connected", engine=self.name, path=path)
        return conn

    def interrupt(self, conn: Any) -> bool:
        conn.interrupt()
        return True

    def translate_error(self, exc: BaseException) -> DriverError:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(exc, sqlite3.IntegrityError):
            err: DriverError = IntegrityViolationError(f"sqlite: {exc}", code=code, cause=exc)
        else:
            err = DriverError(f"sqlite: {exc}", code=code, cause=exc)
        err.with_context(engine=self.name)
        return err


__all__ = [
    "SQLiteDriver",
]
