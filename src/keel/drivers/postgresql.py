"""PostgreSQL driver.

Uses ``psycopg2`` (``pip install psycopg2-binary`` or ``keel[postgresql]``),
imported at ``connect()`` time.  UUID columns are adapted to
:class:`uuid.UUID` with ``psycopg2.extras.register_uuid``.
"""

from __future__ import annotations

from typing import Any

from keel.config import DatabaseConfig, DatabaseType
from keel.errors import ConfigError, DatabaseConnectionError, DriverError, IntegrityViolationError
from keel.logging import get_logger

from .base import Driver

logger = get_logger(__name__)


def _psycopg2() -> Any:
    try:
        import psycopg2
        import psycopg2.extras
    except ImportError:
        raise ConfigError(
            "psycopg2 is required for PostgreSQL. Install with: pip install psycopg2-binary"
        ) from None
    return psycopg2


class PostgreSQLDriver(Driver):
    """PostgreSQL driver.

    Connections run with ``autocommit = True``; keel issues BEGIN/COMMIT
    itself.  ``interrupt()`` uses ``connection.cancel()``, which is safe to
    call from another thread.
    """

    name = "postgresql"

    def __init__(
        self,
        config: DatabaseConfig | None = None,
        *,
        host: str = "localhost",
        port: int = 5432,
        database: str = "",
        username: str | None = None,
        password: str | None = None,
        **kwargs: Any,
    ):
        if config is None:
            config = DatabaseConfig(
                db_type=DatabaseType.POSTGRESQL,
                host=host,
                port=port,
                database=database,
                username=username,
                password=password,
                options=kwargs,
            )
        super().__init__(config)

    def base_error(self) -> type[BaseException]:
        return _psycopg2().Error

    def connect(self) -> Any:
        """Connect to the PostgreSQL database."""
        psycopg2 = _psycopg2()
        try:
            conn = psycopg2.connect(
                host=self._config.host,
                port=self._config.port,
                dbname=self._config.database,
                user=self._config.username,
                password=self._config.password,
                connect_timeout=int(self._config.connect_timeout),
                **self._config.options,
            )
        except psycopg2.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to PostgreSQL: {e}",
                cause=e,
            ).with_context(engine=self.name) from e

        conn.autocommit = True
        if self._config.readonly:
            conn.set_session(readonly=True)
        psycopg2.extras.register_uuid(conn_or_curs=conn)
        logger.debug("driver_connected", engine=self.name, host=self._config.host, database=self._config.database)
        return conn

    def _lastrowid(self, cursor: Any) -> int | None:
        # psycopg2 reports the row OID here, not a key; use RETURNING instead.
        return None

    def ping(self, conn: Any) -> bool:
        if getattr(conn, "closed", 1):
            return False
        return super().ping(conn)

    def interrupt(self, conn: Any) -> bool:
        conn.cancel()
        return True

    def translate_error(self, exc: BaseException) -> DriverError:
        psycopg2 = _psycopg2()
        pgcode = getattr(exc, "pgcode", None)
        if isinstance(exc, psycopg2.IntegrityError):
            err: DriverError = IntegrityViolationError(f"postgresql: {exc}", code=pgcode, sqlstate=pgcode, cause=exc)
        else:
            err = DriverError(f"postgresql: {exc}", code=pgcode, sqlstate=pgcode, cause=exc)
        err.with_context(engine=self.name)
        return err


__all__ = [
    "PostgreSQLDriver",
]
