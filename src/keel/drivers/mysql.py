"""MySQL driver.

Uses ``mysql.connector`` from the ``mysql-connector-python`` package.
MySQL uses **format** (``%s``) placeholder style.

Install the driver::

    pip install mysql-connector-python
    # or:  pip install keel[mysql]

This driver is import-guarded: if ``mysql.connector`` is not installed
a clear :class:`~keel.errors.ConfigError` is raised at ``connect()`` time.
"""

from __future__ import annotations

from typing import Any

from keel.config import DatabaseConfig, DatabaseType
from keel.errors import ConfigError, DatabaseConnectionError, DriverError, IntegrityViolationError
from keel.logging import get_logger

from .base import Driver

logger = get_logger(__name__)


def _connector() -> Any:
    try:
        import mysql.connector
    except ImportError:
        raise ConfigError(
            "mysql-connector-python is required for MySQL. Install with: pip install mysql-connector-python"
        ) from None
    return mysql.connector


class MySQLDriver(Driver):
    """MySQL / MariaDB driver.

    Connections run with ``autocommit=True``; transactions are opened with
    ``START TRANSACTION``.  Interrupting a running statement opens a short
    side connection and issues ``KILL QUERY`` for the busy connection's
    thread id.
    """

    name = "mysql"

    def __init__(
        self,
        config: DatabaseConfig | None = None,
        *,
        host: str = "localhost",
        port: int = 3306,
        database: str = "",
        username: str | None = None,
        password: str | None = None,
        charset: str = "utf8mb4",
        **kwargs: Any,
    ):
        if config is None:
            config = DatabaseConfig(
                db_type=DatabaseType.MYSQL,
                host=host,
                port=port,
                database=database,
                username=username,
                password=password,
                options={**kwargs, "charset": charset},
            )
        super().__init__(config)

    def base_error(self) -> type[BaseException]:
        return _connector().Error

    def connect(self) -> Any:
        """Connect to the MySQL database."""
        connector = _connector()
        options = {"charset": "utf8mb4", **self._config.options}
        try:
            conn = connector.connect(
                host=self._config.host,
                port=self._config.port,
                database=self._config.database,
                user=self._config.username,
                password=self._config.password,
                connection_timeout=int(self._config.connect_timeout),
                autocommit=True,
                **options,
            )
        except connector.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to MySQL: {e}",
                cause=e,
            ).with_context(engine=self.name) from e

        logger.debug("driver_connected", engine=self.name, host=self._config.host, database=self._config.database)
        return conn

    def ping(self, conn: Any) -> bool:
        try:
            conn.ping(reconnect=False)
        except _connector().Error:
            return False
        return True

    def interrupt(self, conn: Any) -> bool:
        thread_id = getattr(conn, "connection_id", None)
        if thread_id is None:
            return False
        killer = self.connect()
        try:
            self.execute(killer, f"KILL QUERY {int(thread_id)}")
        finally:
            self.close(killer)
        return True

    def translate_error(self, exc: BaseException) -> DriverError:
        connector = _connector()
        code = getattr(exc, "errno", None)
        sqlstate = getattr(exc, "sqlstate", None)
        if isinstance(exc, connector.IntegrityError):
            err: DriverError = IntegrityViolationError(f"mysql: {exc}", code=code, sqlstate=sqlstate, cause=exc)
        else:
            err = DriverError(f"mysql: {exc}", code=code, sqlstate=sqlstate, cause=exc)
        err.with_context(engine=self.name)
        return err


__all__ = [
    "MySQLDriver",
]
