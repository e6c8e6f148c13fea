"""Driver registry and factory.

Manifesto:
    Consumers never hard-code driver class names.  The registry maps engine
    tags to driver classes and ``get_driver()`` builds one from a
    :class:`~keel.config.DatabaseConfig`.

Features:
    - ``DriverRegistry`` with pre-registered defaults
    - ``register()`` for custom drivers and test doubles
    - ``get_driver()`` factory: config → driver

Tags:
    keel, database, registry, factory

Doc-Types:
    api-reference
"""

from __future__ import annotations

from keel.config import DatabaseConfig
from keel.dialect import normalize_engine_tag
from keel.errors import ConfigError

from .base import Driver
from .mysql import MySQLDriver
from .postgresql import PostgreSQLDriver
from .sqlite import SQLiteDriver


class DriverRegistry:
    """
    Registry for driver classes.

    Pre-registered drivers (aliases resolve through ``normalize_engine_tag``):
    - ``sqlite``: :class:`SQLiteDriver`
    - ``mysql`` / ``mariadb``: :class:`MySQLDriver`
    - ``postgresql`` / ``postgres``: :class:`PostgreSQLDriver`
    """

    def __init__(self) -> None:
        self._factories: dict[str, type[Driver]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories["sqlite"] = SQLiteDriver
        self._factories["mysql"] = MySQLDriver
        self._factories["postgresql"] = PostgreSQLDriver

    def register(self, name: str, driver_class: type[Driver]) -> None:
        """Register a driver class under an engine tag."""
        self._factories[name.lower()] = driver_class

    def create(self, config: DatabaseConfig) -> Driver:
        """Create the driver for ``config.db_type``."""
        name = normalize_engine_tag(config.db_type)
        if name not in self._factories:
            raise ConfigError(f"Unknown database driver: {name}")
        return self._factories[name](config)

    def list_drivers(self) -> list[str]:
        """List registered driver names."""
        return sorted(self._factories)


# Global registry
driver_registry = DriverRegistry()


def get_driver(config: DatabaseConfig | str) -> Driver:
    """
    Get a driver for a configuration or URL.

    Usage:
        driver = get_driver(DatabaseConfig.from_url("sqlite:///tmp/app.db"))
        driver = get_driver("postgresql://app@localhost/orders")
    """
    if isinstance(config, str):
        config = DatabaseConfig.from_url(config)
    return driver_registry.create(config)


__all__ = [
    "DriverRegistry",
    "driver_registry",
    "get_driver",
]
