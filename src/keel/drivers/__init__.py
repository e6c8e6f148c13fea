"""Engine drivers.

Every driver wraps one DB-API module behind the same small interface
(:class:`~keel.drivers.base.Driver`).  The networked drivers import their
module at connect time, so keel itself installs without them.

Modules
-------
base         Driver ABC and DriverResult
sqlite       SQLiteDriver -- stdlib sqlite3
mysql        MySQLDriver -- mysql-connector-python
postgresql   PostgreSQLDriver -- psycopg2
registry     DriverRegistry and get_driver()
"""

from .base import Driver, DriverResult
from .mysql import MySQLDriver
from .postgresql import PostgreSQLDriver
from .registry import DriverRegistry, driver_registry, get_driver
from .sqlite import SQLiteDriver

__all__ = [
    "Driver",
    "DriverResult",
    "SQLiteDriver",
    "MySQLDriver",
    "PostgreSQLDriver",
    "DriverRegistry",
    "driver_registry",
    "get_driver",
]
