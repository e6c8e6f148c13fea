"""Environment-driven settings.

``KeelSettings`` reads ``KEEL_*`` environment variables (and a ``.env``
file) and produces the :class:`~keel.config.DatabaseConfig` and
:class:`~keel.config.PoolConfig` an :class:`~keel.executor.Engine` needs.

Example::

    # KEEL_DATABASE_URL=postgresql://app:secret@db:5432/orders
    # KEEL_POOL_MAX_SIZE=20
    from keel.settings import get_settings

    settings = get_settings()
    engine = Engine.from_config(settings.database_config(), settings.pool_config())
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from keel.config import DatabaseConfig, PoolConfig


class KeelSettings(BaseSettings):
    """Settings for keel, all read from ``KEEL_``-prefixed variables.

    Fields
    ──────
    database_url          : Connection URL (``sqlite://``, ``mysql://``, ``postgresql://``)
    pool_*                : Mirrors :class:`PoolConfig`
    log_level / log_json  : Passed to ``configure_logging``
    """

    model_config = SettingsConfigDict(
        env_prefix="KEEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite://:memory:", description="Database connection URL")
    connect_timeout: float = 10.0

    # ── Pool ─────────────────────────────────────────────────────
    pool_max_size: int = 10
    pool_min_idle: int = 0
    pool_idle_timeout: float | None = 600.0
    pool_max_lifetime: float | None = 1800.0
    pool_checkout_timeout: float = 30.0
    pool_sweep_interval: float | None = None
    pool_validate_on_checkout: bool = True

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    def database_config(self) -> DatabaseConfig:
        return DatabaseConfig.from_url(self.database_url, connect_timeout=self.connect_timeout)

    def pool_config(self) -> PoolConfig:
        return PoolConfig(
            max_size=self.pool_max_size,
            min_idle=self.pool_min_idle,
            idle_timeout=self.pool_idle_timeout,
            max_lifetime=self.pool_max_lifetime,
            connect_timeout=self.connect_timeout,
            checkout_timeout=self.pool_checkout_timeout,
            sweep_interval=self.pool_sweep_interval,
            validate_on_checkout=self.pool_validate_on_checkout,
        )


@lru_cache(maxsize=1)
def get_settings() -> KeelSettings:
    """Return the process-wide settings (cached; ``get_settings.cache_clear()`` resets)."""
    return KeelSettings()


__all__ = ["KeelSettings", "get_settings"]
