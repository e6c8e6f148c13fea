"""Tests for ``keel.settings``: KEEL_* environment settings."""

from __future__ import annotations

import pytest

from keel.config import DatabaseType
from keel.settings import KeelSettings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for key in ("KEEL_DATABASE_URL", "KEEL_POOL_MAX_SIZE", "KEEL_POOL_MIN_IDLE", "KEEL_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    # Keep a developer's .env out of the tests.
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestKeelSettings:
    def test_defaults(self):
        settings = KeelSettings()
        assert settings.database_url == "sqlite://:memory:"
        assert settings.pool_max_size == 10
        assert settings.log_level == "INFO"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("KEEL_DATABASE_URL", "postgresql://app@db/orders")
        monkeypatch.setenv("KEEL_POOL_MAX_SIZE", "3")
        settings = KeelSettings()
        assert settings.database_config().db_type is DatabaseType.POSTGRESQL
        assert settings.pool_config().max_size == 3

    def test_pool_config_mirrors_fields(self):
        settings = KeelSettings(pool_min_idle=2, pool_sweep_interval=5.0, connect_timeout=3.0)
        pool = settings.pool_config()
        assert pool.min_idle == 2
        assert pool.sweep_interval == 5.0
        assert pool.connect_timeout == 3.0

    def test_connect_timeout_reaches_database_config(self):
        settings = KeelSettings(database_url="sqlite:///tmp/x.db", connect_timeout=2.5)
        assert settings.database_config().connect_timeout == 2.5

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("KEEL_POOL_MAX_SIZE=7\n")
        assert KeelSettings().pool_max_size == 7

    def test_get_settings_cached(self, monkeypatch):
        monkeypatch.setenv("KEEL_LOG_LEVEL", "DEBUG")
        first = get_settings()
        assert first.log_level == "DEBUG"
        assert get_settings() is first
