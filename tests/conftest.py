"""
Shared pytest fixtures and configuration for keel tests.

This module provides:
- ``FakeProvider``: an in-memory ConnectionProvider for pool tests
- SQLite-backed engine/executor fixtures on a temporary file database
- A telemetry recorder

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_something(executor, accounts_table):
        ...
"""

from __future__ import annotations

import itertools
import sys
import threading
from collections.abc import Generator
from pathlib import Path

import pytest

# Ensure keel is importable without an install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from keel.config import DatabaseConfig, PoolConfig
from keel.executor import Engine, Executor
from keel.telemetry import TelemetryEvent, TelemetryHub


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fake connection provider
# =============================================================================


class FakeConnection:
    def __init__(self, number: int):
        self.number = number
        self.closed = False
        self.alive = True

    def __repr__(self) -> str:
        return f"FakeConnection({self.number})"


class FakeProvider:
    """ConnectionProvider that hands out FakeConnection objects."""

    def __init__(self) -> None:
        self._numbers = itertools.count(1)
        self._lock = threading.Lock()
        self.opened: list[FakeConnection] = []
        self.closed: list[FakeConnection] = []
        self.fail_next_open: Exception | None = None

    def open(self) -> FakeConnection:
        if self.fail_next_open is not None:
            error, self.fail_next_open = self.fail_next_open, None
            raise error
        with self._lock:
            conn = FakeConnection(next(self._numbers))
            self.opened.append(conn)
        return conn

    def is_alive(self, conn: FakeConnection) -> bool:
        return conn.alive and not conn.closed

    def close(self, conn: FakeConnection) -> None:
        conn.closed = True
        with self._lock:
            self.closed.append(conn)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


# =============================================================================
# Telemetry
# =============================================================================


class EventRecorder:
    def __init__(self, hub: TelemetryHub):
        self.events: list[TelemetryEvent] = []
        hub.subscribe("*", self.events.append)

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def of(self, name: str) -> list[TelemetryEvent]:
        return [e for e in self.events if e.name == name]


@pytest.fixture
def telemetry() -> TelemetryHub:
    return TelemetryHub()


@pytest.fixture
def recorder(telemetry: TelemetryHub) -> EventRecorder:
    return EventRecorder(telemetry)


# =============================================================================
# SQLite engine fixtures
# =============================================================================


@pytest.fixture
def sqlite_path(tmp_path: Path) -> str:
    return str(tmp_path / "keel.db")


@pytest.fixture
def engine(sqlite_path: str, telemetry: TelemetryHub) -> Generator[Engine, None, None]:
    config = DatabaseConfig(db_type="sqlite", path=sqlite_path)
    eng = Engine.from_config(config, PoolConfig(max_size=4, checkout_timeout=5.0), telemetry=telemetry)
    yield eng
    eng.close(timeout=5.0)


@pytest.fixture
def executor(engine: Engine) -> Executor:
    return Executor(engine)


@pytest.fixture
def accounts_table(executor: Executor) -> str:
    executor.execute_raw(
        """
        CREATE TABLE accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT NOT NULL UNIQUE,
            balance TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            opened_at TEXT,
            nick TEXT
        )
        """
    )
    return "accounts"

