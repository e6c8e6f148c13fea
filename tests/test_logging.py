"""Tests for ``keel.logging``: structlog configuration."""

from __future__ import annotations

import json

import pytest
import structlog

from keel.logging import (
    LogContext,
    _ecs_field_names,
    _redact_bind_values,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    clear_context()
    structlog.reset_defaults()


class TestProcessors:
    def test_redacts_bind_values(self):
        event = {"event": "statement_failed", "binds": ["secret"], "params": (1,), "sql": "SELECT ?"}
        out = _redact_bind_values(None, "info", event)
        assert out["binds"] == "<redacted>"
        assert out["params"] == "<redacted>"
        assert out["sql"] == "SELECT ?"

    def test_ecs_field_names(self):
        out = _ecs_field_names(None, "info", {"timestamp": "t", "level": "info", "event": "x"})
        assert out == {"@timestamp": "t", "log.level": "info", "event": "x"}


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging(level="DEBUG", json_format=True, service="orders")
        get_logger("keel.test").info("pool_checkout", wait_ms=1.5, binds=["x"])
        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "pool_checkout"
        assert payload["wait_ms"] == 1.5
        assert payload["binds"] == "<redacted>"
        assert payload["service.name"] == "orders"
        assert payload["log.level"] == "info"
        assert payload["logger"] == "keel.test"

    def test_level_filtering(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("keel.test").info("hidden")
        get_logger("keel.test").warning("shown")
        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out

    def test_context_binding(self, capsys):
        configure_logging(level="INFO", json_format=True)
        bind_context(request_id="r-1")
        with LogContext(engine="sqlite"):
            get_logger("keel.test").info("inside")
        get_logger("keel.test").info("outside")
        lines = [json.loads(x) for x in capsys.readouterr().out.strip().splitlines()]
        inside = next(x for x in lines if x["event"] == "inside")
        outside = next(x for x in lines if x["event"] == "outside")
        assert inside["engine"] == "sqlite" and inside["request_id"] == "r-1"
        assert "engine" not in outside
