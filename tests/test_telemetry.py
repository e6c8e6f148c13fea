"""Tests for ``keel.telemetry``: in-process event hooks."""

from __future__ import annotations

from keel.telemetry import TelemetryEvent, TelemetryHub


class TestTelemetryEvent:
    def test_matches(self):
        event = TelemetryEvent(name="pool.checkout")
        assert event.matches("*")
        assert event.matches("pool.*")
        assert event.matches("pool.checkout")
        assert not event.matches("statement.*")
        assert not event.matches("pool.checkout_extra")


class TestTelemetryHub:
    def test_emit_without_subscribers_is_noop(self):
        TelemetryHub().emit("pool.checkout", wait_ms=1.0)

    def test_pattern_routing(self):
        hub = TelemetryHub()
        pool_events, all_events = [], []
        hub.subscribe("pool.*", pool_events.append)
        hub.subscribe("*", all_events.append)
        hub.emit("pool.checkout", wait_ms=2.0)
        hub.emit("statement.execute", duration_ms=1.0, rowcount=1)
        assert [e.name for e in pool_events] == ["pool.checkout"]
        assert [e.name for e in all_events] == ["pool.checkout", "statement.execute"]
        assert pool_events[0].attributes == {"wait_ms": 2.0}

    def test_unsubscribe(self):
        hub = TelemetryHub()
        seen = []
        sub_id = hub.subscribe("*", seen.append)
        assert hub.subscription_count == 1
        hub.unsubscribe(sub_id)
        hub.emit("pool.checkout")
        assert seen == []
        assert hub.subscription_count == 0

    def test_failing_handler_does_not_stop_delivery(self):
        hub = TelemetryHub()
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        hub.subscribe("*", broken)
        hub.subscribe("*", seen.append)
        hub.emit("statement.error", error_kind="DriverError", sql="SELECT 1")
        assert len(seen) == 1

    def test_bind_engine_shares_subscriptions(self):
        hub = TelemetryHub()
        seen = []
        hub.subscribe("*", seen.append)
        bound = hub.bind_engine("mysql")
        bound.emit("pool.checkout")
        assert seen[0].engine == "mysql"
        assert bound.subscription_count == 1
