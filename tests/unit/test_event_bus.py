"""Tests for the NotificationBus."""

import logging

import pytest

from gamecore.core.event_bus import EventRecord, NotificationBus


@pytest.fixture
def bus():
    return NotificationBus()


class TestSubscribe:
    def test_handlers_run_in_registration_order(self, bus):
        order = []
        bus.on("tick", lambda p: order.append("a"))
        bus.on("tick", lambda p: order.append("b"))
        bus.on("tick", lambda p: order.append("c"))
        bus.emit("tick", {})
        assert order == ["a", "b", "c"]

    def test_payload_delivered(self, bus):
        got = []
        bus.on("networkConnected", got.append)
        bus.emit("networkConnected", {"networkId": "net-1"})
        assert got == [{"networkId": "net-1"}]

    def test_missing_payload_becomes_empty_dict(self, bus):
        got = []
        bus.on("gameStart", got.append)
        bus.emit("gameStart")
        assert got == [{}]

    def test_unsubscribe_function(self, bus):
        got = []
        unsub = bus.on("x", got.append)
        unsub()
        unsub()  # idempotent
        bus.emit("x", {})
        assert got == []
        assert bus.get_subscriptions() == {}

    def test_off_by_handler_identity(self, bus):
        got = []

        def handler(p):
            got.append("removed")

        bus.on("x", handler)
        bus.on("x", lambda p: got.append("kept"))
        bus.off("x", handler)
        bus.off("never-subscribed", handler)
        bus.emit("x", {})
        assert got == ["kept"]

    def test_once_runs_once(self, bus):
        got = []
        bus.once("x", got.append)
        bus.emit("x", {"n": 1})
        bus.emit("x", {"n": 2})
        assert got == [{"n": 1}]
        assert "x" not in bus.get_subscriptions()

    def test_once_removed_even_if_handler_raises(self, bus):
        def boom(p):
            raise RuntimeError("boom")

        bus.once("x", boom)
        bus.emit("x", {})
        assert bus.get_subscriptions() == {}

    def test_get_subscriptions_counts(self, bus):
        bus.on("a", lambda p: None)
        bus.on("a", lambda p: None)
        bus.once("b", lambda p: None)
        assert bus.get_subscriptions() == {"a": 2, "b": 1}


class TestIsolation:
    def test_throwing_handler_does_not_stop_others(self, bus, caplog):
        calls = {"b": 0, "c": 0}

        def a(p):
            raise ValueError("handler A failed")

        def b(p):
            calls["b"] += 1

        def c(p):
            calls["c"] += 1

        bus.on("evt", a)
        bus.on("evt", b)
        bus.on("evt", c)
        with caplog.at_level(logging.ERROR):
            bus.emit("evt", {})  # must not raise
        assert calls == {"b": 1, "c": 1}
        assert "Error in event handler for evt" in caplog.text

    def test_missing_mission_listener_warns(self, bus, caplog):
        with caplog.at_level(logging.WARNING):
            bus.emit("missionAvailable", {"missionId": "m1"})
        assert "No listeners for missionAvailable" in caplog.text


class TestReentrancy:
    def test_unsubscribe_during_emit_skips_removed_handler(self, bus):
        got = []
        unsub_b = None

        def a(p):
            got.append("a")
            unsub_b()

        bus.on("x", a)
        unsub_b = bus.on("x", lambda p: got.append("b"))
        bus.emit("x", {})
        assert got == ["a"]

    def test_subscribe_during_emit_applies_to_next_emit(self, bus):
        got = []

        def a(p):
            got.append("a")
            bus.on("x", lambda p: got.append("late"))

        bus.once("x", a)
        bus.emit("x", {})
        assert got == ["a"]
        bus.emit("x", {})
        assert got == ["a", "late"]

    def test_emit_from_handler(self, bus):
        got = []
        bus.on("first", lambda p: bus.emit("second", {"from": "first"}))
        bus.on("second", got.append)
        bus.emit("first", {})
        assert got == [{"from": "first"}]


class TestHistory:
    def test_history_bounded_to_most_recent_100(self, bus):
        for i in range(150):
            bus.emit("evt", {"i": i})
        history = bus.get_history(1000)
        assert len(history) == 100
        assert [r.payload["i"] for r in history] == list(range(50, 150))

    def test_history_limit(self, bus):
        for i in range(10):
            bus.emit("evt", {"i": i})
        assert [r.payload["i"] for r in bus.get_history(3)] == [7, 8, 9]
        assert bus.get_history(0) == []

    def test_custom_capacity(self):
        bus = NotificationBus(history_size=5)
        for i in range(8):
            bus.emit("evt", {"i": i})
        assert len(bus.get_history(100)) == 5

    def test_emit_returns_record(self, bus):
        record = bus.emit("evt", {"k": "v"})
        assert isinstance(record, EventRecord)
        assert record.to_dict()["type"] == "evt"
        assert record.to_dict()["data"] == {"k": "v"}
        assert "T" in record.timestamp  # ISO-8601

    def test_history_read_has_no_side_effects(self, bus):
        bus.emit("evt", {})
        bus.get_history(10)
        bus.get_subscriptions()
        assert len(bus.get_history(10)) == 1

    def test_clear_drops_subscriptions_and_history(self, bus):
        got = []
        bus.on("evt", got.append)
        bus.emit("evt", {})
        bus.clear()
        bus.emit("evt", {})
        assert len(got) == 1
        assert bus.get_subscriptions() == {}
        assert [r.type for r in bus.get_history()] == ["evt"]
