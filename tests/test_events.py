"""Tests for the connector event channel."""

import pytest

from brokerlink.connectors.events import ERROR, MARKET_DATA, EventChannel


class TestEventChannel:
    def test_handlers_receive_payload_in_order(self):
        channel = EventChannel("test")
        calls = []
        channel.on(MARKET_DATA, lambda data: calls.append(("first", data)))
        channel.on(MARKET_DATA, lambda data: calls.append(("second", data)))

        assert channel.emit(MARKET_DATA, 1) == 2
        assert calls == [("first", 1), ("second", 1)]

    def test_remove_handler(self):
        channel = EventChannel("test")
        calls = []
        remove = channel.on(ERROR, calls.append)

        remove()
        remove()

        assert channel.emit(ERROR, "x") == 0
        assert calls == []

    def test_failing_handler_does_not_stop_others(self):
        channel = EventChannel("test")
        calls = []

        def broken(_):
            raise RuntimeError("handler bug")

        channel.on(MARKET_DATA, broken)
        channel.on(MARKET_DATA, calls.append)

        channel.emit(MARKET_DATA, "tick")

        assert calls == ["tick"]

    def test_unknown_event_rejected(self):
        channel = EventChannel("test")
        with pytest.raises(ValueError, match="Unknown event"):
            channel.on("trade", print)

    def test_clear(self):
        channel = EventChannel("test")
        channel.on(MARKET_DATA, print)
        channel.on(ERROR, print)

        channel.clear()

        assert channel.listener_count(MARKET_DATA) == 0
        assert channel.listener_count(ERROR) == 0
