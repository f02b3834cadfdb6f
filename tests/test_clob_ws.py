"""
Tests for the CLOB market-channel stream.

Tests cover:
- Listener dispatch and error isolation
- Subscription bookkeeping and wire messages
- Reconnect backoff and the exhausted event
"""

import json
import logging
import threading
from unittest.mock import MagicMock

import pytest

from updown.api.clob_ws import (
    ClobMarketStream,
    ConnectionState,
    ReconnectExhausted,
    ReconnectExhaustedError,
)
from updown.api.messages import OrderBookUpdate, PriceUpdate, ServerError


class FakeWebSocketApp:
    """Stand-in for websocket.WebSocketApp that never touches the network."""

    instances = []

    def __init__(self, url, on_open=None, on_message=None, on_error=None, on_close=None):
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.sent = []
        FakeWebSocketApp.instances.append(self)

    def run_forever(self, ping_interval=None):
        # Connection drops immediately
        self.on_close(self, 1006, "abnormal")

    def send(self, data):
        self.sent.append(json.loads(data))

    def close(self):
        pass


@pytest.fixture(autouse=True)
def reset_fake_instances():
    FakeWebSocketApp.instances = []
    yield


@pytest.fixture
def stream():
    return ClobMarketStream(
        url="wss://example.test/ws",
        max_reconnect_attempts=2,
        reconnect_base_delay=0.0,
        ws_factory=FakeWebSocketApp,
    )


def _connected(stream):
    """Put the stream in the connected state without a thread."""
    ws = MagicMock()
    stream.ws = ws
    stream._state = ConnectionState.CONNECTED
    return ws


class TestListeners:
    """Tests for message dispatch."""

    def test_messages_reach_listener(self, stream):
        received = []
        stream.add_listener(received.append)

        stream._on_message(None, '{"event_type": "last_trade_price", "asset_id": "t", "price": "0.5"}')

        assert len(received) == 1
        assert isinstance(received[0], PriceUpdate)

    def test_unrecognized_frames_dropped(self, stream):
        received = []
        stream.add_listener(received.append)
        stream._on_message(None, "garbage")
        stream._on_message(None, '{"event_type": "unknown"}')
        assert received == []

    def test_dropped_frames_logged_as_warning(self, stream, caplog):
        with caplog.at_level(logging.WARNING, logger="updown.api.clob_ws"):
            stream._on_message(None, '{"event_type": "last_trade_price", "asset_id": "t", "price": "NaN"}')

        dropped = [r for r in caplog.records if "Dropped frame" in r.getMessage()]
        assert len(dropped) == 1
        assert dropped[0].levelno == logging.WARNING

    def test_server_error_published(self, stream):
        received = []
        stream.add_listener(received.append)
        stream._on_message(None, '{"type": "error", "message": "nope"}')
        assert received == [ServerError("nope")]

    def test_listener_error_does_not_stop_others(self, stream):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        stream.add_listener(broken)
        stream.add_listener(received.append)
        stream._on_message(None, '[{"asset_id": "t", "bids": [], "asks": []}]')

        assert len(received) == 1
        assert isinstance(received[0], OrderBookUpdate)

    def test_dispatcher_is_used(self, stream):
        calls = []
        stream.dispatcher = lambda fn, *args: calls.append((fn, args))
        stream._on_message(None, '{"event_type": "last_trade_price", "asset_id": "t", "price": "0.5"}')
        assert len(calls) == 1
        assert calls[0][0] == stream._notify

    def test_remove_listener(self, stream):
        received = []
        stream.add_listener(received.append)
        stream.remove_listener(received.append)
        stream.remove_listener(received.append)
        stream._on_message(None, '{"event_type": "last_trade_price", "asset_id": "t", "price": "0.5"}')
        assert received == []


class TestSubscriptions:
    """Tests for subscription management."""

    def test_subscribe_while_disconnected_only_records(self, stream):
        stream.subscribe(["a", "b", "a"])
        assert stream.subscriptions == ["a", "b"]

    def test_subscribe_while_connected_sends_new_ids(self, stream):
        ws = _connected(stream)
        stream.subscribe(["a"])
        stream.subscribe(["a", "b"])

        payloads = [json.loads(call.args[0]) for call in ws.send.call_args_list]
        assert payloads == [
            {"type": "MARKET", "assets_ids": ["a"]},
            {"type": "MARKET", "assets_ids": ["b"]},
        ]

    def test_unsubscribe_sends_operation(self, stream):
        stream.subscribe(["a", "b"])
        ws = _connected(stream)
        stream.unsubscribe(["a", "zzz"])

        assert stream.subscriptions == ["b"]
        payload = json.loads(ws.send.call_args.args[0])
        assert payload == {"assets_ids": ["a"], "operation": "unsubscribe"}

    def test_set_subscriptions_rotates(self, stream):
        stream.subscribe(["old-yes", "old-no"])
        ws = _connected(stream)

        stream.set_subscriptions(["new-yes", "new-no"])

        assert stream.subscriptions == ["new-yes", "new-no"]
        payloads = [json.loads(call.args[0]) for call in ws.send.call_args_list]
        assert payloads[0]["operation"] == "unsubscribe"
        assert payloads[1] == {"type": "MARKET", "assets_ids": ["new-yes", "new-no"]}

    def test_on_open_replays_subscriptions(self, stream):
        stream.subscribe(["a", "b"])
        ws = MagicMock()

        stream._on_open(ws)

        assert stream.is_connected()
        assert stream.reconnect_attempts == 0
        assert json.loads(ws.send.call_args.args[0]) == {"type": "MARKET", "assets_ids": ["a", "b"]}


class TestReconnect:
    """Tests for reconnect behaviour."""

    def test_exhausted_after_ceiling(self, stream):
        received = []
        done = threading.Event()

        def listener(event):
            received.append(event)
            done.set()

        stream.add_listener(listener)
        stream.connect()

        assert done.wait(timeout=5)
        stream._thread.join(timeout=2)

        # Initial attempt plus two reconnects
        assert len(FakeWebSocketApp.instances) == 3
        assert stream.state is ConnectionState.DISCONNECTED
        assert len(received) == 1
        assert isinstance(received[0], ReconnectExhausted)
        assert isinstance(received[0].error, ReconnectExhaustedError)
        assert received[0].error.attempts == 2

    def test_disconnect_stops_loop(self):
        opened = threading.Event()
        release = threading.Event()

        class BlockingApp(FakeWebSocketApp):
            def run_forever(self, ping_interval=None):
                self.on_open(self)
                opened.set()
                release.wait(timeout=5)

            def close(self):
                release.set()

        stream = ClobMarketStream(url="wss://example.test/ws", ws_factory=BlockingApp)
        stream.connect()
        assert opened.wait(timeout=5)
        assert stream.is_connected()

        stream.disconnect()

        assert stream.state is ConnectionState.DISCONNECTED
        assert len(BlockingApp.instances) == 1

    def test_connect_is_idempotent_while_running(self):
        release = threading.Event()

        class BlockingApp(FakeWebSocketApp):
            def run_forever(self, ping_interval=None):
                release.wait(timeout=5)

            def close(self):
                release.set()

        stream = ClobMarketStream(url="wss://example.test/ws", ws_factory=BlockingApp)
        stream.connect()
        thread = stream._thread
        stream.connect()
        assert stream._thread is thread
        stream.disconnect()
