"""
CLOB WebSocket client for market-channel data.

Subscribes to order-book, price and trade updates for a set of outcome
tokens, decodes every frame with ``decode_frame`` and publishes the
resulting messages to listeners.

The socket runs in a daemon thread. Listeners are invoked through an
optional ``dispatcher`` callable; the engine passes
``loop.call_soon_threadsafe`` so that all state mutation happens on its
event loop. Without a dispatcher listeners run on the socket thread.

Reconnection uses exponential backoff (base x 2^(attempt-1)). Once the
attempt ceiling is exceeded the client stops, moves to DISCONNECTED and
publishes a ``ReconnectExhausted`` event.
"""

import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Union

import websocket

from .. import config
from .messages import MarketEvent, ServerError, Unrecognized, decode_frame

logger = logging.getLogger(__name__)


class StreamError(Exception):
    """Base exception for market stream errors."""
    pass


class ReconnectExhaustedError(StreamError):
    """Raised (and published) when the reconnect ceiling is exceeded."""

    def __init__(self, attempts: int):
        super().__init__(f"Reconnect attempts exhausted after {attempts} tries")
        self.attempts = attempts


class ConnectionState(Enum):
    """Connection state of the market stream."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ReconnectExhausted:
    """Published once when the stream gives up reconnecting."""

    error: ReconnectExhaustedError


StreamEvent = Union[MarketEvent, ServerError, ReconnectExhausted]
Listener = Callable[[StreamEvent], None]


class ClobMarketStream:
    """
    WebSocket client for the CLOB market channel.

    Usage:
        stream = ClobMarketStream(dispatcher=loop.call_soon_threadsafe)
        stream.add_listener(tracker.apply)
        stream.subscribe([yes_token, no_token])
        stream.connect()
    """

    def __init__(
        self,
        url: str = config.CLOB_WS_URL,
        max_reconnect_attempts: int = config.WS_MAX_RECONNECT_ATTEMPTS,
        reconnect_base_delay: float = config.WS_RECONNECT_BASE_DELAY,
        ping_interval: float = config.WS_PING_INTERVAL,
        dispatcher: Optional[Callable[..., object]] = None,
        ws_factory: Callable[..., websocket.WebSocketApp] = websocket.WebSocketApp,
    ):
        """
        Initialize the stream.

        Args:
            url: Market channel WebSocket URL
            max_reconnect_attempts: Reconnect ceiling after an unexpected close
            reconnect_base_delay: Delay (seconds) before the first reconnect
            ping_interval: Keepalive ping interval in seconds
            dispatcher: Callable ``dispatcher(fn, *args)`` used to run listeners
            ws_factory: WebSocketApp constructor (replaceable in tests)
        """
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.ping_interval = ping_interval
        self.dispatcher = dispatcher
        self._ws_factory = ws_factory

        self.ws: Optional[websocket.WebSocketApp] = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts = 0
        self._subscriptions: List[str] = []
        self._listeners: List[Listener] = []

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def subscriptions(self) -> List[str]:
        with self._lock:
            return list(self._subscriptions)

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: Listener) -> None:
        """Register a callback for decoded stream events."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        """Unregister a callback. Unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, event: StreamEvent) -> None:
        if self.dispatcher is not None:
            self.dispatcher(self._notify, event)
        else:
            self._notify(event)

    def _notify(self, event: StreamEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Stream listener error: {e}", exc_info=True)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, token_ids: Iterable[str]) -> None:
        """
        Add token IDs to the subscription set.

        New IDs are sent immediately when connected; the full set is
        replayed on every (re)connect.
        """
        with self._lock:
            added = [t for t in token_ids if t and t not in self._subscriptions]
            self._subscriptions.extend(added)

        if added and self.is_connected():
            self._send({"type": "MARKET", "assets_ids": added})

    def unsubscribe(self, token_ids: Iterable[str]) -> None:
        """Remove token IDs from the subscription set."""
        with self._lock:
            removed = [t for t in token_ids if t in self._subscriptions]
            self._subscriptions = [t for t in self._subscriptions if t not in removed]

        if removed and self.is_connected():
            self._send({"assets_ids": removed, "operation": "unsubscribe"})

    def set_subscriptions(self, token_ids: Iterable[str]) -> None:
        """Replace the subscription set (used on market rotation)."""
        wanted = [t for t in dict.fromkeys(token_ids) if t]
        self.unsubscribe([t for t in self.subscriptions if t not in wanted])
        self.subscribe(wanted)

    def _send(self, payload: dict) -> None:
        ws = self.ws
        if ws is None:
            return
        try:
            ws.send(json.dumps(payload))
        except websocket.WebSocketException as e:
            logger.warning(f"Failed to send to market stream: {e}")

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def connect(self) -> None:
        """Start the socket thread. No-op when already running."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._reconnect_attempts = 0
        self._state = ConnectionState.CONNECTING
        self._thread = threading.Thread(
            target=self._run_loop, name="clob-market-stream", daemon=True
        )
        self._thread.start()

    def disconnect(self) -> None:
        """Close the socket and stop reconnecting."""
        self._stop_event.set()
        self._state = ConnectionState.DISCONNECTED

        ws = self.ws
        if ws is not None:
            try:
                ws.close()
            except websocket.WebSocketException as e:
                logger.debug(f"Error closing market stream: {e}")

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2)
        self._thread = None
        logger.info("Market stream disconnected")

    def _run_loop(self) -> None:
        """Run the socket until stopped, reconnecting with backoff."""
        while not self._stop_event.is_set():
            self._state = ConnectionState.CONNECTING
            self.ws = self._ws_factory(
                self.url,
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )

            try:
                self.ws.run_forever(ping_interval=self.ping_interval)
            except Exception as e:
                logger.warning(f"Market stream crashed: {e}")

            self._state = ConnectionState.DISCONNECTED
            if self._stop_event.is_set():
                break

            self._reconnect_attempts += 1
            if self._reconnect_attempts > self.max_reconnect_attempts:
                error = ReconnectExhaustedError(self.max_reconnect_attempts)
                logger.error(str(error))
                self._publish(ReconnectExhausted(error))
                break

            delay = self.reconnect_base_delay * 2 ** (self._reconnect_attempts - 1)
            logger.warning(
                f"Market stream reconnecting in {delay:.1f}s "
                f"(attempt {self._reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            self._stop_event.wait(delay)

    # =========================================================================
    # WebSocket callbacks
    # =========================================================================

    def _on_open(self, ws) -> None:
        self._state = ConnectionState.CONNECTED
        self._reconnect_attempts = 0
        logger.info("Market stream connected")

        tokens = self.subscriptions
        if tokens:
            ws.send(json.dumps({"type": "MARKET", "assets_ids": tokens}))
            logger.info(f"Subscribed to {len(tokens)} tokens")

    def _on_message(self, ws, message) -> None:
        for event in decode_frame(message):
            if isinstance(event, Unrecognized):
                logger.warning(f"Dropped frame ({event.reason}): {event.raw}")
                continue
            if isinstance(event, ServerError):
                logger.warning(f"Market stream server error: {event.message}")
            self._publish(event)

    def _on_error(self, ws, error) -> None:
        logger.warning(f"Market stream error: {error}")

    def _on_close(self, ws, close_status_code, close_msg) -> None:
        self._state = ConnectionState.DISCONNECTED
        logger.info(f"Market stream closed: {close_status_code} {close_msg or ''}".rstrip())
