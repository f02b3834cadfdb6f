"""
Binance BTC/USDT price feed.

Streams the ``btcusdt@miniTicker`` channel (roughly one update per second)
over websocket-client in a daemon thread. This is the fast, non-settling
reference: it leads Chainlink but can disagree with it near the boundary.
"""

import json
import logging
import threading
import time
from typing import Callable, Optional

import websocket

from .. import config
from .base import ReferencePriceFeed

logger = logging.getLogger(__name__)


class BinancePriceFeed(ReferencePriceFeed):
    """
    Real-time BTC price from the Binance miniTicker stream.

    Example:
        feed = BinancePriceFeed()
        feed.connect()
        feed.start_window()
        ...
        prediction = feed.predict_outcome()
    """

    name = "binance"

    NOISE_THRESHOLD_PCT = 0.01
    CONFIDENCE_SCALE = 20.0
    CONFIDENCE_CAP = 0.95

    def __init__(
        self,
        url: str = config.BINANCE_WS_URL,
        max_reconnect_attempts: int = 10,
        reconnect_base_delay: float = 1.0,
        ping_interval: float = config.WS_PING_INTERVAL,
        connect_timeout: float = 5.0,
        max_history: int = 1000,
        clock: Callable[[], float] = time.time,
        ws_factory: Callable[..., websocket.WebSocketApp] = websocket.WebSocketApp,
    ):
        """
        Initialize the feed.

        Args:
            url: miniTicker stream URL
            max_reconnect_attempts: Reconnect ceiling after an unexpected close
            reconnect_base_delay: Delay (seconds) before the first reconnect
            ping_interval: Keepalive ping interval in seconds
            connect_timeout: Seconds connect() waits for the socket to open
            max_history: Price ticks kept (~15 min at 1/sec)
            clock: Unix time source in seconds
            ws_factory: WebSocketApp constructor (replaceable in tests)
        """
        super().__init__(max_history=max_history, clock=clock)
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.ping_interval = ping_interval
        self.connect_timeout = connect_timeout
        self._ws_factory = ws_factory

        self.ws: Optional[websocket.WebSocketApp] = None
        self.reconnect_attempts = 0
        self._connected = False
        self._opened = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def connect(self) -> None:
        """
        Start the stream thread and wait briefly for the socket to open.

        A slow open is logged, not raised; the thread keeps retrying.
        """
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._opened.clear()
        self.reconnect_attempts = 0
        self._thread = threading.Thread(target=self._run_loop, name="binance-feed", daemon=True)
        self._thread.start()

        if self.connect_timeout > 0 and not self._opened.wait(self.connect_timeout):
            logger.warning(f"Binance feed not open after {self.connect_timeout:.0f}s, continuing")

    def disconnect(self) -> None:
        """Close the socket, stop reconnecting and drop price history."""
        self._stop_event.set()
        self._connected = False

        ws = self.ws
        if ws is not None:
            try:
                ws.close()
            except websocket.WebSocketException as e:
                logger.debug(f"Error closing Binance feed: {e}")

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)
        self._thread = None
        self._clear_history()
        logger.info("Binance feed disconnected")

    def is_connected(self) -> bool:
        return self._connected

    def _run_loop(self) -> None:
        """Main WebSocket loop with exponential-backoff reconnect."""
        while not self._stop_event.is_set():
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
                logger.warning(f"Binance feed crashed: {e}")

            self._connected = False
            if self._stop_event.is_set():
                break

            if self.reconnect_attempts >= self.max_reconnect_attempts:
                logger.error("Binance feed: max reconnect attempts reached")
                break

            self.reconnect_attempts += 1
            delay = self.reconnect_base_delay * 2 ** (self.reconnect_attempts - 1)
            logger.warning(
                f"Binance feed reconnecting in {delay:.1f}s "
                f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            self._stop_event.wait(delay)

    def _on_open(self, ws) -> None:
        self._connected = True
        self.reconnect_attempts = 0
        self._opened.set()
        logger.info("Binance feed connected to BTC/USDT miniTicker")

    def _on_message(self, ws, message) -> None:
        try:
            ticker = json.loads(message)
            price = float(ticker["c"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Binance feed: failed to parse message: {e}")
            return

        if price > 0:
            self._record_price(price)

    def _on_error(self, ws, error) -> None:
        logger.warning(f"Binance feed error: {error}")

    def _on_close(self, ws, close_status_code, close_msg) -> None:
        self._connected = False
        logger.info(f"Binance feed closed: {close_status_code}")
