"""
Chainlink BTC/USD price feed (authoritative).

Polymarket settles the 15-minute up/down markets against Chainlink BTC/USD,
so this feed is the source of truth for outcome prediction. It polls the
aggregator proxy on Polygon via web3 (``latestRoundData``) from a daemon
thread.

The aggregator updates every ~15-30s; only changed answers are appended to
history. The feed counts as connected while it has a price and its last
successful read is younger than ``stale_after`` seconds.

Aggregator proxy (Polygon): 0xc907E116054Ad103354f2D350FD2514433D57F6f
"""

import logging
import threading
import time
from typing import Callable, Optional

from web3 import Web3
from web3.exceptions import Web3Exception

from .. import config
from .base import FeedUnavailableError, ReferencePriceFeed

logger = logging.getLogger(__name__)

# Minimal AggregatorV3Interface ABI
AGGREGATOR_ABI = [
    {
        "inputs": [],
        "name": "latestRoundData",
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

DEFAULT_DECIMALS = 8


class ChainlinkPriceFeed(ReferencePriceFeed):
    """
    Polls the Chainlink BTC/USD aggregator on Polygon.

    Example:
        feed = ChainlinkPriceFeed()
        try:
            feed.connect()
        except FeedUnavailableError:
            ...  # fall back to the fast feed
    """

    name = "chainlink"

    NOISE_THRESHOLD_PCT = 0.005
    CONFIDENCE_SCALE = 50.0
    CONFIDENCE_CAP = 0.98

    def __init__(
        self,
        rpc_url: Optional[str] = config.POLYGON_RPC_URL,
        feed_address: str = config.CHAINLINK_BTC_USD_FEED,
        poll_interval: float = config.CHAINLINK_POLL_INTERVAL,
        stale_after: float = config.CHAINLINK_STALE_AFTER,
        max_history: int = 100,
        clock: Callable[[], float] = time.time,
        web3: Optional[Web3] = None,
    ):
        """
        Initialize the feed.

        Args:
            rpc_url: Polygon RPC endpoint; empty disables the feed
            feed_address: Aggregator proxy address
            poll_interval: Seconds between reads
            stale_after: Seconds after the last read before the feed is stale
            max_history: Distinct prices kept
            clock: Unix time source in seconds
            web3: Pre-built Web3 instance (replaceable in tests)
        """
        super().__init__(max_history=max_history, clock=clock)
        self.rpc_url = rpc_url
        self.feed_address = feed_address
        self.poll_interval = poll_interval
        self.stale_after = stale_after

        self._web3 = web3
        self._contract = None
        self._decimals = DEFAULT_DECIMALS

        self._last_update: float = 0.0
        self._update_interval: float = 0.0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # =========================================================================
    # Connection
    # =========================================================================

    def _init_contract(self) -> None:
        if self._web3 is None:
            self._web3 = Web3(Web3.HTTPProvider(self.rpc_url))
        self._contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(self.feed_address), abi=AGGREGATOR_ABI
        )
        try:
            self._decimals = int(self._contract.functions.decimals().call())
        except (Web3Exception, ValueError, OSError) as e:
            logger.debug(f"Chainlink decimals() unavailable, assuming {DEFAULT_DECIMALS}: {e}")
            self._decimals = DEFAULT_DECIMALS

    def connect(self) -> None:
        """
        Read the first price and start polling.

        Raises:
            FeedUnavailableError: No RPC configured or the first read failed
        """
        if self._thread is not None and self._thread.is_alive():
            return

        if not self.rpc_url and self._web3 is None:
            raise FeedUnavailableError("No Polygon RPC configured for Chainlink feed")

        try:
            self._init_contract()
            self.fetch_price()
        except (Web3Exception, ValueError, OSError) as e:
            self._contract = None
            raise FeedUnavailableError(f"Chainlink feed unavailable: {e}") from e

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="chainlink-feed", daemon=True)
        self._thread.start()
        logger.info(f"Chainlink feed connected (polling every {self.poll_interval:.0f}s)")

    def disconnect(self) -> None:
        """Stop polling and drop price history."""
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)
        self._thread = None
        self._contract = None
        self._clear_history()
        logger.info("Chainlink feed disconnected")

    def is_connected(self) -> bool:
        return self._current_price > 0 and self.get_time_since_last_update() < self.stale_after

    # =========================================================================
    # Polling
    # =========================================================================

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.fetch_price()
            except (Web3Exception, ValueError, OSError) as e:
                logger.warning(f"Chainlink fetch failed, will retry: {e}")
            except Exception as e:
                logger.error(f"Unexpected Chainlink fetch error: {e}", exc_info=True)

    def fetch_price(self) -> float:
        """
        Read ``latestRoundData`` once and record the answer if it changed.

        Returns:
            The decoded price.
        """
        if self._contract is None:
            raise FeedUnavailableError("Chainlink contract not initialized")

        _, answer, _, _, _ = self._contract.functions.latestRoundData().call()
        price = answer / 10 ** self._decimals
        if price <= 0:
            raise ValueError(f"Invalid Chainlink answer: {answer}")

        now = self._clock()
        if self._last_update > 0:
            self._update_interval = now - self._last_update
        self._last_update = now

        if price != self._current_price:
            self._record_price(price)
            logger.debug(f"Chainlink BTC/USD ${price:,.2f}")

        return price

    def get_time_since_last_update(self) -> float:
        """Seconds since the last successful read (0 before the first)."""
        if self._last_update == 0:
            return 0.0
        return self._clock() - self._last_update

    def get_update_interval(self) -> float:
        """Measured seconds between the last two reads."""
        return self._update_interval
