"""
Base class for reference price feeds.

A reference feed tracks the underlying asset price (BTC/USD) and answers
one question for the current 15-minute market: how far has the price moved
since the window opened, and which way is it likely to settle?

Subclasses only deliver prices (``_record_price``) and report connection
health. Window tracking, momentum, volatility and outcome prediction are
shared here; each feed tunes its noise threshold and confidence curve
through class attributes.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Base exception for reference feed errors."""
    pass


class FeedUnavailableError(FeedError):
    """Raised by connect() when the feed cannot be brought up."""
    pass


class Direction(Enum):
    """Predicted settlement direction."""

    UP = "UP"
    DOWN = "DOWN"
    NEUTRAL = "NEUTRAL"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PriceTick:
    """A single reference price observation."""

    price: float
    timestamp: int  # milliseconds


@dataclass(frozen=True)
class WindowChange:
    """Price movement since the window start."""

    absolute: float
    percent: float


@dataclass(frozen=True)
class Prediction:
    """Outcome prediction from a reference feed."""

    direction: Direction
    confidence: float
    change: float  # window change in percent


PriceListener = Callable[[PriceTick], None]


class ReferencePriceFeed(ABC):
    """
    Abstract reference price feed.

    Subclasses must implement:
    - connect(): start delivering prices
    - disconnect(): stop and release resources
    - is_connected(): whether prices are live
    """

    name = "feed"

    # Window moves smaller than this (percent) are treated as noise
    NOISE_THRESHOLD_PCT = 0.01
    # confidence = min(|change%| * CONFIDENCE_SCALE, CONFIDENCE_CAP)
    CONFIDENCE_SCALE = 20.0
    CONFIDENCE_CAP = 0.95
    MOMENTUM_WINDOW_SECONDS = 30.0
    MOMENTUM_BONUS = 0.1

    def __init__(self, max_history: int = 1000, clock: Callable[[], float] = time.time):
        """
        Initialize the feed.

        Args:
            max_history: Number of price ticks kept (oldest evicted first)
            clock: Unix time source in seconds
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._history: Deque[PriceTick] = deque(maxlen=max_history)
        self._current_price = 0.0
        self._window_start_price: Optional[float] = None
        self._window_start_time: Optional[float] = None
        self._listeners: List[PriceListener] = []

    # =========================================================================
    # Subclass interface
    # =========================================================================

    @abstractmethod
    def connect(self) -> None:
        """Start delivering prices."""

    @abstractmethod
    def disconnect(self) -> None:
        """Stop delivering prices."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the feed is live."""

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _record_price(self, price: float, timestamp: Optional[int] = None) -> PriceTick:
        """Store a new price and notify listeners."""
        tick = PriceTick(price=price, timestamp=timestamp if timestamp is not None else self._now_ms())
        with self._lock:
            self._current_price = price
            self._history.append(tick)

        for listener in list(self._listeners):
            try:
                listener(tick)
            except Exception as e:
                logger.error(f"{self.name}: price listener error: {e}", exc_info=True)
        return tick

    def _clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: PriceListener) -> None:
        """Register a callback for new price ticks."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: PriceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # =========================================================================
    # Window tracking
    # =========================================================================

    def start_window(self) -> None:
        """Set the window baseline to the current price (once per market)."""
        with self._lock:
            price = self._current_price
            if price > 0:
                self._window_start_price = price
                self._window_start_time = self._clock()
            else:
                self._window_start_price = None
                self._window_start_time = None

        if price > 0:
            logger.info(f"{self.name}: started window at ${price:,.2f}")
        else:
            logger.warning(f"{self.name}: no price yet, window baseline not set")

    def get_window_change(self) -> Optional[WindowChange]:
        """Price change since window start, or None without a baseline."""
        with self._lock:
            start = self._window_start_price
            current = self._current_price
        if not start or not current:
            return None

        absolute = current - start
        return WindowChange(absolute=absolute, percent=absolute / start * 100)

    def get_current_price(self) -> float:
        return self._current_price

    def get_window_start_price(self) -> Optional[float]:
        return self._window_start_price

    def get_window_start_time(self) -> Optional[float]:
        return self._window_start_time

    # =========================================================================
    # Analytics
    # =========================================================================

    def _recent_prices(self, period_seconds: float) -> List[float]:
        cutoff = self._now_ms() - int(period_seconds * 1000)
        with self._lock:
            return [t.price for t in self._history if t.timestamp > cutoff]

    def get_trailing_change(self, window_seconds: float) -> float:
        """
        Percent change between the first and last tick in a trailing window.

        Args:
            window_seconds: Trailing window length

        Returns:
            Percent change, or 0 with fewer than two ticks in the window.
        """
        prices = self._recent_prices(window_seconds)
        if len(prices) < 2 or prices[0] == 0:
            return 0.0
        return (prices[-1] - prices[0]) / prices[0] * 100

    def get_recent_momentum(self) -> float:
        """Percent change over the trailing momentum window (30s)."""
        return self.get_trailing_change(self.MOMENTUM_WINDOW_SECONDS)

    def get_volatility(self, period_seconds: float = 60.0) -> float:
        """Population standard deviation of prices over a trailing period."""
        prices = self._recent_prices(period_seconds)
        if len(prices) < 2:
            return 0.0
        mean = sum(prices) / len(prices)
        variance = sum((p - mean) ** 2 for p in prices) / len(prices)
        return math.sqrt(variance)

    def predict_outcome(self) -> Prediction:
        """
        Predict the settlement direction from the window change.

        Returns:
            NEUTRAL/0 without a baseline, NEUTRAL/0.1 inside the noise band,
            otherwise direction by sign with scaled confidence plus a bonus
            when recent momentum agrees.
        """
        change = self.get_window_change()
        if change is None:
            return Prediction(Direction.NEUTRAL, 0.0, 0.0)

        abs_change = abs(change.percent)
        if abs_change < self.NOISE_THRESHOLD_PCT:
            return Prediction(Direction.NEUTRAL, 0.1, change.percent)

        direction = Direction.UP if change.percent > 0 else Direction.DOWN
        confidence = min(abs_change * self.CONFIDENCE_SCALE, self.CONFIDENCE_CAP)

        momentum = self.get_recent_momentum()
        if (direction is Direction.UP and momentum > 0) or (direction is Direction.DOWN and momentum < 0):
            confidence = min(confidence + self.MOMENTUM_BONUS, self.CONFIDENCE_CAP)

        return Prediction(direction, confidence, change.percent)

    def get_stats(self) -> dict:
        """Feed summary for status output."""
        change = self.get_window_change()
        return {
            "feed": self.name,
            "connected": self.is_connected(),
            "price": self._current_price,
            "window_start_price": self._window_start_price,
            "window_change_pct": change.percent if change else None,
            "ticks": len(self._history),
        }
