"""
Rotating market tracker.

Keeps the live state of the current 15-minute market: yes/no prices, both
outcome order books and a bounded trade history. The tracker is mutated
only from the engine's event loop; every committed mutation stamps
``last_update`` and notifies subscribers synchronously.

Price derivation:
- SNAPSHOT books replace the side's book and set the price to the first ask
- BEST_PRICES updates synthesize a one-level book (size 0) when none exists,
  otherwise overwrite only the top level; the price follows best ask
- LEGACY books are keyed by their ``market`` field, which carries the token id

Trades are kept in a fixed-capacity ring buffer (oldest evicted first) and
feed the momentum analysis. A REST refetch (``replace_orderbooks``) replaces
books without touching prices.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from .api.messages import BookUpdateKind, OrderBookUpdate, PriceUpdate, TradeEvent
from .models import (
    MarketDescriptor,
    MarketState,
    OrderBook,
    Outcome,
    PriceLevel,
    TradeRecord,
    TradeSide,
    _utc_now,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[MarketState], None]


@dataclass(frozen=True)
class TradeMomentum:
    """Directional trade volume over a lookback window."""

    yes_ratio: float      # bullish volume share, 0.5 when no volume
    total_volume: float
    trade_count: int


@dataclass(frozen=True)
class OrderbookDepth:
    """Depth and imbalance across both outcome books."""

    yes_bid_depth: float
    yes_ask_depth: float
    no_bid_depth: float
    no_ask_depth: float
    yes_best_bid: float
    yes_best_ask: float
    no_best_bid: float
    no_best_ask: float
    yes_spread: float
    no_spread: float
    imbalance: float      # yes bid share - no bid share, positive = bullish

    @property
    def total_bid_depth(self) -> float:
        return self.yes_bid_depth + self.no_bid_depth

    @property
    def average_spread(self) -> float:
        return (self.yes_spread + self.no_spread) / 2


def _book_depth(book: Optional[OrderBook], levels: int):
    """(bid_depth, ask_depth, best_bid, best_ask, spread) for one book."""
    if book is None:
        return 0.0, 0.0, 0.0, 1.0, 1.0

    top_bids = book.bids[:levels]
    top_asks = book.asks[:levels]
    bid_depth = sum(level.size for level in top_bids)
    ask_depth = sum(level.size for level in top_asks)
    best_bid = top_bids[0].price if top_bids else 0.0
    best_ask = top_asks[0].price if top_asks else 1.0
    return bid_depth, ask_depth, best_bid, best_ask, best_ask - best_bid


class RotatingMarketTracker:
    """
    Live state for the currently tracked market.

    Example:
        tracker = RotatingMarketTracker()
        tracker.load_market(descriptor)
        stream.add_listener(tracker.apply)
        ...
        depth = tracker.get_orderbook_analysis()
    """

    def __init__(
        self,
        max_trade_history: int = 100,
        depth_levels: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the tracker.

        Args:
            max_trade_history: Ring buffer capacity for trades
            depth_levels: Book levels summed for depth analysis
            clock: Unix time source in seconds
        """
        self.max_trade_history = max_trade_history
        self.depth_levels = depth_levels
        self._clock = clock

        self._market: Optional[MarketDescriptor] = None
        self._state: Optional[MarketState] = None
        self._trades: Deque[TradeRecord] = deque(maxlen=max_trade_history)
        self._listeners: List[StateListener] = []

    # =========================================================================
    # Subscribers
    # =========================================================================

    def subscribe(self, listener: StateListener) -> None:
        """Register a callback invoked after every committed mutation."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _commit(self) -> None:
        """Stamp the state and notify subscribers."""
        if self._state is None:
            return
        self._state.last_update = _utc_now()
        for listener in list(self._listeners):
            listener(self._state)

    # =========================================================================
    # Market lifecycle
    # =========================================================================

    def load_market(self, descriptor: MarketDescriptor) -> MarketState:
        """Replace the tracked market wholesale and clear trade history."""
        self._market = descriptor
        self._state = MarketState.from_descriptor(descriptor)
        self._trades.clear()
        logger.info(
            f"Tracking market {descriptor.slug or descriptor.market_id}: {descriptor.question}"
        )
        self._commit()
        return self._state

    def reset(self) -> None:
        """Drop the market, trade history and subscribers."""
        self._market = None
        self._state = None
        self._trades.clear()
        self._listeners.clear()

    def _outcome_for(self, token_id: str) -> Optional[Outcome]:
        if self._state is None:
            return None
        if token_id == self._state.yes_token_id:
            return Outcome.YES
        if token_id == self._state.no_token_id:
            return Outcome.NO
        return None

    def _set_price(self, outcome: Outcome, price: float) -> None:
        if outcome is Outcome.YES:
            self._state.yes_price = price
        else:
            self._state.no_price = price

    def _get_book(self, outcome: Outcome) -> Optional[OrderBook]:
        return self._state.yes_book if outcome is Outcome.YES else self._state.no_book

    def _set_book(self, outcome: Outcome, book: OrderBook) -> None:
        if outcome is Outcome.YES:
            self._state.yes_book = book
        else:
            self._state.no_book = book

    # =========================================================================
    # Event application
    # =========================================================================

    def apply(self, message) -> bool:
        """
        Apply a decoded stream message.

        Returns:
            True if the message changed tracked state.
        """
        if isinstance(message, PriceUpdate):
            return self.update_price(message)
        if isinstance(message, OrderBookUpdate):
            return self.update_orderbook(message)
        if isinstance(message, TradeEvent):
            return self.handle_trade(message)
        return False

    def update_price(self, update: PriceUpdate) -> bool:
        """Set the last traded price for the matching outcome."""
        outcome = self._outcome_for(update.token_id)
        if outcome is None:
            return False
        self._set_price(outcome, update.price)
        self._commit()
        return True

    def update_orderbook(self, update: OrderBookUpdate) -> bool:
        """Apply a SNAPSHOT, BEST_PRICES or LEGACY book update."""
        outcome = self._outcome_for(update.token_id)
        if outcome is None:
            return False

        if update.kind is BookUpdateKind.BEST_PRICES:
            self._apply_best_prices(outcome, update)
        else:
            book = OrderBook(
                token_id=update.token_id,
                market=update.market,
                bids=[PriceLevel(level.price, level.size) for level in update.bids],
                asks=[PriceLevel(level.price, level.size) for level in update.asks],
                timestamp=update.timestamp,
                hash=update.hash,
            )
            self._set_book(outcome, book)
            if book.asks:
                self._set_price(outcome, book.asks[0].price)

        self._commit()
        return True

    def _apply_best_prices(self, outcome: Outcome, update: OrderBookUpdate) -> None:
        book = self._get_book(outcome)

        if book is None:
            self._set_book(
                outcome,
                OrderBook(
                    token_id=update.token_id,
                    market=update.market,
                    bids=[PriceLevel(update.best_bid, 0.0)] if update.best_bid else [],
                    asks=[PriceLevel(update.best_ask, 0.0)] if update.best_ask else [],
                    timestamp=update.timestamp,
                ),
            )
        else:
            if update.best_bid and book.bids:
                book.bids[0].price = update.best_bid
            if update.best_ask and book.asks:
                book.asks[0].price = update.best_ask

        if update.best_ask:
            self._set_price(outcome, update.best_ask)

    def handle_trade(self, trade: TradeEvent) -> bool:
        """Record a trade for momentum analysis."""
        outcome = self._outcome_for(trade.token_id)
        if outcome is None:
            return False

        timestamp = trade.timestamp
        if timestamp < 1_000_000_000_000:
            timestamp *= 1000

        self._trades.append(
            TradeRecord(
                outcome=outcome,
                side=trade.side,
                price=trade.price,
                size=trade.size,
                timestamp=int(timestamp),
            )
        )
        logger.debug(f"Trade: {trade.side} {outcome} @ {trade.price} (size: {trade.size})")
        self._commit()
        return True

    def replace_orderbooks(
        self, yes_book: Optional[OrderBook], no_book: Optional[OrderBook]
    ) -> bool:
        """
        Replace books from a REST refetch. Prices are left untouched.

        Returns:
            True if at least one book was replaced.
        """
        if self._state is None:
            return False

        changed = False
        if yes_book is not None:
            self._state.yes_book = yes_book
            changed = True
        if no_book is not None:
            self._state.no_book = no_book
            changed = True

        if changed:
            self._commit()
        return changed

    # =========================================================================
    # Analysis
    # =========================================================================

    def get_trade_momentum(self, lookback_ms: int = 60_000) -> TradeMomentum:
        """
        Directional volume over the lookback window.

        BUY yes and SELL no count as bullish (yes) volume; BUY no and
        SELL yes as bearish.
        """
        cutoff = self._clock() * 1000 - lookback_ms
        recent = [t for t in self._trades if t.timestamp > cutoff]
        if not recent:
            return TradeMomentum(yes_ratio=0.5, total_volume=0.0, trade_count=0)

        yes_volume = 0.0
        no_volume = 0.0
        for trade in recent:
            bullish = (trade.outcome is Outcome.YES) == (trade.side is TradeSide.BUY)
            if bullish:
                yes_volume += trade.volume
            else:
                no_volume += trade.volume

        total = yes_volume + no_volume
        yes_ratio = yes_volume / total if total > 0 else 0.5
        return TradeMomentum(yes_ratio=yes_ratio, total_volume=total, trade_count=len(recent))

    def get_orderbook_analysis(self) -> Optional[OrderbookDepth]:
        """Depth and imbalance over the best levels, or None with no books."""
        if self._state is None:
            return None
        if self._state.yes_book is None and self._state.no_book is None:
            return None

        yes_bid, yes_ask, yes_best_bid, yes_best_ask, yes_spread = _book_depth(
            self._state.yes_book, self.depth_levels
        )
        no_bid, no_ask, no_best_bid, no_best_ask, no_spread = _book_depth(
            self._state.no_book, self.depth_levels
        )

        yes_bid_ratio = yes_bid / ((yes_bid + yes_ask) or 1)
        no_bid_ratio = no_bid / ((no_bid + no_ask) or 1)

        return OrderbookDepth(
            yes_bid_depth=yes_bid,
            yes_ask_depth=yes_ask,
            no_bid_depth=no_bid,
            no_ask_depth=no_ask,
            yes_best_bid=yes_best_bid,
            yes_best_ask=yes_best_ask,
            no_best_bid=no_best_bid,
            no_best_ask=no_best_ask,
            yes_spread=yes_spread,
            no_spread=no_spread,
            imbalance=yes_bid_ratio - no_bid_ratio,
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    def is_market_expired(self) -> bool:
        if self._state is None:
            return True
        return self._clock() >= self._state.end_time.timestamp()

    def get_time_to_expiry(self) -> Optional[float]:
        """Milliseconds until expiry (negative once expired), None without a market."""
        if self._state is None:
            return None
        return (self._state.end_time.timestamp() - self._clock()) * 1000

    def get_state(self) -> Optional[MarketState]:
        return self._state

    def get_market(self) -> Optional[MarketDescriptor]:
        return self._market

    def get_token_ids(self) -> List[str]:
        if self._state is None:
            return []
        return [self._state.yes_token_id, self._state.no_token_id]

    def get_spread(self) -> Optional[float]:
        """Absolute difference between yes and no prices."""
        if self._state is None:
            return None
        return abs(self._state.yes_price - self._state.no_price)

    def get_implied_probability(self, outcome) -> Optional[float]:
        if self._state is None:
            return None
        return self._state.price_of(Outcome.parse(outcome))

    def get_trade_history(self) -> List[TradeRecord]:
        return list(self._trades)

    def clear_trade_history(self) -> None:
        self._trades.clear()
