"""
Tests for the rotating market tracker.

Tests cover:
- Price derivation from snapshots, best-price deltas and price updates
- Trade history and directional momentum
- Order-book depth analysis
- Market rotation and expiry
"""

from datetime import datetime, timezone

import pytest

from updown.api.messages import (
    BookUpdateKind,
    OrderBookUpdate,
    PriceUpdate,
    ServerError,
    TradeEvent,
)
from updown.models import MarketDescriptor, OrderBook, Outcome, PriceLevel, TradeSide
from updown.tracker import RotatingMarketTracker

NOW = 1767729600.0


@pytest.fixture
def descriptor():
    return MarketDescriptor(
        market_id="cond-1",
        question="Bitcoin Up or Down?",
        end_time=datetime.fromtimestamp(NOW + 600, tz=timezone.utc),
        yes_token_id="tok-yes",
        no_token_id="tok-no",
        yes_price=0.5,
        no_price=0.5,
        slug="btc-updown-15m-1767729300",
    )


@pytest.fixture
def tracker(clock, descriptor):
    tracker = RotatingMarketTracker(max_trade_history=5, clock=clock)
    tracker.load_market(descriptor)
    return tracker


def _snapshot(token_id, bids, asks):
    return OrderBookUpdate(
        kind=BookUpdateKind.SNAPSHOT,
        token_id=token_id,
        bids=tuple(PriceLevel(p, s) for p, s in bids),
        asks=tuple(PriceLevel(p, s) for p, s in asks),
    )


def _trade(token_id, side, price=0.5, size=10.0, timestamp=int(NOW * 1000)):
    return TradeEvent(token_id=token_id, side=side, price=price, size=size, timestamp=timestamp)


class TestPriceDerivation:
    """Tests for how prices follow feed messages."""

    def test_snapshot_sets_price_to_first_ask(self, tracker):
        tracker.apply(_snapshot("tok-yes", [(0.55, 10)], [(0.57, 5), (0.58, 20)]))

        state = tracker.get_state()
        assert state.yes_price == 0.57
        assert state.yes_book.best_ask == 0.57
        assert state.no_price == 0.5

    def test_snapshot_without_asks_keeps_price(self, tracker):
        tracker.apply(_snapshot("tok-no", [(0.4, 10)], []))
        assert tracker.get_state().no_price == 0.5
        assert tracker.get_state().no_book.best_bid == 0.4

    def test_price_update_is_idempotent(self, tracker):
        update = PriceUpdate(token_id="tok-no", price=0.42)
        tracker.apply(update)
        first = (tracker.get_state().yes_price, tracker.get_state().no_price)
        tracker.apply(update)
        assert (tracker.get_state().yes_price, tracker.get_state().no_price) == first == (0.5, 0.42)

    def test_best_prices_synthesizes_book(self, tracker):
        tracker.apply(OrderBookUpdate(
            kind=BookUpdateKind.BEST_PRICES, token_id="tok-yes", best_bid=0.6, best_ask=0.62
        ))

        book = tracker.get_state().yes_book
        assert book.bids == [PriceLevel(0.6, 0.0)]
        assert book.asks == [PriceLevel(0.62, 0.0)]
        assert tracker.get_state().yes_price == 0.62

    def test_best_prices_overwrites_top_level(self, tracker):
        tracker.apply(_snapshot("tok-yes", [(0.55, 10), (0.54, 3)], [(0.57, 5)]))
        tracker.apply(OrderBookUpdate(
            kind=BookUpdateKind.BEST_PRICES, token_id="tok-yes", best_bid=0.56
        ))

        book = tracker.get_state().yes_book
        assert book.bids[0] == PriceLevel(0.56, 10)
        assert book.bids[1] == PriceLevel(0.54, 3)
        # No best ask in the delta: price unchanged
        assert tracker.get_state().yes_price == 0.57

    def test_legacy_book(self, tracker):
        tracker.apply(OrderBookUpdate(
            kind=BookUpdateKind.LEGACY,
            token_id="tok-no",
            market="tok-no",
            asks=(PriceLevel(0.44, 1),),
        ))
        assert tracker.get_state().no_price == 0.44

    def test_unknown_token_ignored(self, tracker):
        assert not tracker.apply(PriceUpdate(token_id="other", price=0.9))
        assert not tracker.apply(ServerError("x"))
        assert tracker.get_state().yes_price == 0.5

    def test_messages_without_market_ignored(self, clock):
        tracker = RotatingMarketTracker(clock=clock)
        assert not tracker.apply(PriceUpdate(token_id="tok-yes", price=0.9))

    def test_replace_orderbooks_keeps_prices(self, tracker):
        book = OrderBook(token_id="tok-yes", asks=[PriceLevel(0.9, 1)])
        assert tracker.replace_orderbooks(book, None)
        assert tracker.get_state().yes_book is book
        assert tracker.get_state().yes_price == 0.5
        assert not tracker.replace_orderbooks(None, None)


class TestSubscribers:
    """Tests for change notification."""

    def test_listener_called_on_commit(self, tracker):
        seen = []
        tracker.subscribe(seen.append)
        tracker.apply(PriceUpdate(token_id="tok-yes", price=0.6))
        tracker.apply(_trade("tok-yes", TradeSide.BUY))
        assert len(seen) == 2
        assert seen[0] is tracker.get_state()

    def test_unsubscribe(self, tracker):
        seen = []
        tracker.subscribe(seen.append)
        tracker.unsubscribe(seen.append)
        tracker.apply(PriceUpdate(token_id="tok-yes", price=0.6))
        assert seen == []


class TestTradeMomentum:
    """Tests for trade history and momentum."""

    def test_default_without_trades(self, tracker):
        momentum = tracker.get_trade_momentum()
        assert momentum.yes_ratio == 0.5
        assert momentum.total_volume == 0.0
        assert momentum.trade_count == 0

    def test_directional_volume(self, tracker):
        tracker.apply(_trade("tok-yes", TradeSide.BUY, price=0.5, size=10))   # bullish 5
        tracker.apply(_trade("tok-no", TradeSide.SELL, price=0.5, size=10))   # bullish 5
        tracker.apply(_trade("tok-no", TradeSide.BUY, price=0.5, size=20))    # bearish 10

        momentum = tracker.get_trade_momentum()

        assert momentum.yes_ratio == pytest.approx(0.5)
        assert momentum.total_volume == pytest.approx(20.0)
        assert momentum.trade_count == 3

    def test_ratio_bounds(self, tracker):
        tracker.apply(_trade("tok-yes", TradeSide.SELL))
        assert tracker.get_trade_momentum().yes_ratio == 0.0
        tracker.apply(_trade("tok-yes", TradeSide.BUY, size=1000))
        assert 0.0 <= tracker.get_trade_momentum().yes_ratio <= 1.0

    def test_lookback_excludes_old_trades(self, tracker):
        tracker.apply(_trade("tok-yes", TradeSide.BUY, timestamp=int((NOW - 120) * 1000)))
        tracker.apply(_trade("tok-yes", TradeSide.SELL))
        momentum = tracker.get_trade_momentum()
        assert momentum.trade_count == 1
        assert momentum.yes_ratio == 0.0

    def test_seconds_timestamps_are_scaled(self, tracker):
        tracker.apply(_trade("tok-yes", TradeSide.BUY, timestamp=int(NOW)))
        assert tracker.get_trade_history()[0].timestamp == int(NOW * 1000)

    def test_history_is_bounded(self, tracker):
        for i in range(8):
            tracker.apply(_trade("tok-yes", TradeSide.BUY, price=0.1 * (i + 1)))
        history = tracker.get_trade_history()
        assert len(history) == 5
        assert history[0].price == pytest.approx(0.4)


class TestOrderbookAnalysis:
    """Tests for depth and imbalance."""

    def test_none_without_books(self, tracker):
        assert tracker.get_orderbook_analysis() is None

    def test_imbalance(self, tracker):
        tracker.apply(_snapshot("tok-yes", [(0.55, 30)], [(0.57, 10)]))
        tracker.apply(_snapshot("tok-no", [(0.42, 10)], [(0.45, 30)]))

        depth = tracker.get_orderbook_analysis()

        assert depth.yes_bid_depth == 30
        assert depth.no_ask_depth == 30
        assert depth.imbalance == pytest.approx(0.75 - 0.25)
        assert depth.yes_spread == pytest.approx(0.02)
        assert depth.no_spread == pytest.approx(0.03)

    def test_missing_side_uses_defaults(self, tracker):
        tracker.apply(_snapshot("tok-yes", [(0.5, 10)], [(0.52, 10)]))
        depth = tracker.get_orderbook_analysis()
        assert depth.no_best_bid == 0.0
        assert depth.no_best_ask == 1.0
        assert depth.imbalance == pytest.approx(0.5)

    def test_depth_limited_to_levels(self, clock, descriptor):
        tracker = RotatingMarketTracker(depth_levels=2, clock=clock)
        tracker.load_market(descriptor)
        tracker.apply(_snapshot("tok-yes", [(0.5, 1), (0.49, 1), (0.48, 100)], []))
        assert tracker.get_orderbook_analysis().yes_bid_depth == 2


class TestMarketLifecycle:
    """Tests for rotation, expiry and accessors."""

    def test_expiry(self, tracker, clock):
        assert not tracker.is_market_expired()
        assert tracker.get_time_to_expiry() == pytest.approx(600_000)
        clock.now = NOW + 600
        assert tracker.is_market_expired()

    def test_expired_without_market(self, clock):
        tracker = RotatingMarketTracker(clock=clock)
        assert tracker.is_market_expired()
        assert tracker.get_time_to_expiry() is None
        assert tracker.get_token_ids() == []

    def test_load_market_replaces_state(self, tracker, descriptor):
        tracker.apply(PriceUpdate(token_id="tok-yes", price=0.9))
        tracker.apply(_trade("tok-yes", TradeSide.BUY))

        tracker.load_market(MarketDescriptor(
            market_id="cond-2",
            question="Next window",
            end_time=descriptor.end_time,
            yes_token_id="tok-yes-2",
            no_token_id="tok-no-2",
        ))

        state = tracker.get_state()
        assert state.market_id == "cond-2"
        assert state.yes_price == 0.5
        assert state.yes_book is None
        assert tracker.get_trade_history() == []
        assert tracker.get_token_ids() == ["tok-yes-2", "tok-no-2"]

    def test_reset(self, tracker):
        seen = []
        tracker.subscribe(seen.append)
        tracker.reset()
        assert tracker.get_state() is None
        assert tracker.get_market() is None
        tracker.load_market(MarketDescriptor(
            market_id="c", question="q", end_time=datetime.now(timezone.utc),
            yes_token_id="y", no_token_id="n",
        ))
        assert seen == []

    def test_accessors(self, tracker):
        tracker.apply(PriceUpdate(token_id="tok-yes", price=0.7))
        tracker.apply(PriceUpdate(token_id="tok-no", price=0.32))
        assert tracker.get_spread() == pytest.approx(0.38)
        assert tracker.get_implied_probability("up") == 0.7
        assert tracker.get_implied_probability(Outcome.NO) == 0.32
