"""
Tests for market-channel frame decoding.

Tests cover:
- Snapshot arrays and single book events
- price_changes batches (best prices and sized changes)
- last_trade_price and legacy price_change events
- The typed {"type": ...} envelope
- Malformed frames never raising
"""

import json

import pytest

from updown.api.messages import (
    BookUpdateKind,
    OrderBookUpdate,
    PriceUpdate,
    ServerError,
    TradeEvent,
    Unrecognized,
    decode_frame,
)
from updown.models import PriceLevel, TradeSide


class TestSnapshots:
    """Tests for order-book snapshots."""

    def test_snapshot_array(self):
        frame = json.dumps([
            {
                "market": "cond-1",
                "asset_id": "tok-yes",
                "bids": [{"price": "0.48", "size": "100"}],
                "asks": [{"price": "0.52", "size": "80"}, {"price": "0.53", "size": "10"}],
                "timestamp": "1767729600000",
                "hash": "abc",
            }
        ])

        messages = decode_frame(frame)

        assert len(messages) == 1
        update = messages[0]
        assert isinstance(update, OrderBookUpdate)
        assert update.kind is BookUpdateKind.SNAPSHOT
        assert update.token_id == "tok-yes"
        assert update.market == "cond-1"
        assert update.bids == (PriceLevel(0.48, 100.0),)
        assert update.asks[0] == PriceLevel(0.52, 80.0)
        assert update.timestamp == 1767729600000
        assert update.hash == "abc"

    def test_snapshot_seconds_timestamp_scaled(self):
        frame = json.dumps([{"asset_id": "t", "bids": [], "asks": [], "timestamp": 1767729600}])
        assert decode_frame(frame)[0].timestamp == 1767729600000

    def test_snapshot_with_list_levels(self):
        frame = json.dumps([{"asset_id": "t", "bids": [["0.4", "5"]], "asks": [["0.6", "7"]]}])
        update = decode_frame(frame)[0]
        assert update.bids == (PriceLevel(0.4, 5.0),)
        assert update.asks == (PriceLevel(0.6, 7.0),)

    def test_book_event(self):
        frame = json.dumps({
            "event_type": "book",
            "asset_id": "tok",
            "bids": [],
            "asks": [{"price": "0.7", "size": "1"}],
        })
        update = decode_frame(frame)[0]
        assert isinstance(update, OrderBookUpdate)
        assert update.kind is BookUpdateKind.SNAPSHOT
        assert update.asks[0].price == 0.7

    def test_invalid_level_is_unrecognized(self):
        frame = json.dumps([{"asset_id": "t", "bids": [{"price": "x", "size": "1"}], "asks": []}])
        assert isinstance(decode_frame(frame)[0], Unrecognized)


class TestPriceChanges:
    """Tests for price_changes batches."""

    def test_best_prices(self):
        frame = json.dumps({
            "market": "cond-1",
            "timestamp": "1767729600000",
            "price_changes": [
                {"asset_id": "tok-yes", "best_bid": "0.55", "best_ask": "0.57"},
                {"asset_id": "tok-no", "best_ask": "0.45"},
            ],
        })

        messages = decode_frame(frame)

        assert len(messages) == 2
        assert all(m.kind is BookUpdateKind.BEST_PRICES for m in messages)
        assert messages[0].best_bid == 0.55
        assert messages[0].best_ask == 0.57
        assert messages[1].best_bid is None
        assert messages[1].best_ask == 0.45

    def test_sized_change_becomes_trade(self):
        frame = json.dumps({
            "market": "cond-1",
            "price_changes": [
                {"asset_id": "tok", "side": "sell", "price": "0.40", "size": "25", "hash": "h1"},
            ],
        })

        messages = decode_frame(frame)

        assert len(messages) == 1
        trade = messages[0]
        assert isinstance(trade, TradeEvent)
        assert trade.side is TradeSide.SELL
        assert trade.price == 0.40
        assert trade.size == 25.0
        assert trade.trade_id == "h1"

    def test_sized_change_with_best_prices_yields_both(self):
        frame = json.dumps({
            "price_changes": [
                {"asset_id": "tok", "side": "BUY", "price": "0.5", "size": "2", "best_bid": "0.5"},
            ],
        })
        messages = decode_frame(frame)
        assert [type(m) for m in messages] == [TradeEvent, OrderBookUpdate]

    def test_missing_asset_id(self):
        frame = json.dumps({"price_changes": [{"best_bid": "0.5"}, "junk"]})
        messages = decode_frame(frame)
        assert len(messages) == 2
        assert all(isinstance(m, Unrecognized) for m in messages)


class TestEvents:
    """Tests for event_type objects."""

    def test_last_trade_price(self):
        frame = '{"event_type": "last_trade_price", "asset_id": "tok", "price": "0.55"}'
        messages = decode_frame(frame)
        assert len(messages) == 1
        assert isinstance(messages[0], PriceUpdate)
        assert messages[0].token_id == "tok"
        assert messages[0].price == 0.55

    def test_legacy_price_change(self):
        frame = '{"event_type": "price_change", "asset_id": "tok", "price": "0.61"}'
        update = decode_frame(frame)[0]
        assert isinstance(update, PriceUpdate)
        assert update.price == 0.61

    def test_trade_event(self):
        frame = json.dumps({
            "event_type": "trade",
            "asset_id": "tok",
            "price": "0.5",
            "size": "10",
            "timestamp": 1767729600,
            "id": "t-1",
        })
        trade = decode_frame(frame)[0]
        assert isinstance(trade, TradeEvent)
        assert trade.side is TradeSide.BUY
        assert trade.timestamp == 1767729600000
        assert trade.trade_id == "t-1"

    def test_unhandled_event_type(self):
        update = decode_frame('{"event_type": "tick_size_change"}')[0]
        assert isinstance(update, Unrecognized)
        assert "tick_size_change" in update.reason


class TestTypedEnvelope:
    """Tests for the {"type": ..., "data": ...} envelope."""

    def test_error(self):
        messages = decode_frame('{"type": "error", "message": "bad subscription"}')
        assert messages == [ServerError("bad subscription")]

    def test_price(self):
        frame = '{"type": "price", "data": {"market": "tok", "price": 0.42, "timestamp": 1000}}'
        update = decode_frame(frame)[0]
        assert isinstance(update, PriceUpdate)
        assert update.token_id == "tok"
        assert update.price == 0.42
        assert update.timestamp == 1_000_000

    def test_book_is_legacy_keyed_by_market(self):
        frame = json.dumps({
            "type": "book",
            "data": {"market": "tok", "asset_id": "other", "bids": [], "asks": []},
        })
        update = decode_frame(frame)[0]
        assert update.kind is BookUpdateKind.LEGACY
        assert update.token_id == "tok"

    def test_typed_without_data(self):
        assert isinstance(decode_frame('{"type": "price"}')[0], Unrecognized)


class TestMalformed:
    """Malformed input is reported, never raised."""

    @pytest.mark.parametrize("raw", ["not json", "", "{", b"\xff\xfe"])
    def test_invalid_json(self, raw):
        messages = decode_frame(raw)
        assert len(messages) == 1
        assert isinstance(messages[0], Unrecognized)

    @pytest.mark.parametrize("raw", ["42", '"text"', "null", '{"foo": 1}'])
    def test_unknown_shapes(self, raw):
        messages = decode_frame(raw)
        assert len(messages) == 1
        assert isinstance(messages[0], Unrecognized)

    def test_bytes_frame(self):
        frame = b'{"event_type": "last_trade_price", "asset_id": "tok", "price": "0.3"}'
        assert isinstance(decode_frame(frame)[0], PriceUpdate)

    def test_empty_array(self):
        assert decode_frame("[]") == []

    @pytest.mark.parametrize("price", ['"NaN"', '"Infinity"', "NaN", "-Infinity"])
    def test_non_finite_price_rejected(self, price):
        frame = '{"event_type": "last_trade_price", "asset_id": "yes", "price": %s}' % price
        messages = decode_frame(frame)
        assert len(messages) == 1
        assert isinstance(messages[0], Unrecognized)

    def test_non_finite_book_level_rejected(self):
        frame = json.dumps({
            "event_type": "book",
            "asset_id": "tok",
            "bids": [{"price": "nan", "size": "10"}],
            "asks": [],
        })
        assert isinstance(decode_frame(frame)[0], Unrecognized)

    def test_non_finite_best_prices_dropped(self):
        frame = json.dumps({
            "market": "cond-1",
            "price_changes": [{"asset_id": "tok", "best_bid": "inf", "best_ask": "NaN"}],
        })
        assert decode_frame(frame) == []

    def test_infinite_book_timestamp(self):
        frame = '{"event_type": "book", "asset_id": "tok", "bids": [], "asks": [], "timestamp": Infinity}'
        update = decode_frame(frame)[0]
        assert isinstance(update, OrderBookUpdate)
        assert 0 < update.timestamp < 10**14

    def test_overflowing_batch_timestamp(self):
        frame = json.dumps({
            "market": "cond-1",
            "timestamp": "1e400",
            "price_changes": [{"asset_id": "tok", "best_bid": "0.4", "best_ask": "0.45"}],
        })
        update = decode_frame(frame)[0]
        assert isinstance(update, OrderBookUpdate)
        assert update.best_ask == 0.45
        assert 0 < update.timestamp < 10**14
