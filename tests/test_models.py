"""Tests for shared data types."""

from datetime import datetime, timezone

import pytest

from updown.models import (
    MarketDescriptor,
    MarketState,
    OrderBook,
    Outcome,
    PriceLevel,
    SignalWeights,
    StrategyConfig,
)


class TestOutcome:
    """Tests for outcome parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("yes", Outcome.YES),
        ("UP", Outcome.YES),
        (" Down ", Outcome.NO),
        ("no", Outcome.NO),
        (Outcome.NO, Outcome.NO),
    ])
    def test_parse(self, value, expected):
        assert Outcome.parse(value) is expected

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            Outcome.parse("sideways")

    def test_opposite(self):
        assert Outcome.YES.opposite is Outcome.NO
        assert str(Outcome.NO) == "no"


class TestMarketTypes:
    """Tests for order book and market state helpers."""

    def test_best_prices(self):
        book = OrderBook(token_id="t", bids=[PriceLevel(0.4, 1)], asks=[])
        assert book.best_bid == 0.4
        assert book.best_ask is None

    def test_state_from_descriptor(self):
        descriptor = MarketDescriptor(
            market_id="cond-1",
            question="q",
            end_time=datetime(2026, 1, 6, 20, 0, tzinfo=timezone.utc),
            yes_token_id="y",
            no_token_id="n",
            yes_price=0.6,
            no_price=0.4,
        )
        state = MarketState.from_descriptor(descriptor)
        assert state.price_of(Outcome.YES) == 0.6
        assert state.token_of(Outcome.NO) == "n"
        assert state.yes_book is None


class TestStrategyConfig:
    """Tests for strategy configuration."""

    def test_default_weights_sum_to_one(self):
        assert SignalWeights().total() == pytest.approx(1.0)

    def test_copy_with_changes(self):
        config = StrategyConfig()
        changed = config.copy(min_score_to_trade=0.3)
        assert changed.min_score_to_trade == 0.3
        assert config.min_score_to_trade == 0.15
        assert changed.weights == config.weights
