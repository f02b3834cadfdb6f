"""
Core data types shared by the tracker, scorer and engine.

This module defines the market-side value types (order books, market state,
trade history entries) and the strategy-side value types (signal scores,
signal breakdowns, trading signals and the strategy configuration).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Outcome(Enum):
    """Binary market outcome. "Up" markets map to YES, "Down" to NO."""

    YES = "yes"
    NO = "no"

    def __str__(self) -> str:
        return self.value

    @property
    def opposite(self) -> "Outcome":
        return Outcome.NO if self is Outcome.YES else Outcome.YES

    @classmethod
    def parse(cls, value: "str | Outcome") -> "Outcome":
        """Parse "yes"/"up" or "no"/"down" (any case) into an Outcome."""
        if isinstance(value, Outcome):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("yes", "up"):
            return cls.YES
        if normalized in ("no", "down"):
            return cls.NO
        raise ValueError(f"Unknown outcome: {value!r}")


class TradeSide(Enum):
    """Trade direction as reported by the feed."""

    BUY = "BUY"
    SELL = "SELL"

    def __str__(self) -> str:
        return self.value


@dataclass
class PriceLevel:
    """One order-book level."""

    price: float
    size: float


@dataclass
class OrderBook:
    """
    Order book for one outcome token.

    Levels are kept in the order the feed sent them (price priority as
    received); they are never re-sorted.

    Attributes:
        token_id: Outcome token the book belongs to.
        market: Market (condition) id as reported by the feed.
        bids: Bid levels, best first.
        asks: Ask levels, best first.
        timestamp: Feed timestamp in milliseconds.
        hash: Integrity hash supplied by the feed (opaque).
    """

    token_id: str
    market: str = ""
    bids: list[PriceLevel] = field(default_factory=list)
    asks: list[PriceLevel] = field(default_factory=list)
    timestamp: int = 0
    hash: str = ""

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None


@dataclass
class MarketDescriptor:
    """
    A resolved 15-minute market, as handed to the tracker.

    Attributes:
        market_id: Condition id.
        question: Human readable question.
        end_time: Resolution time (timezone-aware).
        yes_token_id: Token for the "Up"/"Yes" outcome.
        no_token_id: Token for the "Down"/"No" outcome.
        yes_price: Current yes price (0-1).
        no_price: Current no price (0-1).
        slug: Market slug, e.g. btc-updown-15m-1767729600.
    """

    market_id: str
    question: str
    end_time: datetime
    yes_token_id: str
    no_token_id: str
    yes_price: float = 0.5
    no_price: float = 0.5
    slug: str = ""


@dataclass
class MarketState:
    """Live state of the currently tracked market."""

    market_id: str
    question: str
    end_time: datetime
    yes_token_id: str
    no_token_id: str
    yes_price: float
    no_price: float
    yes_book: Optional[OrderBook] = None
    no_book: Optional[OrderBook] = None
    last_update: datetime = field(default_factory=_utc_now)

    @classmethod
    def from_descriptor(cls, descriptor: MarketDescriptor) -> "MarketState":
        return cls(
            market_id=descriptor.market_id,
            question=descriptor.question,
            end_time=descriptor.end_time,
            yes_token_id=descriptor.yes_token_id,
            no_token_id=descriptor.no_token_id,
            yes_price=descriptor.yes_price,
            no_price=descriptor.no_price,
        )

    def price_of(self, outcome: Outcome) -> float:
        return self.yes_price if outcome is Outcome.YES else self.no_price

    def token_of(self, outcome: Outcome) -> str:
        return self.yes_token_id if outcome is Outcome.YES else self.no_token_id


@dataclass
class TradeRecord:
    """Trade history entry used for momentum analysis."""

    outcome: Outcome
    side: TradeSide
    price: float
    size: float
    timestamp: int  # milliseconds

    @property
    def volume(self) -> float:
        return self.price * self.size


@dataclass(frozen=True)
class SignalScore:
    """
    Output of a single signal.

    Attributes:
        score: Direction and magnitude, -1 to 1 (positive = YES).
        confidence: 0 to 1.
        reason: Human readable rationale.
    """

    score: float
    confidence: float
    reason: str


@dataclass(frozen=True)
class SignalBreakdown:
    """All signals for one evaluation cycle, plus the composite."""

    time_decay: SignalScore
    orderbook_imbalance: SignalScore
    trade_momentum: SignalScore
    reference_movement: SignalScore
    price_inefficiency: SignalScore
    feed_divergence: SignalScore
    composite: SignalScore
    vetoed: bool = False

    def components(self) -> dict[str, SignalScore]:
        """Named sub-signals, excluding the composite."""
        return {
            "time_decay": self.time_decay,
            "orderbook_imbalance": self.orderbook_imbalance,
            "trade_momentum": self.trade_momentum,
            "reference_movement": self.reference_movement,
            "price_inefficiency": self.price_inefficiency,
            "feed_divergence": self.feed_divergence,
        }


@dataclass(frozen=True)
class TradingSignal:
    """A sized trade recommendation."""

    market_id: str
    outcome: Outcome
    token_id: str
    price: float
    size: float
    reason: str
    confidence: float
    breakdown: Optional[SignalBreakdown] = None
    side: TradeSide = TradeSide.BUY


@dataclass(frozen=True)
class SignalWeights:
    """Per-signal weights. Expected to sum to 1.0."""

    time_decay: float = 0.35
    orderbook_imbalance: float = 0.18
    trade_momentum: float = 0.13
    reference_movement: float = 0.18
    price_inefficiency: float = 0.08
    feed_divergence: float = 0.08

    def as_dict(self) -> dict[str, float]:
        return {
            "time_decay": self.time_decay,
            "orderbook_imbalance": self.orderbook_imbalance,
            "trade_momentum": self.trade_momentum,
            "reference_movement": self.reference_movement,
            "price_inefficiency": self.price_inefficiency,
            "feed_divergence": self.feed_divergence,
        }

    def total(self) -> float:
        return sum(self.as_dict().values())


@dataclass(frozen=True)
class StrategyConfig:
    """
    Strategy configuration.

    Attributes:
        weights: Signal weights.
        min_confidence_to_trade: Minimum composite confidence (0-1).
        min_score_to_trade: Minimum absolute composite score (0-1).
        time_decay_activation_minutes: Minutes to expiry at which time decay activates.
        kelly_fraction: Fraction of full Kelly to bet (0.25 = quarter Kelly).
        max_position_size: Hard cap per trade used by Kelly sizing.
        divergence_veto_bps: Feed divergence above which trading is vetoed.
        divergence_agree_bps: Feed divergence below which feeds are considered in agreement.
    """

    weights: SignalWeights = field(default_factory=SignalWeights)
    min_confidence_to_trade: float = 0.30
    min_score_to_trade: float = 0.15
    time_decay_activation_minutes: float = 8.0
    kelly_fraction: float = 0.25
    max_position_size: float = 100.0
    divergence_veto_bps: float = 5.0
    divergence_agree_bps: float = 2.0

    def copy(self, **changes) -> "StrategyConfig":
        return replace(self, **changes)
