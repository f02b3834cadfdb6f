"""
Composite strategy scorer.

Combines the six signals into a single directional score and confidence,
then turns a strong enough composite into a sized TradingSignal.

Weights shift toward time decay as expiry approaches: inside the
activation window the time-decay weight gains ``0.2 * boost`` (boost = the
elapsed share of the window) and every other weight loses a fifth of that,
floored at 0. Agreement across signals scales confidence by
``0.8 + 0.4 * agreement``. A divergence veto caps the composite confidence
at the veto confidence and blocks signal generation.
"""

import logging
from typing import Optional

from ..feeds.base import ReferencePriceFeed
from ..models import (
    MarketState,
    Outcome,
    SignalBreakdown,
    SignalScore,
    StrategyConfig,
    TradingSignal,
)
from ..tracker import RotatingMarketTracker
from . import signals
from .sizing import kelly_position_size

logger = logging.getLogger(__name__)

_SUMMARY_TAGS = {
    "time_decay": "TD",
    "orderbook_imbalance": "OB",
    "trade_momentum": "TM",
    "reference_movement": "REF",
    "price_inefficiency": "PI",
    "feed_divergence": "DIV",
}


def primary_feed(
    fast_feed: Optional[ReferencePriceFeed],
    authoritative_feed: Optional[ReferencePriceFeed],
) -> Optional[ReferencePriceFeed]:
    """The authoritative feed when connected, else the fast feed."""
    if authoritative_feed is not None and authoritative_feed.is_connected():
        return authoritative_feed
    return fast_feed


class CompositeScorer:
    """
    Multi-signal scorer for 15-minute up/down markets.

    Example:
        scorer = CompositeScorer()
        breakdown = scorer.analyze(state, tracker, binance, chainlink)
        signal = scorer.generate_signal(state, breakdown)
    """

    def __init__(self, config: Optional[StrategyConfig] = None):
        self._config = config or StrategyConfig()

    def get_config(self) -> StrategyConfig:
        return self._config.copy()

    def update_config(self, config: StrategyConfig) -> None:
        """Replace the configuration wholesale."""
        self._config = config
        logger.info(f"Strategy config updated: {config}")

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze(
        self,
        state: MarketState,
        tracker: RotatingMarketTracker,
        fast_feed: Optional[ReferencePriceFeed] = None,
        authoritative_feed: Optional[ReferencePriceFeed] = None,
    ) -> SignalBreakdown:
        """
        Evaluate every signal for the current market state.

        Args:
            state: Current market state
            tracker: Tracker supplying expiry, depth and trade momentum
            fast_feed: Non-settling reference feed (Binance)
            authoritative_feed: Settlement reference feed (Chainlink)

        Returns:
            SignalBreakdown including the composite.
        """
        cfg = self._config
        time_to_expiry_ms = tracker.get_time_to_expiry() or 0.0
        feed = primary_feed(fast_feed, authoritative_feed)

        time_decay = signals.time_decay_signal(
            state, time_to_expiry_ms, feed, cfg.time_decay_activation_minutes
        )
        orderbook = signals.orderbook_imbalance_signal(tracker.get_orderbook_analysis())
        momentum = signals.trade_momentum_signal(tracker.get_trade_momentum(60_000))
        movement = signals.reference_movement_signal(feed)
        inefficiency = signals.price_inefficiency_signal(state, feed)
        divergence, vetoed = signals.feed_divergence_signal(
            fast_feed,
            authoritative_feed,
            veto_bps=cfg.divergence_veto_bps,
            agree_bps=cfg.divergence_agree_bps,
        )

        components = {
            "time_decay": time_decay,
            "orderbook_imbalance": orderbook,
            "trade_momentum": momentum,
            "reference_movement": movement,
            "price_inefficiency": inefficiency,
            "feed_divergence": divergence,
        }
        composite = self._composite(components, time_to_expiry_ms, vetoed)

        return SignalBreakdown(
            time_decay=time_decay,
            orderbook_imbalance=orderbook,
            trade_momentum=momentum,
            reference_movement=movement,
            price_inefficiency=inefficiency,
            feed_divergence=divergence,
            composite=composite,
            vetoed=vetoed,
        )

    def adjusted_weights(self, time_to_expiry_ms: float) -> dict[str, float]:
        """Signal weights after the time-to-expiry shift."""
        cfg = self._config
        weights = cfg.weights.as_dict()
        activation = cfg.time_decay_activation_minutes
        minutes = time_to_expiry_ms / 60_000

        if activation > 0 and minutes < activation:
            boost = min(1.0, (activation - minutes) / activation)
            shift = boost * 0.2
            others = [name for name in weights if name != "time_decay"]
            weights["time_decay"] += shift
            for name in others:
                weights[name] = max(0.0, weights[name] - shift / len(others))

        return weights

    def _composite(
        self,
        components: dict[str, SignalScore],
        time_to_expiry_ms: float,
        vetoed: bool,
    ) -> SignalScore:
        weights = self.adjusted_weights(time_to_expiry_ms)

        score = sum(components[name].score * weight for name, weight in weights.items())
        weighted_confidence = sum(
            components[name].confidence * weight for name, weight in weights.items()
        )

        scores = [s.score for s in components.values()]
        positive = sum(1 for s in scores if s > 0.1)
        negative = sum(1 for s in scores if s < -0.1)
        agreement = max(positive, negative) / len(scores)

        confidence = min(0.95, weighted_confidence * (0.8 + 0.4 * agreement))
        if vetoed:
            confidence = min(confidence, components["feed_divergence"].confidence)

        direction = "YES" if score > 0 else "NO"
        summary = ", ".join(
            f"{_SUMMARY_TAGS[name]}:{s.score * 100:.0f}%"
            for name, s in components.items()
            if s.score != 0
        )
        reason = f"Composite: {direction} ({abs(score) * 100:.1f}%) - {summary}"
        if vetoed:
            reason += " [VETOED: feed divergence]"

        return SignalScore(score, confidence, reason)

    # =========================================================================
    # Signal generation
    # =========================================================================

    def generate_signal(self, state: MarketState, breakdown: SignalBreakdown) -> Optional[TradingSignal]:
        """
        Turn a breakdown into a sized trade recommendation.

        Returns:
            TradingSignal, or None when vetoed or below thresholds.
        """
        composite = breakdown.composite
        cfg = self._config

        if breakdown.vetoed:
            return None
        if composite.confidence < cfg.min_confidence_to_trade:
            return None
        if abs(composite.score) < cfg.min_score_to_trade:
            return None

        outcome = Outcome.YES if composite.score > 0 else Outcome.NO
        price = state.price_of(outcome)
        if not 0 < price < 1:
            logger.debug(f"No signal: {outcome} price {price} outside (0, 1)")
            return None
        size = kelly_position_size(
            composite.confidence,
            price,
            kelly_fraction=cfg.kelly_fraction,
            cap=cfg.max_position_size,
        )

        return TradingSignal(
            market_id=state.market_id,
            outcome=outcome,
            token_id=state.token_of(outcome),
            price=price,
            size=size,
            reason=composite.reason,
            confidence=composite.confidence,
            breakdown=breakdown,
        )
