"""
Individual trading signals for 15-minute up/down markets.

Each signal returns a SignalScore: score in [-1, 1] (positive favours YES)
and a confidence in [0, 1]. Missing or degraded inputs produce a zero score
with low confidence instead of raising.

Signals:
1. Time decay - near expiry, bet the side the reference feed already shows
2. Order-book imbalance - bid-depth share difference between outcomes
3. Trade momentum - directional share of recent trade volume
4. Reference movement - window change of the reference price
5. Price inefficiency - market yes price vs a fair value from the window change
6. Feed divergence - agreement between the fast and authoritative feeds
"""

from typing import Optional

from ..feeds.base import Direction, ReferencePriceFeed
from ..models import MarketState, SignalScore
from ..tracker import OrderbookDepth, TradeMomentum


def _clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def time_decay_signal(
    state: MarketState,
    time_to_expiry_ms: float,
    feed: Optional[ReferencePriceFeed],
    activation_minutes: float,
) -> SignalScore:
    """
    Signal 1: Time decay.

    Inside the activation window, follow the reference prediction when the
    market has not yet priced it in. Confidence grows as expiry approaches:
    ``min(0.95, prediction * (0.6 + 0.4 * time_multiplier))``.
    """
    minutes = time_to_expiry_ms / 60_000

    if minutes > activation_minutes:
        return SignalScore(0.0, 0.1, f"{minutes:.1f}m to expiry - time decay not active")

    if feed is None:
        return SignalScore(0.0, 0.1, "No reference feed for time decay analysis")

    prediction = feed.predict_outcome()
    if prediction.direction is Direction.NEUTRAL:
        return SignalScore(0.0, 0.2, f"Reference change {prediction.change:.3f}% - too close to call")

    time_multiplier = min(1.0, (activation_minutes - minutes) / activation_minutes)
    sign = 1.0 if prediction.direction is Direction.UP else -1.0
    confidence = min(0.95, prediction.confidence * (0.6 + 0.4 * time_multiplier))

    implied = state.yes_price if prediction.direction is Direction.UP else state.no_price
    edge = confidence - implied

    if edge < 0.05:
        return SignalScore(
            sign * 0.3,
            0.3,
            f"Time decay: {prediction.direction} but market already priced at {implied * 100:.1f}%",
        )

    return SignalScore(
        sign * min(1.0, edge * 5),
        confidence,
        f"Time decay: {prediction.direction} {prediction.change:.3f}%, "
        f"{minutes:.1f}m left, edge {edge * 100:.1f}%",
    )


def orderbook_imbalance_signal(analysis: Optional[OrderbookDepth]) -> SignalScore:
    """Signal 2: Heavy bid depth on one outcome indicates direction."""
    if analysis is None:
        return SignalScore(0.0, 0.1, "No orderbook data available")

    imbalance = analysis.imbalance
    abs_imbalance = abs(imbalance)

    if abs_imbalance < 0.1:
        return SignalScore(0.0, 0.2, f"Orderbook balanced (imbalance: {imbalance * 100:.1f}%)")

    total_depth = analysis.total_bid_depth
    confidence = min(0.7, 0.3 + abs_imbalance * 0.5)
    if total_depth > 10_000:
        confidence += 0.1
    if analysis.average_spread < 0.02:
        confidence += 0.1

    direction = "YES" if imbalance > 0 else "NO"
    return SignalScore(
        imbalance,
        min(0.8, confidence),
        f"Orderbook: {abs_imbalance * 100:.1f}% imbalance toward {direction}, depth ${total_depth:.0f}",
    )


def trade_momentum_signal(momentum: TradeMomentum) -> SignalScore:
    """Signal 3: Recent trade flow."""
    if momentum.trade_count < 5:
        return SignalScore(0.0, 0.1, f"Only {momentum.trade_count} recent trades - insufficient data")

    score = (momentum.yes_ratio - 0.5) * 2
    if abs(score) < 0.2:
        return SignalScore(0.0, 0.2, f"Trade flow balanced: {momentum.yes_ratio * 100:.1f}% YES")

    confidence = 0.3 + abs(score) * 0.3
    if momentum.total_volume > 1000:
        confidence += 0.1
    if momentum.trade_count > 20:
        confidence += 0.1

    direction = "YES" if momentum.yes_ratio > 0.5 else "NO"
    return SignalScore(
        score,
        min(0.7, confidence),
        f"Trade momentum: {momentum.yes_ratio * 100:.1f}% toward {direction}, "
        f"{momentum.trade_count} trades, ${momentum.total_volume:.0f} volume",
    )


def reference_movement_signal(feed: Optional[ReferencePriceFeed]) -> SignalScore:
    """Signal 4: Direct correlation with the reference price move (2% = full score)."""
    if feed is None or not feed.is_connected():
        return SignalScore(0.0, 0.1, "No reference feed available")

    change = feed.get_window_change()
    if change is None:
        return SignalScore(0.0, 0.1, "No reference window data")

    percent = change.percent
    if abs(percent) < 0.01:
        return SignalScore(0.0, 0.2, f"Reference change {percent:.4f}% - noise range")

    score = _clamp(percent * 50)
    momentum = feed.get_recent_momentum()
    confidence = min(0.8, 0.3 + abs(percent) * 20)
    if (percent > 0 and momentum > 0) or (percent < 0 and momentum < 0):
        confidence = min(0.9, confidence + 0.1)

    direction = "UP" if percent > 0 else "DOWN"
    return SignalScore(
        score,
        confidence,
        f"Reference {direction} {percent:.4f}%, momentum {momentum:.4f}%",
    )


def price_inefficiency_signal(state: MarketState, feed: Optional[ReferencePriceFeed]) -> SignalScore:
    """Signal 5: Market yes price against a fair value implied by the window change."""
    if feed is None or not feed.is_connected():
        return SignalScore(0.0, 0.1, "No reference feed for inefficiency analysis")

    change = feed.get_window_change()
    if change is None:
        return SignalScore(0.0, 0.1, "No window data for inefficiency analysis")

    abs_change = abs(change.percent)
    if abs_change < 0.01:
        fair_yes = 0.5
    elif change.percent > 0:
        fair_yes = min(0.95, 0.5 + abs_change * 10)
    else:
        fair_yes = max(0.05, 0.5 - abs_change * 10)

    market_yes = state.yes_price
    mispricing = fair_yes - market_yes

    if abs(mispricing) < 0.05:
        return SignalScore(
            0.0,
            0.2,
            f"Market fairly priced (YES: {market_yes * 100:.1f}% vs fair {fair_yes * 100:.1f}%)",
        )

    direction = "underpriced" if mispricing > 0 else "overpriced"
    return SignalScore(
        _clamp(mispricing * 5),
        min(0.7, 0.3 + abs(mispricing) * 2),
        f"YES {direction} by {mispricing * 100:.1f}% "
        f"(market {market_yes * 100:.1f}% vs fair {fair_yes * 100:.1f}%)",
    )


def feed_divergence_signal(
    fast_feed: Optional[ReferencePriceFeed],
    authoritative_feed: Optional[ReferencePriceFeed],
    veto_bps: float = 5.0,
    agree_bps: float = 2.0,
) -> tuple[SignalScore, bool]:
    """
    Signal 6: Cross-feed divergence (basis risk).

    Compares the fast feed's window change with the authoritative
    (settlement) feed's. Divergence is measured in basis points of window
    change: ``|fast% - auth%| * 100``.

    Returns:
        (SignalScore, vetoed). ``vetoed`` is True when the divergence
        exceeds ``veto_bps``; the composite must then not trade.
    """
    if authoritative_feed is None or not authoritative_feed.is_connected() or fast_feed is None:
        return SignalScore(0.0, 0.1, "Authoritative feed unavailable - divergence not checked"), False

    fast_change = fast_feed.get_window_change()
    auth_change = authoritative_feed.get_window_change()
    if fast_change is None or auth_change is None:
        return SignalScore(0.0, 0.1, "No window data for divergence check"), False

    fast_pct = fast_change.percent
    auth_pct = auth_change.percent
    divergence_bps = abs(fast_pct - auth_pct) * 100

    if divergence_bps > veto_bps:
        return (
            SignalScore(
                0.0,
                0.05,
                f"Feeds diverge {divergence_bps:.1f}bps (fast {fast_pct:.3f}% vs "
                f"settlement {auth_pct:.3f}%) - trading vetoed",
            ),
            True,
        )

    if abs(fast_pct) < fast_feed.NOISE_THRESHOLD_PCT and abs(auth_pct) < authoritative_feed.NOISE_THRESHOLD_PCT:
        return SignalScore(0.0, 0.2, f"Both feeds flat ({divergence_bps:.1f}bps apart)"), False

    same_direction = fast_pct * auth_pct > 0
    sign = 1.0 if auth_pct > 0 else -1.0
    direction = "UP" if auth_pct > 0 else "DOWN"

    if same_direction and divergence_bps <= agree_bps:
        agreement = 1.0 - divergence_bps / agree_bps if agree_bps > 0 else 1.0
        return (
            SignalScore(
                sign * min(1.0, abs(auth_pct) * 50),
                0.7 + 0.2 * agreement,
                f"Feeds agree {direction} within {divergence_bps:.1f}bps",
            ),
            False,
        )

    if same_direction and abs(fast_pct) > abs(auth_pct):
        return (
            SignalScore(
                sign * 0.3,
                0.4,
                f"Fast feed leading {direction} by {divergence_bps:.1f}bps - early entry",
            ),
            False,
        )

    return SignalScore(0.0, 0.3, f"Feeds mixed ({divergence_bps:.1f}bps apart)"), False
