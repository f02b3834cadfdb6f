"""Fractional Kelly position sizing."""
from decimal import ROUND_HALF_UP, Decimal


def kelly_position_size(
    confidence: float,
    price: float,
    kelly_fraction: float = 0.25,
    cap: float = 100.0,
) -> float:
    """
    Size a binary-outcome position with fractional Kelly.

    Kelly optimal fraction = (p * b - q) / b, where p is the win probability
    (signal confidence), q = 1 - p and b = (1 - price) / price are the
    implied odds of buying at ``price``.

    Args:
        confidence: Win probability estimate (0-1)
        price: Entry price per share (0-1, exclusive)
        kelly_fraction: Fraction of full Kelly to bet
        cap: Hard cap on the returned size

    Returns:
        Size in USD, rounded half-up to cents. 0 for a price outside (0, 1)
        or a non-positive Kelly fraction.
    """
    if not 0 < price < 1:
        return 0.0

    p = confidence
    q = 1 - p
    b = (1 - price) / price

    fraction = max(0.0, (p * b - q) / b * kelly_fraction)
    size = min(cap, fraction * cap)

    return float(Decimal(str(size)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
