"""
Signal-fusion strategy for 15-minute up/down markets.

This module provides:
- Six independent signals (time decay, order-book imbalance, trade
  momentum, reference movement, price inefficiency, feed divergence)
- The composite scorer with time-varying weights (CompositeScorer)
- Fractional Kelly sizing (kelly_position_size)
"""

from .scorer import CompositeScorer, primary_feed
from .sizing import kelly_position_size

__all__ = [
    "CompositeScorer",
    "primary_feed",
    "kelly_position_size",
]
