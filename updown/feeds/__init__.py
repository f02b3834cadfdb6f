"""
Reference price feeds for BTC/USD.

This module provides:
- A shared feed contract with window tracking and outcome prediction
- Binance miniTicker stream (fast, non-settling)
- Chainlink aggregator polling (authoritative settlement source)
"""

from .base import (
    Direction,
    FeedError,
    FeedUnavailableError,
    Prediction,
    PriceTick,
    ReferencePriceFeed,
    WindowChange,
)
from .binance import BinancePriceFeed
from .chainlink import ChainlinkPriceFeed

__all__ = [
    "ReferencePriceFeed",
    "BinancePriceFeed",
    "ChainlinkPriceFeed",
    "Direction",
    "Prediction",
    "PriceTick",
    "WindowChange",
    "FeedError",
    "FeedUnavailableError",
]
