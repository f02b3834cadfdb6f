"""
Paper-trading signal engine for Polymarket 15-minute BTC up/down markets.

This module provides:
- Market discovery and order-book streaming (updown.api)
- Reference price feeds from Binance and Chainlink (updown.feeds)
- Market state tracking (RotatingMarketTracker)
- Six-signal composite scoring with Kelly sizing (updown.strategy)
- A paper trading ledger (updown.paper)
- The engine tying them together (UpdownEngine)
"""

from .engine import EngineStats, SettlementReport, UpdownEngine
from .logging_setup import setup_logging
from .tracker import RotatingMarketTracker

__version__ = "0.1.0"

__all__ = [
    "UpdownEngine",
    "EngineStats",
    "SettlementReport",
    "RotatingMarketTracker",
    "setup_logging",
]
