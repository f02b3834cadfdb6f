"""
Paper trading for strategy evaluation.

This module provides:
- Simulated positions with capital management (PaperTradingLedger)
- Settlement at market expiry and performance metrics
"""

from .ledger import (
    CloseReason,
    PaperTrade,
    PaperTradingLedger,
    PerformanceMetrics,
    TradeStatus,
)

__all__ = [
    "PaperTradingLedger",
    "PaperTrade",
    "PerformanceMetrics",
    "TradeStatus",
    "CloseReason",
]
