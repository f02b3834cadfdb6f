"""
Polymarket API clients.

This module provides:
- Market-channel frame decoding (decode_frame and message variants)
- Market-channel WebSocket stream with reconnect (ClobMarketStream)
- Order-book REST snapshots (ClobBookClient)
- 15-minute market discovery via Gamma (GammaMarketResolver)
"""

from .messages import (
    BookUpdateKind,
    OrderBookUpdate,
    PriceUpdate,
    ServerError,
    TradeEvent,
    Unrecognized,
    decode_frame,
)
from .clob_ws import (
    ClobMarketStream,
    ConnectionState,
    ReconnectExhausted,
    ReconnectExhaustedError,
    StreamError,
)
from .clob_rest import ClobBookClient
from .gamma import GammaMarketResolver, MarketResolutionError

__all__ = [
    # Frame decoding
    "decode_frame",
    "BookUpdateKind",
    "PriceUpdate",
    "OrderBookUpdate",
    "TradeEvent",
    "ServerError",
    "Unrecognized",
    # Streaming
    "ClobMarketStream",
    "ConnectionState",
    "ReconnectExhausted",
    "StreamError",
    "ReconnectExhaustedError",
    # REST
    "ClobBookClient",
    "GammaMarketResolver",
    "MarketResolutionError",
]
