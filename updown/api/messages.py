"""
Decoder for CLOB market-channel WebSocket frames.

The market channel sends several payload shapes over the same socket:
order-book snapshot arrays, ``price_changes`` batches, single
``event_type`` objects and an older ``{"type": ..., "data": ...}`` envelope.
``decode_frame`` turns one raw frame into a list of canonical messages,
trying each shape in a fixed priority order. Frames that match nothing come
back as an ``Unrecognized`` message instead of raising.

Example:
    >>> decode_frame('{"event_type": "last_trade_price", "asset_id": "tok", "price": "0.55"}')
    [PriceUpdate(token_id='tok', price=0.55, timestamp=...)]
"""

import json
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..models import PriceLevel, TradeSide


def _now_ms() -> int:
    return int(time.time() * 1000)


class BookUpdateKind(Enum):
    """Shape of an order-book update."""

    SNAPSHOT = "snapshot"          # full bids/asks for one token
    BEST_PRICES = "best_prices"    # best_bid/best_ask delta from price_changes
    LEGACY = "legacy"              # typed {"type": "book"} envelope keyed by market

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PriceUpdate:
    """Last traded price for a token."""

    token_id: str
    price: float
    timestamp: int = field(default_factory=_now_ms)


@dataclass(frozen=True)
class OrderBookUpdate:
    """
    Order-book change for a token.

    SNAPSHOT and LEGACY updates carry ``bids``/``asks``; BEST_PRICES updates
    carry ``best_bid``/``best_ask`` (either may be None).
    """

    kind: BookUpdateKind
    token_id: str
    market: str = ""
    bids: tuple[PriceLevel, ...] = ()
    asks: tuple[PriceLevel, ...] = ()
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    timestamp: int = field(default_factory=_now_ms)
    hash: str = ""


@dataclass(frozen=True)
class TradeEvent:
    """An executed trade (or a sized price change treated as one)."""

    token_id: str
    side: TradeSide
    price: float
    size: float
    market: str = ""
    timestamp: int = field(default_factory=_now_ms)
    trade_id: str = ""


@dataclass(frozen=True)
class ServerError:
    """Error message sent by the server."""

    message: str


@dataclass(frozen=True)
class Unrecognized:
    """A frame (or frame item) that matched no known shape."""

    reason: str
    raw: str = ""


StreamMessage = Union[PriceUpdate, OrderBookUpdate, TradeEvent, ServerError, Unrecognized]
MarketEvent = Union[PriceUpdate, OrderBookUpdate, TradeEvent]


# =============================================================================
# Field helpers
# =============================================================================


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_timestamp(value: Any) -> int:
    """Normalize a feed timestamp to milliseconds (seconds are scaled up)."""
    try:
        ts = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return _now_ms()
    if ts <= 0:
        return _now_ms()
    if ts < 10_000_000_000:
        ts *= 1000
    return ts


def _to_side(value: Any) -> Optional[TradeSide]:
    try:
        return TradeSide(str(value).upper())
    except ValueError:
        return None


def _levels(raw_levels: Any) -> Optional[tuple[PriceLevel, ...]]:
    if not isinstance(raw_levels, list):
        return None
    levels = []
    for level in raw_levels:
        if isinstance(level, dict):
            price = _to_float(level.get("price"))
            size = _to_float(level.get("size"))
        elif isinstance(level, (list, tuple)) and len(level) >= 2:
            price = _to_float(level[0])
            size = _to_float(level[1])
        else:
            return None
        if price is None or size is None:
            return None
        levels.append(PriceLevel(price=price, size=size))
    return tuple(levels)


def _preview(data: Any, limit: int = 200) -> str:
    try:
        text = json.dumps(data)
    except (TypeError, ValueError):
        text = repr(data)
    return text[:limit]


def _is_snapshot(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("bids"), list)
        and isinstance(item.get("asks"), list)
    )


# =============================================================================
# Shape decoders
# =============================================================================


def _decode_snapshot(item: dict, kind: BookUpdateKind = BookUpdateKind.SNAPSHOT) -> StreamMessage:
    if kind is BookUpdateKind.LEGACY:
        token_id = item.get("market") or item.get("asset_id")
    else:
        token_id = item.get("asset_id") or item.get("market")
    bids = _levels(item.get("bids"))
    asks = _levels(item.get("asks"))
    if not token_id or bids is None or asks is None:
        return Unrecognized("invalid order book", _preview(item))
    return OrderBookUpdate(
        kind=kind,
        token_id=str(token_id),
        market=str(item.get("market", "")),
        bids=bids,
        asks=asks,
        timestamp=_to_timestamp(item.get("timestamp")),
        hash=str(item.get("hash", "")),
    )


def _decode_price_changes(payload: dict) -> list[StreamMessage]:
    market = str(payload.get("market", ""))
    messages: list[StreamMessage] = []

    for change in payload["price_changes"]:
        if not isinstance(change, dict):
            messages.append(Unrecognized("invalid price change", _preview(change)))
            continue

        token_id = change.get("asset_id")
        if not token_id:
            messages.append(Unrecognized("price change without asset_id", _preview(change)))
            continue
        token_id = str(token_id)

        # Sized change: treated as a trade for momentum tracking
        side = _to_side(change.get("side")) if change.get("side") else None
        price = _to_float(change.get("price"))
        size = _to_float(change.get("size"))
        if side is not None and price and size:
            messages.append(
                TradeEvent(
                    token_id=token_id,
                    side=side,
                    price=price,
                    size=size,
                    market=market,
                    trade_id=str(change.get("hash", "")),
                )
            )

        best_bid = _to_float(change.get("best_bid"))
        best_ask = _to_float(change.get("best_ask"))
        if best_bid is not None or best_ask is not None:
            messages.append(
                OrderBookUpdate(
                    kind=BookUpdateKind.BEST_PRICES,
                    token_id=token_id,
                    market=market,
                    best_bid=best_bid,
                    best_ask=best_ask,
                    timestamp=_to_timestamp(payload.get("timestamp")),
                )
            )

    return messages


def _decode_trade(data: dict) -> StreamMessage:
    token_id = data.get("asset_id") or data.get("market")
    price = _to_float(data.get("price"))
    size = _to_float(data.get("size"))
    side = _to_side(data.get("side") or "BUY")
    if not token_id or not price or not size or side is None:
        return Unrecognized("invalid trade", _preview(data))
    return TradeEvent(
        token_id=str(token_id),
        side=side,
        price=price,
        size=size,
        market=str(data.get("market", "")),
        timestamp=_to_timestamp(data.get("timestamp")),
        trade_id=str(data.get("id", "")),
    )


def _decode_event(data: dict) -> StreamMessage:
    event_type = data.get("event_type")

    if event_type == "last_trade_price":
        price = _to_float(data.get("price"))
        if data.get("asset_id") and price:
            return PriceUpdate(token_id=str(data["asset_id"]), price=price)
        return Unrecognized("invalid last_trade_price", _preview(data))

    if event_type == "price_change" and "price" in data:
        token_id = data.get("asset_id") or data.get("market")
        price = _to_float(data.get("price"))
        if token_id and price:
            return PriceUpdate(token_id=str(token_id), price=price)
        return Unrecognized("invalid price_change", _preview(data))

    if event_type == "book":
        return _decode_snapshot(data)

    if event_type == "trade":
        return _decode_trade(data)

    return Unrecognized(f"unhandled event_type {event_type!r}", _preview(data))


def _decode_typed(data: dict) -> StreamMessage:
    msg_type = data.get("type")

    if msg_type == "error":
        message = data.get("message")
        if isinstance(message, str):
            return ServerError(message)
        return Unrecognized("invalid error message", _preview(data))

    body = data.get("data")
    if not isinstance(body, dict):
        return Unrecognized("typed message without data", _preview(data))

    if msg_type == "price":
        token_id = body.get("market")
        price = _to_float(body.get("price"))
        if token_id and price is not None:
            return PriceUpdate(
                token_id=str(token_id),
                price=price,
                timestamp=_to_timestamp(body.get("timestamp")),
            )
        return Unrecognized("invalid typed price", _preview(data))

    if msg_type == "book":
        return _decode_snapshot(body, BookUpdateKind.LEGACY)

    if msg_type == "trade":
        return _decode_trade(body)

    return Unrecognized("unknown message format", _preview(data))


def _decode_object(data: Any) -> list[StreamMessage]:
    if not isinstance(data, dict):
        return [Unrecognized("unknown message format", _preview(data))]

    if isinstance(data.get("price_changes"), list):
        return _decode_price_changes(data)

    if "event_type" in data:
        return [_decode_event(data)]

    return [_decode_typed(data)]


def decode_frame(raw: Union[str, bytes]) -> list[StreamMessage]:
    """
    Decode one WebSocket frame into canonical messages.

    Shapes are tried in priority order: snapshot arrays, ``price_changes``
    batches, ``event_type`` objects (last_trade_price, book, trade), then the
    typed ``{"type": ...}`` envelope. Never raises.

    Args:
        raw: Frame text as received.

    Returns:
        List of decoded messages (may contain ``Unrecognized`` entries).
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return [Unrecognized("invalid JSON", str(raw)[:200])]

    if isinstance(data, list):
        messages: list[StreamMessage] = []
        for item in data:
            if _is_snapshot(item):
                messages.append(_decode_snapshot(item))
            else:
                messages.extend(_decode_object(item))
        return messages

    return _decode_object(data)
