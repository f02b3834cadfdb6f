"""
Paper-Trading Ledger for 15-minute up/down markets.

Opens simulated positions from trading signals, settles them when the
market expires and reports performance. No real capital is involved.

Positions are binary: buying ``size`` shares at ``entry_price`` costs
``size * entry_price``. At settlement the winning side pays 1 per share:
- exit >= 0.99: pnl = size * (1 - entry_price)
- exit <= 0.01: pnl = -cost
- otherwise:    pnl = size * (exit_price - entry_price)

Money is tracked with Decimal so settlement arithmetic is exact.

Example:
    >>> ledger = PaperTradingLedger(starting_capital=100)
    >>> trade = ledger.execute_trade(signal, "Bitcoin Up or Down?")
    >>> ledger.close_all_trades(Outcome.YES)
    >>> print(ledger.format_report())
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..models import Outcome, TradingSignal, _utc_now

logger = logging.getLogger(__name__)

WIN_THRESHOLD = Decimal("0.99")
LOSS_THRESHOLD = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class TradeStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class CloseReason(Enum):
    EXPIRED = "expired"
    MANUAL = "manual"
    STOP_LOSS = "stop_loss"

    def __str__(self) -> str:
        return self.value


@dataclass
class PaperTrade:
    """
    A simulated position.

    Attributes:
        trade_id: Sequential id (PT-1, PT-2, ...).
        market_id: Market the trade was placed in.
        market_question: Human readable question.
        outcome: Outcome bought.
        entry_price: Price paid per share (0-1).
        size: Number of shares.
        cost: size * entry_price.
        entry_time: When the trade was opened.
        status: OPEN or CLOSED.
        exit_price: Settlement/exit price once closed.
        exit_time: When the trade was closed.
        pnl: Realized profit/loss once closed.
        close_reason: Why the trade was closed.
    """

    trade_id: str
    market_id: str
    market_question: str
    outcome: Outcome
    entry_price: Decimal
    size: Decimal
    cost: Decimal
    entry_time: datetime = field(default_factory=_utc_now)
    status: TradeStatus = TradeStatus.OPEN
    exit_price: Optional[Decimal] = None
    exit_time: Optional[datetime] = None
    pnl: Optional[Decimal] = None
    close_reason: Optional[CloseReason] = None

    @property
    def is_open(self) -> bool:
        return self.status is TradeStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "market_id": self.market_id,
            "market_question": self.market_question,
            "outcome": str(self.outcome),
            "entry_price": str(self.entry_price),
            "size": str(self.size),
            "cost": str(self.cost),
            "entry_time": self.entry_time.isoformat(),
            "status": str(self.status),
            "exit_price": str(self.exit_price) if self.exit_price is not None else None,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "pnl": str(self.pnl) if self.pnl is not None else None,
            "close_reason": str(self.close_reason) if self.close_reason else None,
        }


@dataclass
class PerformanceMetrics:
    """Aggregate performance over closed trades."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    roi: float = 0.0                # percent
    avg_win: Decimal = Decimal("0")
    avg_loss: Decimal = Decimal("0")  # positive magnitude
    largest_win: Decimal = Decimal("0")
    largest_loss: Decimal = Decimal("0")  # most negative pnl
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0
    starting_capital: Decimal = Decimal("0")
    ending_capital: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_pnl": str(self.total_pnl),
            "total_cost": str(self.total_cost),
            "roi": self.roi,
            "avg_win": str(self.avg_win),
            "avg_loss": str(self.avg_loss),
            "largest_win": str(self.largest_win),
            "largest_loss": str(self.largest_loss),
            "sharpe_ratio": self.sharpe_ratio,
            "profit_factor": self.profit_factor,
            "starting_capital": str(self.starting_capital),
            "ending_capital": str(self.ending_capital),
        }


class PaperTradingLedger:
    """
    Simulated capital and positions for strategy evaluation.

    Attributes:
        starting_capital: Capital at the last reset.
        trades: All trades since the last reset.
    """

    def __init__(self, starting_capital: float = 100.0) -> None:
        self.starting_capital = _to_decimal(starting_capital)
        self._capital = self.starting_capital
        self.trades: list[PaperTrade] = []
        self._trade_counter = 0

    @property
    def current_capital(self) -> Decimal:
        return self._capital

    # =========================================================================
    # Trading
    # =========================================================================

    def execute_trade(self, signal: TradingSignal, market_question: str) -> Optional[PaperTrade]:
        """
        Open a paper trade from a signal.

        Args:
            signal: Sized trading signal.
            market_question: Question text for reporting.

        Returns:
            The new PaperTrade, or None if size is not positive or the cost
            exceeds available capital (state unchanged).
        """
        size = _to_decimal(signal.size)
        price = _to_decimal(signal.price)

        if size <= 0:
            logger.warning(f"Rejected paper trade: non-positive size {size}")
            return None

        cost = price * size
        if cost > self._capital:
            logger.warning(
                f"Insufficient capital: need ${cost:.2f}, have ${self._capital:.2f}"
            )
            return None

        self._trade_counter += 1
        trade = PaperTrade(
            trade_id=f"PT-{self._trade_counter}",
            market_id=signal.market_id,
            market_question=market_question,
            outcome=signal.outcome,
            entry_price=price,
            size=size,
            cost=cost,
        )
        self.trades.append(trade)
        self._capital -= cost

        logger.info(
            f"EXECUTED {trade.trade_id}: {str(trade.outcome).upper()} @ "
            f"{price * 100:.1f}% x {size} (cost ${cost:.2f}), "
            f"capital ${self._capital:.2f} / ${self.starting_capital:.2f}"
        )
        return trade

    def close_trade(
        self,
        trade_id: str,
        exit_price: float,
        reason: CloseReason = CloseReason.MANUAL,
    ) -> Optional[PaperTrade]:
        """
        Close an open trade and realize its PnL.

        Returns:
            The closed trade, or None if the id is unknown or already closed.
        """
        trade = next((t for t in self.trades if t.trade_id == trade_id and t.is_open), None)
        if trade is None:
            logger.warning(f"Trade {trade_id} not found or already closed")
            return None

        exit_decimal = _to_decimal(exit_price)
        if exit_decimal >= WIN_THRESHOLD:
            pnl = trade.size * (1 - trade.entry_price)
        elif exit_decimal <= LOSS_THRESHOLD:
            pnl = -trade.cost
        else:
            pnl = trade.size * (exit_decimal - trade.entry_price)

        trade.exit_price = exit_decimal
        trade.exit_time = _utc_now()
        trade.status = TradeStatus.CLOSED
        trade.close_reason = reason
        trade.pnl = pnl

        self._capital += trade.cost + pnl

        roi = pnl / trade.cost * 100 if trade.cost else Decimal("0")
        logger.info(f"CLOSED {trade.trade_id}: {pnl:+.2f} ({roi:.1f}% ROI)")
        return trade

    def close_all_trades(self, final_outcome) -> list[PaperTrade]:
        """
        Settle every open trade at market expiry.

        Trades on ``final_outcome`` exit at 1.0, the rest at 0.0.
        """
        outcome = Outcome.parse(final_outcome)
        open_trades = self.get_open_trades()
        if not open_trades:
            return []

        logger.info(
            f"Market expired - final outcome {str(outcome).upper()}, "
            f"closing {len(open_trades)} position(s)"
        )
        closed = []
        for trade in open_trades:
            exit_price = 1.0 if trade.outcome is outcome else 0.0
            result = self.close_trade(trade.trade_id, exit_price, CloseReason.EXPIRED)
            if result is not None:
                closed.append(result)
        return closed

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_metrics(self) -> PerformanceMetrics:
        """Compute performance over closed trades."""
        closed = [t for t in self.trades if t.status is TradeStatus.CLOSED]
        if not closed:
            return PerformanceMetrics(
                starting_capital=self.starting_capital,
                ending_capital=self._capital,
            )

        wins = [t for t in closed if t.pnl > 0]
        losses = [t for t in closed if t.pnl < 0]

        total_pnl = sum((t.pnl for t in closed), Decimal("0"))
        total_cost = sum((t.cost for t in closed), Decimal("0"))
        gross_profit = sum((t.pnl for t in wins), Decimal("0"))
        gross_loss = abs(sum((t.pnl for t in losses), Decimal("0")))

        # Sharpe on per-trade percent returns, risk-free rate 0
        returns = [float(t.pnl / t.cost * 100) for t in closed if t.cost]
        sharpe = 0.0
        if returns:
            mean = sum(returns) / len(returns)
            std = math.sqrt(sum((r - mean) ** 2 for r in returns) / len(returns))
            sharpe = mean / std if std > 0 else 0.0

        return PerformanceMetrics(
            total_trades=len(closed),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / len(closed),
            total_pnl=total_pnl,
            total_cost=total_cost,
            roi=float(total_pnl / total_cost * 100) if total_cost > 0 else 0.0,
            avg_win=gross_profit / len(wins) if wins else Decimal("0"),
            avg_loss=gross_loss / len(losses) if losses else Decimal("0"),
            largest_win=max(t.pnl for t in wins) if wins else Decimal("0"),
            largest_loss=min(t.pnl for t in losses) if losses else Decimal("0"),
            sharpe_ratio=sharpe,
            profit_factor=float(gross_profit / gross_loss) if gross_loss > 0 else 0.0,
            starting_capital=self.starting_capital,
            ending_capital=self._capital,
        )

    def format_report(self) -> str:
        """Human readable performance report with trade history."""
        m = self.get_metrics()
        lines = [
            "=" * 60,
            "PAPER TRADING PERFORMANCE REPORT",
            "=" * 60,
            f"Starting Capital: ${m.starting_capital:.2f}",
            f"Ending Capital:   ${m.ending_capital:.2f}",
            f"Total P&L:        {m.total_pnl:+.2f}",
            f"ROI:              {m.roi:+.2f}%",
            "",
            f"Total Trades:     {m.total_trades}",
            f"Win Rate:         {m.win_rate * 100:.1f}% ({m.winning_trades}W / {m.losing_trades}L)",
        ]

        if m.total_trades > 0:
            lines += [
                "",
                f"Avg Win:          +${m.avg_win:.2f}",
                f"Avg Loss:         -${m.avg_loss:.2f}",
                f"Largest Win:      +${m.largest_win:.2f}",
                f"Largest Loss:     ${m.largest_loss:.2f}",
                f"Profit Factor:    {m.profit_factor:.2f}x",
                f"Sharpe Ratio:     {m.sharpe_ratio:.2f}",
            ]
        lines.append("=" * 60)

        if self.trades:
            lines += ["", "Trade History:", "-" * 60]
            for t in self.trades:
                exit_str = f"{t.exit_price * 100:.1f}%" if t.exit_price is not None else "?"
                pnl_str = f"{t.pnl:+.2f}" if t.pnl is not None else "OPEN"
                duration = (
                    f"{round((t.exit_time - t.entry_time).total_seconds() / 60)}m"
                    if t.exit_time
                    else "?"
                )
                lines.append(
                    f"{t.trade_id}: {str(t.outcome).upper()} @ {t.entry_price * 100:.1f}% -> "
                    f"{exit_str} | {t.size} | {pnl_str} | {duration}"
                )
            lines.append("-" * 60)

        return "\n".join(lines)

    def get_trades(self) -> list[PaperTrade]:
        return list(self.trades)

    def get_open_trades(self) -> list[PaperTrade]:
        return [t for t in self.trades if t.is_open]

    def reset(self, new_capital: Optional[float] = None) -> None:
        """
        Clear trades for a new market.

        Args:
            new_capital: New starting capital; keeps the previous one if None.
        """
        self.trades = []
        self._trade_counter = 0
        if new_capital is not None:
            self.starting_capital = _to_decimal(new_capital)
        self._capital = self.starting_capital
        logger.info(f"Paper ledger reset with capital ${self._capital:.2f}")
