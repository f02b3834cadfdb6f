"""
Signal-fusion and paper-trading engine for rotating 15-minute markets.

Wires the market stream, reference feeds, tracker, scorer and paper ledger
into a single asyncio evaluation loop.

Cycle flow:
1. If the market expired: settle it, resolve the next one, restart feed
   windows and rotate stream subscriptions
2. Refetch both order books over REST
3. Score all signals and build the composite
4. If the composite clears the thresholds: hand the signal to the
   signal handler and open a paper trade

Concurrency:
    All tracker and ledger mutation happens on the event loop. Socket
    threads only decode frames; the stream delivers them through
    ``loop.call_soon_threadsafe``. Blocking REST and RPC calls run in the
    default executor. The interval timer fires cycles as tasks without
    waiting for a slow one; a cycle that starts while another is still in
    flight is skipped and counted.

Example:
    >>> engine = UpdownEngine(GammaMarketResolver())
    >>> await engine.start()
    >>> await asyncio.sleep(3600)
    >>> await engine.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from . import config
from .api.clob_rest import ClobBookClient
from .api.clob_ws import ClobMarketStream, ReconnectExhausted
from .api.gamma import GammaMarketResolver
from .api.messages import ServerError
from .feeds.base import FeedError, ReferencePriceFeed
from .feeds.binance import BinancePriceFeed
from .feeds.chainlink import ChainlinkPriceFeed
from .models import MarketDescriptor, Outcome, StrategyConfig, TradingSignal, _utc_now
from .paper.ledger import PaperTrade, PaperTradingLedger, PerformanceMetrics
from .strategy.scorer import CompositeScorer, primary_feed
from .tracker import RotatingMarketTracker

logger = logging.getLogger(__name__)

SignalHandler = Callable[[TradingSignal], None]


@dataclass
class EngineStats:
    """
    Counters for the current engine session.

    Attributes:
        start_time: When start() was called.
        cycles_completed: Evaluation cycles run.
        cycles_skipped: Ticks skipped because a cycle was still in flight.
        signals_generated: Trading signals emitted.
        trades_executed: Paper trades opened.
        market_changes: Markets loaded.
        markets_completed: Markets settled.
        errors: Cycle errors and stream failures.
        last_update: Last stream event applied to the tracker.
    """

    start_time: Optional[datetime] = None
    cycles_completed: int = 0
    cycles_skipped: int = 0
    signals_generated: int = 0
    trades_executed: int = 0
    market_changes: int = 0
    markets_completed: int = 0
    errors: int = 0
    last_update: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "cycles_completed": self.cycles_completed,
            "cycles_skipped": self.cycles_skipped,
            "signals_generated": self.signals_generated,
            "trades_executed": self.trades_executed,
            "market_changes": self.market_changes,
            "markets_completed": self.markets_completed,
            "errors": self.errors,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "uptime_seconds": (
                int((_utc_now() - self.start_time).total_seconds()) if self.start_time else 0
            ),
        }


@dataclass
class SettlementReport:
    """Result of settling one market."""

    market_id: str
    question: str
    final_outcome: Outcome
    source: str  # "reference", "market_prices" or "explicit"
    reference_change: Optional[float]
    closed_trades: list[PaperTrade] = field(default_factory=list)
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    ending_capital: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "question": self.question,
            "final_outcome": str(self.final_outcome),
            "source": self.source,
            "reference_change": self.reference_change,
            "closed_trades": [t.to_dict() for t in self.closed_trades],
            "metrics": self.metrics.to_dict(),
            "ending_capital": str(self.ending_capital),
        }


class UpdownEngine:
    """
    Orchestrates the rotating-market evaluation loop in paper mode.

    Every collaborator can be injected; defaults talk to Polymarket,
    Binance and Chainlink.
    """

    def __init__(
        self,
        resolver: Optional[GammaMarketResolver] = None,
        signal_handler: Optional[SignalHandler] = None,
        strategy_config: Optional[StrategyConfig] = None,
        starting_capital: float = config.STARTING_CAPITAL,
        check_interval: float = config.CHECK_INTERVAL,
        stream: Optional[ClobMarketStream] = None,
        fast_feed: Optional[ReferencePriceFeed] = None,
        authoritative_feed: Optional[ReferencePriceFeed] = None,
        book_client: Optional[ClobBookClient] = None,
        tracker: Optional[RotatingMarketTracker] = None,
        ledger: Optional[PaperTradingLedger] = None,
    ):
        """
        Initialize the engine.

        Args:
            resolver: Finds the active market (default GammaMarketResolver)
            signal_handler: Called with every emitted TradingSignal
            strategy_config: Scorer configuration (default StrategyConfig())
            starting_capital: Paper capital when no ledger is given
            check_interval: Seconds between evaluation cycles
            stream: CLOB market stream
            fast_feed: Non-settling reference feed (default Binance)
            authoritative_feed: Settlement reference feed (default Chainlink)
            book_client: REST order-book client
            tracker: Market state tracker
            ledger: Paper trading ledger
        """
        self.resolver = resolver or GammaMarketResolver()
        self.signal_handler = signal_handler
        self.check_interval = check_interval

        self.stream = stream or ClobMarketStream()
        self.fast_feed = fast_feed or BinancePriceFeed()
        self.authoritative_feed = authoritative_feed or ChainlinkPriceFeed()
        self.book_client = book_client or ClobBookClient()
        self.tracker = tracker or RotatingMarketTracker()
        self.scorer = CompositeScorer(
            strategy_config or StrategyConfig(max_position_size=config.MAX_POSITION_SIZE)
        )
        self.ledger = ledger or PaperTradingLedger(starting_capital)

        self.stats = EngineStats()
        self.settlements: list[SettlementReport] = []

        self._running = False
        self._cycle_in_flight = False
        self._settled_market_id: Optional[str] = None
        self._shutdown_event = asyncio.Event()
        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_tasks: set[asyncio.Task] = set()

    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Connect feeds and stream, resolve the market and start the timer."""
        if self._running:
            logger.warning("Engine already running")
            return

        loop = asyncio.get_running_loop()
        self._running = True
        self._shutdown_event.clear()
        self.stats.start_time = _utc_now()
        logger.info(f"Starting up/down engine (paper mode, check every {self.check_interval}s)")

        await self._connect_feed(self.fast_feed)
        await self._connect_feed(self.authoritative_feed)

        self.stream.dispatcher = loop.call_soon_threadsafe
        self.stream.add_listener(self._on_stream_event)
        self.stream.connect()

        await self.refresh_market()
        if not self._running:
            return

        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info("Engine started")

    async def run(self) -> None:
        """Start and block until stop() is called."""
        await self.start()
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the timer, close the stream and feeds, and reset the tracker."""
        if not self._running:
            return

        logger.info("Stopping engine...")
        self._running = False
        self._shutdown_event.set()

        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        self.stream.remove_listener(self._on_stream_event)
        self.stream.disconnect()
        for feed in (self.fast_feed, self.authoritative_feed):
            feed.disconnect()
        self.tracker.reset()

        logger.info(f"Engine stopped: {self.stats.to_dict()}")

    async def _connect_feed(self, feed: ReferencePriceFeed) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, feed.connect)
        except FeedError as e:
            logger.warning(f"{feed.name} feed unavailable, continuing without it: {e}")
        except Exception as e:
            logger.error(f"{feed.name} feed failed to connect: {e}", exc_info=True)

    async def _timer_loop(self) -> None:
        """Fire a cycle every check_interval seconds until shutdown."""
        while self._running:
            self._spawn_cycle()
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.check_interval)
            except asyncio.TimeoutError:
                pass

    def _spawn_cycle(self) -> None:
        task = asyncio.create_task(self.run_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)

    def _on_stream_event(self, event) -> None:
        """Apply a stream event on the loop thread."""
        if not self._running:
            return

        if isinstance(event, ReconnectExhausted):
            self.stats.errors += 1
            logger.error(f"Market stream gave up: {event.error}")
            return
        if isinstance(event, ServerError):
            logger.debug(f"Ignoring server error event: {event.message}")
            return

        if self.tracker.apply(event):
            self.stats.last_update = _utc_now()

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self) -> Optional[TradingSignal]:
        """
        Run one evaluation cycle.

        Returns:
            The emitted TradingSignal, or None.
        """
        if not self._running:
            return None

        if self._cycle_in_flight:
            self.stats.cycles_skipped += 1
            logger.warning("Previous cycle still running, skipping tick")
            return None

        self._cycle_in_flight = True
        try:
            self.stats.cycles_completed += 1

            if self.tracker.is_market_expired():
                logger.info("Market expired, refreshing...")
                await self.refresh_market()
                return None

            await self._refresh_orderbooks()
            if not self._running:
                return None

            state = self.tracker.get_state()
            if state is None:
                logger.warning("No market state available")
                return None

            breakdown = self.scorer.analyze(
                state, self.tracker, self.fast_feed, self.authoritative_feed
            )
            self._log_breakdown(breakdown)

            signal = self.scorer.generate_signal(state, breakdown)
            if signal is None:
                return None

            self.stats.signals_generated += 1
            logger.info(
                f"SIGNAL: BUY {str(signal.outcome).upper()} @ {signal.price * 100:.1f}% "
                f"size ${signal.size:.2f} conf {signal.confidence * 100:.0f}% - {signal.reason}"
            )

            if self.signal_handler is not None:
                self.signal_handler(signal)

            if self.ledger.execute_trade(signal, state.question) is not None:
                self.stats.trades_executed += 1
            return signal

        except Exception as e:
            self.stats.errors += 1
            logger.error(f"Cycle error: {e}", exc_info=True)
            return None
        finally:
            self._cycle_in_flight = False

    async def _refresh_orderbooks(self) -> None:
        token_ids = self.tracker.get_token_ids()
        if len(token_ids) != 2:
            return

        loop = asyncio.get_running_loop()
        yes_book, no_book = await asyncio.gather(
            loop.run_in_executor(None, self.book_client.fetch_orderbook, token_ids[0]),
            loop.run_in_executor(None, self.book_client.fetch_orderbook, token_ids[1]),
        )

        # Discard results that arrive after stop or rotation
        if not self._running or self.tracker.get_token_ids() != token_ids:
            return
        self.tracker.replace_orderbooks(yes_book, no_book)

    def _log_breakdown(self, breakdown) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        expiry = self.tracker.get_time_to_expiry()
        minutes = f"{expiry / 60_000:.1f}" if expiry is not None else "?"
        parts = [
            f"{name}={s.score * 100:.0f}%/{s.confidence * 100:.0f}%"
            for name, s in breakdown.components().items()
        ]
        logger.debug(
            f"Signals ({minutes}m left): {', '.join(parts)} | "
            f"composite {breakdown.composite.score * 100:.1f}% "
            f"conf {breakdown.composite.confidence * 100:.0f}%"
        )

    # =========================================================================
    # Market rotation and settlement
    # =========================================================================

    async def refresh_market(self) -> Optional[MarketDescriptor]:
        """
        Settle the previous market and load the next one.

        Returns:
            The new market, or None if none is active.
        """
        state = self.tracker.get_state()
        if state is not None and state.market_id != self._settled_market_id:
            self.settle_market()

        logger.info("Detecting current market...")
        loop = asyncio.get_running_loop()
        market = await loop.run_in_executor(None, self.resolver.detect_current_market)

        if not self._running:
            return None
        if market is None:
            logger.warning("No active market found")
            return None

        self.tracker.load_market(market)
        self.stats.market_changes += 1

        expiry = self.tracker.get_time_to_expiry()
        if expiry is not None:
            logger.info(f"Market expires in {expiry / 60_000:.1f} minutes")

        for feed in (self.fast_feed, self.authoritative_feed):
            if feed.is_connected():
                feed.start_window()

        self.tracker.clear_trade_history()
        self.stream.set_subscriptions(self.tracker.get_token_ids())
        return market

    def determine_outcome(self) -> Outcome:
        """
        Final outcome for the current market.

        Uses the primary reference feed's window change (> 0 is YES); falls
        back to market prices (yes > no is YES) without feed data.
        """
        feed = primary_feed(self.fast_feed, self.authoritative_feed)
        if feed is not None and feed.is_connected():
            change = feed.get_window_change()
            if change is not None:
                return Outcome.YES if change.percent > 0 else Outcome.NO

        state = self.tracker.get_state()
        if state is None:
            return Outcome.NO
        return Outcome.YES if state.yes_price > state.no_price else Outcome.NO

    def _reference_change(self) -> Optional[float]:
        feed = primary_feed(self.fast_feed, self.authoritative_feed)
        if feed is None or not feed.is_connected():
            return None
        change = feed.get_window_change()
        return change.percent if change is not None else None

    def settle_market(self, final_outcome=None) -> Optional[SettlementReport]:
        """
        Close all open trades on the current market.

        The ledger is then reset with its ending capital so results compound
        across markets.

        Args:
            final_outcome: Outcome to settle at; determined from feeds or
                prices when None.

        Returns:
            SettlementReport, or None without a market.
        """
        state = self.tracker.get_state()
        if state is None:
            return None

        reference_change = self._reference_change()
        if final_outcome is not None:
            outcome = Outcome.parse(final_outcome)
            source = "explicit"
        else:
            outcome = self.determine_outcome()
            source = "reference" if reference_change is not None else "market_prices"

        logger.info(
            f"MARKET SETTLEMENT: {state.question} -> {str(outcome).upper()} ({source}"
            + (f", reference {reference_change:+.4f}%" if reference_change is not None else "")
            + ")"
        )

        closed = self.ledger.close_all_trades(outcome)
        metrics = self.ledger.get_metrics()
        if closed:
            logger.info("\n" + self.ledger.format_report())
        else:
            logger.info("Market expired - no open positions")

        ending_capital = self.ledger.current_capital
        self.ledger.reset(ending_capital)

        self.stats.markets_completed += 1
        self._settled_market_id = state.market_id

        report = SettlementReport(
            market_id=state.market_id,
            question=state.question,
            final_outcome=outcome,
            source=source,
            reference_change=reference_change,
            closed_trades=closed,
            metrics=metrics,
            ending_capital=ending_capital,
        )
        self.settlements.append(report)
        return report

    # =========================================================================
    # Status
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Engine counters plus capital, market and connection status."""
        stats = self.stats.to_dict()
        state = self.tracker.get_state()
        stats.update(
            {
                "running": self._running,
                "current_capital": str(self.ledger.current_capital),
                "open_trades": len(self.ledger.get_open_trades()),
                "market": state.question if state else None,
                "stream": str(self.stream.state),
                "fast_feed_connected": self.fast_feed.is_connected(),
                "authoritative_feed_connected": self.authoritative_feed.is_connected(),
            }
        )
        return stats
