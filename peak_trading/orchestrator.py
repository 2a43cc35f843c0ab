"""
Trading Engine Orchestrator
===========================
Per-instrument pipeline, one tick at a time:
    TICK → SESSION GATE → DAY BOUNDARY → PEAK TRACKER → RISK LIMITER → EXECUTION → TRADE BOOK

Core principles enforced:
- Trade the reversal, not the trend
- Algorithmic execution (no manual order entry once live)
- Every cycle persisted before the next tick
- One engine per instrument, ticks strictly sequential
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
import logging
import os
import threading

from .config import SystemConfig, TradingMode
from .data import Tick, iter_replay_ticks, generate_mock_ticks
from .alpha import ExtremumTracker, Signal
from .risk import RiskLimiter
from .execution import (
    BrokerAPI, BrokerErrorCode, Direction, ExecutionEngine, MockBroker, Order, create_broker
)
from .monitoring import AlertKind, AlertManager, AlgoRunStats, DayStats, PeriodStats, TradeBook
from .session import BoundaryAction, DayBoundaryManager, MarketClock, NSEMarketClock
from .state import (
    EngineState, RunState, StateStore, StatsStore, backup_files, load_positions,
    parse_position_line, write_positions, MalformedPositionRecord
)

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Outcome of one process_tick call."""
    processed: bool
    signal: Optional[Signal] = None
    order: Optional[Order] = None
    persisted: bool = False
    reason: str = ""
    forced_order: Optional[Order] = None  # EOD square-off placed on this tick


class TradingAlgo:
    """
    Peak-reversal trading engine for a single instrument.

    Coordinates:
    1. SESSION: market clock gates and duplicate-tick guard
    2. DAY BOUNDARY: EOD square-off, day statistics rollover
    3. PEAK TRACKER: min/max window and TOP/BOTTOM state machine
    4. RISK LIMITER: exposure limits and daily loss stop
    5. EXECUTION: limit order placement and status polling
    6. TRADE BOOK: pairing, realised P&L, statistics
    """

    def __init__(self, config: SystemConfig = None, broker: BrokerAPI = None,
                 clock: MarketClock = None, state_store: StateStore = None,
                 stats_store: StatsStore = None, alert_manager: AlertManager = None,
                 sleep: Callable[[float], None] = None):
        self.config = config or SystemConfig()
        self.description = self.config.instrument.description()

        self.broker = broker or create_broker(self.config.execution)
        self.clock = clock or NSEMarketClock(self.config.execution)
        self.state_store = state_store or StateStore(self.config.storage.state_file)
        self.stats_store = stats_store or StatsStore(self.config.storage.stats_dir)
        self.alert_manager = alert_manager or AlertManager(self.config.monitoring, source=self.description)

        self.state = EngineState.fresh(self.config.algo.perc_market_direction_change)
        self.tracker = ExtremumTracker(self.state, self.config.algo, symbol=self.description)
        self.risk = RiskLimiter(self.config.risk, quantity=self.config.instrument.quantity)
        self.execution = ExecutionEngine(
            self.broker,
            self.config.instrument,
            config=self.config.execution,
            mode=self.config.mode,
            alert_manager=self.alert_manager,
            sleep=sleep
        )
        self._new_book()
        self.boundary = DayBoundaryManager(self)

        self.run_state = RunState.NOT_STARTED
        self.eop_stats: Optional[AlgoRunStats] = None
        self.last_position_alert: Optional[datetime] = None
        self._forced_order: Optional[Order] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(f"TradingAlgo initialized for {self.description} in {self.config.mode.value} mode")

    def _new_book(self):
        self.day_stats = DayStats()
        self.period_stats = PeriodStats()
        self.book = TradeBook(
            self.config.instrument.quantity,
            self.config.execution.perc_brokerage,
            self.config.execution.square_off_brokerage_factor
        )

    @property
    def is_replay(self) -> bool:
        return self.config.mode == TradingMode.REPLAY

    # ---- lifecycle ----

    def prolog(self) -> EngineState:
        """
        Restore state and open legs, then start RUNNING.

        Open legs come from the positions file when it lists any, else
        from the persisted state; configured start orders are appended.

        Raises:
            MalformedPositionRecord: bad positions file or start order
            StateSchemaError: unreadable persisted state
        """
        if self.run_state != RunState.NOT_STARTED:
            logger.warning(f"{self.description}: prolog called in state {self.run_state.value}")
            return self.state

        if not self.is_replay:
            loaded = self.state_store.load()
            if loaded is not None:
                self._bind_state(loaded)

        s = self.state
        file_legs = load_positions(self.config.storage.positions_file)
        legs = file_legs or list(s.open_positions)
        for i, text in enumerate(self.config.start_orders, start=1):
            legs.append(parse_position_line(text, i, "start_orders"))

        directions = {o.direction for o in legs}
        if len(directions) > 1:
            raise MalformedPositionRecord("start_orders", 0, ",".join(self.config.start_orders),
                                          "open legs must all share one direction")

        base = min(s.total_buy_trades, s.total_sell_trades)
        s.open_positions = legs
        s.total_buy_trades = base + sum(1 for o in legs if o.direction == Direction.BUY)
        s.total_sell_trades = base + sum(1 for o in legs if o.direction == Direction.SELL)
        s.check_invariant()

        if not self.is_replay:
            self.broker.login_if_needed()

        self.run_state = RunState.RUNNING
        logger.info(f"{self.description}: RUNNING with {s.summary()}")
        return s

    def epilog(self) -> AlgoRunStats:
        """End-of-period statistics, positions file and backups. Ends in FINISHED."""
        if self.run_state == RunState.FINISHED and self.eop_stats is not None:
            return self.eop_stats

        s = self.state
        ltp = s.curr_tick.ltp if s.curr_tick else 0.0
        margin = self.config.execution.margin_fraction

        stats = self.book.eop_stats(
            s, ltp,
            failed_orders=self.execution.failed_orders,
            limit_shortages=self.risk.limit_shortages,
            discontinuous_ticks=self.tracker.discontinuous_ticks
        )
        self.book.finalize_period(s, self.period_stats, margin, self.config.algo.perc_market_direction_change)
        self.period_stats.algo_id = self.config.algo.algo_id
        self.period_stats.contract_name = self.config.instrument.symbol
        self.stats_store.append('period', self.period_stats.to_dict())

        margin_positions = max(self.config.risk.max_long_positions, self.config.risk.max_short_positions)
        title = f"EOP {self.description} algo {self.config.algo.algo_id}"
        report = self.book.generate_report(s, ltp, title, margin_positions, margin)
        logger.info(report)

        if not self.is_replay:
            storage = self.config.storage
            try:
                write_positions(storage.positions_file, s.open_positions)
            except OSError as e:
                logger.error(f"{self.description}: failed to write positions file: {e}")
            self.state_store.save(s)
            try:
                backup_files([storage.state_file, storage.positions_file], storage.backup_dir)
            except OSError as e:
                logger.error(f"{self.description}: backup failed: {e}")

        self.eop_stats = stats
        self.run_state = RunState.FINISHED
        logger.info(f"{self.description}: FINISHED. Nett {stats.pnl.profit:.2f}, "
                    f"outstanding {stats.pnl.outstanding:.2f}, ticks {stats.program.total_ticks}")
        return stats

    def pause(self):
        if self.run_state != RunState.RUNNING:
            return
        self.run_state = RunState.PAUSED
        logger.info(f"{self.description}: paused")
        self.alert_manager.send(AlertKind.PAUSED, f"{self.description} paused. {self.state.summary()}")

    def resume(self):
        if self.run_state != RunState.PAUSED:
            return
        self.run_state = RunState.RUNNING
        logger.info(f"{self.description}: resumed")
        self.alert_manager.send(AlertKind.RESUMED, f"{self.description} resumed. {self.state.summary()}")

    # ---- resets ----

    def reset_full(self):
        """Forget everything: state, statistics and order log."""
        self._bind_state(EngineState.fresh(self.config.algo.perc_market_direction_change))
        self._new_book()
        self.tracker.peaks.clear()
        self.tracker.last_peak = None
        self.boundary = DayBoundaryManager(self)
        self.run_state = RunState.NOT_STARTED
        self._after_reset("full")

    def reset_positions(self):
        self.state.reset_positions(self.config.algo.perc_market_direction_change)
        self._after_reset("positions")

    def reset_direction(self):
        self.state.reset_direction(self.config.algo.perc_market_direction_change)
        self._after_reset("direction")

    def reset_core(self):
        self.state.reset_core(self.config.algo.perc_market_direction_change)
        self._after_reset("core")

    def _after_reset(self, kind: str):
        logger.warning(f"{self.description}: {kind} reset. {self.state.summary()}")
        self.alert_manager.send(AlertKind.RESET, f"{self.description}: {kind} reset done. {self.state.summary()}")
        self._persist()

    def _bind_state(self, state: EngineState):
        self.state = state
        self.tracker.state = state

    # ---- per tick ----

    def process_tick(self, tick: Tick) -> TickResult:
        """
        Run one full decision cycle for tick.

        Args:
            tick: Next quote for the instrument

        Returns:
            TickResult describing what happened
        """
        if self.run_state != RunState.RUNNING:
            return TickResult(processed=False, reason=f"engine {self.run_state.value}")

        s = self.state
        if tick.sequence and s.curr_tick is not None and tick.sequence <= s.curr_tick.sequence:
            logger.debug(f"{self.description}: duplicate tick {tick.sequence} skipped")
            return TickResult(processed=False, reason="duplicate tick")

        ts = tick.timestamp
        if not self.config.is_mock and not self.clock.is_session_open(ts):
            return TickResult(processed=False, reason="before session open")
        if self.config.algo.allow_initial_tick_stabilization and not self.clock.is_settled(ts):
            return TickResult(processed=False, reason="settling")

        s.total_tick_count += 1
        s.curr_tick = tick
        self._forced_order = None
        self.book.observe_tick(tick)

        if not s.is_first_tick_seen:
            self.boundary.on_first_tick(tick)
        elif not self.boundary.is_seeded:
            self.boundary.on_restart(tick)
        self.day_stats.observe_price(tick.price)
        self.period_stats.observe_price(tick.price)

        action = self.boundary.on_tick(tick, self.clock.is_market_closing(ts))
        if action != BoundaryAction.CONTINUE:
            reason = "windup deferred" if action == BoundaryAction.WINDUP_DEFERRED else "day closed"
            return self._finish(tick, reason=reason)

        if self.clock.is_no_new_trade_time(ts) and s.is_flat:
            return self._finish(tick, reason="past no-new-trade time")

        self.boundary.count_analyzed(tick)
        signal = self.tracker.update(tick)
        order = self._act_on_signal(signal, tick) if signal else None
        return self._finish(tick, signal=signal, order=order)

    def _finish(self, tick: Tick, signal: Signal = None, order: Order = None, reason: str = "") -> TickResult:
        persisted = self._post_process(tick)
        return TickResult(processed=True, signal=signal, order=order, persisted=persisted,
                          reason=reason, forced_order=self._forced_order)

    def _act_on_signal(self, signal: Signal, tick: Tick) -> Optional[Order]:
        """Risk check, place, book, then confirm the peak."""
        s = self.state
        direction = signal.direction
        decision = self.risk.evaluate(direction, s, self.day_stats)
        if decision.stop_for_day and not s.stop_trading_for_day:
            s.stop_trading_for_day = True
            self.alert_manager.send(AlertKind.STOP_FOR_DAY, f"{self.description}: {decision.reason}")
        if not decision.allowed:
            logger.info(f"{self.description}: {direction.value} at {tick.ltp} rejected "
                        f"(ref {signal.reference_tick.price}): {decision.reason}")
            return None

        expected = self.tracker.expected_price(direction)
        result = self.execution.try_place(direction, tick, expected_price=expected)
        if not result.ok:
            logger.info(f"{self.description}: {direction.value} at {tick.ltp} not placed: {result.reason}")
            return None

        self._book(result.order)
        self.tracker.confirm(signal)
        return result.order

    def force_square_off(self, tick: Tick) -> bool:
        """Close all open exposure at tick. False when an order failed."""
        s = self.state
        while not s.is_flat:
            direction = Direction.SELL if s.net_buy > 0 else Direction.BUY
            result = self.execution.try_place(direction, tick, is_market_closing=True)
            if not result.ok:
                self.alert_manager.send(
                    AlertKind.SQUARE_OFF_FAILED,
                    f"{self.description}: forced {direction.value} at {tick.ltp} failed, "
                    f"retrying on next tick: {result.reason}"
                )
                return False
            self._book(result.order)
            self._forced_order = result.order
            logger.info(f"{self.description}: forced {direction.value} square-off at {result.order.price}")
        return True

    def _book(self, order: Order):
        record = self.book.record_fill(self.state, order, self.day_stats, self.period_stats)
        self.state.check_invariant()
        if not self.config.is_mock:
            self.alert_manager.send(
                AlertKind.TRADE,
                f"{self.description}: {order.direction.value} {self.config.instrument.quantity} @ {order.price} "
                f"(expected {order.expected_price:.2f}, ref {order.order_ref}). {self.state.summary()}",
                title=f"{order.direction.value} {order.price}"
            )
        return record

    def _post_process(self, tick: Tick) -> bool:
        """Persist state and send the throttled exposure alert."""
        if self.is_replay:
            return False
        persisted = self._persist()
        self._position_alert(tick)
        return persisted

    def _persist(self) -> bool:
        if self.is_replay:
            return False
        return self.state_store.save(self.state)

    def persist_day_stats(self, day: DayStats) -> bool:
        return self.stats_store.append('day', day.to_dict())

    def _position_alert(self, tick: Tick):
        s = self.state
        if s.is_flat:
            return
        interval = timedelta(minutes=self.config.monitoring.position_alert_interval_minutes)
        if self.last_position_alert is not None and tick.timestamp - self.last_position_alert < interval:
            return

        outstanding = self.book.outstanding(s, tick.ltp)
        pct = self.book.square_off_profit_pct(s)
        label = "Profit" if outstanding.amount >= 0 else "Loss"
        first_leg = s.open_positions[0] if s.open_positions else None
        body = (f"Contract: {self.description}\n"
                f"Amount: {outstanding.amount:.2f}\n"
                f"Percent: {pct if pct is None else round(pct, 3)}\n"
                f"Open: {first_leg.direction.value + ' @ ' + str(first_leg.price) if first_leg else '-'}\n"
                f"LTP: {tick.ltp}")
        self.alert_manager.send(AlertKind.POSITION, body, title=f"{label}:{outstanding.amount:.2f}")
        self.last_position_alert = tick.timestamp

    # ---- drivers ----

    def run_core_algo(self) -> Optional[TickResult]:
        """Fetch one live quote and process it."""
        inst = self.config.instrument
        code, tick = self.broker.get_quote(inst.symbol, inst.instrument_type, inst.expiry_date)
        if code == BrokerErrorCode.NOT_LOGGED_IN:
            self.broker.login_if_needed(force=True)
            return None
        if not code.is_success or tick is None:
            logger.debug(f"{self.description}: no quote ({code.value})")
            return None

        last = self.state.curr_tick.sequence if self.state.curr_tick else 0
        return self.process_tick(replace(tick, sequence=last + 1))

    def run_replay(self, filepath: str) -> List[TickResult]:
        """
        Feed a replay file through process_tick in file order.

        Raises:
            ReplayFormatError: malformed replay file
        """
        offset = self.state.curr_tick.sequence if self.state.curr_tick else 0
        results = []
        for tick in iter_replay_ticks(filepath):
            if self._stop_event.is_set():
                break
            results.append(self.process_tick(replace(tick, sequence=tick.sequence + offset)))
        processed = sum(1 for r in results if r.processed)
        logger.info(f"{self.description}: replayed {len(results)} ticks ({processed} processed) from {filepath}")
        return results

    def run(self):
        """Host loop. Runs until stopped, the replay ends or the market closes."""
        if self.run_state == RunState.NOT_STARTED:
            self.prolog()
        self._stop_event.clear()
        self.execution.reopen()

        try:
            if self.is_replay:
                self.run_replay(self.config.storage.replay_tick_file)
                return

            interval = self.config.algo.algo_interval_seconds
            while not self._stop_event.is_set():
                if self.run_state == RunState.RUNNING:
                    self.run_core_algo()
                if self.config.is_live and self.clock.is_market_closed(datetime.now()):
                    logger.info(f"{self.description}: market closed")
                    break
                if self.config.is_mock and isinstance(self.broker, MockBroker) and not self.broker.quotes:
                    logger.info(f"{self.description}: mock session exhausted")
                    break
                self._stop_event.wait(interval)
        finally:
            self.epilog()

    def start_background(self) -> threading.Thread:
        """Run the host loop on its own thread."""
        self._thread = threading.Thread(target=self.run, name=f"algo-{self.config.instrument.symbol}",
                                        daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = None):
        """
        Stop between ticks and wait for the host loop to finish.

        An order already at the broker is polled to completion first.
        """
        self._stop_event.set()
        self.execution.cancel()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def get_status(self) -> Dict:
        """Get engine status."""
        s = self.state
        return {
            'instrument': self.description,
            'mode': self.config.mode.value,
            'run_state': self.run_state.value,
            'buy_trades': s.total_buy_trades,
            'sell_trades': s.total_sell_trades,
            'open_positions': len(s.open_positions),
            'last_peak': s.last_peak_kind.value,
            'threshold': s.percent_change_threshold,
            'ticks': s.total_tick_count,
            'ltp': s.curr_tick.ltp if s.curr_tick else None,
            'realised_nett': self.book.total_actual_nett,
            'expected_nett': self.book.total_expected_nett,
            'day_trades': self.day_stats.num_trades,
            'stop_trading_for_day': s.stop_trading_for_day,
            'failed_orders': self.execution.failed_orders,
        }


def main():
    """Main entry point for the trading engine."""
    import argparse

    parser = argparse.ArgumentParser(description='Peak Reversal Trading Engine')
    parser.add_argument('--mode', choices=['mock', 'replay', 'live'],
                        default=None, help='Trading mode')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--replay-file', type=str, help='Tick file for replay mode')
    parser.add_argument('--symbol', type=str, help='Instrument symbol')
    parser.add_argument('--qty', type=int, help='Quantity per order')
    parser.add_argument('--threshold', type=float, help='Direction change threshold in percent')
    parser.add_argument('--mock-ticks', type=int, default=375, help='Synthetic ticks in mock mode')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for mock mode')

    args = parser.parse_args()

    config = SystemConfig.load(args.config) if args.config else SystemConfig()
    if args.mode:
        config.mode = TradingMode(args.mode)
    if args.replay_file:
        config.storage.replay_tick_file = args.replay_file
    if args.symbol:
        config.instrument.symbol = args.symbol
    if args.qty:
        config.instrument.quantity = args.qty
    if args.threshold:
        config.algo.perc_market_direction_change = args.threshold

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.monitoring.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if config.monitoring.log_file:
        log_dir = os.path.dirname(config.monitoring.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(config.monitoring.log_file)
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logging.getLogger().addHandler(handler)

    if config.is_replay and not config.storage.replay_tick_file:
        print("Replay mode requires --replay-file")
        return

    broker = None
    if config.is_mock:
        start = datetime.now().replace(hour=9, minute=20, second=0, microsecond=0)
        broker = MockBroker(quotes=generate_mock_ticks(start, n=args.mock_ticks, seed=args.seed))

    algo = TradingAlgo(config, broker=broker)
    try:
        algo.run()
    except KeyboardInterrupt:
        print("\nShutting down...")
        algo.epilog()

    stats = algo.eop_stats
    if stats:
        print("\n" + "=" * 50)
        print("RUN RESULTS")
        print("=" * 50)
        print(f"buy trades: {stats.pnl.buy_trades}")
        print(f"sell trades: {stats.pnl.sell_trades}")
        print(f"nett profit: {stats.pnl.profit:.2f}")
        print(f"outstanding: {stats.pnl.outstanding:.2f}")
        print(f"failed orders: {stats.program.failed_orders}")
        print(f"ticks: {stats.program.total_ticks}")


if __name__ == "__main__":
    main()
