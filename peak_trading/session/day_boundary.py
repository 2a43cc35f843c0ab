"""
Day Boundary Manager
====================
End-of-day windup and start-of-day initialisation.

With closing square-off enabled, the first tick inside the closing
window (or the first tick of a new date, when the closing ticks never
arrived) squares off open exposure, finalises the day's statistics and
clears the analysis window. If the square-off order fails, nothing is
marked done and the next tick tries again.

Without closing square-off the engine trades continuously across days;
a date change still rolls the day statistics but keeps the window and
peak state.
"""

from datetime import datetime
from typing import Optional
from enum import Enum
import logging

from ..data.market_data import Tick
from ..monitoring.trade_stats import DayStats, roi_percentage

logger = logging.getLogger(__name__)


class BoundaryAction(Enum):
    """What the engine should do with the rest of the tick."""
    CONTINUE = "continue"
    WINDUP_DEFERRED = "windup_deferred"  # square-off failed, retry next tick
    DAY_CLOSED = "day_closed"  # windup done or first tick of a new day


class DayBoundaryManager:
    """Day transitions for one engine. Works on the engine's live state."""

    def __init__(self, engine):
        self.engine = engine

        self.day_tick_count = 0
        self.first_tick_of_day: Optional[datetime] = None
        self.last_tick_of_day: Optional[datetime] = None
        self.is_seeded = False  # day and period prices set for this run

    @property
    def square_off_enabled(self) -> bool:
        return self.engine.config.algo.is_market_closing_square_off

    def on_first_tick(self, tick: Tick):
        """First tick the engine ever analyses."""
        engine = self.engine
        s = engine.state
        s.is_first_tick_seen = True
        s.day_anchor = tick.timestamp.date()
        s.is_eod_windup_done = False
        s.prev_tick = tick

        if engine.config.algo.is_consider_prev_closing:
            engine.tracker.seed(s.prev_tick)
        elif s.min_tick is None or s.max_tick is None:
            engine.tracker.seed(tick)

        self.first_tick_of_day = tick.timestamp
        engine.day_stats.seed_prices(tick.price)
        engine.period_stats.seed_prices(tick.price)
        self.is_seeded = True

    def on_restart(self, tick: Tick):
        """First tick after restoring a state that already saw ticks."""
        engine = self.engine
        self.first_tick_of_day = tick.timestamp
        engine.day_stats.seed_prices(tick.price)
        engine.period_stats.seed_prices(tick.price)
        self.is_seeded = True
        logger.info(f"{engine.description}: resumed {engine.state.day_anchor} at {tick.price}")

    def count_analyzed(self, tick: Tick):
        self.day_tick_count += 1
        self.last_tick_of_day = tick.timestamp

    def on_tick(self, tick: Tick, is_market_closing: bool) -> BoundaryAction:
        """
        Run day transition logic for tick.

        Args:
            tick: Current tick (already set as state.curr_tick)
            is_market_closing: Tick is inside the closing window

        Returns:
            BoundaryAction telling the engine whether to analyse the tick
        """
        engine = self.engine
        s = engine.state

        s.is_next_day = s.day_anchor is not None and tick.timestamp.date() != s.day_anchor

        if self.square_off_enabled:
            if (is_market_closing or s.is_next_day) and not s.is_eod_windup_done:
                if not s.is_flat and not engine.force_square_off(tick):
                    logger.warning(f"{engine.description}: EOD square-off failed at {tick.timestamp}, "
                                   f"will retry on next tick")
                    return BoundaryAction.WINDUP_DEFERRED
                self.windup(tick)
        elif s.is_next_day:
            self.finalize_day()
            self.engine.book.close_day(s.day_anchor)
            self.start_day_stats(tick)

        if s.is_next_day and s.is_eod_windup_done:
            self.start_new_day(tick)

        if s.is_next_day:
            s.day_anchor = tick.timestamp.date()

        s.prev_tick = tick

        if self.square_off_enabled and (s.is_next_day or s.is_eod_windup_done):
            return BoundaryAction.DAY_CLOSED
        return BoundaryAction.CONTINUE

    def windup(self, tick: Tick):
        """Close the trading day once exposure is flat."""
        engine = self.engine
        s = engine.state

        self.finalize_day()
        self.day_tick_count = 0
        engine.tracker.clear_window()
        engine.book.close_day(s.day_anchor)
        s.is_eod_windup_done = True
        logger.info(f"{engine.description}: EOD windup done for {s.day_anchor} "
                    f"(nett so far {engine.book.total_actual_nett:.2f})")

    def finalize_day(self):
        """Turn the running DayStats into the day's record and persist it."""
        engine = self.engine
        s = engine.state
        day = engine.day_stats

        day.number_of_ticks = self.day_tick_count
        if self.first_tick_of_day and self.last_tick_of_day:
            day.inmarket_time_in_minutes = int(
                (self.last_tick_of_day - self.first_tick_of_day).total_seconds() // 60)
        engine.period_stats.fold_day(day)

        day.status_update_time = datetime.now()
        day.trade_date = s.day_anchor
        day.algo_id = engine.config.algo.algo_id
        day.contract_name = engine.config.instrument.symbol
        day.quantity = engine.config.instrument.quantity
        day.market_direction_percentage = engine.config.algo.perc_market_direction_change
        day.finalize_averages()

        ref_price = s.prev_tick.price if s.prev_tick else 0.0
        margin = engine.config.execution.margin_fraction
        day.roi_percentage = roi_percentage(day.expected_profit, ref_price, day.quantity, margin)
        day.actual_roi_percentage = roi_percentage(day.actual_profit, ref_price, day.quantity, margin)

        engine.persist_day_stats(day)
        logger.info(f"{engine.description}: day {day.trade_date} trades={day.num_trades} "
                    f"profit={day.actual_profit:.2f} expected={day.expected_profit:.2f} "
                    f"roi={day.actual_roi_percentage:.2f}%")

    def start_day_stats(self, tick: Tick):
        engine = self.engine
        engine.day_stats = DayStats()
        engine.day_stats.seed_prices(tick.price)
        engine.state.stop_trading_for_day = False
        self.day_tick_count = 0
        self.first_tick_of_day = tick.timestamp
        self.last_tick_of_day = tick.timestamp

    def start_new_day(self, tick: Tick):
        """First tick of a new date after the previous day was wound up."""
        engine = self.engine
        s = engine.state

        s.is_eod_windup_done = False
        s.day_anchor = tick.timestamp.date()
        self.start_day_stats(tick)

        if engine.config.algo.is_consider_prev_closing and s.prev_tick is not None:
            engine.tracker.seed(s.prev_tick)
        elif s.min_tick is None or s.max_tick is None:
            engine.tracker.seed(tick)

        self.day_tick_count += 1
        logger.info(f"{engine.description}: new trading day {s.day_anchor}")
