"""
Trade Statistics Module
=======================
P&L bookkeeping for one instrument: pairing fills into round trips,
brokerage, realised vs expected profit, end-of-day (EOD) and
end-of-period (EOP) statistics.

Expected figures use the ideal fill price (the reference extremum moved
by exactly the threshold) and show how much of the signal's edge the
real fills kept.
"""

import numpy as np
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import List, Optional
import logging

from ..data.market_data import Tick
from ..execution.broker_api import Direction
from ..execution.execution_engine import Order
from ..state.engine_state import EngineState

logger = logging.getLogger(__name__)


@dataclass
class DayStats:
    """End-of-day trade statistics."""
    trade_date: Optional[date] = None
    algo_id: int = 0
    contract_name: str = ""
    quantity: int = 0

    num_trades: int = 0  # completed round trips
    num_profit_trades: int = 0
    num_loss_trades: int = 0
    # Running sums until finalize() turns them into averages
    average_profit_pertrade: float = 0.0
    average_loss_pertrade: float = 0.0

    actual_profit: float = 0.0
    expected_profit: float = 0.0
    brokerage: float = 0.0

    min_price: float = 0.0
    max_price: float = 0.0
    number_of_ticks: int = 0
    inmarket_time_in_minutes: int = 0

    roi_percentage: float = 0.0
    actual_roi_percentage: float = 0.0
    market_direction_percentage: float = 0.0
    status_update_time: Optional[datetime] = None

    def seed_prices(self, ltp: float):
        self.min_price = self.max_price = ltp

    def observe_price(self, ltp: float):
        if ltp < self.min_price:
            self.min_price = ltp
        elif ltp > self.max_price:
            self.max_price = ltp

    def record_round_trip(self, nett: float, expected_nett: float, brokerage: float):
        self.num_trades += 1
        self.actual_profit += nett
        self.expected_profit += expected_nett
        self.brokerage += brokerage
        self.record_outcome(nett)

    def record_outcome(self, nett: float):
        if nett < 0:
            self.average_loss_pertrade += nett
            self.num_loss_trades += 1
        elif nett > 0:
            self.average_profit_pertrade += nett
            self.num_profit_trades += 1

    def finalize_averages(self):
        self.average_profit_pertrade = (0.0 if self.num_profit_trades == 0
                                        else self.average_profit_pertrade / self.num_profit_trades)
        self.average_loss_pertrade = (0.0 if self.num_loss_trades == 0
                                      else self.average_loss_pertrade / self.num_loss_trades)

    def to_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, (date, datetime)):
                data[key] = value.isoformat()
        return data


def roi_percentage(profit: float, price: float, quantity: int, margin_fraction: float) -> float:
    """Return on the margin blocked for one lot at price."""
    invested = price * quantity
    if invested == 0 or margin_fraction == 0:
        return 0.0
    return (profit / invested) * 100 * (1 / margin_fraction)


@dataclass
class PeriodStats(DayStats):
    """End-of-period statistics, accumulated over the whole run."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    num_days: int = 0
    average_trade_price: float = 0.0

    def fold_day(self, day: DayStats):
        self.number_of_ticks += day.number_of_ticks
        self.inmarket_time_in_minutes += day.inmarket_time_in_minutes
        self.num_days += 1


@dataclass
class DayNett:
    """Nett profit booked up to the end of a trading day."""
    day: date
    nett: float


@dataclass
class PnLStats:
    buy_trades: int = 0
    sell_trades: int = 0
    brokerage: float = 0.0
    profit: float = 0.0
    outstanding: float = 0.0
    nett_after_square_off_at_ltp: float = 0.0


@dataclass
class ProgramStats:
    failed_orders: int = 0
    total_ticks: int = 0
    turnover: float = 0.0
    limit_shortages: int = 0
    discontinuous_ticks: int = 0


@dataclass
class AlgoRunStats:
    pnl: PnLStats = field(default_factory=PnLStats)
    program: ProgramStats = field(default_factory=ProgramStats)


@dataclass
class FillRecord:
    """What record_fill did with one confirmed order."""
    order: Order
    paired: Optional[Order] = None
    profit: float = 0.0
    brokerage: float = 0.0
    nett: float = 0.0
    expected_nett: float = 0.0

    @property
    def is_square_off(self) -> bool:
        return self.paired is not None


@dataclass
class OutstandingPosition:
    """Mark-to-market of the open legs if squared off at a price."""
    points: float = 0.0
    amount: float = 0.0
    brokerage_points: float = 0.0
    open_buys: int = 0
    open_sells: int = 0


class TradeBook:
    """
    Lifetime order log and realised P&L of one engine.

    Fills are paired against the most recent opposite open leg. Unpaired
    fills become new open legs on the EngineState.
    """

    def __init__(self, quantity: int, perc_brokerage: float, brokerage_factor: float):
        self.quantity = quantity
        self.perc_brokerage = perc_brokerage
        self.brokerage_factor = brokerage_factor

        self.all_orders: List[Order] = []
        self.profitable_orders: List[float] = []
        self.nett_profitable_orders: List[float] = []
        self.loss_orders: List[float] = []

        self.total_actual_nett = 0.0
        self.total_expected_nett = 0.0
        self.total_turnover = 0.0

        self.daily_nett: List[DayNett] = []
        self.daily_expected_nett: List[DayNett] = []

        self.price_sum = 0.0
        self.first_tick_time: Optional[datetime] = None
        self.last_tick_time: Optional[datetime] = None

    def observe_tick(self, tick: Tick):
        self.price_sum += tick.price
        if self.first_tick_time is None:
            self.first_tick_time = tick.timestamp
        self.last_tick_time = tick.timestamp

    def brokerage_for(self, price: float) -> float:
        return self.brokerage_factor * self.perc_brokerage * self.quantity * price / 100

    def record_fill(self, state: EngineState, order: Order,
                    day: DayStats, period: PeriodStats) -> FillRecord:
        """Book a confirmed order against state and statistics."""
        state.record_fill(order)
        self.total_turnover += order.price * self.quantity
        self.all_orders.append(order)

        record = FillRecord(order=order)
        paired = state.pop_paired_leg(order.direction)
        if paired is None:
            state.open_positions.append(order)
            return record

        is_buy = order.direction == Direction.BUY
        profit = (order.price - paired.price) * self.quantity
        if is_buy:
            profit = -profit
        if profit >= 0:
            self.profitable_orders.append(profit)

        brokerage = self.brokerage_for(order.price)
        nett = profit - brokerage
        if nett >= 0:
            self.nett_profitable_orders.append(nett)
        else:
            self.loss_orders.append(nett)

        expected = (order.expected_price - paired.expected_price) * self.quantity
        if is_buy:
            expected = -expected
        expected_nett = expected - brokerage

        self.total_actual_nett += nett
        self.total_expected_nett += expected_nett
        state.total_brokerage_amount += brokerage

        day.record_round_trip(nett, expected_nett, brokerage)
        period.num_trades += 1
        period.record_outcome(nett)

        logger.info(f"SquareOff: Profit Amount (after brokerage) = {nett:.2f} "
                    f"(expected {expected_nett:.2f}, brokerage {brokerage:.2f})")

        record.paired = paired
        record.profit = profit
        record.brokerage = brokerage
        record.nett = nett
        record.expected_nett = expected_nett
        return record

    def close_day(self, day_anchor: date):
        self.daily_nett.append(DayNett(day_anchor, self.total_actual_nett))
        self.daily_expected_nett.append(DayNett(day_anchor, self.total_expected_nett))

    def square_off_profit_pct(self, state: EngineState) -> Optional[float]:
        """Percent nett if the newest open exposure were squared off now."""
        tick = state.curr_tick
        if state.is_flat or tick is None:
            return None
        is_buy = state.total_buy_trades < state.total_sell_trades
        direction = Direction.BUY if is_buy else Direction.SELL
        price = tick.offer if is_buy else tick.bid
        paired = state.pop_paired_leg(direction, remove=False)
        if paired is None or price <= 0:
            return None

        points = price - paired.price
        if is_buy:
            points = -points
        brokerage_points = self.brokerage_factor * self.perc_brokerage * price / 100
        return 100 * (points - brokerage_points) / price

    def outstanding(self, state: EngineState, ltp: float) -> OutstandingPosition:
        """Value of the open legs if squared off at ltp, after brokerage."""
        buys = [o.price for o in state.open_positions if o.direction == Direction.BUY]
        sells = [o.price for o in state.open_positions if o.direction == Direction.SELL]
        avg_buy = float(np.mean(buys)) if buys else 0.0
        avg_sell = float(np.mean(sells)) if sells else 0.0

        matched = min(len(buys), len(sells))
        open_buys = len(buys) - matched
        open_sells = len(sells) - matched

        points = (avg_sell - avg_buy) * matched
        if open_buys > open_sells:
            points += (ltp - avg_buy) * open_buys
        else:
            points += (avg_sell - ltp) * open_sells

        brokerage_points = (self.perc_brokerage * ltp *
                            (self.brokerage_factor * matched + abs(open_buys - open_sells))) / 100
        points -= brokerage_points
        return OutstandingPosition(
            points=points,
            amount=points * self.quantity,
            brokerage_points=brokerage_points,
            open_buys=open_buys,
            open_sells=open_sells
        )

    def eop_stats(self, state: EngineState, ltp: float, failed_orders: int = 0,
                  limit_shortages: int = 0, discontinuous_ticks: int = 0) -> AlgoRunStats:
        stats = AlgoRunStats()
        stats.pnl.buy_trades = state.total_buy_trades
        stats.pnl.sell_trades = state.total_sell_trades
        stats.pnl.brokerage = state.total_brokerage_amount
        stats.pnl.profit = self.total_actual_nett

        outstanding = self.outstanding(state, ltp)
        stats.pnl.outstanding = outstanding.amount
        stats.pnl.nett_after_square_off_at_ltp = self.total_actual_nett + outstanding.amount

        stats.program.failed_orders = failed_orders
        stats.program.total_ticks = state.total_tick_count
        stats.program.turnover = self.total_turnover
        stats.program.limit_shortages = limit_shortages
        stats.program.discontinuous_ticks = discontinuous_ticks
        return stats

    def average_trade_price(self, total_ticks: int) -> float:
        return self.price_sum / total_ticks if total_ticks else 0.0

    def finalize_period(self, state: EngineState, period: PeriodStats,
                        margin_fraction: float, direction_pct: float):
        """Fill in the EOP figures at the end of a run."""
        avg_price = self.average_trade_price(state.total_tick_count)
        roi_price = avg_price if avg_price else 1.0

        if self.first_tick_time:
            period.start_date = self.first_tick_time.date()
        if self.last_tick_time:
            period.end_date = self.last_tick_time.date()
        period.quantity = self.quantity
        period.average_trade_price = avg_price
        period.expected_profit = self.total_expected_nett
        period.actual_profit = self.total_actual_nett
        period.brokerage = state.total_brokerage_amount
        period.market_direction_percentage = direction_pct
        period.roi_percentage = roi_percentage(self.total_expected_nett, roi_price, self.quantity, margin_fraction)
        period.actual_roi_percentage = roi_percentage(self.total_actual_nett, roi_price, self.quantity,
                                                      margin_fraction)
        period.status_update_time = datetime.now()
        period.finalize_averages()

    def generate_report(self, state: EngineState, ltp: float, title: str,
                        margin_positions: int, margin_fraction: float) -> str:
        """Generate a text end-of-period report."""
        avg_price = self.average_trade_price(state.total_tick_count)
        ltp = ltp or avg_price or 1.0
        outstanding = self.outstanding(state, ltp)
        nett_day = self.total_actual_nett + outstanding.amount
        expected_day = self.total_expected_nett + outstanding.amount
        invested = self.quantity * margin_positions * ltp * margin_fraction or 1.0

        months = 1.0
        if self.first_tick_time and self.last_tick_time:
            hours = (self.last_tick_time - self.first_tick_time).total_seconds() / 3600
            months = hours / (24 * 30) or 1.0

        avg_win = float(np.mean(self.nett_profitable_orders)) if self.nett_profitable_orders else 0.0
        avg_loss = float(np.mean(self.loss_orders)) if self.loss_orders else 0.0
        days = ",".join(f"{d.nett:.2f}" for d in self.daily_nett)
        expected_days = ",".join(f"{d.nett:.2f}" for d in self.daily_expected_nett)

        report = f"""
╔══════════════════════════════════════════════════════════════╗
║ {title[:60]:60s} ║
╠══════════════════════════════════════════════════════════════╣
║ TRADES                                                       ║
╟──────────────────────────────────────────────────────────────╢
║ Buy / Sell:         {state.total_buy_trades:>18d} / {state.total_sell_trades:<19d} ║
║ Profitable:         {len(self.profitable_orders):>22d}                   ║
║ Profitable (nett):  {len(self.nett_profitable_orders):>22d}                   ║
║ Loss:               {len(self.loss_orders):>22d}                   ║
║ Avg Win / Loss:     {avg_win:>18,.2f} / {avg_loss:<19,.2f} ║
║ Turnover:           {self.total_turnover:>22,.2f}                   ║
╠══════════════════════════════════════════════════════════════╣
║ OPEN POSITIONS                                               ║
╟──────────────────────────────────────────────────────────────╢
║ Open legs:          {len(state.open_positions):>22d}                   ║
║ Outstanding points: {outstanding.points:>22,.2f}                   ║
║ Outstanding amount: {outstanding.amount:>22,.2f}                   ║
║ LTP:                {ltp:>22,.2f}                   ║
╠══════════════════════════════════════════════════════════════╣
║ PROFIT                                                       ║
╟──────────────────────────────────────────────────────────────╢
║ Booked (nett):      {self.total_actual_nett:>22,.2f}                   ║
║ Brokerage:          {state.total_brokerage_amount:>22,.2f}                   ║
║ Nett fruit:         {nett_day:>22,.2f}                   ║
║ Expected fruit:     {expected_day:>22,.2f}                   ║
║ Money invested:     {invested:>22,.2f}                   ║
║ Actual ROI:         {100 * nett_day / invested:>21.2f}%                   ║
║ Expected ROI:       {100 * expected_day / invested:>21.2f}%                   ║
║ Actual ROI / month: {100 * nett_day / invested / months:>21.2f}%                   ║
╚══════════════════════════════════════════════════════════════╝
Days Earnings: {days}
Days Expected Earnings: {expected_days}
"""
        return report
