"""
Risk Engine Module
==================
Gatekeeper between a trade signal and the broker.

Core principle: "No emotional overrides once live"
Risk rules are enforced algorithmically without human intervention.
A rejection is an ordinary decision, never an exception.
"""

from dataclasses import dataclass
from enum import Enum
import logging

from ..config import RiskConfig
from ..execution.broker_api import Direction
from ..state.engine_state import EngineState

logger = logging.getLogger(__name__)


class PositionAllowCode(Enum):
    """Outcome of a position request."""
    REJECT = "reject"
    ALLOW_SQUARE_OFF = "allow_square_off"
    ALLOW_NEW_POSITION = "allow_new_position"


@dataclass
class RiskDecision:
    """Typed answer from the risk limiter."""
    code: PositionAllowCode
    reason: str = ""
    stop_for_day: bool = False

    @property
    def allowed(self) -> bool:
        return self.code != PositionAllowCode.REJECT

    @property
    def is_square_off(self) -> bool:
        return self.code == PositionAllowCode.ALLOW_SQUARE_OFF


class RiskLimiter:
    """
    Decides whether a BUY or SELL may be placed given current exposure.

    Square-offs are always allowed. New positions must respect the
    long/short/total limits, the single-trade-per-day rule and, when
    enabled, the daily loss limit.
    """

    def __init__(self, config: RiskConfig = None, quantity: int = 1):
        self.config = config or RiskConfig()
        self.quantity = quantity
        self.limit_shortages = 0

    def allow(self, direction: Direction, state: EngineState) -> PositionAllowCode:
        """Exposure limits only."""
        if state.gross_open > 0 and state.is_square_off(direction):
            return PositionAllowCode.ALLOW_SQUARE_OFF

        net_buy = state.net_buy
        gross_open = state.gross_open
        if direction == Direction.BUY:
            ok = net_buy < self.config.max_long_positions and gross_open < self.config.max_total_positions
        else:
            ok = -net_buy < self.config.max_short_positions and gross_open < self.config.max_total_positions
        return PositionAllowCode.ALLOW_NEW_POSITION if ok else PositionAllowCode.REJECT

    def is_day_loss_breached(self, day_stats) -> bool:
        profit = day_stats.actual_profit
        if profit >= 0:
            return False
        if day_stats.num_loss_trades >= self.config.num_trades_stop_for_day:
            return True
        exposure = day_stats.min_price * self.quantity
        if exposure <= 0:
            return False
        return abs(profit * 100 / exposure) >= self.config.perc_pnl_stop_for_day

    def evaluate(self, direction: Direction, state: EngineState, day_stats) -> RiskDecision:
        """
        Full check of a position request.

        Args:
            direction: Requested trade direction
            state: Current engine state (exposure counters)
            day_stats: Today's DayStats (round trips and realised P&L)

        Returns:
            RiskDecision; stop_for_day is set when the daily loss limit trips
        """
        code = self.allow(direction, state)
        if code == PositionAllowCode.ALLOW_SQUARE_OFF:
            return RiskDecision(code, "square off")

        if self.config.is_single_trade_per_day and day_stats.num_trades >= 1 and state.is_flat:
            return RiskDecision(PositionAllowCode.REJECT, "single trade per day already completed")

        if self.config.is_limit_trades_per_day:
            if state.stop_trading_for_day:
                return RiskDecision(PositionAllowCode.REJECT, "stopped for the day", stop_for_day=True)
            if self.is_day_loss_breached(day_stats):
                reason = (f"day loss limit: loss = {day_stats.actual_profit:.2f}, "
                          f"loss trades = {day_stats.num_loss_trades}, "
                          f"profit trades = {day_stats.num_profit_trades}")
                return RiskDecision(PositionAllowCode.REJECT, reason, stop_for_day=True)

        if code == PositionAllowCode.REJECT:
            self.limit_shortages += 1
            return RiskDecision(code, f"Not sufficient limit to place order: Number {self.limit_shortages}")

        return RiskDecision(code, "new position")
