"""
Engine State
============
The single unit of persisted state for one instrument, plus the named
reset operations operators use for mid-session intervention.
"""

from dataclasses import dataclass, field, fields
from datetime import date
from typing import Any, Dict, List, Optional
from enum import Enum
import logging

from ..data.market_data import Tick
from ..execution.broker_api import Direction
from ..execution.execution_engine import Order

logger = logging.getLogger(__name__)


class PeakType(Enum):
    """Last confirmed reversal point."""
    NONE = "none"
    TOP = "top"
    BOTTOM = "bottom"


class RunState(Enum):
    """Engine lifecycle."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"


@dataclass
class EngineState:
    """Everything the engine needs to resume after a restart."""
    # Exposure
    total_buy_trades: int = 0
    total_sell_trades: int = 0
    open_positions: List[Order] = field(default_factory=list)

    # Analysis window
    min_tick: Optional[Tick] = None
    max_tick: Optional[Tick] = None
    curr_tick: Optional[Tick] = None
    prev_tick: Optional[Tick] = None
    last_peak_kind: PeakType = PeakType.NONE
    perc_change_from_max: float = 0.0
    perc_change_from_min: float = 0.0
    percent_change_threshold: float = 1.0

    # Day transition
    day_anchor: Optional[date] = None
    is_first_tick_seen: bool = False
    is_next_day: bool = False
    is_eod_windup_done: bool = False
    stop_trading_for_day: bool = False

    # Counters
    total_tick_count: int = 0
    total_brokerage_amount: float = 0.0

    @property
    def net_buy(self) -> int:
        return self.total_buy_trades - self.total_sell_trades

    @property
    def gross_open(self) -> int:
        return abs(self.net_buy)

    @property
    def is_flat(self) -> bool:
        return self.total_buy_trades == self.total_sell_trades

    def check_invariant(self) -> bool:
        """Open legs must match the exposure counters."""
        ok = self.gross_open == len(self.open_positions)
        if not ok:
            logger.error(f"Exposure mismatch: buy={self.total_buy_trades} sell={self.total_sell_trades} "
                         f"open legs={len(self.open_positions)}")
        return ok

    def is_square_off(self, direction: Direction) -> bool:
        """True when direction reduces the heavier side of open exposure."""
        if self.is_flat:
            return False
        heavier = Direction.BUY if self.total_buy_trades > self.total_sell_trades else Direction.SELL
        return direction != heavier

    def record_fill(self, order: Order):
        if order.direction == Direction.BUY:
            self.total_buy_trades += 1
        else:
            self.total_sell_trades += 1

    def pop_paired_leg(self, direction: Direction, remove: bool = True) -> Optional[Order]:
        """Most recent open leg opposite to direction."""
        for i in range(len(self.open_positions) - 1, -1, -1):
            if self.open_positions[i].direction != direction:
                return self.open_positions.pop(i) if remove else self.open_positions[i]
        return None

    # ---- resets ----

    def reset_positions(self, default_threshold: float):
        self.total_buy_trades = 0
        self.total_sell_trades = 0
        self.open_positions.clear()
        self.percent_change_threshold = default_threshold

    def reset_direction(self, default_threshold: float):
        self.reset_positions(default_threshold)
        self.last_peak_kind = PeakType.NONE

    def reset_core(self, default_threshold: float):
        self.reset_direction(default_threshold)
        self.min_tick = self.curr_tick
        self.max_tick = self.curr_tick

    @classmethod
    def fresh(cls, default_threshold: float) -> 'EngineState':
        """State used by a full reset."""
        return cls(percent_change_threshold=default_threshold)

    # ---- serialization ----

    def to_dict(self) -> Dict[str, Any]:
        def tick(t: Optional[Tick]):
            return t.to_dict() if t is not None else None

        return {
            'total_buy_trades': self.total_buy_trades,
            'total_sell_trades': self.total_sell_trades,
            'open_positions': [o.to_dict() for o in self.open_positions],
            'min_tick': tick(self.min_tick),
            'max_tick': tick(self.max_tick),
            'curr_tick': tick(self.curr_tick),
            'prev_tick': tick(self.prev_tick),
            'last_peak_kind': self.last_peak_kind.value,
            'perc_change_from_max': self.perc_change_from_max,
            'perc_change_from_min': self.perc_change_from_min,
            'percent_change_threshold': self.percent_change_threshold,
            'day_anchor': self.day_anchor.isoformat() if self.day_anchor else None,
            'is_first_tick_seen': self.is_first_tick_seen,
            'is_next_day': self.is_next_day,
            'is_eod_windup_done': self.is_eod_windup_done,
            'stop_trading_for_day': self.stop_trading_for_day,
            'total_tick_count': self.total_tick_count,
            'total_brokerage_amount': self.total_brokerage_amount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineState':
        """Inverse of to_dict. Unknown keys are ignored, missing keys default."""
        def tick(value):
            return Tick.from_dict(value) if value else None

        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        values['open_positions'] = [Order.from_dict(o) for o in values.get('open_positions', [])]
        for name in ('min_tick', 'max_tick', 'curr_tick', 'prev_tick'):
            values[name] = tick(values.get(name))
        values['last_peak_kind'] = PeakType(values.get('last_peak_kind', PeakType.NONE.value))
        anchor = values.get('day_anchor')
        if anchor:
            values['day_anchor'] = date.fromisoformat(anchor) if isinstance(anchor, str) else anchor
        return cls(**values)

    def summary(self) -> str:
        return (f"buy={self.total_buy_trades} sell={self.total_sell_trades} "
                f"open={len(self.open_positions)} peak={self.last_peak_kind.value} "
                f"threshold={self.percent_change_threshold} ticks={self.total_tick_count}")
