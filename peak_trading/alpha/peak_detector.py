"""
Peak Detection Module
=====================
Extremum tracker and the TOP/BOTTOM reversal state machine.

Core principle: trade the reversal, not the trend.
A running min and max of the analysis window are kept; once price moves
back from one of them by the trigger threshold, that extremum is taken
as a confirmed peak and a signal in the reversal direction is raised.

    NONE ──BUY──▶ BOTTOM ──SELL──▶ TOP ──BUY──▶ BOTTOM ...
      └───SELL──▶ TOP

The state only moves when the resulting order is confirmed, so a
rejected or failed order leaves the tracker where it was.
"""

from dataclasses import dataclass
from typing import Dict, Optional
import logging

from ..config import AlgoConfig
from ..data.market_data import Tick
from ..execution.broker_api import Direction
from ..state.engine_state import EngineState, PeakType

logger = logging.getLogger(__name__)

# Moves beyond threshold + this many percentage points indicate a data gap
DISCONTINUITY_TOLERANCE_PCT = 1.0


@dataclass
class Signal:
    """Trade signal raised by a threshold crossing."""
    direction: Direction
    reference_tick: Tick  # extremum the move is measured from
    tick: Tick
    magnitude_pct: float
    from_peak: PeakType


class ExtremumTracker:
    """
    Maintains min/max reference ticks on an EngineState and turns
    threshold crossings into Signals.
    """

    def __init__(self, state: EngineState, config: AlgoConfig = None, symbol: str = ""):
        self.state = state
        self.config = config or AlgoConfig()
        self.symbol = symbol

        self.last_peak: Optional[Tick] = None
        self.peaks: Dict[int, Tick] = {}
        self.discontinuous_ticks = 0
        self.inconsistent_signals = 0

    def seed(self, tick: Optional[Tick]):
        """Start a new analysis window at tick (None clears it)."""
        self.state.min_tick = tick
        self.state.max_tick = tick

    def clear_window(self):
        self.seed(None)
        self.last_peak = None
        self.state.last_peak_kind = PeakType.NONE

    def observe(self, tick: Tick):
        """Measure tick against the window and extend min/max."""
        s = self.state
        if s.min_tick is None or s.max_tick is None:
            self.seed(tick)

        price = tick.price
        max_price = s.max_tick.price
        min_price = s.min_tick.price
        s.perc_change_from_max = 100 * ((price - max_price) / max_price)
        s.perc_change_from_min = 100 * ((price - min_price) / min_price)

        if s.perc_change_from_max >= 0:
            s.max_tick = tick
        elif s.perc_change_from_min <= 0:
            s.min_tick = tick

    def active_threshold(self) -> float:
        """Threshold for the next decision, applying the square-off override."""
        s = self.state
        if self.config.is_square_off_trigger:
            s.percent_change_threshold = (self.config.perc_square_off_threshold if not s.is_flat
                                          else self.config.perc_market_direction_change)
        return s.percent_change_threshold

    def detect(self, tick: Tick) -> Optional[Signal]:
        """Signal allowed by the current peak state, if the threshold is crossed."""
        s = self.state
        threshold = self.active_threshold()
        from_max = s.perc_change_from_max
        from_min = s.perc_change_from_min

        is_sell = from_max < 0 and abs(from_max) >= threshold
        is_buy = from_min > 0 and abs(from_min) >= threshold

        if s.last_peak_kind == PeakType.BOTTOM:
            is_buy = False
        elif s.last_peak_kind == PeakType.TOP:
            is_sell = False
        elif is_buy and is_sell:
            self.inconsistent_signals += 1
            logger.warning(f"{self.symbol}: {tick.timestamp}: first peak says both buy and sell "
                           f"(from min {from_min:.3f}%, from max {from_max:.3f}%), taking the larger move")
            is_buy = abs(from_min) > abs(from_max)
            is_sell = not is_buy

        if not (is_buy or is_sell):
            return None

        magnitude = abs(from_min) if is_buy else abs(from_max)
        if magnitude - threshold > DISCONTINUITY_TOLERANCE_PCT:
            self.discontinuous_ticks += 1
            logger.warning(f"{self.symbol}: {tick.timestamp}: PriceTick non-continuous "
                           f"{self.discontinuous_ticks}: PercThreshold = {threshold}, "
                           f"move = {magnitude / threshold:.2f} times")

        return Signal(
            direction=Direction.BUY if is_buy else Direction.SELL,
            reference_tick=s.min_tick if is_buy else s.max_tick,
            tick=tick,
            magnitude_pct=magnitude,
            from_peak=s.last_peak_kind
        )

    def update(self, tick: Tick) -> Optional[Signal]:
        self.observe(tick)
        return self.detect(tick)

    def confirm(self, signal: Signal):
        """Apply the peak transition after the signal's order executed."""
        s = self.state
        if signal.direction == Direction.SELL:
            # New TOP
            s.last_peak_kind = PeakType.TOP
            self.last_peak = s.max_tick
            if signal.from_peak == PeakType.BOTTOM:
                s.min_tick = signal.tick
        else:
            # New BOTTOM
            s.last_peak_kind = PeakType.BOTTOM
            self.last_peak = s.min_tick
            if signal.from_peak == PeakType.TOP:
                s.max_tick = signal.tick

        self.peaks[s.total_tick_count] = self.last_peak
        logger.info(f"{self.symbol}: new {s.last_peak_kind.value.upper()} at "
                    f"{self.last_peak.price if self.last_peak else None}")

    def expected_price(self, direction: Direction) -> float:
        """
        Ideal fill: the reference extremum moved by exactly the threshold.

        On the first tick of a new day it is the LTP.
        """
        s = self.state
        if s.is_next_day and s.curr_tick is not None:
            return s.curr_tick.ltp
        threshold = s.percent_change_threshold
        if direction == Direction.BUY:
            return s.min_tick.price * (1 + threshold / 100)
        return s.max_tick.price * (1 - threshold / 100)
