"""
Peak Reversal Trading Engine
============================

Single-instrument intraday trading engine that trades confirmed price
reversals: it tracks the running high and low of the session and, once
price moves back from one of them by a configured percentage, takes a
position against the previous move.

PRINCIPLES:
- Trade the reversal: a TOP is sold, a BOTTOM is bought
- Algorithmic execution: limit orders placed and tracked by the engine
- Hard risk limits: exposure caps, single trade per day, daily loss stop
- Restartable: engine state persisted after every tick
- One engine per instrument, ticks processed strictly in order

PIPELINE:
    ┌──────────────┐
    │    TICK      │  ← live quote, replay file or mock session
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ DAY BOUNDARY │  ← session gates, EOD square-off, day stats
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ PEAK TRACKER │  ← min/max window, TOP/BOTTOM state machine
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ RISK LIMITER │  ← exposure limits, daily loss stop
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ EXECUTION    │  ← broker API, status polling
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ TRADE BOOK   │  ← pairing, P&L, statistics, alerts
    └──────────────┘

USAGE:
    # Paper trading on a synthetic session
    python -m peak_trading.orchestrator --mode mock --threshold 1.0

    # Replay a recorded tick file
    python -m peak_trading.orchestrator --mode replay --replay-file ticks.txt

    # Programmatic usage
    from peak_trading import TradingAlgo, SystemConfig

    config = SystemConfig()
    algo = TradingAlgo(config)
    algo.prolog()
    for tick in ticks:
        algo.process_tick(tick)
    algo.epilog()

MODULES:
    - data: Ticks and the replay feed
    - alpha: Extremum tracker and peak state machine
    - risk: Position limiter
    - execution: Broker APIs and order placement
    - state: Engine state and persistence
    - session: Market clock and day boundary handling
    - monitoring: Trade book, statistics and alerts
"""

from .config import SystemConfig, TradingMode
from .orchestrator import TradingAlgo, TickResult, main
from .data import Tick, ReplayFormatError
from .alpha import ExtremumTracker, Signal
from .risk import RiskLimiter, RiskDecision, PositionAllowCode
from .execution import ExecutionEngine, Order, PlacementResult, Direction, BrokerAPI, MockBroker
from .state import EngineState, PeakType, RunState, StateStore
from .session import MarketClock, NSEMarketClock
from .monitoring import AlertManager, AlertKind, AlertSeverity, TradeBook, DayStats, PeriodStats

__version__ = "1.0.0"
__all__ = [
    # Main
    'TradingAlgo',
    'TickResult',
    'SystemConfig',
    'TradingMode',
    'main',

    # Data
    'Tick',
    'ReplayFormatError',

    # Alpha
    'ExtremumTracker',
    'Signal',

    # Risk
    'RiskLimiter',
    'RiskDecision',
    'PositionAllowCode',

    # Execution
    'ExecutionEngine',
    'Order',
    'PlacementResult',
    'Direction',
    'BrokerAPI',
    'MockBroker',

    # State
    'EngineState',
    'PeakType',
    'RunState',
    'StateStore',

    # Session
    'MarketClock',
    'NSEMarketClock',

    # Monitoring
    'AlertManager',
    'AlertKind',
    'AlertSeverity',
    'TradeBook',
    'DayStats',
    'PeriodStats'
]
