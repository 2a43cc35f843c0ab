"""
Configuration Management
========================
Central configuration (algo parameters) for a single-instrument engine.

The decision core treats every section here as read-only.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional
from enum import Enum
import json
import os


class TradingMode(Enum):
    """Trading operation modes."""
    MOCK = "mock"      # simulated broker, session gates relaxed
    REPLAY = "replay"  # historical tick file, deterministic
    LIVE = "live"


@dataclass
class InstrumentConfig:
    """The one contract this engine trades."""
    symbol: str = "NIFTY"
    instrument_type: str = "FUTIDX"  # FUTIDX, FUTSTK, OPTIDX, OPTSTK, EQ
    strike_price: float = 0.0
    expiry_date: str = ""  # YYYY-MM-DD
    option_type: str = ""  # CE / PE for options
    quantity: int = 50  # lot size

    def description(self) -> str:
        parts = [self.symbol, self.instrument_type]
        if self.expiry_date:
            parts.append(self.expiry_date)
        if self.strike_price:
            parts.append(f"{self.strike_price:g}{self.option_type}")
        return " ".join(parts)


@dataclass
class RiskConfig:
    """Risk limiter configuration."""
    # Position limits (counted in lots)
    max_long_positions: int = 1
    max_short_positions: int = 1
    max_total_positions: int = 1

    # Single round trip per day
    is_single_trade_per_day: bool = False

    # Daily loss limit
    is_limit_trades_per_day: bool = False
    perc_pnl_stop_for_day: float = 2.0  # % of min_price * qty
    num_trades_stop_for_day: int = 3  # losing trades


@dataclass
class AlgoConfig:
    """Peak detection configuration."""
    algo_id: int = 1
    algo_description: str = "Peak reversal"

    # Trigger thresholds (percent)
    perc_market_direction_change: float = 1.0
    perc_square_off_threshold: float = 1.0
    is_square_off_trigger: bool = False  # use square-off threshold while exposed

    # Day handling
    is_market_closing_square_off: bool = True
    is_consider_prev_closing: bool = False
    allow_initial_tick_stabilization: bool = True

    # Live quote polling interval
    algo_interval_seconds: float = 1.0


@dataclass
class ExecutionConfig:
    """Execution module configuration."""
    # Broker settings
    broker: str = "mock"  # mock, zerodha, angelone
    api_key: str = ""
    api_secret: str = ""
    access_token: str = ""
    client_id: str = ""
    password: str = ""
    totp: str = ""
    exchange: str = "NFO"

    # Costs
    perc_brokerage: float = 0.03  # percent of traded value
    square_off_brokerage_factor: float = 2.0  # entry + exit leg
    margin_fraction: float = 0.15

    # Order parameters
    default_order_type: str = "LIMIT"
    time_in_force: str = "IOC"
    max_spread_deviation_pct: float = 0.06
    order_status_poll_seconds: float = 5.0
    fill_price_retries: int = 3
    max_relogin_attempts: int = 3
    max_status_polls: Optional[int] = None  # None polls until a terminal state

    # Execution timing
    market_open: str = "09:15"
    settle_time: str = "09:20"
    no_new_trade_time: str = "15:15"
    market_closing_time: str = "15:20"
    market_close: str = "15:30"


@dataclass
class MonitoringConfig:
    """Monitoring and alerting configuration."""
    # Alerts
    enable_alerts: bool = True
    alert_channels: List[str] = field(default_factory=lambda: ["console"])
    email_recipients: List[str] = field(default_factory=list)
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    email_user: str = ""
    email_password: str = ""
    position_alert_interval_minutes: int = 15

    # Logging
    log_level: str = "INFO"
    log_file: str = "./logs/trading.log"


@dataclass
class StorageConfig:
    """Where the engine keeps its files."""
    data_dir: str = "./data"
    state_file: str = "./data/engine_state.json"
    positions_file: str = "./data/positions.txt"
    stats_dir: str = "./data/stats"
    backup_dir: str = "./data/backup"
    replay_tick_file: str = ""


@dataclass
class SystemConfig:
    """Master system configuration."""
    # Operating mode
    mode: TradingMode = TradingMode.MOCK

    # Component configs
    instrument: InstrumentConfig = field(default_factory=InstrumentConfig)
    algo: AlgoConfig = field(default_factory=AlgoConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    # Orders to seed the book with on start, e.g. ["BUY:101.5"]
    start_orders: List[str] = field(default_factory=list)

    @property
    def is_mock(self) -> bool:
        return self.mode == TradingMode.MOCK

    @property
    def is_replay(self) -> bool:
        return self.mode == TradingMode.REPLAY

    @property
    def is_live(self) -> bool:
        return self.mode == TradingMode.LIVE

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self._to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'SystemConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls._from_dict(data)

    def _to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'mode': self.mode.value,
            'instrument': asdict(self.instrument),
            'algo': asdict(self.algo),
            'risk': asdict(self.risk),
            'execution': asdict(self.execution),
            'monitoring': asdict(self.monitoring),
            'storage': asdict(self.storage),
            'start_orders': list(self.start_orders),
        }

    @classmethod
    def _from_dict(cls, data: dict) -> 'SystemConfig':
        """Create from dictionary. Unknown keys are ignored."""
        config = cls()
        config.mode = TradingMode(data.get('mode', 'mock'))
        sections = {
            'instrument': InstrumentConfig,
            'algo': AlgoConfig,
            'risk': RiskConfig,
            'execution': ExecutionConfig,
            'monitoring': MonitoringConfig,
            'storage': StorageConfig,
        }
        for name, section_cls in sections.items():
            values: Dict = data.get(name, {}) or {}
            known = section_cls.__dataclass_fields__
            setattr(config, name, section_cls(**{k: v for k, v in values.items() if k in known}))
        config.start_orders = list(data.get('start_orders', []))
        return config


# Default configuration instance
DEFAULT_CONFIG = SystemConfig()
