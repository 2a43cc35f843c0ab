"""
Market Clock
============
Session cutoffs answered from a tick's own timestamp, so replays and
tests can cross day boundaries without real time passing.
"""

from abc import ABC, abstractmethod
from datetime import datetime, time
import logging

from ..config import ExecutionConfig

logger = logging.getLogger(__name__)


def parse_hhmm(value: str) -> time:
    """'09:15' -> time(9, 15)"""
    return time(*map(int, value.split(':')))


class MarketClock(ABC):
    """Session oracle. Pure functions of the timestamp."""

    @abstractmethod
    def is_session_open(self, ts: datetime) -> bool:
        """Live quotes for the day have started."""
        pass

    @abstractmethod
    def is_settled(self, ts: datetime) -> bool:
        """Opening settle buffer is over."""
        pass

    @abstractmethod
    def is_no_new_trade_time(self, ts: datetime) -> bool:
        """No fresh positions from here on."""
        pass

    @abstractmethod
    def is_market_closing(self, ts: datetime) -> bool:
        """Closing square-off window has started."""
        pass

    @abstractmethod
    def is_market_closed(self, ts: datetime) -> bool:
        pass


class NSEMarketClock(MarketClock):
    """Cash/F&O session times, configurable through ExecutionConfig."""

    def __init__(self, config: ExecutionConfig = None):
        config = config or ExecutionConfig()
        self.market_open = parse_hhmm(config.market_open)
        self.settle_time = parse_hhmm(config.settle_time)
        self.no_new_trade_time = parse_hhmm(config.no_new_trade_time)
        self.market_closing_time = parse_hhmm(config.market_closing_time)
        self.market_close = parse_hhmm(config.market_close)

    def is_session_open(self, ts: datetime) -> bool:
        return ts.time() >= self.market_open

    def is_settled(self, ts: datetime) -> bool:
        return ts.time() >= self.settle_time

    def is_no_new_trade_time(self, ts: datetime) -> bool:
        return ts.time() >= self.no_new_trade_time

    def is_market_closing(self, ts: datetime) -> bool:
        return ts.time() >= self.market_closing_time

    def is_market_closed(self, ts: datetime) -> bool:
        return ts.time() >= self.market_close
