import os
import sys
from datetime import date, datetime, time

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from peak_trading.config import SystemConfig, TradingMode
from peak_trading.data.market_data import Tick
from peak_trading.execution.broker_api import MockBroker
from peak_trading.monitoring.monitoring_system import AlertManager
from peak_trading.orchestrator import TradingAlgo

TRADE_DAY = date(2024, 1, 15)


@pytest.fixture
def make_tick():
    """Tick factory. Bid and offer default to the LTP (zero spread)."""
    def _make(ltp, at="10:00", day=TRADE_DAY, bid=None, offer=None, seq=0):
        hh, mm = (int(x) for x in at.split(':'))
        return Tick(
            timestamp=datetime.combine(day, time(hh, mm)),
            bid=ltp if bid is None else bid,
            offer=ltp if offer is None else offer,
            ltp=ltp,
            bid_size=100,
            offer_size=100,
            volume=1000,
            sequence=seq
        )
    return _make


@pytest.fixture
def config(tmp_path):
    cfg = SystemConfig()
    cfg.mode = TradingMode.MOCK
    cfg.monitoring.enable_alerts = False
    cfg.monitoring.log_file = ""
    cfg.algo.algo_interval_seconds = 0
    cfg.execution.order_status_poll_seconds = 0
    cfg.storage.data_dir = str(tmp_path)
    cfg.storage.state_file = str(tmp_path / "engine_state.json")
    cfg.storage.positions_file = str(tmp_path / "positions.txt")
    cfg.storage.stats_dir = str(tmp_path / "stats")
    cfg.storage.backup_dir = str(tmp_path / "backup")
    return cfg


@pytest.fixture
def broker():
    return MockBroker()


@pytest.fixture
def alerts(config):
    return AlertManager(config.monitoring, source="test")


@pytest.fixture
def build_algo(config, broker, alerts):
    """Engine factory. Call with start=False to skip prolog."""
    def _build(start=True, **overrides):
        algo = TradingAlgo(
            overrides.pop('config', config),
            broker=overrides.pop('broker', broker),
            clock=overrides.pop('clock', None),
            alert_manager=alerts,
            sleep=lambda seconds: None
        )
        if start:
            algo.prolog()
        return algo
    return _build


@pytest.fixture
def feed():
    """Feed ltp values through an engine, one minute apart, numbered from start_seq."""
    def _feed(algo, make_tick, prices, start="10:00", start_seq=1, day=TRADE_DAY):
        hh, mm = (int(x) for x in start.split(':'))
        results = []
        for i, price in enumerate(prices):
            minute = hh * 60 + mm + i
            at = f"{minute // 60:02d}:{minute % 60:02d}"
            results.append(algo.process_tick(make_tick(price, at=at, day=day, seq=start_seq + i)))
        return results
    return _feed
