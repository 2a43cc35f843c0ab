"""
Example: Running the Peak Reversal Trading Engine
=================================================

This example demonstrates how to use the engine for paper trading,
tick file replay and component-level experiments.
"""

import logging
import os
import tempfile
from datetime import datetime

from peak_trading import (
    TradingAlgo,
    SystemConfig,
    TradingMode,
    ExtremumTracker,
    EngineState,
    MockBroker
)
from peak_trading.data import generate_mock_ticks, write_replay_ticks

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def make_config(workdir: str, mode: TradingMode) -> SystemConfig:
    config = SystemConfig()
    config.mode = mode
    config.instrument.symbol = 'NIFTY'
    config.instrument.quantity = 50
    config.monitoring.enable_alerts = False
    config.algo.algo_interval_seconds = 0

    config.storage.state_file = os.path.join(workdir, 'engine_state.json')
    config.storage.positions_file = os.path.join(workdir, 'positions.txt')
    config.storage.stats_dir = os.path.join(workdir, 'stats')
    config.storage.backup_dir = os.path.join(workdir, 'backup')
    return config


def example_paper_trading(workdir: str):
    """
    Example: Mock Mode

    Runs one synthetic session through the engine with a mock broker.
    """
    print("\n" + "="*60)
    print("PAPER TRADING EXAMPLE")
    print("="*60 + "\n")

    config = make_config(workdir, TradingMode.MOCK)
    config.algo.perc_market_direction_change = 0.5

    # Customize risk parameters
    config.risk.is_limit_trades_per_day = True
    config.risk.perc_pnl_stop_for_day = 2.0

    start = datetime.now().replace(hour=9, minute=20, second=0, microsecond=0)
    broker = MockBroker(quotes=generate_mock_ticks(start, base_price=22000.0, n=375, seed=42))

    algo = TradingAlgo(config, broker=broker)
    algo.run()

    status = algo.get_status()
    print(f"  Buy / Sell: {status['buy_trades']} / {status['sell_trades']}")
    print(f"  Realised: ₹{status['realised_nett']:,.2f}")
    print(f"  Ticks: {status['ticks']}")


def example_replay(workdir: str):
    """
    Example: Replay Mode

    Records a session to a tick file and replays it deterministically.
    """
    print("\n" + "="*60)
    print("REPLAY EXAMPLE")
    print("="*60 + "\n")

    tick_file = os.path.join(workdir, 'ticks.txt')
    start = datetime(2024, 1, 15, 9, 20)
    write_replay_ticks(tick_file, generate_mock_ticks(start, base_price=22000.0, n=375, seed=7))

    config = make_config(workdir, TradingMode.REPLAY)
    config.algo.perc_market_direction_change = 0.3

    algo = TradingAlgo(config)
    algo.prolog()
    results = algo.run_replay(tick_file)
    stats = algo.epilog()

    trades = [r.order for r in results if r.order is not None]
    print(f"Replayed {len(results)} ticks, {len(trades)} orders")
    for order in trades[:5]:
        print(f"  {order.timestamp:%H:%M} {order.direction.value:4s} @ {order.price:,.2f}")
    print(f"Nett profit: ₹{stats.pnl.profit:,.2f}")


def example_components():
    """
    Example: Using the peak tracker on its own
    """
    print("\n" + "="*60)
    print("COMPONENT EXAMPLE")
    print("="*60 + "\n")

    state = EngineState(percent_change_threshold=1.0)
    tracker = ExtremumTracker(state, symbol='NIFTY')

    start = datetime(2024, 1, 15, 9, 20)
    for tick in generate_mock_ticks(start, base_price=100.0, n=200, volatility=0.004, seed=3):
        signal = tracker.update(tick)
        if signal:
            print(f"{tick.timestamp:%H:%M} {signal.direction.value:4s} at {tick.ltp:.2f} "
                  f"({signal.magnitude_pct:.2f}% from {signal.reference_tick.ltp:.2f})")
            tracker.confirm(signal)

    print(f"Last peak: {state.last_peak_kind.value}")


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as workdir:
        example_components()
        example_paper_trading(workdir)
        example_replay(workdir)
