import pytest

from peak_trading.alpha.peak_detector import ExtremumTracker
from peak_trading.config import AlgoConfig
from peak_trading.execution.broker_api import Direction
from peak_trading.execution.execution_engine import Order
from peak_trading.state.engine_state import EngineState, PeakType


@pytest.fixture
def tracker():
    return ExtremumTracker(EngineState(percent_change_threshold=1.0), AlgoConfig(), symbol="NIFTY")


def test_first_tick_seeds_window(tracker, make_tick):
    t = make_tick(100.0)
    assert tracker.update(t) is None
    assert tracker.state.min_tick == t
    assert tracker.state.max_tick == t


def test_reversal_from_one_percent_peak(tracker, make_tick):
    assert tracker.update(make_tick(100.0, at="10:00")) is None

    buy = tracker.update(make_tick(101.0, at="10:01"))
    assert buy.direction == Direction.BUY
    assert buy.reference_tick.price == 100.0
    assert buy.magnitude_pct == pytest.approx(1.0)

    assert tracker.update(make_tick(100.05, at="10:02")) is None
    assert tracker.update(make_tick(99.995, at="10:03")) is None

    sell = tracker.update(make_tick(99.99, at="10:04"))
    assert sell.direction == Direction.SELL
    assert sell.reference_tick.price == 101.0
    assert sell.from_peak == PeakType.NONE
    assert sell.magnitude_pct == pytest.approx(1.0)

    assert tracker.update(make_tick(99.9, at="10:05")).direction == Direction.SELL


def test_buy_after_rise_from_low(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    tracker.update(make_tick(99.0, at="10:01"))
    signal = tracker.update(make_tick(100.5, at="10:02"))
    assert signal.direction == Direction.BUY
    assert signal.reference_tick.price == 99.0


def test_unconfirmed_signal_keeps_state(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    signal = tracker.update(make_tick(101.5, at="10:01"))
    assert signal.direction == Direction.BUY
    assert tracker.state.last_peak_kind == PeakType.NONE


def test_confirm_buy_moves_to_bottom(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    signal = tracker.update(make_tick(101.5, at="10:01"))
    tracker.confirm(signal)

    assert tracker.state.last_peak_kind == PeakType.BOTTOM
    assert tracker.last_peak.price == 100.0
    # Further rise cannot raise another BUY
    assert tracker.update(make_tick(103.0, at="10:02")) is None


def test_bottom_to_top_resets_min(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    tracker.confirm(tracker.update(make_tick(101.5, at="10:01")))

    sell_tick = make_tick(100.4, at="10:02")
    signal = tracker.update(sell_tick)
    assert signal.direction == Direction.SELL
    assert signal.from_peak == PeakType.BOTTOM

    tracker.confirm(signal)
    assert tracker.state.last_peak_kind == PeakType.TOP
    assert tracker.last_peak.price == 101.5
    assert tracker.state.min_tick == sell_tick


def test_top_to_bottom_resets_max(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    tracker.confirm(tracker.update(make_tick(98.9, at="10:01")))
    assert tracker.state.last_peak_kind == PeakType.TOP

    buy_tick = make_tick(100.0, at="10:02")
    signal = tracker.update(buy_tick)
    assert signal.direction == Direction.BUY
    tracker.confirm(signal)
    assert tracker.state.last_peak_kind == PeakType.BOTTOM
    assert tracker.state.max_tick == buy_tick


def test_peak_kind_never_returns_to_none(tracker, make_tick):
    prices = [100.0, 101.5, 100.2, 101.8, 100.1, 102.0, 99.5]
    for i, price in enumerate(prices):
        signal = tracker.update(make_tick(price, at=f"10:{i:02d}"))
        if signal:
            tracker.confirm(signal)
        if i > 0:
            assert tracker.state.last_peak_kind != PeakType.NONE


def test_discontinuous_move_is_counted(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    signal = tracker.update(make_tick(97.0, at="10:01"))
    assert signal.direction == Direction.SELL
    assert tracker.discontinuous_ticks == 1


def test_both_directions_picks_larger_move(make_tick):
    tracker = ExtremumTracker(EngineState(percent_change_threshold=0.5), AlgoConfig())
    tracker.update(make_tick(100.0, at="10:00"))
    tracker.update(make_tick(102.0, at="10:01"))

    signal = tracker.update(make_tick(101.0, at="10:02"))
    assert tracker.inconsistent_signals == 1
    assert signal.direction == Direction.BUY


def test_square_off_threshold_override(make_tick):
    config = AlgoConfig(is_square_off_trigger=True, perc_square_off_threshold=0.5,
                        perc_market_direction_change=1.0)
    state = EngineState()
    tracker = ExtremumTracker(state, config)
    assert tracker.active_threshold() == 1.0

    state.total_buy_trades = 1
    state.open_positions.append(Order(Direction.BUY, 100.0))
    assert tracker.active_threshold() == 0.5


def test_expected_price(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    tracker.update(make_tick(110.0, at="10:01"))
    assert tracker.expected_price(Direction.BUY) == pytest.approx(101.0)
    assert tracker.expected_price(Direction.SELL) == pytest.approx(108.9)


def test_clear_window(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    tracker.confirm(tracker.update(make_tick(101.5, at="10:01")))
    tracker.clear_window()
    assert tracker.state.min_tick is None
    assert tracker.state.max_tick is None
    assert tracker.state.last_peak_kind == PeakType.NONE


def test_expected_price_on_new_day_is_ltp(tracker, make_tick):
    tracker.update(make_tick(100.0, at="10:00"))
    tracker.update(make_tick(110.0, at="10:01"))
    tracker.state.curr_tick = make_tick(104.0, at="09:30")
    tracker.state.is_next_day = True
    assert tracker.expected_price(Direction.BUY) == 104.0
    assert tracker.expected_price(Direction.SELL) == 104.0
