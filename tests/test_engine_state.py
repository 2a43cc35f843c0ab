from datetime import date

import pytest

from peak_trading.execution.broker_api import Direction
from peak_trading.execution.execution_engine import Order
from peak_trading.state.engine_state import EngineState, PeakType


@pytest.fixture
def busy_state(make_tick):
    state = EngineState(
        total_buy_trades=3,
        total_sell_trades=2,
        open_positions=[Order(Direction.BUY, 101.25, 101.0, "REF-1", make_tick(101.25).timestamp)],
        min_tick=make_tick(99.5, at="10:01", seq=2),
        max_tick=make_tick(102.0, at="10:05", seq=6),
        curr_tick=make_tick(101.0, at="10:07", bid=100.95, offer=101.05, seq=8),
        prev_tick=make_tick(101.1, at="10:06", seq=7),
        last_peak_kind=PeakType.BOTTOM,
        percent_change_threshold=0.75,
        day_anchor=date(2024, 1, 15),
        is_first_tick_seen=True,
        stop_trading_for_day=True,
        total_tick_count=8,
        total_brokerage_amount=12.5
    )
    return state


def test_exposure_properties():
    state = EngineState(total_buy_trades=1, total_sell_trades=3)
    assert state.net_buy == -2
    assert state.gross_open == 2
    assert not state.is_flat


def test_invariant(busy_state):
    assert busy_state.check_invariant()
    busy_state.open_positions.clear()
    assert not busy_state.check_invariant()


def test_is_square_off():
    state = EngineState()
    assert not state.is_square_off(Direction.BUY)
    state.total_sell_trades = 1
    assert state.is_square_off(Direction.BUY)
    assert not state.is_square_off(Direction.SELL)


def test_round_trip(busy_state):
    restored = EngineState.from_dict(busy_state.to_dict())
    assert restored == busy_state


def test_from_dict_ignores_unknown_and_defaults_missing(busy_state):
    data = busy_state.to_dict()
    data['some_future_field'] = 42
    del data['total_brokerage_amount']
    restored = EngineState.from_dict(data)
    assert restored.total_brokerage_amount == 0.0
    assert restored.total_buy_trades == 3


def test_reset_positions(busy_state):
    busy_state.reset_positions(1.0)
    assert busy_state.total_buy_trades == 0
    assert busy_state.total_sell_trades == 0
    assert busy_state.open_positions == []
    assert busy_state.percent_change_threshold == 1.0
    assert busy_state.last_peak_kind == PeakType.BOTTOM
    assert busy_state.min_tick.price == 99.5


def test_reset_direction(busy_state):
    busy_state.reset_direction(1.0)
    assert busy_state.open_positions == []
    assert busy_state.last_peak_kind == PeakType.NONE
    assert busy_state.max_tick.price == 102.0


def test_reset_core(busy_state):
    busy_state.reset_core(1.0)
    assert busy_state.last_peak_kind == PeakType.NONE
    assert busy_state.min_tick == busy_state.curr_tick
    assert busy_state.max_tick == busy_state.curr_tick
    assert busy_state.total_tick_count == 8


def test_fresh():
    state = EngineState.fresh(0.8)
    assert state.percent_change_threshold == 0.8
    assert state.is_flat
    assert state.min_tick is None
