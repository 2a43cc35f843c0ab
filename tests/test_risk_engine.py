import pytest

from peak_trading.config import RiskConfig
from peak_trading.execution.broker_api import Direction
from peak_trading.execution.execution_engine import Order
from peak_trading.monitoring.trade_stats import DayStats
from peak_trading.risk.risk_engine import PositionAllowCode, RiskLimiter
from peak_trading.state.engine_state import EngineState


def long_state(n=1):
    state = EngineState()
    for _ in range(n):
        state.total_buy_trades += 1
        state.open_positions.append(Order(Direction.BUY, 100.0))
    return state


def losing_day(profit=-150.0, loss_trades=1, min_price=100.0):
    day = DayStats(min_price=min_price, max_price=min_price)
    day.num_trades = loss_trades
    day.num_loss_trades = loss_trades
    day.actual_profit = profit
    return day


class TestAllow:

    def test_flat_allows_new_positions(self):
        limiter = RiskLimiter(RiskConfig())
        assert limiter.allow(Direction.BUY, EngineState()) == PositionAllowCode.ALLOW_NEW_POSITION
        assert limiter.allow(Direction.SELL, EngineState()) == PositionAllowCode.ALLOW_NEW_POSITION

    def test_total_limit_rejects_same_direction(self):
        limiter = RiskLimiter(RiskConfig(max_total_positions=1))
        state = long_state()
        assert limiter.allow(Direction.BUY, state) == PositionAllowCode.REJECT
        assert limiter.allow(Direction.SELL, state) == PositionAllowCode.ALLOW_SQUARE_OFF

    def test_long_limit_allows_pyramiding_within_limits(self):
        limiter = RiskLimiter(RiskConfig(max_long_positions=2, max_total_positions=2))
        assert limiter.allow(Direction.BUY, long_state(1)) == PositionAllowCode.ALLOW_NEW_POSITION
        assert limiter.allow(Direction.BUY, long_state(2)) == PositionAllowCode.REJECT

    def test_short_limit(self):
        limiter = RiskLimiter(RiskConfig(max_short_positions=0, max_total_positions=2))
        assert limiter.allow(Direction.SELL, EngineState()) == PositionAllowCode.REJECT


class TestEvaluate:

    def test_rejection_counts_limit_shortage(self):
        limiter = RiskLimiter(RiskConfig())
        decision = limiter.evaluate(Direction.BUY, long_state(), DayStats())
        assert not decision.allowed
        assert limiter.limit_shortages == 1
        assert not decision.stop_for_day

    def test_square_off_ignores_day_limits(self):
        config = RiskConfig(is_limit_trades_per_day=True, is_single_trade_per_day=True)
        limiter = RiskLimiter(config, quantity=50)
        decision = limiter.evaluate(Direction.SELL, long_state(), losing_day(profit=-10000.0))
        assert decision.allowed
        assert decision.is_square_off

    def test_single_trade_per_day(self):
        limiter = RiskLimiter(RiskConfig(is_single_trade_per_day=True))
        day = DayStats()
        assert limiter.evaluate(Direction.BUY, EngineState(), day).allowed

        day.num_trades = 1
        decision = limiter.evaluate(Direction.BUY, EngineState(), day)
        assert decision.code == PositionAllowCode.REJECT
        assert limiter.limit_shortages == 0

    def test_daily_loss_percentage_stops_trading(self):
        config = RiskConfig(is_limit_trades_per_day=True, perc_pnl_stop_for_day=2.0)
        limiter = RiskLimiter(config, quantity=50)
        # 150 / (100 * 50) = 3%
        decision = limiter.evaluate(Direction.BUY, EngineState(), losing_day(profit=-150.0))
        assert decision.code == PositionAllowCode.REJECT
        assert decision.stop_for_day

    def test_daily_loss_below_limit_allows(self):
        config = RiskConfig(is_limit_trades_per_day=True, perc_pnl_stop_for_day=2.0)
        limiter = RiskLimiter(config, quantity=50)
        decision = limiter.evaluate(Direction.BUY, EngineState(), losing_day(profit=-50.0))
        assert decision.allowed

    def test_losing_trade_count_cap(self):
        config = RiskConfig(is_limit_trades_per_day=True, num_trades_stop_for_day=3)
        limiter = RiskLimiter(config, quantity=50)
        decision = limiter.evaluate(Direction.SELL, EngineState(), losing_day(profit=-1.0, loss_trades=3))
        assert decision.stop_for_day

    def test_stop_flag_persists(self):
        config = RiskConfig(is_limit_trades_per_day=True)
        limiter = RiskLimiter(config, quantity=50)
        state = EngineState(stop_trading_for_day=True)
        decision = limiter.evaluate(Direction.BUY, state, DayStats())
        assert not decision.allowed
        assert decision.stop_for_day

    def test_loss_limit_disabled(self):
        limiter = RiskLimiter(RiskConfig(), quantity=50)
        assert limiter.evaluate(Direction.BUY, EngineState(), losing_day(profit=-10000.0)).allowed


@pytest.mark.parametrize("profit,breached", [(10.0, False), (-99.0, False), (-100.0, True), (-500.0, True)])
def test_is_day_loss_breached(profit, breached):
    limiter = RiskLimiter(RiskConfig(perc_pnl_stop_for_day=2.0), quantity=50)
    assert limiter.is_day_loss_breached(losing_day(profit=profit)) == breached
