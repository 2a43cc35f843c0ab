import pytest

from peak_trading.config import ExecutionConfig, InstrumentConfig, MonitoringConfig, TradingMode
from peak_trading.execution.broker_api import BrokerErrorCode, Direction, OrderStatus
from peak_trading.execution.execution_engine import ExecutionEngine, compute_price_margin
from peak_trading.monitoring.monitoring_system import AlertManager


@pytest.fixture
def live_engine(broker):
    def _build(**config_overrides):
        config = ExecutionConfig(order_status_poll_seconds=0, **config_overrides)
        alerts = AlertManager(MonitoringConfig(enable_alerts=False))
        return ExecutionEngine(broker, InstrumentConfig(symbol="NIFTY", quantity=50), config,
                               mode=TradingMode.LIVE, alert_manager=alerts, sleep=lambda s: None)
    return _build


@pytest.mark.parametrize("price,margin", [(100.0, 0.05), (200.0, 0.05), (5000.0, 0.5), (12345.0, 1.2)])
def test_compute_price_margin(price, margin):
    assert compute_price_margin(price) == pytest.approx(margin)


def test_simulated_fill_never_calls_broker(broker, make_tick):
    engine = ExecutionEngine(broker, InstrumentConfig(), mode=TradingMode.MOCK)
    result = engine.try_place(Direction.BUY, make_tick(100.0, bid=99.9, offer=100.0), expected_price=99.5)

    assert result.ok
    assert result.order.price == 100.0
    assert result.order.expected_price == 99.5
    assert result.order.order_ref == "MOCK-ORDER"
    assert not result.submitted
    assert broker.placed_orders == []


def test_sell_uses_bid(broker, make_tick):
    engine = ExecutionEngine(broker, InstrumentConfig(), mode=TradingMode.REPLAY)
    result = engine.try_place(Direction.SELL, make_tick(100.0, bid=99.99, offer=100.02))
    assert result.order.price == 99.99
    # No expected price given: expected is the fill
    assert result.order.expected_price == 99.99


def test_wide_spread_rejected_before_submission(live_engine, broker, make_tick):
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0, bid=99.9, offer=103.0))

    assert not result.ok
    assert broker.placed_orders == []
    assert engine.failed_orders == 0


def test_invalid_quote_is_a_failure(live_engine, broker, make_tick):
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(0.0))
    assert not result.ok
    assert engine.failed_orders == 1
    assert broker.placed_orders == []


def test_live_order_adds_margin_and_reports_fill(live_engine, broker, make_tick):
    broker.script_fill_prices(100.02)
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0), expected_price=99.8)

    assert result.ok
    assert result.submitted
    assert broker.placed_orders[0]['price'] == pytest.approx(100.05)
    assert broker.placed_orders[0]['time_in_force'] == "IOC"
    assert result.order.price == 100.02
    assert result.order.expected_price == 99.8
    assert result.order.order_ref == "MOCK-1"
    assert engine.orders_submitted == 1


def test_sell_margin_lowers_price(live_engine, broker, make_tick):
    engine = live_engine()
    engine.try_place(Direction.SELL, make_tick(100.0))
    assert broker.placed_orders[0]['price'] == pytest.approx(99.95)


def test_market_closing_expected_is_fill(live_engine, broker, make_tick):
    broker.script_fill_prices(100.1)
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0), is_market_closing=True, expected_price=99.0)
    assert result.order.expected_price == 100.1


def test_relogin_and_retry_on_session_expiry(live_engine, broker, make_tick):
    broker.script_place(BrokerErrorCode.NOT_LOGGED_IN, BrokerErrorCode.SUCCESS)
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert result.ok
    assert len(broker.placed_orders) == 2
    assert broker.logout_calls == 1
    assert broker.login_calls == 1


def test_relogin_is_bounded(live_engine, broker, make_tick):
    broker.script_place(*[BrokerErrorCode.NOT_LOGGED_IN] * 10)
    engine = live_engine(max_relogin_attempts=2)
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert not result.ok
    assert result.error_code == BrokerErrorCode.NOT_LOGGED_IN
    assert len(broker.placed_orders) == 3


def test_fatal_submission_error_not_retried(live_engine, broker, make_tick):
    broker.script_place(BrokerErrorCode.INSUFFICIENT_FUNDS)
    engine = live_engine()
    result = engine.try_place(Direction.SELL, make_tick(100.0))

    assert not result.ok
    assert result.error_code == BrokerErrorCode.INSUFFICIENT_FUNDS
    assert len(broker.placed_orders) == 1
    assert engine.failed_orders == 1
    assert [a.title for a in engine.alert_manager.alerts] == ["Order Failed"]


def test_rejected_status_fails(live_engine, broker, make_tick):
    broker.script_status((BrokerErrorCode.SUCCESS, OrderStatus.REJECTED))
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert not result.ok
    assert result.submitted
    assert engine.failed_orders == 1


def test_polls_through_transient_errors(live_engine, broker, make_tick):
    broker.script_status(
        (BrokerErrorCode.TIMEOUT, OrderStatus.UNKNOWN),
        (BrokerErrorCode.SUCCESS, OrderStatus.PENDING),
        (BrokerErrorCode.SUCCESS, OrderStatus.EXECUTED),
    )
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert result.ok
    assert broker.status_calls == 3


def test_fatal_status_error_stops_polling(live_engine, broker, make_tick):
    broker.script_status(
        (BrokerErrorCode.SUCCESS, OrderStatus.OPEN),
        (BrokerErrorCode.BROKER_ERROR, OrderStatus.UNKNOWN),
    )
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert not result.ok
    assert broker.status_calls == 2


def test_session_expiry_while_polling(live_engine, broker, make_tick):
    broker.script_status(
        (BrokerErrorCode.NOT_LOGGED_IN, OrderStatus.UNKNOWN),
        (BrokerErrorCode.SUCCESS, OrderStatus.EXECUTED),
    )
    engine = live_engine()
    assert engine.try_place(Direction.BUY, make_tick(100.0)).ok
    assert broker.logout_calls == 1


def test_optional_poll_limit(live_engine, broker, make_tick):
    broker.script_status(*[(BrokerErrorCode.SUCCESS, OrderStatus.PENDING)] * 5)
    engine = live_engine(max_status_polls=2)
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert not result.ok
    assert broker.status_calls == 2


def test_missing_fill_price_falls_back_to_limit(live_engine, broker, make_tick):
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert result.ok
    assert result.order.price == 100.0
    assert broker.fill_price_calls == engine.config.fill_price_retries + 1


def test_fill_price_retried(live_engine, broker, make_tick):
    broker.script_fill_prices(None, 0.0, 100.03)
    engine = live_engine()
    result = engine.try_place(Direction.BUY, make_tick(100.0))
    assert result.order.price == 100.03
    assert broker.fill_price_calls == 3


def test_cancel_blocks_new_submissions(live_engine, broker, make_tick):
    engine = live_engine()
    engine.cancel()
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert not result.ok
    assert not result.submitted
    assert broker.placed_orders == []
    assert broker.status_calls == 0

    engine.reopen()
    assert engine.try_place(Direction.BUY, make_tick(100.0)).ok
    assert len(broker.placed_orders) == 1


def test_cancel_mid_poll_still_waits_for_terminal_status(broker, make_tick):
    broker.script_status(
        (BrokerErrorCode.SUCCESS, OrderStatus.PENDING),
        (BrokerErrorCode.SUCCESS, OrderStatus.PENDING),
        (BrokerErrorCode.SUCCESS, OrderStatus.EXECUTED),
    )
    engine = ExecutionEngine(broker, InstrumentConfig(), ExecutionConfig(order_status_poll_seconds=0),
                             mode=TradingMode.LIVE, sleep=lambda s: engine.cancel())
    result = engine.try_place(Direction.BUY, make_tick(100.0))

    assert result.ok
    assert result.submitted
    assert broker.status_calls == 3
    assert engine.failed_orders == 0
