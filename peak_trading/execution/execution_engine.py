"""
Execution Module
================
Order execution protocol: limit price selection, submission with
re-login, and status polling until the order reaches a terminal state.

Core principle: "Algorithmic execution at scale"
Orders are executed systematically without human intervention.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple
import logging
import math
import threading
import time

from ..config import ExecutionConfig, InstrumentConfig, TradingMode
from ..data.market_data import Tick
from .broker_api import BrokerAPI, BrokerErrorCode, Direction, OrderStatus

logger = logging.getLogger(__name__)

SIMULATED_ORDER_REF = "MOCK-ORDER"


@dataclass
class Order:
    """A confirmed execution. Immutable once recorded."""
    direction: Direction
    price: float
    expected_price: float = 0.0
    order_ref: str = ""
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'direction': self.direction.value,
            'price': self.price,
            'expected_price': self.expected_price,
            'order_ref': self.order_ref,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Order':
        ts = data.get('timestamp')
        return cls(
            direction=Direction(data['direction']),
            price=float(data['price']),
            expected_price=float(data.get('expected_price', 0.0)),
            order_ref=data.get('order_ref', ""),
            timestamp=datetime.fromisoformat(ts) if ts else None
        )


@dataclass
class PlacementResult:
    """Outcome of one try_place call."""
    ok: bool
    order: Optional[Order] = None
    reason: str = ""
    error_code: Optional[BrokerErrorCode] = None
    submitted: bool = False  # reached the broker


def compute_price_margin(price: float) -> float:
    """
    Price improvement added to a live limit order.

    About 0.01% of price floored to the 5 paise grid, at least 0.05,
    and pulled back to 0.05 when it exceeds 0.02% of price.
    """
    margin = round(price * 0.0001, 2)
    rupees = math.floor(margin)
    paise = round((margin - rupees) * 100)
    paise -= paise % 5
    margin = max(rupees + paise / 100, 0.05)

    if abs(margin) > 0.05 and abs(margin) * 100 / price > 0.02:
        margin = 0.05
    return margin


class ExecutionEngine:
    """
    Places one order at a time for a single instrument.

    In MOCK and REPLAY modes the broker is never called: orders fill
    immediately at the selected price.
    """

    def __init__(self, broker: BrokerAPI, instrument: InstrumentConfig,
                 config: ExecutionConfig = None, mode: TradingMode = TradingMode.MOCK,
                 alert_manager=None, sleep: Callable[[float], None] = None):
        self.broker = broker
        self.instrument = instrument
        self.config = config or ExecutionConfig()
        self.mode = mode
        self.alert_manager = alert_manager

        self._stop_event = threading.Event()
        self._sleep = sleep or time.sleep

        self.failed_orders = 0
        self.orders_submitted = 0

    @property
    def is_simulated(self) -> bool:
        return self.mode != TradingMode.LIVE

    def cancel(self):
        """
        Refuse new submissions until reopen().

        An order already at the broker is still polled to its terminal
        status so positions keep matching the broker.
        """
        self._stop_event.set()

    def reopen(self):
        self._stop_event.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._stop_event.is_set()

    def select_price(self, direction: Direction, tick: Tick) -> Tuple[float, float]:
        """Order price and its favourable distance from LTP."""
        if direction == Direction.BUY:
            return tick.offer, tick.ltp - tick.offer
        return tick.bid, tick.bid - tick.ltp

    def try_place(self, direction: Direction, tick: Tick, is_market_closing: bool = False,
                  expected_price: Optional[float] = None) -> PlacementResult:
        """
        Place a limit order and wait for its terminal status.

        Args:
            direction: BUY or SELL
            tick: Quote the decision was taken on
            is_market_closing: Closing square-off; expected price is the fill
            expected_price: Ideal price from the reference extremum

        Returns:
            PlacementResult with the confirmed Order when ok
        """
        desc = self.instrument.description()
        order_price, diff = self.select_price(direction, tick)

        logger.info(f"{tick.timestamp}. Placing order {desc}. Position={direction.value}. "
                    f"OrderPrice={order_price}. Quantity={self.instrument.quantity}")

        if tick.ltp <= 0 or order_price <= 0:
            return self._fail(f"Invalid quote for {desc}: LTP={tick.ltp} price={order_price}")

        diff_pct = diff * 100 / tick.ltp
        if diff < 0 and abs(diff_pct) > self.config.max_spread_deviation_pct:
            reason = (f"{desc}. Not ordering {direction.value} at {order_price}. LTP = {tick.ltp}. "
                      f"Spread diff = {diff:.2f}, diff % = {diff_pct:.4f}")
            logger.info(reason)
            return PlacementResult(ok=False, reason=reason)

        if self.is_simulated:
            fill_price, order_ref = order_price, SIMULATED_ORDER_REF
            submitted = False
        else:
            if self.is_cancelled:
                reason = f"{desc}. Not ordering {direction.value}: execution stopped"
                logger.warning(reason)
                return PlacementResult(ok=False, reason=reason)

            adjusted = order_price + self._signed_margin(direction, order_price)
            code, order_ref = self._submit(direction, adjusted)
            if not code.is_success:
                msg = (f"ERROR {code.value} in PlaceOrder. Contract {desc}, {direction.value} "
                       f"{self.instrument.quantity} qty at {adjusted:.2f}")
                logger.error(msg)
                self._alert_order_failed(msg)
                return self._fail(msg, code)

            executed, fill_price, reason = self._poll_until_terminal(order_ref)
            submitted = True
            if not executed:
                result = self._fail(f"Order {order_ref} not executed: {reason}")
                result.submitted = True
                return result
            if fill_price is None:
                logger.warning(f"Fill price unavailable for {order_ref}, using limit price {order_price}")
                fill_price = order_price

        if is_market_closing or expected_price is None:
            expected_price = fill_price

        order = Order(
            direction=direction,
            price=fill_price,
            expected_price=expected_price,
            order_ref=order_ref,
            timestamp=tick.timestamp
        )
        return PlacementResult(ok=True, order=order, submitted=submitted)

    def _fail(self, reason: str, code: BrokerErrorCode = None) -> PlacementResult:
        self.failed_orders += 1
        logger.info(f"Order not Executed: {reason}")
        return PlacementResult(ok=False, reason=reason, error_code=code)

    def _signed_margin(self, direction: Direction, price: float) -> float:
        margin = compute_price_margin(price)
        return margin if direction == Direction.BUY else -margin

    def _relogin(self) -> BrokerErrorCode:
        self.broker.logout()
        return self.broker.login_if_needed(force=True)

    def _submit(self, direction: Direction, price: float) -> Tuple[BrokerErrorCode, str]:
        """Submit the order, re-logging in on session expiry."""
        relogins = 0
        while True:
            code, order_ref = self.broker.place_order(
                self.instrument.symbol,
                self.instrument.quantity,
                price,
                self.config.default_order_type,
                direction,
                self.instrument.instrument_type,
                self.instrument.strike_price,
                self.instrument.expiry_date,
                self.config.time_in_force
            )
            if code != BrokerErrorCode.NOT_LOGGED_IN:
                if code.is_success:
                    self.orders_submitted += 1
                return code, order_ref

            if relogins >= self.config.max_relogin_attempts:
                logger.error(f"Still not logged in after {relogins} re-login attempts")
                return code, ""
            relogins += 1
            login_code = self._relogin()
            logger.warning(f"Session expired placing order, re-login attempt {relogins}: {login_code.value}")

    def _poll_until_terminal(self, order_ref: str) -> Tuple[bool, Optional[float], str]:
        """
        Poll order status every order_status_poll_seconds.

        Returns (executed, fill_price, reason). There is no time limit
        unless max_status_polls is configured; only a fatal broker error
        ends the loop early.
        """
        polls = 0
        relogins = 0
        while True:
            self._sleep(self.config.order_status_poll_seconds)
            polls += 1
            now = datetime.now()
            code, status = self.broker.get_order_status(
                order_ref, self.instrument.instrument_type, (now, now))

            if code.is_fatal:
                logger.error(f"PlaceOrder: Fatal Error {code.value} polling {order_ref}")
                return False, None, f"fatal broker error {code.value}"

            if code == BrokerErrorCode.NOT_LOGGED_IN:
                if relogins >= self.config.max_relogin_attempts:
                    return False, None, "not logged in"
                relogins += 1
                self._relogin()
            elif code.is_transient:
                logger.debug(f"Transient error {code.value} polling {order_ref}")
            elif status == OrderStatus.EXECUTED:
                return True, self._fetch_fill_price(order_ref, (now, now)), "executed"
            elif status.is_terminal:
                return False, None, status.value

            if self.config.max_status_polls is not None and polls >= self.config.max_status_polls:
                logger.error(f"Order {order_ref} still pending after {polls} polls")
                return False, None, "poll limit reached"

    def _fetch_fill_price(self, order_ref: str, window: Tuple[datetime, datetime]) -> Optional[float]:
        for attempt in range(self.config.fill_price_retries + 1):
            price = self.broker.get_fill_price(window, self.instrument.instrument_type, order_ref)
            if price is not None and price > 0:
                return price
            logger.debug(f"Fill price for {order_ref} unavailable (attempt {attempt + 1})")
        return None

    def _alert_order_failed(self, body: str):
        if self.alert_manager is not None:
            from ..monitoring.monitoring_system import AlertKind
            self.alert_manager.send(AlertKind.ORDER_FAILED, body)
