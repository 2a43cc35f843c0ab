"""
Broker API Module
=================
Brokerage collaborator interface and concrete integrations.

Every call returns a BrokerErrorCode (alongside its value) instead of
raising, so the execution protocol can tell a session expiry it can
recover from apart from a fatal error it must give up on.
"""

from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple
from enum import Enum
import logging

from ..data.market_data import Tick, tick_from_depth

logger = logging.getLogger(__name__)


class Direction(Enum):
    """Trade direction."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> 'Direction':
        return Direction.SELL if self is Direction.BUY else Direction.BUY

    @classmethod
    def parse(cls, token: str) -> 'Direction':
        """Case-insensitive parse of BUY/SELL. Raises ValueError otherwise."""
        return cls(token.strip().upper())


class OrderStatus(Enum):
    """Broker-side order status."""
    OPEN = "open"
    PENDING = "pending"
    EXECUTED = "executed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.EXECUTED, OrderStatus.REJECTED,
                        OrderStatus.CANCELLED, OrderStatus.EXPIRED)


class BrokerErrorCode(Enum):
    """Broker call outcome classification."""
    SUCCESS = "success"
    NOT_LOGGED_IN = "not_logged_in"

    # Fatal: retrying within the same tick cannot help
    INVALID_LOGIN = "invalid_login"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_ORDER = "invalid_order"
    CONTRACT_NOT_FOUND = "contract_not_found"
    CONFIGURATION_ERROR = "configuration_error"
    BROKER_ERROR = "broker_error"

    # Transient: the next poll may succeed
    SERVER_ERROR = "server_error"
    CONNECTION_ERROR = "connection_error"
    TIMEOUT = "timeout"
    NO_DATA = "no_data"

    @property
    def is_success(self) -> bool:
        return self is BrokerErrorCode.SUCCESS

    @property
    def is_fatal(self) -> bool:
        return self in _FATAL_CODES

    @property
    def is_transient(self) -> bool:
        return self in _TRANSIENT_CODES


_FATAL_CODES = frozenset({
    BrokerErrorCode.INVALID_LOGIN,
    BrokerErrorCode.INSUFFICIENT_FUNDS,
    BrokerErrorCode.INVALID_ORDER,
    BrokerErrorCode.CONTRACT_NOT_FOUND,
    BrokerErrorCode.CONFIGURATION_ERROR,
    BrokerErrorCode.BROKER_ERROR,
})

_TRANSIENT_CODES = frozenset({
    BrokerErrorCode.SERVER_ERROR,
    BrokerErrorCode.CONNECTION_ERROR,
    BrokerErrorCode.TIMEOUT,
    BrokerErrorCode.NO_DATA,
})


class BrokerAPI(ABC):
    """Abstract base class for broker API integration."""

    @abstractmethod
    def login_if_needed(self, force: bool = False) -> BrokerErrorCode:
        """Log in unless a live session exists (always when force)."""
        pass

    @abstractmethod
    def logout(self):
        """Drop the current session."""
        pass

    @abstractmethod
    def place_order(self, symbol: str, quantity: int, price: float, price_type: str,
                    direction: Direction, instrument_type: str, strike: float,
                    expiry: str, time_in_force: str) -> Tuple[BrokerErrorCode, str]:
        """Submit a derivative order. Returns (code, order_ref)."""
        pass

    @abstractmethod
    def get_order_status(self, order_ref: str, instrument_type: str,
                         window: Tuple[datetime, datetime]) -> Tuple[BrokerErrorCode, OrderStatus]:
        """Get current status of a submitted order."""
        pass

    @abstractmethod
    def get_fill_price(self, window: Tuple[datetime, datetime], instrument_type: str,
                       order_ref: str) -> Optional[float]:
        """Average execution price, or None when not yet available."""
        pass

    @abstractmethod
    def get_quote(self, symbol: str, instrument_type: str,
                  expiry: str) -> Tuple[BrokerErrorCode, Optional[Tick]]:
        """Current best bid/offer and last traded price."""
        pass


class MockBroker(BrokerAPI):
    """
    Scriptable broker for paper trading and testing.

    Results are consumed from per-call queues; once a queue is empty the
    broker falls back to immediate success.
    """

    def __init__(self, quotes: List[Tick] = None):
        self.logged_in = False
        self.login_calls = 0
        self.logout_calls = 0

        self.place_results: Deque[BrokerErrorCode] = deque()
        self.status_results: Deque[Tuple[BrokerErrorCode, OrderStatus]] = deque()
        self.fill_prices: Deque[Optional[float]] = deque()
        self.quotes: Deque[Tick] = deque(quotes or [])

        self.placed_orders: List[dict] = []
        self.status_calls = 0
        self.fill_price_calls = 0
        self._next_ref = 0

    def script_place(self, *codes: BrokerErrorCode):
        self.place_results.extend(codes)

    def script_status(self, *results: Tuple[BrokerErrorCode, OrderStatus]):
        self.status_results.extend(results)

    def script_fill_prices(self, *prices: Optional[float]):
        self.fill_prices.extend(prices)

    def login_if_needed(self, force: bool = False) -> BrokerErrorCode:
        if self.logged_in and not force:
            return BrokerErrorCode.SUCCESS
        self.login_calls += 1
        self.logged_in = True
        logger.info("MockBroker logged in")
        return BrokerErrorCode.SUCCESS

    def logout(self):
        self.logout_calls += 1
        self.logged_in = False
        logger.info("MockBroker logged out")

    def place_order(self, symbol: str, quantity: int, price: float, price_type: str,
                    direction: Direction, instrument_type: str, strike: float,
                    expiry: str, time_in_force: str) -> Tuple[BrokerErrorCode, str]:
        self.placed_orders.append({
            'symbol': symbol,
            'quantity': quantity,
            'price': price,
            'price_type': price_type,
            'direction': direction,
            'instrument_type': instrument_type,
            'strike': strike,
            'expiry': expiry,
            'time_in_force': time_in_force
        })
        code = self.place_results.popleft() if self.place_results else BrokerErrorCode.SUCCESS
        if not code.is_success:
            return code, ""
        self._next_ref += 1
        order_ref = f"MOCK-{self._next_ref}"
        logger.info(f"MockBroker accepted {direction.value} {quantity} {symbol} @ {price:.2f} ({order_ref})")
        return code, order_ref

    def get_order_status(self, order_ref: str, instrument_type: str,
                         window: Tuple[datetime, datetime]) -> Tuple[BrokerErrorCode, OrderStatus]:
        self.status_calls += 1
        if self.status_results:
            return self.status_results.popleft()
        return BrokerErrorCode.SUCCESS, OrderStatus.EXECUTED

    def get_fill_price(self, window: Tuple[datetime, datetime], instrument_type: str,
                       order_ref: str) -> Optional[float]:
        self.fill_price_calls += 1
        if self.fill_prices:
            return self.fill_prices.popleft()
        return None

    def get_quote(self, symbol: str, instrument_type: str,
                  expiry: str) -> Tuple[BrokerErrorCode, Optional[Tick]]:
        if not self.quotes:
            return BrokerErrorCode.NO_DATA, None
        return BrokerErrorCode.SUCCESS, self.quotes.popleft()


class ZerodhaAPI(BrokerAPI):
    """
    Zerodha Kite Connect API integration.

    Requires kiteconnect package: pip install kiteconnect
    """

    STATUS_MAP = {
        'COMPLETE': OrderStatus.EXECUTED,
        'REJECTED': OrderStatus.REJECTED,
        'CANCELLED': OrderStatus.CANCELLED,
        'OPEN': OrderStatus.OPEN,
        'TRIGGER PENDING': OrderStatus.PENDING,
        'PUT ORDER REQ RECEIVED': OrderStatus.PENDING,
        'VALIDATION PENDING': OrderStatus.PENDING,
        'OPEN PENDING': OrderStatus.PENDING,
    }

    def __init__(self, api_key: str, api_secret: str, access_token: str = None,
                 exchange: str = "NFO", product: str = "MIS"):
        self.api_key = api_key
        self.api_secret = api_secret
        self.access_token = access_token
        self.exchange = exchange
        self.product = product
        self.kite = None
        self.connected = False

    def login_if_needed(self, force: bool = False) -> BrokerErrorCode:
        """Connect to Zerodha with the configured access token."""
        if self.connected and not force:
            return BrokerErrorCode.SUCCESS
        try:
            from kiteconnect import KiteConnect

            self.kite = KiteConnect(api_key=self.api_key)

            if self.access_token:
                self.kite.set_access_token(self.access_token)
                self.connected = True
                logger.info("Connected to Zerodha")
                return BrokerErrorCode.SUCCESS
            else:
                # Access tokens come from the interactive login flow
                logger.info(f"Please login at: {self.kite.login_url()}")
                return BrokerErrorCode.INVALID_LOGIN

        except ImportError:
            logger.error("kiteconnect not installed. Install with: pip install kiteconnect")
            return BrokerErrorCode.CONFIGURATION_ERROR
        except Exception as e:
            logger.error(f"Zerodha connection error: {e}")
            return self._map_exception(e)

    def logout(self):
        if self.kite and self.connected:
            try:
                self.kite.invalidate_access_token()
            except Exception as e:
                logger.warning(f"Zerodha logout error: {e}")
        self.connected = False
        self.kite = None

    def place_order(self, symbol: str, quantity: int, price: float, price_type: str,
                    direction: Direction, instrument_type: str, strike: float,
                    expiry: str, time_in_force: str) -> Tuple[BrokerErrorCode, str]:
        if not self.connected or not self.kite:
            return BrokerErrorCode.NOT_LOGGED_IN, ""

        try:
            order_ref = self.kite.place_order(
                variety="regular",
                exchange=self.exchange,
                tradingsymbol=symbol,
                transaction_type=direction.value,
                quantity=quantity,
                product=self.product,
                order_type=price_type,
                price=round(price, 2),
                validity=time_in_force
            )
            logger.info(f"Zerodha order submitted: {order_ref}")
            return BrokerErrorCode.SUCCESS, str(order_ref)
        except Exception as e:
            logger.error(f"Zerodha order error: {e}")
            return self._map_exception(e), ""

    def get_order_status(self, order_ref: str, instrument_type: str,
                         window: Tuple[datetime, datetime]) -> Tuple[BrokerErrorCode, OrderStatus]:
        if not self.connected or not self.kite:
            return BrokerErrorCode.NOT_LOGGED_IN, OrderStatus.UNKNOWN

        try:
            history = self.kite.order_history(order_id=order_ref)
            if not history:
                return BrokerErrorCode.NO_DATA, OrderStatus.UNKNOWN
            status = history[-1].get('status', '')
            return BrokerErrorCode.SUCCESS, self.STATUS_MAP.get(status, OrderStatus.UNKNOWN)
        except Exception as e:
            logger.error(f"Error getting order status: {e}")
            return self._map_exception(e), OrderStatus.UNKNOWN

    def get_fill_price(self, window: Tuple[datetime, datetime], instrument_type: str,
                       order_ref: str) -> Optional[float]:
        if not self.connected or not self.kite:
            return None

        try:
            trades = self.kite.order_trades(order_id=order_ref)
            filled = sum(t['quantity'] for t in trades)
            if not filled:
                return None
            return sum(t['average_price'] * t['quantity'] for t in trades) / filled
        except Exception as e:
            logger.error(f"Error getting fill price: {e}")
            return None

    def get_quote(self, symbol: str, instrument_type: str,
                  expiry: str) -> Tuple[BrokerErrorCode, Optional[Tick]]:
        if not self.connected or not self.kite:
            return BrokerErrorCode.NOT_LOGGED_IN, None

        key = f"{self.exchange}:{symbol}"
        try:
            data = self.kite.quote([key]).get(key)
            if not data:
                return BrokerErrorCode.CONTRACT_NOT_FOUND, None
            tick = tick_from_depth(data.get('depth', {}), data.get('last_price', 0.0),
                                   data.get('volume', 0), data.get('timestamp'))
            return BrokerErrorCode.SUCCESS, tick
        except Exception as e:
            logger.error(f"Error getting quote for {key}: {e}")
            return self._map_exception(e), None

    @staticmethod
    def _map_exception(e: Exception) -> BrokerErrorCode:
        """Classify a kiteconnect exception."""
        name = type(e).__name__
        if name == 'TokenException':
            return BrokerErrorCode.NOT_LOGGED_IN
        if name in ('InputException', 'OrderException'):
            return BrokerErrorCode.INVALID_ORDER
        if name == 'NetworkException':
            return BrokerErrorCode.CONNECTION_ERROR
        if name in ('DataException', 'GeneralException'):
            return BrokerErrorCode.SERVER_ERROR
        if name == 'PermissionException':
            return BrokerErrorCode.INVALID_LOGIN
        return BrokerErrorCode.BROKER_ERROR


class AngelOneAPI(BrokerAPI):
    """
    Angel One (AngelBroking) SmartAPI integration.

    Requires smartapi-python package: pip install smartapi-python

    Authentication flow:
    1. Generate TOTP using authenticator app linked to Angel One account
    2. Pass TOTP along with credentials to connect
    """

    STATUS_MAP = {
        'complete': OrderStatus.EXECUTED,
        'rejected': OrderStatus.REJECTED,
        'cancelled': OrderStatus.CANCELLED,
        'open': OrderStatus.OPEN,
        'open pending': OrderStatus.PENDING,
        'validation pending': OrderStatus.PENDING,
        'trigger pending': OrderStatus.PENDING,
    }

    SESSION_ERRORS = {'AG8001', 'AG8002', 'AG8003', 'AB1010'}

    def __init__(self, api_key: str, client_id: str = None, password: str = None,
                 totp: str = None, exchange: str = "NFO", symbol_tokens: Dict[str, str] = None):
        self.api_key = api_key
        self.client_id = client_id  # Angel One User ID
        self.password = password
        self.totp = totp
        self.exchange = exchange
        self.smart_api = None
        self.connected = False
        self.auth_token = None

        # Angel One addresses contracts by numeric token
        self.symbol_tokens: Dict[str, str] = symbol_tokens or {}

    def login_if_needed(self, force: bool = False) -> BrokerErrorCode:
        """Connect to Angel One SmartAPI."""
        if self.connected and not force:
            return BrokerErrorCode.SUCCESS
        try:
            from SmartApi import SmartConnect
            import pyotp

            if not (self.client_id and self.password and self.totp):
                logger.warning("Angel One credentials incomplete. Provide client_id, password, and totp.")
                return BrokerErrorCode.CONFIGURATION_ERROR

            self.smart_api = SmartConnect(api_key=self.api_key)

            # A long value is the TOTP secret, a short one a ready code
            totp_code = pyotp.TOTP(self.totp).now() if len(self.totp) > 6 else self.totp

            data = self.smart_api.generateSession(self.client_id, self.password, totp_code)

            if data and data.get('status'):
                self.auth_token = data['data']['jwtToken']
                self.connected = True
                logger.info(f"Connected to Angel One as {self.client_id}")
                return BrokerErrorCode.SUCCESS
            logger.error(f"Angel One login failed: {(data or {}).get('message', 'Unknown error')}")
            return BrokerErrorCode.INVALID_LOGIN

        except ImportError:
            logger.error("smartapi-python not installed. Install with: pip install smartapi-python pyotp")
            return BrokerErrorCode.CONFIGURATION_ERROR
        except Exception as e:
            logger.error(f"Angel One connection error: {e}")
            return BrokerErrorCode.CONNECTION_ERROR

    def logout(self):
        if self.smart_api and self.connected:
            try:
                self.smart_api.terminateSession(self.client_id)
            except Exception as e:
                logger.warning(f"Angel One logout error: {e}")
        self.connected = False
        self.smart_api = None
        logger.info("Disconnected from Angel One")

    def _symbol_token(self, symbol: str) -> str:
        return self.symbol_tokens.get(symbol.upper(), symbol)

    def _response_code(self, response) -> BrokerErrorCode:
        if not isinstance(response, dict):
            return BrokerErrorCode.NO_DATA
        if response.get('status'):
            return BrokerErrorCode.SUCCESS
        if response.get('errorcode') in self.SESSION_ERRORS:
            return BrokerErrorCode.NOT_LOGGED_IN
        return BrokerErrorCode.BROKER_ERROR

    def place_order(self, symbol: str, quantity: int, price: float, price_type: str,
                    direction: Direction, instrument_type: str, strike: float,
                    expiry: str, time_in_force: str) -> Tuple[BrokerErrorCode, str]:
        if not self.connected or not self.smart_api:
            return BrokerErrorCode.NOT_LOGGED_IN, ""

        order_params = {
            'variety': 'NORMAL',
            'tradingsymbol': symbol,
            'symboltoken': self._symbol_token(symbol),
            'transactiontype': direction.value,
            'exchange': self.exchange,
            'ordertype': price_type,
            'producttype': 'INTRADAY',
            'duration': time_in_force,
            'price': f"{price:.2f}",
            'quantity': str(quantity)
        }

        try:
            response = self.smart_api.placeOrder(order_params)
            # Older SDKs return the full response, newer ones only the id
            if isinstance(response, dict):
                code = self._response_code(response)
                if not code.is_success:
                    logger.error(f"Angel One order rejected: {response.get('message')}")
                    return code, ""
                order_ref = response['data']['orderid']
            elif response:
                order_ref = str(response)
            else:
                return BrokerErrorCode.BROKER_ERROR, ""
            logger.info(f"Angel One order submitted: {order_ref}")
            return BrokerErrorCode.SUCCESS, order_ref
        except Exception as e:
            logger.error(f"Angel One order error: {e}")
            return BrokerErrorCode.CONNECTION_ERROR, ""

    def _find_order(self, order_ref: str) -> Tuple[BrokerErrorCode, Optional[dict]]:
        response = self.smart_api.orderBook()
        code = self._response_code(response)
        if not code.is_success:
            return code, None
        for o in response.get('data') or []:
            if o.get('orderid') == order_ref:
                return BrokerErrorCode.SUCCESS, o
        return BrokerErrorCode.NO_DATA, None

    def get_order_status(self, order_ref: str, instrument_type: str,
                         window: Tuple[datetime, datetime]) -> Tuple[BrokerErrorCode, OrderStatus]:
        if not self.connected or not self.smart_api:
            return BrokerErrorCode.NOT_LOGGED_IN, OrderStatus.UNKNOWN

        try:
            code, order = self._find_order(order_ref)
            if order is None:
                return code, OrderStatus.UNKNOWN
            status = str(order.get('status', '')).lower()
            return BrokerErrorCode.SUCCESS, self.STATUS_MAP.get(status, OrderStatus.UNKNOWN)
        except Exception as e:
            logger.error(f"Angel One status error: {e}")
            return BrokerErrorCode.CONNECTION_ERROR, OrderStatus.UNKNOWN

    def get_fill_price(self, window: Tuple[datetime, datetime], instrument_type: str,
                       order_ref: str) -> Optional[float]:
        if not self.connected or not self.smart_api:
            return None

        try:
            _, order = self._find_order(order_ref)
            if order is None:
                return None
            price = float(order.get('averageprice') or 0)
            return price if price > 0 else None
        except Exception as e:
            logger.error(f"Angel One fill price error: {e}")
            return None

    def get_quote(self, symbol: str, instrument_type: str,
                  expiry: str) -> Tuple[BrokerErrorCode, Optional[Tick]]:
        if not self.connected or not self.smart_api:
            return BrokerErrorCode.NOT_LOGGED_IN, None

        try:
            token = self._symbol_token(symbol)
            response = self.smart_api.getMarketData("FULL", {self.exchange: [token]})
            code = self._response_code(response)
            if not code.is_success:
                return code, None
            fetched = (response.get('data') or {}).get('fetched') or []
            if not fetched:
                return BrokerErrorCode.CONTRACT_NOT_FOUND, None
            data = fetched[0]
            tick = tick_from_depth(data.get('depth', {}), data.get('ltp', 0.0), data.get('tradeVolume', 0))
            return BrokerErrorCode.SUCCESS, tick
        except Exception as e:
            logger.error(f"Angel One quote error: {e}")
            return BrokerErrorCode.CONNECTION_ERROR, None


def create_broker(config) -> BrokerAPI:
    """Build the broker named in an ExecutionConfig."""
    name = config.broker.lower()
    if name == 'zerodha':
        return ZerodhaAPI(config.api_key, config.api_secret, config.access_token,
                          exchange=config.exchange)
    if name == 'angelone':
        return AngelOneAPI(config.api_key, config.client_id, config.password, config.totp,
                           exchange=config.exchange)
    return MockBroker()
