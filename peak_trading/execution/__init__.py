"""
Execution Module
================
"""
from .broker_api import (
    BrokerAPI, MockBroker, ZerodhaAPI, AngelOneAPI, Direction, OrderStatus,
    BrokerErrorCode, create_broker
)
from .execution_engine import ExecutionEngine, Order, PlacementResult, compute_price_margin

__all__ = ['BrokerAPI', 'MockBroker', 'ZerodhaAPI', 'AngelOneAPI', 'Direction', 'OrderStatus',
           'BrokerErrorCode', 'create_broker', 'ExecutionEngine', 'Order', 'PlacementResult',
           'compute_price_margin']
