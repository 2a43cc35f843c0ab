"""
Session Module
==============
"""
from .market_clock import MarketClock, NSEMarketClock, parse_hhmm
from .day_boundary import DayBoundaryManager, BoundaryAction

__all__ = ['MarketClock', 'NSEMarketClock', 'parse_hhmm', 'DayBoundaryManager', 'BoundaryAction']
