"""
Risk Module
===========
"""
from .risk_engine import RiskLimiter, RiskDecision, PositionAllowCode

__all__ = ['RiskLimiter', 'RiskDecision', 'PositionAllowCode']
