"""
Monitoring Module
=================
"""
from .monitoring_system import AlertManager, Alert, AlertKind, AlertSeverity
from .trade_stats import (
    TradeBook, DayStats, PeriodStats, DayNett, PnLStats, ProgramStats,
    AlgoRunStats, FillRecord, OutstandingPosition, roi_percentage
)

__all__ = ['AlertManager', 'Alert', 'AlertKind', 'AlertSeverity', 'TradeBook', 'DayStats',
           'PeriodStats', 'DayNett', 'PnLStats', 'ProgramStats', 'AlgoRunStats',
           'FillRecord', 'OutstandingPosition', 'roi_percentage']
