"""
Alpha Module
============
"""
from .peak_detector import ExtremumTracker, Signal

__all__ = ['ExtremumTracker', 'Signal']
