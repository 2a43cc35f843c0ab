"""
Data Module
===========
"""
from .market_data import (
    Tick, ReplayFormatError, load_replay_frame, load_replay_ticks,
    iter_replay_ticks, write_replay_ticks, tick_from_depth, generate_mock_ticks
)

__all__ = ['Tick', 'ReplayFormatError', 'load_replay_frame', 'load_replay_ticks',
           'iter_replay_ticks', 'write_replay_ticks', 'tick_from_depth', 'generate_mock_ticks']
