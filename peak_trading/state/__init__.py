"""
State Module
============
"""
from .engine_state import EngineState, PeakType, RunState
from .persistence import (
    StateStore, StatsStore, StateSchemaError, MalformedPositionRecord,
    load_positions, write_positions, parse_position_line, backup_files,
    STATE_SCHEMA_VERSION
)

__all__ = ['EngineState', 'PeakType', 'RunState', 'StateStore', 'StatsStore',
           'StateSchemaError', 'MalformedPositionRecord', 'load_positions',
           'write_positions', 'parse_position_line', 'backup_files', 'STATE_SCHEMA_VERSION']
