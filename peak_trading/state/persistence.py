"""
Persistence Module
==================
Durable storage for the engine:

- StateStore: versioned JSON blob holding EngineState, written atomically
- Positions file: one ``DIRECTION:PRICE`` record per open leg
- StatsStore: DayStats / PeriodStats history as CSV tables
"""

import pandas as pd
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import json
import logging
import os
import shutil
import tempfile

from ..execution.broker_api import Direction
from ..execution.execution_engine import Order
from .engine_state import EngineState

logger = logging.getLogger(__name__)

STATE_SCHEMA_VERSION = 1


class StateSchemaError(Exception):
    """Raised when a state file cannot be understood by this version."""


class MalformedPositionRecord(ValueError):
    """Raised for an unparseable line in the positions file."""

    def __init__(self, path: str, line_no: int, line: str, reason: str):
        self.path = path
        self.line_no = line_no
        self.line = line
        super().__init__(f"{path}:{line_no}: {reason}: {line!r}")


def atomic_write_text(filepath: str, text: str):
    """Write to a temp file in the same directory, then rename over filepath."""
    dir_path = os.path.dirname(filepath) or "."
    os.makedirs(dir_path, exist_ok=True)

    temp_fd, temp_path = tempfile.mkstemp(dir=dir_path, prefix='.tmp_')
    try:
        with os.fdopen(temp_fd, 'w') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, filepath)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class StateStore:
    """Versioned JSON persistence of EngineState."""

    def __init__(self, filepath: str):
        self.filepath = filepath

    def exists(self) -> bool:
        return os.path.exists(self.filepath)

    def save(self, state: EngineState) -> bool:
        """
        Persist state. Returns False (after logging) on I/O failure so the
        caller can keep going in memory.
        """
        payload = {
            'schema_version': STATE_SCHEMA_VERSION,
            'saved_at': datetime.now().isoformat(),
            'state': state.to_dict()
        }
        try:
            atomic_write_text(self.filepath, json.dumps(payload, indent=2))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save state to {self.filepath}: {e}")
            return False

    def load(self) -> Optional[EngineState]:
        """
        Load persisted state, or None when no state file exists.

        Raises:
            StateSchemaError: unreadable file or a newer schema version
        """
        if not self.exists():
            return None

        try:
            with open(self.filepath, 'r') as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateSchemaError(f"Unreadable state file {self.filepath}: {e}") from e

        version = payload.get('schema_version') if isinstance(payload, dict) else None
        if not isinstance(version, int):
            raise StateSchemaError(f"State file {self.filepath} has no schema version")
        if version > STATE_SCHEMA_VERSION:
            raise StateSchemaError(
                f"State file {self.filepath} has schema {version}, newer than supported {STATE_SCHEMA_VERSION}")

        try:
            state = EngineState.from_dict(payload.get('state', {}))
        except (KeyError, TypeError, ValueError) as e:
            raise StateSchemaError(f"Invalid state in {self.filepath}: {e}") from e

        logger.info(f"Loaded state from {self.filepath}: {state.summary()}")
        return state


# ---- positions file ----

def parse_position_line(line: str, line_no: int = 0, path: str = "") -> Order:
    """Parse one ``DIRECTION:PRICE`` record."""
    parts = line.strip().split(':')
    if len(parts) != 2:
        raise MalformedPositionRecord(path, line_no, line, "expected DIRECTION:PRICE")

    try:
        direction = Direction.parse(parts[0])
    except ValueError:
        raise MalformedPositionRecord(path, line_no, line, f"unknown direction {parts[0]!r}")

    try:
        price = Decimal(parts[1].strip())
    except InvalidOperation:
        raise MalformedPositionRecord(path, line_no, line, f"invalid price {parts[1]!r}")
    if not price.is_finite() or price <= 0:
        raise MalformedPositionRecord(path, line_no, line, f"price must be positive, got {parts[1]!r}")

    return Order(direction=direction, price=float(price), expected_price=float(price))


def load_positions(filepath: str) -> List[Order]:
    """
    Read open legs from a positions file.

    Blank lines are skipped. A missing file means no open legs.

    Raises:
        MalformedPositionRecord: on the first bad line, or when legs of
            both directions are present
    """
    if not os.path.exists(filepath):
        return []

    orders: List[Order] = []
    with open(filepath, 'r') as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            order = parse_position_line(line, line_no, filepath)
            if orders and order.direction != orders[0].direction:
                raise MalformedPositionRecord(filepath, line_no, line,
                                              "open legs must all share one direction")
            orders.append(order)

    logger.info(f"Read {len(orders)} open positions from {filepath}")
    return orders


def format_positions(orders: List[Order]) -> str:
    return "".join(f"{o.direction.value}:{o.price}\n" for o in orders)


def write_positions(filepath: str, orders: List[Order]):
    """Rewrite the positions file wholesale."""
    atomic_write_text(filepath, format_positions(orders))
    logger.info(f"Wrote {len(orders)} open positions to {filepath}")


def backup_files(paths: List[str], backup_dir: str, stamp: str = None) -> List[str]:
    """Copy existing files into backup_dir with a timestamp prefix."""
    stamp = stamp or datetime.now().strftime('%Y%m%d_%H%M%S')
    os.makedirs(backup_dir, exist_ok=True)
    copied = []
    for path in paths:
        if not path or not os.path.exists(path):
            continue
        target = os.path.join(backup_dir, f"{stamp}_{os.path.basename(path)}")
        shutil.copy2(path, target)
        copied.append(target)
    return copied


# ---- statistics history ----

class StatsStore:
    """Appends statistics records to per-kind CSV files."""

    def __init__(self, stats_dir: str):
        self.stats_dir = stats_dir

    def _path(self, kind: str) -> str:
        return os.path.join(self.stats_dir, f"{kind}.csv")

    def append(self, kind: str, record: Dict[str, Any]) -> bool:
        path = self._path(kind)
        try:
            os.makedirs(self.stats_dir, exist_ok=True)
            df = pd.DataFrame([record])
            df.to_csv(path, mode='a', header=not os.path.exists(path), index=False)
            return True
        except OSError as e:
            logger.error(f"Failed to append {kind} stats to {path}: {e}")
            return False

    def load(self, kind: str) -> pd.DataFrame:
        path = self._path(kind)
        if not os.path.exists(path):
            return pd.DataFrame()
        return pd.read_csv(path)
