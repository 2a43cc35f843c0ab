"""
Market Data Module
==================
Quote ticks and the replay tick feed.

Replay files hold one quote per line:

    yyyyMMdd:HH:mm:ss;bid;offer;last;bidSize;offerSize[;volume]

They drive the engine deterministically in replay mode. Malformed files
fail loudly instead of being skipped line by line.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, List, Optional
import logging
import os

logger = logging.getLogger(__name__)

REPLAY_TIMESTAMP_FORMAT = "%Y%m%d:%H:%M:%S"
REPLAY_COLUMNS = ['timestamp', 'bid', 'offer', 'ltp', 'bid_size', 'offer_size', 'volume']
MAX_REPLAY_TICKS = 100000


class ReplayFormatError(Exception):
    """Raised when a replay tick file cannot be parsed."""


@dataclass(frozen=True)
class Tick:
    """Immutable quote snapshot for the traded instrument."""
    timestamp: datetime
    bid: float
    offer: float
    ltp: float
    bid_size: int = 0
    offer_size: int = 0
    volume: int = 0
    sequence: int = 0

    @property
    def price(self) -> float:
        """Price used for peak analysis."""
        return self.ltp

    @property
    def spread(self) -> float:
        return self.offer - self.bid

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'bid': self.bid,
            'offer': self.offer,
            'ltp': self.ltp,
            'bid_size': self.bid_size,
            'offer_size': self.offer_size,
            'volume': self.volume,
            'sequence': self.sequence
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Tick':
        return cls(
            timestamp=datetime.fromisoformat(data['timestamp']),
            bid=float(data['bid']),
            offer=float(data['offer']),
            ltp=float(data['ltp']),
            bid_size=int(data.get('bid_size', 0)),
            offer_size=int(data.get('offer_size', 0)),
            volume=int(data.get('volume', 0)),
            sequence=int(data.get('sequence', 0))
        )

    def to_replay_line(self) -> str:
        return (f"{self.timestamp.strftime(REPLAY_TIMESTAMP_FORMAT)};{self.bid};{self.offer};"
                f"{self.ltp};{self.bid_size};{self.offer_size};{self.volume}")


def load_replay_frame(filepath: str, max_ticks: int = MAX_REPLAY_TICKS) -> pd.DataFrame:
    """
    Parse a replay tick file into a DataFrame.

    Args:
        filepath: Path to the semicolon-delimited tick file
        max_ticks: Stop reading after this many rows

    Returns:
        DataFrame with REPLAY_COLUMNS, in file order

    Raises:
        ReplayFormatError: On a missing file or any malformed row
    """
    if not os.path.exists(filepath):
        raise ReplayFormatError(f"Replay tick file not found: {filepath}")

    try:
        df = pd.read_csv(
            filepath,
            sep=';',
            header=None,
            names=REPLAY_COLUMNS,
            index_col=False,
            dtype=str,
            skip_blank_lines=True,
            nrows=max_ticks
        )
    except pd.errors.EmptyDataError:
        logger.warning(f"Replay tick file is empty: {filepath}")
        return pd.DataFrame(columns=REPLAY_COLUMNS)
    except pd.errors.ParserError as e:
        raise ReplayFormatError(f"Malformed replay file {filepath}: {e}") from e

    required = REPLAY_COLUMNS[:6]
    missing = df[required].isna().any(axis=1)
    if missing.any():
        line_no = int(missing.idxmax()) + 1
        raise ReplayFormatError(f"{filepath}:{line_no}: expected at least 6 fields")

    try:
        df['timestamp'] = pd.to_datetime(df['timestamp'].str.strip(), format=REPLAY_TIMESTAMP_FORMAT)
        for col in ['bid', 'offer', 'ltp']:
            df[col] = pd.to_numeric(df[col].str.strip()).astype(float)
        for col in ['bid_size', 'offer_size']:
            df[col] = pd.to_numeric(df[col].str.strip()).astype(int)
        df['volume'] = pd.to_numeric(df['volume'].fillna('0').str.strip()).astype(int)
    except (ValueError, TypeError) as e:
        raise ReplayFormatError(f"Malformed replay file {filepath}: {e}") from e

    if len(df) >= max_ticks:
        logger.warning(f"Replay file {filepath} truncated to {max_ticks} ticks")

    return df


def iter_replay_ticks(filepath: str, max_ticks: int = MAX_REPLAY_TICKS) -> Iterator[Tick]:
    """Yield Ticks from a replay file in file order, numbered from 1."""
    df = load_replay_frame(filepath, max_ticks)
    for seq, row in enumerate(df.itertuples(index=False), start=1):
        yield Tick(
            timestamp=row.timestamp.to_pydatetime(),
            bid=row.bid,
            offer=row.offer,
            ltp=row.ltp,
            bid_size=int(row.bid_size),
            offer_size=int(row.offer_size),
            volume=int(row.volume),
            sequence=seq
        )


def load_replay_ticks(filepath: str, max_ticks: int = MAX_REPLAY_TICKS) -> List[Tick]:
    """Load all replay ticks into memory."""
    ticks = list(iter_replay_ticks(filepath, max_ticks))
    logger.info(f"Loaded {len(ticks)} replay ticks from {filepath}")
    return ticks


def write_replay_ticks(filepath: str, ticks: List[Tick]):
    """Write ticks in replay format, e.g. to record a live session."""
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(filepath, 'w') as f:
        for tick in ticks:
            f.write(tick.to_replay_line() + "\n")


def tick_from_depth(depth: dict, ltp: float, volume: int = 0,
                    timestamp: Optional[datetime] = None) -> Tick:
    """Tick from a broker market-depth snapshot, using the best level of each side."""
    best_bid = (depth.get('buy') or [{}])[0]
    best_offer = (depth.get('sell') or [{}])[0]
    return Tick(
        timestamp=timestamp or datetime.now(),
        bid=float(best_bid.get('price', 0.0)),
        offer=float(best_offer.get('price', 0.0)),
        ltp=float(ltp),
        bid_size=int(best_bid.get('quantity', 0)),
        offer_size=int(best_offer.get('quantity', 0)),
        volume=int(volume)
    )


def generate_mock_ticks(start: datetime, base_price: float = 100.0, n: int = 375,
                        volatility: float = 0.001, spread_pct: float = 0.02,
                        interval_seconds: int = 60, seed: Optional[int] = None) -> List[Tick]:
    """
    Synthetic random-walk session for paper trading.

    Args:
        start: Timestamp of the first tick
        base_price: Opening last-traded price
        n: Number of ticks
        volatility: Per-tick return standard deviation
        spread_pct: Bid/offer distance from LTP in percent
        interval_seconds: Time between ticks
        seed: Random seed for a repeatable session
    """
    rng = np.random.default_rng(seed)
    returns = rng.normal(0.0, volatility, n)
    prices = base_price * np.cumprod(1 + returns)
    half_spread = prices * spread_pct / 200

    ticks = []
    for i, ltp in enumerate(prices):
        ticks.append(Tick(
            timestamp=start + timedelta(seconds=i * interval_seconds),
            bid=round(float(ltp - half_spread[i]), 2),
            offer=round(float(ltp + half_spread[i]), 2),
            ltp=round(float(ltp), 2),
            bid_size=int(rng.integers(50, 500)),
            offer_size=int(rng.integers(50, 500)),
            volume=int(rng.integers(1000, 10000)),
            sequence=i + 1
        ))
    return ticks
