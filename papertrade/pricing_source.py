"""
pricing_source.py - Daily price/date series for the simulation

The price path itself is produced elsewhere (a synthetic generator or a
data file); this module only wraps it for index- and time-based lookup.

Classes:
- PriceHistory: ordered (date, price) series addressed by day index

All prices are per-share floats in the portfolio currency.
"""

from bisect import bisect_right
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np


class PriceHistory:
    """
    Time-indexed underlying prices.

    Day index i maps to (dates[i], prices[i]). The series is supplied whole
    and is not validated beyond length agreement, non-emptiness and
    positive prices.

    Example:
        history = PriceHistory(["2025-01-02", "2025-01-03"], [100.0, 101.5])
        history.spot(1)        # 101.5
        history.timestamp(1)   # datetime(2025, 1, 3)
        history.clamp(7)       # 1
    """

    def __init__(self, dates: Sequence[str], prices: Sequence[float]):
        if len(dates) != len(prices):
            raise ValueError(
                f"dates and prices must have the same length: {len(dates)} != {len(prices)}"
            )
        if len(prices) == 0:
            raise ValueError("price history is empty")
        self.dates: List[str] = [str(d) for d in dates]
        self.prices = np.asarray(prices, dtype=float)
        if np.any(~np.isfinite(self.prices)) or np.any(self.prices <= 0):
            raise ValueError("prices must be finite and positive")
        self._timestamps: List[datetime] = [_parse_date(d) for d in self.dates]

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[str, float]]) -> "PriceHistory":
        """Build from [(date, price), ...]."""
        return cls([d for d, _ in pairs], [p for _, p in pairs])

    def __len__(self) -> int:
        return len(self.dates)

    @property
    def last_index(self) -> int:
        return len(self.dates) - 1

    def clamp(self, index: int) -> int:
        """Clamp a day index into [0, len - 1]."""
        return max(0, min(int(index), self.last_index))

    def _check(self, index: int) -> int:
        if index < 0 or index > self.last_index:
            raise IndexError(f"day index {index} outside [0, {self.last_index}]")
        return index

    def spot(self, index: int) -> float:
        return float(self.prices[self._check(index)])

    def date(self, index: int) -> str:
        return self.dates[self._check(index)]

    def timestamp(self, index: int) -> datetime:
        """Midnight of the day's date."""
        return self._timestamps[self._check(index)]

    def index_at(self, timestamp: datetime) -> Optional[int]:
        """
        Index of the last day at or before timestamp.

        Returns None if timestamp precedes the first day.
        """
        idx = bisect_right(self._timestamps, timestamp)
        if idx == 0:
            return None
        return idx - 1

    def price_at(self, timestamp: datetime) -> Optional[float]:
        """Most recent price at or before timestamp."""
        idx = self.index_at(timestamp)
        return None if idx is None else float(self.prices[idx])

    def __repr__(self):
        return f"PriceHistory({len(self)} days, {self.dates[0]}..{self.dates[-1]})"


def _parse_date(value: str) -> datetime:
    # Accepts "YYYY-MM-DD" as well as full ISO datetimes; time is dropped.
    parsed = datetime.fromisoformat(value)
    return datetime(parsed.year, parsed.month, parsed.day)
